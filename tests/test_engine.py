"""
Tests for the weighted multi-database matching engine.
"""

from pathlib import Path

import numpy as np
import pytest

from imgsearch.config import Binding, QueryConfig
from imgsearch.database import FeatureStore
from imgsearch.engine import MatchingEngine
from imgsearch.errors import ConfigurationError, ExtractionError, StoreError
from imgsearch.extractors import RGBHistogram3D
from imgsearch.regions import Region
from imgsearch.registry import FeatureType, MetricType


def _vec(*values):
    return np.array(values, dtype=np.float32)


def _store(rows):
    return FeatureStore(list(rows), list(rows.values()))


def _engine(stores, image_loader=None, num_workers=1):
    """Engine reading stores from a dict instead of disk."""
    def load(path):
        store = stores[path]
        if isinstance(store, Exception):
            raise store
        return store

    def no_image(identifier):
        raise AssertionError(f"query image should not be decoded: {identifier}")

    return MatchingEngine(store_loader=load, image_loader=image_loader or no_image, num_workers=num_workers)


def _binding(db, metric=MetricType.SSD, weight=1.0, feature=FeatureType.BASELINE, region=Region.WHOLE):
    return Binding(feature, region, metric, Path(db), weight)


class TestRanking:
    """Test ranking over a single binding."""

    def test_orders_by_distance(self):
        """A scores 0.25, B 0.01; C is in no database and never appears."""
        stores = {Path("db.csv"): _store({
            "q.jpg": _vec(0.0),
            "a.jpg": _vec(0.5),
            "b.jpg": _vec(0.1),
        })}
        results = _engine(stores).rank("q.jpg", [_binding("db.csv")], top_n=5)

        assert [r.identifier for r in results] == ["b.jpg", "a.jpg"]
        assert results[0].distance == pytest.approx(0.01)
        assert results[1].distance == pytest.approx(0.25)

    def test_query_excluded_and_vector_reused(self):
        """A query found in the store is neither decoded nor returned."""
        stores = {Path("db.csv"): _store({"a.jpg": _vec(1.0), "q.jpg": _vec(1.0)})}
        results = _engine(stores).rank("q.jpg", [_binding("db.csv")], top_n=5)

        assert [r.identifier for r in results] == ["a.jpg"]
        assert results[0].distance == 0.0

    def test_query_matched_by_exact_identifier(self):
        """Identifiers that merely contain the query string are candidates."""
        stores = {Path("db.csv"): _store({"pic.jpg": _vec(0.0), "old_pic.jpg": _vec(0.2)})}
        results = _engine(stores).rank("pic.jpg", [_binding("db.csv")], top_n=5)
        assert [r.identifier for r in results] == ["old_pic.jpg"]

    def test_top_n_truncates(self):
        stores = {Path("db.csv"): _store({f"{i}.jpg": _vec(float(i)) for i in range(10)})}
        results = _engine(stores).rank("0.jpg", [_binding("db.csv")], top_n=3)
        assert [r.identifier for r in results] == ["1.jpg", "2.jpg", "3.jpg"]

    def test_ties_broken_by_identifier(self):
        stores = {Path("db.csv"): _store({
            "q.jpg": _vec(0.0),
            "zebra.jpg": _vec(1.0),
            "apple.jpg": _vec(-1.0),
            "mango.jpg": _vec(1.0),
        })}
        results = _engine(stores).rank("q.jpg", [_binding("db.csv")], top_n=5)
        assert [r.identifier for r in results] == ["apple.jpg", "mango.jpg", "zebra.jpg"]

    def test_incomparable_ranked_last(self):
        stores = {Path("db.csv"): _store({
            "q.jpg": _vec(0.0, 0.0),
            "short.jpg": _vec(0.0),
            "ok.jpg": _vec(3.0, 4.0),
        })}
        results = _engine(stores).rank("q.jpg", [_binding("db.csv")], top_n=5)

        assert [r.identifier for r in results] == ["ok.jpg", "short.jpg"]
        assert results[1].distance == float("inf")


class TestMultiBinding:
    """Test accumulation over several bindings."""

    def test_weighted_sum(self):
        """Weights 2.0 and 1.0 on distances 0.3 and 0.4 accumulate to 1.0."""
        stores = {
            Path("color.csv"): _store({"q.jpg": _vec(1.0, 0.0), "x.jpg": _vec(0.7, 0.3)}),
            Path("texture.csv"): _store({"q.jpg": _vec(1.0, 0.0), "x.jpg": _vec(0.6, 0.4)}),
        }
        bindings = [
            _binding("color.csv", MetricType.HIST_INTERSECTION, weight=2.0),
            _binding("texture.csv", MetricType.HIST_INTERSECTION, weight=1.0),
        ]
        results = _engine(stores).rank("q.jpg", bindings, top_n=5)

        assert len(results) == 1
        assert results[0].distance == pytest.approx(1.0, abs=1e-6)

    def test_candidate_in_one_store_only(self):
        """Candidates seen by any binding are ranked on what they have."""
        stores = {
            Path("a.csv"): _store({"q.jpg": _vec(0.0), "x.jpg": _vec(1.0), "y.jpg": _vec(2.0)}),
            Path("b.csv"): _store({"q.jpg": _vec(0.0), "x.jpg": _vec(2.0)}),
        }
        results = _engine(stores).rank("q.jpg", [_binding("a.csv"), _binding("b.csv")], top_n=5)

        assert {r.identifier: r.distance for r in results} == pytest.approx({"x.jpg": 5.0, "y.jpg": 4.0})
        assert [r.identifier for r in results] == ["y.jpg", "x.jpg"]

    def test_duplicate_identifiers_accumulate(self):
        store = FeatureStore(["q.jpg", "x.jpg", "x.jpg"], [_vec(0.0), _vec(1.0), _vec(2.0)])
        results = _engine({Path("db.csv"): store}).rank("q.jpg", [_binding("db.csv")], top_n=5)
        assert results[0].distance == pytest.approx(5.0)

    def test_shared_store_loaded_once(self):
        calls = []
        store = _store({"q.jpg": _vec(0.0), "x.jpg": _vec(1.0)})

        def load(path):
            calls.append(path)
            return store

        engine = MatchingEngine(store_loader=load)
        engine.rank("q.jpg", [_binding("db.csv", MetricType.SSD), _binding("db.csv", MetricType.COSINE)], top_n=5)
        assert calls == [Path("db.csv")]

    def test_threaded_scoring_matches_serial(self):
        rng = np.random.default_rng(11)
        stores = {}
        for k in range(4):
            rows = {f"img{i:02d}.jpg": rng.random(8).astype(np.float32) for i in range(30)}
            stores[Path(f"db{k}.csv")] = _store(rows)
        bindings = [_binding(f"db{k}.csv", weight=k + 1.0) for k in range(4)]

        serial = _engine(stores).rank("img00.jpg", bindings, top_n=10)
        threaded = _engine(stores, num_workers=4).rank("img00.jpg", bindings, top_n=10)

        assert serial == threaded


class TestQueryExtraction:
    """Test queries that are not in the databases."""

    def test_extracts_missing_query(self):
        red = np.zeros((20, 20, 3), dtype=np.uint8)
        red[:] = (0, 0, 255)
        blue = np.zeros((20, 20, 3), dtype=np.uint8)
        blue[:] = (255, 0, 0)
        extractor = RGBHistogram3D()
        stores = {Path("db.csv"): _store({
            "red.jpg": extractor.extract(red),
            "blue.jpg": extractor.extract(blue),
        })}
        decoded = []

        def loader(identifier):
            decoded.append(identifier)
            return red

        bindings = [
            _binding("db.csv", MetricType.HIST_INTERSECTION, feature=FeatureType.RGB_HIST),
            _binding("db.csv", MetricType.SSD, feature=FeatureType.RGB_HIST),
        ]
        results = _engine(stores, image_loader=loader).rank("new.jpg", bindings, top_n=5)

        assert [r.identifier for r in results] == ["red.jpg", "blue.jpg"]
        assert results[0].distance == pytest.approx(0.0, abs=1e-6)
        assert decoded == ["new.jpg"]

    def test_undecodable_query_raises(self):
        def loader(identifier):
            raise ExtractionError(f"Cannot decode image: {identifier}")

        stores = {Path("db.csv"): _store({"a.jpg": _vec(1.0)})}
        with pytest.raises(ExtractionError):
            _engine(stores, image_loader=loader).rank("missing.jpg", [_binding("db.csv")], top_n=5)


class TestStoreFailures:
    """Test bindings whose database cannot be used."""

    def test_unreadable_store_skipped(self, caplog):
        stores = {
            Path("bad.csv"): StoreError("Cannot read feature database bad.csv"),
            Path("good.csv"): _store({"q.jpg": _vec(0.0), "x.jpg": _vec(1.0)}),
        }
        results = _engine(stores).rank("q.jpg", [_binding("bad.csv"), _binding("good.csv")], top_n=5)

        assert [r.identifier for r in results] == ["x.jpg"]
        assert "Skipping" in caplog.text

    def test_empty_store_skipped(self):
        stores = {
            Path("empty.csv"): FeatureStore([], []),
            Path("good.csv"): _store({"q.jpg": _vec(0.0), "x.jpg": _vec(1.0)}),
        }
        results = _engine(stores).rank("q.jpg", [_binding("empty.csv"), _binding("good.csv")], top_n=5)
        assert len(results) == 1

    def test_all_stores_failing_gives_no_matches(self):
        stores = {Path("bad.csv"): StoreError("unreadable")}
        assert _engine(stores).rank("q.jpg", [_binding("bad.csv")], top_n=5) == []

    def test_store_holding_only_query(self):
        stores = {Path("db.csv"): _store({"q.jpg": _vec(0.0)})}
        assert _engine(stores).rank("q.jpg", [_binding("db.csv")], top_n=5) == []


class TestValidation:
    """Malformed settings are rejected before any database is read."""

    @pytest.mark.parametrize("bindings,top_n", [
        ([], 5),
        ([_binding("db.csv")], 0),
        ([_binding("db.csv", weight=0.0)], 5),
        ([_binding("db.csv", metric=MetricType.UNKNOWN)], 5),
    ])
    def test_rejected(self, bindings, top_n):
        engine = _engine({})
        with pytest.raises(ConfigurationError):
            engine.rank("q.jpg", bindings, top_n)

    def test_run_query_config(self):
        stores = {Path("db.csv"): _store({"q.jpg": _vec(0.0), "x.jpg": _vec(1.0)})}
        cfg = QueryConfig(target="q.jpg", bindings=[_binding("db.csv")], top_n=1)
        assert [r.identifier for r in _engine(stores).run(cfg)] == ["x.jpg"]
