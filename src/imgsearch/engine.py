"""Weighted multi-database matching engine."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

import numpy as np
import numpy.typing as npt

from .config import Binding, QueryConfig
from .database import FeatureStore
from .errors import ConfigurationError, StoreError
from .images import load_image
from .models import MatchResult
from .registry import get_extractor, get_metric

logger = logging.getLogger(__name__)

StoreLoader = Callable[[Path], FeatureStore]
ImageLoader = Callable[[str], npt.NDArray[Any]]


def _score_binding(
    binding: Binding,
    store: FeatureStore,
    query: str,
    query_vec: npt.NDArray[np.float32],
) -> dict[str, float]:
    """Weighted distances from the query to every other record of one store.

    Args:
        binding: Channel being scored.
        store: The binding's loaded database.
        query: Query identifier, excluded from the result.
        query_vec: Query feature vector for this channel.

    Returns:
        Mapping of identifier to weighted distance.
    """
    metric = get_metric(binding.metric)

    matrix = store.matrix
    if matrix is not None:
        distances: Sequence[float] = metric.compute_batch_distance(matrix, query_vec).tolist()
    else:
        distances = [metric.compute_distance(query_vec, vec) for vec in store.vectors]

    partial: dict[str, float] = {}
    incomparable = 0
    for identifier, distance in zip(store.identifiers, distances, strict=True):
        if identifier == query:
            continue
        if math.isinf(distance):
            incomparable += 1
        partial[identifier] = partial.get(identifier, 0.0) + binding.weight * distance

    if incomparable:
        logger.warning(
            f"{incomparable} record(s) in {binding.database} could not be compared "
            f"with the query ({binding.feature}, {len(query_vec)} values)"
        )
    return partial


class MatchingEngine:
    """Ranks catalog images against a query over one or more bindings.

    Feature databases are loaded on first use and cached for the lifetime of
    the engine, so bindings sharing a database read it once.
    """

    def __init__(
        self,
        store_loader: StoreLoader = FeatureStore.load,
        image_loader: ImageLoader = load_image,
        num_workers: int = 1,
    ):
        """Initialize the engine.

        Args:
            store_loader: Reads a FeatureStore from a database path. Raises
                StoreError when the database is unreadable or empty.
            image_loader: Decodes a query image by identifier.
            num_workers: Threads used to score bindings concurrently.
        """
        self.store_loader = store_loader
        self.image_loader = image_loader
        self.num_workers = num_workers
        self._stores: dict[Path, FeatureStore] = {}

    def store_for(self, binding: Binding) -> FeatureStore:
        """Return the loaded database of ``binding``.

        Raises:
            StoreError: If the database cannot be read or holds no records.
        """
        store = self._stores.get(binding.database)
        if store is None:
            store = self.store_loader(binding.database)
            if len(store) == 0:
                msg = f"Feature database is empty: {binding.database}"
                raise StoreError(msg)
            self._stores[binding.database] = store
        return store

    @staticmethod
    def validate(bindings: Sequence[Binding], top_n: int) -> None:
        """Reject malformed query settings before any I/O.

        Raises:
            ConfigurationError: On no bindings, non-positive top_n, or an
                invalid binding.
        """
        if not bindings:
            msg = "At least one binding is required"
            raise ConfigurationError(msg)
        if top_n <= 0:
            msg = f"top_n must be positive, got {top_n}"
            raise ConfigurationError(msg)
        for binding in bindings:
            binding.validate()

    def rank(self, query: str, bindings: Sequence[Binding], top_n: int) -> list[MatchResult]:
        """Rank catalog images by accumulated weighted distance to ``query``.

        When the query identifier is itself in a binding's database, its stored
        vector is reused and the record is excluded from that ranking. Only
        candidates scored by at least one binding appear in the result.

        Args:
            query: Query image identifier (path).
            bindings: Scoring channels.
            top_n: Maximum number of results.

        Returns:
            Results sorted by ascending distance, ties broken by identifier.
            Empty when no binding produced a score.

        Raises:
            ConfigurationError: If the settings are malformed.
            ExtractionError: If the query must be extracted but cannot be
                decoded or is too small for a binding's extractor.
        """
        self.validate(bindings, top_n)

        channels = self._prepare(query, bindings)
        if not channels:
            logger.warning("No usable feature databases, no matches")
            return []

        active_bindings, stores, query_vecs = zip(*channels, strict=True)
        queries = [query] * len(channels)
        if self.num_workers > 1 and len(channels) > 1:
            with ThreadPoolExecutor(max_workers=self.num_workers) as pool:
                partials = list(pool.map(_score_binding, active_bindings, stores, queries, query_vecs))
        else:
            partials = list(map(_score_binding, active_bindings, stores, queries, query_vecs))

        # Merge in binding order so sums do not depend on thread scheduling
        totals: dict[str, float] = {}
        for partial in partials:
            for identifier, distance in partial.items():
                totals[identifier] = totals.get(identifier, 0.0) + distance

        ranked = sorted(totals.items(), key=lambda item: (item[1], item[0]))
        results = [MatchResult(identifier=i, distance=d) for i, d in ranked[:top_n]]

        logger.info(
            f"Ranked {len(totals)} candidates over {len(channels)} binding(s), "
            f"returning {len(results)}"
        )
        return results

    def run(self, cfg: QueryConfig) -> list[MatchResult]:
        """Validate ``cfg`` and rank its target."""
        cfg.validate()
        return self.rank(cfg.target, cfg.bindings, cfg.top_n)

    def _prepare(
        self, query: str, bindings: Sequence[Binding]
    ) -> list[tuple[Binding, FeatureStore, npt.NDArray[np.float32]]]:
        """Load each binding's store and compute its query vector.

        Bindings whose store fails to load are skipped with a warning. The
        query image is decoded at most once.
        """
        channels = []
        query_img: npt.NDArray[Any] | None = None

        for binding in bindings:
            try:
                store = self.store_for(binding)
            except StoreError as e:
                logger.warning(f"Skipping {binding.to_spec()}: {e}")
                continue

            query_vec = store.lookup(query)
            if query_vec is not None:
                logger.info(f"Query '{query}' found in {binding.database}, reusing stored vector")
            else:
                logger.info(
                    f"Query '{query}' not in {binding.database}, extracting "
                    f"{binding.feature} at {binding.region}"
                )
                if query_img is None:
                    query_img = self.image_loader(query)
                extractor = get_extractor(binding.feature)
                query_vec = extractor.extract_region(query_img, binding.region)

            logger.debug(f"Binding {binding.to_spec()} ({binding.metric}, weight {binding.weight:g})")
            channels.append((binding, store, query_vec))

        return channels
