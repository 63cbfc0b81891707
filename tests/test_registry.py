"""
Tests for the feature and metric registries.
"""

import pytest

from imgsearch.errors import ConfigurationError
from imgsearch.extractors import FeatureExtractor
from imgsearch.registry import (
    FeatureType,
    MetricType,
    create_extractor,
    create_metric,
    feature_type_to_string,
    get_extractor,
    get_metric,
    list_features,
    list_metrics,
    metric_type_to_string,
    resolve_feature,
    resolve_metric,
)


class TestFeatureRegistry:
    """Test feature identifier lookup."""

    def test_known_identifiers(self):
        assert list_features() == ["baseline", "rghist2d", "rgbhist3d", "magnitude", "cielab"]

    @pytest.mark.parametrize("name", list_features())
    def test_round_trip(self, name):
        feature = resolve_feature(name)
        assert feature is not FeatureType.UNKNOWN
        assert feature_type_to_string(feature) == name

    @pytest.mark.parametrize("name", list_features())
    def test_create_extractor(self, name):
        extractor = create_extractor(resolve_feature(name))
        assert isinstance(extractor, FeatureExtractor)
        assert extractor.name == name

    def test_unknown_identifier(self):
        assert resolve_feature("gabor") is FeatureType.UNKNOWN
        assert resolve_feature("") is FeatureType.UNKNOWN
        assert create_extractor(FeatureType.UNKNOWN) is None

    def test_extractors_are_shared(self):
        assert create_extractor(FeatureType.RGB_HIST) is create_extractor(FeatureType.RGB_HIST)


class TestMetricRegistry:
    """Test metric identifier lookup."""

    def test_known_identifiers(self):
        assert list_metrics() == ["ssd", "hist_ix", "cosine"]

    @pytest.mark.parametrize("name", list_metrics())
    def test_round_trip(self, name):
        metric = resolve_metric(name)
        assert metric is not MetricType.UNKNOWN
        assert metric_type_to_string(metric) == name
        assert create_metric(metric).name == name

    def test_unknown_identifier(self):
        assert resolve_metric("euclidean") is MetricType.UNKNOWN
        assert create_metric(MetricType.UNKNOWN) is None


class TestStrictLookup:
    """Test lookups that reject the UNKNOWN sentinel."""

    def test_known(self):
        assert get_extractor(FeatureType.CIELAB_HIST) is create_extractor(FeatureType.CIELAB_HIST)
        assert get_metric(MetricType.COSINE) is create_metric(MetricType.COSINE)

    def test_unknown_feature(self):
        with pytest.raises(ConfigurationError, match="Unknown feature"):
            get_extractor(FeatureType.UNKNOWN)

    def test_unknown_metric(self):
        with pytest.raises(ConfigurationError, match="Unknown metric"):
            get_metric(MetricType.UNKNOWN)
