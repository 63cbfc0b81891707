"""Closed lookup tables from feature and metric identifiers to implementations.

The tables are built once at import time and exposed read-only. Unknown
identifiers resolve to an ``UNKNOWN`` sentinel instead of raising, so callers
can report the failure with their own context.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType

from .errors import ConfigurationError
from .extractors import (
    CIELabHistogram,
    FeatureExtractor,
    PatchBaseline,
    RGBHistogram3D,
    RGChromaHistogram2D,
    SobelMagnitudeTextureHistogram,
)
from .metrics import (
    CosineDistance,
    DistanceMetric,
    HistogramIntersectionDistance,
    SumSquaredDistance,
)


class FeatureType(str, Enum):
    """Feature extraction algorithms."""

    BASELINE = "baseline"
    RG_HIST = "rghist2d"
    RGB_HIST = "rgbhist3d"
    SOBEL_MAGNITUDE = "magnitude"
    CIELAB_HIST = "cielab"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value


class MetricType(str, Enum):
    """Distance metrics."""

    SSD = "ssd"
    HIST_INTERSECTION = "hist_ix"
    COSINE = "cosine"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value


_EXTRACTORS: MappingProxyType[FeatureType, FeatureExtractor] = MappingProxyType({
    FeatureType.BASELINE: PatchBaseline(),
    FeatureType.RG_HIST: RGChromaHistogram2D(),
    FeatureType.RGB_HIST: RGBHistogram3D(),
    FeatureType.SOBEL_MAGNITUDE: SobelMagnitudeTextureHistogram(),
    FeatureType.CIELAB_HIST: CIELabHistogram(),
})

_METRICS: MappingProxyType[MetricType, DistanceMetric] = MappingProxyType({
    MetricType.SSD: SumSquaredDistance(),
    MetricType.HIST_INTERSECTION: HistogramIntersectionDistance(),
    MetricType.COSINE: CosineDistance(),
})


def list_features() -> list[str]:
    """Return all known feature identifiers."""
    return [ft.value for ft in _EXTRACTORS]


def list_metrics() -> list[str]:
    """Return all known metric identifiers."""
    return [mt.value for mt in _METRICS]


def resolve_feature(name: str) -> FeatureType:
    """Map a feature identifier to its FeatureType, or FeatureType.UNKNOWN."""
    try:
        feature = FeatureType(name)
    except ValueError:
        return FeatureType.UNKNOWN
    return feature


def resolve_metric(name: str) -> MetricType:
    """Map a metric identifier to its MetricType, or MetricType.UNKNOWN."""
    try:
        metric = MetricType(name)
    except ValueError:
        return MetricType.UNKNOWN
    return metric


def feature_type_to_string(feature: FeatureType) -> str:
    """Inverse of resolve_feature for every known identifier."""
    return feature.value


def metric_type_to_string(metric: MetricType) -> str:
    """Inverse of resolve_metric for every known identifier."""
    return metric.value


def create_extractor(feature: FeatureType) -> FeatureExtractor | None:
    """Return the shared extractor for ``feature``, or None for UNKNOWN."""
    return _EXTRACTORS.get(feature)


def create_metric(metric: MetricType) -> DistanceMetric | None:
    """Return the shared metric for ``metric``, or None for UNKNOWN."""
    return _METRICS.get(metric)


def get_extractor(feature: FeatureType) -> FeatureExtractor:
    """Return the shared extractor for ``feature``.

    Raises:
        ConfigurationError: If ``feature`` is UNKNOWN.
    """
    extractor = _EXTRACTORS.get(feature)
    if extractor is None:
        msg = f"Unknown feature type '{feature}' (expected one of: {', '.join(list_features())})"
        raise ConfigurationError(msg)
    return extractor


def get_metric(metric: MetricType) -> DistanceMetric:
    """Return the shared metric for ``metric``.

    Raises:
        ConfigurationError: If ``metric`` is UNKNOWN.
    """
    impl = _METRICS.get(metric)
    if impl is None:
        msg = f"Unknown metric '{metric}' (expected one of: {', '.join(list_metrics())})"
        raise ConfigurationError(msg)
    return impl
