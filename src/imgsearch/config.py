#!/usr/bin/env python3
"""Configuration dataclasses and binding-spec parsing for imgsearch."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigurationError
from .images import IMAGE_EXTENSIONS
from .regions import Region, parse_region
from .registry import (
    FeatureType,
    MetricType,
    list_features,
    list_metrics,
    resolve_feature,
    resolve_metric,
)

DEFAULT_TOP_N = 10
DATABASE_PREFIX = "fv"


def _env_int(name: str, default: int, minimum: int) -> int:
    """Read an integer override from the environment.

    Args:
        name: Environment variable name.
        default: Value used when the variable is unset or blank.
        minimum: Smallest accepted value.

    Raises:
        ConfigurationError: If the value is not an integer or is below
            ``minimum``.
    """
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        msg = f"{name} must be an integer, got '{raw}'"
        raise ConfigurationError(msg) from None
    if value < minimum:
        msg = f"{name} must be >= {minimum}, got {value}"
        raise ConfigurationError(msg)
    return value


def default_top_n() -> int:
    """Result count, overridable with IMGSEARCH_TOP_N."""
    return _env_int("IMGSEARCH_TOP_N", DEFAULT_TOP_N, minimum=1)


def default_workers() -> int | None:
    """Generation workers from IMGSEARCH_WORKERS; 0 or unset means all CPUs."""
    return _env_int("IMGSEARCH_WORKERS", 0, minimum=0) or None


def database_filename(feature: FeatureType, region: Region) -> str:
    """Conventional database filename for a (feature, region) pair.

    Example: ``fv_rgbhist3d_top.csv``.
    """
    return f"{DATABASE_PREFIX}_{feature}_{region}.csv"


@dataclass(frozen=True)
class Binding:
    """One scoring channel: features of a region compared with a metric.

    Attributes:
        feature: Feature extraction algorithm.
        region: Image region the features describe.
        metric: Distance metric used to compare vectors.
        database: Feature database file holding the catalog vectors.
        weight: Multiplier applied to this channel's distances.
    """

    feature: FeatureType
    region: Region
    metric: MetricType
    database: Path
    weight: float = 1.0

    def validate(self) -> None:
        """Validate the binding.

        Raises:
            ConfigurationError: On an unknown feature or metric or a weight
                that is not a positive finite number.
        """
        if self.feature is FeatureType.UNKNOWN:
            msg = f"Unknown feature type for {self.database} (expected one of: {', '.join(list_features())})"
            raise ConfigurationError(msg)
        if self.metric is MetricType.UNKNOWN:
            msg = f"Unknown metric for {self.database} (expected one of: {', '.join(list_metrics())})"
            raise ConfigurationError(msg)
        if not math.isfinite(self.weight) or self.weight <= 0:
            msg = f"Weight must be positive, got {self.weight} for {self.database}"
            raise ConfigurationError(msg)

    def to_spec(self) -> str:
        """Render as ``feature:region:metric:weight=database``."""
        return f"{self.feature}:{self.region}:{self.metric}:{self.weight:g}={self.database}"


def parse_binding_spec(spec: str, default_metric: MetricType | None = None) -> Binding:
    """Parse a binding specification.

    Accepted forms:
        ``feature:region:metric[:weight]=database.csv``
        ``database.csv`` named ``fv_<feature>_<region>.csv``, which takes its
        metric from ``default_metric``.

    Args:
        spec: Specification string.
        default_metric: Metric for the bare-filename form.

    Returns:
        A validated Binding.

    Raises:
        ConfigurationError: If the spec is malformed or names an unknown
            feature, region or metric, or a non-positive weight.
    """
    spec = spec.strip()
    if "=" not in spec:
        return infer_binding_from_filename(spec, default_metric)

    lhs, rhs = (part.strip() for part in spec.split("=", 1))
    if not rhs:
        msg = f"Missing database path in spec '{spec}'"
        raise ConfigurationError(msg)

    parts = [p.strip() for p in lhs.split(":")]
    if len(parts) not in (3, 4):
        msg = f"Invalid spec '{spec}' (expected feature:region:metric[:weight]=database)"
        raise ConfigurationError(msg)

    feature = resolve_feature(parts[0])
    if feature is FeatureType.UNKNOWN:
        msg = f"Unknown feature '{parts[0]}' in spec '{spec}' (expected one of: {', '.join(list_features())})"
        raise ConfigurationError(msg)
    region = parse_region(parts[1])
    metric = resolve_metric(parts[2])
    if metric is MetricType.UNKNOWN:
        msg = f"Unknown metric '{parts[2]}' in spec '{spec}' (expected one of: {', '.join(list_metrics())})"
        raise ConfigurationError(msg)

    weight = 1.0
    if len(parts) == 4:
        try:
            weight = float(parts[3])
        except ValueError:
            msg = f"Invalid weight '{parts[3]}' in spec '{spec}'"
            raise ConfigurationError(msg) from None

    binding = Binding(feature, region, metric, Path(rhs), weight)
    binding.validate()
    return binding


def infer_binding_from_filename(path: str, metric: MetricType | None) -> Binding:
    """Build a binding from a database named ``fv_<feature>_<region>.csv``.

    Raises:
        ConfigurationError: If the name does not follow the convention or no
            metric is given.
    """
    db = Path(path)
    parts = db.stem.split("_")
    if len(parts) != 3 or parts[0] != DATABASE_PREFIX:
        msg = (
            f"Cannot infer feature and region from '{path}' "
            f"(expected {DATABASE_PREFIX}_<feature>_<region>.csv or a full spec)"
        )
        raise ConfigurationError(msg)
    feature = resolve_feature(parts[1])
    if feature is FeatureType.UNKNOWN:
        msg = f"Unknown feature '{parts[1]}' in database name '{path}'"
        raise ConfigurationError(msg)
    if metric is None:
        msg = f"No metric given for '{path}'; pass --metric or use a full spec"
        raise ConfigurationError(msg)

    binding = Binding(feature, parse_region(parts[2]), metric, db)
    binding.validate()
    return binding


# Named multi-channel queries: (feature, region, metric) per channel.
# "cielab" pairs color with Sobel magnitude texture, there is no Gabor extractor.
PRESETS: dict[str, tuple[tuple[FeatureType, Region, MetricType], ...]] = {
    "baseline": (
        (FeatureType.BASELINE, Region.WHOLE, MetricType.SSD),
    ),
    "rghist": (
        (FeatureType.RG_HIST, Region.WHOLE, MetricType.HIST_INTERSECTION),
    ),
    "rgbhist": (
        (FeatureType.RGB_HIST, Region.WHOLE, MetricType.HIST_INTERSECTION),
    ),
    "multihist": (
        (FeatureType.RGB_HIST, Region.TOP, MetricType.HIST_INTERSECTION),
        (FeatureType.RGB_HIST, Region.BOTTOM, MetricType.HIST_INTERSECTION),
    ),
    "texture": (
        (FeatureType.RGB_HIST, Region.WHOLE, MetricType.HIST_INTERSECTION),
        (FeatureType.SOBEL_MAGNITUDE, Region.WHOLE, MetricType.HIST_INTERSECTION),
    ),
    "composite": (
        (FeatureType.RG_HIST, Region.CENTER, MetricType.HIST_INTERSECTION),
        (FeatureType.RGB_HIST, Region.WHOLE, MetricType.HIST_INTERSECTION),
        (FeatureType.CIELAB_HIST, Region.CENTER, MetricType.HIST_INTERSECTION),
    ),
    "cielab": (
        (FeatureType.CIELAB_HIST, Region.WHOLE, MetricType.HIST_INTERSECTION),
        (FeatureType.SOBEL_MAGNITUDE, Region.WHOLE, MetricType.COSINE),
    ),
}


def preset_database(data_dir: Path, feature: FeatureType, region: Region) -> Path:
    """Locate the database a preset channel reads from ``data_dir``.

    Older data directories name the top half ``up`` (``fv_rgbhist3d_up.csv``);
    that file is used when the ``top`` one does not exist.
    """
    path = data_dir / database_filename(feature, region)
    if region is Region.TOP and not path.exists():
        legacy = data_dir / f"{DATABASE_PREFIX}_{feature}_up.csv"
        if legacy.exists():
            return legacy
    return path


def expand_preset(name: str, data_dir: Path, weights: list[float] | None = None) -> list[Binding]:
    """Expand a named preset into bindings against ``data_dir``.

    Args:
        name: Preset name (see PRESETS).
        data_dir: Directory holding the conventionally named databases.
        weights: Optional per-channel weights; missing entries default to 1.0.

    Returns:
        Validated bindings in preset order.

    Raises:
        ConfigurationError: On an unknown preset, more weights than channels
            or an invalid weight.
    """
    if name not in PRESETS:
        msg = f"Unknown preset '{name}' (expected one of: {', '.join(PRESETS)})"
        raise ConfigurationError(msg)
    channels = PRESETS[name]
    weights = list(weights or [])
    if len(weights) > len(channels):
        msg = f"Preset '{name}' has {len(channels)} channels but {len(weights)} weights were given"
        raise ConfigurationError(msg)
    weights += [1.0] * (len(channels) - len(weights))

    bindings = []
    for (feature, region, metric), weight in zip(channels, weights, strict=True):
        binding = Binding(feature, region, metric, preset_database(data_dir, feature, region), weight)
        binding.validate()
        bindings.append(binding)
    return bindings


@dataclass
class QueryConfig:
    """Settings for one ranking query."""

    target: str
    bindings: list[Binding] = field(default_factory=list)
    top_n: int = DEFAULT_TOP_N
    num_workers: int = 1

    def validate(self) -> None:
        """Validate query parameters.

        Raises:
            ConfigurationError: If any parameter is invalid.
        """
        if not self.target:
            msg = "A target image is required"
            raise ConfigurationError(msg)
        if not self.bindings:
            msg = "At least one database binding is required"
            raise ConfigurationError(msg)
        if self.top_n <= 0:
            msg = f"top_n must be positive, got {self.top_n}"
            raise ConfigurationError(msg)
        if self.num_workers < 1:
            msg = f"num_workers must be >= 1, got {self.num_workers}"
            raise ConfigurationError(msg)
        for binding in self.bindings:
            binding.validate()


@dataclass
class GenerateConfig:
    """Settings for batch feature generation over an image directory."""

    input_dir: Path
    features: list[FeatureType]
    output_dir: Path = Path(".")
    region: Region = Region.WHOLE
    # Explicit output file, only valid with a single feature
    output_file: Path | None = None
    num_workers: int | None = None  # None = all CPUs
    chunksize: int = 16
    extensions: frozenset[str] = IMAGE_EXTENSIONS

    def output_path(self, feature: FeatureType) -> Path:
        """Database path written for ``feature``."""
        if self.output_file is not None:
            return self.output_file
        return self.output_dir / database_filename(feature, self.region)

    def validate(self) -> None:
        """Validate generation parameters.

        Raises:
            ConfigurationError: If any parameter is invalid.
        """
        if not self.features:
            msg = "At least one feature type is required"
            raise ConfigurationError(msg)
        for feature in self.features:
            if feature is FeatureType.UNKNOWN:
                msg = f"Unknown feature type (expected one of: {', '.join(list_features())})"
                raise ConfigurationError(msg)
        if self.output_file is not None and len(self.features) > 1:
            msg = "An explicit output file needs exactly one feature type"
            raise ConfigurationError(msg)
        if self.num_workers is not None and self.num_workers < 1:
            msg = f"num_workers must be >= 1, got {self.num_workers}"
            raise ConfigurationError(msg)
        if self.chunksize < 1:
            msg = f"chunksize must be >= 1, got {self.chunksize}"
            raise ConfigurationError(msg)
        if not self.input_dir.is_dir():
            msg = f"Image folder not found: {self.input_dir}"
            raise ConfigurationError(msg)
