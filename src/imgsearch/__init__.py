"""imgsearch - Content-based image retrieval over precomputed feature databases."""

from .config import Binding, GenerateConfig, QueryConfig, expand_preset, parse_binding_spec
from .database import FeatureStore
from .engine import MatchingEngine
from .errors import ConfigurationError, ExtractionError, ImageSearchError, StoreError
from .generator import FeatureGenerator
from .models import FeatureRecord, GenerationReport, MatchResult
from .regions import Region, region_rect
from .registry import FeatureType, MetricType, create_extractor, create_metric, get_extractor, get_metric

__version__ = "0.1.0"

__all__ = [
    "Binding",
    "ConfigurationError",
    "ExtractionError",
    "FeatureGenerator",
    "FeatureRecord",
    "FeatureStore",
    "FeatureType",
    "GenerateConfig",
    "GenerationReport",
    "ImageSearchError",
    "MatchResult",
    "MatchingEngine",
    "MetricType",
    "QueryConfig",
    "Region",
    "StoreError",
    "create_extractor",
    "create_metric",
    "expand_preset",
    "get_extractor",
    "get_metric",
    "parse_binding_spec",
    "region_rect",
]
