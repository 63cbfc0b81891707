"""Exception hierarchy for imgsearch."""


class ImageSearchError(Exception):
    """Base class for all imgsearch errors."""


class ConfigurationError(ImageSearchError, ValueError):
    """Malformed query or generation settings.

    Raised for unknown feature/metric/region identifiers, non-positive
    weights and missing arguments, always before any extraction runs.
    """


class ExtractionError(ImageSearchError):
    """An image could not be decoded or is too small for an extractor."""


class StoreError(ImageSearchError):
    """A feature database is empty or cannot be read."""
