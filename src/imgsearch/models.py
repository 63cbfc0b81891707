"""Pydantic models for type-safe data structures."""

from pathlib import Path

import numpy as np
from pydantic import BaseModel, ConfigDict, Field


class FeatureRecord(BaseModel):
    """One row of a feature database.

    Attributes:
        identifier: Image path or key the vector was computed from.
        vector: Float32 feature vector.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    identifier: str
    vector: np.ndarray


class MatchResult(BaseModel):
    """Single ranked match for a query.

    Attributes:
        identifier: Identifier of the matched catalog image.
        distance: Accumulated weighted distance (lower is more similar).
            Infinite when a binding could not compare the vectors; written
            as null in JSON.
    """
    model_config = ConfigDict(ser_json_inf_nan="null")

    identifier: str
    distance: float


class GenerationReport(BaseModel):
    """Summary of one batch feature generation run.

    Attributes:
        feature: Feature identifier that was extracted.
        region: Region the features were computed on.
        output: Path of the written feature database.
        processed: Number of rows written.
        skipped: Number of images that failed extraction.
    """
    feature: str
    region: str
    output: Path
    processed: int = Field(ge=0)
    skipped: int = Field(ge=0)
