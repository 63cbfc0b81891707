"""Distance metrics between feature vectors (lower = more similar)."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import numpy as np
import numpy.typing as npt

logger = logging.getLogger(__name__)

#: Distance reported when two vectors cannot be compared (length mismatch).
INCOMPARABLE = float("inf")

#: Cosine distance of opposite vectors, also used when a vector has zero norm.
COSINE_MAX_DISTANCE = 2.0


class DistanceMetric(Protocol):
    """Protocol defining the interface for distance metrics."""

    name: str

    def compute_distance(self, vec1: npt.NDArray[Any], vec2: npt.NDArray[Any]) -> float:
        """Compute the distance between two equal-length vectors.

        Args:
            vec1: First feature vector.
            vec2: Second feature vector.

        Returns:
            Distance (lower = more similar), or INCOMPARABLE if the lengths differ.
        """
        ...

    def compute_batch_distance(
        self, vecs: npt.NDArray[Any], query: npt.NDArray[Any]
    ) -> npt.NDArray[np.float64]:
        """Compute distances between each row of ``vecs`` and ``query``.

        Args:
            vecs: Array of feature vectors (N, dims).
            query: Query vector (dims,).

        Returns:
            Array of distances (N,).
        """
        ...


def _comparable(name: str, vec1: npt.NDArray[Any], vec2: npt.NDArray[Any]) -> bool:
    """Check vector lengths, logging a warning when they differ."""
    if vec1.shape[-1] == vec2.shape[-1]:
        return True
    logger.warning(
        f"{name}: incomparable feature vectors (length {vec1.shape[-1]} vs "
        f"{vec2.shape[-1]}), scoring as {INCOMPARABLE}"
    )
    return False


class SumSquaredDistance:
    """Sum of squared element differences."""

    name = "ssd"

    def compute_distance(self, vec1: npt.NDArray[Any], vec2: npt.NDArray[Any]) -> float:
        if not _comparable(self.name, vec1, vec2):
            return INCOMPARABLE
        diff = vec1.astype(np.float64) - vec2.astype(np.float64)
        return float(np.dot(diff, diff))

    def compute_batch_distance(
        self, vecs: npt.NDArray[Any], query: npt.NDArray[Any]
    ) -> npt.NDArray[np.float64]:
        if not _comparable(self.name, vecs, query):
            return np.full(len(vecs), INCOMPARABLE)
        diff = vecs.astype(np.float64) - query.astype(np.float64)
        return np.einsum("ij,ij->i", diff, diff)


class HistogramIntersectionDistance:
    """One minus the histogram intersection.

    Only meaningful for histograms normalized to sum to 1, where it lies in
    [0, 1] and is 0 for identical inputs.
    """

    name = "hist_ix"

    def compute_distance(self, vec1: npt.NDArray[Any], vec2: npt.NDArray[Any]) -> float:
        if not _comparable(self.name, vec1, vec2):
            return INCOMPARABLE
        intersection = np.minimum(vec1.astype(np.float64), vec2.astype(np.float64)).sum()
        return float(1.0 - intersection)

    def compute_batch_distance(
        self, vecs: npt.NDArray[Any], query: npt.NDArray[Any]
    ) -> npt.NDArray[np.float64]:
        if not _comparable(self.name, vecs, query):
            return np.full(len(vecs), INCOMPARABLE)
        intersection = np.minimum(vecs.astype(np.float64), query.astype(np.float64)).sum(axis=1)
        return 1.0 - intersection


class CosineDistance:
    """One minus cosine similarity, in [0, 2].

    A zero-norm vector is maximally distant from everything.
    """

    name = "cosine"

    def compute_distance(self, vec1: npt.NDArray[Any], vec2: npt.NDArray[Any]) -> float:
        if not _comparable(self.name, vec1, vec2):
            return INCOMPARABLE
        a = vec1.astype(np.float64)
        b = vec2.astype(np.float64)
        norm1 = np.linalg.norm(a)
        norm2 = np.linalg.norm(b)
        if norm1 == 0 or norm2 == 0:
            return COSINE_MAX_DISTANCE
        similarity = float(np.dot(a, b) / (norm1 * norm2))
        # Rounding can push |similarity| just past 1
        return 1.0 - min(1.0, max(-1.0, similarity))

    def compute_batch_distance(
        self, vecs: npt.NDArray[Any], query: npt.NDArray[Any]
    ) -> npt.NDArray[np.float64]:
        if not _comparable(self.name, vecs, query):
            return np.full(len(vecs), INCOMPARABLE)
        mat = vecs.astype(np.float64)
        q = query.astype(np.float64)
        norms = np.linalg.norm(mat, axis=1) * np.linalg.norm(q)
        dots = mat @ q

        distances = np.full(len(mat), COSINE_MAX_DISTANCE)
        valid = norms > 0
        similarity = np.clip(dots[valid] / norms[valid], -1.0, 1.0)
        distances[valid] = 1.0 - similarity
        return distances
