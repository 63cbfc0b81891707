"""Feature database stored as flat comma-separated records.

Each line holds one image: ``<identifier>, <float>, <float>, ...``. Floats are
written in their shortest float32 round-trip form, so a file read back yields
the exact vectors that were written.
"""

from __future__ import annotations

import csv
import logging
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

import numpy as np
import numpy.typing as npt

from .errors import StoreError
from .models import FeatureRecord

logger = logging.getLogger(__name__)

_NEEDS_QUOTING = (",", '"', "\n", "\r")


def _format_identifier(identifier: str) -> str:
    """Quote an identifier CSV-style when it contains a delimiter or quote."""
    if identifier != identifier.strip() or any(c in identifier for c in _NEEDS_QUOTING):
        return '"' + identifier.replace('"', '""') + '"'
    return identifier


def _format_row(identifier: str, vector: npt.NDArray[Any]) -> str:
    values = (
        np.format_float_positional(v, unique=True, trim="-")
        for v in np.asarray(vector, dtype=np.float32)
    )
    return ", ".join([_format_identifier(identifier), *values])


class FeatureStore:
    """Read-only, ordered collection of (identifier, vector) records.

    Identifiers and vectors are kept as parallel lists. Rows may differ in
    length (e.g. a malformed line in a hand-edited file); such rows score as
    incomparable instead of failing the whole ranking.
    """

    def __init__(
        self,
        identifiers: list[str],
        vectors: list[npt.NDArray[np.float32]],
        source: Path | None = None,
    ):
        """Build a store from parallel identifier and vector lists.

        Args:
            identifiers: Image identifiers, one per record.
            vectors: Feature vectors, one per record.
            source: File the records were read from, if any.

        Raises:
            ValueError: If the two lists differ in length.
        """
        if len(identifiers) != len(vectors):
            msg = f"{len(identifiers)} identifiers but {len(vectors)} vectors"
            raise ValueError(msg)
        self.identifiers = list(identifiers)
        self.vectors = [np.asarray(v, dtype=np.float32) for v in vectors]
        self.source = source
        self._index: dict[str, int] = {}
        for i, identifier in enumerate(self.identifiers):
            self._index.setdefault(identifier, i)
        self._matrix: npt.NDArray[np.float32] | None = None

    @classmethod
    def from_records(cls, records: Iterable[FeatureRecord], source: Path | None = None) -> FeatureStore:
        """Build a store from FeatureRecord models."""
        records = list(records)
        return cls([r.identifier for r in records], [r.vector for r in records], source)

    @classmethod
    def load(cls, path: str | Path) -> FeatureStore:
        """Read a feature database file.

        Blank lines are ignored. Lines with an unparsable value are skipped
        with a warning.

        Args:
            path: Database file path.

        Returns:
            Loaded store.

        Raises:
            StoreError: If the file cannot be read or holds no records.
        """
        path = Path(path)
        identifiers: list[str] = []
        vectors: list[npt.NDArray[np.float32]] = []

        try:
            with path.open(newline="", encoding="utf-8") as f:
                reader = csv.reader(f, skipinitialspace=True)
                for row in reader:
                    if not row or (len(row) == 1 and not row[0].strip()):
                        continue
                    identifier = row[0]
                    try:
                        vector = np.array([float(v) for v in row[1:]], dtype=np.float32)
                    except ValueError as e:
                        logger.warning(f"{path}:{reader.line_num}: skipping malformed record ({e})")
                        continue
                    identifiers.append(identifier)
                    vectors.append(vector)
        except (OSError, UnicodeDecodeError, csv.Error) as e:
            msg = f"Cannot read feature database {path}: {e}"
            raise StoreError(msg) from e

        if not identifiers:
            msg = f"Feature database is empty: {path}"
            raise StoreError(msg)

        logger.info(f"Loaded {len(identifiers)} feature vectors from {path}")
        return cls(identifiers, vectors, source=path)

    @staticmethod
    def write(path: str | Path, records: Iterable[FeatureRecord]) -> int:
        """Write records to ``path``, truncating any existing file.

        Args:
            path: Destination file.
            records: Records to write, in order.

        Returns:
            Number of records written.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        count = 0
        with path.open("w", encoding="utf-8", newline="\n") as f:
            for record in records:
                f.write(_format_row(record.identifier, record.vector))
                f.write("\n")
                count += 1
        logger.info(f"Wrote {count} feature vectors to {path}")
        return count

    def save(self, path: str | Path) -> int:
        """Write this store to ``path`` (truncating)."""
        return self.write(path, self)

    def lookup(self, identifier: str) -> npt.NDArray[np.float32] | None:
        """Return the vector stored for ``identifier`` (first occurrence), or None."""
        i = self._index.get(identifier)
        return None if i is None else self.vectors[i]

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._index

    @property
    def matrix(self) -> npt.NDArray[np.float32] | None:
        """All vectors stacked as (N, D), or None when row lengths differ."""
        if self._matrix is None and self.vectors:
            lengths = {len(v) for v in self.vectors}
            if len(lengths) == 1:
                self._matrix = np.vstack(self.vectors)
        return self._matrix

    def __len__(self) -> int:
        return len(self.identifiers)

    def __iter__(self) -> Iterator[FeatureRecord]:
        for identifier, vector in zip(self.identifiers, self.vectors, strict=True):
            yield FeatureRecord(identifier=identifier, vector=vector)

    def __repr__(self) -> str:
        return f"FeatureStore({len(self)} records, source={self.source})"
