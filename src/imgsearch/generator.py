"""Batch feature generation: image directory -> feature database files."""

from __future__ import annotations

import logging
from functools import partial
from pathlib import Path
from typing import Any

import numpy as np
import numpy.typing as npt
from tqdm import tqdm
from tqdm.contrib.concurrent import process_map

from .config import GenerateConfig
from .database import FeatureStore
from .errors import ConfigurationError, ExtractionError
from .images import load_image
from .models import FeatureRecord, GenerationReport
from .regions import Region
from .registry import FeatureType, get_extractor

logger = logging.getLogger(__name__)

# Per image: one vector (or None) and one error message (or None) per feature
_WorkerResult = tuple[list[npt.NDArray[np.float32] | None], list[str | None]]


def find_images(image_dir: Path, extensions: frozenset[str]) -> list[Path]:
    """Get all image files directly inside ``image_dir``.

    Args:
        image_dir: Directory to scan (not recursive).
        extensions: Accepted lower-case suffixes, including the dot.

    Returns:
        Sorted list of image file paths.
    """
    return sorted(
        p for p in image_dir.iterdir()
        if p.is_file() and p.suffix.lower() in extensions
    )


def _worker_extract(path: Path, features: tuple[FeatureType, ...], region: Region) -> _WorkerResult:
    """Worker function for parallel feature extraction.

    Decodes the image once and runs every requested extractor on it.

    Args:
        path: Image file.
        features: Feature types to extract.
        region: Region to extract from.

    Returns:
        Tuple of (vectors, errors), each aligned with ``features``.
    """
    try:
        img = load_image(str(path))
    except ExtractionError as e:
        return [None] * len(features), [str(e)] * len(features)

    vectors: list[npt.NDArray[np.float32] | None] = []
    errors: list[str | None] = []
    for feature in features:
        extractor = get_extractor(feature)
        try:
            vectors.append(extractor.extract_region(img, region))
            errors.append(None)
        except ExtractionError as e:
            vectors.append(None)
            errors.append(str(e))
    return vectors, errors


class FeatureGenerator:
    """Builds one feature database per feature type from an image folder."""

    def __init__(self, cfg: GenerateConfig):
        """Initialize generator with configuration.

        Args:
            cfg: Generation settings.

        Raises:
            ConfigurationError: If the settings are invalid.
        """
        cfg.validate()
        self.cfg = cfg

    def image_files(self) -> list[Path]:
        """Image files to process, in output order."""
        return find_images(self.cfg.input_dir, self.cfg.extensions)

    def _extract_all(self, files: list[Path]) -> list[_WorkerResult]:
        """Run the extraction worker over ``files``, preserving order."""
        worker = partial(_worker_extract, features=tuple(self.cfg.features), region=self.cfg.region)
        desc = f"Extracting {', '.join(map(str, self.cfg.features))}"

        if self.cfg.num_workers == 1:
            return [worker(path) for path in tqdm(files, desc=desc)]

        results: list[_WorkerResult] = process_map(
            worker,
            files,
            max_workers=self.cfg.num_workers,
            chunksize=self.cfg.chunksize,
            desc=desc,
        )
        return results

    def generate(self) -> list[GenerationReport]:
        """Extract features for every image and write the databases.

        Images that cannot be decoded or are too small for an extractor are
        logged and left out of that feature's database. Existing output
        files are overwritten.

        Returns:
            One report per feature type.

        Raises:
            ConfigurationError: If the input folder holds no images.
        """
        files = self.image_files()
        if not files:
            msg = f"No images found in {self.cfg.input_dir}"
            raise ConfigurationError(msg)

        logger.info(f"Found {len(files)} images in {self.cfg.input_dir}")
        logger.info(f"Features: {', '.join(map(str, self.cfg.features))}; region: {self.cfg.region}")

        results = self._extract_all(files)

        reports = []
        for k, feature in enumerate(self.cfg.features):
            records: list[FeatureRecord] = []
            skipped = 0
            for path, (vectors, errors) in zip(files, results, strict=True):
                vector = vectors[k]
                if vector is None:
                    logger.warning(f"Skipping {path} for {feature}: {errors[k]}")
                    skipped += 1
                    continue
                records.append(FeatureRecord(identifier=str(path), vector=vector))

            output = self.cfg.output_path(feature)
            written = FeatureStore.write(output, records)
            if not written:
                logger.warning(f"No {feature} features extracted, {output} is empty")

            reports.append(GenerationReport(
                feature=str(feature),
                region=str(self.cfg.region),
                output=output,
                processed=written,
                skipped=skipped,
            ))
        return reports


def generate_features(cfg: GenerateConfig) -> list[GenerationReport]:
    """Convenience wrapper: build a FeatureGenerator and run it."""
    return FeatureGenerator(cfg).generate()


def extract_one(path: str, feature: FeatureType, region: Region = Region.WHOLE) -> npt.NDArray[Any]:
    """Decode one image and extract a single feature vector from it.

    Raises:
        ConfigurationError: If ``feature`` is UNKNOWN.
        ExtractionError: If the image cannot be decoded or is too small.
    """
    extractor = get_extractor(feature)
    return extractor.extract_region(load_image(path), region)
