"""Feature extractors turning an image region into a fixed-length float32 vector.

All extractors take BGR uint8 arrays as decoded by OpenCV. Grayscale input is
accepted and promoted to BGR where a color histogram needs three channels.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

import cv2
import numpy as np
import numpy.typing as npt

from .errors import ExtractionError
from .images import crop
from .regions import Region, region_rect

logger = logging.getLogger(__name__)

# Constants for magic values
_COLOR_CHANNELS = 3
_GRAYSCALE_CHANNELS = 2
_PATCH_SIZE = 7
_SOBEL_SUPPORT = 3

# Linear sRGB -> XYZ (D65) and the D65 reference white
_SRGB_TO_XYZ = np.array(
    [
        [0.4124, 0.3576, 0.1805],
        [0.2126, 0.7152, 0.0722],
        [0.0193, 0.1192, 0.9505],
    ],
    dtype=np.float64,
)
_D65_WHITE = np.array([0.95047, 1.00000, 1.08883], dtype=np.float64)
_LAB_EPSILON = 0.008856


def _ensure_grayscale(img: npt.NDArray[Any]) -> npt.NDArray[Any]:
    """Convert image to single-channel intensity if needed."""
    if img.ndim == _COLOR_CHANNELS:
        return cv2.cvtColor(np.ascontiguousarray(img), cv2.COLOR_BGR2GRAY)
    return img


def _ensure_bgr(img: npt.NDArray[Any]) -> npt.NDArray[Any]:
    """Convert a grayscale image to three-channel BGR if needed."""
    if img.ndim == _GRAYSCALE_CHANNELS:
        return cv2.cvtColor(np.ascontiguousarray(img), cv2.COLOR_GRAY2BGR)
    return img


def _normalized(hist: npt.NDArray[Any], pixel_count: int) -> npt.NDArray[np.float32]:
    """Divide bin counts by the number of pixels they were built from."""
    return (hist.astype(np.float64) / pixel_count).astype(np.float32)


class FeatureExtractor(ABC):
    """Base class for the closed set of feature extraction algorithms.

    Subclasses implement ``_compute`` on an already size-checked region.
    """

    #: Identifier used in database filenames and binding specs.
    name: str = ""
    #: Smallest width and height the algorithm can work on.
    min_size: int = 1
    #: Output length, or None when it depends on the channel count.
    dims: int | None = None

    def extract(self, img: npt.NDArray[Any]) -> npt.NDArray[np.float32]:
        """Compute the feature vector of an image region.

        Args:
            img: Region pixels, BGR (H, W, 3) or grayscale (H, W), uint8.

        Returns:
            1-D float32 feature vector.

        Raises:
            ExtractionError: If the region is empty or smaller than
                ``min_size`` in either dimension.
        """
        h, w = img.shape[:2]
        if h < self.min_size or w < self.min_size:
            msg = (
                f"Region {w}x{h} too small for '{self.name}' "
                f"(needs at least {self.min_size}x{self.min_size})"
            )
            raise ExtractionError(msg)
        return self._compute(img)

    def extract_region(self, img: npt.NDArray[Any], region: Region) -> npt.NDArray[np.float32]:
        """Crop ``img`` to ``region`` and extract features from the crop."""
        h, w = img.shape[:2]
        rect = region_rect(region, w, h)
        logger.debug(f"Extracting '{self.name}' at {region} {tuple(rect)}")
        return self.extract(crop(img, rect))

    @abstractmethod
    def _compute(self, img: npt.NDArray[Any]) -> npt.NDArray[np.float32]:
        """Compute features for a region that passed the size check."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class PatchBaseline(FeatureExtractor):
    """Raw pixels of the centered 7x7 block, scaled to [0, 1].

    Output length is 7 * 7 * channels (147 for a color image).
    """

    name = "baseline"
    min_size = _PATCH_SIZE

    def _compute(self, img: npt.NDArray[Any]) -> npt.NDArray[np.float32]:
        h, w = img.shape[:2]
        start_y = (h - _PATCH_SIZE) // 2
        start_x = (w - _PATCH_SIZE) // 2
        patch = img[start_y:start_y + _PATCH_SIZE, start_x:start_x + _PATCH_SIZE]
        return patch.reshape(-1).astype(np.float32) / np.float32(255.0)


class RGChromaHistogram2D(FeatureExtractor):
    """16x16 histogram of normalized chromaticity r = R/(R+G+B), g = G/(R+G+B).

    Bins are laid out r-major: index = r_bin * 16 + g_bin.
    """

    name = "rghist2d"
    bins = 16
    dims = bins * bins

    def _compute(self, img: npt.NDArray[Any]) -> npt.NDArray[np.float32]:
        bgr = _ensure_bgr(img).astype(np.float32)
        blue, green, red = bgr[..., 0], bgr[..., 1], bgr[..., 2]

        # Floor the denominator at 1 so black pixels land in bin (0, 0)
        total = np.maximum(blue + green + red, 1.0)
        scale = self.bins - 1
        r_idx = (red / total * scale + 0.5).astype(np.intp)
        g_idx = (green / total * scale + 0.5).astype(np.intp)

        flat = (r_idx * self.bins + g_idx).ravel()
        hist = np.bincount(flat, minlength=self.dims)
        return _normalized(hist, flat.size)


class RGBHistogram3D(FeatureExtractor):
    """8x8x8 joint histogram over R, G, B, indexed (r, g, b)."""

    name = "rgbhist3d"
    bins = 8
    dims = bins ** 3

    def _compute(self, img: npt.NDArray[Any]) -> npt.NDArray[np.float32]:
        bgr = _ensure_bgr(img).astype(np.int32)
        idx = (bgr * self.bins) // 256
        blue, green, red = idx[..., 0], idx[..., 1], idx[..., 2]

        flat = ((red * self.bins + green) * self.bins + blue).ravel()
        hist = np.bincount(flat, minlength=self.dims)
        return _normalized(hist, flat.size)


class SobelMagnitudeTextureHistogram(FeatureExtractor):
    """256-bin histogram of Sobel gradient magnitude on the intensity image.

    Both gradients use the separable 3-tap pair [-1, 0, 1] and [1, 2, 1].
    Absolute gradients are saturated to uint8 before the magnitude is taken,
    and the magnitude is clamped to [0, 255].
    """

    name = "magnitude"
    min_size = _SOBEL_SUPPORT
    dims = 256

    _derivative = np.array([-1.0, 0.0, 1.0], dtype=np.float32)
    _smoothing = np.array([1.0, 2.0, 1.0], dtype=np.float32)

    def _compute(self, img: npt.NDArray[Any]) -> npt.NDArray[np.float32]:
        gray = _ensure_grayscale(img)

        # sepFilter2D(kernelX, kernelY): kernelX runs along rows, kernelY along columns
        sobel_x = cv2.sepFilter2D(gray, cv2.CV_32F, self._derivative, self._smoothing)
        sobel_y = cv2.sepFilter2D(gray, cv2.CV_32F, self._smoothing, self._derivative)

        abs_x = cv2.convertScaleAbs(sobel_x).astype(np.float32)
        abs_y = cv2.convertScaleAbs(sobel_y).astype(np.float32)

        magnitude = np.sqrt(abs_x * abs_x + abs_y * abs_y).astype(np.intp)
        magnitude = np.clip(magnitude, 0, self.dims - 1)

        hist = np.bincount(magnitude.ravel(), minlength=self.dims)
        return _normalized(hist, magnitude.size)


class CIELabHistogram(FeatureExtractor):
    """4x8x8 histogram over CIE L*a*b* computed from sRGB under D65.

    L is split into 4 bins over [0, 100]; a and b into 8 bins each over
    [-128, 127]. Out-of-range values are clamped into the edge bins.
    """

    name = "cielab"
    l_bins = 4
    ab_bins = 8
    dims = l_bins * ab_bins * ab_bins

    def _compute(self, img: npt.NDArray[Any]) -> npt.NDArray[np.float32]:
        lab = self.to_lab(_ensure_bgr(img))
        lightness, a_star, b_star = lab[..., 0], lab[..., 1], lab[..., 2]

        l_idx = np.clip(np.trunc(lightness / 100.0 * self.l_bins), 0, self.l_bins - 1)
        a_idx = np.clip(np.trunc((a_star + 128.0) / 255.0 * self.ab_bins), 0, self.ab_bins - 1)
        b_idx = np.clip(np.trunc((b_star + 128.0) / 255.0 * self.ab_bins), 0, self.ab_bins - 1)

        flat = (
            (l_idx.astype(np.intp) * self.ab_bins + a_idx.astype(np.intp)) * self.ab_bins
            + b_idx.astype(np.intp)
        ).ravel()
        hist = np.bincount(flat, minlength=self.dims)
        return _normalized(hist, flat.size)

    @staticmethod
    def to_lab(bgr: npt.NDArray[Any]) -> npt.NDArray[np.float64]:
        """Convert BGR uint8 pixels to CIE L*a*b* (float64, same spatial shape).

        Args:
            bgr: Image (H, W, 3) in BGR channel order.

        Returns:
            Array (H, W, 3) holding L, a, b.
        """
        rgb = bgr[..., ::-1].astype(np.float64) / 255.0

        # Inverse sRGB transfer function
        linear = np.where(rgb > 0.04045, ((rgb + 0.055) / 1.055) ** 2.4, rgb / 12.92)

        xyz = (linear @ _SRGB_TO_XYZ.T) / _D65_WHITE
        f = np.where(xyz > _LAB_EPSILON, np.cbrt(xyz), 7.787 * xyz + 16.0 / 116.0)

        lab = np.empty_like(f)
        lab[..., 0] = 116.0 * f[..., 1] - 16.0
        lab[..., 1] = 500.0 * (f[..., 0] - f[..., 1])
        lab[..., 2] = 200.0 * (f[..., 1] - f[..., 2])
        return lab
