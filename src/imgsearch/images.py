"""Image decoding and cropping backed by OpenCV."""

from typing import Any

import cv2
import numpy.typing as npt

from .errors import ExtractionError
from .regions import Rect

IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".ppm", ".tif", ".tiff", ".bmp"})


def load_image(identifier: str) -> npt.NDArray[Any]:
    """Decode an image file into a BGR uint8 array.

    Args:
        identifier: Path of the image file.

    Returns:
        Array of shape (H, W, 3).

    Raises:
        ExtractionError: If OpenCV cannot decode the file.
    """
    img = cv2.imread(str(identifier), cv2.IMREAD_COLOR)
    if img is None:
        msg = f"Cannot decode image: {identifier}"
        raise ExtractionError(msg)
    return img


def crop(img: npt.NDArray[Any], rect: Rect) -> npt.NDArray[Any]:
    """Return the view of ``img`` covered by ``rect`` (no copy)."""
    return img[rect.y:rect.y + rect.height, rect.x:rect.x + rect.width]
