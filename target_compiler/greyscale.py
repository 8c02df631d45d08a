"""
Greyscale Pipeline Stage

Converts RGB(A) input images to single-channel intensity images.
"""

import numpy as np

from .errors import InvalidImage
from .records import GreyImage, RawImage


def to_grey(image: RawImage) -> GreyImage:
    """
    Convert a raw image to greyscale.

    Each output pixel is floor((R + G + B) / 3); alpha is ignored.

    Args:
        image: Raw RGB or RGBA image

    Returns:
        GreyImage with the same dimensions
    """
    if image.width <= 0 or image.height <= 0:
        raise InvalidImage(f"Image has zero dimension: {image.width}x{image.height}")

    pixels = np.asarray(image.pixels)
    if pixels.ndim != 3 or pixels.shape[0] != image.height or pixels.shape[1] != image.width:
        raise InvalidImage(
            f"Pixel buffer shape {pixels.shape} does not match {image.width}x{image.height}"
        )
    if pixels.shape[2] < 3:
        raise InvalidImage(f"Expected at least 3 channels, got {pixels.shape[2]}")

    rgb = pixels[:, :, :3].astype(np.uint16)
    grey = (rgb.sum(axis=2) // 3).astype(np.uint8)

    return GreyImage(width=image.width, height=image.height, data=grey)
