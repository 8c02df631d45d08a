"""
Default image pyramid builders.

Matching pyramids span from the full-resolution image down to a level whose
short side is roughly 100 pixels. Tracking pyramids have two fixed levels
whose short sides are 256 and 128 pixels.
"""

from typing import List
import cv2
import numpy as np

from .records import GreyImage, PyramidLevel

# Short side (pixels) of the smallest matching level
MATCHING_MIN_SIDE = 100.0

# Scale step between consecutive matching levels
MATCHING_SCALE_STEP = 2.0 ** (1.0 / 3.0)

# Short sides (pixels) of the tracking levels, largest first
TRACKING_SIDES = (256.0, 128.0)


def resize_level(image: GreyImage, scale: float) -> PyramidLevel:
    """Resize a grey image by `scale` (rounded to whole pixels, at least 1)."""
    width = max(1, int(image.width * scale + 0.5))
    height = max(1, int(image.height * scale + 0.5))

    if width == image.width and height == image.height:
        data = image.data.copy()
    else:
        interpolation = cv2.INTER_AREA if scale < 1.0 else cv2.INTER_LINEAR
        data = cv2.resize(image.data, (width, height), interpolation=interpolation)

    return PyramidLevel(data=np.ascontiguousarray(data, dtype=np.uint8),
                        width=width, height=height, scale=scale)


def matching_scales(width: int, height: int) -> List[float]:
    """Scale factors for the matching pyramid, full resolution first."""
    scale = MATCHING_MIN_SIDE / min(width, height)
    scales = []
    while True:
        scales.append(scale)
        scale *= MATCHING_SCALE_STEP
        if scale >= 0.95:
            scales.append(1.0)
            break
    scales.reverse()
    return scales


def build_matching_pyramid(image: GreyImage) -> List[PyramidLevel]:
    """Build the matching pyramid for a grey image."""
    return [resize_level(image, s) for s in matching_scales(image.width, image.height)]


def build_tracking_pyramid(image: GreyImage) -> List[PyramidLevel]:
    """Build the tracking pyramid for a grey image."""
    min_side = min(image.width, image.height)
    return [resize_level(image, side / min_side) for side in TRACKING_SIDES]
