"""Image loading helpers."""

from pathlib import Path
import numpy as np
from PIL import Image

from target_compiler.errors import InvalidImage
from target_compiler.records import RawImage


def load_raw_image(image_path: Path) -> RawImage:
    """Load an image file as RGBA pixels."""
    try:
        with Image.open(image_path) as img:
            pixels = np.asarray(img.convert("RGBA"), dtype=np.uint8)
    except (FileNotFoundError, OSError) as e:
        raise InvalidImage(f"Failed to read image {image_path}: {e}")

    height, width = pixels.shape[:2]
    return RawImage(width=width, height=height, pixels=pixels)
