"""Utility functions for the image target compiler."""

from .image import load_raw_image
from .validation import (
    ArchiveContent,
    validate_archive,
    validate_image_file,
)

__all__ = [
    "load_raw_image",
    "ArchiveContent",
    "validate_archive",
    "validate_image_file",
]
