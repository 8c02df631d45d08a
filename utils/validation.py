"""Validation utilities for input images and compiled archives."""

from pathlib import Path
from typing import Any, Dict, List, Tuple
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, Field, StrictInt, model_validator


# Pydantic models for compiled archive validation


class ImageDims(BaseModel):
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)


class PointEntry(BaseModel):
    x: float
    y: float
    scale: float
    angle: float
    response: float = 0.0
    maxima: bool
    descriptors: Any = b""


class KeyframeEntry(BaseModel):
    maxima_points: List[PointEntry] = Field(alias="maximaPoints")
    minima_points: List[PointEntry] = Field(alias="minimaPoints")
    maxima_cluster: Any = Field(default=None, alias="maximaPointsCluster")
    minima_cluster: Any = Field(default=None, alias="minimaPointsCluster")
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    scale: float = Field(..., gt=0)

    model_config = {"populate_by_name": True}


class FeatureSetEntry(BaseModel):
    data: bytes
    scale: float = Field(..., gt=0)
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    points: List[Any] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_buffer_size(self):
        if len(self.data) != self.width * self.height:
            raise ValueError(
                f"Tracking buffer has {len(self.data)} bytes, "
                f"expected {self.width}x{self.height}"
            )
        return self


class TargetEntry(BaseModel):
    target_image: ImageDims = Field(alias="targetImage")
    matching_data: List[KeyframeEntry] = Field(alias="matchingData")
    tracking_data: List[FeatureSetEntry] = Field(alias="trackingData")

    model_config = {"populate_by_name": True}


class ArchiveContent(BaseModel):
    """Pydantic model for the decoded archive map."""

    v: StrictInt
    data_list: List[TargetEntry] = Field(alias="dataList")

    model_config = {"populate_by_name": True}


def validate_image_file(image_path: Path) -> Tuple[bool, Dict, List[str]]:
    """
    Validate an input image file can be read and is non-empty.

    Returns:
        Tuple of (is_valid, image_info, list_of_errors)
    """
    info = {}

    if not image_path.exists():
        return False, info, [f"Image file does not exist: {image_path}"]

    try:
        with Image.open(image_path) as img:
            info["width"], info["height"] = img.size
            info["mode"] = img.mode
    except (UnidentifiedImageError, OSError) as e:
        return False, info, [f"Unreadable image {image_path.name}: {e}"]

    if info["width"] == 0 or info["height"] == 0:
        return False, info, [f"Image has zero dimension: {image_path.name}"]

    return True, info, []


def validate_archive(archive_path: Path, expected_version: int) -> Tuple[bool, Dict, List[str]]:
    """
    Validate a compiled archive file without building records.

    Args:
        archive_path: Path to a .mind file
        expected_version: Archive version the current compiler writes

    Returns:
        Tuple of (is_valid, archive_info, list_of_errors)
    """
    from target_compiler.codec import read_header, validate_content
    from target_compiler.errors import ArchiveError

    info = {}

    if not archive_path.exists():
        return False, info, ["Archive file does not exist"]

    info["file_size"] = archive_path.stat().st_size
    blob = archive_path.read_bytes()

    try:
        info["version"], info["target_count"] = read_header(blob)
        archive = validate_content(blob, expected_version)
    except ArchiveError as e:
        return False, info, [str(e)]

    info["targets"] = [
        {
            "width": target.target_image.width,
            "height": target.target_image.height,
            "keyframes": len(target.matching_data),
            "feature_points": sum(
                len(k.maxima_points) + len(k.minima_points) for k in target.matching_data
            ),
            "tracking_levels": len(target.tracking_data),
            "tracking_points": sum(len(f.points) for f in target.tracking_data),
        }
        for target in archive.data_list
    ]
    return True, info, []
