"""
Archive Codec

Serialises compiled targets into a versioned msgpack archive (.mind) and
back. Layout:

    {"v": version,
     "dataList": [{"targetImage": {"width", "height"},
                   "matchingData": [keyframe, ...],
                   "trackingData": [feature set, ...]}, ...]}

The full-resolution grey image is stored as dimensions only. Tracking level
buffers, descriptors and cluster trees are stored as-is and round-trip
byte for byte.
"""

from typing import Any, Dict, List, Tuple
import msgpack
import numpy as np
from pydantic import ValidationError

from utils.validation import ArchiveContent, FeatureSetEntry, KeyframeEntry, PointEntry

from .errors import ArchiveError, VersionMismatch
from .records import CompiledTarget, FeaturePoint, GreyImage, Keyframe, TrackingFeatureSet

CURRENT_VERSION = 2


def _default(obj):
    """msgpack fallback for numpy values coming from custom collaborators."""
    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    raise TypeError(f"Cannot serialise {type(obj).__name__}")


def _point_to_dict(point: FeaturePoint) -> Dict:
    return {
        "x": point.x,
        "y": point.y,
        "scale": point.scale,
        "angle": point.angle,
        "response": point.response,
        "maxima": point.maxima,
        "descriptors": point.descriptors,
    }


def _keyframe_to_dict(keyframe: Keyframe) -> Dict:
    return {
        "maximaPoints": [_point_to_dict(p) for p in keyframe.maxima_points],
        "minimaPoints": [_point_to_dict(p) for p in keyframe.minima_points],
        "maximaPointsCluster": keyframe.maxima_cluster,
        "minimaPointsCluster": keyframe.minima_cluster,
        "width": keyframe.width,
        "height": keyframe.height,
        "scale": keyframe.scale,
    }


def _feature_set_to_dict(feature_set: TrackingFeatureSet) -> Dict:
    return {
        "data": np.ascontiguousarray(feature_set.data, dtype=np.uint8).tobytes(),
        "scale": feature_set.scale,
        "width": feature_set.width,
        "height": feature_set.height,
        "points": feature_set.points,
    }


def encode(targets: List[CompiledTarget], version: int = CURRENT_VERSION) -> bytes:
    """
    Encode compiled targets as an archive.

    Args:
        targets: Compiled targets in input order
        version: Archive version tag to write

    Returns:
        msgpack bytes
    """
    data_list = [
        {
            "targetImage": {"width": t.image.width, "height": t.image.height},
            "trackingData": [_feature_set_to_dict(f) for f in t.tracking_data],
            "matchingData": [_keyframe_to_dict(k) for k in t.matching_data],
        }
        for t in targets
    ]
    return msgpack.packb({"v": version, "dataList": data_list},
                         use_bin_type=True, default=_default)


def _point_from_entry(entry: PointEntry) -> FeaturePoint:
    return FeaturePoint(
        x=entry.x,
        y=entry.y,
        scale=entry.scale,
        angle=entry.angle,
        response=entry.response,
        maxima=entry.maxima,
        descriptors=entry.descriptors,
    )


def _keyframe_from_entry(entry: KeyframeEntry) -> Keyframe:
    return Keyframe(
        maxima_points=[_point_from_entry(p) for p in entry.maxima_points],
        minima_points=[_point_from_entry(p) for p in entry.minima_points],
        maxima_cluster=entry.maxima_cluster,
        minima_cluster=entry.minima_cluster,
        width=entry.width,
        height=entry.height,
        scale=entry.scale,
    )


def _feature_set_from_entry(entry: FeatureSetEntry) -> TrackingFeatureSet:
    data = np.frombuffer(entry.data, dtype=np.uint8).reshape(entry.height, entry.width).copy()
    return TrackingFeatureSet(
        data=data,
        scale=entry.scale,
        width=entry.width,
        height=entry.height,
        points=entry.points,
    )


def _unpack(blob: bytes) -> Any:
    try:
        return msgpack.unpackb(blob, raw=False, strict_map_key=False)
    except (ValueError, TypeError, msgpack.UnpackException) as e:
        raise ArchiveError(f"Invalid archive encoding: {e}") from e


def _unpack_map(blob: bytes) -> Dict:
    content = _unpack(blob)
    if not isinstance(content, dict):
        raise ArchiveError("Archive root is not a map")
    return content


def read_header(blob: bytes) -> Tuple[Any, int]:
    """Return (version, target_count) without validating targets."""
    content = _unpack_map(blob)
    data_list = content.get("dataList")
    return content.get("v"), len(data_list) if isinstance(data_list, list) else 0


def validate_content(blob: bytes, version: int = CURRENT_VERSION) -> ArchiveContent:
    """
    Unpack archive bytes and validate their whole structure.

    Raises:
        VersionMismatch: Version tag absent or different from `version`
        ArchiveError: Bytes are not a well-formed archive
    """
    content = _unpack_map(blob)

    found = content.get("v")
    if type(found) is not int or found != version:
        raise VersionMismatch(found, version)

    try:
        return ArchiveContent.model_validate(content)
    except ValidationError as e:
        raise ArchiveError(f"Malformed archive: {e}") from e


def decode(blob: bytes, version: int = CURRENT_VERSION) -> List[CompiledTarget]:
    """
    Decode an archive into compiled targets.

    The whole archive is validated before any record is built, so a failure
    never yields a partial list. Points, descriptors and cluster trees are
    passed through as decoded.

    Args:
        blob: Archive bytes
        version: Version the archive must carry

    Returns:
        Compiled targets with dimension-only grey images, in archive order

    Raises:
        VersionMismatch: Version tag absent or different from `version`
        ArchiveError: Bytes are not a well-formed archive
    """
    archive = validate_content(blob, version)

    return [
        CompiledTarget(
            image=GreyImage(width=entry.target_image.width, height=entry.target_image.height),
            matching_data=[_keyframe_from_entry(k) for k in entry.matching_data],
            tracking_data=[_feature_set_from_entry(f) for f in entry.tracking_data],
        )
        for entry in archive.data_list
    ]
