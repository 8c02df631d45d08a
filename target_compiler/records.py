"""Data records produced and consumed by the compilation pipeline."""

from dataclasses import dataclass, field
from typing import Any, List, Optional
import numpy as np


def _buffers_equal(a: Optional[np.ndarray], b: Optional[np.ndarray]) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return a.shape == b.shape and bool(np.array_equal(a, b))


def _wire_value(payload: Any) -> Any:
    """
    Normalise an opaque collaborator payload to the form it has after an
    archive round trip: tuples and arrays become lists, numpy scalars
    become Python numbers.
    """
    if isinstance(payload, np.ndarray):
        return payload.tolist()
    if isinstance(payload, np.generic):
        return payload.item()
    if isinstance(payload, (list, tuple)):
        return [_wire_value(item) for item in payload]
    if isinstance(payload, dict):
        return {key: _wire_value(value) for key, value in payload.items()}
    if isinstance(payload, bytearray):
        return bytes(payload)
    return payload


def _payloads_equal(a: Any, b: Any) -> bool:
    return _wire_value(a) == _wire_value(b)


@dataclass(eq=False)
class RawImage:
    """Input raster image; pixels are (height, width, 3|4) uint8."""
    width: int
    height: int
    pixels: np.ndarray

    @classmethod
    def from_array(cls, array: np.ndarray) -> "RawImage":
        """Wrap a (H, W), (H, W, 3) or (H, W, 4) array."""
        array = np.asarray(array)
        if array.ndim == 2:
            array = np.repeat(array[:, :, None], 3, axis=2)
        height, width = array.shape[:2]
        return cls(width=width, height=height, pixels=array.astype(np.uint8, copy=False))


@dataclass(eq=False)
class GreyImage:
    """Single-channel image. `data` is None for dimension-only stubs."""
    width: int
    height: int
    data: Optional[np.ndarray] = None

    def dims_only(self) -> "GreyImage":
        return GreyImage(width=self.width, height=self.height)

    def __eq__(self, other):
        if not isinstance(other, GreyImage):
            return NotImplemented
        return (
            self.width == other.width
            and self.height == other.height
            and _buffers_equal(self.data, other.data)
        )


@dataclass(eq=False)
class PyramidLevel:
    """One scaled variant of a grey image."""
    data: np.ndarray
    width: int
    height: int
    scale: float


@dataclass(eq=False)
class FeaturePoint:
    """Detected interest point. `descriptors` is opaque to the pipeline."""
    x: float
    y: float
    scale: float
    angle: float
    response: float
    maxima: bool
    descriptors: Any = b""

    def __eq__(self, other):
        if not isinstance(other, FeaturePoint):
            return NotImplemented
        return (
            (self.x, self.y, self.scale, self.angle, self.response, self.maxima)
            == (other.x, other.y, other.scale, other.angle, other.response, other.maxima)
            and _payloads_equal(self.descriptors, other.descriptors)
        )


@dataclass(eq=False)
class Keyframe:
    """Matching record for one matching pyramid level."""
    maxima_points: List[FeaturePoint]
    minima_points: List[FeaturePoint]
    maxima_cluster: Any
    minima_cluster: Any
    width: int
    height: int
    scale: float

    def __eq__(self, other):
        if not isinstance(other, Keyframe):
            return NotImplemented
        return (
            self.maxima_points == other.maxima_points
            and self.minima_points == other.minima_points
            and (self.width, self.height, self.scale) == (other.width, other.height, other.scale)
            and _payloads_equal(self.maxima_cluster, other.maxima_cluster)
            and _payloads_equal(self.minima_cluster, other.minima_cluster)
        )


@dataclass(eq=False)
class TrackingFeatureSet:
    """Tracking record for one tracking pyramid level."""
    data: np.ndarray
    scale: float
    width: int
    height: int
    points: List[Any] = field(default_factory=list)

    def __eq__(self, other):
        if not isinstance(other, TrackingFeatureSet):
            return NotImplemented
        return (
            self.scale == other.scale
            and self.width == other.width
            and self.height == other.height
            and _payloads_equal(self.points, other.points)
            and _buffers_equal(self.data, other.data)
        )


@dataclass
class CompiledTarget:
    """Everything the runtime needs for one reference image."""
    image: GreyImage
    matching_data: List[Keyframe]
    tracking_data: List[TrackingFeatureSet]
