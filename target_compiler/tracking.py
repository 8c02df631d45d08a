"""
Tracking Pipeline Stage

Turns a tracking pyramid into feature sets. Pure and synchronous, so it can
run either on the caller's thread or inside a worker process.
"""

from typing import Callable, List, Optional

from .errors import ExtractorFailure
from .records import PyramidLevel, TrackingFeatureSet

TrackingExtractor = Callable[[PyramidLevel], List[List[float]]]


def extract_tracking_features(
    levels: List[PyramidLevel],
    extractor: TrackingExtractor,
    on_level_done: Optional[Callable[[int], None]] = None,
) -> List[TrackingFeatureSet]:
    """
    Build one feature set per tracking pyramid level, in level order.

    Each feature set keeps the level's own intensity buffer, which the
    runtime needs for template alignment.
    """
    feature_sets = []
    for index, level in enumerate(levels):
        try:
            points = extractor(level)
        except Exception as e:
            raise ExtractorFailure(
                f"Tracking extraction failed on level {index} "
                f"({level.width}x{level.height}, scale {level.scale:.3f}): {e}"
            ) from e

        feature_sets.append(TrackingFeatureSet(
            data=level.data,
            scale=level.scale,
            width=level.width,
            height=level.height,
            points=points,
        ))
        if on_level_done is not None:
            on_level_done(index)

    return feature_sets
