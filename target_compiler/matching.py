"""
Matching Pipeline Stage

Turns a matching pyramid into keyframes: per level, detect feature points,
split them into maxima and minima and build a cluster tree for each.
"""

import asyncio
from typing import Any, Callable, List, Optional

from .errors import DetectorFailure
from .records import FeaturePoint, Keyframe, PyramidLevel

Detector = Callable[[PyramidLevel], List[FeaturePoint]]
ClusterBuilder = Callable[[List[FeaturePoint]], Any]


def build_keyframe(level: PyramidLevel, detector: Detector,
                   cluster_builder: ClusterBuilder) -> Keyframe:
    """Detect, partition and cluster the feature points of one level."""
    points = detector(level)
    maxima_points = [p for p in points if p.maxima]
    minima_points = [p for p in points if not p.maxima]

    return Keyframe(
        maxima_points=maxima_points,
        minima_points=minima_points,
        maxima_cluster=cluster_builder(maxima_points),
        minima_cluster=cluster_builder(minima_points),
        width=level.width,
        height=level.height,
        scale=level.scale,
    )


async def extract_matching_features(
    levels: List[PyramidLevel],
    detector: Detector,
    cluster_builder: ClusterBuilder,
    on_level_done: Optional[Callable[[int], None]] = None,
    yield_between_levels: bool = True,
) -> List[Keyframe]:
    """
    Build one keyframe per matching pyramid level, in level order.

    Levels run strictly one after another; the coroutine yields to the event
    loop before each level so long compilations do not starve other tasks.

    Args:
        levels: Matching pyramid levels
        detector: Feature detector collaborator
        cluster_builder: Cluster tree collaborator
        on_level_done: Called with the level index once its keyframe is built
        yield_between_levels: Yield to the event loop before each level

    Returns:
        Keyframes, one per level
    """
    keyframes = []
    for index, level in enumerate(levels):
        if yield_between_levels:
            await asyncio.sleep(0)

        try:
            keyframe = build_keyframe(level, detector, cluster_builder)
        except Exception as e:
            raise DetectorFailure(
                f"Feature detection failed on level {index} "
                f"({level.width}x{level.height}, scale {level.scale:.3f}): {e}"
            ) from e

        keyframes.append(keyframe)
        if on_level_done is not None:
            on_level_done(index)

    return keyframes
