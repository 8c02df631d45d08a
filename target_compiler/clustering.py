"""
Default hierarchical cluster builder.

Organises feature points into a tree of k-medoids clusters over the Hamming
distance between binary descriptors. The runtime descends the tree to find
candidate matches quickly. Nodes are plain dicts so the tree can be stored
in the archive as-is:

    {"leaf": True,  "centerPointIndex": int | None, "pointIndexes": [int, ...]}
    {"leaf": False, "centerPointIndex": int | None, "children": [node, ...]}
"""

from typing import Dict, List, Optional
import numpy as np

from .records import FeaturePoint

BRANCHING = 8
MIN_LEAF_SIZE = 16

# Random medoid sets tried per node; the cheapest assignment wins
ASSIGNMENT_HYPOTHESES = 16

SEED = 7


def hamming_distances(descriptors: np.ndarray, rows: np.ndarray, centers: np.ndarray) -> np.ndarray:
    """(len(rows), len(centers)) matrix of Hamming distances."""
    xor = descriptors[rows][:, None, :] ^ descriptors[centers][None, :, :]
    return np.unpackbits(xor, axis=2).sum(axis=2)


def _leaf(indexes: np.ndarray, center: Optional[int]) -> Dict:
    return {
        "leaf": True,
        "centerPointIndex": center,
        "pointIndexes": [int(i) for i in indexes],
    }


def _build_node(descriptors: np.ndarray, indexes: np.ndarray,
                rng: np.random.Generator, center: Optional[int]) -> Dict:
    if len(indexes) <= max(BRANCHING, MIN_LEAF_SIZE):
        return _leaf(indexes, center)

    best_cost = None
    best_medoids = None
    best_assignment = None
    for _ in range(ASSIGNMENT_HYPOTHESES):
        medoids = rng.choice(indexes, size=BRANCHING, replace=False)
        distances = hamming_distances(descriptors, indexes, medoids)
        assignment = distances.argmin(axis=1)
        cost = int(distances.min(axis=1).sum())
        if best_cost is None or cost < best_cost:
            best_cost, best_medoids, best_assignment = cost, medoids, assignment

    groups = [(int(best_medoids[k]), indexes[best_assignment == k]) for k in range(BRANCHING)]
    groups = [(m, members) for m, members in groups if len(members) > 0]

    # Identical descriptors all land in one group; splitting further is pointless
    if len(groups) < 2:
        return _leaf(indexes, center)

    return {
        "leaf": False,
        "centerPointIndex": center,
        "children": [_build_node(descriptors, members, rng, m) for m, members in groups],
    }


def build(points: List[FeaturePoint]) -> Dict:
    """
    Build a cluster tree over feature points.

    Args:
        points: Feature points with equal-length descriptors

    Returns:
        {"rootNode": node} with point indexes into `points`
    """
    rng = np.random.default_rng(SEED)
    indexes = np.arange(len(points))
    if len(points) == 0:
        return {"rootNode": _leaf(indexes, None)}

    descriptors = np.stack([np.frombuffer(p.descriptors, dtype=np.uint8) for p in points])
    return {"rootNode": _build_node(descriptors, indexes, rng, None)}
