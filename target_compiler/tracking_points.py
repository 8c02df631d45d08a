"""
Default tracking-point extractor.

Picks high-contrast pixels (large local standard deviation) on a tracking
pyramid level, keeping at most one point per grid cell so the points spread
across the image. The runtime aligns template patches around these points.
"""

from typing import List
import cv2
import numpy as np

from .records import PyramidLevel

# Half-size of the template window used to score contrast
TEMPLATE_RADIUS = 3

# Grid cell size (pixels) for non-maximum suppression
CELL_SIZE = 8

# Minimum local standard deviation (grey levels)
MIN_CONTRAST = 8.0

MAX_TRACKING_POINTS = 512


def contrast_map(data: np.ndarray) -> np.ndarray:
    """Local standard deviation over a (2R+1)^2 window."""
    image = data.astype(np.float32)
    size = (2 * TEMPLATE_RADIUS + 1, 2 * TEMPLATE_RADIUS + 1)
    mean = cv2.boxFilter(image, -1, size, borderType=cv2.BORDER_REFLECT)
    mean_sq = cv2.boxFilter(image * image, -1, size, borderType=cv2.BORDER_REFLECT)
    return np.sqrt(np.maximum(mean_sq - mean * mean, 0.0))


def extract(level: PyramidLevel) -> List[List[float]]:
    """
    Extract tracking points from one pyramid level.

    Returns:
        [[x, y], ...] in level pixel coordinates, raster order of grid cells
    """
    border = TEMPLATE_RADIUS + 1
    if level.width <= 2 * border or level.height <= 2 * border:
        return []

    score = contrast_map(level.data)
    score[:border, :] = 0.0
    score[-border:, :] = 0.0
    score[:, :border] = 0.0
    score[:, -border:] = 0.0

    grid_h = -(-level.height // CELL_SIZE)
    grid_w = -(-level.width // CELL_SIZE)
    padded = np.zeros((grid_h * CELL_SIZE, grid_w * CELL_SIZE), dtype=np.float32)
    padded[:level.height, :level.width] = score

    cells = padded.reshape(grid_h, CELL_SIZE, grid_w, CELL_SIZE).transpose(0, 2, 1, 3)
    cells = cells.reshape(grid_h, grid_w, CELL_SIZE * CELL_SIZE)
    best = cells.argmax(axis=2)
    best_score = cells.max(axis=2)

    cell_rows, cell_cols = np.nonzero(best_score >= MIN_CONTRAST)
    if len(cell_rows) == 0:
        return []

    offsets = best[cell_rows, cell_cols]
    ys = cell_rows * CELL_SIZE + offsets // CELL_SIZE
    xs = cell_cols * CELL_SIZE + offsets % CELL_SIZE

    if len(xs) > MAX_TRACKING_POINTS:
        keep = np.argsort(-best_score[cell_rows, cell_cols], kind="stable")[:MAX_TRACKING_POINTS]
        keep.sort()
        xs, ys = xs[keep], ys[keep]

    return [[float(x), float(y)] for x, y in zip(xs, ys)]
