"""
Default feature detector.

Finds difference-of-Gaussian extrema on a pyramid level, assigns each a
dominant gradient orientation and a rotated 256-bit binary descriptor.
Maxima (bright blobs) and minima (dark blobs) are tagged so the matcher can
keep them in separate clusters.
"""

from typing import List
import cv2
import numpy as np

from .records import FeaturePoint, PyramidLevel

# Inner and outer Gaussian sigmas of the DoG filter
SIGMAS = (1.0, 1.6)

DETECTION_SIGMA = SIGMAS[0]

# Minimum absolute DoG response (grey levels) for a point to be kept
DOG_THRESHOLD = 3.0

# Maximum number of points returned per level
MAX_FEATURE_POINTS = 500

# Radius of the descriptor sampling pattern
PATCH_RADIUS = 7.0

# Pixels ignored at the image border (pattern radius after rotation + 1)
BORDER = 9

# Radius of the orientation window
ORIENTATION_RADIUS = 4

DESCRIPTOR_BITS = 256


def _sampling_pattern() -> np.ndarray:
    """Fixed (DESCRIPTOR_BITS, 2, 2) array of point-pair offsets within PATCH_RADIUS."""
    rng = np.random.default_rng(2021)
    offsets = rng.normal(0.0, PATCH_RADIUS / 2.5, size=(DESCRIPTOR_BITS, 2, 2))
    norms = np.linalg.norm(offsets, axis=2, keepdims=True)
    return offsets * np.minimum(1.0, PATCH_RADIUS / np.maximum(norms, 1e-9))


PATTERN = _sampling_pattern()


def _local_extrema(dog: np.ndarray):
    """Masks of 3x3 maxima and minima of the DoG response beyond the threshold."""
    kernel = np.ones((3, 3), np.uint8)
    maxima = (dog >= cv2.dilate(dog, kernel)) & (dog > DOG_THRESHOLD)
    minima = (dog <= cv2.erode(dog, kernel)) & (dog < -DOG_THRESHOLD)
    return maxima, minima


def _orientations(blurred: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    gx = cv2.Sobel(blurred, cv2.CV_32F, 1, 0, ksize=3)
    gy = cv2.Sobel(blurred, cv2.CV_32F, 0, 1, ksize=3)

    r = ORIENTATION_RADIUS
    grid = np.arange(-r, r + 1)
    weights = np.exp(-(grid[:, None] ** 2 + grid[None, :] ** 2) / (2.0 * (r / 2.0) ** 2))

    angles = np.zeros(len(xs), dtype=np.float64)
    for i, (x, y) in enumerate(zip(xs, ys)):
        wx = float((gx[y - r:y + r + 1, x - r:x + r + 1] * weights).sum())
        wy = float((gy[y - r:y + r + 1, x - r:x + r + 1] * weights).sum())
        angles[i] = np.arctan2(wy, wx)
    return angles


def _descriptors(blurred: np.ndarray, xs: np.ndarray, ys: np.ndarray,
                 angles: np.ndarray) -> List[bytes]:
    cos = np.cos(angles)[:, None, None]
    sin = np.sin(angles)[:, None, None]
    dx = PATTERN[None, :, :, 0]
    dy = PATTERN[None, :, :, 1]

    # (N, bits, 2) sample coordinates after rotation
    sx = np.rint(xs[:, None, None] + cos * dx - sin * dy).astype(np.intp)
    sy = np.rint(ys[:, None, None] + sin * dx + cos * dy).astype(np.intp)
    samples = blurred[sy, sx]

    bits = samples[:, :, 0] < samples[:, :, 1]
    packed = np.packbits(bits, axis=1)
    return [row.tobytes() for row in packed]


def detect(level: PyramidLevel) -> List[FeaturePoint]:
    """
    Detect feature points on one pyramid level.

    Args:
        level: Pyramid level with a (height, width) uint8 buffer

    Returns:
        Feature points ordered by descending response strength
    """
    if level.width <= 2 * BORDER or level.height <= 2 * BORDER:
        return []

    image = level.data.astype(np.float32)
    inner = cv2.GaussianBlur(image, (0, 0), SIGMAS[0])
    outer = cv2.GaussianBlur(image, (0, 0), SIGMAS[1])
    dog = inner - outer

    maxima, minima = _local_extrema(dog)
    candidates = maxima | minima
    candidates[:BORDER, :] = False
    candidates[-BORDER:, :] = False
    candidates[:, :BORDER] = False
    candidates[:, -BORDER:] = False

    ys, xs = np.nonzero(candidates)
    if len(xs) == 0:
        return []

    responses = dog[ys, xs]
    order = np.argsort(-np.abs(responses), kind="stable")[:MAX_FEATURE_POINTS]
    xs, ys, responses = xs[order], ys[order], responses[order]

    blurred = outer
    angles = _orientations(blurred, xs, ys)
    descriptors = _descriptors(blurred, xs, ys, angles)

    points = []
    for i in range(len(xs)):
        points.append(FeaturePoint(
            x=float(xs[i]),
            y=float(ys[i]),
            scale=DETECTION_SIGMA,
            angle=float(angles[i]),
            response=float(abs(responses[i])),
            maxima=bool(maxima[ys[i], xs[i]]),
            descriptors=descriptors[i],
        ))
    return points
