#!/usr/bin/env python3
"""
Generate synthetic reference images for compiling.

Renders poster-like images (checkerboard, random rectangles and ellipses)
with plenty of corners and blobs, so both the matching and tracking phases
find features. Use this to exercise the compiler without real artwork.

Usage:
    python scripts/generate_synthetic_targets.py [output_dir] [count]

Then compile:
    python -m target_compiler.compiler compile synthetic_targets/*.png -o synthetic.mind
"""

import sys
from pathlib import Path
import numpy as np
from PIL import Image, ImageDraw


IMAGE_W = 480
IMAGE_H = 360

TILE_SIZE = 40
TILE_COLOR_A = (230, 230, 230)
TILE_COLOR_B = (60, 60, 60)

SHAPES_PER_IMAGE = 24


def render_target(seed: int) -> Image.Image:
    """Render one synthetic target; the same seed always gives the same image."""
    rng = np.random.default_rng(seed)
    img = Image.new("RGB", (IMAGE_W, IMAGE_H), TILE_COLOR_A)
    draw = ImageDraw.Draw(img)

    # Checkerboard band across the top third
    for ty in range(0, IMAGE_H // 3, TILE_SIZE):
        for tx in range(0, IMAGE_W, TILE_SIZE):
            if (tx // TILE_SIZE + ty // TILE_SIZE) % 2:
                draw.rectangle([tx, ty, tx + TILE_SIZE - 1, ty + TILE_SIZE - 1], fill=TILE_COLOR_B)

    for _ in range(SHAPES_PER_IMAGE):
        x0 = int(rng.integers(0, IMAGE_W - 20))
        y0 = int(rng.integers(IMAGE_H // 3, IMAGE_H - 20))
        x1 = x0 + int(rng.integers(10, 80))
        y1 = y0 + int(rng.integers(10, 60))
        color = tuple(int(c) for c in rng.integers(0, 256, size=3))
        if rng.random() < 0.5:
            draw.rectangle([x0, y0, x1, y1], fill=color)
        else:
            draw.ellipse([x0, y0, x1, y1], fill=color)

    return img


def main():
    out = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("synthetic_targets")
    count = int(sys.argv[2]) if len(sys.argv) > 2 else 3
    out.mkdir(parents=True, exist_ok=True)

    print(f"Generating {count} synthetic targets …")
    for i in range(count):
        path = out / f"target_{i:03d}.png"
        render_target(seed=i).save(path)
        print(f"  {path}  ({IMAGE_W}×{IMAGE_H})")

    print(f"\nCompile:  python -m target_compiler.compiler compile {out}/*.png -o {out}.mind")


if __name__ == "__main__":
    main()
