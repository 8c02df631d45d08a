"""
Image Target Compiler

Compiles reference images into a versioned binary archive (.mind) used by
a visual-tracking runtime to recognise a target and track its pose.

Pipeline stages:
1. Greyscale - RGB(A) image → single-channel intensity image
2. Matching - Matching pyramid → keyframes (feature points + cluster trees)
3. Tracking - Tracking pyramid → feature sets (in-process or worker process)
4. Encode - Compiled targets → msgpack archive
"""

__version__ = "0.1.0"
