"""
Postprocessing for the detection pipeline.

Responsibility:
    Turn the raw rectangles returned by OpenCV detectors into Region
    objects: clamp them to the frame and drop degenerate boxes.

Non-goals:
    - No drawing, saving, or display logic.
    - No non-maximum suppression or ordering; detector output order is kept.

Hard-coded:
    - Raw rectangle layout is (x, y, width, height), as returned by
      HOGDescriptor.detectMultiScale and CascadeClassifier.detectMultiScale.
"""

from typing import List

import numpy as np

from bodydetect.detection import Region


def to_regions(
    rects,
    frame_width: int,
    frame_height: int,
    label: str,
) -> List[Region]:
    """Convert raw (x, y, w, h) rectangles into clamped Regions.

    Args:
        rects: Array-like of shape (N, 4). OpenCV returns an empty tuple
               when nothing is found; that is accepted too.
        frame_width: Frame width in pixels (for clamping).
        frame_height: Frame height in pixels (for clamping).
        label: Label attached to every region.

    Returns:
        List of Regions, empty if no rectangle survives clamping.
    """
    raw = np.asarray(rects, dtype=np.int64).reshape(-1, 4)
    regions: List[Region] = []

    for x, y, w, h in raw:
        # Clamp to frame boundaries
        x1 = max(0, min(int(x), frame_width))
        y1 = max(0, min(int(y), frame_height))
        x2 = max(0, min(int(x + w), frame_width))
        y2 = max(0, min(int(y + h), frame_height))

        # Skip degenerate boxes
        if x2 <= x1 or y2 <= y1:
            continue

        regions.append(Region(x=x1, y=y1, width=x2 - x1, height=y2 - y1, label=label))

    return regions
