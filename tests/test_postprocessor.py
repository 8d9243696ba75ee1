"""
Tests for the postprocessing module.
"""

import numpy as np

from bodydetect.detection import FACE, PERSON, Region
from bodydetect.postprocessor import to_regions


def test_to_regions_valid_rectangle():
    """Test converting a rectangle inside the frame."""
    rects = np.array([[10, 20, 64, 128]], dtype=np.int32)

    regions = to_regions(rects, frame_width=640, frame_height=480, label=PERSON)

    assert regions == [Region(x=10, y=20, width=64, height=128, label=PERSON)]


def test_to_regions_empty_result():
    """OpenCV returns an empty tuple when nothing is detected."""
    assert to_regions((), frame_width=100, frame_height=100, label=FACE) == []


def test_to_regions_clamping():
    """Test coordinate clamping to frame boundaries."""
    rects = np.array([[-10, -5, 50, 200]])

    regions = to_regions(rects, frame_width=100, frame_height=100, label=PERSON)

    assert len(regions) == 1
    region = regions[0]
    assert (region.x, region.y) == (0, 0)
    assert region.x2 == 40
    assert region.y2 == 100


def test_to_regions_degenerate_box():
    """Test that zero-area or fully outside boxes are skipped."""
    rects = np.array([
        [10, 10, 0, 5],
        [150, 10, 20, 20],
    ])

    regions = to_regions(rects, frame_width=100, frame_height=100, label=FACE)
    assert regions == []


def test_to_regions_keeps_order_and_label():
    rects = [[5, 5, 10, 10], [0, 0, 4, 4]]

    regions = to_regions(rects, frame_width=50, frame_height=50, label=FACE)

    assert [r.x for r in regions] == [5, 0]
    assert all(r.label == FACE for r in regions)
