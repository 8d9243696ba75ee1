"""
Tests for the element depth table.
"""

import cv2
import numpy as np
import pytest

from bodydetect.depth import ElementDepth, saturate


@pytest.mark.parametrize("depth, dtype, cv_depth, width", [
    (ElementDepth.U8, np.uint8, cv2.CV_8U, 1),
    (ElementDepth.S16, np.int16, cv2.CV_16S, 2),
    (ElementDepth.F32, np.float32, cv2.CV_32F, 4),
    (ElementDepth.F64, np.float64, cv2.CV_64F, 8),
])
def test_lookup_table(depth, dtype, cv_depth, width):
    assert depth.dtype == np.dtype(dtype)
    assert depth.cv_depth == cv_depth
    assert depth.byte_width == width
    assert ElementDepth.from_dtype(dtype) is depth
    assert ElementDepth.from_cv_depth(cv_depth) is depth


def test_cv_type_packs_channels():
    assert ElementDepth.U8.cv_type(3) == cv2.CV_8UC3
    assert ElementDepth.F32.cv_type(1) == cv2.CV_32FC1
    assert ElementDepth.S16.cv_type(4) == cv2.CV_16SC4


def test_unknown_dtype_raises():
    with pytest.raises(KeyError):
        ElementDepth.from_dtype(np.complex64)


def test_saturate_integer_and_float():
    np.testing.assert_array_equal(
        saturate([-3.0, 12.6, 400.0], ElementDepth.U8), np.array([0, 13, 255], dtype=np.uint8)
    )
    np.testing.assert_array_equal(
        saturate([-200.0, 200.0], ElementDepth.S8), np.array([-128, 127], dtype=np.int8)
    )
    assert saturate([1.25], ElementDepth.F32).dtype == np.float32
