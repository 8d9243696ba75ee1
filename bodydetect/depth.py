"""
Element depth of a device image.

Depth is a closed enumeration resolved once, at construction time.
A single lookup table maps each member to its numpy dtype, its OpenCV
depth code and its byte width.
"""

from dataclasses import dataclass
from enum import Enum

import cv2
import numpy as np

# Channel count is packed above the depth bits of an OpenCV type code.
_CN_SHIFT = 3


@dataclass(frozen=True)
class _DepthInfo:
    dtype: np.dtype
    cv_depth: int
    byte_width: int


class ElementDepth(Enum):
    """Pixel component type of a DeviceImage."""

    U8 = "8u"
    S8 = "8s"
    U16 = "16u"
    S16 = "16s"
    S32 = "32s"
    F32 = "32f"
    F64 = "64f"

    @property
    def dtype(self) -> np.dtype:
        return _DEPTH_TABLE[self].dtype

    @property
    def cv_depth(self) -> int:
        return _DEPTH_TABLE[self].cv_depth

    @property
    def byte_width(self) -> int:
        return _DEPTH_TABLE[self].byte_width

    @property
    def is_integer(self) -> bool:
        return np.issubdtype(self.dtype, np.integer)

    def cv_type(self, channels: int) -> int:
        """Return the OpenCV matrix type code for this depth and channel count."""
        return self.cv_depth + ((channels - 1) << _CN_SHIFT)

    @classmethod
    def from_dtype(cls, dtype) -> "ElementDepth":
        """Resolve the depth matching a numpy dtype.

        Raises:
            KeyError: If the dtype has no OpenCV counterpart.
        """
        return _DTYPE_TO_DEPTH[np.dtype(dtype)]

    @classmethod
    def from_cv_depth(cls, cv_depth: int) -> "ElementDepth":
        return _CV_TO_DEPTH[cv_depth]


_DEPTH_TABLE = {
    ElementDepth.U8: _DepthInfo(np.dtype(np.uint8), cv2.CV_8U, 1),
    ElementDepth.S8: _DepthInfo(np.dtype(np.int8), cv2.CV_8S, 1),
    ElementDepth.U16: _DepthInfo(np.dtype(np.uint16), cv2.CV_16U, 2),
    ElementDepth.S16: _DepthInfo(np.dtype(np.int16), cv2.CV_16S, 2),
    ElementDepth.S32: _DepthInfo(np.dtype(np.int32), cv2.CV_32S, 4),
    ElementDepth.F32: _DepthInfo(np.dtype(np.float32), cv2.CV_32F, 4),
    ElementDepth.F64: _DepthInfo(np.dtype(np.float64), cv2.CV_64F, 8),
}

_DTYPE_TO_DEPTH = {info.dtype: depth for depth, info in _DEPTH_TABLE.items()}
_CV_TO_DEPTH = {info.cv_depth: depth for depth, info in _DEPTH_TABLE.items()}


def saturate(values: np.ndarray, depth: ElementDepth) -> np.ndarray:
    """Round and clip values into the range of depth, OpenCV-style."""
    values = np.asarray(values, dtype=np.float64)
    if not depth.is_integer:
        return values.astype(depth.dtype)
    info = np.iinfo(depth.dtype)
    return np.clip(np.rint(values), info.min, info.max).astype(depth.dtype)
