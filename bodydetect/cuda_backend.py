"""
CUDA backend over OpenCV's cv2.cuda module.

Each buffer reference is a cv2.cuda_GpuMat. Operations given a None
stream run on cv2.cuda.Stream_Null(), which OpenCV executes blocking.

Requires an OpenCV build with the CUDA modules (cudaarithm, cudaobjdetect).
The stock opencv-python wheel reports zero CUDA devices, in which case
select_backend() never constructs this class.
"""

import logging
from typing import Any, Callable, Optional

import cv2
import numpy as np

from bodydetect.backend import NativeBackend
from bodydetect.depth import ElementDepth
from bodydetect.errors import (
    AllocationError,
    DeviceError,
    ShapeMismatchError,
    TransferError,
)
from bodydetect.execution import ExecutionStream

logger = logging.getLogger(__name__)


def _guard(label: str, fn: Callable[[], Any], error_cls=DeviceError) -> Any:
    """Invoke a native entry point, translating cv2.error."""
    try:
        return fn()
    except cv2.error as e:
        raise error_cls(f"CUDA {label} failed: {e}") from e


class CudaBackend(NativeBackend):
    """Backend keeping buffers in GPU memory."""

    name = "cuda"

    def __init__(self) -> None:
        device = cv2.cuda.getDevice()
        logger.info(
            "CUDA backend on device %d (%d device(s) visible).",
            device, cv2.cuda.getCudaEnabledDeviceCount(),
        )

    def create(self, rows, cols, channels, depth):
        return _guard(
            "allocation",
            # Continuous storage so reshape() can reinterpret the layout.
            lambda: cv2.cuda.createContinuous(rows, cols, depth.cv_type(channels)),
            AllocationError,
        )

    def release(self, ref):
        _guard("release", ref.release)

    def upload(self, ref, host):
        _guard("upload", lambda: ref.upload(np.ascontiguousarray(host)), TransferError)

    def download(self, ref):
        return _guard("download", ref.download, TransferError)

    def shape(self, ref):
        cols, rows = ref.size()
        return rows, cols, ref.channels()

    def depth(self, ref):
        return ElementDepth.from_cv_depth(ref.depth())

    def copy(self, src, dst, stream):
        _guard("copy", lambda: src.copyTo(stream=self._stream(stream), dst=dst))

    def split(self, src, dsts, stream):
        # Destinations are preallocated, so cuda::split writes into their storage.
        _guard("split", lambda: cv2.cuda.split(src, list(dsts), stream=self._stream(stream)))

    def merge(self, srcs, dst, stream):
        _guard("merge", lambda: cv2.cuda.merge(list(srcs), dst, stream=self._stream(stream)))

    def min_max_loc(self, ref):
        min_val, max_val, min_loc, max_loc = _guard(
            "minMaxLoc", lambda: cv2.cuda.minMaxLoc(ref)
        )
        return min_val, max_val, tuple(min_loc), tuple(max_loc)

    def bitwise_xor(self, a, b, dst, stream):
        # Bitwise on raw bytes so every depth, floats included, is supported.
        a_bytes, b_bytes, dst_bytes = (self.byte_view(ref) for ref in (a, b, dst))
        _guard(
            "bitwise_xor",
            lambda: cv2.cuda.bitwise_xor(
                a_bytes, b_bytes, dst=dst_bytes, stream=self._stream(stream)
            ),
        )

    def count_non_zero(self, ref):
        return int(_guard("countNonZero", lambda: cv2.cuda.countNonZero(ref)))

    def convert(self, src, dst, alpha, beta, stream):
        _guard(
            "convertTo",
            lambda: src.convertTo(dst.type(), alpha, beta, self._stream(stream), dst),
        )

    def reshape(self, ref, channels, rows, cols):
        return _guard("reshape", lambda: ref.reshape(channels, rows))

    def byte_view(self, ref):
        cols, rows = ref.size()
        return _guard(
            "byte view",
            lambda: cv2.cuda.createGpuMatFromCudaMemory(
                rows, cols * ref.elemSize(), cv2.CV_8UC1, ref.cudaPtr(), ref.step
            ),
        )

    def set_to(self, ref, values, mask, stream):
        # cv::Scalar carries at most four components.
        if len(values) > 4:
            raise ShapeMismatchError(
                f"CUDA setTo takes at most four fill values, got {len(values)}."
            )
        scalar = tuple(float(v) for v in values) + (0.0,) * (4 - len(values))
        native_stream = self._stream(stream)
        if mask is None:
            _guard("setTo", lambda: ref.setTo(scalar, native_stream))
        else:
            _guard("setTo", lambda: ref.setTo(scalar, mask, native_stream))

    def create_stream(self):
        return ExecutionStream(self, cv2.cuda.Stream())

    def synchronize(self, stream):
        _guard("stream synchronize", stream.waitForCompletion)

    def query_stream(self, stream):
        return bool(_guard("stream query", stream.queryIfComplete))

    @staticmethod
    def _stream(stream: Optional[Any]) -> Any:
        return cv2.cuda.Stream_Null() if stream is None else stream
