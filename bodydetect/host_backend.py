"""
Host-memory backend.

Buffers are C-contiguous numpy arrays of shape (rows, cols, channels).
Reductions go through OpenCV's host functions. Asynchronous work is
queued on a HostStream and executed in enqueue order when the stream
is synchronized, so callers see the same visibility rules as on a GPU.
"""

import logging
from collections import deque
from typing import Callable, Deque, Optional, Tuple

import cv2
import numpy as np

from bodydetect.backend import NativeBackend
from bodydetect.depth import ElementDepth, saturate
from bodydetect.errors import AllocationError, DeviceError, TransferError
from bodydetect.execution import ExecutionStream

logger = logging.getLogger(__name__)


class HostBuffer:
    """A host array standing in for a device allocation."""

    __slots__ = ("_array",)

    def __init__(self, array: np.ndarray) -> None:
        self._array = array

    @property
    def array(self) -> np.ndarray:
        if self._array is None:
            raise DeviceError("Host buffer accessed after it was freed.")
        return self._array

    def free(self) -> None:
        self._array = None


class HostStream:
    """In-order queue of pending host operations."""

    def __init__(self) -> None:
        self.pending: Deque[Tuple[str, Callable[[], None]]] = deque()


class HostBackend(NativeBackend):
    """Backend keeping every buffer in host memory."""

    name = "host"

    # -- allocation ---------------------------------------------------------

    def create(self, rows, cols, channels, depth):
        try:
            return HostBuffer(np.zeros((rows, cols, channels), dtype=depth.dtype))
        except (MemoryError, ValueError) as e:
            raise AllocationError(
                f"Cannot allocate {rows}x{cols}x{channels} {depth.name} buffer: {e}"
            ) from e

    def release(self, ref):
        ref.free()

    # -- transfer -----------------------------------------------------------

    def upload(self, ref, host):
        try:
            np.copyto(ref.array, host.reshape(ref.array.shape))
        except (ValueError, TypeError) as e:
            raise TransferError(f"Upload failed: {e}") from e

    def download(self, ref):
        array = ref.array
        if array.shape[2] == 1:
            return array[:, :, 0].copy()
        return array.copy()

    # -- queries ------------------------------------------------------------

    def shape(self, ref):
        return ref.array.shape

    def depth(self, ref):
        return ElementDepth.from_dtype(ref.array.dtype)

    # -- element-wise operations -------------------------------------------

    def copy(self, src, dst, stream):
        self._run(stream, "copy", lambda: np.copyto(dst.array, src.array))

    def split(self, src, dsts, stream):
        def _split() -> None:
            source = src.array
            for i, dst in enumerate(dsts):
                dst.array[:, :, 0] = source[:, :, i]

        self._run(stream, "split", _split)

    def merge(self, srcs, dst, stream):
        def _merge() -> None:
            target = dst.array
            for i, src in enumerate(srcs):
                target[:, :, i] = src.array[:, :, 0]

        self._run(stream, "merge", _merge)

    def bitwise_xor(self, a, b, dst, stream):
        # Bitwise on raw bytes so every depth, floats included, is supported.
        def _xor() -> None:
            np.bitwise_xor(
                a.array.view(np.uint8),
                b.array.view(np.uint8),
                out=dst.array.view(np.uint8),
            )

        self._run(stream, "bitwise_xor", _xor)

    def convert(self, src, dst, alpha, beta, stream):
        def _convert() -> None:
            target = dst.array
            depth = ElementDepth.from_dtype(target.dtype)
            target[...] = saturate(src.array * alpha + beta, depth)

        self._run(stream, "convert", _convert)

    def set_to(self, ref, values, mask, stream):
        def _set_to() -> None:
            target = ref.array
            if mask is None:
                target[...] = values
            else:
                target[mask.array[:, :, 0] != 0] = values

        self._run(stream, "set_to", _set_to)

    # -- reductions ---------------------------------------------------------

    def min_max_loc(self, ref):
        plane = self._single_plane(ref, "min_max_loc")
        try:
            min_val, max_val, min_loc, max_loc = cv2.minMaxLoc(plane)
        except cv2.error as e:
            raise DeviceError(f"minMaxLoc failed: {e}") from e
        return min_val, max_val, tuple(min_loc), tuple(max_loc)

    def count_non_zero(self, ref):
        plane = self._single_plane(ref, "count_non_zero")
        if plane.size == 0:
            return 0
        try:
            return int(cv2.countNonZero(plane))
        except cv2.error as e:
            raise DeviceError(f"countNonZero failed: {e}") from e

    # -- layout -------------------------------------------------------------

    def reshape(self, ref, channels, rows, cols):
        try:
            return HostBuffer(ref.array.reshape(rows, cols, channels))
        except ValueError as e:
            raise DeviceError(f"reshape failed: {e}") from e

    def byte_view(self, ref):
        array = ref.array
        rows, cols, channels = array.shape
        width = cols * channels * array.itemsize
        try:
            return HostBuffer(array.view(np.uint8).reshape(rows, width, 1))
        except ValueError as e:
            raise DeviceError(f"byte view failed: {e}") from e

    # -- streams ------------------------------------------------------------

    def create_stream(self):
        return ExecutionStream(self, HostStream())

    def synchronize(self, stream):
        while stream.pending:
            label, fn = stream.pending.popleft()
            try:
                self._call(label, fn)
            except DeviceError:
                stream.pending.clear()
                raise

    def query_stream(self, stream):
        return not stream.pending

    # -- helpers ------------------------------------------------------------

    def _run(self, stream: Optional[HostStream], label: str, fn: Callable[[], None]) -> None:
        if stream is None:
            self._call(label, fn)
        else:
            stream.pending.append((label, fn))

    @staticmethod
    def _call(label: str, fn: Callable[[], None]) -> None:
        try:
            fn()
        except (ValueError, TypeError, IndexError, cv2.error) as e:
            raise DeviceError(f"Host {label} failed: {e}") from e

    @staticmethod
    def _single_plane(ref: HostBuffer, label: str) -> np.ndarray:
        array = ref.array
        if array.shape[2] != 1:
            raise DeviceError(
                f"{label} requires a single-channel buffer, got {array.shape[2]} channels."
            )
        return array[:, :, 0]
