"""
Native backend interface and backend selection.

A backend is the narrow set of native entry points a DeviceImage
forwards to: buffer create/release, transfers, channel split/merge,
reductions, conversion, reshape and fill. Two implementations exist:

    - CudaBackend: OpenCV's CUDA module (cv2.cuda_GpuMat).
    - HostBackend: numpy buffers in host memory, with OpenCV host
      reductions and an in-order deferred stream.

Buffer references are opaque to everything except their backend.
``stream`` arguments are the backend's native stream object, or None
for blocking execution.

Non-goals:
    - No automatic fallback between backends at operation time.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence, Tuple

import cv2
import numpy as np

from bodydetect.depth import ElementDepth
from bodydetect.execution import ExecutionStream

logger = logging.getLogger(__name__)

_VALID_PREFERENCES = {"auto", "cpu", "cuda"}


class NativeBackend(ABC):
    """Native entry points backing DeviceImage."""

    name: str = "native"

    @abstractmethod
    def create(self, rows: int, cols: int, channels: int, depth: ElementDepth) -> Any:
        """Allocate a buffer. Raises AllocationError."""

    @abstractmethod
    def release(self, ref: Any) -> None:
        """Free a buffer. Called exactly once per reference."""

    @abstractmethod
    def upload(self, ref: Any, host: np.ndarray) -> None:
        """Blocking host-to-device copy. Raises TransferError."""

    @abstractmethod
    def download(self, ref: Any) -> np.ndarray:
        """Blocking device-to-host copy. Raises TransferError."""

    @abstractmethod
    def shape(self, ref: Any) -> Tuple[int, int, int]:
        """Return (rows, cols, channels)."""

    @abstractmethod
    def depth(self, ref: Any) -> ElementDepth:
        ...

    @abstractmethod
    def copy(self, src: Any, dst: Any, stream: Optional[Any]) -> None:
        ...

    @abstractmethod
    def split(self, src: Any, dsts: Sequence[Any], stream: Optional[Any]) -> None:
        ...

    @abstractmethod
    def merge(self, srcs: Sequence[Any], dst: Any, stream: Optional[Any]) -> None:
        ...

    @abstractmethod
    def min_max_loc(self, ref: Any) -> Tuple[float, float, Tuple[int, int], Tuple[int, int]]:
        """Reduce a single-channel buffer to (min, max, min_loc, max_loc)."""

    @abstractmethod
    def bitwise_xor(self, a: Any, b: Any, dst: Any, stream: Optional[Any]) -> None:
        ...

    @abstractmethod
    def count_non_zero(self, ref: Any) -> int:
        """Count non-zero elements of a single-channel buffer."""

    @abstractmethod
    def convert(self, src: Any, dst: Any, alpha: float, beta: float,
                stream: Optional[Any]) -> None:
        """dst = saturate(src * alpha + beta) at dst's depth."""

    @abstractmethod
    def reshape(self, ref: Any, channels: int, rows: int, cols: int) -> Any:
        """Return a new reference viewing ref's storage with a new layout."""

    @abstractmethod
    def byte_view(self, ref: Any) -> Any:
        """Return a single-channel U8 reference over ref's raw bytes.

        Each image row becomes one row of cols * channels * byte_width bytes.
        """

    @abstractmethod
    def set_to(self, ref: Any, values: np.ndarray, mask: Optional[Any],
               stream: Optional[Any]) -> None:
        """Write one value per channel wherever mask is absent or non-zero."""

    @abstractmethod
    def create_stream(self) -> ExecutionStream:
        ...

    @abstractmethod
    def synchronize(self, stream: Any) -> None:
        ...

    @abstractmethod
    def query_stream(self, stream: Any) -> bool:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


# ---------------------------------------------------------------------------
# Capability query and selection
# ---------------------------------------------------------------------------

def cuda_available() -> bool:
    """Return True if OpenCV was built with CUDA and a device is present."""
    try:
        return cv2.cuda.getCudaEnabledDeviceCount() > 0
    except (AttributeError, cv2.error):
        return False


def select_backend(preference: str = "auto") -> NativeBackend:
    """Pick the backend for a run.

    Args:
        preference: 'auto' (CUDA when available, else host), 'cuda' or 'cpu'.

    Returns:
        A backend instance.

    Raises:
        ValueError: If the preference is unknown.
        RuntimeError: If 'cuda' is requested but no CUDA device is usable.
    """
    preference = preference.lower()
    if preference not in _VALID_PREFERENCES:
        raise ValueError(
            f"Invalid backend preference: '{preference}'. "
            f"Must be one of {_VALID_PREFERENCES}."
        )

    if preference in ("auto", "cuda"):
        if cuda_available():
            from bodydetect.cuda_backend import CudaBackend

            logger.info("Using CUDA backend.")
            return CudaBackend()
        if preference == "cuda":
            raise RuntimeError(
                "CUDA backend requested but no CUDA device is available. "
                "Ensure OpenCV was built with CUDA support, or use backend 'cpu'."
            )

    from bodydetect.host_backend import HostBackend

    logger.info("Using host (CPU) backend.")
    return HostBackend()


_default_backend: Optional[NativeBackend] = None


def default_backend() -> NativeBackend:
    """Return the process-wide backend, selecting it on first use."""
    global _default_backend
    if _default_backend is None:
        _default_backend = select_backend("auto")
    return _default_backend
