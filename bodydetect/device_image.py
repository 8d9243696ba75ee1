"""
DeviceImage: an owned handle to a device-resident image buffer.

A DeviceImage wraps exactly one native buffer on a backend (a GPU via
OpenCV CUDA, or host memory) and forwards every operation to that
backend's native entry points. It adds the contract checks the native
layer does not make: shape agreement for transfers and channel
split/merge, backend agreement between operands, and use-after-release
detection.

Public contract:
    DeviceImage.allocate(rows, cols, channels, depth) -> DeviceImage
    DeviceImage.from_host(array) -> DeviceImage
    image.upload(array) / image.download()
    image.split() / image.split_into(planes) / image.merge_from(planes)
    image.min_max() -> MinMaxResult
    image.equals(other) -> bool
    image.convert_to(depth) -> DeviceImage
    image.reshape(new_channels, new_rows) -> DeviceImage
    image.set_to(value, mask)
    image.release()

Ownership:
    - Each handle owns its native reference and frees it exactly once,
      on release(), on context-manager exit, or when garbage collected.
    - Handles returned by split(), convert_to() and reshape() belong to
      the caller.
    - reshape() views the same storage under a new header; the backend
      reference-counts that storage, so releasing either handle never
      frees memory still in use by the other.
    - Handles passed to split_into()/merge_from() are borrowed for the
      duration of the call only.

Constraints:
    - Not thread-safe. Concurrent mutation of one handle from two call
      sites needs external synchronization.
    - A destination of an outstanding Async operation must not be
      released before its stream is synchronized.
"""

import logging
from contextlib import ExitStack
from dataclasses import dataclass
from numbers import Number
from typing import Any, List, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np

from bodydetect.backend import NativeBackend, default_backend
from bodydetect.depth import ElementDepth, saturate
from bodydetect.errors import (
    AllocationError,
    DeviceError,
    HandleReleasedError,
    ShapeMismatchError,
)
from bodydetect.execution import SYNC, Async, Execution, Sync

logger = logging.getLogger(__name__)

# OpenCV's CV_CN_MAX
_MAX_CHANNELS = 512


class Size(NamedTuple):
    rows: int
    cols: int


class Point(NamedTuple):
    x: int
    y: int


@dataclass(frozen=True)
class MinMaxResult:
    """Per-channel extrema of a DeviceImage.

    Attributes:
        min_values: Minimum value of each channel.
        max_values: Maximum value of each channel.
        min_locations: Position of each channel's first minimum.
        max_locations: Position of each channel's first maximum.
    """

    min_values: List[float]
    max_values: List[float]
    min_locations: List[Point]
    max_locations: List[Point]


class DeviceImage:
    """Owned handle to a rows x cols x channels buffer on a backend."""

    def __init__(self, native: Any, backend: NativeBackend) -> None:
        """Take ownership of ``native``. Prefer the classmethod constructors."""
        rows, cols, channels = backend.shape(native)
        self._size = Size(int(rows), int(cols))
        self._channels = int(channels)
        self._depth = backend.depth(native)
        self._backend = backend
        self._native = native
        self._released = False

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def allocate(
        cls,
        rows: int,
        cols: int,
        channels: int = 1,
        depth: ElementDepth = ElementDepth.U8,
        backend: Optional[NativeBackend] = None,
    ) -> "DeviceImage":
        """Allocate an uninitialized buffer of the given shape.

        Raises:
            AllocationError: If the shape is invalid or the device cannot
                             satisfy the request.
        """
        if rows < 0 or cols < 0:
            raise AllocationError(f"Dimensions must be non-negative, got {rows}x{cols}.")
        if not 1 <= channels <= _MAX_CHANNELS:
            raise AllocationError(
                f"Channel count must be in [1, {_MAX_CHANNELS}], got {channels}."
            )

        backend = backend or default_backend()
        native = backend.create(rows, cols, channels, depth)
        logger.debug(
            "Allocated %dx%dx%d %s buffer on %s.", rows, cols, channels, depth.name, backend.name
        )
        return cls(native, backend)

    @classmethod
    def from_host(
        cls,
        host: np.ndarray,
        backend: Optional[NativeBackend] = None,
    ) -> "DeviceImage":
        """Allocate a buffer matching ``host`` and upload it (blocking).

        Args:
            host: Array of shape (rows, cols) or (rows, cols, channels).

        Raises:
            ShapeMismatchError: If host is not an array or its dtype has no
                                ElementDepth.
            AllocationError: If the device cannot hold the image.
            TransferError: If the upload fails.
        """
        rows, cols, channels = _host_shape(host)
        try:
            depth = ElementDepth.from_dtype(host.dtype)
        except KeyError:
            raise ShapeMismatchError(f"Unsupported element type: {host.dtype}.") from None

        image = cls.allocate(rows, cols, channels, depth, backend)
        try:
            image.upload(host)
        except Exception:
            image.release()
            raise
        return image

    @classmethod
    def wrap_native(cls, native: Any, backend: NativeBackend) -> "DeviceImage":
        """Take ownership of an already allocated native buffer."""
        return cls(native, backend)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def size(self) -> Size:
        return self._size

    @property
    def rows(self) -> int:
        return self._size.rows

    @property
    def cols(self) -> int:
        return self._size.cols

    @property
    def channels(self) -> int:
        return self._channels

    @property
    def depth(self) -> ElementDepth:
        return self._depth

    @property
    def backend(self) -> NativeBackend:
        return self._backend

    @property
    def released(self) -> bool:
        return self._released

    @property
    def native(self) -> Any:
        """The backend buffer reference, for passing to OpenCV directly."""
        self._require_live()
        return self._native

    # ------------------------------------------------------------------
    # Transfer
    # ------------------------------------------------------------------

    def upload(self, host: np.ndarray) -> None:
        """Blocking copy of ``host`` into this buffer.

        Raises:
            ShapeMismatchError: If host's shape or dtype differs from this image.
            TransferError: If the copy fails.
        """
        self._require_live()
        self._check_host(host)
        self._backend.upload(self._native, host)

    def download(self, host: Optional[np.ndarray] = None) -> np.ndarray:
        """Blocking copy of this buffer to host memory.

        Args:
            host: Optional destination array, filled in place. Must match
                  this image's shape and dtype.

        Returns:
            ``host`` if given, otherwise a new array of shape (rows, cols)
            for single-channel images and (rows, cols, channels) otherwise.

        Raises:
            ShapeMismatchError: If host's shape or dtype differs.
            TransferError: If the copy fails.
        """
        self._require_live()
        if host is not None:
            self._check_host(host)
        data = self._backend.download(self._native)
        if host is None:
            return data
        np.copyto(host, data.reshape(host.shape))
        return host

    # ------------------------------------------------------------------
    # Channel decomposition
    # ------------------------------------------------------------------

    def split_into(
        self,
        destinations: Sequence["DeviceImage"],
        execution: Execution = SYNC,
    ) -> None:
        """Copy each channel into the matching single-channel destination.

        Raises:
            ShapeMismatchError: If the count, size, depth or channel count
                                of the destinations is wrong. Nothing is
                                written in that case.
        """
        self._require_live()
        self._check_planes(destinations, "destinations")
        stream = self._native_stream(execution)

        if self._channels == 1:
            self._backend.copy(self._native, destinations[0]._native, stream)
        else:
            self._backend.split(self._native, [d._native for d in destinations], stream)

    def split(self, execution: Execution = SYNC) -> List["DeviceImage"]:
        """Split into newly allocated single-channel images, one per channel."""
        self._require_live()
        planes: List[DeviceImage] = []
        try:
            for _ in range(self._channels):
                planes.append(
                    DeviceImage.allocate(self.rows, self.cols, 1, self._depth, self._backend)
                )
            self.split_into(planes, execution)
        except Exception:
            for plane in planes:
                plane.release()
            raise
        return planes

    def merge_from(
        self,
        sources: Sequence["DeviceImage"],
        execution: Execution = SYNC,
    ) -> None:
        """Overwrite this image with channels taken from single-channel sources.

        Raises:
            ShapeMismatchError: Same contract as split_into().
        """
        self._require_live()
        self._check_planes(sources, "sources")
        stream = self._native_stream(execution)

        if self._channels == 1:
            self._backend.copy(sources[0]._native, self._native, stream)
        else:
            self._backend.merge([s._native for s in sources], self._native, stream)

    # ------------------------------------------------------------------
    # Reduction and comparison
    # ------------------------------------------------------------------

    def min_max(self) -> MinMaxResult:
        """Return the minimum and maximum of each channel and their locations."""
        self._require_live()

        if self._channels == 1:
            extrema = [self._backend.min_max_loc(self._native)]
        else:
            planes = self.split()
            with ExitStack() as stack:
                for plane in planes:
                    stack.enter_context(plane)
                extrema = [self._backend.min_max_loc(plane._native) for plane in planes]

        return MinMaxResult(
            min_values=[float(e[0]) for e in extrema],
            max_values=[float(e[1]) for e in extrema],
            min_locations=[Point(*e[2]) for e in extrema],
            max_locations=[Point(*e[3]) for e in extrema],
        )

    def equals(self, other: "DeviceImage") -> bool:
        """Structural equality: same shape, same depth, bitwise identical contents.

        The comparison runs on the device: XOR the two buffers and count
        the non-zero bytes of the result.
        """
        self._require_live()
        self._check_peer(other)

        if (
            self._channels != other._channels
            or self._size != other._size
            or self._depth != other._depth
        ):
            return False

        with DeviceImage.allocate(
            self.rows, self.cols, self._channels, self._depth, self._backend
        ) as xor:
            self._backend.bitwise_xor(self._native, other._native, xor._native, None)
            # Count bytes, not elements: a lone float sign bit reads as -0.0.
            raw = DeviceImage.wrap_native(self._backend.byte_view(xor._native), self._backend)
            with raw:
                return self._backend.count_non_zero(raw._native) == 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DeviceImage):
            return NotImplemented
        return self.equals(other)

    __hash__ = None

    # ------------------------------------------------------------------
    # Conversion, layout and fill
    # ------------------------------------------------------------------

    def convert_to(
        self,
        target_depth: ElementDepth,
        alpha: float = 1.0,
        beta: float = 0.0,
        execution: Execution = SYNC,
    ) -> "DeviceImage":
        """Return a new image of ``target_depth`` holding saturate(self * alpha + beta)."""
        self._require_live()
        stream = self._native_stream(execution)
        result = DeviceImage.allocate(
            self.rows, self.cols, self._channels, target_depth, self._backend
        )
        try:
            self._backend.convert(self._native, result._native, alpha, beta, stream)
        except Exception:
            result.release()
            raise
        return result

    def reshape(self, new_channels: int = 0, new_rows: int = 0) -> "DeviceImage":
        """Reinterpret the buffer layout without copying.

        Args:
            new_channels: New channel count; 0 keeps the current one.
            new_rows: New row count; 0 keeps the current one.

        Raises:
            ShapeMismatchError: If the element count cannot be laid out as
                                requested.
        """
        self._require_live()
        if new_channels < 0 or new_rows < 0 or new_channels > _MAX_CHANNELS:
            raise ShapeMismatchError(
                f"Invalid reshape arguments: new_channels={new_channels}, new_rows={new_rows}."
            )

        channels = new_channels or self._channels
        row_width = self.cols * self._channels

        if new_rows == 0:
            if row_width % channels:
                raise ShapeMismatchError(
                    f"Row width {row_width} is not divisible by {channels} channels."
                )
            rows, cols = self.rows, row_width // channels
        else:
            total = self.rows * row_width
            if total % (new_rows * channels):
                raise ShapeMismatchError(
                    f"{total} elements cannot be laid out as {new_rows} rows "
                    f"of {channels}-channel pixels."
                )
            rows, cols = new_rows, total // (new_rows * channels)

        native = self._backend.reshape(self._native, channels, rows, cols)
        return DeviceImage.wrap_native(native, self._backend)

    def set_to(
        self,
        value: Union[float, Sequence[float]],
        mask: Optional["DeviceImage"] = None,
        execution: Execution = SYNC,
    ) -> None:
        """Write ``value`` wherever ``mask`` is absent or non-zero.

        Args:
            value: A number written to every channel, or one value per channel.
                   Values saturate to this image's depth.
            mask: Optional single-channel U8 image of the same size.

        Raises:
            ShapeMismatchError: If value or mask do not fit this image.
        """
        self._require_live()

        if isinstance(value, Number):
            values = np.full(self._channels, float(value))
        else:
            values = np.asarray(value, dtype=np.float64).ravel()
            if values.size != self._channels:
                raise ShapeMismatchError(
                    f"Expected {self._channels} fill values, got {values.size}."
                )

        native_mask = None
        if mask is not None:
            self._check_peer(mask)
            if (
                mask.channels != 1
                or mask.depth != ElementDepth.U8
                or mask.size != self._size
            ):
                raise ShapeMismatchError(
                    f"Mask must be a single-channel U8 image of size {tuple(self._size)}, "
                    f"got {mask!r}."
                )
            native_mask = mask._native

        stream = self._native_stream(execution)
        self._backend.set_to(self._native, saturate(values, self._depth), native_mask, stream)

    # ------------------------------------------------------------------
    # Lifetime
    # ------------------------------------------------------------------

    def release(self) -> None:
        """Free the native buffer. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        native, self._native = self._native, None
        self._backend.release(native)
        logger.debug("Released %dx%dx%d buffer on %s.",
                     self.rows, self.cols, self._channels, self._backend.name)

    close = release

    def __enter__(self) -> "DeviceImage":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __del__(self) -> None:
        """Safety net: free the buffer if it was never released explicitly."""
        if getattr(self, "_released", True) is False:
            self.release()

    def __repr__(self) -> str:
        state = "released" if self._released else self._backend.name
        return (
            f"DeviceImage(rows={self.rows}, cols={self.cols}, channels={self._channels}, "
            f"depth={self._depth.name}, {state})"
        )

    # ------------------------------------------------------------------
    # Contract checks
    # ------------------------------------------------------------------

    def _require_live(self) -> None:
        if self._released:
            raise HandleReleasedError(f"{self!r} used after release().")

    def _check_peer(self, other: "DeviceImage") -> None:
        if not isinstance(other, DeviceImage):
            raise TypeError(f"Expected a DeviceImage, got {type(other).__name__}.")
        other._require_live()
        if other._backend is not self._backend:
            raise DeviceError(
                f"Cannot mix images from backend '{self._backend.name}' "
                f"and backend '{other._backend.name}'."
            )

    def _check_planes(self, planes: Sequence["DeviceImage"], role: str) -> None:
        if len(planes) != self._channels:
            raise ShapeMismatchError(
                f"Expected {self._channels} {role}, got {len(planes)}."
            )
        for index, plane in enumerate(planes):
            self._check_peer(plane)
            if plane.channels != 1:
                raise ShapeMismatchError(
                    f"{role}[{index}] must have 1 channel, got {plane.channels}."
                )
            if plane.size != self._size:
                raise ShapeMismatchError(
                    f"{role}[{index}] has size {tuple(plane.size)}, "
                    f"expected {tuple(self._size)}."
                )
            if plane.depth != self._depth:
                raise ShapeMismatchError(
                    f"{role}[{index}] has depth {plane.depth.name}, "
                    f"expected {self._depth.name}."
                )

    def _check_host(self, host: np.ndarray) -> None:
        rows, cols, channels = _host_shape(host)
        if (rows, cols, channels) != (self.rows, self.cols, self._channels):
            raise ShapeMismatchError(
                f"Host buffer shape {host.shape} does not match "
                f"{self.rows}x{self.cols}x{self._channels}."
            )
        if host.dtype != self._depth.dtype:
            raise ShapeMismatchError(
                f"Host buffer dtype {host.dtype} does not match depth {self._depth.name}."
            )

    def _native_stream(self, execution: Execution) -> Optional[Any]:
        if isinstance(execution, Sync):
            return None
        if isinstance(execution, Async):
            if execution.stream.backend is not self._backend:
                raise DeviceError(
                    f"Stream belongs to backend '{execution.stream.backend.name}', "
                    f"image lives on '{self._backend.name}'."
                )
            return execution.stream.native
        raise TypeError(f"Expected Sync or Async execution, got {execution!r}.")


def _host_shape(host: np.ndarray) -> Tuple[int, int, int]:
    """Return (rows, cols, channels) of a host image array."""
    if not isinstance(host, np.ndarray):
        raise ShapeMismatchError(
            f"Expected a numpy ndarray, got {type(host).__name__}."
        )
    if host.ndim == 2:
        return host.shape[0], host.shape[1], 1
    if host.ndim == 3 and host.shape[2] >= 1:
        return host.shape
    raise ShapeMismatchError(
        f"Expected a (rows, cols) or (rows, cols, channels) array, got shape {host.shape}."
    )
