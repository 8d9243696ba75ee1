"""
Execution mode for device image operations.

Every operation that may run asynchronously takes an ``execution``
argument of type ``Execution = Sync | Async``:

    - ``SYNC`` (the default): the call blocks until the device work is
      finished and its results are visible.
    - ``Async(stream)``: the call enqueues work on ``stream`` and returns
      immediately. Results are only guaranteed visible after
      ``stream.synchronize()``.

Work enqueued on the same stream runs in enqueue order. There is no
ordering between different streams, or between a stream and
synchronous calls, unless the caller synchronizes explicitly.

Non-goals:
    - No cancellation or timeouts.
    - No host-side worker threads.
"""

import logging
from dataclasses import dataclass
from typing import Any, Union

logger = logging.getLogger(__name__)


class ExecutionStream:
    """Token for an asynchronous execution context owned by a backend.

    Streams are created with ``backend.create_stream()`` and may only be
    used with images living on that same backend.

    Usage:
        stream = backend.create_stream()
        image.set_to(0, execution=Async(stream))
        stream.synchronize()

    Used as a context manager, the stream is synchronized on a clean exit.
    """

    def __init__(self, backend: Any, native: Any) -> None:
        self._backend = backend
        self._native = native

    @property
    def backend(self) -> Any:
        return self._backend

    @property
    def native(self) -> Any:
        """The backend-specific stream object."""
        return self._native

    def synchronize(self) -> None:
        """Block until every operation enqueued on this stream has finished.

        Raises:
            DeviceError: If an enqueued operation failed.
        """
        self._backend.synchronize(self._native)
        logger.debug("Stream synchronized on backend=%s", self._backend.name)

    def is_complete(self) -> bool:
        """Return True if no enqueued work is outstanding. Never blocks."""
        return self._backend.query_stream(self._native)

    def __enter__(self) -> "ExecutionStream":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.synchronize()

    def __repr__(self) -> str:
        return f"ExecutionStream(backend={self._backend.name})"


@dataclass(frozen=True)
class Sync:
    """Blocking execution."""


@dataclass(frozen=True)
class Async:
    """Non-blocking execution on ``stream``."""

    stream: ExecutionStream


Execution = Union[Sync, Async]

SYNC = Sync()
