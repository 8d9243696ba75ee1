"""
Error taxonomy for device image handles.

Every failure raised by DeviceImage or a native backend derives from
DeviceImageError, so callers can catch the whole family in one place
and decide whether to retry, re-route to the host-only path, or abort.

Non-goals:
    - No retries and no silent device-to-host fallback.
"""


class DeviceImageError(RuntimeError):
    """Base class for all device image failures."""


class AllocationError(DeviceImageError):
    """The device cannot satisfy a shape/depth request."""


class TransferError(DeviceImageError):
    """A host-to-device or device-to-host copy failed."""


class ShapeMismatchError(DeviceImageError, ValueError):
    """A caller-supplied buffer does not match the required size, channel
    count or depth. Always a programming error; never retried."""


class DeviceError(DeviceImageError):
    """Opaque native failure during a device operation."""


class HandleReleasedError(DeviceImageError):
    """An operation was attempted on a handle after release()."""
