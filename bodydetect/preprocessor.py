"""
Preprocessing for the detection pipeline.

Responsibility:
    - Faces: convert a BGR frame to an 8-bit grayscale image, optionally
      histogram-equalized.
    - Pedestrians on the device: upload a BGR frame and expand it to the
      4-channel BGRA layout the CUDA HOG accepts, entirely on the device.

Non-goals:
    - No frame acquisition or I/O.
    - No detection or coordinate mapping.

Hard-coded:
    - Input channel order is BGR (as returned by cv2.imread).
    - The synthesized alpha channel is fully opaque (255).
"""

from contextlib import ExitStack

import cv2
import numpy as np

from bodydetect.backend import NativeBackend
from bodydetect.depth import ElementDepth
from bodydetect.device_image import DeviceImage
from bodydetect.execution import Async

_OPAQUE = 255


def _require_frame(frame: np.ndarray) -> None:
    if frame is None or frame.size == 0:
        raise ValueError(
            "Cannot preprocess an empty frame. "
            "Ensure the input source is providing valid frames."
        )


def to_gray(frame: np.ndarray, equalize: bool = True) -> np.ndarray:
    """Convert a BGR frame to grayscale for the face cascade.

    Args:
        frame: Input image as a BGR numpy array (H, W, 3), uint8.
        equalize: Normalize brightness and increase contrast.

    Returns:
        A (H, W) uint8 array.

    Raises:
        ValueError: If the frame is empty.
    """
    _require_frame(frame)

    gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
    if equalize:
        gray = cv2.equalizeHist(gray)
    return gray


def upload_bgra(frame: np.ndarray, backend: NativeBackend) -> DeviceImage:
    """Upload a BGR frame and return it as a BGRA DeviceImage.

    The frame is split into its three planes on the device, an opaque
    alpha plane is filled, and the four planes are merged on a single
    stream which is synchronized before returning.

    Args:
        frame: BGR uint8 array (H, W, 3).
        backend: Backend the image is created on.

    Returns:
        A (H, W) 4-channel U8 DeviceImage owned by the caller.

    Raises:
        ValueError: If the frame is empty.
        DeviceImageError: If any device operation fails.
    """
    _require_frame(frame)

    with DeviceImage.from_host(frame, backend) as bgr:
        planes = bgr.split()
        with ExitStack() as stack:
            for plane in planes:
                stack.enter_context(plane)
            alpha = stack.enter_context(
                DeviceImage.allocate(bgr.rows, bgr.cols, 1, ElementDepth.U8, backend)
            )

            bgra = DeviceImage.allocate(bgr.rows, bgr.cols, 4, ElementDepth.U8, backend)
            try:
                stream = backend.create_stream()
                alpha.set_to(_OPAQUE, execution=Async(stream))
                bgra.merge_from([*planes, alpha], execution=Async(stream))
                stream.synchronize()
            except Exception:
                bgra.release()
                raise

    return bgra
