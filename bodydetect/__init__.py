"""
Body Detection: pedestrian and face detection over OpenCV, with a
GPU/CPU-selecting image handle layer.

Public API:
    - Detector, DetectionResult, Region: detection entry point and results.
    - DeviceImage: owned handle to a device-resident image buffer.
    - ElementDepth: pixel component types.
    - SYNC, Async, ExecutionStream: execution modes.
    - select_backend, cuda_available: backend selection.
    - DeviceImageError and subclasses: failure taxonomy.

Usage:
    from bodydetect import Detector

    detector = Detector()
    result = detector.detect(frame)
"""

from bodydetect.backend import cuda_available, select_backend
from bodydetect.depth import ElementDepth
from bodydetect.detection import DetectionResult, Region
from bodydetect.detector import Detector
from bodydetect.device_image import DeviceImage, MinMaxResult, Point, Size
from bodydetect.errors import (
    AllocationError,
    DeviceError,
    DeviceImageError,
    HandleReleasedError,
    ShapeMismatchError,
    TransferError,
)
from bodydetect.execution import SYNC, Async, ExecutionStream, Sync

__all__ = [
    "Detector",
    "DetectionResult",
    "Region",
    "DeviceImage",
    "MinMaxResult",
    "Point",
    "Size",
    "ElementDepth",
    "SYNC",
    "Sync",
    "Async",
    "ExecutionStream",
    "select_backend",
    "cuda_available",
    "DeviceImageError",
    "AllocationError",
    "TransferError",
    "ShapeMismatchError",
    "DeviceError",
    "HandleReleasedError",
]
