"""
Detector: the single public API for pedestrian and face detection.

Public contract:
    Detector.detect(frame: np.ndarray) -> DetectionResult

Pipeline selection:
    The backend is chosen once, at construction. On the CUDA backend,
    pedestrians are detected on the GPU: the frame is uploaded into a
    DeviceImage, expanded to BGRA on the device, and passed to the CUDA
    HOG. On the host backend the DeviceImage layer is bypassed entirely
    and the CPU HOGDescriptor runs on the numpy frame. Faces always use
    the CPU Haar cascade on an equalized grayscale image.

Constraints:
    - Input must be a BGR uint8 numpy array (as returned by OpenCV).
    - Thread-safety is not guaranteed (single-threaded design).
    - Device failures propagate; there is no fallback to the host path.

Non-goals:
    - No file reading, window display, or output writing.
    - No tracking or temporal state.
"""

import logging
import time
from typing import List, Optional

import cv2
import numpy as np

from bodydetect.backend import NativeBackend, select_backend
from bodydetect.config import AppConfig, load_config
from bodydetect.detection import FACE, PERSON, DetectionResult, Region
from bodydetect.model_loader import load_face_cascade, load_people_detector
from bodydetect.postprocessor import to_regions
from bodydetect.preprocessor import to_gray, upload_bgra

logger = logging.getLogger(__name__)


class Detector:
    """Pedestrian (HOG) and face (Haar cascade) detector.

    Usage:
        detector = Detector()                      # Uses safe defaults
        detector = Detector(config=my_config)      # Custom config
        result = detector.detect(frame)            # BGR numpy array

    The constructor selects the backend and loads both detectors once.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        backend: Optional[NativeBackend] = None,
    ) -> None:
        """Initialize the detector.

        Args:
            config: Application configuration. If None, safe defaults are used.
            backend: Backend override. If None, one is selected from
                     config.device.backend.

        Raises:
            FileNotFoundError: If the face cascade is missing.
            RuntimeError: If the requested backend or detector is unavailable.
            ValueError: If configuration values are invalid.
        """
        if config is None:
            config = load_config()

        self._config = config
        self._backend = backend or select_backend(config.device.backend)

        self._hog = None
        if config.people.enabled:
            self._hog = load_people_detector(config.people, self._backend)

        self._cascade = None
        if config.face.enabled:
            self._cascade = load_face_cascade(config.face)

        logger.info(
            "Detector initialized (device=%s, people=%s, faces=%s)",
            self.device, config.people.enabled, config.face.enabled,
        )

    @property
    def config(self) -> AppConfig:
        """Return the active configuration (read-only)."""
        return self._config

    @property
    def backend(self) -> NativeBackend:
        return self._backend

    @property
    def device(self) -> str:
        """'GPU' when running on the CUDA backend, otherwise 'CPU'."""
        return "GPU" if self._backend.name == "cuda" else "CPU"

    def detect(self, frame: np.ndarray) -> DetectionResult:
        """Detect pedestrians and faces in a single BGR frame.

        Args:
            frame: A BGR image with shape (H, W, 3) and dtype uint8.

        Returns:
            A DetectionResult. Region lists carry no ordering guarantee.

        Raises:
            TypeError: If frame is not a numpy ndarray.
            ValueError: If frame has incorrect shape or is empty.
            DeviceImageError: If a device operation fails.
        """
        self._validate_frame(frame)

        start = time.perf_counter()
        bodies = self._detect_bodies(frame) if self._hog is not None else []
        faces = self._detect_faces(frame) if self._cascade is not None else []
        elapsed_ms = (time.perf_counter() - start) * 1000.0

        logger.debug(
            "Detected %d bodies and %d faces in %.1f ms on %s.",
            len(bodies), len(faces), elapsed_ms, self.device,
        )
        return DetectionResult(
            bodies=bodies, faces=faces, device=self.device, elapsed_ms=elapsed_ms,
        )

    def _detect_bodies(self, frame: np.ndarray) -> List[Region]:
        h, w = frame.shape[:2]
        people = self._config.people

        if self._backend.name == "cuda":
            with upload_bgra(frame, self._backend) as image:
                rects = self._hog.detectMultiScaleWithoutConf(image.native)
        else:
            rects, _weights = self._hog.detectMultiScale(
                frame,
                hitThreshold=people.hit_threshold,
                winStride=people.win_stride,
                padding=people.padding,
                scale=people.scale,
            )

        return to_regions(rects, w, h, PERSON)

    def _detect_faces(self, frame: np.ndarray) -> List[Region]:
        h, w = frame.shape[:2]
        face = self._config.face

        gray = to_gray(frame, equalize=face.equalize_hist)
        rects = self._cascade.detectMultiScale(
            gray,
            scaleFactor=face.scale_factor,
            minNeighbors=face.min_neighbors,
            flags=cv2.CASCADE_DO_CANNY_PRUNING,
            minSize=face.min_size,
        )

        return to_regions(rects, w, h, FACE)

    @staticmethod
    def _validate_frame(frame: np.ndarray) -> None:
        """Validate that the input frame meets the API contract.

        Raises:
            TypeError: If frame is not a numpy ndarray.
            ValueError: If frame is empty or has wrong dimensions.
        """
        if not isinstance(frame, np.ndarray):
            raise TypeError(
                f"Expected frame to be a numpy ndarray, "
                f"got {type(frame).__name__}. "
                f"Use cv2.imread() to obtain frames."
            )

        if frame.size == 0:
            raise ValueError(
                "Frame is empty (zero size). "
                "Ensure the input source is providing valid frames."
            )

        if frame.ndim != 3:
            raise ValueError(
                f"Expected a 3-dimensional frame (H, W, C), "
                f"got {frame.ndim} dimensions with shape {frame.shape}. "
                f"Grayscale images must be converted to BGR first."
            )

        if frame.shape[2] != 3:
            raise ValueError(
                f"Expected 3 channels (BGR), got {frame.shape[2]} channels. "
                f"Input must be a BGR image as returned by OpenCV."
            )

        if frame.dtype != np.uint8:
            raise ValueError(f"Expected a uint8 frame, got dtype {frame.dtype}.")
