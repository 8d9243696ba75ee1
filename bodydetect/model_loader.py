"""
Model loading for the body detection system.

Responsibility:
    Build the pedestrian HOG detector for the selected backend and load
    the Haar face cascade from disk.

Non-goals:
    - No preprocessing, inference, or frame-level logic.
    - No cascade parsing or validation beyond what OpenCV does.
    - No automatic model downloading.

Failure behavior:
    - A missing cascade file raises FileNotFoundError listing every
      location that was searched.
    - A cascade OpenCV cannot load raises RuntimeError.
    - A CUDA HOG that cannot be created raises RuntimeError.
"""

import logging
from pathlib import Path
from typing import List, Union

import cv2

from bodydetect.backend import NativeBackend
from bodydetect.config import FaceConfig, PeopleConfig, get_project_root

logger = logging.getLogger(__name__)


def _cascade_candidates(cascade_path: str) -> List[Path]:
    """Locations searched for a cascade file, in order."""
    path = Path(cascade_path)
    if path.is_absolute():
        return [path]

    candidates = [get_project_root() / path]
    bundled = getattr(getattr(cv2, "data", None), "haarcascades", None)
    if bundled:
        candidates.append(Path(bundled) / path.name)
    return candidates


def load_face_cascade(config: FaceConfig) -> cv2.CascadeClassifier:
    """Load the Haar cascade used for face detection.

    Args:
        config: FaceConfig with the cascade path.

    Returns:
        A loaded cv2.CascadeClassifier.

    Raises:
        FileNotFoundError: If the cascade file cannot be found.
        RuntimeError: If OpenCV fails to load the file.
    """
    candidates = _cascade_candidates(config.cascade_path)
    cascade_file = next((c for c in candidates if c.is_file()), None)

    if cascade_file is None:
        searched = "\n".join(f"    {c}" for c in candidates)
        raise FileNotFoundError(
            f"Face cascade not found: '{config.cascade_path}'.\n"
            f"  Searched:\n{searched}\n"
            f"  Provide the file or update 'face.cascade_path' in your config."
        )

    logger.info("Loading face cascade: %s", cascade_file)
    classifier = cv2.CascadeClassifier(str(cascade_file))
    if classifier.empty():
        raise RuntimeError(
            f"OpenCV could not load cascade file {cascade_file}. "
            f"Ensure it is a valid Haar cascade XML."
        )

    return classifier


def load_people_detector(
    config: PeopleConfig,
    backend: NativeBackend,
) -> Union[cv2.HOGDescriptor, "cv2.cuda.HOG"]:
    """Create the HOG pedestrian detector with OpenCV's default people SVM.

    Args:
        config: PeopleConfig with detection parameters.
        backend: The active backend; 'cuda' selects the GPU HOG.

    Returns:
        cv2.cuda.HOG on the CUDA backend, cv2.HOGDescriptor otherwise.

    Raises:
        RuntimeError: If the CUDA HOG cannot be created.
    """
    if backend.name == "cuda":
        logger.info("Creating CUDA HOG people detector.")
        try:
            hog = cv2.cuda.HOG_create()
            hog.setSVMDetector(hog.getDefaultPeopleDetector())
            hog.setWinStride(config.win_stride)
            hog.setScaleFactor(config.scale)
            hog.setHitThreshold(config.hit_threshold)
        except (AttributeError, cv2.error) as e:
            raise RuntimeError(
                f"Failed to create CUDA HOG detector. Ensure OpenCV was built "
                f"with the cudaobjdetect module.\n"
                f"  OpenCV error: {e}"
            ) from e
        return hog

    logger.info("Creating CPU HOG people detector.")
    hog = cv2.HOGDescriptor()
    hog.setSVMDetector(cv2.HOGDescriptor_getDefaultPeopleDetector())
    return hog
