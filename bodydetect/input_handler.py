"""
Input handling for the detection pipeline.

Responsibility:
    Load still images from a single image file or a directory of images
    and yield them as (frame_id, frame) tuples.

Non-goals:
    - No detection, drawing, or output writing.
    - No video or camera capture.

Robustness:
    - Validates the source at initialization time.
    - Logs and skips unreadable images (never crashes the pipeline).
"""

import logging
import os
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)

# Image extensions recognized by this handler
_IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".bmp", ".tiff", ".tif", ".webp"}


class InputHandler:
    """Frame iterator over an image file or a directory of images.

    Usage:
        handler = InputHandler(source="images/")
        for frame_id, frame in handler:
            # process frame
    """

    def __init__(
        self,
        source: str,
        resize_width: Optional[int] = None,
    ) -> None:
        """Initialize the input handler and validate the source.

        Args:
            source: Image file path or directory path.
            resize_width: Optional width to downscale images. Aspect ratio
                          is preserved. None means no resizing.

        Raises:
            FileNotFoundError: If the source does not exist.
            ValueError: If the file is not an image or the directory has none.
        """
        self._resize_width = resize_width
        source_str = str(source).strip()

        if os.path.isfile(source_str):
            ext = Path(source_str).suffix.lower()
            if ext not in _IMAGE_EXTENSIONS:
                raise ValueError(
                    f"Unrecognized file extension: '{ext}' for source '{source_str}'. "
                    f"Supported images: {_IMAGE_EXTENSIONS}."
                )
            self._mode = "image"
            self._image_paths: List[str] = [source_str]
        elif os.path.isdir(source_str):
            self._mode = "directory"
            self._image_paths = sorted(
                str(p)
                for p in Path(source_str).iterdir()
                if p.suffix.lower() in _IMAGE_EXTENSIONS
            )
            if not self._image_paths:
                raise ValueError(
                    f"No image files found in directory: '{source_str}'. "
                    f"Supported extensions: {_IMAGE_EXTENSIONS}."
                )
            logger.info("Found %d images in directory: %s", len(self._image_paths), source_str)
        else:
            raise FileNotFoundError(
                f"Input source not found: '{source_str}'. "
                f"Provide a valid image file or directory."
            )

        logger.info("InputHandler initialized: mode=%s, source=%s", self._mode, source_str)

    @property
    def image_paths(self) -> List[str]:
        return list(self._image_paths)

    def __iter__(self) -> Iterator[Tuple[int, np.ndarray]]:
        """Yield (frame_id, frame) for every readable image.

        frame_id is the image's 0-based index in the source listing, so
        ids stay stable when an unreadable image is skipped.
        """
        for idx, path in enumerate(self._image_paths):
            frame = cv2.imread(path)
            if frame is None:
                logger.warning(
                    "Skipping unreadable image (frame_id=%d): %s", idx, path
                )
                continue

            yield idx, self._maybe_resize(frame)

    def _maybe_resize(self, frame: np.ndarray) -> np.ndarray:
        """Resize frame if resize_width is configured, preserving aspect ratio."""
        if self._resize_width is None:
            return frame

        h, w = frame.shape[:2]
        if w <= self._resize_width:
            return frame

        scale = self._resize_width / w
        new_w = self._resize_width
        new_h = int(h * scale)
        return cv2.resize(frame, (new_w, new_h), interpolation=cv2.INTER_AREA)
