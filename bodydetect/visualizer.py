"""
Visualization for the detection pipeline.

Responsibility:
    Draw pedestrian and face boxes onto a frame and show it in a window.
    Drawing produces an annotated copy; the input frame is never modified.

Non-goals:
    - No file writing.
    - No detection or model logic.
"""

import cv2
import numpy as np

from bodydetect.config import VisualizationConfig
from bodydetect.detection import DetectionResult, Region

# Hard-coded rendering constants (cosmetic internals, not user-facing)
_FONT = cv2.FONT_HERSHEY_SIMPLEX
_FONT_SCALE = 0.5
_FONT_THICKNESS = 1
_LABEL_PADDING = 4


def _draw_region(
    image: np.ndarray,
    region: Region,
    color,
    thickness: int,
    show_label: bool,
) -> None:
    cv2.rectangle(image, (region.x, region.y), (region.x2, region.y2), color, thickness)

    if not show_label:
        return

    (text_w, text_h), _ = cv2.getTextSize(region.label, _FONT, _FONT_SCALE, _FONT_THICKNESS)

    # Above the box, or below if too close to top
    label_y = region.y - _LABEL_PADDING
    if label_y - text_h < 0:
        label_y = region.y2 + text_h + _LABEL_PADDING

    cv2.putText(
        image,
        region.label,
        (region.x, label_y),
        _FONT,
        _FONT_SCALE,
        color,
        _FONT_THICKNESS,
        cv2.LINE_AA,
    )


def draw_detections(
    frame: np.ndarray,
    result: DetectionResult,
    config: VisualizationConfig,
) -> np.ndarray:
    """Draw bodies and faces onto a copy of the frame.

    Args:
        frame: Input BGR image (not modified).
        result: Detections to render.
        config: Colors, thicknesses and label toggle.

    Returns:
        A new BGR numpy array with the boxes drawn.
    """
    annotated = frame.copy()

    for body in result.bodies:
        _draw_region(annotated, body, config.body_color, config.body_thickness, config.show_labels)

    for face in result.faces:
        _draw_region(annotated, face, config.face_color, config.face_thickness, config.show_labels)

    return annotated


def window_title(result: DetectionResult) -> str:
    """Title naming the device used and the detection time."""
    return (
        f"Pedestrian detection using {result.device} "
        f"in {result.elapsed_ms:.0f} milliseconds."
    )


def show_frame(
    frame: np.ndarray,
    result: DetectionResult,
    config: VisualizationConfig,
) -> int:
    """Show the annotated frame and block until a key is pressed.

    Returns:
        The key code (int) pressed.
    """
    annotated = draw_detections(frame, result, config)
    title = window_title(result)
    cv2.imshow(title, annotated)
    key = cv2.waitKey(0) & 0xFF
    cv2.destroyWindow(title)
    return key
