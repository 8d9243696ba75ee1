"""
Output handling for the detection pipeline.

Responsibility:
    Route detection results to configured output sinks:
    display window, saved images, JSON, or CSV.
    Supports multiple orthogonal outputs simultaneously.

Non-goals:
    - No detection logic.
    - No input acquisition.
"""

import logging
from pathlib import Path
from typing import Dict, Set

import cv2
import numpy as np

from bodydetect.config import AppConfig, get_project_root
from bodydetect.detection import DetectionResult
from bodydetect.serializer import save_csv, save_json
from bodydetect.visualizer import draw_detections, show_frame

logger = logging.getLogger(__name__)


class OutputHandler:
    """Routes detection results to configured output sinks.

    Supports orthogonal outputs - multiple modes can be active simultaneously:
        - 'display': Show the annotated image until a key is pressed.
        - 'save_image': Write annotated images to files.
        - 'save_json': Accumulate results, write JSON on finalize.
        - 'save_csv': Accumulate results, write CSV on finalize.

    Usage:
        handler = OutputHandler(config)
        handler.process_frame(frame_id, frame, result)
        ...
        handler.finalize()  # Flush any buffered output
    """

    def __init__(self, config: AppConfig) -> None:
        """Initialize the output handler.

        Args:
            config: Application configuration (output mode, paths, vis params).
        """
        self._config = config

        # Parse output modes (comma-separated for multiple outputs)
        self._modes: Set[str] = set(m.strip() for m in config.output.mode.split(','))

        # Buffer for serialization modes
        self._results_buffer: Dict[int, DetectionResult] = {}

        # Resolve output path
        save_path = Path(config.output.save_path)
        if not save_path.is_absolute():
            save_path = get_project_root() / save_path
        self._save_path = save_path

        # Create output directory if saving files
        if self._modes & {'save_image', 'save_json', 'save_csv'}:
            self._save_path.mkdir(parents=True, exist_ok=True)

        logger.info("OutputHandler initialized: modes=%s, save_path=%s",
                    self._modes, self._save_path)

    @property
    def save_path(self) -> Path:
        return self._save_path

    def process_frame(
        self,
        frame_id: int,
        frame: np.ndarray,
        result: DetectionResult,
    ) -> bool:
        """Process a single frame's detections through the output pipeline.

        Returns:
            True to continue processing, False to signal the caller
            should stop (the user pressed 'q' or ESC in display mode).
        """
        should_continue = True

        if 'display' in self._modes:
            if not self._handle_display(frame, result):
                should_continue = False

        if 'save_image' in self._modes:
            self._handle_save_image(frame_id, frame, result)

        if 'save_json' in self._modes or 'save_csv' in self._modes:
            self._results_buffer[frame_id] = result

        return should_continue

    def _handle_display(self, frame: np.ndarray, result: DetectionResult) -> bool:
        """Show annotated frame in a window. Returns False on quit key."""
        key = show_frame(frame, result, self._config.visualization)

        if key == ord("q") or key == 27:  # 'q' or ESC
            logger.info("Quit signal received (key press).")
            return False

        return True

    def _handle_save_image(
        self,
        frame_id: int,
        frame: np.ndarray,
        result: DetectionResult,
    ) -> None:
        """Save annotated frame as an image file."""
        annotated = draw_detections(frame, result, self._config.visualization)
        output_file = self._save_path / f"frame_{frame_id:06d}.jpg"
        if not cv2.imwrite(str(output_file), annotated):
            raise OSError(f"Failed to write image: {output_file}")
        logger.debug("Saved frame %d to %s", frame_id, output_file)

    def finalize(self) -> None:
        """Flush buffered output and release resources.

        Must be called after all frames have been processed.
        """
        if 'save_json' in self._modes and self._results_buffer:
            save_json(self._results_buffer, str(self._save_path / "detections.json"))

        if 'save_csv' in self._modes and self._results_buffer:
            save_csv(self._results_buffer, str(self._save_path / "detections.csv"))

        if 'display' in self._modes:
            cv2.destroyAllWindows()

        self._results_buffer.clear()
        logger.info("OutputHandler finalized.")
