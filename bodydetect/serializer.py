"""
Serialization for the detection pipeline.

Responsibility:
    Export detection results to structured file formats (JSON, CSV)
    for downstream consumption or offline analysis.

Non-goals:
    - No rendering, display, or detection logic.
    - No streaming output; complete files are written on finalize.
"""

import csv
import json
import logging
from pathlib import Path
from typing import Dict

from bodydetect.detection import DetectionResult

logger = logging.getLogger(__name__)


def save_json(
    results_by_frame: Dict[int, DetectionResult],
    output_path: str,
) -> None:
    """Export all detections to a JSON file.

    Output schema:
        {
            "frames": [
                {
                    "frame_id": 0,
                    "device": "CPU",
                    "elapsed_ms": 12.3,
                    "regions": [
                        {"label": "person", "x": ..., "y": ..., "width": ..., "height": ...}
                    ]
                }
            ],
            "total_frames": N,
            "total_bodies": B,
            "total_faces": F
        }

    Args:
        results_by_frame: Mapping of frame_id → DetectionResult.
        output_path: Path to the output JSON file.

    Raises:
        OSError: If the output path is not writable.
    """
    _ensure_parent_dir(output_path)

    frames = []
    total_bodies = 0
    total_faces = 0

    for frame_id in sorted(results_by_frame.keys()):
        result = results_by_frame[frame_id]
        total_bodies += len(result.bodies)
        total_faces += len(result.faces)
        frames.append({
            "frame_id": frame_id,
            "device": result.device,
            "elapsed_ms": round(result.elapsed_ms, 2),
            "regions": [r.to_dict() for r in result.regions],
        })

    payload = {
        "frames": frames,
        "total_frames": len(frames),
        "total_bodies": total_bodies,
        "total_faces": total_faces,
    }

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)

    logger.info(
        "JSON output saved: %s (%d frames, %d bodies, %d faces)",
        output_path, len(frames), total_bodies, total_faces,
    )


def save_csv(
    results_by_frame: Dict[int, DetectionResult],
    output_path: str,
) -> None:
    """Export all detections to a CSV file.

    Columns: frame_id, label, x, y, width, height

    Args:
        results_by_frame: Mapping of frame_id → DetectionResult.
        output_path: Path to the output CSV file.

    Raises:
        OSError: If the output path is not writable.
    """
    _ensure_parent_dir(output_path)

    fieldnames = ["frame_id", "label", "x", "y", "width", "height"]

    with open(output_path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()

        total = 0
        for frame_id in sorted(results_by_frame.keys()):
            for region in results_by_frame[frame_id].regions:
                writer.writerow({
                    "frame_id": frame_id,
                    **region.to_dict(),
                })
                total += 1

    logger.info("CSV output saved: %s (%d rows)", output_path, total)


def _ensure_parent_dir(path: str) -> None:
    """Create parent directories if they don't exist."""
    parent = Path(path).parent
    parent.mkdir(parents=True, exist_ok=True)
