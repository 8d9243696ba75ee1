"""
Detection data transfer objects.

Region is the single rectangle type produced by the detectors, and
DetectionResult bundles one image's pedestrians and faces. Both are
frozen, serializable containers with no behavior beyond data access.

Non-goals:
    - No rendering logic.
    - No file I/O.
"""

from dataclasses import dataclass, field
from typing import List

PERSON = "person"
FACE = "face"


@dataclass(frozen=True, slots=True)
class Region:
    """An axis-aligned bounding box in image pixel coordinates.

    Attributes:
        x: Left edge.
        y: Top edge.
        width: Box width in pixels.
        height: Box height in pixels.
        label: What was detected ('person' or 'face').
    """

    x: int
    y: int
    width: int
    height: int
    label: str = PERSON

    def to_dict(self) -> dict:
        """Return a plain dict suitable for JSON serialization."""
        return {
            "label": self.label,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
        }

    @property
    def x2(self) -> int:
        """Right edge (exclusive)."""
        return self.x + self.width

    @property
    def y2(self) -> int:
        """Bottom edge (exclusive)."""
        return self.y + self.height

    @property
    def area(self) -> int:
        return self.width * self.height


@dataclass(frozen=True)
class DetectionResult:
    """Everything detected in one image.

    Attributes:
        bodies: Pedestrian regions, in no particular order.
        faces: Face regions, in no particular order.
        device: 'GPU' if the device pipeline ran, otherwise 'CPU'.
        elapsed_ms: Wall time spent detecting, in milliseconds.
    """

    bodies: List[Region] = field(default_factory=list)
    faces: List[Region] = field(default_factory=list)
    device: str = "CPU"
    elapsed_ms: float = 0.0

    @property
    def regions(self) -> List[Region]:
        """Bodies followed by faces."""
        return [*self.bodies, *self.faces]
