from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class InputKind(str, Enum):
    """Input tensor layout expected by the inference engine."""

    FLOAT32_NORMALIZED = "float32_normalized"
    UINT8_RAW = "uint8_raw"


class CoordinateFormat(str, Enum):
    """Coordinate space of the raw box parameters."""

    AUTO = "auto"
    NORMALIZED = "normalized"
    PIXEL = "pixel"


@dataclass(frozen=True)
class BoundingBox:
    """
    Axis-aligned box, normalized to [0, 1] of the image width/height.
    """

    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    @property
    def center_x(self) -> float:
        return self.left + self.width / 2

    @property
    def center_y(self) -> float:
        return self.top + self.height / 2

    @property
    def area(self) -> float:
        return self.width * self.height

    def is_valid(self) -> bool:
        return self.left < self.right and self.top < self.bottom

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.left, self.top, self.right, self.bottom

    def to_pixels(self, image_size: Tuple[int, int]) -> Tuple[float, float, float, float]:
        """Scale to pixel coordinates; image_size is (width, height)."""
        w, h = image_size
        return self.left * w, self.top * h, self.right * w, self.bottom * h


@dataclass(frozen=True)
class Candidate:
    """
    One anchor's decoded estimate, center form, coordinates already normalized.
    """

    center_x: float
    center_y: float
    width: float
    height: float
    class_id: int
    confidence: float
    second_class_id: Optional[int] = None
    second_confidence: float = 0.0
    anchor_index: int = 0

    def to_box(self) -> BoundingBox:
        half_w = self.width / 2
        half_h = self.height / 2
        return BoundingBox(
            left=self.center_x - half_w,
            top=self.center_y - half_h,
            right=self.center_x + half_w,
            bottom=self.center_y + half_h,
        )


@dataclass(frozen=True)
class ScoredBox:
    """A candidate that passed filtering."""

    box: BoundingBox
    class_id: int
    confidence: float
    second_class_id: Optional[int] = None
    second_confidence: float = 0.0
    anchor_index: int = 0


@dataclass(frozen=True)
class Detection:
    """
    Final labeled detection handed to narration.
    """

    box: BoundingBox
    class_id: int
    confidence: float
    label: str
    runner_up_label: Optional[str] = None
    runner_up_confidence: float = 0.0

    @property
    def confidence_percentage(self) -> str:
        return f"{int(self.confidence * 100 + 0.5)}%"

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.box.as_xyxy()
