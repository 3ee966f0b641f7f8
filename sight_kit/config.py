from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from .errors import InvalidConfiguration
from .types import CoordinateFormat


def _check_unit(name: str, value: float) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidConfiguration(f"{name} must be a number")
    if not 0.0 <= float(value) <= 1.0:
        raise InvalidConfiguration(f"{name} must be within [0, 1], got {value}")


@dataclass(frozen=True)
class Thresholds:
    """
    Confidence cutoffs for one detect() call.

    per_class maps a label name to an override of the global threshold.
    """

    confidence: float = 0.25
    per_class: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _check_unit("confidence threshold", self.confidence)
        for name, value in self.per_class.items():
            if not isinstance(name, str):
                raise InvalidConfiguration(f"class threshold keys must be label names, got {name!r}")
            _check_unit(f"threshold for {name!r}", value)
        object.__setattr__(self, "per_class", MappingProxyType(dict(self.per_class)))

    def effective(self, label: Optional[str]) -> float:
        if label is not None and label in self.per_class:
            return float(self.per_class[label])
        return float(self.confidence)


@dataclass(frozen=True)
class DetectorConfig:
    confidence_threshold: float = 0.25
    class_thresholds: Mapping[str, float] = field(default_factory=dict)
    iou_threshold: float = 0.45
    max_results: int = 5
    min_box_size_px: float = 30.0
    max_aspect_ratio: float = 8.0
    # Reject boxes wider or taller than this fraction of the frame; None disables.
    max_box_fraction: Optional[float] = None
    # Cross-class suppression; False partitions by class id first.
    class_agnostic_nms: bool = True
    coordinate_format: CoordinateFormat = CoordinateFormat.AUTO
    format_sample_size: Optional[int] = 256

    def __post_init__(self) -> None:
        # Builds (and validates) the threshold table.
        self.thresholds()
        _check_unit("iou_threshold", self.iou_threshold)
        if isinstance(self.max_results, bool) or not isinstance(self.max_results, int) or self.max_results < 0:
            raise InvalidConfiguration("max_results must be an integer >= 0")
        if self.min_box_size_px < 0:
            raise InvalidConfiguration("min_box_size_px must be >= 0")
        if self.max_aspect_ratio < 1.0:
            raise InvalidConfiguration("max_aspect_ratio must be >= 1")
        if self.max_box_fraction is not None and not 0.0 < self.max_box_fraction <= 1.0:
            raise InvalidConfiguration("max_box_fraction must be within (0, 1]")
        if self.format_sample_size is not None and self.format_sample_size < 1:
            raise InvalidConfiguration("format_sample_size must be >= 1")
        try:
            object.__setattr__(self, "coordinate_format", CoordinateFormat(self.coordinate_format))
        except ValueError as exc:
            raise InvalidConfiguration(f"Unknown coordinate_format: {self.coordinate_format!r}") from exc

    def thresholds(self) -> Thresholds:
        return Thresholds(confidence=self.confidence_threshold, per_class=self.class_thresholds)


def _require_number(payload: Dict[str, Any], key: str, default: float) -> float:
    value = payload.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidConfiguration(f"{key} must be a number")
    return float(value)


def _require_int(payload: Dict[str, Any], key: str, default: int) -> int:
    value = payload.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidConfiguration(f"{key} must be an integer")
    return int(value)


_ALLOWED_KEYS = {
    "schema_version",
    "confidence_threshold",
    "class_thresholds",
    "iou_threshold",
    "max_results",
    "min_box_size_px",
    "max_aspect_ratio",
    "max_box_fraction",
    "class_agnostic_nms",
    "coordinate_format",
    "format_sample_size",
}


def load_detector_config(path: Path) -> DetectorConfig:
    """
    Load a DetectorConfig from JSON. Missing keys keep their defaults.
    """

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Detector config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidConfiguration(f"Invalid detector config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise InvalidConfiguration("Detector config must be a JSON object")

    unknown = sorted(set(payload.keys()) - _ALLOWED_KEYS)
    if unknown:
        raise InvalidConfiguration(f"Unknown detector config keys: {unknown}")

    if _require_int(payload, "schema_version", 1) != 1:
        raise InvalidConfiguration("detector config schema_version must be 1")

    defaults = DetectorConfig()

    class_thresholds = payload.get("class_thresholds", {})
    if not isinstance(class_thresholds, dict):
        raise InvalidConfiguration("class_thresholds must be an object of label -> threshold")

    max_box_fraction = payload.get("max_box_fraction")
    if max_box_fraction is not None:
        max_box_fraction = _require_number(payload, "max_box_fraction", 0.0)

    # An explicit null inspects every anchor.
    if "format_sample_size" in payload and payload["format_sample_size"] is None:
        format_sample_size = None
    else:
        format_sample_size = _require_int(payload, "format_sample_size", defaults.format_sample_size)

    class_agnostic = payload.get("class_agnostic_nms", defaults.class_agnostic_nms)
    if not isinstance(class_agnostic, bool):
        raise InvalidConfiguration("class_agnostic_nms must be a boolean")

    return DetectorConfig(
        confidence_threshold=_require_number(payload, "confidence_threshold", defaults.confidence_threshold),
        class_thresholds=class_thresholds,
        iou_threshold=_require_number(payload, "iou_threshold", defaults.iou_threshold),
        max_results=_require_int(payload, "max_results", defaults.max_results),
        min_box_size_px=_require_number(payload, "min_box_size_px", defaults.min_box_size_px),
        max_aspect_ratio=_require_number(payload, "max_aspect_ratio", defaults.max_aspect_ratio),
        max_box_fraction=max_box_fraction,
        class_agnostic_nms=class_agnostic,
        coordinate_format=payload.get("coordinate_format", defaults.coordinate_format.value),
        format_sample_size=format_sample_size,
    )
