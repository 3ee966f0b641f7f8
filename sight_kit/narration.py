"""
Spoken-style descriptions of detections.

Text only; speaking it is up to the host application.
"""

from __future__ import annotations

from typing import Sequence

from .types import BoundingBox, Detection

NO_OBJECTS = "No objects detected."


def horizontal_position(box: BoundingBox) -> str:
    """Coarse direction of the box center, by thirds of the frame."""

    if box.center_x < 1.0 / 3.0:
        return "on your left"
    if box.center_x > 2.0 / 3.0:
        return "on your right"
    return "ahead"


def describe(detection: Detection, *, with_position: bool = True, runner_up_margin: float = 0.1) -> str:
    """
    "person ahead", or "cup or bowl on your left" when the runner-up class
    scored within `runner_up_margin` of the winner.
    """

    name = detection.label
    if (
        detection.runner_up_label
        and detection.runner_up_label != detection.label
        and detection.confidence - detection.runner_up_confidence <= runner_up_margin
    ):
        name = f"{name} or {detection.runner_up_label}"
    if with_position:
        return f"{name} {horizontal_position(detection.box)}"
    return name


def announce(detections: Sequence[Detection], max_items: int = 1, *, with_position: bool = True) -> str:
    """Sentence for the most confident detections; input is expected sorted by confidence."""

    if not detections or max_items <= 0:
        return NO_OBJECTS
    parts = [describe(d, with_position=with_position) for d in detections[:max_items]]
    return "Detected: " + ", ".join(parts)
