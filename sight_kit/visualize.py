from __future__ import annotations

from typing import Any, Iterable, Tuple

import numpy as np

from .types import Detection

_FONT_SCALE = 0.5


def _import_cv2() -> Any:
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for draw_detections(). Install with `pip install opencv-python`.") from e
    return cv2


def class_color(cv2: Any, class_id: int) -> Tuple[int, int, int]:
    """BGR color with hues spread by the golden ratio, so neighbouring ids differ."""

    hue = int((abs(int(class_id)) * 0.618033988749895 % 1.0) * 180)
    hsv = np.array([[[hue, 220, 255]]], dtype=np.uint8)
    b, g, r = cv2.cvtColor(hsv, cv2.COLOR_HSV2BGR)[0, 0]
    return int(b), int(g), int(r)


def _caption(cv2: Any, out: np.ndarray, text: str, anchor: Tuple[int, int], color: Tuple[int, int, int]) -> None:
    h, w = out.shape[:2]
    (tw, th), baseline = cv2.getTextSize(text, cv2.FONT_HERSHEY_SIMPLEX, _FONT_SCALE, 1)
    x, y = anchor
    # Above the box when it fits, else just inside its top edge.
    top = y - th - baseline if y - th - baseline >= 0 else y
    bottom = min(top + th + baseline, h - 1)
    cv2.rectangle(out, (x, top), (min(x + tw, w - 1), bottom), color, thickness=-1)
    cv2.putText(out, text, (x, bottom - baseline), cv2.FONT_HERSHEY_SIMPLEX, _FONT_SCALE, (0, 0, 0), 1, cv2.LINE_AA)


def draw_detections(
    image_bgr: np.ndarray,
    detections: Iterable[Detection],
    *,
    min_confidence: float = 0.5,
    box_thickness: int = 2,
) -> np.ndarray:
    """
    Overlay normalized detections as "<label> <pct>%" boxes; returns a copy.

    Detections under `min_confidence` still get narrated, they are only left off the overlay.
    """

    cv2 = _import_cv2()
    if image_bgr is None or not hasattr(image_bgr, "shape"):
        raise TypeError("image_bgr must be a NumPy array (BGR).")
    if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")

    out = image_bgr.copy()
    h, w = out.shape[:2]
    limits = np.array([w - 1, h - 1, w - 1, h - 1], dtype=np.float64)

    for det in detections:
        if det.confidence < min_confidence:
            continue
        x1, y1, x2, y2 = np.clip(np.round(det.box.to_pixels((w, h))), 0, limits).astype(int)
        color = class_color(cv2, det.class_id)
        cv2.rectangle(out, (int(x1), int(y1)), (int(x2), int(y2)), color, thickness=box_thickness)
        _caption(cv2, out, f"{det.label} {det.confidence_percentage}%", (int(x1), int(y1)), color)

    return out
