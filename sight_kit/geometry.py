"""Box conversions and IoU on NumPy arrays and BoundingBox values."""

from __future__ import annotations

import numpy as np

from .types import BoundingBox


def cxcywh_to_xyxy(boxes: np.ndarray) -> np.ndarray:
    """(N, 4) center form -> (N, 4) corner form."""

    cx, cy, w, h = np.asarray(boxes, dtype=np.float64).T
    return np.stack([cx - w / 2, cy - h / 2, cx + w / 2, cy + h / 2], axis=1)


def xyxy_to_cxcywh(boxes: np.ndarray) -> np.ndarray:
    x1, y1, x2, y2 = np.asarray(boxes, dtype=np.float64).T
    return np.stack([(x1 + x2) / 2, (y1 + y2) / 2, x2 - x1, y2 - y1], axis=1)


def clip_unit(boxes: np.ndarray) -> np.ndarray:
    """Clip normalized xyxy boxes to the unit square."""
    return np.clip(boxes, 0.0, 1.0)


def box_areas(boxes: np.ndarray) -> np.ndarray:
    """Area of (N, 4) xyxy boxes; inverted boxes count as zero."""

    w = np.maximum(0.0, boxes[:, 2] - boxes[:, 0])
    h = np.maximum(0.0, boxes[:, 3] - boxes[:, 1])
    return w * h


def iou_one_to_many(box: np.ndarray, boxes: np.ndarray) -> np.ndarray:
    """
    IoU of a single xyxy box against (N, 4) xyxy boxes.

    Zero-area boxes (and pairs with an empty union) yield 0.
    """

    boxes = np.asarray(boxes, dtype=np.float64).reshape(-1, 4)
    if boxes.shape[0] == 0:
        return np.empty((0,), dtype=np.float64)

    xx1 = np.maximum(box[0], boxes[:, 0])
    yy1 = np.maximum(box[1], boxes[:, 1])
    xx2 = np.minimum(box[2], boxes[:, 2])
    yy2 = np.minimum(box[3], boxes[:, 3])

    inter = np.maximum(0.0, xx2 - xx1) * np.maximum(0.0, yy2 - yy1)
    area_a = max(0.0, float(box[2] - box[0])) * max(0.0, float(box[3] - box[1]))
    union = area_a + box_areas(boxes) - inter

    out = np.zeros_like(inter)
    np.divide(inter, union, out=out, where=union > 0)
    return out


def iou(a: BoundingBox, b: BoundingBox) -> float:
    """Intersection over union of two boxes."""

    return float(iou_one_to_many(np.array(a.as_xyxy()), np.array([b.as_xyxy()]))[0])


def aspect_ratios(widths: np.ndarray, heights: np.ndarray) -> np.ndarray:
    """
    max(w/h, h/w) per box. Degenerate boxes get +inf.
    """

    widths = np.asarray(widths, dtype=np.float64)
    heights = np.asarray(heights, dtype=np.float64)
    out = np.full(widths.shape, np.inf, dtype=np.float64)
    ok = (widths > 0) & (heights > 0)
    out[ok] = np.maximum(widths[ok] / heights[ok], heights[ok] / widths[ok])
    return out
