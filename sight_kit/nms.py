from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .geometry import box_areas
from .types import ScoredBox

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NMSConfig:
    iou_threshold: float = 0.45
    max_detections: Optional[int] = None
    # Compare every box against every accepted box regardless of class.
    class_agnostic: bool = True


def nms(boxes: np.ndarray, scores: np.ndarray, cfg: NMSConfig = NMSConfig()) -> np.ndarray:
    """
    Greedy NumPy NMS. Expects boxes shape (N,4) in xyxy and scores shape (N,).
    Returns indices of kept boxes, highest score first.

    Ordering is a stable sort, so equal scores keep their input order. A box
    is dropped only when its IoU with a kept box is strictly above the threshold.
    """

    if boxes.size == 0:
        return np.empty((0,), dtype=np.int64)

    boxes = np.asarray(boxes, dtype=np.float64)
    x1 = boxes[:, 0]
    y1 = boxes[:, 1]
    x2 = boxes[:, 2]
    y2 = boxes[:, 3]
    areas = box_areas(boxes)

    order = np.argsort(-np.asarray(scores, dtype=np.float64), kind="stable")
    keep: List[int] = []

    while order.size > 0:
        if cfg.max_detections is not None and len(keep) >= cfg.max_detections:
            break
        i = order[0]
        keep.append(int(i))

        xx1 = np.maximum(x1[i], x1[order[1:]])
        yy1 = np.maximum(y1[i], y1[order[1:]])
        xx2 = np.minimum(x2[i], x2[order[1:]])
        yy2 = np.minimum(y2[i], y2[order[1:]])

        w = np.maximum(0.0, xx2 - xx1)
        h = np.maximum(0.0, yy2 - yy1)
        inter = w * h
        union = areas[i] + areas[order[1:]] - inter
        iou = np.zeros_like(inter)
        np.divide(inter, union, out=iou, where=union > 0)

        inds = np.where(iou <= cfg.iou_threshold)[0]
        order = order[inds + 1]

    return np.array(keep, dtype=np.int64)


class Suppressor:
    """
    Collapse clusters of overlapping boxes onto their most confident member.

    Output is sorted by descending confidence, so truncating it yields the top-K.
    """

    def __init__(self, cfg: NMSConfig = NMSConfig()):
        self.cfg = cfg

    def suppress(self, accepted: Sequence[ScoredBox]) -> List[ScoredBox]:
        if not accepted:
            return []

        boxes = np.array([s.box.as_xyxy() for s in accepted], dtype=np.float64)
        scores = np.array([s.confidence for s in accepted], dtype=np.float64)

        if self.cfg.class_agnostic:
            keep_idx = nms(boxes, scores, self.cfg).tolist()
        else:
            keep_idx = self._per_class(boxes, scores, np.array([s.class_id for s in accepted]))

        logger.debug("nms kept %d of %d boxes", len(keep_idx), len(accepted))
        return [accepted[i] for i in keep_idx]

    def _per_class(self, boxes: np.ndarray, scores: np.ndarray, class_ids: np.ndarray) -> List[int]:
        per_class_cfg = NMSConfig(iou_threshold=self.cfg.iou_threshold, class_agnostic=True)
        kept: List[int] = []
        for cls in np.unique(class_ids):
            idx = np.where(class_ids == cls)[0]
            keep_local = nms(boxes[idx], scores[idx], per_class_cfg)
            kept.extend(idx[keep_local].tolist())

        kept.sort(key=lambda i: (-scores[i], i))
        if self.cfg.max_detections is not None:
            kept = kept[: self.cfg.max_detections]
        return kept
