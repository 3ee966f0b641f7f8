from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .config import Thresholds
from .decode import CandidateBatch
from .errors import InvalidConfiguration
from .geometry import aspect_ratios, clip_unit
from .types import BoundingBox, ScoredBox

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeometryLimits:
    """
    Shape rules applied in source-image pixels.
    """

    min_box_size_px: float = 30.0
    max_aspect_ratio: float = 8.0
    max_box_fraction: Optional[float] = None

    def __post_init__(self) -> None:
        if self.min_box_size_px < 0:
            raise InvalidConfiguration("min_box_size_px must be >= 0")
        if self.max_aspect_ratio < 1.0:
            raise InvalidConfiguration("max_aspect_ratio must be >= 1")
        if self.max_box_fraction is not None and not 0.0 < self.max_box_fraction <= 1.0:
            raise InvalidConfiguration("max_box_fraction must be within (0, 1]")


class CandidateFilter:
    """
    Keep candidates that clear their effective confidence threshold and look like real objects.

    Rejections are silent; on a typical frame almost every anchor is dropped here.
    """

    def __init__(self, limits: GeometryLimits = GeometryLimits()):
        self.limits = limits

    def apply(
        self,
        candidates: CandidateBatch,
        thresholds: Thresholds,
        image_size: Tuple[int, int],
        labels: Optional[Sequence[str]] = None,
    ) -> List[ScoredBox]:
        """
        Args:
            candidates: decoder output
            thresholds: global + per-class confidence cutoffs
            image_size: (width, height) of the source image
            labels: class names by id; class ids without a label are rejected
        """

        if len(candidates) == 0:
            return []

        boxes = clip_unit(candidates.boxes_xyxy())
        keep = self.confidence_mask(candidates, thresholds, labels) & self.geometry_mask(boxes, image_size)
        idx = np.flatnonzero(keep)
        logger.debug("filter kept %d of %d candidates", idx.size, len(candidates))

        out: List[ScoredBox] = []
        for i in idx:
            second = int(candidates.second_class_ids[i])
            out.append(
                ScoredBox(
                    box=BoundingBox(*(float(v) for v in boxes[i])),
                    class_id=int(candidates.class_ids[i]),
                    confidence=float(candidates.confidences[i]),
                    second_class_id=second if second >= 0 else None,
                    second_confidence=float(candidates.second_confidences[i]),
                    anchor_index=int(i),
                )
            )
        return out

    def confidence_mask(
        self,
        candidates: CandidateBatch,
        thresholds: Thresholds,
        labels: Optional[Sequence[str]] = None,
    ) -> np.ndarray:
        return candidates.confidences >= self.effective_thresholds(candidates.class_ids, thresholds, labels)

    def effective_thresholds(
        self,
        class_ids: np.ndarray,
        thresholds: Thresholds,
        labels: Optional[Sequence[str]] = None,
    ) -> np.ndarray:
        if labels is None:
            return np.full(class_ids.shape, thresholds.confidence, dtype=np.float64)

        # Last slot catches ids with no label.
        table = np.array([thresholds.effective(name) for name in labels] + [np.inf], dtype=np.float64)
        n = len(labels)
        lookup = np.where((class_ids >= 0) & (class_ids < n), class_ids, n)
        return table[lookup]

    def geometry_mask(self, boxes_xyxy: np.ndarray, image_size: Tuple[int, int]) -> np.ndarray:
        """boxes_xyxy are normalized and already clipped to the unit square."""

        img_w, img_h = image_size
        w_norm = boxes_xyxy[:, 2] - boxes_xyxy[:, 0]
        h_norm = boxes_xyxy[:, 3] - boxes_xyxy[:, 1]
        w_px = w_norm * float(img_w)
        h_px = h_norm * float(img_h)

        keep = (w_norm > 0) & (h_norm > 0)
        keep &= (w_px >= self.limits.min_box_size_px) & (h_px >= self.limits.min_box_size_px)
        keep &= aspect_ratios(w_px, h_px) <= self.limits.max_aspect_ratio
        if self.limits.max_box_fraction is not None:
            keep &= (w_norm <= self.limits.max_box_fraction) & (h_norm <= self.limits.max_box_fraction)
        return keep
