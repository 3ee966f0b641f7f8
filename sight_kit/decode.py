from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, Optional, Sequence, Tuple

import numpy as np

from .errors import MalformedTensor
from .geometry import cxcywh_to_xyxy
from .types import Candidate, CoordinateFormat

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecoderConfig:
    """
    Configuration for decoding raw detector output.

    - input_size: (width, height) of the model input, used to normalize pixel-space boxes
    - coordinate_format: AUTO runs the range heuristic once per tensor
    - num_classes: if set, the channel axis must equal 4 + num_classes
    - format_sample_size: strided/top-scoring anchors inspected by the heuristic; None inspects all
    """

    input_size: Tuple[int, int] = (640, 640)
    coordinate_format: CoordinateFormat = CoordinateFormat.AUTO
    num_classes: Optional[int] = None
    format_sample_size: Optional[int] = 256


@dataclass(frozen=True)
class CandidateBatch:
    """
    Per-anchor candidates stored column-wise.

    boxes are (A, 4) center-form [cx, cy, w, h] in normalized coordinates.
    second_class_ids holds -1 where no runner-up class scored above zero.
    """

    boxes: np.ndarray
    class_ids: np.ndarray
    confidences: np.ndarray
    second_class_ids: np.ndarray
    second_confidences: np.ndarray
    coordinate_format: CoordinateFormat = CoordinateFormat.NORMALIZED

    def __len__(self) -> int:
        return int(self.class_ids.shape[0])

    def __getitem__(self, i: int) -> Candidate:
        cx, cy, w, h = (float(v) for v in self.boxes[i])
        second = int(self.second_class_ids[i])
        return Candidate(
            center_x=cx,
            center_y=cy,
            width=w,
            height=h,
            class_id=int(self.class_ids[i]),
            confidence=float(self.confidences[i]),
            second_class_id=second if second >= 0 else None,
            second_confidence=float(self.second_confidences[i]),
            anchor_index=int(i),
        )

    def __iter__(self) -> Iterator[Candidate]:
        for i in range(len(self)):
            yield self[i]

    def boxes_xyxy(self) -> np.ndarray:
        return cxcywh_to_xyxy(self.boxes)

    @classmethod
    def from_candidates(cls, candidates: Sequence[Candidate]) -> "CandidateBatch":
        if not candidates:
            return cls(
                boxes=np.zeros((0, 4), dtype=np.float64),
                class_ids=np.zeros((0,), dtype=np.int64),
                confidences=np.zeros((0,), dtype=np.float64),
                second_class_ids=np.zeros((0,), dtype=np.int64),
                second_confidences=np.zeros((0,), dtype=np.float64),
            )
        return cls(
            boxes=np.array([[c.center_x, c.center_y, c.width, c.height] for c in candidates], dtype=np.float64),
            class_ids=np.array([c.class_id for c in candidates], dtype=np.int64),
            confidences=np.array([c.confidence for c in candidates], dtype=np.float64),
            second_class_ids=np.array(
                [-1 if c.second_class_id is None else c.second_class_id for c in candidates], dtype=np.int64
            ),
            second_confidences=np.array([c.second_confidence for c in candidates], dtype=np.float64),
        )


class TensorDecoder:
    """
    Decode a YOLO-style anchors tensor into one candidate per anchor.

    Supported layouts (per image):
    - (4 + C, A) channels first, e.g. 84 x 8400 for YOLOv8 on COCO
    - (A, 4 + C) channels last
    - either of the above with a leading batch axis of 1

    Box rows are [cx, cy, w, h] either normalized or in model-input pixels.
    No filtering happens here.
    """

    def __init__(self, cfg: DecoderConfig = DecoderConfig()):
        self.cfg = cfg

    def decode(self, preds: np.ndarray) -> CandidateBatch:
        p = self._channels_first(preds)
        num_anchors = p.shape[1]

        boxes = np.nan_to_num(p[0:4, :].astype(np.float64), nan=0.0, posinf=0.0, neginf=0.0)
        class_scores = np.nan_to_num(p[4:, :].astype(np.float64), nan=0.0, posinf=1.0, neginf=0.0)
        class_scores = np.clip(class_scores, 0.0, 1.0)

        fmt = self.detect_format(boxes, class_scores)
        if fmt is CoordinateFormat.PIXEL:
            in_w, in_h = self.cfg.input_size
            boxes[[0, 2], :] /= float(in_w)
            boxes[[1, 3], :] /= float(in_h)

        # Top-2 classes per anchor; argmax keeps the lowest class id on ties.
        anchors = np.arange(num_anchors)
        class_ids = np.argmax(class_scores, axis=0)
        confidences = class_scores[class_ids, anchors]
        if class_scores.shape[0] > 1:
            masked = class_scores.copy()
            masked[class_ids, anchors] = -1.0
            second_ids = np.argmax(masked, axis=0)
            second_conf = masked[second_ids, anchors]
            # A zero-scored runner-up carries no information.
            second_ids = np.where(second_conf > 0.0, second_ids, -1)
            second_conf = np.maximum(second_conf, 0.0)
        else:
            second_ids = np.full((num_anchors,), -1, dtype=np.int64)
            second_conf = np.zeros((num_anchors,), dtype=np.float64)

        logger.debug("decoded %d anchors, %d classes, format=%s", num_anchors, class_scores.shape[0], fmt.value)

        return CandidateBatch(
            boxes=boxes.T.copy(),
            class_ids=class_ids.astype(np.int64),
            confidences=confidences,
            second_class_ids=second_ids.astype(np.int64),
            second_confidences=second_conf,
            coordinate_format=fmt,
        )

    def detect_format(self, boxes: np.ndarray, class_scores: np.ndarray) -> CoordinateFormat:
        """
        Decide whether box rows are normalized or pixel-space.

        This is a heuristic: a pixel-space tensor whose sampled boxes are all
        tiny and near the origin reads as normalized. Force the format in
        DecoderConfig when the model's convention is known.
        """

        forced = CoordinateFormat(self.cfg.coordinate_format)
        if forced is not CoordinateFormat.AUTO:
            return forced

        idx = self._sample_indices(class_scores)
        sample = boxes[:, idx]
        if sample.size == 0:
            return CoordinateFormat.NORMALIZED
        if float(sample.min()) >= 0.0 and float(sample.max()) <= 1.0:
            return CoordinateFormat.NORMALIZED
        return CoordinateFormat.PIXEL

    # ------------------------------------------------------------------ #
    # Helper internal
    # ------------------------------------------------------------------ #
    def _sample_indices(self, class_scores: np.ndarray) -> np.ndarray:
        num_anchors = class_scores.shape[1]
        n = self.cfg.format_sample_size
        if n is None or n <= 0 or n >= num_anchors:
            return np.arange(num_anchors)

        strided = np.linspace(0, num_anchors - 1, num=n).astype(np.int64)
        best = class_scores.max(axis=0)
        top = np.argpartition(best, num_anchors - n)[num_anchors - n:]
        return np.unique(np.concatenate([strided, top]))

    def _channels_first(self, preds: np.ndarray) -> np.ndarray:
        p = np.asarray(preds)
        if p.dtype.kind not in "fiu":
            raise MalformedTensor(f"Expected a numeric tensor, got dtype {p.dtype}.")

        if p.ndim == 3:
            if p.shape[0] != 1:
                raise MalformedTensor(f"Batch > 1 is not supported (got shape {p.shape}). Pass one image at a time.")
            p = p[0]
        if p.ndim != 2:
            raise MalformedTensor(f"Unsupported detector output shape: {p.shape}")

        rows, cols = p.shape
        if self.cfg.num_classes is not None:
            expected = 4 + int(self.cfg.num_classes)
            if rows == expected:
                pass
            elif cols == expected:
                p = p.T
            else:
                raise MalformedTensor(f"Expected an axis of size {expected} (4 + {self.cfg.num_classes}), got {p.shape}.")
        elif rows > cols:
            # Channel axis is the small one; anchors number in the thousands.
            p = p.T

        if p.shape[0] < 5:
            raise MalformedTensor(f"Need 4 box rows and at least one class row, got shape {p.shape}.")
        if p.shape[1] == 0:
            raise MalformedTensor("Detector output has no anchors.")
        return p
