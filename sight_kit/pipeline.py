from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, List, Optional, Protocol, Sequence, Tuple, Union

import numpy as np

from .config import DetectorConfig, Thresholds
from .decode import DecoderConfig, TensorDecoder
from .errors import EngineLoadError, EngineNotReady, InvalidConfiguration, MalformedTensor
from .filters import CandidateFilter, GeometryLimits
from .labels import load_labels
from .nms import NMSConfig, Suppressor
from .preprocess import ImagePreprocessor, ModelInputSpec
from .types import Detection, ScoredBox

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class InferenceEngine(Protocol):
    """What the pipeline needs from a loaded model."""

    @property
    def ready(self) -> bool: ...

    @property
    def input_spec(self) -> ModelInputSpec: ...

    def run(self, blob: np.ndarray) -> np.ndarray: ...


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", ".git"),
) -> Path:
    """Walk up from `start` (default: cwd) to the first directory holding a marker."""

    p = Path(start).resolve() if start is not None else Path.cwd().resolve()
    if p.is_file():
        p = p.parent
    for parent in (p, *p.parents):
        if any((parent / m).exists() for m in markers):
            return parent
    return p


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    p = Path(path)
    if p.is_absolute():
        return p
    base = find_project_root() if root in ("auto", None) else Path(root).resolve()
    return (base / p).resolve()


class DetectionPipeline:
    """
    Frame in, narrated-ready detections out:
    preprocess -> inference -> decode -> filter -> suppress -> truncate -> label.

    One call handles one frame and keeps no state between calls. Callers
    feeding a live camera must not overlap calls. Per-frame failures are
    logged and produce an empty list.
    """

    def __init__(
        self,
        engine: InferenceEngine,
        labels: Sequence[str],
        *,
        config: DetectorConfig = DetectorConfig(),
        preprocessor: Optional[Callable[[np.ndarray], np.ndarray]] = None,
    ):
        self.engine = engine
        self.labels = list(labels)
        self.config = config
        self._preprocessor = preprocessor
        self.filter = CandidateFilter(
            GeometryLimits(
                min_box_size_px=config.min_box_size_px,
                max_aspect_ratio=config.max_aspect_ratio,
                max_box_fraction=config.max_box_fraction,
            )
        )
        self.suppressor = Suppressor(
            NMSConfig(iou_threshold=config.iou_threshold, class_agnostic=config.class_agnostic_nms)
        )

    def detect(
        self,
        image: np.ndarray,
        thresholds: Optional[Thresholds] = None,
        max_results: Optional[int] = None,
    ) -> List[Detection]:
        max_results = self._resolve_max_results(max_results)

        if not getattr(self.engine, "ready", False):
            logger.warning("Inference engine not ready; skipping frame")
            return []

        try:
            spec = self.engine.input_spec
        except EngineNotReady as exc:
            logger.warning("Inference engine not ready: %s", exc)
            return []

        preprocessor = self._preprocessor or ImagePreprocessor(spec)
        try:
            blob = preprocessor(image)
        except (TypeError, ValueError) as exc:
            logger.warning("Could not preprocess frame: %s", exc)
            return []
        except Exception:
            # Includes cv2.error and failures inside caller-supplied preprocessors.
            logger.exception("Preprocessing failed; skipping frame")
            return []
        image_size = (int(image.shape[1]), int(image.shape[0]))

        try:
            raw = self.engine.run(blob)
        except EngineNotReady as exc:
            logger.warning("Inference engine not ready: %s", exc)
            return []
        except Exception:
            # A dropped frame must not take down the narration loop.
            logger.exception("Inference failed; skipping frame")
            return []

        return self.postprocess(raw, image_size, spec.size, thresholds=thresholds, max_results=max_results)

    def postprocess(
        self,
        raw: np.ndarray,
        image_size: Tuple[int, int],
        input_size: Tuple[int, int] = (640, 640),
        thresholds: Optional[Thresholds] = None,
        max_results: Optional[int] = None,
    ) -> List[Detection]:
        """
        Decode, filter, suppress and label a raw output tensor.

        Args:
            raw: detector output for one image
            image_size: (width, height) of the source image
            input_size: (width, height) of the model input
        """

        thresholds = thresholds if thresholds is not None else self.config.thresholds()
        max_results = self._resolve_max_results(max_results)

        decoder = TensorDecoder(
            DecoderConfig(
                input_size=input_size,
                coordinate_format=self.config.coordinate_format,
                format_sample_size=self.config.format_sample_size,
                # Fixes the channel axis even when anchors are fewer than channels.
                num_classes=len(self.labels) or None,
            )
        )
        try:
            candidates = decoder.decode(raw)
        except MalformedTensor as exc:
            logger.warning("Malformed detector output: %s", exc)
            return []

        accepted = self.filter.apply(candidates, thresholds, image_size, self.labels)
        kept = self.suppressor.suppress(accepted)[:max_results]
        return [self._to_detection(s) for s in kept]

    def _resolve_max_results(self, max_results: Optional[int]) -> int:
        if max_results is None:
            return self.config.max_results
        if max_results < 0:
            raise InvalidConfiguration("max_results must be >= 0")
        return int(max_results)

    def _label(self, class_id: Optional[int]) -> Optional[str]:
        if class_id is None or not 0 <= class_id < len(self.labels):
            return None
        return self.labels[class_id]

    def _to_detection(self, scored: ScoredBox) -> Detection:
        return Detection(
            box=scored.box,
            class_id=scored.class_id,
            confidence=scored.confidence,
            label=self._label(scored.class_id) or str(scored.class_id),
            runner_up_label=self._label(scored.second_class_id),
            runner_up_confidence=scored.second_confidence,
        )


def check_label_count(output_shape: Optional[Sequence[object]], labels: Sequence[str]) -> None:
    """
    Raise EngineLoadError when no static axis of a (1, 4 + C, A) output matches the label count.

    Dynamic axes (None or symbolic names) are not checked.
    """

    if not output_shape:
        return
    expected = 4 + len(labels)
    static = [d for d in tuple(output_shape)[-2:] if isinstance(d, int) and d > 0]
    if len(static) == 2 and expected not in static:
        raise EngineLoadError(
            f"{len(labels)} labels do not fit model output {tuple(output_shape)}; expected an axis of {expected}."
        )


def load_pipeline(
    model_path: PathLike,
    labels_path: PathLike,
    *,
    config: DetectorConfig = DetectorConfig(),
    backend: Optional[str] = None,
    root: Optional[PathLike] = "auto",
    onnx_providers: Optional[Sequence[str]] = None,
    onnx_input_name: Optional[str] = None,
    onnx_output_name: Optional[str] = None,
) -> DetectionPipeline:
    """
    Build a ready pipeline for a model and label file on disk.

        pipe = load_pipeline("models/yolov8n.onnx", "models/labelmap.txt")

    Relative paths resolve against the project root by default. Load and
    allocation failures raise EngineLoadError here, before any frame runs.
    """

    resolved = resolve_path(model_path, root=root)
    chosen = backend
    if chosen is None:
        if resolved.suffix.lower() == ".onnx":
            chosen = "onnxruntime"
        else:
            raise ValueError(
                f"Could not infer backend from extension '{resolved.suffix}'. Pass backend=... explicitly."
            )

    chosen = chosen.lower()
    if chosen != "onnxruntime":
        raise ValueError(f"Unsupported backend: {backend!r}")

    from .backends.onnxruntime_backend import OnnxRuntimeEngine, OnnxRuntimeEngineConfig

    engine = OnnxRuntimeEngine(
        resolved,
        OnnxRuntimeEngineConfig(providers=onnx_providers, input_name=onnx_input_name, output_name=onnx_output_name),
    )
    engine.load().allocate()

    try:
        labels = load_labels(resolve_path(labels_path, root=root))
    except (FileNotFoundError, ValueError) as exc:
        engine.close()
        raise EngineLoadError(str(exc)) from exc

    try:
        check_label_count(engine.output_shape, labels)
    except EngineLoadError:
        engine.close()
        raise

    logger.info("Pipeline ready: %s, %d labels", resolved.name, len(labels))
    return DetectionPipeline(engine, labels, config=config)
