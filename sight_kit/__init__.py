"""
Detection post-processing for narrated object detection.

Turns the raw output of a YOLO-style single-stage detector into a short,
de-duplicated, labeled list of boxes. The numeric core needs only NumPy;
OpenCV (preprocessing, drawing) and ONNX Runtime (inference) are imported
where they are used.
"""

from .config import DetectorConfig, Thresholds, load_detector_config
from .decode import CandidateBatch, DecoderConfig, TensorDecoder
from .errors import EngineLoadError, EngineNotReady, InvalidConfiguration, MalformedTensor, SightKitError
from .filters import CandidateFilter, GeometryLimits
from .geometry import iou
from .labels import load_labels
from .narration import announce, describe
from .nms import NMSConfig, Suppressor, nms
from .pipeline import DetectionPipeline, InferenceEngine, load_pipeline
from .preprocess import ImagePreprocessor, ModelInputSpec
from .types import BoundingBox, Candidate, CoordinateFormat, Detection, InputKind, ScoredBox
from .visualize import draw_detections

__all__ = [
    "DetectorConfig",
    "Thresholds",
    "load_detector_config",
    "CandidateBatch",
    "DecoderConfig",
    "TensorDecoder",
    "EngineLoadError",
    "EngineNotReady",
    "InvalidConfiguration",
    "MalformedTensor",
    "SightKitError",
    "CandidateFilter",
    "GeometryLimits",
    "iou",
    "load_labels",
    "announce",
    "describe",
    "NMSConfig",
    "Suppressor",
    "nms",
    "DetectionPipeline",
    "InferenceEngine",
    "load_pipeline",
    "ImagePreprocessor",
    "ModelInputSpec",
    "BoundingBox",
    "Candidate",
    "CoordinateFormat",
    "Detection",
    "InputKind",
    "ScoredBox",
    "draw_detections",
]
