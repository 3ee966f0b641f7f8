import unittest

import numpy as np

from sight_kit.config import DetectorConfig, Thresholds
from sight_kit.errors import EngineLoadError, EngineNotReady, InvalidConfiguration
from sight_kit.pipeline import DetectionPipeline, check_label_count, load_pipeline
from sight_kit.preprocess import ModelInputSpec

LABELS = ["person", "bicycle", "car", "dog"]


class FakeEngine:
    """Stands in for an inference engine: returns a canned output tensor."""

    def __init__(self, output=None, *, ready: bool = True, error: Exception = None, spec: ModelInputSpec = ModelInputSpec()):
        self.output = output
        self._ready = ready
        self.error = error
        self.spec = spec
        self.blobs = []

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def input_spec(self) -> ModelInputSpec:
        if not self._ready:
            raise EngineNotReady("not allocated")
        return self.spec

    def run(self, blob: np.ndarray) -> np.ndarray:
        self.blobs.append(blob)
        if self.error is not None:
            raise self.error
        return self.output


def _passthrough(image: np.ndarray) -> np.ndarray:
    return np.zeros((1, 3, 640, 640), dtype=np.float32)


def _person_cluster_tensor(num_anchors: int = 64) -> np.ndarray:
    """
    One strong person anchor at 0.9 plus nine shifted duplicates scored 0.3..0.82,
    in model-input pixels (640x640).
    """

    p = np.zeros((1, 4 + len(LABELS), num_anchors), dtype=np.float32)
    p[0, 0:4, 0] = [320, 320, 200, 300]
    p[0, 4, 0] = 0.9
    for i in range(1, 10):
        p[0, 0:4, i] = [320 + 2 * i, 320 - i, 200 + i, 300 - 2 * i]
        p[0, 4, i] = 0.3 + 0.065 * (i - 1)
        p[0, 7, i] = 0.05
    return p


def _grid_tensor() -> np.ndarray:
    """20 well separated, normalized boxes with distinct confidences."""

    p = np.zeros((4 + len(LABELS), 32), dtype=np.float64)
    for i in range(20):
        row, col = divmod(i, 5)
        p[0:4, i] = [0.1 + 0.2 * col, 0.125 + 0.25 * row, 0.1, 0.1]
        p[4 + (i % 3), i] = 0.3 + 0.03 * i
    return p


class TestDetect(unittest.TestCase):
    def test_cluster_collapses_to_single_person(self) -> None:
        engine = FakeEngine(_person_cluster_tensor())
        pipe = DetectionPipeline(engine, LABELS, preprocessor=_passthrough)
        dets = pipe.detect(np.zeros((480, 640, 3), dtype=np.uint8))
        self.assertEqual(len(dets), 1)
        self.assertEqual(dets[0].label, "person")
        self.assertAlmostEqual(dets[0].confidence, 0.9, places=5)
        self.assertAlmostEqual(dets[0].box.center_x, 0.5, places=5)

    def test_default_preprocessor_feeds_engine(self) -> None:
        engine = FakeEngine(_person_cluster_tensor(), spec=ModelInputSpec(width=320, height=320))
        pipe = DetectionPipeline(engine, LABELS)
        dets = pipe.detect(np.full((480, 640, 3), 127, dtype=np.uint8))
        self.assertEqual(engine.blobs[0].shape, (1, 3, 320, 320))
        self.assertEqual(engine.blobs[0].dtype, np.float32)
        # Pixel boxes are normalized by the 320 px model input, then clipped to the frame.
        self.assertEqual(len(dets), 1)
        self.assertAlmostEqual(dets[0].box.left, 1.0 - 100.0 / 320.0, places=5)
        self.assertAlmostEqual(dets[0].box.right, 1.0, places=5)

    def test_engine_not_ready_returns_empty(self) -> None:
        engine = FakeEngine(_person_cluster_tensor(), ready=False)
        pipe = DetectionPipeline(engine, LABELS, preprocessor=_passthrough)
        with self.assertLogs("sight_kit.pipeline", level="WARNING"):
            self.assertEqual(pipe.detect(np.zeros((480, 640, 3), dtype=np.uint8)), [])
        self.assertEqual(engine.blobs, [])

    def test_inference_failure_returns_empty(self) -> None:
        engine = FakeEngine(error=RuntimeError("delegate crashed"))
        pipe = DetectionPipeline(engine, LABELS, preprocessor=_passthrough)
        with self.assertLogs("sight_kit.pipeline", level="ERROR"):
            self.assertEqual(pipe.detect(np.zeros((480, 640, 3), dtype=np.uint8)), [])

    def test_malformed_tensor_returns_empty(self) -> None:
        engine = FakeEngine(np.zeros((2, 84, 100), dtype=np.float32))
        pipe = DetectionPipeline(engine, LABELS, preprocessor=_passthrough)
        with self.assertLogs("sight_kit.pipeline", level="WARNING"):
            self.assertEqual(pipe.detect(np.zeros((480, 640, 3), dtype=np.uint8)), [])

    def test_unusable_image_returns_empty(self) -> None:
        engine = FakeEngine(_person_cluster_tensor())
        pipe = DetectionPipeline(engine, LABELS)
        with self.assertLogs("sight_kit.pipeline", level="WARNING"):
            self.assertEqual(pipe.detect(np.zeros((480, 640), dtype=np.float32)[None, None]), [])

    def test_failing_preprocessor_returns_empty(self) -> None:
        def broken(image: np.ndarray) -> np.ndarray:
            raise RuntimeError("camera buffer released")

        engine = FakeEngine(_person_cluster_tensor())
        pipe = DetectionPipeline(engine, LABELS, preprocessor=broken)
        with self.assertLogs("sight_kit.pipeline", level="ERROR"):
            self.assertEqual(pipe.detect(np.zeros((480, 640, 3), dtype=np.uint8)), [])
        self.assertEqual(engine.blobs, [])

    def test_no_objects_is_empty_list(self) -> None:
        engine = FakeEngine(np.zeros((1, 8, 100), dtype=np.float32))
        pipe = DetectionPipeline(engine, LABELS, preprocessor=_passthrough)
        self.assertEqual(pipe.detect(np.zeros((480, 640, 3), dtype=np.uint8)), [])

    def test_per_call_thresholds(self) -> None:
        engine = FakeEngine(_person_cluster_tensor())
        pipe = DetectionPipeline(engine, LABELS, preprocessor=_passthrough)
        image = np.zeros((480, 640, 3), dtype=np.uint8)
        self.assertEqual(pipe.detect(image, Thresholds(per_class={"person": 0.95})), [])
        self.assertEqual(len(pipe.detect(image)), 1)

    def test_negative_max_results_rejected(self) -> None:
        pipe = DetectionPipeline(FakeEngine(_person_cluster_tensor()), LABELS, preprocessor=_passthrough)
        with self.assertRaises(InvalidConfiguration):
            pipe.detect(np.zeros((480, 640, 3), dtype=np.uint8), max_results=-1)


class TestPostprocess(unittest.TestCase):
    def test_truncates_to_top_five(self) -> None:
        pipe = DetectionPipeline(FakeEngine(), LABELS)
        dets = pipe.postprocess(_grid_tensor(), image_size=(640, 640), max_results=5)
        expected = [0.3 + 0.03 * i for i in (19, 18, 17, 16, 15)]
        self.assertEqual(len(dets), 5)
        for det, conf in zip(dets, expected):
            self.assertAlmostEqual(det.confidence, conf)

    def test_default_max_results_from_config(self) -> None:
        pipe = DetectionPipeline(FakeEngine(), LABELS, config=DetectorConfig(max_results=7))
        self.assertEqual(len(pipe.postprocess(_grid_tensor(), image_size=(640, 640))), 7)

    def test_zero_max_results(self) -> None:
        pipe = DetectionPipeline(FakeEngine(), LABELS)
        self.assertEqual(pipe.postprocess(_grid_tensor(), image_size=(640, 640), max_results=0), [])

    def test_labels_and_runner_up_resolved(self) -> None:
        p = np.zeros((4 + len(LABELS), 32), dtype=np.float64)
        p[0:4, 0] = [0.5, 0.5, 0.3, 0.3]
        p[4:, 0] = [0.1, 0.2, 0.55, 0.6]
        dets = DetectionPipeline(FakeEngine(), LABELS).postprocess(p, image_size=(640, 480))
        self.assertEqual(len(dets), 1)
        self.assertEqual(dets[0].label, "dog")
        self.assertEqual(dets[0].class_id, 3)
        self.assertEqual(dets[0].runner_up_label, "car")
        self.assertAlmostEqual(dets[0].runner_up_confidence, 0.55)

    def test_coco_output_with_few_anchors(self) -> None:
        # (1, 84, 10): more channels than anchors must not flip the layout.
        labels = ["person"] + [f"class{i}" for i in range(1, 80)]
        p = np.zeros((1, 84, 10), dtype=np.float32)
        p[0, 0:4, 0] = [320, 320, 200, 300]
        p[0, 4, 0] = 0.9
        for i in range(1, 10):
            p[0, 0:4, i] = [320 + 2 * i, 320 - i, 200 + i, 300 - 2 * i]
            p[0, 4, i] = 0.3 + 0.065 * (i - 1)
        dets = DetectionPipeline(FakeEngine(), labels).postprocess(p, image_size=(640, 640), input_size=(640, 640))
        self.assertEqual(len(dets), 1)
        self.assertEqual(dets[0].label, "person")
        self.assertAlmostEqual(dets[0].confidence, 0.9, places=5)
        self.assertIsNone(dets[0].runner_up_label)

    def test_label_count_mismatch_is_malformed(self) -> None:
        pipe = DetectionPipeline(FakeEngine(), LABELS[:3])
        with self.assertLogs("sight_kit.pipeline", level="WARNING"):
            self.assertEqual(pipe.postprocess(_grid_tensor(), image_size=(640, 640)), [])

    def test_per_class_nms_from_config(self) -> None:
        p = np.zeros((4 + len(LABELS), 32), dtype=np.float64)
        p[0:4, 0] = [0.5, 0.5, 0.3, 0.3]
        p[0:4, 1] = [0.5, 0.5, 0.3, 0.31]
        p[4, 0] = 0.9
        p[7, 1] = 0.8
        image_size = (640, 480)
        agnostic = DetectionPipeline(FakeEngine(), LABELS).postprocess(p, image_size=image_size)
        per_class = DetectionPipeline(
            FakeEngine(), LABELS, config=DetectorConfig(class_agnostic_nms=False)
        ).postprocess(p, image_size=image_size)
        self.assertEqual([d.label for d in agnostic], ["person"])
        self.assertEqual([d.label for d in per_class], ["person", "dog"])


class TestCheckLabelCount(unittest.TestCase):
    def test_matching_channel_axis(self) -> None:
        check_label_count((1, 84, 8400), ["x"] * 80)
        check_label_count((1, 8400, 84), ["x"] * 80)

    def test_mismatch_raises(self) -> None:
        with self.assertRaises(EngineLoadError):
            check_label_count((1, 84, 8400), ["x"] * 90)

    def test_dynamic_axes_skipped(self) -> None:
        check_label_count((1, 84, "anchors"), ["x"] * 3)
        check_label_count(None, ["x"] * 3)


class TestLoadPipeline(unittest.TestCase):
    def test_unknown_extension(self) -> None:
        with self.assertRaises(ValueError):
            load_pipeline("/tmp/model.bin", "/tmp/labels.txt")

    def test_unknown_backend(self) -> None:
        with self.assertRaises(ValueError):
            load_pipeline("/tmp/model.onnx", "/tmp/labels.txt", backend="tflite")


if __name__ == "__main__":
    unittest.main()
