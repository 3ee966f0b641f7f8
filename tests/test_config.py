import json
import tempfile
import unittest
from pathlib import Path

from sight_kit.config import DetectorConfig, Thresholds, load_detector_config
from sight_kit.errors import InvalidConfiguration
from sight_kit.types import CoordinateFormat


class TestThresholds(unittest.TestCase):
    def test_effective_falls_back_to_global(self) -> None:
        t = Thresholds(confidence=0.3, per_class={"person": 0.6})
        self.assertEqual(t.effective("person"), 0.6)
        self.assertEqual(t.effective("car"), 0.3)
        self.assertEqual(t.effective(None), 0.3)

    def test_negative_threshold_rejected(self) -> None:
        with self.assertRaises(InvalidConfiguration):
            Thresholds(confidence=-0.1)

    def test_override_above_one_rejected(self) -> None:
        with self.assertRaises(InvalidConfiguration):
            Thresholds(per_class={"dog": 1.5})

    def test_per_class_is_read_only(self) -> None:
        source = {"person": 0.5}
        t = Thresholds(per_class=source)
        source["person"] = 0.1
        self.assertEqual(t.effective("person"), 0.5)
        with self.assertRaises(TypeError):
            t.per_class["person"] = 0.2  # type: ignore[index]


class TestDetectorConfig(unittest.TestCase):
    def test_defaults(self) -> None:
        cfg = DetectorConfig()
        self.assertEqual(cfg.confidence_threshold, 0.25)
        self.assertEqual(cfg.iou_threshold, 0.45)
        self.assertEqual(cfg.max_results, 5)
        self.assertEqual(cfg.min_box_size_px, 30.0)
        self.assertTrue(cfg.class_agnostic_nms)
        self.assertIs(cfg.coordinate_format, CoordinateFormat.AUTO)

    def test_invalid_values_rejected(self) -> None:
        for kwargs in (
            {"confidence_threshold": -0.5},
            {"iou_threshold": 1.2},
            {"max_results": -1},
            {"min_box_size_px": -3},
            {"max_aspect_ratio": 0.5},
            {"max_box_fraction": 0.0},
            {"format_sample_size": 0},
            {"coordinate_format": "inches"},
            {"class_thresholds": {"person": 2.0}},
        ):
            with self.subTest(kwargs=kwargs):
                with self.assertRaises(InvalidConfiguration):
                    DetectorConfig(**kwargs)

    def test_coordinate_format_string_coerced(self) -> None:
        self.assertIs(DetectorConfig(coordinate_format="pixel").coordinate_format, CoordinateFormat.PIXEL)


class TestLoadDetectorConfig(unittest.TestCase):
    def _write(self, payload) -> Path:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "detector.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    def test_load_ok(self) -> None:
        path = self._write(
            {
                "schema_version": 1,
                "confidence_threshold": 0.4,
                "class_thresholds": {"person": 0.6},
                "max_results": 3,
                "max_box_fraction": 0.8,
                "class_agnostic_nms": False,
                "coordinate_format": "normalized",
            }
        )
        cfg = load_detector_config(path)
        self.assertEqual(cfg.confidence_threshold, 0.4)
        self.assertEqual(cfg.max_results, 3)
        self.assertEqual(cfg.max_box_fraction, 0.8)
        self.assertFalse(cfg.class_agnostic_nms)
        self.assertIs(cfg.coordinate_format, CoordinateFormat.NORMALIZED)
        self.assertEqual(cfg.thresholds().effective("person"), 0.6)

    def test_missing_keys_keep_defaults(self) -> None:
        self.assertEqual(load_detector_config(self._write({})), DetectorConfig())

    def test_format_sample_size_optional(self) -> None:
        cfg = load_detector_config(self._write({"confidence_threshold": 0.3}))
        self.assertEqual(cfg.format_sample_size, 256)
        self.assertEqual(load_detector_config(self._write({"format_sample_size": 64})).format_sample_size, 64)
        self.assertIsNone(load_detector_config(self._write({"format_sample_size": None})).format_sample_size)
        with self.assertRaises(InvalidConfiguration):
            load_detector_config(self._write({"format_sample_size": "all"}))

    def test_unknown_keys_rejected(self) -> None:
        with self.assertRaises(InvalidConfiguration):
            load_detector_config(self._write({"confidence_threshold": 0.3, "extra": 1}))

    def test_wrong_types_rejected(self) -> None:
        for payload in (
            {"confidence_threshold": "high"},
            {"max_results": 2.5},
            {"max_results": True},
            {"class_thresholds": [0.5]},
            {"class_agnostic_nms": "yes"},
        ):
            with self.subTest(payload=payload):
                with self.assertRaises(InvalidConfiguration):
                    load_detector_config(self._write(payload))

    def test_negative_threshold_rejected(self) -> None:
        with self.assertRaises(InvalidConfiguration):
            load_detector_config(self._write({"confidence_threshold": -0.1}))

    def test_bad_schema_version(self) -> None:
        with self.assertRaises(InvalidConfiguration):
            load_detector_config(self._write({"schema_version": 2}))

    def test_invalid_json(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        path = Path(tmpdir.name) / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with self.assertRaises(InvalidConfiguration):
            load_detector_config(path)

    def test_missing_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_detector_config(Path("/nonexistent/detector.json"))


if __name__ == "__main__":
    unittest.main()
