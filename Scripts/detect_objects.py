import argparse
import logging
from pathlib import Path

import cv2

from sight_kit import DetectorConfig, Thresholds, announce, draw_detections, load_detector_config, load_pipeline


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="[%(asctime)s] %(name)s %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _parse_class_thresholds(items):
    out = {}
    for item in items or []:
        if "=" not in item:
            raise ValueError(f"--class-conf expects label=value, got {item!r}")
        name, value = item.rsplit("=", 1)
        out[name.strip()] = float(value)
    return out


def main() -> int:
    parser = argparse.ArgumentParser(description="Detect objects and print what would be narrated.")
    src = parser.add_mutually_exclusive_group(required=True)
    src.add_argument("--image", default=None, help="Path to an input image.")
    src.add_argument("--video", default=None, help="Path to an input video file.")
    src.add_argument("--webcam", type=int, default=None, help="Webcam index (e.g., 0).")
    parser.add_argument("--model", default="models/yolov8n.onnx", help="Path to a YOLO ONNX model.")
    parser.add_argument("--labels", default="models/labelmap.txt", help="Label file (one per line, or metadata.yaml).")
    parser.add_argument("--config", default=None, help="Optional detector config JSON.")
    parser.add_argument("--conf", type=float, default=None, help="Global confidence threshold override.")
    parser.add_argument(
        "--class-conf",
        action="append",
        default=None,
        help='Per-class threshold, e.g. --class-conf "person=0.5". Repeatable.',
    )
    parser.add_argument("--max-results", type=int, default=None, help="Maximum detections per frame.")
    parser.add_argument(
        "--onnx-providers",
        default=None,
        help='Comma-separated ORT providers, e.g. "CUDAExecutionProvider,CPUExecutionProvider".',
    )
    parser.add_argument("--announce", type=int, default=1, help="How many detections to include in the narration line.")
    parser.add_argument("--show", action="store_true", help="Show a window with visualized detections.")
    parser.add_argument("--out", default=None, help="Optional output path (image or video) to save the visualization.")
    parser.add_argument("--every", type=int, default=1, help="Process every Nth frame for video/webcam.")
    parser.add_argument("--max-frames", type=int, default=0, help="Stop after N frames (0 = no limit).")
    parser.add_argument("--log-level", default="INFO", help="Logging level.")
    args = parser.parse_args()

    _configure_logging(args.log_level)

    config = load_detector_config(Path(args.config)) if args.config else DetectorConfig()
    per_class = dict(config.class_thresholds)
    per_class.update(_parse_class_thresholds(args.class_conf))
    thresholds = Thresholds(
        confidence=config.confidence_threshold if args.conf is None else args.conf,
        per_class=per_class,
    )

    onnx_providers = None
    if args.onnx_providers:
        onnx_providers = [p.strip() for p in str(args.onnx_providers).split(",") if p.strip()]

    pipeline = load_pipeline(args.model, args.labels, config=config, onnx_providers=onnx_providers)

    if args.image is not None:
        img = cv2.imread(args.image)
        if img is None:
            raise FileNotFoundError(f"Could not read image at path: {args.image}")

        detections = pipeline.detect(img, thresholds, args.max_results)
        print(announce(detections, max_items=args.announce))
        for det in detections:
            print(det.label, det.confidence_percentage, det.as_xyxy())

        vis = draw_detections(img, detections)
        if args.out:
            ok = cv2.imwrite(args.out, vis)
            if not ok:
                raise RuntimeError(f"Failed to write output image: {args.out}")
        if args.show:
            cv2.imshow("detections", vis)
            cv2.waitKey(0)
            cv2.destroyAllWindows()
        return 0

    # Video/webcam path
    if args.every < 1:
        raise ValueError("--every must be >= 1")
    if args.max_frames < 0:
        raise ValueError("--max-frames must be >= 0")

    if args.video is not None:
        cap = cv2.VideoCapture(args.video)
        if not cap.isOpened():
            raise FileNotFoundError(f"Could not open video: {args.video}")
    else:
        cap = cv2.VideoCapture(int(args.webcam))
        if not cap.isOpened():
            raise RuntimeError(f"Could not open webcam index: {args.webcam}")

    writer = None
    frame_idx = 0
    processed = 0
    last_line = None

    try:
        while True:
            ok, frame = cap.read()
            if not ok or frame is None:
                break

            frame_idx += 1
            if (frame_idx - 1) % args.every != 0:
                continue

            # Frames are processed one at a time; nothing overlaps a detect() call.
            detections = pipeline.detect(frame, thresholds, args.max_results)
            line = announce(detections, max_items=args.announce)
            if line != last_line:
                print(f"[frame {frame_idx}] {line}")
                last_line = line

            vis = draw_detections(frame, detections)
            if args.out and writer is None:
                fps = cap.get(cv2.CAP_PROP_FPS)
                if fps is None or fps <= 0:
                    fps = 30.0
                h, w = vis.shape[:2]
                fourcc = cv2.VideoWriter_fourcc(*"mp4v")
                writer = cv2.VideoWriter(args.out, fourcc, fps, (w, h))
                if not writer.isOpened():
                    raise RuntimeError(f"Failed to open video writer: {args.out}")

            if writer is not None:
                writer.write(vis)

            if args.show:
                cv2.imshow("detections", vis)
                key = cv2.waitKey(1) & 0xFF
                if key in (27, ord("q")):
                    break

            processed += 1
            if args.max_frames and processed >= args.max_frames:
                break

    finally:
        cap.release()
        if writer is not None:
            writer.release()
        if args.show:
            cv2.destroyAllWindows()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
