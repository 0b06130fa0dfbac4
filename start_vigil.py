"""
Vigil — Launcher
=================
Console entry point: opens the camera, loads the MediaPipe detector,
runs the liveness loop and prints guidance whenever it changes.

Usage:
  python start_vigil.py --source 0
  python start_vigil.py --source clip.mp4 --exit-on-verified
  python start_vigil.py --source 1 --model models/face_landmarker.task
"""

import argparse
import sys
import time

from vigil_camera import VigilCamera
from vigil_detector import MediaPipeLandmarkDetector
from vigil_engine import DEFAULT_CONFIG, VigilEngine
from vigil_types import DetectorUnavailable, FrameReport, LivenessStage
from vigil_utils_core import CONFIG


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Vigil liveness check")
    parser.add_argument("--source", type=str, default=str(DEFAULT_CONFIG["camera_id"]),
                        help="Camera ID (0, 1, etc.) or video file path")
    parser.add_argument("--model", type=str, default=CONFIG['detector']['landmarker_model'],
                        help="Path to MediaPipe FaceLandmarker .task file")
    parser.add_argument("--width", type=int, default=DEFAULT_CONFIG["camera_width"])
    parser.add_argument("--height", type=int, default=DEFAULT_CONFIG["camera_height"])
    parser.add_argument("--interval", type=float, default=DEFAULT_CONFIG["frame_interval"],
                        help="Seconds between frames (default 0.1 = 10 FPS)")
    parser.add_argument("--log", type=str, default=DEFAULT_CONFIG["log_path"],
                        help="JSONL audit log path")
    parser.add_argument("--timeout", type=float, default=0.0,
                        help="Give up after N seconds (0 = run until Ctrl+C)")
    parser.add_argument("--exit-on-verified", action="store_true",
                        help="Stop as soon as the subject is verified live")
    return parser


def format_report(report: FrameReport) -> str:
    a = report.assessment
    line = f"[{a.stage.value:<17}] {a.score * 100:5.1f}%  {a.message}"
    if report.debug is not None:
        d = report.debug
        line += (f"  (EAR {d.current_ear:.3f} / base {d.baseline_ear:.3f}, "
                 f"eyes {d.eye_state.value}, blinks {a.blink_count})")
    return line


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    source = int(args.source) if args.source.isdigit() else args.source

    config = {
        "camera_id": source,
        "camera_width": args.width,
        "camera_height": args.height,
        "frame_interval": args.interval,
        "log_path": args.log,
    }

    print("=" * 60)
    print("  Vigil — Liveness Check")
    print(f"  Source:   {source}")
    print(f"  Model:    {args.model}")
    print(f"  Interval: {args.interval:.3f}s")
    print("=" * 60)

    try:
        camera = VigilCamera(source, width=args.width, height=args.height)
    except DetectorUnavailable as e:
        print(f"[VIGIL] Error accessing camera: {e}. "
              "Please ensure camera permissions are granted.")
        return 1

    last_message = {"text": None}

    def on_report(report: FrameReport) -> None:
        if report.assessment.message != last_message["text"]:
            last_message["text"] = report.assessment.message
            print(format_report(report))

    engine = VigilEngine(MediaPipeLandmarkDetector(args.model), camera, config, on_report=on_report)
    started = time.monotonic()
    exit_code = 0

    try:
        engine.start()
        print("[VIGIL] Position your face in the center of the frame. Ctrl+C to exit.")
        while True:
            time.sleep(0.05)
            if engine.fatal_error is not None:
                exit_code = 1
                break
            if not engine.running:
                break
            if args.exit_on_verified and engine.stage is LivenessStage.VERIFIED:
                print("[VIGIL] Live face verified.")
                break
            if args.timeout and time.monotonic() - started > args.timeout:
                print("[VIGIL] Timed out before verification.")
                exit_code = 2
                break
    except KeyboardInterrupt:
        print("\n[VIGIL] Interrupted by user.")
    finally:
        engine.stop()
        print(f"[VIGIL] Session: {engine.session.summary()}")

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
