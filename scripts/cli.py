"""
CLI for the live face mood windows.

    python scripts/cli.py mood            # continuous mood overlay
    python scripts/cli.py scan            # manual scan + 3D landmark viewer
"""
from __future__ import annotations
import argparse, logging, sys
from facevibe.config import Settings
from facevibe.live import run_face_scan, run_live_overlay


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Face Vibe live face mood pipeline")
    p.add_argument("mode", choices=["mood", "scan"], help="mood: continuous overlay, scan: manual scan with 3D view")
    p.add_argument("--camera", type=int, default=None, help="Camera index")
    p.add_argument("--interval", type=float, default=None, help="Seconds between detections (mood mode)")
    p.add_argument("--models-dir", default=None, help="Directory holding model weights")
    p.add_argument("--no-age-gender", action="store_true", help="Skip age/gender estimation on scan")
    p.add_argument("--log-level", default=None, help="Logging level (DEBUG, INFO, ...)")
    return p


def settings_from_args(args: argparse.Namespace) -> Settings:
    overrides = {}
    if args.camera is not None:
        overrides["CAMERA_INDEX"] = args.camera
    if args.interval is not None:
        overrides["DETECT_INTERVAL"] = args.interval
    if args.models_dir:
        overrides["MODELS_DIR"] = args.models_dir
    if args.no_age_gender:
        overrides["ENABLE_AGE_GENDER"] = False
    if args.log_level:
        overrides["LOG_LEVEL"] = args.log_level
    return Settings(**overrides)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = settings_from_args(args)
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    runner = run_live_overlay if args.mode == "mood" else run_face_scan
    status = runner(settings)
    if status.state in ("load_failed", "capture_denied"):
        print(f"❌ {status.message}", file=sys.stderr)
        return 1
    if status.mood:
        print(f"Last mood: {status.mood.expression} {status.mood.indicator}")
    return 0

if __name__ == "__main__":
    sys.exit(main())
