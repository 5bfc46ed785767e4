"""
Capture Demo Script

This script runs one live capture session on the webcam and prints the
feedback the attendance portal would show:
- Face detected / number of faces
- Quality score and lighting notices
- Auto-capture countdown

When a fingerprint is captured it can be saved as JSON (for enrollment)
or compared with a previously saved fingerprint (for verification).

Usage:
    # Auto capture with the heuristic strategy
    python scripts/demo_capture.py

    # Model strategy (MediaPipe + ArcFace), save the fingerprint
    python scripts/demo_capture.py --strategy model --output storage/me.json

    # Verify against a saved fingerprint
    python scripts/demo_capture.py --verify storage/me.json

    # Manual capture: capture as soon as a face is detected
    python scripts/demo_capture.py --manual

Controls:
    - Ctrl+C to cancel the session
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from faceverify.capture_orchestrator import CaptureFeedback, CaptureState, start_session
from faceverify.config import get_optional_section
from faceverify.errors import FaceVerificationError
from faceverify.fingerprint import Fingerprint
from faceverify.frame_source import CaptureConfig, WebcamFrameSource
from faceverify.matching import match_identity
from faceverify.session_config import SessionConfig

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Status messages shown to the user, keyed by CaptureFeedback.status
STATUS_MESSAGES = {
    "countdown": "Hold still...",
    "no_face": "No face detected - move into the frame",
    "multiple_faces": "Multiple faces detected - only one person please",
    "poor_quality": "Poor quality - improve lighting",
    "fair_quality": "Fair quality - almost there",
    "good": "Good quality",
}

LIGHTING_MESSAGES = {
    "too_dark": "Too dark - find better lighting",
    "too_bright": "Too bright - reduce direct light",
}


def print_feedback(feedback: CaptureFeedback) -> None:
    """Print one feedback line."""
    line = f"[tick {feedback.tick:4d}] {STATUS_MESSAGES[feedback.status]:<50} quality={feedback.quality:3d}"
    if feedback.countdown_remaining is not None:
        line += f"  countdown={feedback.countdown_remaining}"
    print(line)

    if feedback.lighting_notice and feedback.lighting_warning is not None:
        print(f"    ! {LIGHTING_MESSAGES[feedback.lighting_warning.value]}")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a live face capture session")
    parser.add_argument("--strategy", choices=["heuristic", "model"], default=None,
                        help="Capture strategy (default: from config.yaml)")
    parser.add_argument("--manual", action="store_true",
                        help="Disable auto capture; capture as soon as a face is seen")
    parser.add_argument("--device", type=int, default=None, help="Camera device id (default: from config.yaml)")
    parser.add_argument("--output", type=str, default=None,
                        help="Save the captured fingerprint to this JSON file")
    parser.add_argument("--verify", type=str, default=None,
                        help="Compare the captured fingerprint with this JSON file")
    return parser.parse_args()


async def run_session(args: argparse.Namespace) -> int:
    overrides = {}
    if args.strategy:
        overrides["strategy"] = args.strategy
    if args.manual:
        overrides["auto_capture"] = False
    config = SessionConfig.from_config(**overrides)

    camera = get_optional_section("camera")
    frame_source = WebcamFrameSource(CaptureConfig(
        width=camera.get("width", 640),
        height=camera.get("height", 480),
        fps=camera.get("fps", 30),
        device_id=args.device if args.device is not None else camera.get("device_id", 0),
    ))

    handle = None

    def on_feedback(feedback: CaptureFeedback) -> None:
        print_feedback(feedback)
        # In manual mode the "button" is pressed as soon as a face is usable
        if args.manual and feedback.face_detected and feedback.state is CaptureState.SAMPLING:
            handle.request_capture()

    def on_error(error: FaceVerificationError) -> None:
        logger.warning(f"{error.kind.value}: {error.message}")

    handle = start_session(
        config,
        frame_source,
        on_feedback=on_feedback,
        on_captured=lambda fp: print(f"Captured {fp.strategy.value} fingerprint (dim={fp.dimension})"),
        on_error=on_error,
        autostart=False,
    )

    logger.info(f"Starting {config.strategy.value} capture session (Ctrl+C to cancel)")
    state = await handle.run()

    if state is not CaptureState.CAPTURED:
        logger.error(f"Session ended in state {state.value}")
        return 1

    fingerprint = handle.fingerprint

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w") as f:
            json.dump(fingerprint.to_dict(), f)
        logger.info(f"Saved fingerprint to {output_path}")

    if args.verify:
        with open(args.verify, "r") as f:
            enrolled = Fingerprint.from_dict(json.load(f))
        result = match_identity(enrolled, fingerprint)
        verdict = "MATCH" if result.matched else "NO MATCH"
        print(f"{verdict} (distance={result.distance:.4f}, threshold={result.threshold:.4f})")

    return 0


def main() -> int:
    args = parse_args()
    try:
        return asyncio.run(run_session(args))
    except KeyboardInterrupt:
        logger.info("Cancelled")
        return 130


if __name__ == "__main__":
    sys.exit(main())
