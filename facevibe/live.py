# facevibe/live.py
"""
Live camera windows.

- run_live_overlay: continuous mood view. Boxes, landmarks and expression
  labels every cycle, plus the sticky mood line.
- run_face_scan: manual view. Press 's' to scan; shows age, gender and
  expression and opens the 3D landmark cloud viewer.

Keys: q quits, r retries the camera after a denial.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

import cv2
import numpy as np

from facevibe.config import Settings
from facevibe.geometry import GeometryProjector, PointCloudViewer
from facevibe.models import MoodState, PipelineStatus, ScanResult
from facevibe.pipeline import FaceVibePipeline, Mode
from facevibe.reducer import mood_glyph
from facevibe.visual import LABEL_COLOR, OverlayPublisher, draw_message, draw_status_line

logger = logging.getLogger(__name__)

FRAME_DELAY = 0.03  # seconds between window refreshes
WINDOW_TITLES = {
    "continuous": "Face Vibe - mood (q to quit)",
    "manual": "Face Vibe - scan (s to scan, q to quit)",
}
SCAN_NOTICES = {
    "no_face": "No face detected. Please try again.",
    "failed": "An error occurred during face detection. Please try again.",
    "busy": "Scan already in progress.",
    "unavailable": "Camera or models not ready.",
}


def scan_notice(result: ScanResult) -> Optional[str]:
    return SCAN_NOTICES.get(result.status)


def build_pipeline(settings: Settings, mode: Mode) -> FaceVibePipeline:
    publisher = OverlayPublisher(
        settings.display_size,
        draw_boxes=True,
        draw_landmarks=True,
        draw_labels=(mode == "continuous"),
    )
    projector = None
    if mode == "manual":
        projector = GeometryProjector(PointCloudViewer(size=settings.VIEWER_SIZE),
                                      settings.REFERENCE_HALF_EXTENT)
    return FaceVibePipeline(settings, mode=mode, publisher=publisher, projector=projector)


def render_view(pipeline: FaceVibePipeline, status: PipelineStatus,
                notice: Optional[str] = None) -> np.ndarray:
    """Compose what the main window shows for the current pipeline state."""
    size = pipeline.settings.display_size
    if status.state == "load_failed":
        return draw_message(size, "Error! " + (status.message or ""), "Restart to try again. Press q to quit.")
    if status.state == "capture_denied":
        return draw_message(size, "Error! " + (status.message or ""), "Press r to retry, q to quit.")
    if status.state in ("idle", "loading"):
        return draw_message(size, "Loading face detection models...", color=LABEL_COLOR)

    frame = pipeline.capture.current_frame()
    if frame is None:
        return draw_message(size, "Waiting for camera...", color=LABEL_COLOR)
    out = pipeline.publisher.compose(frame.image) if pipeline.publisher else frame.image.copy()

    if pipeline.mode == "continuous":
        mood = status.mood
        draw_status_line(out, f"Mood: {mood.expression} {mood_glyph(mood.expression)}" if mood else "Mood: -")
    elif notice:
        draw_status_line(out, notice, (0, 0, 255))
    elif status.attributes:
        a = status.attributes
        age = a.age if a.age is not None else "-"
        draw_status_line(out, f"Age: {age}  Gender: {a.gender or '-'}  Expression: {a.expression or '-'}")
    else:
        draw_status_line(out, "Press s to scan your face.")
    return out


async def run_live(settings: Settings, mode: Mode = "continuous",
                   pipeline: Optional[FaceVibePipeline] = None) -> PipelineStatus:
    window = WINDOW_TITLES[mode]
    pipeline = pipeline or build_pipeline(settings, mode)

    async with pipeline:
        cv2.imshow(window, draw_message(settings.display_size, "Loading face detection models...", color=LABEL_COLOR))
        cv2.waitKey(1)
        status = await pipeline.start()

        notice: Optional[str] = None
        last_mood: Optional[MoodState] = None
        while True:
            status = pipeline.check_capture()
            if status.mood is not None and status.mood != last_mood:
                logger.info(f"[live] mood {status.mood.expression} {status.mood.indicator}")
                last_mood = status.mood

            cv2.imshow(window, render_view(pipeline, status, notice))
            if pipeline.projector is not None and pipeline.projector.viewer.points is not None:
                pipeline.projector.viewer.render()

            key = cv2.waitKey(1) & 0xFF
            if key == ord("q"):
                break
            if key == ord("r") and status.state == "capture_denied":
                await pipeline.retry_capture()
            if key == ord("s") and mode == "manual":
                result = await pipeline.scan()
                notice = scan_notice(result)
                if result.attributes:
                    logger.info(f"[live] scan attributes {result.attributes.model_dump()}")

            await asyncio.sleep(FRAME_DELAY)

    cv2.destroyAllWindows()
    return status


def run_live_overlay(settings: Settings, camera_index: Optional[int] = None) -> PipelineStatus:
    """Continuous mood window. Press 'q' to quit."""
    if camera_index is not None:
        settings = settings.model_copy(update={"CAMERA_INDEX": camera_index})
    return asyncio.run(run_live(settings, "continuous"))


def run_face_scan(settings: Settings, camera_index: Optional[int] = None) -> PipelineStatus:
    """Manual scan window with 3D viewer. Press 's' to scan, 'q' to quit."""
    if camera_index is not None:
        settings = settings.model_copy(update={"CAMERA_INDEX": camera_index})
    return asyncio.run(run_live(settings, "manual"))
