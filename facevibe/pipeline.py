"""
One face mood pipeline session: models -> camera -> scheduler -> reducer ->
{overlay, 3D geometry}.

Two modes:
- "continuous": detect every DETECT_INTERVAL seconds, keep a sticky mood
  (expressions only, no age/gender)
- "manual": detect on scan(), with age/gender, and rebuild the 3D cloud

The session owns the current mood, subject and attributes and releases the
camera, timer, viewer and worker thread on every exit path.
"""
from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Literal, Optional

from facevibe.capabilities import (
    DetectionCapabilitySet,
    ModelLifecycleManager,
    configure_model_home,
    default_manifest,
)
from facevibe.capture import CaptureController
from facevibe.config import Settings
from facevibe.detector import FaceAnalyzer
from facevibe.geometry import GeometryProjector
from facevibe.models import (
    DetectionRequest,
    FaceAttributes,
    MoodState,
    PipelineStatus,
    RawDetection,
    ScanResult,
    VideoFrame,
)
from facevibe.reducer import ResultReducer, face_attributes
from facevibe.scheduler import DetectionScheduler
from facevibe.visual import OverlayPublisher

logger = logging.getLogger(__name__)

Mode = Literal["continuous", "manual"]

LOAD_FAILED_MESSAGE = "Failed to load face detection models."
CAPTURE_DENIED_MESSAGE = "Camera unavailable or access denied."


def build_request(settings: Settings, mode: Mode) -> DetectionRequest:
    return DetectionRequest(
        min_confidence=settings.MIN_DETECTION_CONFIDENCE,
        with_landmarks=True,
        with_expressions=True,
        with_age_gender=(mode == "manual" and settings.ENABLE_AGE_GENDER),
    )


class FaceVibePipeline:
    def __init__(self, settings: Settings, mode: Mode = "continuous",
                 manager: Optional[ModelLifecycleManager] = None,
                 capture: Optional[CaptureController] = None,
                 publisher: Optional[OverlayPublisher] = None,
                 projector: Optional[GeometryProjector] = None,
                 analyzer_factory: Callable[[DetectionCapabilitySet], FaceAnalyzer] = FaceAnalyzer):
        if mode not in ("continuous", "manual"):
            raise ValueError(f"Unknown mode: {mode}")
        self.settings = settings
        self.mode = mode
        self.request = build_request(settings, mode)

        if manager is None:
            configure_model_home(settings)
            manager = ModelLifecycleManager(default_manifest(settings, self.request.required_capabilities))
        self.manager = manager
        self.capture = capture or CaptureController(settings.CAMERA_INDEX)
        self.publisher = publisher
        self.projector = projector
        self._analyzer_factory = analyzer_factory
        self._analyzer: Optional[FaceAnalyzer] = None

        # single worker: the model is never entered from two threads at once
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="facevibe-detect")
        self.reducer = ResultReducer()
        self.scheduler = DetectionScheduler(
            detect=self._detect,
            frame_source=self.capture.current_frame,
            on_result=self._apply,
            request=self.request,
            interval=settings.DETECT_INTERVAL,
        )

        self.state = "idle"
        self.message: Optional[str] = None
        self.subject: Optional[RawDetection] = None
        self.attributes: Optional[FaceAttributes] = None
        self.last_detections: List[RawDetection] = []

    @property
    def mood(self) -> Optional[MoodState]:
        return self.reducer.mood

    @property
    def can_scan(self) -> bool:
        return self.manager.ready and self.capture.ready and not self.scheduler.closed

    def status(self) -> PipelineStatus:
        return PipelineStatus(state=self.state, message=self.message,
                              mood=self.mood, attributes=self.attributes)

    # ---- lifecycle ----
    async def start(self) -> PipelineStatus:
        if self.state == "closed":
            raise RuntimeError("Pipeline already closed")

        self.state = "loading"
        self.scheduler.mark_loading()
        loaded = await self.manager.load()
        if not loaded.ready:
            self.state = "load_failed"
            self.message = LOAD_FAILED_MESSAGE
            logger.error(f"[pipeline] model load failed: {loaded.reason}")
            return self.status()

        self._analyzer = self._analyzer_factory(self.manager.capabilities)
        return self._open_camera()

    async def retry_capture(self) -> PipelineStatus:
        """Re-request the camera after a denial."""
        if self.state != "capture_denied":
            return self.status()
        return self._open_camera()

    def _open_camera(self) -> PipelineStatus:
        granted = self.capture.acquire()
        if not granted.granted:
            self.state = "capture_denied"
            self.message = CAPTURE_DENIED_MESSAGE
            logger.warning(f"[pipeline] capture denied: {granted.reason}")
            return self.status()

        self.state = "running"
        self.message = None
        self.scheduler.mark_ready()
        if self.mode == "continuous":
            self.scheduler.start()
        logger.info(f"[pipeline] running mode={self.mode}")
        return self.status()

    def check_capture(self) -> PipelineStatus:
        """Stop detecting if the camera stopped delivering frames."""
        if self.state == "running" and self.capture.failed:
            logger.error("[pipeline] camera stream lost; stopping detection")
            self.scheduler.stop()
            self.capture.release()
            self.state = "capture_denied"
            self.message = CAPTURE_DENIED_MESSAGE
        return self.status()

    async def close(self):
        if self.state == "closed":
            return
        self.state = "closed"
        drained = False
        try:
            self.scheduler.close()
            drained = await self.scheduler.drain(timeout=0.5)
        finally:
            self.capture.release()
            if self.projector is not None:
                self.projector.viewer.close()
            if drained:
                self._executor.shutdown(wait=False)
                self.manager.release()
            else:
                # the worker is still inside detect(); models go after it returns
                self._executor.submit(self.manager.release)
                self._executor.shutdown(wait=False)
            logger.info("[pipeline] closed")

    async def __aenter__(self) -> "FaceVibePipeline":
        return self

    async def __aexit__(self, *exc):
        await self.close()

    # ---- detection ----
    async def _detect(self, frame: VideoFrame, request: DetectionRequest) -> List[RawDetection]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._analyzer.detect, frame.image, request)

    def _apply(self, detections: List[RawDetection], frame: VideoFrame):
        subject, mood = self.reducer.reduce(detections)
        self.last_detections = detections
        self.subject = subject
        if subject is not None:
            if self.mode == "manual":
                self.attributes = face_attributes(subject)
            logger.debug(f"[pipeline] mood={mood.expression if mood else None}")
        if self.publisher is not None:
            self.publisher.publish(detections, self.publisher.display_size)

    async def scan(self) -> ScanResult:
        """Manual trigger: one detection call, then a 3D rebuild when a face is found."""
        if not self.can_scan:
            return ScanResult(status="unavailable", mood=self.mood, attributes=self.attributes)

        status, detections = await self.scheduler.scan()
        if status != "detected":
            logger.info(f"[pipeline] scan finished: {status}")
            return ScanResult(status=status, mood=self.mood, attributes=self.attributes)

        subject = detections[0]
        if self.projector is not None:
            self.projector.rebuild(subject)
        logger.info(f"[pipeline] scan found {len(detections)} face(s)")
        return ScanResult(status="detected", subject=subject,
                          mood=self.mood, attributes=self.attributes)
