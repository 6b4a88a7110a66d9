"""
Camera capture: open a video-only source, keep the latest decoded frame,
release the device on every exit path.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

import cv2
import numpy as np

from facevibe.errors import CaptureDenied
from facevibe.models import CaptureResult, VideoFrame

logger = logging.getLogger(__name__)

READ_RETRY_DELAY = 0.01
MAX_FAILED_READS = 50


class StreamHandle:
    """An opened capture device plus the reader thread draining it."""

    def __init__(self, capture: cv2.VideoCapture):
        self._capture = capture
        self._lock = threading.Lock()
        self._latest: Optional[np.ndarray] = None
        self._seq = 0
        self._ts = 0.0
        self._run = True
        self._failed = False
        self._released = False
        self._thread = threading.Thread(target=self._read_loop, name="facevibe-capture", daemon=True)
        self._thread.start()

    @property
    def active(self) -> bool:
        return self._run and not self._failed

    @property
    def failed(self) -> bool:
        return self._failed

    def _read_loop(self):
        misses = 0
        try:
            while self._run:
                ok, frame = self._capture.read()
                if not ok or frame is None:
                    misses += 1
                    if misses >= MAX_FAILED_READS:
                        logger.error("[capture] stream stopped delivering frames")
                        self._failed = True
                        return
                    time.sleep(READ_RETRY_DELAY)
                    continue
                misses = 0
                with self._lock:
                    self._latest = frame
                    self._seq += 1
                    self._ts = time.time()
        finally:
            # stopped: release only after the last read() has returned
            if not self._run:
                self._release()

    def latest(self) -> Optional[VideoFrame]:
        with self._lock:
            if self._latest is None:
                return None
            img = self._latest.copy()
            seq, ts = self._seq, self._ts
        h, w = img.shape[:2]
        return VideoFrame(image=img, width=w, height=h, seq=seq, ts=ts)

    def _release(self):
        with self._lock:
            if self._released:
                return
            self._released = True
        self._capture.release()

    def stop(self, join_timeout: float = 1.0):
        """Stop the reader. The device is never released while a read() is in progress."""
        self._run = False
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout=join_timeout)
        if self._thread.is_alive():
            logger.warning("[capture] reader still blocked in read(); it releases the device on exit")
            return
        self._release()


class CaptureController:
    """
    Acquires the camera and hands out frames.

    acquire() never raises: an unavailable or refused camera is an expected
    outcome and comes back as ``CaptureResult(granted=False)``. Used as a
    context manager it acquires on entry and raises CaptureDenied instead.
    """

    def __init__(self, camera_index: int = 0,
                 opener: Optional[Callable[[int], cv2.VideoCapture]] = None):
        self.camera_index = camera_index
        self._opener = opener or cv2.VideoCapture
        self._stream: Optional[StreamHandle] = None

    @property
    def ready(self) -> bool:
        return self._stream is not None and self._stream.active

    @property
    def failed(self) -> bool:
        """The stream was acquired and then stopped delivering frames."""
        return self._stream is not None and self._stream.failed

    @property
    def stream(self) -> Optional[StreamHandle]:
        return self._stream

    def acquire(self) -> CaptureResult:
        if self.ready:
            return CaptureResult(granted=True)
        self.release()

        logger.debug(f"[capture] opening camera index {self.camera_index}")
        try:
            cap = self._opener(self.camera_index)
        except Exception as e:
            logger.warning(f"[capture] camera {self.camera_index} unavailable: {e}")
            return CaptureResult(granted=False, reason=str(e))

        if cap is None or not cap.isOpened():
            if cap is not None:
                cap.release()
            reason = f"Could not open camera index {self.camera_index}"
            logger.warning(f"[capture] {reason}")
            return CaptureResult(granted=False, reason=reason)

        self._stream = StreamHandle(cap)
        logger.info(f"[capture] camera {self.camera_index} acquired")
        return CaptureResult(granted=True)

    def current_frame(self) -> Optional[VideoFrame]:
        if not self.ready:
            return None
        return self._stream.latest()

    def release(self):
        if self._stream is None:
            return
        self._stream.stop()
        self._stream = None
        logger.info(f"[capture] camera {self.camera_index} released")

    def __enter__(self) -> "CaptureController":
        """Acquire on entry; a refused camera raises CaptureDenied here."""
        granted = self.acquire()
        if not granted.granted:
            raise CaptureDenied(granted.reason or "Camera unavailable")
        return self

    def __exit__(self, *exc):
        self.release()
