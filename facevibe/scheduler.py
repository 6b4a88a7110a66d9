"""
Detection scheduling: pace slow, asynchronous detection calls against the
camera with at most one call in flight.

States: IDLE -> LOADING -> READY <-> CYCLING, and CLOSED on teardown.

- Continuous mode: run() ticks every ``interval`` seconds. A tick issues a
  call only when READY (no call outstanding) and a frame is available,
  otherwise it is skipped.
- Manual mode: scan() issues one call and waits for it.

A failed call is logged and treated as "no detection this cycle". Results
that arrive after close() are discarded, never applied.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Tuple

from facevibe.models import DetectionRequest, RawDetection, VideoFrame

logger = logging.getLogger(__name__)

Detect = Callable[[VideoFrame, DetectionRequest], Awaitable[List[RawDetection]]]
FrameSource = Callable[[], Optional[VideoFrame]]
ResultSink = Callable[[List[RawDetection], VideoFrame], None]


class SchedulerState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    CYCLING = "cycling"
    CLOSED = "closed"


class DetectionScheduler:
    def __init__(self, detect: Detect, frame_source: FrameSource, on_result: ResultSink,
                 request: DetectionRequest, interval: float = 0.1):
        self._detect = detect
        self._frame_source = frame_source
        self._on_result = on_result
        self.request = request
        self.interval = float(interval)

        self.state = SchedulerState.IDLE
        self._in_flight: Optional[asyncio.Task] = None
        self._timer: Optional[asyncio.Task] = None

        # counters, mostly for logs and tests
        self.issued = 0
        self.completed = 0
        self.failed = 0
        self.discarded = 0
        self.skipped = 0

    # ---- lifecycle ----
    def mark_loading(self):
        if self.state is SchedulerState.IDLE:
            self.state = SchedulerState.LOADING

    def mark_ready(self):
        if self.state in (SchedulerState.IDLE, SchedulerState.LOADING):
            self.state = SchedulerState.READY

    @property
    def busy(self) -> bool:
        return self._in_flight is not None

    @property
    def closed(self) -> bool:
        return self.state is SchedulerState.CLOSED

    def stop(self):
        """Cancel the timer without closing; mark_ready() and start() resume."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self.state is not SchedulerState.CLOSED:
            self.state = SchedulerState.IDLE

    def close(self):
        """Stop ticking. An outstanding call keeps running but its result is dropped."""
        if self.state is SchedulerState.CLOSED:
            return
        self.state = SchedulerState.CLOSED
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        logger.debug("[scheduler] closed")

    async def drain(self, timeout: float = 1.0) -> bool:
        """
        Wait briefly for an outstanding call, then cancel our wait on it.

        Returns False when the call was abandoned and may still be running.
        """
        task = self._in_flight
        if task is None:
            return True
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if not done:
            logger.warning("[scheduler] detection call still running at teardown; abandoning it")
            task.cancel()
            return False
        return True

    # ---- continuous mode ----
    def start(self) -> asyncio.Task:
        if self._timer is None:
            self._timer = asyncio.get_running_loop().create_task(self.run())
        return self._timer

    async def run(self):
        logger.info(f"[scheduler] continuous detection every {self.interval:.3f}s")
        while self.state is not SchedulerState.CLOSED:
            self.tick()
            await asyncio.sleep(self.interval)

    def tick(self) -> bool:
        """Issue a detection call if allowed; return whether one was issued."""
        if self.state is not SchedulerState.READY or self._in_flight is not None:
            self.skipped += 1
            return False
        frame = self._frame_source()
        if frame is None:
            self.skipped += 1
            return False
        self._issue(frame)
        return True

    # ---- manual mode ----
    async def scan(self) -> Tuple[str, List[RawDetection]]:
        """
        Run exactly one detection call.

        Returns (status, detections) with status one of
        "detected", "no_face", "failed", "busy", "unavailable".
        """
        if self._in_flight is not None or self.state is SchedulerState.CYCLING:
            return "busy", []
        if self.state is not SchedulerState.READY:
            return "unavailable", []
        frame = self._frame_source()
        if frame is None:
            return "unavailable", []

        outcome, results = await self._issue(frame)
        if outcome == "discarded":
            return "unavailable", []
        if outcome == "failed":
            return "failed", []
        return ("detected" if results else "no_face"), results

    # ---- one call ----
    def _issue(self, frame: VideoFrame) -> asyncio.Task:
        self.state = SchedulerState.CYCLING
        self.issued += 1
        task = asyncio.get_running_loop().create_task(self._cycle(frame))
        task.add_done_callback(self._cycle_done)
        self._in_flight = task
        return task

    async def _cycle(self, frame: VideoFrame) -> Tuple[str, List[RawDetection]]:
        # frame was captured at issue time; the call never sees a newer one
        try:
            results = list(await self._detect(frame, self.request))
        except Exception:
            self.failed += 1
            logger.exception(f"[scheduler] detection failed on frame seq={frame.seq}; skipping cycle")
            results = None
        finally:
            self._in_flight = None
            if self.state is SchedulerState.CYCLING:
                self.state = SchedulerState.READY

        if self.state is SchedulerState.CLOSED:
            self.discarded += 1
            logger.debug(f"[scheduler] discarding result for frame seq={frame.seq} after close")
            return "discarded", []
        if results is None:
            return "failed", []

        self.completed += 1
        logger.debug(f"[scheduler] frame seq={frame.seq} faces={len(results)}")
        self._on_result(results, frame)
        return "ok", results

    @staticmethod
    def _cycle_done(task: asyncio.Task):
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"[scheduler] result handling failed: {exc!r}")
