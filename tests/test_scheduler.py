import asyncio

import numpy as np

from facevibe.models import DetectionRequest, VideoFrame
from facevibe.scheduler import DetectionScheduler, SchedulerState


def _frame(seq=1):
    return VideoFrame(image=np.zeros((48, 64, 3), dtype=np.uint8), width=64, height=48, seq=seq, ts=0.0)


class SlowDetect:
    """Counts concurrent calls; each call takes ``delay`` seconds."""
    def __init__(self, delay=0.05, results=None, error=None):
        self.delay = delay
        self.results = results if results is not None else []
        self.error = error
        self.active = 0
        self.max_active = 0
        self.calls = 0
    async def __call__(self, frame, request):
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            if self.error:
                raise self.error
            return list(self.results)
        finally:
            self.active -= 1


def _scheduler(detect, frames=True, sink=None, interval=0.01):
    applied = [] if sink is None else sink
    sched = DetectionScheduler(
        detect=detect,
        frame_source=(lambda: _frame()) if frames else (lambda: None),
        on_result=lambda results, frame: applied.append(results),
        request=DetectionRequest(),
        interval=interval,
    )
    return sched, applied


def test_rapid_ticks_never_overlap():
    detect = SlowDetect(delay=0.05)

    async def go():
        sched, applied = _scheduler(detect)
        sched.mark_ready()
        for _ in range(20):
            sched.tick()
            await asyncio.sleep(0.005)
        await sched.drain(timeout=1.0)
        return sched, applied

    sched, applied = asyncio.run(go())
    assert detect.max_active == 1
    assert sched.issued == detect.calls
    assert sched.skipped > 0
    assert len(applied) == sched.completed

def test_timer_loop_respects_in_flight_call():
    detect = SlowDetect(delay=0.03)

    async def go():
        sched, applied = _scheduler(detect, interval=0.005)
        sched.mark_ready()
        sched.start()
        await asyncio.sleep(0.2)
        sched.close()
        await sched.drain(timeout=1.0)
        return sched

    sched = asyncio.run(go())
    assert detect.max_active == 1
    assert sched.issued >= 2
    assert sched.state is SchedulerState.CLOSED

def test_tick_without_frame_is_skipped():
    detect = SlowDetect()

    async def go():
        sched, _ = _scheduler(detect, frames=False)
        sched.mark_ready()
        issued = sched.tick()
        return sched, issued

    sched, issued = asyncio.run(go())
    assert issued is False
    assert detect.calls == 0
    assert sched.state is SchedulerState.READY

def test_tick_before_ready_is_skipped():
    detect = SlowDetect()

    async def go():
        sched, _ = _scheduler(detect)
        sched.mark_loading()
        return sched.tick(), sched.state

    issued, state = asyncio.run(go())
    assert issued is False
    assert state is SchedulerState.LOADING
    assert detect.calls == 0

def test_failed_call_is_logged_and_skipped():
    detect = SlowDetect(delay=0.0, error=RuntimeError("backend exploded"))

    async def go():
        sched, applied = _scheduler(detect)
        sched.mark_ready()
        sched.tick()
        await sched.drain()
        return sched, applied

    sched, applied = asyncio.run(go())
    assert sched.failed == 1
    assert applied == []
    assert sched.state is SchedulerState.READY

def test_result_after_close_is_discarded(make_detection):
    detect = SlowDetect(delay=0.05, results=[make_detection()])

    async def go():
        sched, applied = _scheduler(detect)
        sched.mark_ready()
        sched.tick()
        await asyncio.sleep(0.01)
        sched.close()
        await asyncio.sleep(0.1)
        return sched, applied

    sched, applied = asyncio.run(go())
    assert applied == []
    assert sched.discarded == 1
    assert sched.state is SchedulerState.CLOSED

def test_scan_statuses(make_detection):
    async def go():
        found, _ = _scheduler(SlowDetect(delay=0.0, results=[make_detection()]))
        found.mark_ready()
        empty, _ = _scheduler(SlowDetect(delay=0.0))
        empty.mark_ready()
        broken, _ = _scheduler(SlowDetect(delay=0.0, error=ValueError("x")))
        broken.mark_ready()
        not_ready, _ = _scheduler(SlowDetect(delay=0.0))
        no_frame, _ = _scheduler(SlowDetect(delay=0.0), frames=False)
        no_frame.mark_ready()
        return [
            (await found.scan())[0],
            (await empty.scan())[0],
            (await broken.scan())[0],
            (await not_ready.scan())[0],
            (await no_frame.scan())[0],
        ]

    assert asyncio.run(go()) == ["detected", "no_face", "failed", "unavailable", "unavailable"]

def test_scan_while_cycling_is_busy():
    detect = SlowDetect(delay=0.05)

    async def go():
        sched, _ = _scheduler(detect)
        sched.mark_ready()
        first = asyncio.ensure_future(sched.scan())
        await asyncio.sleep(0.01)
        second = await sched.scan()
        return await first, second

    first, second = asyncio.run(go())
    assert first[0] == "no_face"
    assert second == ("busy", [])
    assert detect.calls == 1

def test_stop_then_resume():
    detect = SlowDetect(delay=0.0)

    async def go():
        sched, _ = _scheduler(detect)
        sched.mark_ready()
        sched.start()
        await asyncio.sleep(0.03)
        sched.stop()
        stopped = sched.state
        await asyncio.sleep(0.01)
        calls = detect.calls
        await asyncio.sleep(0.03)
        idle_calls = detect.calls
        sched.mark_ready()
        sched.start()
        await asyncio.sleep(0.03)
        sched.close()
        await sched.drain()
        return stopped, calls, idle_calls, detect.calls

    stopped, calls, idle_calls, final = asyncio.run(go())
    assert stopped is SchedulerState.IDLE
    assert idle_calls == calls
    assert final > idle_calls

def test_drain_reports_abandoned_call():
    async def go():
        slow, _ = _scheduler(SlowDetect(delay=0.3))
        slow.mark_ready()
        slow.tick()
        abandoned = await slow.drain(timeout=0.02)
        quick, _ = _scheduler(SlowDetect(delay=0.0))
        quick.mark_ready()
        quick.tick()
        finished = await quick.drain(timeout=1.0)
        idle = await quick.drain(timeout=0.0)
        return abandoned, finished, idle

    assert asyncio.run(go()) == (False, True, True)
