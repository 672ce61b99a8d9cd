import threading
import time

import pytest

from fractalgarden.buffer import PixelBuffer
from fractalgarden.errors import BufferConstructionError, RenderCancelled
from fractalgarden.renderers.cpu_numba import Rasterizer
from fractalgarden.scheduler import RenderScheduler
from fractalgarden.viewport import RenderRequest, ViewportWindow

TIMEOUT = 10


class GatedRasterizer:
    """Blocks each render until its tag (the request's iteration cap) is released."""

    def __init__(self, fail_tags=()):
        self._lock = threading.Lock()
        self._gates = {}
        self.fail_tags = set(fail_tags)
        self.started = []

    def gate(self, tag):
        with self._lock:
            return self._gates.setdefault(tag, threading.Event())

    def release(self, tag):
        self.gate(tag).set()

    def render(self, request, should_cancel=None):
        tag = request.max_iterations
        with self._lock:
            self.started.append(tag)
        assert self.gate(tag).wait(TIMEOUT)
        if should_cancel is not None and should_cancel():
            raise RenderCancelled(f"tag {tag}")
        if tag in self.fail_tags:
            raise BufferConstructionError(f"tag {tag}")
        return PixelBuffer(width=1, height=1, data=bytes((tag % 256, 0, 0, 255)))


def _req(tag):
    return RenderRequest(pixel_width=1, pixel_height=1, max_iterations=tag, viewport=ViewportWindow())


@pytest.fixture
def delivered():
    return []


@pytest.fixture
def gated():
    return GatedRasterizer()


@pytest.fixture
def scheduler(gated, delivered):
    s = RenderScheduler(
        rasterizer=gated,
        on_deliver=lambda buf, gen: delivered.append((gen, buf.data[0])),
        max_workers=4,
    )
    yield s
    for tag in range(0, 300):
        gated.release(tag)
    s.shutdown(wait=True)


def test_generations_increase_per_submission(scheduler, gated):
    handles = [scheduler.submit(_req(tag)) for tag in (11, 12, 13)]
    assert [h.generation for h in handles] == [1, 2, 3]
    assert scheduler.generation == 3


def test_submit_does_not_block(scheduler, gated):
    h = scheduler.submit(_req(11))
    assert not h.done()
    assert scheduler.is_rendering


def test_only_latest_generation_is_delivered(scheduler, gated, delivered):
    h1 = scheduler.submit(_req(11))
    h2 = scheduler.submit(_req(12))
    h3 = scheduler.submit(_req(13))

    gated.release(13)
    assert h3.result(TIMEOUT).data[0] == 13
    gated.release(12)
    assert h2.result(TIMEOUT) is None
    gated.release(11)
    assert h1.result(TIMEOUT) is None

    assert delivered == [(3, 13)]
    assert h1.superseded() and h2.superseded() and not h3.superseded()
    assert scheduler.latest_buffer.data[0] == 13
    assert not scheduler.is_rendering


def test_older_result_never_overwrites_newer(scheduler, gated, delivered):
    handles = {tag: scheduler.submit(_req(tag)) for tag in (15, 16, 17)}
    gated.release(17)
    handles[17].result(TIMEOUT)
    gated.release(15)
    assert handles[15].result(TIMEOUT) is None
    assert delivered == [(3, 17)]
    assert scheduler.latest_buffer.data[0] == 17


def test_result_arriving_before_newer_submission_is_delivered(scheduler, gated, delivered):
    h1 = scheduler.submit(_req(21))
    gated.release(21)
    h1.result(TIMEOUT)
    h2 = scheduler.submit(_req(22))
    assert scheduler.is_rendering
    gated.release(22)
    h2.result(TIMEOUT)
    assert delivered == [(1, 21), (2, 22)]


def test_rendering_flag_tracks_latest_generation(gated):
    changes = []
    with RenderScheduler(rasterizer=gated, on_rendering_changed=changes.append, max_workers=4) as s:
        assert not s.is_rendering
        h1 = s.submit(_req(31))
        h2 = s.submit(_req(32))
        gated.release(31)
        h1.result(TIMEOUT)
        # generation 1 finishing does not clear the indicator while 2 is pending
        assert s.is_rendering
        gated.release(32)
        h2.result(TIMEOUT)
        assert not s.is_rendering
    assert changes[0] is True
    assert changes[-1] is False


def test_comparison_happens_at_dispatch_time(gated, delivered):
    queued = []
    s = RenderScheduler(
        rasterizer=gated,
        on_deliver=lambda buf, gen: delivered.append((gen, buf.data[0])),
        dispatch=queued.append,
    )
    try:
        h1 = s.submit(_req(41))
        gated.release(41)
        _wait_for(lambda: queued)
        # control thread submits again before draining the finished result
        h2 = s.submit(_req(42))
        for fn in queued:
            fn()
        assert h1.result(TIMEOUT) is None
        assert delivered == []

        queued.clear()
        gated.release(42)
        _wait_for(lambda: queued)
        queued.pop()()
        assert h2.result(TIMEOUT).data[0] == 42
        assert delivered == [(2, 42)]
    finally:
        s.shutdown(wait=True)


def test_failure_keeps_previous_buffer(delivered):
    gated = GatedRasterizer(fail_tags={52})
    errors = []
    with RenderScheduler(
        rasterizer=gated,
        on_deliver=lambda buf, gen: delivered.append(gen),
        on_error=lambda exc, gen: errors.append((gen, type(exc))),
    ) as s:
        gated.release(51)
        first = s.submit(_req(51)).result(TIMEOUT)
        gated.release(52)
        h = s.submit(_req(52))
        with pytest.raises(BufferConstructionError):
            h.result(TIMEOUT)
        assert errors == [(2, BufferConstructionError)]
        assert s.latest_buffer is first
        assert not s.is_rendering
    assert delivered == [1]


def test_stale_failure_is_silent():
    gated = GatedRasterizer(fail_tags={61})
    errors = []
    with RenderScheduler(rasterizer=gated, on_error=lambda exc, gen: errors.append(gen), max_workers=2) as s:
        h1 = s.submit(_req(61))
        h2 = s.submit(_req(62))
        gated.release(61)
        assert h1.result(TIMEOUT) is None
        gated.release(62)
        assert h2.result(TIMEOUT).data[0] == 62
    assert errors == []


def test_cancel_stale_stops_superseded_work(delivered):
    gated = GatedRasterizer()
    with RenderScheduler(
        rasterizer=gated,
        on_deliver=lambda buf, gen: delivered.append(gen),
        cancel_stale=True,
        max_workers=2,
    ) as s:
        h1 = s.submit(_req(71))
        h2 = s.submit(_req(72))
        gated.release(71)
        assert h1.result(TIMEOUT) is None
        gated.release(72)
        assert h2.result(TIMEOUT) is not None
    assert delivered == [2]


def test_callback_may_submit_again(gated):
    seen = []
    holder = {}

    def on_deliver(buf, gen):
        seen.append(gen)
        if gen == 1:
            holder["next"] = holder["scheduler"].submit(_req(82))

    with RenderScheduler(rasterizer=gated, on_deliver=on_deliver) as s:
        holder["scheduler"] = s
        gated.release(81)
        gated.release(82)
        s.submit(_req(81)).result(TIMEOUT)
        holder["next"].result(TIMEOUT)
    assert seen == [1, 2]


def test_rendering_callback_may_submit_again(gated):
    holder = {}
    resubmitted = threading.Event()

    def on_rendering_changed(rendering):
        if not rendering and "next" not in holder:
            holder["next"] = holder["scheduler"].submit(_req(92))
            resubmitted.set()

    with RenderScheduler(rasterizer=gated, on_rendering_changed=on_rendering_changed) as s:
        holder["scheduler"] = s
        gated.release(91)
        gated.release(92)
        s.submit(_req(91)).result(TIMEOUT)
        assert resubmitted.wait(TIMEOUT)
        assert holder["next"].result(TIMEOUT).data[0] == 92
        assert holder["next"].generation == 2


def test_real_rasterizer_round_trip():
    req = RenderRequest(pixel_width=12, pixel_height=10, max_iterations=60, viewport=ViewportWindow())
    rasterizer = Rasterizer(workers=2, band_height=3)
    with RenderScheduler(rasterizer=rasterizer) as s:
        buf = s.submit(req).result(TIMEOUT)
    assert buf.data == Rasterizer(workers=1).render(req).data


def _wait_for(predicate, timeout=TIMEOUT):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(0.01)
    raise AssertionError("condition not reached")
