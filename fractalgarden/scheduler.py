"""
Asynchronous render submission with stale-result discard.

Every ``submit`` stamps the request with the next generation number and starts
it on a worker pool. When a render finishes, its result is handed to the
``dispatch`` hook, which is where a UI marshals work onto its own thread. The
dispatched call compares the result's generation with the counter and either
delivers the buffer or drops it. Older renders are never preempted; at most
their result is ignored.
"""

from __future__ import annotations

import threading
from functools import partial
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

from fractalgarden.buffer import PixelBuffer
from fractalgarden.errors import RenderCancelled
from fractalgarden.renderers.cpu_numba import Rasterizer
from fractalgarden.util.logging_setup import get_logger
from fractalgarden.viewport import RenderRequest

DeliverCallback = Callable[[PixelBuffer, int], None]
ErrorCallback = Callable[[BaseException, int], None]
RenderingCallback = Callable[[bool], None]
Dispatch = Callable[[Callable[[], None]], None]


def call_now(fn: Callable[[], None]) -> None:
    fn()


@dataclass(frozen=True)
class RenderHandle:
    generation: int
    request: RenderRequest
    future: "Future[Optional[PixelBuffer]]"

    def done(self) -> bool:
        return self.future.done()

    def result(self, timeout: Optional[float] = None) -> Optional[PixelBuffer]:
        """The rendered buffer, or None when a newer submission superseded this one."""
        return self.future.result(timeout=timeout)

    def superseded(self) -> bool:
        return self.future.done() and self.future.exception() is None and self.future.result() is None


class RenderScheduler:
    def __init__(
        self,
        *,
        rasterizer: Optional[Rasterizer] = None,
        on_deliver: Optional[DeliverCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_rendering_changed: Optional[RenderingCallback] = None,
        dispatch: Dispatch = call_now,
        max_workers: int = 2,
        cancel_stale: bool = False,
    ):
        self._rasterizer = rasterizer or Rasterizer()
        self._on_deliver = on_deliver
        self._on_error = on_error
        self._on_rendering_changed = on_rendering_changed
        self._dispatch = dispatch
        self._cancel_stale = cancel_stale
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="fractalgarden-render")

        self._counter_lock = threading.Lock()
        self._generation = 0
        # Serialises compare-and-deliver so a stale buffer cannot land after a fresher one.
        self._deliver_lock = threading.RLock()
        self._settled = 0
        self._latest_buffer: Optional[PixelBuffer] = None
        self._flag_lock = threading.Lock()
        self._rendering_flag = False

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def latest_buffer(self) -> Optional[PixelBuffer]:
        return self._latest_buffer

    @property
    def is_rendering(self) -> bool:
        return self._settled < self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    def submit(self, request: RenderRequest) -> RenderHandle:
        with self._counter_lock:
            self._generation += 1
            generation = self._generation
        self._update_rendering()

        logger = get_logger()
        logger.debug("Submit generation=%s size=%sx%s iter=%s",
                     generation, request.pixel_width, request.pixel_height, request.max_iterations)

        handle_future: "Future[Optional[PixelBuffer]]" = Future()
        self._pool.submit(self._run, generation, request, handle_future)
        return RenderHandle(generation=generation, request=request, future=handle_future)

    def _run(self, generation: int, request: RenderRequest, handle_future: "Future[Optional[PixelBuffer]]") -> None:
        logger = get_logger()
        if not handle_future.set_running_or_notify_cancel():
            logger.debug("Generation %s cancelled before it started", generation)
            return

        should_cancel = (lambda: not self.is_current(generation)) if self._cancel_stale else None
        try:
            buf = self._rasterizer.render(request, should_cancel=should_cancel)
        except RenderCancelled:
            logger.debug("Generation %s cancelled mid-render (now %s)", generation, self._generation)
            handle_future.set_result(None)
            return
        except Exception as e:
            logger.exception("Render failed generation=%s", generation)
            self._dispatch(partial(self._fail, generation, e, handle_future))
            return

        self._dispatch(partial(self._deliver, generation, buf, handle_future))

    def _deliver(self, generation: int, buf: PixelBuffer, handle_future: "Future[Optional[PixelBuffer]]") -> None:
        logger = get_logger()
        with self._deliver_lock:
            if not self.is_current(generation):
                logger.debug("Discarding stale generation=%s (current %s)", generation, self._generation)
                handle_future.set_result(None)
                return
            self._latest_buffer = buf
            self._settled = generation
            if self._on_deliver is not None:
                try:
                    self._on_deliver(buf, generation)
                except Exception:
                    logger.exception("Deliver callback failed generation=%s", generation)
            handle_future.set_result(buf)
        self._update_rendering()

    def _fail(self, generation: int, exc: BaseException, handle_future: "Future[Optional[PixelBuffer]]") -> None:
        logger = get_logger()
        with self._deliver_lock:
            if not self.is_current(generation):
                handle_future.set_result(None)
                return
            self._settled = generation
            if self._on_error is not None:
                try:
                    self._on_error(exc, generation)
                except Exception:
                    logger.exception("Error callback failed generation=%s", generation)
            handle_future.set_exception(exc)
        self._update_rendering()

    def _update_rendering(self) -> None:
        with self._flag_lock:
            rendering = self.is_rendering
            if rendering == self._rendering_flag:
                return
            self._rendering_flag = rendering
        # Called outside the lock: the callback may submit again.
        if self._on_rendering_changed is not None:
            self._on_rendering_changed(rendering)

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    def __enter__(self) -> "RenderScheduler":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown(wait=True)
