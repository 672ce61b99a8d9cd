from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from fractalgarden.buffer import PixelBuffer
from fractalgarden.config import load_config, normalise_config
from fractalgarden.palette import PaletteId
from fractalgarden.renderers.cpu_numba import Rasterizer
from fractalgarden.scheduler import Dispatch, RenderHandle, RenderScheduler, call_now
from fractalgarden.util.logging_setup import QueuedLogging, get_logger, setup_logging
from fractalgarden.viewport import (
    DEFAULT_CENTER,
    DEFAULT_HALF_WIDTH,
    DEFAULT_MAX_ITERATIONS,
    MAX_HALF_WIDTH,
    MIN_HALF_WIDTH,
    RenderRequest,
    ViewportWindow,
)


class CultivationSession:
    """
    State behind the interactive explorer screen.

    Holds the viewport, iteration slider and palette; every change submits a
    fresh render and the newest delivered buffer becomes ``image``. A failed
    render keeps the previous image and records ``last_error``.
    """

    def __init__(
        self,
        *,
        rasterizer: Optional[Rasterizer] = None,
        dispatch: Dispatch = call_now,
        size: Tuple[int, int] = (420, 420),
        iterations: int = DEFAULT_MAX_ITERATIONS,
        iteration_range: Tuple[int, int] = (50, 600),
        iteration_step: int = 10,
        palette: PaletteId = PaletteId.OCEAN,
        center: Tuple[float, float] = DEFAULT_CENTER,
        half_width: float = DEFAULT_HALF_WIDTH,
        half_width_range: Tuple[float, float] = (MIN_HALF_WIDTH, MAX_HALF_WIDTH),
        cancel_stale: bool = False,
        max_workers: int = 2,
        log_pipeline: Optional[QueuedLogging] = None,
    ):
        self.size = (max(1, int(size[0])), max(1, int(size[1])))
        self.iteration_range = (int(iteration_range[0]), int(iteration_range[1]))
        self.iteration_step = max(1, int(iteration_step))
        self.half_width_range = (float(half_width_range[0]), float(half_width_range[1]))
        self._defaults = {
            "iterations": self._clamp_iterations(iterations),
            "palette": palette,
            "viewport": ViewportWindow(float(center[0]), float(center[1]), float(half_width)),
        }
        self.iterations = self._defaults["iterations"]
        self.palette = palette
        self.viewport = self._defaults["viewport"]

        self.image: Optional[PixelBuffer] = None
        self.last_error: Optional[BaseException] = None
        self._log_pipeline = log_pipeline

        self.scheduler = RenderScheduler(
            rasterizer=rasterizer,
            on_deliver=self._on_deliver,
            on_error=self._on_error,
            dispatch=dispatch,
            max_workers=max_workers,
            cancel_stale=cancel_stale,
        )

    @classmethod
    def from_config(
        cls,
        cfg: Dict[str, Any],
        *,
        dispatch: Dispatch = call_now,
        log_pipeline: Optional[QueuedLogging] = None,
    ) -> "CultivationSession":
        """Build from a dict produced by ``normalise_config``."""
        rasterizer = Rasterizer(workers=cfg["workers"], band_height=cfg["band_height"])
        return cls(
            rasterizer=rasterizer,
            dispatch=dispatch,
            size=(cfg["width"], cfg["height"]),
            iterations=cfg["max_iter"],
            iteration_range=tuple(cfg["iteration_range"]),
            iteration_step=cfg["iteration_step"],
            palette=PaletteId.parse(cfg["palette"]),
            center=tuple(cfg["center"]),
            half_width=cfg["half_width"],
            half_width_range=tuple(cfg["half_width_range"]),
            cancel_stale=cfg["cancel_stale"],
            max_workers=cfg["scheduler_workers"],
            log_pipeline=log_pipeline,
        )

    def _clamp_iterations(self, n: int) -> int:
        """Snap to the slider grid (lo, lo + step, ...) inside the iteration range."""
        lo, hi = self.iteration_range
        n = max(lo, min(int(n), hi))
        snapped = lo + round((n - lo) / self.iteration_step) * self.iteration_step
        return min(snapped, hi)

    @property
    def default_half_width(self) -> float:
        return self._defaults["viewport"].half_width

    @property
    def zoom_level(self) -> float:
        return self.default_half_width / self.viewport.half_width

    @property
    def is_rendering(self) -> bool:
        return self.scheduler.is_rendering

    @property
    def log_pipeline(self) -> Optional[QueuedLogging]:
        return self._log_pipeline

    def build_request(self) -> RenderRequest:
        return RenderRequest(
            pixel_width=self.size[0],
            pixel_height=self.size[1],
            max_iterations=self.iterations,
            viewport=self.viewport,
            palette=self.palette,
        )

    def refresh(self) -> RenderHandle:
        return self.scheduler.submit(self.build_request())

    def set_iterations(self, n: int) -> RenderHandle:
        self.iterations = self._clamp_iterations(n)
        return self.refresh()

    def set_palette(self, palette) -> RenderHandle:
        self.palette = PaletteId.parse(palette)
        return self.refresh()

    def commit_gesture(
        self,
        magnify: float,
        drag_dx: float,
        drag_dy: float,
        canvas_width: float,
        canvas_height: float,
    ) -> RenderHandle:
        """Apply a finished pinch/drag: zoom first, then pan using the new half-width."""
        lo, hi = self.half_width_range
        vp = self.viewport.zoomed(magnify, lo=lo, hi=hi)
        self.viewport = vp.panned(drag_dx, drag_dy, canvas_width, canvas_height)
        get_logger().debug("Gesture committed magnify=%s drag=(%s,%s) -> %s", magnify, drag_dx, drag_dy, self.viewport)
        return self.refresh()

    def reset(self) -> RenderHandle:
        self.iterations = self._defaults["iterations"]
        self.palette = self._defaults["palette"]
        self.viewport = self._defaults["viewport"]
        return self.refresh()

    def _on_deliver(self, buf: PixelBuffer, generation: int) -> None:
        self.image = buf
        self.last_error = None

    def _on_error(self, exc: BaseException, generation: int) -> None:
        get_logger().warning("Render generation %s failed, keeping previous image: %s", generation, exc)
        self.last_error = exc

    def close(self) -> None:
        self.scheduler.shutdown(wait=True)
        if self._log_pipeline is not None:
            self._log_pipeline.stop()
            self._log_pipeline = None

    def __enter__(self) -> "CultivationSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def open_session(config_path: Optional[str] = None, *, dispatch: Dispatch = call_now, console_logging: bool = True) -> CultivationSession:
    """Load configuration, start logging and return a session. ``close()`` also stops queued logging."""
    cfg = normalise_config(load_config(config_path))
    level = getattr(logging, cfg["log_level"], logging.INFO)
    pipeline = setup_logging(level=level, console=console_logging, log_file=cfg["log_file"])
    try:
        session = CultivationSession.from_config(cfg, dispatch=dispatch, log_pipeline=pipeline)
    except Exception:
        pipeline.stop()
        raise
    get_logger().info("Session ready size=%sx%s iter=%s palette=%s workers=%s",
                      cfg["width"], cfg["height"], cfg["max_iter"], cfg["palette"], cfg["workers"])
    return session
