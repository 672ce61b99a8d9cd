from __future__ import annotations

import os
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Tuple

import numpy as np

from fractalgarden.buffer import CHANNELS, PixelBuffer
from fractalgarden.errors import BufferConstructionError, RenderCancelled
from fractalgarden.palette import palette_lut
from fractalgarden.renderers.escape import escape_band
from fractalgarden.util.logging_setup import get_logger
from fractalgarden.viewport import RenderRequest, sample_axes

DEFAULT_MAX_PIXELS = 64 * 1024 * 1024


def _bands(height: int, band_height: int) -> List[Tuple[int, int]]:
    bands: List[Tuple[int, int]] = []
    y = 0
    while y < height:
        y1 = min(height, y + band_height)
        bands.append((y, y1))
        y = y1
    return bands


def _allocate(width: int, height: int, max_pixels: int) -> Tuple[np.ndarray, np.ndarray]:
    if width * height > max_pixels:
        raise BufferConstructionError(f"{width}x{height} exceeds the {max_pixels} pixel limit")
    try:
        iters = np.empty((height, width), dtype=np.int64)
        rgba = np.empty((height, width, CHANNELS), dtype=np.uint8)
    except (MemoryError, ValueError) as e:
        raise BufferConstructionError(f"Could not allocate {width}x{height} RGBA buffer: {e}") from e
    return iters, rgba


def _freeze(rgba: np.ndarray) -> PixelBuffer:
    try:
        return PixelBuffer.from_array(rgba)
    except MemoryError as e:
        h, w, _ = rgba.shape
        raise BufferConstructionError(f"Could not copy {w}x{h} RGBA buffer: {e}") from e


class Rasterizer:
    """
    Renders a RenderRequest into a PixelBuffer.

    Rows are cut into bands of ``band_height`` and evaluated on a thread pool;
    every band writes its own slice of one shared array, so the output does not
    depend on ``workers`` or ``band_height``.
    """

    def __init__(self, *, workers: Optional[int] = None, band_height: int = 16, max_pixels: int = DEFAULT_MAX_PIXELS):
        if band_height <= 0:
            raise ValueError("band_height must be > 0")
        self.workers = workers if workers and workers > 0 else (os.cpu_count() or 1)
        self.band_height = band_height
        self.max_pixels = max_pixels

    def render(self, request: RenderRequest, should_cancel: Optional[Callable[[], bool]] = None) -> PixelBuffer:
        logger = get_logger()
        request = request.clamped()
        width = request.pixel_width
        height = request.pixel_height
        max_iter = request.max_iterations
        start = time.perf_counter()

        iters, rgba = _allocate(width, height, self.max_pixels)
        xs, ys = sample_axes(request)
        bands = _bands(height, self.band_height)

        logger.debug("Render start size=%sx%s iter=%s center=(%s,%s) half_width=%s palette=%s bands=%s",
                     width, height, max_iter, request.viewport.center_x, request.viewport.center_y,
                     request.viewport.half_width, request.palette.value, len(bands))

        def _render_band(band: Tuple[int, int]) -> None:
            y0, y1 = band
            if should_cancel is not None and should_cancel():
                raise RenderCancelled(f"band {y0}-{y1} cancelled")
            escape_band(xs, ys[y0:y1], max_iter, iters[y0:y1])

        workers = min(self.workers, len(bands))
        if workers <= 1:
            for band in bands:
                _render_band(band)
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fractalgarden-band") as pool:
                # list() re-raises the first band failure, including RenderCancelled
                list(pool.map(_render_band, bands))

        lut = palette_lut(max_iter, request.palette)
        # indices lie in [0, max_iter]; clip mode fills out without a buffered copy
        np.take(lut, iters, axis=0, out=rgba, mode="clip")
        buf = _freeze(rgba)

        logger.debug("Render done size=%sx%s in %.3fs", width, height, time.perf_counter() - start)
        return buf


def render(request: RenderRequest) -> PixelBuffer:
    return Rasterizer().render(request)
