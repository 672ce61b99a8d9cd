"""Escape-time Mandelbrot rendering with generation-stamped asynchronous delivery."""

from .buffer import PixelBuffer
from .errors import BufferConstructionError, ConfigError, RenderCancelled, RenderError
from .palette import INTERIOR_COLOR, PaletteId, color_for
from .renderers.cpu_numba import Rasterizer, render
from .renderers.escape import escape_iterations
from .scheduler import RenderHandle, RenderScheduler
from .session import CultivationSession, open_session
from .viewport import RenderRequest, ViewportWindow, pixel_to_complex

__all__ = [
    "BufferConstructionError",
    "ConfigError",
    "CultivationSession",
    "INTERIOR_COLOR",
    "PaletteId",
    "PixelBuffer",
    "Rasterizer",
    "RenderCancelled",
    "RenderError",
    "RenderHandle",
    "RenderRequest",
    "RenderScheduler",
    "ViewportWindow",
    "color_for",
    "escape_iterations",
    "open_session",
    "pixel_to_complex",
    "render",
]
