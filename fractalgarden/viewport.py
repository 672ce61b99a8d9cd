"""Viewport windows over the complex plane and the requests built from them."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Tuple

import numpy as np

from fractalgarden.palette import PaletteId

MIN_HALF_WIDTH = 5e-4
MAX_HALF_WIDTH = 4.0

MIN_ITERATIONS = 10

DEFAULT_CENTER = (-0.5, 0.0)
DEFAULT_HALF_WIDTH = 1.35
DEFAULT_MAX_ITERATIONS = 180


def clamp_half_width(half_width: float, lo: float = MIN_HALF_WIDTH, hi: float = MAX_HALF_WIDTH) -> float:
    return max(lo, min(float(half_width), hi))


@dataclass(frozen=True)
class ViewportWindow:
    """Centre of the visible window and half of its real-axis span."""

    center_x: float = DEFAULT_CENTER[0]
    center_y: float = DEFAULT_CENTER[1]
    half_width: float = DEFAULT_HALF_WIDTH

    def __post_init__(self) -> None:
        if not self.half_width > 0:
            raise ValueError(f"half_width must be > 0, got {self.half_width}")

    def zoomed(self, magnify: float, *, lo: float = MIN_HALF_WIDTH, hi: float = MAX_HALF_WIDTH) -> "ViewportWindow":
        if magnify <= 0:
            return self
        return replace(self, half_width=clamp_half_width(self.half_width / magnify, lo, hi))

    def panned(self, dx: float, dy: float, canvas_width: float, canvas_height: float) -> "ViewportWindow":
        # Drag moves the picture, so the window moves the other way.
        if canvas_width <= 0 or canvas_height <= 0:
            return self
        aspect = canvas_height / canvas_width
        delta_x = (dx / canvas_width) * (2.0 * self.half_width)
        delta_y = (dy / canvas_height) * (2.0 * self.half_width * aspect)
        return replace(self, center_x=self.center_x - delta_x, center_y=self.center_y - delta_y)


@dataclass(frozen=True)
class RenderRequest:
    pixel_width: int
    pixel_height: int
    max_iterations: int
    viewport: ViewportWindow
    palette: PaletteId = PaletteId.OCEAN

    def clamped(self) -> "RenderRequest":
        """Copy with sizes raised to at least 1 and the iteration cap to at least 10."""
        return replace(
            self,
            pixel_width=max(1, int(self.pixel_width)),
            pixel_height=max(1, int(self.pixel_height)),
            max_iterations=max(MIN_ITERATIONS, int(self.max_iterations)),
        )


def _half_height(request: RenderRequest) -> float:
    aspect = request.pixel_height / request.pixel_width
    return request.viewport.half_width * aspect


def pixel_to_complex(request: RenderRequest, x: int, y: int) -> Tuple[float, float]:
    """Plane coordinate sampled by pixel (x, y); a single-pixel axis samples the window centre."""
    request = request.clamped()
    vp = request.viewport
    half_height = _half_height(request)
    if request.pixel_width > 1:
        real = (vp.center_x - vp.half_width) + (x / (request.pixel_width - 1)) * (2.0 * vp.half_width)
    else:
        real = vp.center_x
    if request.pixel_height > 1:
        imag = (vp.center_y - half_height) + (y / (request.pixel_height - 1)) * (2.0 * half_height)
    else:
        imag = vp.center_y
    return real, imag


def sample_axes(request: RenderRequest) -> Tuple[np.ndarray, np.ndarray]:
    """Real-axis samples for every column and imaginary-axis samples for every row."""
    request = request.clamped()
    vp = request.viewport
    w = request.pixel_width
    h = request.pixel_height
    half_height = _half_height(request)

    if w > 1:
        xs = (vp.center_x - vp.half_width) + (np.arange(w, dtype=np.float64) / (w - 1)) * (2.0 * vp.half_width)
    else:
        xs = np.array([vp.center_x], dtype=np.float64)
    if h > 1:
        ys = (vp.center_y - half_height) + (np.arange(h, dtype=np.float64) / (h - 1)) * (2.0 * half_height)
    else:
        ys = np.array([vp.center_y], dtype=np.float64)
    return xs, ys
