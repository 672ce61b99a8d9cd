"""Palette ramps that turn normalised escape progress into RGB colours."""

from __future__ import annotations

from enum import Enum
from typing import Tuple, Union

import numpy as np

from fractalgarden.errors import ConfigError

RGB = Tuple[int, int, int]

INTERIOR_COLOR: RGB = (10, 10, 12)

# Contrast curve applied before the ramp so low iteration counts are not too dark.
EASING_EXPONENT = 0.65


class PaletteId(Enum):
    OCEAN = "ocean"
    HEAT = "heat"
    NEON = "neon"
    MONO = "mono"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @classmethod
    def parse(cls, value: Union[str, "PaletteId"]) -> "PaletteId":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            names = ", ".join(p.value for p in cls)
            raise ConfigError(f"Unknown palette {value!r}; expected one of: {names}") from None


def _channel(v: float) -> int:
    return int(min(255.0, max(0.0, v)))


def color_for(t: float, escaped: bool, palette: PaletteId) -> RGB:
    """
    Colour for one pixel.

    Interior points (``escaped`` false) share a fixed near-black colour whatever
    the palette. Escaped points are eased with ``s = t ** 0.65`` and run through
    the palette's affine ramp; each channel is clamped to [0, 255] and truncated.
    """
    if not escaped:
        return INTERIOR_COLOR

    t = min(1.0, max(0.0, float(t)))
    s = t ** EASING_EXPONENT

    if palette is PaletteId.OCEAN:
        return (_channel(10 + 40 * s), _channel(40 + 200 * s), _channel(80 + 160 * s))
    if palette is PaletteId.HEAT:
        return (_channel(60 + 195 * s), _channel(10 + 190 * s), _channel(10 + 40 * s))
    if palette is PaletteId.NEON:
        return (_channel(100 + 155 * (1.0 - s)), _channel(20 + 160 * s), _channel(140 + 115 * s))
    v = _channel(30 + 220 * s)
    return (v, v, v)


def palette_lut(max_iterations: int, palette: PaletteId) -> np.ndarray:
    """
    RGBA lookup table of shape (max_iterations + 1, 4) indexed by iteration count.

    Built from ``color_for`` so a rasterised pixel always matches the scalar mapping.
    """
    lut = np.empty((max_iterations + 1, 4), dtype=np.uint8)
    for n in range(max_iterations + 1):
        r, g, b = color_for(n / max_iterations, n < max_iterations, palette)
        lut[n] = (r, g, b, 255)
    return lut
