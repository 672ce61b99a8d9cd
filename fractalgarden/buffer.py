from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np
from PIL import Image

CHANNELS = 4


@dataclass(frozen=True)
class PixelBuffer:
    """Row-major RGBA8 pixels, top row first. The bytes never change after construction."""

    width: int
    height: int
    data: bytes

    def __post_init__(self) -> None:
        expected = self.width * self.height * CHANNELS
        if len(self.data) != expected:
            raise ValueError(f"RGBA buffer of {self.width}x{self.height} needs {expected} bytes, got {len(self.data)}")

    @classmethod
    def from_array(cls, arr: np.ndarray) -> "PixelBuffer":
        if arr.ndim != 3 or arr.shape[2] != CHANNELS or arr.dtype != np.uint8:
            raise ValueError(f"Expected (h, w, 4) uint8 array, got {arr.shape} {arr.dtype}")
        h, w, _ = arr.shape
        return cls(width=w, height=h, data=np.ascontiguousarray(arr).tobytes())

    def to_array(self) -> np.ndarray:
        # frombuffer over bytes is read-only
        return np.frombuffer(self.data, dtype=np.uint8).reshape(self.height, self.width, CHANNELS)

    def to_image(self) -> Image.Image:
        return Image.frombytes("RGBA", (self.width, self.height), self.data)

    def pixel(self, x: int, y: int) -> Tuple[int, int, int, int]:
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise IndexError(f"pixel ({x},{y}) outside {self.width}x{self.height}")
        i = (y * self.width + x) * CHANNELS
        r, g, b, a = self.data[i:i + CHANNELS]
        return (r, g, b, a)
