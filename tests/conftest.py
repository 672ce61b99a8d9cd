import pytest

from fractalgarden.palette import PaletteId
from fractalgarden.viewport import RenderRequest, ViewportWindow


@pytest.fixture
def default_viewport():
    return ViewportWindow(center_x=-0.5, center_y=0.0, half_width=1.35)


@pytest.fixture
def make_request(default_viewport):
    def _make(width=8, height=6, max_iterations=50, viewport=None, palette=PaletteId.OCEAN):
        return RenderRequest(
            pixel_width=width,
            pixel_height=height,
            max_iterations=max_iterations,
            viewport=viewport or default_viewport,
            palette=palette,
        )
    return _make
