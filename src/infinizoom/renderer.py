"""
Software rendering of the visible part of the wrapped tile grid.
"""

import logging
import math
from typing import Optional, Tuple

from PIL import Image, ImageDraw

from infinizoom.schemas import Rect
from infinizoom.tile_store import TileStore
from infinizoom.viewport import ViewportState, world_from_screen

logger = logging.getLogger(__name__)

BACKGROUND = (0, 0, 0, 255)
GLOW_COLOR = (120, 200, 255, 150)
GLOW_WIDTH = 3


def _blit(canvas: Image.Image, image: Image.Image, world_x: float, world_y: float,
          visible: Rect, state: ViewportState) -> Optional[Tuple[int, int, int, int]]:
    """Draw the visible part of *image*, placed at (world_x, world_y), onto *canvas*.

    Only the visible pixels are scaled, so cost stays bounded at high zoom.
    Returns the screen box the whole image occupies, or None if nothing was visible.
    """
    ix0 = max(world_x, visible.x)
    iy0 = max(world_y, visible.y)
    ix1 = min(world_x + image.width, visible.right)
    iy1 = min(world_y + image.height, visible.bottom)
    if ix1 <= ix0 or iy1 <= iy0:
        return None

    cx0 = max(0, math.floor(ix0 - world_x))
    cy0 = max(0, math.floor(iy0 - world_y))
    cx1 = min(image.width, math.ceil(ix1 - world_x))
    cy1 = min(image.height, math.ceil(iy1 - world_y))

    sx0 = round(state.pan_x + (world_x + cx0) * state.zoom)
    sy0 = round(state.pan_y + (world_y + cy0) * state.zoom)
    sx1 = round(state.pan_x + (world_x + cx1) * state.zoom)
    sy1 = round(state.pan_y + (world_y + cy1) * state.zoom)
    if sx1 <= sx0 or sy1 <= sy0:
        return None

    part = image.crop((cx0, cy0, cx1, cy1)).resize((sx1 - sx0, sy1 - sy0), Image.Resampling.BILINEAR)
    canvas.paste(part, (sx0, sy0), part)

    return (
        round(state.pan_x + world_x * state.zoom),
        round(state.pan_y + world_y * state.zoom),
        round(state.pan_x + (world_x + image.width) * state.zoom),
        round(state.pan_y + (world_y + image.height) * state.zoom),
    )


def render_viewport(
    store: TileStore,
    state: ViewportState,
    viewport_size: Tuple[int, int],
    placeholder: Optional[Tuple[Rect, Image.Image]] = None,
    show_enhanced_glow: bool = True,
    background: Tuple[int, int, int, int] = BACKGROUND,
) -> Image.Image:
    """Render what the viewport shows into an RGBA image of *viewport_size*.

    Columns repeat horizontally. *placeholder* is the stitched raster of an
    enhancement still in flight, drawn over the tiles at its world rectangle.
    """
    canvas = Image.new("RGBA", viewport_size, background)
    visible = world_from_screen(state.pan, state.zoom, viewport_size)
    glow_boxes = []

    for col, row, tile in store.tiles_in_rect(visible):
        box = _blit(canvas, tile.image, col * store.tile_size, row * store.tile_size, visible, state)
        if box is not None and tile.is_enhanced:
            glow_boxes.append(box)

    if placeholder is not None:
        rect, image = placeholder
        _blit(canvas, image, rect.x, rect.y, visible, state)
    elif show_enhanced_glow and glow_boxes:
        overlay = Image.new("RGBA", viewport_size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(overlay)
        for x0, y0, x1, y1 in glow_boxes:
            draw.rectangle((x0, y0, x1 - 1, y1 - 1), outline=GLOW_COLOR, width=GLOW_WIDTH)
        canvas = Image.alpha_composite(canvas, overlay)

    return canvas
