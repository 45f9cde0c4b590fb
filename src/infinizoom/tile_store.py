#!/usr/bin/env python3
"""
Sparse tile storage for the panorama world.

The baseline capture is cut into a grid of ``tile_size`` square tiles keyed by
integer (column, row). Edge tiles are clipped to the world bounds. Columns
wrap around horizontally so the panorama can be panned forever; rows do not.

All writes are copy-on-write: a new mapping is built and swapped in with a
single assignment, so a reader holding :meth:`TileStore.snapshot` never sees
a partially merged region.
"""

import logging
import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from PIL import Image

from infinizoom.constants import TILE_SIZE
from infinizoom.image_utils import blank_image, crop_image
from infinizoom.schemas import Rect

logger = logging.getLogger(__name__)

TileKey = Tuple[int, int]  # (column, row)
Cropper = Callable[[Image.Image, Rect, int, int], Image.Image]


@dataclass(frozen=True)
class Tile:
    """One raster cell of the world grid."""

    col: int
    row: int
    image: Image.Image
    is_enhanced: bool = False

    @property
    def key(self) -> TileKey:
        return (self.col, self.row)

    @property
    def size(self) -> Tuple[int, int]:
        return self.image.size


def tile_bounds(width: int, height: int, tile_size: int) -> List[Tuple[TileKey, Rect]]:
    """Partition ``[0,width) x [0,height)`` into tile rectangles, row-major.

    Edge tiles are ``min(tile_size, remaining)`` wide/tall.
    """
    if width <= 0 or height <= 0:
        return []

    num_cols = math.ceil(width / tile_size)
    num_rows = math.ceil(height / tile_size)
    bounds = []
    for row in range(num_rows):
        for col in range(num_cols):
            x = col * tile_size
            y = row * tile_size
            bounds.append(((col, row), Rect(
                x=x,
                y=y,
                w=min(tile_size, width - x),
                h=min(tile_size, height - y),
            )))
    return bounds


class TileStore:
    """Owns every tile raster of the current world and is the only writer of tile state."""

    def __init__(self, tile_size: int = TILE_SIZE, cropper: Cropper = crop_image):
        self.tile_size = tile_size
        self._cropper = cropper
        self._tiles: Mapping[TileKey, Tile] = MappingProxyType({})
        self.width = 0
        self.height = 0
        # bumped whenever the world is replaced, so in-flight work can detect staleness
        self.generation = 0
        # bumped on every write, used by renderers to know when to redraw
        self.revision = 0

    # ── Geometry ──────────────────────────────────────────────────────

    @property
    def num_cols(self) -> int:
        return math.ceil(self.width / self.tile_size) if self.width > 0 else 0

    @property
    def num_rows(self) -> int:
        return math.ceil(self.height / self.tile_size) if self.height > 0 else 0

    @property
    def is_empty(self) -> bool:
        """True when no world is loaded."""
        return self.width == 0 or self.height == 0 or not self._tiles

    def __len__(self) -> int:
        return len(self._tiles)

    def __contains__(self, key: TileKey) -> bool:
        return key in self._tiles

    def wrap_col(self, col: int) -> int:
        n = self.num_cols
        return ((col % n) + n) % n if n else col

    def expected_size(self, col: int, row: int) -> Tuple[int, int]:
        """Clipped size of the tile at (col, row) of the current world."""
        x = col * self.tile_size
        y = row * self.tile_size
        return min(self.tile_size, self.width - x), min(self.tile_size, self.height - y)

    def snapshot(self) -> Mapping[TileKey, Tile]:
        """Read-only view of the current tile set; later writes do not affect it."""
        return self._tiles

    # ── Writes ────────────────────────────────────────────────────────

    def tileize(self, image: Image.Image) -> Mapping[TileKey, Tile]:
        """Replace the world with tiles cut from *image*.

        A zero-area image leaves an empty store with a 0x0 world. Tiles that
        fail to crop are logged and skipped; the rest of the world still loads.
        """
        width, height = image.size
        new_tiles: Dict[TileKey, Tile] = {}

        for (col, row), rect in tile_bounds(width, height, self.tile_size):
            try:
                tile_image = self._cropper(image, rect, int(rect.w), int(rect.h))
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping tile {col}:{row} during tileize: {e}")
                continue
            new_tiles[(col, row)] = Tile(col=col, row=row, image=tile_image)

        if width <= 0 or height <= 0:
            width = height = 0

        self._tiles = MappingProxyType(new_tiles)
        self.width = width
        self.height = height
        self.generation += 1
        self.revision += 1

        logger.info(
            f"Tileized {width}x{height} world into {len(new_tiles)} tiles "
            f"({self.num_cols}x{self.num_rows}, tile_size={self.tile_size})"
        )
        return self._tiles

    def clear(self) -> None:
        """Unload the world."""
        self._tiles = MappingProxyType({})
        self.width = 0
        self.height = 0
        self.generation += 1
        self.revision += 1

    def region_keys(self, world_rect: Rect) -> Dict[TileKey, TileKey]:
        """Map wrapped tile keys to the unwrapped keys covering *world_rect*.

        The rect is rounded outward to tile boundaries. Rows outside the world
        are dropped. When the rect is wider than the world, the first unwrapped
        column seen for a wrapped column wins.
        """
        if self.num_cols == 0 or self.num_rows == 0:
            return {}

        start_col, start_row, end_col, end_row = world_rect.tile_range(self.tile_size)
        keys: Dict[TileKey, TileKey] = {}
        for row in range(max(0, start_row), min(self.num_rows - 1, end_row) + 1):
            for col in range(start_col, end_col + 1):
                keys.setdefault((self.wrap_col(col), row), (col, row))
        return keys

    def merge_region(self, world_rect: Rect, tiles: Mapping[TileKey, Tile]) -> int:
        """Replace stored tiles inside *world_rect* with *tiles*, marking them enhanced.

        Keys in *tiles* are wrapped (stored) keys.

        Returns:
            Number of tiles replaced

        Raises:
            ValueError: If a tile lies outside the rounded region or has the wrong size
        """
        allowed = self.region_keys(world_rect)
        for key, tile in tiles.items():
            if key not in allowed:
                raise ValueError(f"Tile {key} is outside merge region {world_rect}")
            expected = self.expected_size(*key)
            if tile.size != expected:
                raise ValueError(f"Tile {key} has size {tile.size}, expected {expected}")

        if not tiles:
            return 0

        merged = dict(self._tiles)
        for (col, row), tile in tiles.items():
            merged[(col, row)] = Tile(col=col, row=row, image=tile.image, is_enhanced=True)

        self._tiles = MappingProxyType(merged)
        self.revision += 1
        logger.debug(f"Merged {len(tiles)} enhanced tiles into region {world_rect}")
        return len(tiles)

    # ── Reads ─────────────────────────────────────────────────────────

    def lookup(self, col: int, row: int) -> Optional[Tile]:
        """Tile at (col, row) with horizontal wraparound, or None."""
        if self.num_cols == 0 or row < 0 or row >= self.num_rows:
            return None
        return self._tiles.get((self.wrap_col(col), row))

    def tiles_in_rect(self, world_rect: Rect) -> Iterator[Tuple[int, int, Tile]]:
        """Yield (unwrapped_col, row, tile) for every stored tile overlapping *world_rect*."""
        tiles = self._tiles
        if self.num_cols == 0:
            return
        start_col, start_row, end_col, end_row = world_rect.tile_range(self.tile_size)
        for row in range(max(0, start_row), min(self.num_rows - 1, end_row) + 1):
            for col in range(start_col, end_col + 1):
                tile = tiles.get((self.wrap_col(col), row))
                if tile is not None:
                    yield col, row, tile

    def stitch(self, world_rect: Rect) -> Image.Image:
        """Composite every tile overlapping *world_rect* into one raster.

        *world_rect* must already be aligned to tile boundaries. Missing tiles
        leave transparent gaps.
        """
        canvas = blank_image(world_rect.w, world_rect.h)
        for col, row, tile in self.tiles_in_rect(world_rect):
            offset = (int(col * self.tile_size - world_rect.x), int(row * self.tile_size - world_rect.y))
            canvas.paste(tile.image, offset)
        return canvas

    def split_region(self, image: Image.Image, world_rect: Rect) -> Dict[TileKey, Tile]:
        """Cut a raster covering the tile-aligned *world_rect* back into world tiles.

        Columns are wrapped and edge tiles clipped to the world. A tile that
        fails to crop is logged and left out, so its previous content stays.
        """
        tiles: Dict[TileKey, Tile] = {}
        for (col, row), (ucol, _) in self.region_keys(world_rect).items():
            w, h = self.expected_size(col, row)
            crop_rect = Rect(
                x=ucol * self.tile_size - world_rect.x,
                y=row * self.tile_size - world_rect.y,
                w=w,
                h=h,
            )
            try:
                tile_image = self._cropper(image, crop_rect, w, h)
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping tile {col}:{row} during retile: {e}")
                continue
            tiles[(col, row)] = Tile(col=col, row=row, image=tile_image, is_enhanced=True)
        return tiles
