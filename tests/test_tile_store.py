#!/usr/bin/env python3
"""
Unit tests for TileStore.

Covers tileization geometry, wraparound lookup, region merges and the
stitch/split round trip used by the enhancement pipeline.
"""

import math

import numpy as np
import pytest
from PIL import Image

from infinizoom.image_utils import crop_image, images_equal
from infinizoom.schemas import Rect
from infinizoom.tile_store import Tile, TileStore, tile_bounds

from .mocks import gradient_image, solid_image


class TestTileize:
    """Partitioning a capture into tiles."""

    @pytest.mark.parametrize("width,height,tile_size", [
        (1000, 700, 256),
        (512, 512, 512),
        (513, 1, 512),
        (1, 1, 512),
        (2048, 1024, 512),
        (300, 900, 128),
    ])
    def test_tiles_partition_world_exactly(self, width, height, tile_size):
        """Tiles cover every pixel of the world exactly once."""
        store = TileStore(tile_size=tile_size)
        tiles = store.tileize(solid_image(width, height))

        assert len(tiles) == math.ceil(width / tile_size) * math.ceil(height / tile_size)

        coverage = np.zeros((height, width), dtype=np.int32)
        for (col, row), tile in tiles.items():
            x, y = col * tile_size, row * tile_size
            w, h = tile.size
            assert w == min(tile_size, width - x)
            assert h == min(tile_size, height - y)
            coverage[y:y + h, x:x + w] += 1
        assert (coverage == 1).all()

    def test_tile_content_matches_source(self):
        image = gradient_image(600, 300)
        store = TileStore(tile_size=256)
        store.tileize(image)

        tile = store.lookup(2, 1)
        assert tile.size == (88, 44)
        assert images_equal(tile.image, image.crop((512, 256, 600, 300)))

    def test_tileize_is_idempotent(self):
        image = gradient_image(700, 500)
        store = TileStore(tile_size=256)
        first = dict(store.tileize(image))
        second = dict(store.tileize(image))

        assert set(first) == set(second)
        for key in first:
            assert images_equal(first[key].image, second[key].image)

    def test_zero_area_image_leaves_empty_store(self):
        store = TileStore(tile_size=256)
        store.tileize(solid_image(300, 300))
        store.tileize(Image.new("RGBA", (0, 0)))

        assert store.is_empty
        assert (store.width, store.height) == (0, 0)
        assert store.lookup(0, 0) is None

    def test_generation_bumps_on_every_world(self):
        store = TileStore(tile_size=256)
        start = store.generation
        store.tileize(solid_image(10, 10))
        store.clear()
        assert store.generation == start + 2

    def test_failed_crop_skips_only_that_tile(self):
        def flaky_cropper(image, rect, w, h):
            if rect.x == 256 and rect.y == 0:
                raise ValueError("corrupt block")
            return crop_image(image, rect, w, h)

        store = TileStore(tile_size=256, cropper=flaky_cropper)
        store.tileize(solid_image(768, 256))

        assert (1, 0) not in store
        assert (0, 0) in store
        assert (2, 0) in store

    def test_tile_bounds_are_row_major(self):
        keys = [key for key, _ in tile_bounds(600, 300, 256)]
        assert keys == [(0, 0), (1, 0), (2, 0), (0, 1), (1, 1), (2, 1)]


class TestLookup:
    """Horizontal wraparound and vertical bounds."""

    def test_columns_wrap(self):
        store = TileStore(tile_size=256)
        store.tileize(gradient_image(1000, 600))
        n = store.num_cols

        for row in range(store.num_rows):
            assert store.lookup(n, row) is store.lookup(0, row)
            assert store.lookup(-1, row) is store.lookup(n - 1, row)
            assert store.lookup(3 * n + 2, row) is store.lookup(2, row)

    def test_rows_do_not_wrap(self):
        store = TileStore(tile_size=256)
        store.tileize(gradient_image(1000, 600))

        assert store.lookup(0, -1) is None
        assert store.lookup(0, store.num_rows) is None


class TestMergeRegion:
    """Replacing tiles with enhanced ones."""

    def _store(self):
        store = TileStore(tile_size=256)
        store.tileize(gradient_image(1000, 600))
        return store

    def test_merge_marks_tiles_enhanced(self):
        store = self._store()
        region = Rect(0, 0, 512, 256)
        replacement = {
            (0, 0): Tile(0, 0, solid_image(256, 256)),
            (1, 0): Tile(1, 0, solid_image(256, 256)),
        }

        merged = store.merge_region(region, replacement)

        assert merged == 2
        assert store.lookup(0, 0).is_enhanced
        assert store.lookup(1, 0).is_enhanced
        assert not store.lookup(2, 0).is_enhanced
        assert images_equal(store.lookup(0, 0).image, solid_image(256, 256))

    def test_region_is_rounded_to_tile_boundaries(self):
        store = self._store()
        # a sliver inside tile (1, 1) still allows replacing the whole tile
        store.merge_region(Rect(300, 300, 10, 10), {(1, 1): Tile(1, 1, solid_image(256, 256))})
        assert store.lookup(1, 1).is_enhanced

    def test_tiles_outside_region_are_rejected(self):
        store = self._store()
        revision = store.revision

        with pytest.raises(ValueError):
            store.merge_region(Rect(0, 0, 256, 256), {(2, 0): Tile(2, 0, solid_image(256, 256))})
        assert store.revision == revision
        assert not store.lookup(2, 0).is_enhanced

    def test_wrong_size_is_rejected(self):
        store = self._store()
        with pytest.raises(ValueError):
            store.merge_region(Rect(768, 0, 256, 256), {(3, 0): Tile(3, 0, solid_image(256, 256))})

    def test_merge_across_wrap_boundary(self):
        store = self._store()
        # unwrapped column 4 is stored column 0
        region = Rect(3 * 256, 0, 512, 256)
        store.merge_region(region, {
            (3, 0): Tile(3, 0, solid_image(232, 256)),
            (0, 0): Tile(0, 0, solid_image(256, 256)),
        })
        assert store.lookup(3, 0).is_enhanced
        assert store.lookup(4, 0).is_enhanced

    def test_readers_keep_their_snapshot(self):
        store = self._store()
        before = store.snapshot()
        original = before[(0, 0)]

        store.merge_region(Rect(0, 0, 256, 256), {(0, 0): Tile(0, 0, solid_image(256, 256))})

        assert before[(0, 0)] is original
        assert not before[(0, 0)].is_enhanced
        assert store.snapshot()[(0, 0)].is_enhanced


class TestStitchAndSplit:
    """Compositing a region and cutting it back into tiles."""

    def test_stitch_matches_source(self):
        image = gradient_image(1000, 600)
        store = TileStore(tile_size=256)
        store.tileize(image)

        stitched = store.stitch(Rect(256, 0, 512, 512))
        assert stitched.size == (512, 512)
        assert images_equal(stitched, image.crop((256, 0, 768, 512)))

    def test_stitch_wraps_and_leaves_gaps_transparent(self):
        image = gradient_image(600, 300)
        store = TileStore(tile_size=256)
        store.tileize(image)

        # columns 3..4 wrap to 0..1; row 1 is clipped to 44px, row 2 is outside the world
        stitched = store.stitch(Rect(768, 256, 512, 512))
        assert images_equal(stitched.crop((0, 0, 256, 44)), image.crop((0, 256, 256, 300)))
        assert stitched.getpixel((10, 100))[3] == 0
        assert stitched.getpixel((10, 300))[3] == 0

    def test_split_region_round_trips(self):
        image = gradient_image(1000, 600)
        store = TileStore(tile_size=256)
        store.tileize(image)
        region = Rect(512, 256, 768, 512)  # columns 2..4, wraps past the last column

        tiles = store.split_region(store.stitch(region), region)

        assert set(tiles) == {(2, 1), (3, 1), (0, 1), (2, 2), (3, 2), (0, 2)}
        for key, tile in tiles.items():
            assert tile.size == store.expected_size(*key)
            assert images_equal(tile.image, store.lookup(*key).image)
