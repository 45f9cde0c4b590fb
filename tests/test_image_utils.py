#!/usr/bin/env python3
"""
Tests for image decoding and cropping helpers.
"""

import pytest
from PIL import Image

from infinizoom.image_utils import (
    blank_image,
    crop_image,
    image_to_bytes,
    images_equal,
    load_image,
    png_to_base64url,
)
from infinizoom.schemas import Rect

from .mocks import gradient_image, solid_image


class TestLoadImage:
    def test_sources(self, tmp_path):
        image = gradient_image(40, 30)
        path = tmp_path / "capture.png"
        image.save(path)

        for source in (image, image_to_bytes(image), png_to_base64url(image), path, str(path), f"file://{path}"):
            loaded = load_image(source)
            assert loaded.mode == "RGBA"
            assert images_equal(loaded, image)

    def test_converts_to_rgba(self):
        loaded = load_image(Image.new("RGB", (4, 4), (1, 2, 3)))
        assert loaded.mode == "RGBA"
        assert loaded.getpixel((0, 0)) == (1, 2, 3, 255)

    @pytest.mark.parametrize("source", [b"definitely not a png", "data:image/png;base64,AAAA"])
    def test_undecodable(self, source):
        with pytest.raises(ValueError):
            load_image(source)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValueError):
            load_image(tmp_path / "missing.png")


class TestCropImage:
    def test_crop_inside(self):
        image = gradient_image(100, 100)
        cropped = crop_image(image, Rect(10, 20, 30, 40), 30, 40)
        assert images_equal(cropped, image.crop((10, 20, 40, 60)))

    def test_out_of_bounds_is_transparent(self):
        cropped = crop_image(solid_image(50, 50), Rect(25, 25, 50, 50), 50, 50)
        assert cropped.getpixel((10, 10))[3] == 255
        assert cropped.getpixel((40, 40))[3] == 0

    def test_scales_to_output_size(self):
        assert crop_image(solid_image(50, 50), Rect(0, 0, 50, 50), 20, 10).size == (20, 10)

    def test_empty_rect(self):
        with pytest.raises(ValueError):
            crop_image(solid_image(50, 50), Rect(10, 10, 0, 5), 1, 1)


def test_blank_image():
    image = blank_image(7, 3)
    assert image.size == (7, 3)
    assert image.getpixel((0, 0)) == (0, 0, 0, 0)


def test_images_equal_checks_size():
    assert not images_equal(solid_image(4, 4), solid_image(4, 5))
