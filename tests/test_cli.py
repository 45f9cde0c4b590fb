#!/usr/bin/env python3
"""
Tests for the command line entry point.
"""

import pytest
from PIL import Image

from infinizoom.cli import create_parser, gps_from, main
from infinizoom.schemas import GPSCoordinates

from .mocks import gradient_image


@pytest.fixture
def images(tmp_path):
    base = tmp_path / "base.png"
    new = tmp_path / "new.png"
    gradient_image(600, 300).save(base)
    gradient_image(600, 300).save(new)
    return base, new


def run(argv, tmp_path):
    """Run main() with a config file that does not exist, so only defaults and flags apply."""
    with pytest.raises(SystemExit) as exc_info:
        main([*argv, "-c", str(tmp_path / "absent.toml")])
    return exc_info.value.code


class TestDecide:
    def test_untagged_captures_keep_world(self, images, tmp_path, capsys):
        base, new = images
        code = run(["decide", str(base), str(new), "--comparator-strategy", "mock"], tmp_path)

        assert code == 0
        assert capsys.readouterr().out.strip() == "SAME_WORLD"

    def test_distant_captures_start_new_world(self, images, tmp_path, capsys):
        base, new = images
        code = run([
            "decide", str(base), str(new),
            "--base-lat", "43.6532", "--base-lon", "-79.3832",
            "--new-lat", "43.6632", "--new-lon", "-79.3832",
        ], tmp_path)

        assert code == 0
        assert capsys.readouterr().out.strip() == "NEW_WORLD"

    def test_placeholder_uses_comparator(self, images, tmp_path, capsys):
        base, _ = images
        other = tmp_path / "other.png"
        Image.new("RGB", (600, 300), (20, 20, 220)).save(other)
        Image.new("RGB", (600, 300), (220, 20, 20)).save(base)

        code = run(["decide", str(base), str(other), "--placeholder"], tmp_path)

        assert code == 0
        assert capsys.readouterr().out.strip() == "NEW_WORLD"

    def test_unreadable_image(self, tmp_path):
        assert run(["decide", str(tmp_path / "a.png"), str(tmp_path / "b.png")], tmp_path) == 1


class TestSnapshot:
    def test_writes_png(self, images, tmp_path, capsys):
        base, _ = images
        out = tmp_path / "out" / "view.png"

        code = run(["snapshot", str(base), str(out), "--viewport-width", "320", "--viewport-height", "200"],
                   tmp_path)

        assert code == 0
        assert capsys.readouterr().out.strip() == str(out)
        with Image.open(out) as image:
            assert image.size == (320, 200)

    def test_enhance_before_snapshot(self, images, tmp_path):
        base, _ = images
        out = tmp_path / "enhanced.png"

        code = run(["snapshot", str(base), str(out), "--zoom", "2", "--enhance",
                    "--viewport-width", "320", "--viewport-height", "200",
                    "--tiles-tile-size", "128"], tmp_path)

        assert code == 0
        assert out.exists()

    def test_invalid_config_exits(self, images, tmp_path):
        base, _ = images
        assert run(["snapshot", str(base), str(tmp_path / "x.png"), "--tiles-tile-size", "4"], tmp_path) == 1


class TestParser:
    def test_requires_command(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args([])

    def test_view_gps(self):
        args = create_parser().parse_args(["view", "pano.jpg", "--lat", "1.5", "--lon", "2.5"])
        assert gps_from(args.lat, args.lon) == GPSCoordinates(1.5, 2.5)

    def test_gps_needs_both_coordinates(self):
        assert gps_from(1.0, None) is None
