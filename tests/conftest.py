#!/usr/bin/env python3
"""
Configuration for pytest.

Tests that open a real window are skipped by default; run them with
``pytest --display``.
"""

import pytest


def pytest_addoption(parser):
    """Add the --display option to enable window-creating tests."""
    parser.addoption(
        "--display", action="store_true", default=False,
        help="Run tests that create real display windows"
    )


def pytest_collection_modifyitems(config, items):
    """Skip window-creating tests unless --display is given."""
    if config.getoption("--display"):
        return

    skip_display = pytest.mark.skip(reason="Test creates a real window. Use --display to run.")

    for item in items:
        if item.get_closest_marker('skip'):
            continue
        if 'test_display.py' in item.nodeid:
            item.add_marker(skip_display)
