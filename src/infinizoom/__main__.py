#!/usr/bin/env python3
"""
Main entry point, allows running with:
    python -m infinizoom view path/to/panorama.jpg
"""

from infinizoom.cli import main


if __name__ == "__main__":
    main()
