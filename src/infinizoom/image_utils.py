import base64
import io
import logging
from pathlib import Path
from typing import Union

import numpy as np
from PIL import Image

from infinizoom.constants import DATA_URL_PREFIX, FILE_URI_PREFIX
from infinizoom.schemas import Rect

logger = logging.getLogger(__name__)

ImageSource = Union[Image.Image, bytes, str, Path]


def png_to_base64url(image: Image.Image, format: str = "PNG") -> str:
    format = format.strip(" .")
    buffered = io.BytesIO()
    image.save(buffered, format=format.upper())
    image_base64 = base64.b64encode(buffered.getvalue()).decode('utf-8')
    return f"{DATA_URL_PREFIX}{format.lower()};base64,{image_base64}"


def base64url_to_png(base64url: str) -> Image.Image:
    """
    Convert a base64 data URL (or bare base64 string) to a decoded image.

    Args:
        base64url: The base64 string representing the image.

    Returns:
        PIL.Image: The fully decoded image.
    """
    if base64url.startswith(DATA_URL_PREFIX):
        base64url = base64url.split(",", 1)[1]

    image_data = base64.b64decode(base64url)
    image = Image.open(io.BytesIO(image_data))
    image.load()
    return image


def image_to_bytes(image: Image.Image, format: str = "PNG") -> bytes:
    buffered = io.BytesIO()
    image.save(buffered, format=format)
    return buffered.getvalue()


def load_image(source: ImageSource) -> Image.Image:
    """Decode *source* into a fully loaded RGBA image.

    Accepts a PIL image, encoded bytes, a data URL, a file:// URI or a path.
    Decoding is forced with ``Image.load()`` so callers never hold a lazily
    decoded raster.

    Raises:
        ValueError: If the source cannot be decoded
    """
    try:
        if isinstance(source, Image.Image):
            image = source
        elif isinstance(source, bytes):
            image = Image.open(io.BytesIO(source))
        elif isinstance(source, str) and source.startswith(DATA_URL_PREFIX):
            image = base64url_to_png(source)
        else:
            path = str(source)
            if path.startswith(FILE_URI_PREFIX):
                path = path[len(FILE_URI_PREFIX):]
            image = Image.open(path)
        image.load()
    except (OSError, ValueError) as e:
        raise ValueError(f"Could not decode image: {e}") from e

    if image.mode != "RGBA":
        image = image.convert("RGBA")
    return image


def blank_image(width: int, height: int) -> Image.Image:
    """Fully transparent RGBA raster."""
    return Image.new("RGBA", (max(0, int(width)), max(0, int(height))), (0, 0, 0, 0))


def crop_image(image: Image.Image, rect: Rect, out_width: int, out_height: int) -> Image.Image:
    """Crop *rect* out of *image* and scale it to ``out_width`` x ``out_height``.

    Parts of *rect* that fall outside the source are left transparent.
    """
    left, upper, right, lower = rect.as_box()
    if right <= left or lower <= upper:
        raise ValueError(f"Cannot crop empty rect {rect}")

    if image.mode != "RGBA":
        image = image.convert("RGBA")

    # PIL pads out-of-bounds crops with zeros, which is transparent for RGBA
    cropped = image.crop((left, upper, right, lower))
    if cropped.size != (out_width, out_height):
        cropped = cropped.resize((out_width, out_height), Image.Resampling.LANCZOS)
    return cropped


def images_equal(a: Image.Image, b: Image.Image) -> bool:
    """Pixel-exact comparison."""
    if a.size != b.size:
        return False
    return np.array_equal(np.asarray(a.convert("RGBA")), np.asarray(b.convert("RGBA")))

