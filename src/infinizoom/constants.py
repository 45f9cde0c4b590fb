"""
Default values and shared constants for Infinizoom.
"""
import os
from pathlib import Path

# Project structure constants
# Find the project root by going up from src/infinizoom
PROJECT_ROOT = (Path(__file__).parent.parent.parent).absolute()

DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.toml"
DATA_DIR = PROJECT_ROOT / "data"
SNAPSHOT_DIR = DATA_DIR / "snapshots"

# World model
TILE_SIZE = 512  # px, edge length of a full tile

# Viewport
MIN_ZOOM = 0.1
MAX_ZOOM = 50.0
WHEEL_ZOOM_INTENSITY = 0.1  # zoom factor per wheel tick is e^(+-intensity)
BUTTON_ZOOM_STEP = 1.25
ENHANCE_MIN_ZOOM = 1.01  # only zoom levels above this may request enhancement

# Enhancement pipeline
ENHANCE_DEBOUNCE_SECONDS = 1.5
ENHANCE_PROMPT = (
    "Enhance this image, increasing its resolution and adding fine details. "
    "The enhancement must be consistent with the original image's content, "
    "style, and lighting. Do not add new objects."
)
ENHANCE_INSTRUCTIONS = """
**CRITICAL INSTRUCTIONS:**
1.  **Strict Consistency:** The enhanced image MUST be a plausible, higher-resolution version of the original. It must perfectly match the shapes, colors, textures, and lighting.
2.  **No New Objects:** DO NOT invent or add new objects that are not clearly suggested by the low-resolution pixels. The goal is enhancement, not hallucination.
"""
COMPARE_PROMPT = (
    "Analyze these two images. Does the second image appear to be from the same "
    "real-world location or scene as the first image? "
    'Respond ONLY with a JSON object: {"isSameScene": boolean}'
)
DEFAULT_GENERATOR_TIMEOUT = 60  # seconds

# Gemini REST endpoint (generateContent)
GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"
GEMINI_ENHANCE_MODEL = "gemini-2.5-flash-image-preview"
GEMINI_COMPARE_MODEL = "gemini-2.5-flash"

# World continuity
GPS_DISTANCE_THRESHOLD_METERS = 100.0
EARTH_RADIUS_METERS = 6_371_000.0

# Location updates
DEFAULT_LOCATION_ADDRESS = "tcp://localhost:5580"
DEFAULT_LOCATION_TOPIC = "location"

# URI and URL constants
FILE_URI_PREFIX = "file://"
DATA_URL_PREFIX = "data:image/"

# Log directory, overridable for deployments
LOG_DIR = Path(os.environ.get("INFINIZOOM_LOG_DIR", PROJECT_ROOT / "logs"))
