"""
Core data types shared across the world model, viewport and enhancement pipeline.
"""
import math
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from PIL import Image


class LocationStatus(str, Enum):
    """State of the geolocation feed."""
    IDLE = "IDLE"
    REQUESTING = "REQUESTING"
    ACQUIRED = "ACQUIRED"
    UNAVAILABLE = "UNAVAILABLE"


class CaptureKind(str, Enum):
    """Role of a capture within its world."""
    BASELINE = "BASELINE"  # defines the world and its tiles
    INSERT = "INSERT"      # recorded against the world, not yet integrated into tiles


class WorldDecision(str, Enum):
    """Outcome of the world continuity check for a new capture."""
    SAME_WORLD = "SAME_WORLD"
    NEW_WORLD = "NEW_WORLD"


class EnhancementPhase(str, Enum):
    """Phases of the region enhancement state machine."""
    IDLE = "IDLE"
    DEBOUNCING = "DEBOUNCING"
    STITCHING = "STITCHING"
    REQUESTING = "REQUESTING"
    RETILING = "RETILING"
    CANCELLED = "CANCELLED"

    @property
    def busy(self) -> bool:
        return self in (EnhancementPhase.STITCHING, EnhancementPhase.REQUESTING, EnhancementPhase.RETILING)


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle, in screen or world pixels depending on context."""

    x: float
    y: float
    w: float
    h: float

    @property
    def right(self) -> float:
        return self.x + self.w

    @property
    def bottom(self) -> float:
        return self.y + self.h

    def tile_range(self, tile_size: int) -> Tuple[int, int, int, int]:
        """Inclusive (start_col, start_row, end_col, end_row) of tiles touched by this rect.

        Columns are unwrapped; callers wrap them against the world width.
        """
        start_col = math.floor(self.x / tile_size)
        start_row = math.floor(self.y / tile_size)
        end_col = max(start_col, math.ceil(self.right / tile_size) - 1)
        end_row = max(start_row, math.ceil(self.bottom / tile_size) - 1)
        return start_col, start_row, end_col, end_row

    def expand_to_tiles(self, tile_size: int) -> "Rect":
        """Grow outward to the enclosing tile boundaries."""
        start_col, start_row, end_col, end_row = self.tile_range(tile_size)
        return Rect(
            x=start_col * tile_size,
            y=start_row * tile_size,
            w=(end_col - start_col + 1) * tile_size,
            h=(end_row - start_row + 1) * tile_size,
        )

    def as_box(self) -> Tuple[int, int, int, int]:
        """(left, upper, right, lower) integer box as used by PIL."""
        return (round(self.x), round(self.y), round(self.right), round(self.bottom))


@dataclass(frozen=True)
class GPSCoordinates:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Camera:
    """Pose placeholder recorded with every capture; not used for projection."""
    position: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    rotation: Tuple[float, float, float] = (0.0, 0.0, 0.0)  # Euler angles
    fov: float = 90.0  # vertical field of view


def new_capture_id() -> str:
    return f"capture-{uuid.uuid4().hex[:12]}"


@dataclass
class Capture:
    """One captured image and the metadata recorded with it."""

    image: Image.Image
    kind: CaptureKind = CaptureKind.BASELINE
    id: str = field(default_factory=new_capture_id)
    camera: Camera = field(default_factory=Camera)
    gps: Optional[GPSCoordinates] = None
    location_status: Optional[LocationStatus] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def size(self) -> Tuple[int, int]:
        return self.image.size


@dataclass(frozen=True)
class PathPoint:
    """One entry of the append-only location path."""
    coordinates: Optional[GPSCoordinates]
    status: LocationStatus
    timestamp: float = field(default_factory=time.time)
