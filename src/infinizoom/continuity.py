"""
Decides whether a new capture belongs to the current world.

Rules, first match wins:

1. Both captures are geo-tagged: a new world when they are further apart than
   the distance threshold, otherwise the same world.
2. Only the new capture is geo-tagged and the current world is a placeholder:
   a new world.
3. The current world is a placeholder: ask the scene comparator. Only a
   definite "different" starts a new world; comparator failures keep it.
4. Otherwise the same world.
"""

import logging
import math
from typing import Optional

from infinizoom.constants import EARTH_RADIUS_METERS, GPS_DISTANCE_THRESHOLD_METERS
from infinizoom.enhancers.comparator import SceneComparator
from infinizoom.schemas import Capture, GPSCoordinates, WorldDecision

logger = logging.getLogger(__name__)


def haversine_distance(a: GPSCoordinates, b: GPSCoordinates, radius: float = EARTH_RADIUS_METERS) -> float:
    """Great-circle distance between two coordinates in meters."""
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    delta_phi = math.radians(b.latitude - a.latitude)
    delta_lambda = math.radians(b.longitude - a.longitude)

    h = (math.sin(delta_phi / 2) ** 2
         + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2)
    # rounding can push h a hair past 1 for antipodal points
    h = min(1.0, h)
    return radius * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


class WorldContinuityResolver:
    def __init__(self, comparator: Optional[SceneComparator] = None,
                 threshold_meters: float = GPS_DISTANCE_THRESHOLD_METERS):
        self.comparator = comparator
        self.threshold_meters = threshold_meters

    async def decide(self, new_capture: Capture, baseline: Capture, is_placeholder_world: bool) -> WorldDecision:
        if new_capture.gps is not None and baseline.gps is not None:
            distance = haversine_distance(new_capture.gps, baseline.gps)
            decision = WorldDecision.NEW_WORLD if distance > self.threshold_meters else WorldDecision.SAME_WORLD
            logger.info(f"Capture {new_capture.id} is {distance:.1f}m from baseline: {decision.value}")
            return decision

        if new_capture.gps is not None and is_placeholder_world:
            logger.info(f"Geo-tagged capture {new_capture.id} replaces the placeholder world")
            return WorldDecision.NEW_WORLD

        if is_placeholder_world:
            if self.comparator is None:
                logger.warning("No scene comparator configured, keeping the placeholder world")
                return WorldDecision.SAME_WORLD
            same = await self.comparator.compare(baseline.image, new_capture.image)
            decision = WorldDecision.SAME_WORLD if same else WorldDecision.NEW_WORLD
            logger.info(f"Scene comparison for capture {new_capture.id}: {decision.value}")
            return decision

        return WorldDecision.SAME_WORLD
