#!/usr/bin/env python3
"""
One viewing session: the current world, its captures and the components around it.

New captures go through the continuity check. A new world rebuilds the tile
store from the capture and resets the view; a capture of the same world is
recorded as an INSERT and does not touch the tiles.
"""

import asyncio
import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import aiohttp
from PIL import Image

from infinizoom.config import InfinizoomConfig
from infinizoom.continuity import WorldContinuityResolver
from infinizoom.enhancers import ImageEnhancer, SceneComparator, create_comparator, create_enhancer
from infinizoom.image_utils import ImageSource, load_image
from infinizoom.location import GeoLocationSource, LocationTracker
from infinizoom.orchestrator import EnhancementJob, EnhancementOrchestrator
from infinizoom.renderer import render_viewport
from infinizoom.schemas import Camera, Capture, CaptureKind, GPSCoordinates, LocationStatus, WorldDecision
from infinizoom.tile_store import TileStore
from infinizoom.viewport import ViewportController

logger = logging.getLogger(__name__)

SNAPSHOT_FILENAME = "infinizoom-snapshot.png"


async def fetch_image(url: str, timeout: int = 30) -> Image.Image:
    """Download and fully decode an image."""
    async with aiohttp.ClientSession() as session:
        async with session.get(url, timeout=aiohttp.ClientTimeout(total=timeout)) as response:
            response.raise_for_status()
            data = await response.read()
    return await asyncio.to_thread(load_image, data)


class WorldSession:
    def __init__(
        self,
        config: Optional[InfinizoomConfig] = None,
        enhancer: Optional[ImageEnhancer] = None,
        comparator: Optional[SceneComparator] = None,
        location_source: Optional[GeoLocationSource] = None,
        on_change: Optional[Callable[[], None]] = None,
    ):
        self.config = config or InfinizoomConfig()
        self.on_change = on_change

        self.store = TileStore(tile_size=self.config.tiles.tile_size)
        self.viewport = ViewportController(self.config.viewport_size, config=self.config.viewport)
        self.enhancer = enhancer or create_enhancer(self.config.enhancer)
        self.comparator = comparator or create_comparator(self.config.comparator)
        self.resolver = WorldContinuityResolver(self.comparator, self.config.continuity.gps_threshold_meters)
        self.tracker = LocationTracker(location_source)
        self.orchestrator = EnhancementOrchestrator(
            self.store,
            self.viewport,
            self.enhancer,
            config=self.config.enhancement,
            on_placeholder=self._on_job_update,
            on_merged=self._on_job_update,
            on_flags=self._on_flags,
        )

        self.captures: List[Capture] = []
        self.is_placeholder_world = False
        self.flags: Dict[str, bool] = {}
        self._capture_lock = asyncio.Lock()
        self._disposed = False

    # ── Properties ────────────────────────────────────────────────────

    @property
    def baseline(self) -> Optional[Capture]:
        return self.captures[0] if self.captures else None

    @property
    def inserts(self) -> List[Capture]:
        """Captures recorded against the world; not yet integrated into its tiles."""
        return [c for c in self.captures if c.kind == CaptureKind.INSERT]

    @property
    def has_world(self) -> bool:
        return not self.store.is_empty

    def _changed(self) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change()
        except Exception as e:
            logger.error(f"Error in session change callback: {e}", exc_info=True)

    def _on_job_update(self, job: EnhancementJob) -> None:
        self._changed()

    def _on_flags(self, flags: Dict[str, bool]) -> None:
        self.flags.update(flags)

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def start(self) -> None:
        """Start location tracking and show the placeholder world, if one is configured."""
        self.tracker.start()
        if self.config.world.placeholder_image:
            await self.load_placeholder_world()

    async def load_placeholder_world(self, source: Optional[Union[str, Path]] = None) -> bool:
        """Load the placeholder world from a path or http(s) URL.

        Returns False (and leaves the session without a world) if it cannot be loaded.
        """
        source = source or self.config.world.placeholder_image
        if not source:
            return False

        try:
            if str(source).startswith(("http://", "https://")):
                image = await fetch_image(str(source))
            else:
                image = await asyncio.to_thread(load_image, Path(source))
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"Could not load placeholder world from {source}: {e}")
            return False

        self.start_new_world(Capture(image=image), is_placeholder=True)
        logger.info(f"Loaded placeholder world from {source}")
        return True

    async def reset(self) -> None:
        """Drop every capture and return to the placeholder world."""
        self.orchestrator.cancel()
        self.store.clear()
        self.captures = []
        self.is_placeholder_world = False
        self.flags = {}
        self.viewport.set_world_size(0, 0)
        logger.info("Session reset")
        if self.config.world.placeholder_image:
            await self.load_placeholder_world()
        self._changed()

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self.orchestrator.dispose()
        await self.tracker.dispose()
        await self.enhancer.stop()
        logger.debug("Session disposed")

    # ── Captures ──────────────────────────────────────────────────────

    def start_new_world(self, capture: Capture, is_placeholder: bool = False) -> None:
        """Replace the world with one built from *capture*."""
        self.orchestrator.cancel()
        capture.kind = CaptureKind.BASELINE
        self.store.tileize(capture.image)
        self.captures = [capture]
        self.is_placeholder_world = is_placeholder
        self.flags = {}
        self.viewport.set_world_size(self.store.width, self.store.height)
        if self.store.is_empty:
            logger.warning(f"Capture {capture.id} has no pixels, no world loaded")
        else:
            logger.info(f"New world from capture {capture.id} "
                        f"({self.store.width}x{self.store.height}, placeholder={is_placeholder})")
        self._changed()

    async def handle_new_capture(
        self,
        image: ImageSource,
        gps: Optional[GPSCoordinates] = None,
        camera: Optional[Camera] = None,
    ) -> WorldDecision:
        """Take in a capture, starting a new world or recording it against the current one.

        Location comes from the tracker unless *gps* is given explicitly.
        """
        decoded = await asyncio.to_thread(load_image, image)
        capture = Capture(image=decoded, camera=camera or Camera())
        self.tracker.tag_capture(capture)
        if gps is not None:
            capture.gps = gps
            capture.location_status = LocationStatus.ACQUIRED

        async with self._capture_lock:
            baseline = self.baseline
            if baseline is None or self.store.is_empty:
                self.start_new_world(capture)
                return WorldDecision.NEW_WORLD

            decision = await self.resolver.decide(capture, baseline, self.is_placeholder_world)
            if self.baseline is not baseline:
                # the world was replaced while the comparator ran
                logger.info(f"World changed during continuity check, capture {capture.id} starts a new world")
                decision = WorldDecision.NEW_WORLD

            if decision == WorldDecision.NEW_WORLD:
                self.start_new_world(capture)
            else:
                capture.kind = CaptureKind.INSERT
                self.captures.append(capture)
                logger.info(f"Recorded capture {capture.id} against the current world "
                            f"({len(self.inserts)} not yet integrated)")
                self._changed()
            return decision

    # ── Output ────────────────────────────────────────────────────────

    def render(self) -> Image.Image:
        placeholder = self.orchestrator.placeholder
        return render_viewport(
            self.store,
            self.viewport.state,
            self.viewport.viewport_size,
            placeholder=(placeholder.world_rect, placeholder.stitched_image) if placeholder else None,
            show_enhanced_glow=self.config.display.show_enhanced_glow,
        )

    def snapshot(self, path: Optional[Union[str, Path]] = None) -> Path:
        """Save the current view as a PNG and return its path."""
        if path is None:
            path = self.config.world.snapshot_dir / SNAPSHOT_FILENAME
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.render().convert("RGB").save(path, format="PNG")
        logger.info(f"Saved snapshot to {path}")
        return path

    async def enhance_now(self) -> Optional[EnhancementJob]:
        """Run one enhancement job for the current view and wait for it."""
        job = self.orchestrator.trigger()
        await self.orchestrator.wait_idle()
        return job
