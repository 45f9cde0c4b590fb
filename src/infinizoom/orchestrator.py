#!/usr/bin/env python3
"""
Debounced enhancement of the visible region.

Phases::

    IDLE -> DEBOUNCING -> STITCHING -> REQUESTING -> RETILING -> IDLE
                 \\-> CANCELLED -> IDLE

Zooming in or releasing a drag (re)starts the debounce timer; zooming out,
starting a drag or panning cancels it. When the timer fires, the visible world
rectangle is grown to tile boundaries, its tiles are stitched into one raster,
sent to the enhancer, and the result is cut back into tiles and merged into
the store.

At most one job is live. While it is busy, triggers are dropped rather than
queued. After every suspension point the job checks that it is still the live
job and that the world has not been replaced; stale results are discarded.
"""

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from PIL import Image

from infinizoom.config import EnhancementConfig
from infinizoom.enhancers.enhancer import ImageEnhancer
from infinizoom.image_utils import ImageSource, load_image
from infinizoom.schemas import EnhancementPhase, Rect
from infinizoom.tile_store import Tile, TileKey, TileStore
from infinizoom.viewport import ViewportController, ViewportEvent, ViewportState

logger = logging.getLogger(__name__)

_job_ids = itertools.count(1)


class DebounceTimer:
    """Restartable one-shot timer on the running event loop."""

    def __init__(self, delay: float, callback: Callable[[], None]):
        self.delay = delay
        self.callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def active(self) -> bool:
        return self._handle is not None

    def start(self) -> None:
        """Start the timer, replacing any pending countdown."""
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> bool:
        """Stop a pending countdown. Returns True if one was pending."""
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        return True

    def _fire(self) -> None:
        self._handle = None
        self.callback()


@dataclass(eq=False)
class EnhancementJob:
    """One stitch, enhance, retile and merge cycle over a tile-aligned world region."""

    world_rect: Rect
    screen_rect: Rect
    generation: int
    id: int = field(default_factory=lambda: next(_job_ids))
    phase: EnhancementPhase = EnhancementPhase.STITCHING
    stitched_image: Optional[Image.Image] = None
    result_image: Optional[Image.Image] = None
    flags: Dict[str, bool] = field(default_factory=dict)
    fallback: bool = False
    merged_tiles: int = 0


class EnhancementOrchestrator:
    """Owns the debounce timer and the single live :class:`EnhancementJob`."""

    def __init__(
        self,
        store: TileStore,
        viewport: ViewportController,
        enhancer: ImageEnhancer,
        config: Optional[EnhancementConfig] = None,
        on_placeholder: Optional[Callable[[EnhancementJob], None]] = None,
        on_merged: Optional[Callable[[EnhancementJob], None]] = None,
        on_flags: Optional[Callable[[Dict[str, bool]], None]] = None,
        on_phase: Optional[Callable[[EnhancementPhase], None]] = None,
    ):
        self.store = store
        self.viewport = viewport
        self.enhancer = enhancer
        self.config = config or EnhancementConfig()
        self.on_placeholder = on_placeholder
        self.on_merged = on_merged
        self.on_flags = on_flags
        self.on_phase = on_phase

        self.timer = DebounceTimer(self.config.debounce_seconds, self._on_timer)
        self.phase = EnhancementPhase.IDLE
        self._job: Optional[EnhancementJob] = None
        self._task: Optional[asyncio.Task] = None
        self._disposed = False

        viewport.add_listener(self.handle_viewport_event)
        viewport.is_busy = lambda: self.busy

    # ── State ─────────────────────────────────────────────────────────

    @property
    def job(self) -> Optional[EnhancementJob]:
        return self._job

    @property
    def busy(self) -> bool:
        return self._job is not None and self._job.phase.busy

    @property
    def placeholder(self) -> Optional[EnhancementJob]:
        """The live job once its stitched raster is ready, until it finishes."""
        if self._job is not None and self._job.stitched_image is not None:
            return self._job
        return None

    def _set_phase(self, phase: EnhancementPhase) -> None:
        if phase == self.phase:
            return
        logger.debug(f"Enhancement phase {self.phase.value} -> {phase.value}")
        self.phase = phase
        self._notify(self.on_phase, phase)

    def _notify(self, callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Error in enhancement callback {getattr(callback, '__name__', callback)}: {e}",
                         exc_info=True)

    # ── Triggers ──────────────────────────────────────────────────────

    def handle_viewport_event(self, event: ViewportEvent, state: ViewportState) -> None:
        """React to viewport interaction; registered as a viewport listener."""
        if self._disposed or not self.config.enabled or self.busy:
            return

        # Pointer moves during a drag only cancel; the release restarts the countdown
        if event in (ViewportEvent.ZOOM_IN, ViewportEvent.NUDGE, ViewportEvent.DRAG_END):
            self.timer.start()
            self._set_phase(EnhancementPhase.DEBOUNCING)
        else:
            self.cancel_pending()

    def cancel_pending(self) -> None:
        """Cancel the debounce countdown without starting a job."""
        if self.timer.cancel():
            self._set_phase(EnhancementPhase.CANCELLED)
            self._set_phase(EnhancementPhase.IDLE)

    def _on_timer(self) -> None:
        if self.trigger() is None and not self.busy:
            self._set_phase(EnhancementPhase.IDLE)

    def trigger(self) -> Optional[EnhancementJob]:
        """Start a job for the current view now.

        Returns None when the trigger was dropped: a job is already busy, no
        world is loaded, or the zoom level is not eligible.
        """
        if self._disposed:
            return None
        if self.busy:
            logger.debug("Enhancement already in progress, dropping trigger")
            return None
        if self.store.is_empty:
            logger.debug("No world loaded, nothing to enhance")
            return None
        if not self.viewport.can_enhance():
            logger.debug(f"Zoom {self.viewport.zoom:.2f} is not eligible for enhancement")
            return None

        self.timer.cancel()
        visible = self.viewport.visible_world_rect()
        job = EnhancementJob(
            world_rect=visible.expand_to_tiles(self.store.tile_size),
            screen_rect=self.viewport.screen_rect(),
            generation=self.store.generation,
        )
        self._job = job
        self._set_phase(EnhancementPhase.STITCHING)
        logger.info(f"Starting enhancement job {job.id} for world region {job.world_rect}")
        self._task = asyncio.create_task(self._run(job))
        return job

    # ── Pipeline ──────────────────────────────────────────────────────

    def _is_current(self, job: EnhancementJob) -> bool:
        if self._job is job and not self._disposed and self.store.generation == job.generation:
            return True
        logger.info(f"Discarding stale enhancement job {job.id}")
        job.phase = EnhancementPhase.CANCELLED
        return False

    def _advance(self, job: EnhancementJob, phase: EnhancementPhase) -> None:
        job.phase = phase
        self._set_phase(phase)

    def _decode_and_split(self, source: ImageSource, job: EnhancementJob) -> Dict[TileKey, Tile]:
        """Decode the enhancer output completely and cut it into world tiles."""
        image = load_image(source)
        expected = job.stitched_image.size
        if image.size != expected:
            logger.debug(f"Resizing enhanced region from {image.size} to {expected}")
            image = image.resize(expected, Image.Resampling.LANCZOS)
        job.result_image = image
        return self.store.split_region(image, job.world_rect)

    async def _run(self, job: EnhancementJob) -> None:
        try:
            stitched = await asyncio.to_thread(self.store.stitch, job.world_rect)
            if not self._is_current(job):
                return
            job.stitched_image = stitched
            self._notify(self.on_placeholder, job)

            self._advance(job, EnhancementPhase.REQUESTING)
            result = await self.enhancer.enhance(stitched, self.config.prompt)
            if not self._is_current(job):
                return

            self._advance(job, EnhancementPhase.RETILING)
            if result.flags:
                job.flags = dict(result.flags)
                logger.info(f"Enhancer flags for job {job.id}: {job.flags}")
                self._notify(self.on_flags, job.flags)

            if result.fallback:
                job.fallback = True
                logger.warning(f"Enhancement job {job.id} fell back to the original region, nothing merged")
                return

            try:
                tiles = await asyncio.to_thread(self._decode_and_split, result.image, job)
            except ValueError as e:
                job.fallback = True
                logger.warning(f"Could not decode enhanced region for job {job.id}: {e}")
                return
            if not self._is_current(job):
                return

            job.merged_tiles = self.store.merge_region(job.world_rect, tiles)
            logger.info(f"Enhancement job {job.id} merged {job.merged_tiles} tiles")
            self._notify(self.on_merged, job)
        except asyncio.CancelledError:
            job.phase = EnhancementPhase.CANCELLED
            logger.info(f"Enhancement job {job.id} cancelled")
            raise
        except Exception as e:
            logger.error(f"Enhancement job {job.id} failed: {e}", exc_info=True)
        finally:
            if self._job is job:
                if job.phase != EnhancementPhase.CANCELLED:
                    job.phase = EnhancementPhase.IDLE
                self._job = None
                self._task = None
                self._set_phase(EnhancementPhase.IDLE)

    # ── Lifecycle ─────────────────────────────────────────────────────

    def cancel(self) -> None:
        """Cancel the countdown and any live job; a result still in flight is dropped."""
        self.cancel_pending()
        task, job = self._task, self._job
        self._task = None
        self._job = None
        if job is not None:
            job.phase = EnhancementPhase.CANCELLED
        if task is not None and not task.done():
            task.cancel()
        self._set_phase(EnhancementPhase.IDLE)

    async def wait_idle(self) -> None:
        """Wait for the live job, if any, to finish."""
        task = self._task
        if task is not None:
            await asyncio.wait([task])

    def dispose(self) -> None:
        if self._disposed:
            return
        self.cancel()
        self._disposed = True
        self.viewport.remove_listener(self.handle_viewport_event)
        logger.debug("Enhancement orchestrator disposed")
