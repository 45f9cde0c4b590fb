#!/usr/bin/env python3
"""
Tests for the debounced enhancement pipeline.
"""

import asyncio

import pytest

from infinizoom.config import EnhancerConfig
from infinizoom.enhancers.mock_enhancer import MockEnhancer
from infinizoom.image_utils import images_equal
from infinizoom.orchestrator import DebounceTimer
from infinizoom.schemas import EnhancementPhase, Rect

from .mocks import RecordingEnhancer, gradient_image, invert, make_pipeline, settle, solid_image


class TestDebounceTimer:
    @pytest.mark.asyncio
    async def test_fires_once_after_delay(self):
        fired = []
        timer = DebounceTimer(0.01, lambda: fired.append(True))
        timer.start()
        assert timer.active
        await asyncio.sleep(0.05)
        assert fired == [True]
        assert not timer.active

    @pytest.mark.asyncio
    async def test_restart_postpones(self):
        fired = []
        timer = DebounceTimer(0.05, lambda: fired.append(True))
        timer.start()
        await asyncio.sleep(0.03)
        timer.start()
        await asyncio.sleep(0.03)
        assert fired == []
        await asyncio.sleep(0.05)
        assert fired == [True]

    @pytest.mark.asyncio
    async def test_cancel(self):
        fired = []
        timer = DebounceTimer(0.01, lambda: fired.append(True))
        timer.start()
        assert timer.cancel()
        assert not timer.cancel()
        await asyncio.sleep(0.03)
        assert fired == []


class TestTriggers:
    """Which viewport interactions start, restart or cancel the countdown."""

    @pytest.mark.asyncio
    async def test_zoom_in_runs_job_after_debounce(self):
        store, viewport, orchestrator, enhancer = make_pipeline()
        viewport.zoom_in()
        assert orchestrator.phase == EnhancementPhase.DEBOUNCING
        assert enhancer.calls == []

        await settle(orchestrator)

        assert len(enhancer.calls) == 1
        assert orchestrator.phase == EnhancementPhase.IDLE
        assert store.lookup(0, 0).is_enhanced

    @pytest.mark.asyncio
    async def test_zoom_out_cancels_without_restart(self):
        store, viewport, orchestrator, enhancer = make_pipeline()
        phases = []
        orchestrator.on_phase = phases.append

        viewport.zoom_in()
        viewport.zoom_out()
        await asyncio.sleep(0.05)

        assert enhancer.calls == []
        assert phases == [EnhancementPhase.DEBOUNCING, EnhancementPhase.CANCELLED, EnhancementPhase.IDLE]

    @pytest.mark.asyncio
    async def test_drag_start_cancels_and_release_restarts(self):
        store, viewport, orchestrator, enhancer = make_pipeline()
        viewport.set_view((0, 0), 2.0)

        viewport.zoom_in()
        viewport.begin_drag((100, 100))
        assert not orchestrator.timer.active
        viewport.drag_to((90, 90))
        await asyncio.sleep(0.05)
        assert enhancer.calls == []

        viewport.end_drag()
        assert orchestrator.timer.active
        await settle(orchestrator)
        assert len(enhancer.calls) == 1

    @pytest.mark.asyncio
    async def test_keyboard_pan_restarts_countdown(self):
        store, viewport, orchestrator, enhancer = make_pipeline()
        viewport.set_view((0, 0), 2.0)

        viewport.zoom_in()
        viewport.pan_by(-64, 0)
        assert orchestrator.timer.active
        assert orchestrator.phase == EnhancementPhase.DEBOUNCING

        await settle(orchestrator)
        assert len(enhancer.calls) == 1

    @pytest.mark.asyncio
    async def test_not_eligible_at_low_zoom(self):
        store, viewport, orchestrator, enhancer = make_pipeline()
        viewport.zoom_out()
        viewport.end_drag()
        assert orchestrator.trigger() is None

        # a zoom in that still ends below the threshold does nothing when the timer fires
        viewport.set_view((0, 0), 0.5)
        viewport.zoom_in()
        await settle(orchestrator)
        assert enhancer.calls == []
        assert orchestrator.phase == EnhancementPhase.IDLE

    @pytest.mark.asyncio
    async def test_disabled(self):
        store, viewport, orchestrator, enhancer = make_pipeline()
        orchestrator.config.enabled = False
        viewport.zoom_in()
        assert not orchestrator.timer.active

    @pytest.mark.asyncio
    async def test_dispose_cancels_pending_timer(self):
        store, viewport, orchestrator, enhancer = make_pipeline()
        viewport.zoom_in()
        orchestrator.dispose()
        orchestrator.dispose()
        await asyncio.sleep(0.05)

        assert enhancer.calls == []
        viewport.zoom_in()
        assert not orchestrator.timer.active


class TestPipeline:
    @pytest.mark.asyncio
    async def test_region_is_expanded_to_tiles_and_merged(self):
        store, viewport, orchestrator, enhancer = make_pipeline()
        viewport.set_view((0, 0), 1.25)  # visible world 320x240

        job = orchestrator.trigger()
        assert job.world_rect == Rect(0, 0, 512, 256)
        await orchestrator.wait_idle()

        stitched, prompt = enhancer.calls[0]
        assert stitched.size == (512, 256)
        assert prompt == orchestrator.config.prompt
        assert job.merged_tiles == 2

        expected = invert(stitched)
        assert images_equal(store.lookup(0, 0).image, expected.crop((0, 0, 256, 256)))
        assert images_equal(store.lookup(1, 0).image, expected.crop((256, 0, 512, 256)))
        assert not store.lookup(2, 0).is_enhanced
        assert not store.lookup(0, 1).is_enhanced

    @pytest.mark.asyncio
    async def test_second_trigger_while_busy_is_dropped(self):
        enhancer = RecordingEnhancer(hold=True)
        store, viewport, orchestrator, _ = make_pipeline(enhancer=enhancer)
        viewport.set_view((0, 0), 2.0)
        revision = store.revision

        first = orchestrator.trigger()
        assert first is not None
        await enhancer.started.wait()
        assert orchestrator.busy

        assert orchestrator.trigger() is None
        viewport.zoom_in()
        assert not orchestrator.timer.active
        assert not viewport.begin_drag((5, 5))

        enhancer.release.set()
        await orchestrator.wait_idle()

        assert len(enhancer.calls) == 1
        assert store.revision == revision + 1
        assert not orchestrator.busy

    @pytest.mark.asyncio
    async def test_enhancer_failure_leaves_tiles_untouched(self):
        enhancer = MockEnhancer(EnhancerConfig(fail=True))
        store, viewport, orchestrator, _ = make_pipeline(enhancer=enhancer)
        viewport.set_view((-100, -100), 2.0)
        before = {key: tile.image.copy() for key, tile in store.snapshot().items()}
        revision = store.revision

        job = orchestrator.trigger()
        await orchestrator.wait_idle()

        assert job.fallback
        assert job.merged_tiles == 0
        assert store.revision == revision
        for key, tile in store.snapshot().items():
            assert images_equal(tile.image, before[key])
            assert not tile.is_enhanced
        assert orchestrator.phase == EnhancementPhase.IDLE

    @pytest.mark.asyncio
    async def test_stale_result_is_discarded_after_world_change(self):
        enhancer = RecordingEnhancer(hold=True)
        store, viewport, orchestrator, _ = make_pipeline(enhancer=enhancer)
        viewport.set_view((0, 0), 2.0)

        job = orchestrator.trigger()
        await enhancer.started.wait()
        store.tileize(gradient_image(800, 400))

        enhancer.release.set()
        await orchestrator.wait_idle()

        assert job.phase == EnhancementPhase.CANCELLED
        assert job.merged_tiles == 0
        assert not any(tile.is_enhanced for tile in store.snapshot().values())
        assert orchestrator.job is None

    @pytest.mark.asyncio
    async def test_cancel_drops_in_flight_job(self):
        enhancer = RecordingEnhancer(hold=True)
        store, viewport, orchestrator, _ = make_pipeline(enhancer=enhancer)
        viewport.set_view((0, 0), 2.0)
        revision = store.revision

        job = orchestrator.trigger()
        await enhancer.started.wait()
        orchestrator.cancel()
        enhancer.release.set()
        await asyncio.sleep(0.02)

        assert job.phase == EnhancementPhase.CANCELLED
        assert store.revision == revision
        assert not orchestrator.busy

    @pytest.mark.asyncio
    async def test_placeholder_shown_before_merge(self):
        events = []
        store, viewport, orchestrator, _ = make_pipeline()
        orchestrator.on_placeholder = lambda job: events.append(
            ("placeholder", job.stitched_image is not None, store.lookup(0, 0).is_enhanced))
        orchestrator.on_merged = lambda job: events.append(
            ("merged", job.result_image is not None, store.lookup(0, 0).is_enhanced))
        viewport.set_view((0, 0), 2.0)

        orchestrator.trigger()
        await orchestrator.wait_idle()

        assert events == [("placeholder", True, False), ("merged", True, True)]
        assert orchestrator.placeholder is None

    @pytest.mark.asyncio
    async def test_placeholder_available_while_requesting(self):
        enhancer = RecordingEnhancer(hold=True)
        store, viewport, orchestrator, _ = make_pipeline(enhancer=enhancer)
        viewport.set_view((0, 0), 2.0)

        job = orchestrator.trigger()
        await enhancer.started.wait()
        assert orchestrator.phase == EnhancementPhase.REQUESTING
        assert orchestrator.placeholder is job

        enhancer.release.set()
        await orchestrator.wait_idle()

    @pytest.mark.asyncio
    async def test_result_of_different_size_is_resized(self):
        enhancer = MockEnhancer(EnhancerConfig(scale=2.0))
        store, viewport, orchestrator, _ = make_pipeline(enhancer=enhancer)
        viewport.set_view((0, 0), 2.0)

        job = orchestrator.trigger()
        await orchestrator.wait_idle()

        assert job.result_image.size == job.stitched_image.size
        assert job.merged_tiles > 0
        for key, tile in store.snapshot().items():
            assert tile.size == store.expected_size(*key)

    @pytest.mark.asyncio
    async def test_undecodable_result_is_not_merged(self):
        enhancer = RecordingEnhancer(result=None)
        store, viewport, orchestrator, _ = make_pipeline(enhancer=enhancer)
        enhancer.result = b"not an image"
        viewport.set_view((0, 0), 2.0)
        revision = store.revision

        job = orchestrator.trigger()
        await orchestrator.wait_idle()

        assert job.fallback
        assert store.revision == revision

    @pytest.mark.asyncio
    async def test_flags_are_reported(self):
        flags = []
        enhancer = RecordingEnhancer(flags={"foundTheBanana": True})
        store, viewport, orchestrator, _ = make_pipeline(enhancer=enhancer, on_flags=flags.append)
        viewport.set_view((0, 0), 2.0)

        job = orchestrator.trigger()
        await orchestrator.wait_idle()

        assert flags == [{"foundTheBanana": True}]
        assert job.flags == {"foundTheBanana": True}

    @pytest.mark.asyncio
    async def test_region_across_wrap_boundary(self):
        store, viewport, orchestrator, enhancer = make_pipeline(world_size=(1024, 512))
        # visible world x from 900 to 1220 wraps into column 0
        viewport.set_view((-900 * 1.25, 0), 1.25)

        job = orchestrator.trigger()
        await orchestrator.wait_idle()

        assert job.world_rect.x == 768
        assert store.lookup(3, 0).is_enhanced
        assert store.lookup(0, 0).is_enhanced
        assert store.lookup(4, 0) is store.lookup(0, 0)
        assert not store.lookup(2, 0).is_enhanced

    @pytest.mark.asyncio
    async def test_empty_store_is_never_enhanced(self):
        store, viewport, orchestrator, enhancer = make_pipeline()
        store.clear()
        viewport.set_view((0, 0), 2.0)
        assert orchestrator.trigger() is None

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_abort_job(self):
        def broken(job):
            raise RuntimeError("ui bug")

        store, viewport, orchestrator, enhancer = make_pipeline(on_placeholder=broken)
        viewport.set_view((0, 0), 2.0)
        job = orchestrator.trigger()
        await orchestrator.wait_idle()
        assert job.merged_tiles > 0

    @pytest.mark.asyncio
    async def test_solid_world_enhancement_is_pixel_exact(self):
        store, viewport, orchestrator, _ = make_pipeline(
            enhancer=RecordingEnhancer(result=solid_image(256, 256, (1, 2, 3))))
        viewport.set_view((0, 0), 2.0)  # visible 200x150 -> one tile region 256x256

        job = orchestrator.trigger()
        await orchestrator.wait_idle()

        assert job.world_rect == Rect(0, 0, 256, 256)
        assert store.lookup(0, 0).image.getpixel((100, 100)) == (1, 2, 3, 255)
