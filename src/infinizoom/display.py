#!/usr/bin/env python3
"""
Interactive pyglet window for a :class:`~infinizoom.world.WorldSession`.

Mouse wheel zooms around the cursor, left drag and the arrow keys pan, ``+``/``-`` zoom in
steps, ``R`` resets, ``S`` saves a snapshot, ``F11`` toggles fullscreen and
``Esc``/``Q`` quits. Requires the ``display`` extra.
"""

import asyncio
import logging
import time
from typing import Optional, Set, Tuple

import pyglet
from pyglet.window import key, mouse
from PIL import Image

from infinizoom.config import DisplayConfig
from infinizoom.world import WorldSession

logger = logging.getLogger(__name__)

ZOOM_IN_KEYS = (key.PLUS, key.EQUAL, key.NUM_ADD)
ZOOM_OUT_KEYS = (key.MINUS, key.NUM_SUBTRACT)
PAN_STEP = 64  # screen pixels per arrow key press
PAN_KEYS = {
    key.LEFT: (PAN_STEP, 0),
    key.RIGHT: (-PAN_STEP, 0),
    key.UP: (0, PAN_STEP),
    key.DOWN: (0, -PAN_STEP),
}


def to_pyglet_image(image: Image.Image) -> pyglet.image.ImageData:
    """Wrap an RGBA PIL image for blitting; negative pitch flips it to pyglet's bottom-up rows."""
    rgba = image.convert("RGBA")
    return pyglet.image.ImageData(rgba.width, rgba.height, "RGBA", rgba.tobytes(), pitch=-rgba.width * 4)


class InfinizoomDisplay:
    def __init__(self, session: WorldSession, config: Optional[DisplayConfig] = None):
        self.session = session
        self.config = config or session.config.display
        self.window: Optional[pyglet.window.Window] = None
        self.running = False
        self._frame: Optional[pyglet.image.ImageData] = None
        self._frame_key: Optional[Tuple] = None
        self._tasks: Set[asyncio.Task] = set()

    def _initialize_window(self) -> None:
        width, height = self.session.viewport.viewport_size
        caption = f"Infinizoom - {self.session.config.service_name}"
        if self.config.fullscreen:
            self.window = pyglet.window.Window(fullscreen=True, caption=caption, vsync=self.config.vsync)
        else:
            self.window = pyglet.window.Window(width=width, height=height, caption=caption,
                                               vsync=self.config.vsync, resizable=True)

        self.window.on_draw = self._on_draw
        self.window.on_key_press = self._on_key_press
        self.window.on_close = self._on_close
        self.window.on_resize = self._on_resize
        self.window.on_mouse_scroll = self._on_mouse_scroll
        self.window.on_mouse_press = self._on_mouse_press
        self.window.on_mouse_drag = self._on_mouse_drag
        self.window.on_mouse_release = self._on_mouse_release
        self.window.on_mouse_leave = self._on_mouse_leave

        self.session.viewport.set_viewport_size(self.window.width, self.window.height)
        logger.info(f"Window initialized: {self.window.width}x{self.window.height}, "
                    f"fullscreen={self.config.fullscreen}")

    # ── Coordinates ───────────────────────────────────────────────────

    def _screen(self, x: float, y: float) -> Tuple[float, float]:
        """pyglet's bottom-left origin to top-left screen coordinates."""
        return (x, self.window.height - y)

    # ── Window events ─────────────────────────────────────────────────

    def _frame_state(self) -> Tuple:
        job = self.session.orchestrator.placeholder
        return (
            self.session.store.revision,
            self.session.viewport.state,
            self.session.viewport.viewport_size,
            job.id if job else None,
        )

    def _on_draw(self):
        state = self._frame_state()
        if state != self._frame_key:
            self._frame = to_pyglet_image(self.session.render())
            self._frame_key = state
        self.window.clear()
        if self._frame is not None:
            self._frame.blit(0, 0)

    def _on_resize(self, width, height):
        if width > 0 and height > 0:
            self.session.viewport.set_viewport_size(width, height)

    def _on_mouse_scroll(self, x, y, scroll_x, scroll_y):
        # wheel up zooms in
        self.session.viewport.zoom_by_wheel(-scroll_y, self._screen(x, y))

    def _on_mouse_press(self, x, y, button, modifiers):
        if button == mouse.LEFT:
            self.session.viewport.begin_drag(self._screen(x, y))

    def _on_mouse_drag(self, x, y, dx, dy, buttons, modifiers):
        self.session.viewport.drag_to(self._screen(x, y))

    def _on_mouse_release(self, x, y, button, modifiers):
        if button == mouse.LEFT:
            self.session.viewport.end_drag()

    def _on_mouse_leave(self, x, y):
        self.session.viewport.cancel_drag()

    def _on_key_press(self, symbol, modifiers):
        viewport = self.session.viewport
        if symbol == key.ESCAPE or symbol == key.Q:
            logger.info("Exit key pressed, shutting down...")
            self.request_stop()
        elif symbol in ZOOM_IN_KEYS:
            viewport.zoom_in()
        elif symbol in ZOOM_OUT_KEYS:
            viewport.zoom_out()
        elif symbol in PAN_KEYS:
            viewport.pan_by(*PAN_KEYS[symbol])
        elif symbol == key.R:
            self._spawn(self.session.reset())
        elif symbol == key.S:
            self.session.snapshot()
        elif symbol == key.F11:
            self.window.set_fullscreen(not self.window.fullscreen)
        return pyglet.event.EVENT_HANDLED

    def _on_close(self):
        logger.info("Window close event, shutting down...")
        self.request_stop()

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ── Loop ──────────────────────────────────────────────────────────

    def request_stop(self) -> None:
        self.running = False

    async def run(self) -> None:
        """Run the pyglet event loop cooperatively with asyncio until the window closes."""
        self._initialize_window()
        self.running = True
        frame_dt = 1.0 / self.config.fps
        logger.info("Starting pyglet event loop...")

        try:
            while self.running:
                frame_start = time.perf_counter()
                pyglet.clock.tick()

                window = self.window
                window.switch_to()
                window.dispatch_events()
                if window.has_exit:
                    break
                window.dispatch_event("on_draw")
                window.flip()

                processing_time = time.perf_counter() - frame_start
                await asyncio.sleep(max(0.0001, frame_dt - processing_time))
        finally:
            for task in list(self._tasks):
                task.cancel()
            if self.window is not None:
                self.window.close()
                self.window = None
            logger.info("Pyglet event loop finished")
