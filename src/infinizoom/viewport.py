"""
Pan/zoom transform for the wrapping panorama view.

Screen coordinates map to world coordinates as ``world = (screen - pan) / zoom``.
Horizontal pan is unbounded because the world wraps; vertical pan is clamped so
the world either covers the viewport or sits centered in it.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

from infinizoom.config import ViewportConfig
from infinizoom.schemas import Rect

logger = logging.getLogger(__name__)

PRIMARY_BUTTON = 0


class ViewportEvent(str, Enum):
    """Interaction events reported to listeners after the state has changed."""
    ZOOM_IN = "zoom_in"
    ZOOM_OUT = "zoom_out"
    DRAG_START = "drag_start"
    PAN = "pan"
    NUDGE = "nudge"
    DRAG_END = "drag_end"
    RESET = "reset"


@dataclass(frozen=True)
class ViewportState:
    pan_x: float = 0.0
    pan_y: float = 0.0
    zoom: float = 1.0

    @property
    def pan(self) -> Tuple[float, float]:
        return (self.pan_x, self.pan_y)


ViewportListener = Callable[[ViewportEvent, ViewportState], None]


def world_from_screen(pan: Tuple[float, float], zoom: float, viewport_size: Tuple[float, float]) -> Rect:
    """World rectangle visible through a viewport of *viewport_size*."""
    return Rect(
        x=-pan[0] / zoom,
        y=-pan[1] / zoom,
        w=viewport_size[0] / zoom,
        h=viewport_size[1] / zoom,
    )


class ViewportController:
    """Owns pan and zoom, and turns input gestures into state changes.

    ``is_busy`` is consulted before starting a drag; while it returns True
    drags are refused. Zoom still works so the view stays responsive.
    """

    def __init__(
        self,
        viewport_size: Tuple[int, int] = (1280, 720),
        world_size: Tuple[int, int] = (0, 0),
        config: Optional[ViewportConfig] = None,
        is_busy: Optional[Callable[[], bool]] = None,
    ):
        self.config = config or ViewportConfig()
        self.viewport_size = viewport_size
        self.world_size = world_size
        self.is_busy = is_busy or (lambda: False)
        self._state = ViewportState()
        self._listeners: List[ViewportListener] = []
        self._drag_origin: Optional[Tuple[float, float]] = None
        self._state = self._reset_state()

    @property
    def state(self) -> ViewportState:
        return self._state

    @property
    def zoom(self) -> float:
        return self._state.zoom

    @property
    def pan(self) -> Tuple[float, float]:
        return self._state.pan

    @property
    def dragging(self) -> bool:
        return self._drag_origin is not None

    def add_listener(self, listener: ViewportListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ViewportListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: ViewportEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, self._state)
            except Exception as e:
                logger.error(f"Error in viewport listener for {event.value}: {e}", exc_info=True)

    # ── Transform ─────────────────────────────────────────────────────

    def visible_world_rect(self) -> Rect:
        return world_from_screen(self.pan, self.zoom, self.viewport_size)

    def screen_rect(self) -> Rect:
        return Rect(0, 0, self.viewport_size[0], self.viewport_size[1])

    def can_enhance(self) -> bool:
        """Only zoomed-in views are worth enhancing."""
        return self.zoom > self.config.enhance_min_zoom

    def clamp_zoom(self, zoom: float) -> float:
        return max(self.config.min_zoom, min(zoom, self.config.max_zoom))

    def clamp_vertical(self, pan_y: float, zoom: float) -> float:
        """Keep the world covering the viewport vertically, or center it when it is smaller."""
        viewport_height = self.viewport_size[1]
        world_pixel_height = self.world_size[1] * zoom
        if world_pixel_height > viewport_height:
            return max(min(pan_y, 0.0), viewport_height - world_pixel_height)
        return (viewport_height - world_pixel_height) / 2

    def _set_state(self, pan_x: float, pan_y: float, zoom: float) -> None:
        self._state = ViewportState(pan_x=pan_x, pan_y=self.clamp_vertical(pan_y, zoom), zoom=zoom)

    # ── Sizing ────────────────────────────────────────────────────────

    def set_viewport_size(self, width: int, height: int) -> None:
        self.viewport_size = (width, height)
        self._set_state(self._state.pan_x, self._state.pan_y, self._state.zoom)

    def set_world_size(self, width: int, height: int) -> None:
        """Adopt a new world and return to the default view."""
        self.world_size = (width, height)
        self._drag_origin = None
        self._state = self._reset_state()

    def _reset_state(self) -> ViewportState:
        return ViewportState(pan_x=0.0, pan_y=self.clamp_vertical(0.0, 1.0), zoom=1.0)

    # ── Gestures ──────────────────────────────────────────────────────

    def zoom_by_wheel(self, delta_y: float, cursor: Tuple[float, float]) -> None:
        """Zoom one wheel tick around *cursor*; negative *delta_y* zooms in."""
        if delta_y == 0:
            return
        zooming_in = delta_y < 0
        factor = math.exp(self.config.wheel_intensity if zooming_in else -self.config.wheel_intensity)
        old_zoom = self._state.zoom
        new_zoom = self.clamp_zoom(old_zoom * factor)
        # factor actually applied after clamping, so the cursor stays put at the limits too
        factor = new_zoom / old_zoom

        pan_x, pan_y = self._state.pan
        new_pan_x = pan_x - (cursor[0] - pan_x) * (factor - 1)
        new_pan_y = pan_y - (cursor[1] - pan_y) * (factor - 1)
        self._set_state(new_pan_x, new_pan_y, new_zoom)

        self._emit(ViewportEvent.ZOOM_IN if zooming_in else ViewportEvent.ZOOM_OUT)

    def zoom_in(self) -> None:
        self._set_state(self._state.pan_x, self._state.pan_y,
                        self.clamp_zoom(self._state.zoom * self.config.button_step))
        self._emit(ViewportEvent.ZOOM_IN)

    def zoom_out(self) -> None:
        self._set_state(self._state.pan_x, self._state.pan_y,
                        self.clamp_zoom(self._state.zoom / self.config.button_step))
        self._emit(ViewportEvent.ZOOM_OUT)

    def begin_drag(self, position: Tuple[float, float], button: int = PRIMARY_BUTTON) -> bool:
        """Start a pan gesture. Returns False when the drag was refused."""
        if button != PRIMARY_BUTTON or self.is_busy():
            return False
        self._drag_origin = (position[0] - self._state.pan_x, position[1] - self._state.pan_y)
        self._emit(ViewportEvent.DRAG_START)
        return True

    def drag_to(self, position: Tuple[float, float]) -> None:
        if self._drag_origin is None:
            return
        self._set_state(position[0] - self._drag_origin[0],
                        position[1] - self._drag_origin[1],
                        self._state.zoom)
        self._emit(ViewportEvent.PAN)

    def end_drag(self) -> None:
        """Release the pan gesture."""
        if self._drag_origin is None:
            return
        self._drag_origin = None
        self._emit(ViewportEvent.DRAG_END)

    def cancel_drag(self) -> None:
        """Abandon the gesture without a release (pointer left the view)."""
        self._drag_origin = None

    def pan_by(self, dx: float, dy: float) -> None:
        """Pan outside a drag gesture, e.g. from the keyboard."""
        self._set_state(self._state.pan_x + dx, self._state.pan_y + dy, self._state.zoom)
        self._emit(ViewportEvent.PAN if self._drag_origin is not None else ViewportEvent.NUDGE)

    def set_view(self, pan: Tuple[float, float], zoom: float) -> None:
        """Jump straight to a view, clamping as usual. No events are emitted."""
        self._set_state(pan[0], pan[1], self.clamp_zoom(zoom))

    def reset(self) -> None:
        self._drag_origin = None
        self._state = self._reset_state()
        self._emit(ViewportEvent.RESET)
