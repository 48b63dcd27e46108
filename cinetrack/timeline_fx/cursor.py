"""Cursor state calculator — position, visibility and click ripples.

Works in capture pixels on the recording's source axis.  Each call
takes the previous :class:`CursorState` (or ``None``) and returns the
next one, so the state doubles as the snapshot handed between export
chunks.

Gliding is an exponential low-pass on the raw interpolated position
whose time constant grows with *smoothness* and shrinks with *speed*::

    alpha = 1 - exp(-dt / tau)

Because alpha is derived from the frame delta, the trail looks the same
at 30 and 60 fps.  A small dead band holds the cursor still against
sub-pixel tremor once the pointer has come to rest.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .models import ClickEvent, CursorEffectData
from .mouse_trace import MouseTrace

logger = logging.getLogger(__name__)


# ── Tuning constants ────────────────────────────────────────────────

GLIDE_BASE_TAU_MS = 100.0   # tau at smoothness 1, speed 0
GLIDE_MIN_TAU_MS = 8.0
JITTER_PX = 1.5             # raw moves this small do not move the cursor
SEEK_THRESHOLD_MS = 300.0   # source-time jump that snaps instead of gliding
IDLE_FADE_MS = 300.0        # fade window before the idle timeout
CLICK_EFFECT_MS = 500.0
CLICK_BASE_RADIUS = 10.0
CLICK_MAX_RADIUS = 50.0
CLICK_MAX_OPACITY = 0.5
BLUR_MIN_VELOCITY = 2.0     # px per frame
BLUR_MAX_VELOCITY = 50.0


class CursorType(Enum):
    """Cursor artwork to draw."""
    ARROW = "arrow"
    IBEAM = "iBeam"
    IBEAM_VERTICAL = "iBeamCursorForVerticalLayout"
    POINTING_HAND = "pointingHand"
    CLOSED_HAND = "closedHand"
    OPEN_HAND = "openHand"
    CROSSHAIR = "crosshair"
    RESIZE_LEFT = "resizeLeft"
    RESIZE_RIGHT = "resizeRight"
    RESIZE_UP = "resizeUp"
    RESIZE_DOWN = "resizeDown"
    RESIZE_LEFT_RIGHT = "resizeLeftRight"
    RESIZE_UP_DOWN = "resizeUpDown"
    CONTEXTUAL_MENU = "contextualMenu"
    DRAG_COPY = "dragCopy"
    DRAG_LINK = "dragLink"
    OPERATION_NOT_ALLOWED = "operationNotAllowed"


# CSS-style names reported by the recorder
SYSTEM_CURSOR_TYPES: Dict[str, CursorType] = {
    "default": CursorType.ARROW,
    "pointer": CursorType.POINTING_HAND,
    "text": CursorType.IBEAM,
    "vertical-text": CursorType.IBEAM_VERTICAL,
    "crosshair": CursorType.CROSSHAIR,
    "move": CursorType.OPEN_HAND,
    "grab": CursorType.OPEN_HAND,
    "grabbing": CursorType.CLOSED_HAND,
    "all-scroll": CursorType.OPEN_HAND,
    "not-allowed": CursorType.OPERATION_NOT_ALLOWED,
    "context-menu": CursorType.CONTEXTUAL_MENU,
    "copy": CursorType.DRAG_COPY,
    "alias": CursorType.DRAG_LINK,
    "e-resize": CursorType.RESIZE_RIGHT,
    "w-resize": CursorType.RESIZE_LEFT,
    "n-resize": CursorType.RESIZE_UP,
    "s-resize": CursorType.RESIZE_DOWN,
    "ne-resize": CursorType.RESIZE_RIGHT,
    "nw-resize": CursorType.RESIZE_LEFT,
    "se-resize": CursorType.RESIZE_RIGHT,
    "sw-resize": CursorType.RESIZE_LEFT,
    "ew-resize": CursorType.RESIZE_LEFT_RIGHT,
    "ns-resize": CursorType.RESIZE_UP_DOWN,
    "nesw-resize": CursorType.RESIZE_LEFT_RIGHT,
    "nwse-resize": CursorType.RESIZE_LEFT_RIGHT,
    "col-resize": CursorType.RESIZE_LEFT_RIGHT,
    "row-resize": CursorType.RESIZE_UP_DOWN,
    "zoom-in": CursorType.CROSSHAIR,
    "zoom-out": CursorType.CROSSHAIR,
}


def cursor_type_for(system_name: Optional[str]) -> CursorType:
    """Map a recorded system cursor name; unknown names draw the arrow."""
    return SYSTEM_CURSOR_TYPES.get(system_name or "default", CursorType.ARROW)


@dataclass
class ClickEffect:
    """An expanding ripple for one click."""
    x: float
    y: float
    timestamp: float
    progress: float
    radius: float
    opacity: float

    def to_dict(self) -> dict:
        return {
            "x": self.x,
            "y": self.y,
            "timestamp": self.timestamp,
            "progress": self.progress,
            "radius": self.radius,
            "opacity": self.opacity,
        }


@dataclass
class MotionBlur:
    previous_x: float
    previous_y: float
    velocity: float

    def to_dict(self) -> dict:
        return {"previousX": self.previous_x, "previousY": self.previous_y,
                "velocity": self.velocity}


@dataclass
class CursorState:
    x: float = 0.0
    y: float = 0.0
    visible: bool = False
    opacity: float = 0.0
    scale: float = 1.0
    cursor_type: CursorType = CursorType.ARROW
    click_effects: List[ClickEffect] = field(default_factory=list)
    motion_blur: Optional[MotionBlur] = None
    last_time_ms: Optional[float] = None

    @property
    def click_active(self) -> bool:
        return bool(self.click_effects)

    def to_dict(self) -> dict:
        d = {
            "x": self.x,
            "y": self.y,
            "visible": self.visible,
            "opacity": self.opacity,
            "scale": self.scale,
            "type": self.cursor_type.value,
            "lastTimeMs": self.last_time_ms,
        }
        if self.click_effects:
            d["clickEffects"] = [c.to_dict() for c in self.click_effects]
        if self.motion_blur is not None:
            d["motionBlur"] = self.motion_blur.to_dict()
        return d

    @staticmethod
    def from_dict(d: dict) -> "CursorState":
        """Restore the parts needed to resume gliding.

        Click ripples and blur are recomputed per frame, so they are not
        read back.
        """
        return CursorState(
            x=d["x"],
            y=d["y"],
            visible=d.get("visible", False),
            opacity=d.get("opacity", 0.0),
            scale=d.get("scale", 1.0),
            cursor_type=CursorType(d.get("type", CursorType.ARROW.value)),
            last_time_ms=d.get("lastTimeMs"),
        )


def hidden_state(last_time_ms: Optional[float] = None) -> CursorState:
    return CursorState(last_time_ms=last_time_ms)


def glide_tau_ms(speed: float, smoothness: float) -> float:
    speed = min(max(speed, 0.0), 1.0)
    smoothness = min(max(smoothness, 0.0), 1.0)
    return GLIDE_MIN_TAU_MS + GLIDE_BASE_TAU_MS * smoothness * (1.0 - speed)


def idle_opacity(idle_ms: float, timeout_ms: float) -> float:
    """1.0 while active, fading to 0 over the last ``IDLE_FADE_MS``."""
    if idle_ms > timeout_ms:
        return 0.0
    fade_start = timeout_ms - IDLE_FADE_MS
    if idle_ms > fade_start:
        return max(0.0, 1.0 - (idle_ms - fade_start) / IDLE_FADE_MS)
    return 1.0


def click_effects_at(clicks: List[ClickEvent], time_ms: float) -> List[ClickEffect]:
    """Ripples for clicks younger than ``CLICK_EFFECT_MS``."""
    effects: List[ClickEffect] = []
    for click in clicks:
        age = time_ms - click.timestamp
        if age < 0 or age >= CLICK_EFFECT_MS:
            continue
        progress = age / CLICK_EFFECT_MS
        eased = 1.0 - (1.0 - progress) ** 3
        effects.append(ClickEffect(
            x=click.x,
            y=click.y,
            timestamp=click.timestamp,
            progress=progress,
            radius=CLICK_BASE_RADIUS + eased * CLICK_MAX_RADIUS,
            opacity=max(0.0, 1.0 - progress) * CLICK_MAX_OPACITY,
        ))
    return effects


def calculate_cursor_state(
    data: Optional[CursorEffectData],
    trace: Optional[MouseTrace],
    source_ms: float,
    previous: Optional[CursorState],
    fps: float,
    dt_ms: Optional[float] = None,
    with_effects: bool = True,
) -> CursorState:
    """Cursor state at *source_ms*.

    *dt_ms* is the output time since *previous* was computed; it defaults
    to one frame at *fps*.  Returns a hidden state when there is no
    cursor effect data or no mouse trace.  With *with_effects* off the
    click ripples and motion blur are skipped; position and visibility
    are unaffected.
    """
    if data is None or trace is None or len(trace) == 0:
        return hidden_state(source_ms)

    raw = trace.position_at(source_ms)
    x, y = raw
    if dt_ms is None:
        dt_ms = 1000.0 / fps

    # A hidden previous state has no real position to glide from
    seeking = (
        previous is None
        or not previous.visible
        or previous.last_time_ms is None
        or source_ms < previous.last_time_ms
        or source_ms - previous.last_time_ms > SEEK_THRESHOLD_MS
    )

    if data.gliding and not seeking:
        dx = raw[0] - previous.x
        dy = raw[1] - previous.y
        if math.hypot(dx, dy) <= JITTER_PX:
            x, y = previous.x, previous.y
        else:
            tau = glide_tau_ms(data.speed, data.smoothness)
            alpha = 1.0 - math.exp(-max(dt_ms, 0.0) / tau)
            x = previous.x + dx * alpha
            y = previous.y + dy * alpha

    visible = True
    opacity = 1.0
    if data.hide_on_idle:
        last_move = trace.last_movement_time(source_ms)
        if last_move is not None:
            opacity = idle_opacity(source_ms - last_move, data.idle_timeout)
            visible = opacity > 0.0

    blur: Optional[MotionBlur] = None
    clicks: List[ClickEffect] = []
    if with_effects:
        if data.motion_blur and not seeking:
            velocity = math.hypot(x - previous.x, y - previous.y)
            if velocity > BLUR_MIN_VELOCITY:
                blur = MotionBlur(previous.x, previous.y, min(velocity, BLUR_MAX_VELOCITY))
        if data.click_effects:
            clicks = click_effects_at(
                trace.clicks_between(source_ms - CLICK_EFFECT_MS, source_ms), source_ms)

    return CursorState(
        x=x,
        y=y,
        visible=visible,
        opacity=opacity,
        scale=data.size or 1.0,
        cursor_type=cursor_type_for(trace.cursor_type_at(source_ms)),
        click_effects=clicks,
        motion_blur=blur,
        last_time_ms=source_ms,
    )
