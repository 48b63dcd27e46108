"""Camera (zoom / pan) state calculator.

Each zoom effect runs a small state machine over timeline time::

    IDLE -> INTRO -> HOLD -> OUTRO -> IDLE

The scale ramps from 1 to the effect's target during the intro and back
during the outro using cubic ease-in-out; the hold keeps the exact
target scale.

The zoom *centre* follows a target with a damped spring.  For a
mouse-follow effect the target is the recorded cursor, smoothed over a
short trailing window (or the centroid of a dwell cluster while the
pointer lingers in one), passed through:

1. **Edge resistance** — inside a band near the capture boundary the
   cursor's pull is damped so the camera eases into corners instead of
   slamming against them.
2. **Dead zone** — while the cursor stays within a central box of the
   current view the camera only drifts gently toward it.  The box
   shrinks as the zoom increases, so tight zooms track more closely.

When the pointer comes to rest under zoom the target freezes on it and
the spring is damped harder until the pointer moves off again.

The spring is integrated with fixed-size substeps.  Two modes share the
same code path:

* **continuous** (preview) — ``wall_dt_ms`` is the real time since the
  previous tick, clamped to ``MAX_DT_MS``.
* **deterministic** (export) — dt is the timeline delta between frames,
  so a run seeded from a :class:`CameraPhysicsState` snapshot repeats
  an uninterrupted run exactly.

All positions are normalised 0–1 in capture space.
"""

import logging
import math
from dataclasses import dataclass, asdict
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from .models import Effect, EffectKind, FollowStrategy, ZoomEffectData
from .mouse_trace import MouseTrace

logger = logging.getLogger(__name__)


# ── Tuning constants ────────────────────────────────────────────────

SPRING_TENSION = 120.0
SPRING_FRICTION = 25.0
SEEK_THRESHOLD_MS = 100.0    # timeline jump treated as a seek (snap)
MAX_DT_MS = 100.0            # longest step integrated after a stall
SUBSTEP_MS = 4.0             # fixed integration step
MIN_RATE = 0.5               # clamp for the playback-rate estimate
MAX_RATE = 3.0

DEAD_ZONE_RATIO = 0.4        # dead-zone half size / view half size at 1x
MIN_DEAD_ZONE_RATIO = 0.18   # ... at DEAD_ZONE_END_SCALE and above
DEAD_ZONE_START_SCALE = 1.1
DEAD_ZONE_END_SCALE = 2.5
SOFT_FOLLOW = 0.25           # drift factor inside the dead zone

EDGE_BAND = 0.08             # normalised band along each capture edge
EDGE_RESISTANCE = 0.5        # fraction of cursor travel kept inside the band

CURSOR_STOP_VELOCITY = 0.05  # capture widths per second
CURSOR_STOP_UNFREEZE = 1.5   # x CURSOR_STOP_VELOCITY releases a frozen target
CURSOR_STOP_DWELL_MS = 150.0
CURSOR_STOP_MIN_ZOOM = 1.5
CURSOR_STOP_DAMPING = 0.7
CURSOR_STOP_SNAP = 0.001

NEUTRAL_CENTER = (0.5, 0.5)


def ease_in_out_cubic(t: float) -> float:
    """Cubic ease-in-out: slow start, fast middle, slow arrival."""
    if t < 0.5:
        return 4.0 * t * t * t
    return 1.0 - ((-2.0 * t + 2.0) ** 3) / 2.0


class ZoomPhase(Enum):
    IDLE = "idle"
    INTRO = "intro"
    HOLD = "hold"
    OUTRO = "outro"


def zoom_phase(effect: Optional[Effect], timeline_ms: float) -> ZoomPhase:
    """Phase of *effect* at *timeline_ms*."""
    if effect is None or not effect.contains(timeline_ms):
        return ZoomPhase.IDLE
    data: ZoomEffectData = effect.data
    elapsed = timeline_ms - effect.start_time
    if elapsed < data.intro_ms:
        return ZoomPhase.INTRO
    if elapsed > effect.duration - data.outro_ms:
        return ZoomPhase.OUTRO
    return ZoomPhase.HOLD


def zoom_scale(effect: Optional[Effect], timeline_ms: float) -> float:
    """Eased zoom scale of *effect* at *timeline_ms* (1.0 when idle)."""
    phase = zoom_phase(effect, timeline_ms)
    if phase is ZoomPhase.IDLE:
        return 1.0
    data: ZoomEffectData = effect.data
    elapsed = timeline_ms - effect.start_time
    if phase is ZoomPhase.INTRO:
        progress = elapsed / data.intro_ms
        return 1.0 + (data.scale - 1.0) * ease_in_out_cubic(progress)
    if phase is ZoomPhase.OUTRO:
        progress = (elapsed - (effect.duration - data.outro_ms)) / data.outro_ms
        return data.scale - (data.scale - 1.0) * ease_in_out_cubic(min(1.0, progress))
    return data.scale


# ── Active-effect lookup ────────────────────────────────────────────


class EffectIndex:
    """Answers "which zoom effect is active at this time?".

    Overlapping ranges resolve to the effect with the latest
    ``start_time``; equal starts resolve to the one listed later.
    Subclasses may replace the search structure but must keep that rule.
    """

    def active_zoom(self, timeline_ms: float) -> Optional[Effect]:
        raise NotImplementedError

    def active_of(self, kind: EffectKind, timeline_ms: float) -> Optional[Effect]:
        raise NotImplementedError


class LinearEffectIndex(EffectIndex):
    """Scans the effect list on every query; fine for a few dozen effects."""

    def __init__(self, effects: Sequence[Effect]) -> None:
        self._effects: List[Effect] = [e for e in effects if e.enabled]

    def active_of(self, kind: EffectKind, timeline_ms: float) -> Optional[Effect]:
        best: Optional[Effect] = None
        for effect in self._effects:
            if effect.kind is not kind or not effect.contains(timeline_ms):
                continue
            if best is None or effect.start_time >= best.start_time:
                best = effect
        return best

    def active_zoom(self, timeline_ms: float) -> Optional[Effect]:
        return self.active_of(EffectKind.ZOOM, timeline_ms)


# ── Physics state ───────────────────────────────────────────────────


@dataclass
class CameraPhysicsState:
    """Spring state carried from frame to frame.

    This is the whole of the camera's memory: a snapshot of it at a
    chunk boundary is enough to resume evaluation there.
    """
    x: float = 0.5
    y: float = 0.5
    vx: float = 0.0
    vy: float = 0.0
    last_timeline_ms: Optional[float] = None
    last_source_ms: Optional[float] = None
    # Set while the pointer rests under zoom
    cursor_stopped_at_ms: Optional[float] = None
    frozen_target_x: Optional[float] = None
    frozen_target_y: Optional[float] = None

    @property
    def frozen(self) -> bool:
        return self.frozen_target_x is not None and self.frozen_target_y is not None

    def snapshot(self) -> "CameraPhysicsState":
        return CameraPhysicsState(**asdict(self))

    def reset(self, x: float = 0.5, y: float = 0.5) -> None:
        self.x, self.y = x, y
        self.vx = self.vy = 0.0
        self.last_timeline_ms = None
        self.last_source_ms = None
        self.release()

    def release(self) -> None:
        """Forget any pointer-rest freeze."""
        self.cursor_stopped_at_ms = None
        self.frozen_target_x = None
        self.frozen_target_y = None

    def to_dict(self) -> dict:
        return {
            "x": self.x,
            "y": self.y,
            "vx": self.vx,
            "vy": self.vy,
            "lastTimelineMs": self.last_timeline_ms,
            "lastSourceMs": self.last_source_ms,
            "cursorStoppedAtMs": self.cursor_stopped_at_ms,
            "frozenTargetX": self.frozen_target_x,
            "frozenTargetY": self.frozen_target_y,
        }

    @staticmethod
    def from_dict(d: dict) -> "CameraPhysicsState":
        return CameraPhysicsState(
            x=d["x"],
            y=d["y"],
            vx=d.get("vx", 0.0),
            vy=d.get("vy", 0.0),
            last_timeline_ms=d.get("lastTimelineMs"),
            last_source_ms=d.get("lastSourceMs"),
            cursor_stopped_at_ms=d.get("cursorStoppedAtMs"),
            frozen_target_x=d.get("frozenTargetX"),
            frozen_target_y=d.get("frozenTargetY"),
        )


@dataclass
class CameraOutput:
    zoom_center: Tuple[float, float]
    zoom_scale: float
    phase: ZoomPhase
    effect_id: Optional[str] = None


# ── Target shaping ──────────────────────────────────────────────────


def half_window(scale: float) -> float:
    """Half the visible extent, as a fraction of the capture."""
    if scale <= 1.001:
        return 0.5
    return 0.5 / scale


def dead_zone_ratio(scale: float) -> float:
    """Dead-zone size relative to the view; narrows as zoom increases."""
    if scale <= DEAD_ZONE_START_SCALE:
        return DEAD_ZONE_RATIO
    t = min(1.0, (scale - DEAD_ZONE_START_SCALE) / (DEAD_ZONE_END_SCALE - DEAD_ZONE_START_SCALE))
    return DEAD_ZONE_RATIO + (MIN_DEAD_ZONE_RATIO - DEAD_ZONE_RATIO) * t


def edge_resist(c: float) -> float:
    """Compress cursor travel inside the edge band."""
    if c < EDGE_BAND:
        return EDGE_BAND - (EDGE_BAND - c) * EDGE_RESISTANCE
    if c > 1.0 - EDGE_BAND:
        return 1.0 - EDGE_BAND + (c - (1.0 - EDGE_BAND)) * EDGE_RESISTANCE
    return c


def clamp_center(c: float, half: float) -> float:
    """Keep the view inside the capture."""
    return min(max(c, half), 1.0 - half)


def _follow_axis(cursor: float, center: float, half: float, scale: float) -> float:
    dz = half * dead_zone_ratio(scale)
    d = cursor - center
    if abs(d) <= dz:
        target = center + d * SOFT_FOLLOW
    elif d < 0:
        target = cursor + dz
    else:
        target = cursor - dz
    return clamp_center(target, half)


def _keep_visible(center: float, cursor: float, half: float) -> float:
    """Nudge *center* so the cursor is inside the view, then clamp."""
    lo = max(cursor - half, half)
    hi = min(cursor + half, 1.0 - half)
    if lo > hi:
        return clamp_center(center, half)
    return min(max(center, lo), hi)


# ── Calculator ──────────────────────────────────────────────────────


class CameraCalculator:
    """Advances a :class:`CameraPhysicsState` one evaluation at a time.

    The calculator holds only constants; all mutable state lives in the
    state object passed to :meth:`compute`, so one calculator can serve
    many concurrent evaluators.
    """

    def __init__(
        self,
        tension: float = SPRING_TENSION,
        friction: float = SPRING_FRICTION,
        substep_ms: float = SUBSTEP_MS,
    ) -> None:
        self.tension = tension
        self.friction = friction
        self.substep_ms = substep_ms

    def compute(
        self,
        index: EffectIndex,
        timeline_ms: float,
        source_ms: float,
        trace: Optional[MouseTrace],
        state: CameraPhysicsState,
        wall_dt_ms: Optional[float] = None,
    ) -> CameraOutput:
        """Advance *state* to *timeline_ms* and return the camera output.

        Pass *wall_dt_ms* for continuous (preview) mode; leave it
        ``None`` for deterministic (export) mode.
        """
        effect = index.active_zoom(timeline_ms)
        phase = zoom_phase(effect, timeline_ms)

        if trace is None or len(trace) == 0:
            state.reset(*NEUTRAL_CENTER)
            state.last_timeline_ms = timeline_ms
            state.last_source_ms = source_ms
            return CameraOutput(NEUTRAL_CENTER, 1.0, ZoomPhase.IDLE)

        scale = zoom_scale(effect, timeline_ms)
        half = half_window(scale)

        cursor = trace.normalized_attractor_at(source_ms) or NEUTRAL_CENTER
        pointer = trace.normalized_position_at(source_ms, cinematic=True) or NEUTRAL_CENTER
        follow_mouse = effect is None or effect.data.follow_strategy is FollowStrategy.MOUSE
        target = self._target(effect, trace, source_ms, cursor, state, half, scale, follow_mouse)

        frozen = None
        if follow_mouse:
            frozen = self._stop_freeze(state, trace, source_ms, scale, cursor)
            if frozen is not None:
                target = frozen

        self._advance(state, target, timeline_ms, source_ms, wall_dt_ms, frozen is not None)

        if follow_mouse and frozen is None:
            x = _keep_visible(state.x, pointer[0], half)
            y = _keep_visible(state.y, pointer[1], half)
        else:
            x = clamp_center(state.x, half)
            y = clamp_center(state.y, half)
        state.x, state.y = x, y

        return CameraOutput(
            zoom_center=(x, y),
            zoom_scale=scale,
            phase=phase,
            effect_id=effect.id if effect is not None else None,
        )

    def _target(
        self,
        effect: Optional[Effect],
        trace: MouseTrace,
        source_ms: float,
        cursor: Tuple[float, float],
        state: CameraPhysicsState,
        half: float,
        scale: float,
        follow_mouse: bool,
    ) -> Tuple[float, float]:
        if not follow_mouse:
            data: ZoomEffectData = effect.data
            if data.target_x is not None and data.target_y is not None:
                cw, ch = trace.dimensions_at(source_ms)
                sw = data.screen_width or cw
                sh = data.screen_height or ch
                return (clamp_center(data.target_x / sw, half),
                        clamp_center(data.target_y / sh, half))
            # Fixed zoom with no stored point holds the current centre
            return clamp_center(state.x, half), clamp_center(state.y, half)

        cx = edge_resist(cursor[0])
        cy = edge_resist(cursor[1])
        return (_follow_axis(cx, state.x, half, scale),
                _follow_axis(cy, state.y, half, scale))

    @staticmethod
    def _stop_freeze(
        state: CameraPhysicsState,
        trace: MouseTrace,
        source_ms: float,
        scale: float,
        cursor: Tuple[float, float],
    ) -> Optional[Tuple[float, float]]:
        """Held target while the pointer rests under zoom, else ``None``.

        Once the pointer has been still for ``CURSOR_STOP_DWELL_MS`` the
        target locks onto the cursor so sub-pixel tremor cannot shake
        the view.  The lock holds until the pointer clearly moves again.
        """
        velocity, stopped_since = trace.velocity_at(source_ms)

        if scale >= CURSOR_STOP_MIN_ZOOM and velocity < CURSOR_STOP_VELOCITY:
            if state.cursor_stopped_at_ms is None:
                state.cursor_stopped_at_ms = (
                    stopped_since if stopped_since is not None else source_ms)
            if source_ms - state.cursor_stopped_at_ms < CURSOR_STOP_DWELL_MS:
                return None
            if not state.frozen:
                state.frozen_target_x, state.frozen_target_y = cursor
            return state.frozen_target_x, state.frozen_target_y

        if state.frozen and velocity < CURSOR_STOP_VELOCITY * CURSOR_STOP_UNFREEZE:
            return state.frozen_target_x, state.frozen_target_y

        state.release()
        return None

    def _advance(
        self,
        state: CameraPhysicsState,
        target: Tuple[float, float],
        timeline_ms: float,
        source_ms: float,
        wall_dt_ms: Optional[float],
        frozen: bool = False,
    ) -> None:
        last_t = state.last_timeline_ms
        last_s = state.last_source_ms
        state.last_timeline_ms = timeline_ms
        state.last_source_ms = source_ms

        if last_t is None:
            self._snap(state, target)
            return

        dt_timeline = timeline_ms - last_t
        if wall_dt_ms is None:
            seek = dt_timeline < 0 or dt_timeline > SEEK_THRESHOLD_MS
            dt = dt_timeline
        else:
            seek = dt_timeline < 0 or dt_timeline > max(wall_dt_ms, 0.0) + SEEK_THRESHOLD_MS
            dt = min(max(wall_dt_ms, 0.0), MAX_DT_MS)
        if seek:
            self._snap(state, target)
            state.release()
            return
        if dt <= 0:
            return

        rate = 1.0
        if dt_timeline > 1.0 and last_s is not None:
            rate = (source_ms - last_s) / dt_timeline
        rate = min(MAX_RATE, max(MIN_RATE, rate))
        self._integrate(state, target, dt, rate, frozen)

        if not all(math.isfinite(v) for v in (state.x, state.y, state.vx, state.vy)):
            logger.warning("Camera spring diverged at %.1fms; snapping to target", timeline_ms)
            self._snap(state, target)

    @staticmethod
    def _snap(state: CameraPhysicsState, target: Tuple[float, float]) -> None:
        state.x, state.y = target
        state.vx = state.vy = 0.0

    def _integrate(
        self,
        state: CameraPhysicsState,
        target: Tuple[float, float],
        dt_ms: float,
        rate: float,
        frozen: bool = False,
    ) -> None:
        """Semi-implicit Euler over equal substeps no longer than ``substep_ms``.

        A frozen target gets heavier friction, a velocity cut and a snap
        once within ``CURSOR_STOP_SNAP`` so the view settles dead still.
        """
        tension = self.tension * rate
        if frozen:
            friction = self.friction / CURSOR_STOP_DAMPING
        else:
            friction = self.friction * math.sqrt(rate)
        steps = max(1, int(math.ceil(dt_ms / self.substep_ms)))
        h = dt_ms / steps / 1000.0
        tx, ty = target
        x, y, vx, vy = state.x, state.y, state.vx, state.vy
        for _ in range(steps):
            vx += ((tx - x) * tension - vx * friction) * h
            vy += ((ty - y) * tension - vy * friction) * h
            x += vx * h
            y += vy * h
        if frozen:
            vx *= CURSOR_STOP_DAMPING
            vy *= CURSOR_STOP_DAMPING
            if math.hypot(tx - x, ty - y) < CURSOR_STOP_SNAP:
                x, y = tx, ty
                vx = vy = 0.0
        state.x, state.y, state.vx, state.vy = x, y, vx, vy
