"""Core data models for CineTrack.

Defines the dataclasses shared by the timeline engine: recorded input
traces, clips with their source ranges and time-remap periods, tracks,
timeline effects, and the top-level project.  All models support JSON
serialization via ``to_dict()`` / ``from_dict()`` (or ``to_json()`` /
``from_json()`` for the project).  Keys are camelCase on disk and
unknown keys are ignored on load for forward compatibility.

The engine treats every model here as read-only.  Services that change
a clip (split, typing-speed remap, reflow) return new instances.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional
import json
import uuid

from .errors import ClipValidationError, TimelineValidationError


DEFAULT_FPS = 60
PERIOD_EPSILON_MS = 1e-6   # boundary tolerance between remap periods
DURATION_TOLERANCE_MS = 1.0  # allowed drift between duration and remap output


# ── Recorded input traces ──────────────────────────────────────────


@dataclass
class MouseEvent:
    """A single cursor sample in **capture pixels**.

    *timestamp* is ms on the recording's source axis.  The capture size
    may change mid-recording (display switch), so each sample can carry
    the dimensions it was captured at.
    """
    timestamp: float
    x: float
    y: float
    capture_width: Optional[float] = None
    capture_height: Optional[float] = None
    cursor_type: Optional[str] = None  # system cursor name, e.g. "pointer"

    def to_dict(self) -> dict:
        d = {"timestamp": self.timestamp, "x": self.x, "y": self.y}
        if self.capture_width is not None:
            d["captureWidth"] = self.capture_width
        if self.capture_height is not None:
            d["captureHeight"] = self.capture_height
        if self.cursor_type is not None:
            d["cursorType"] = self.cursor_type
        return d

    @staticmethod
    def from_dict(d: dict) -> "MouseEvent":
        return MouseEvent(
            timestamp=d["timestamp"],
            x=d["x"],
            y=d["y"],
            capture_width=d.get("captureWidth"),
            capture_height=d.get("captureHeight"),
            cursor_type=d.get("cursorType"),
        )


@dataclass
class ClickEvent:
    """A mouse click with position and timestamp."""
    timestamp: float
    x: float
    y: float
    button: str = "left"

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp, "x": self.x, "y": self.y,
                "button": self.button}

    @staticmethod
    def from_dict(d: dict) -> "ClickEvent":
        return ClickEvent(
            timestamp=d["timestamp"], x=d["x"], y=d["y"],
            button=d.get("button", "left"),
        )


@dataclass
class KeyEvent:
    """A keystroke.  *key* is the key name as reported by the capture hook."""
    timestamp: float
    key: str = ""
    modifiers: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        d = {"timestamp": self.timestamp, "key": self.key}
        if self.modifiers:
            d["modifiers"] = list(self.modifiers)
        return d

    @staticmethod
    def from_dict(d: dict) -> "KeyEvent":
        return KeyEvent(
            timestamp=d["timestamp"],
            key=d.get("key", ""),
            modifiers=list(d.get("modifiers", [])),
        )


@dataclass
class ScrollEvent:
    timestamp: float
    delta_x: float = 0.0
    delta_y: float = 0.0

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp, "deltaX": self.delta_x,
                "deltaY": self.delta_y}

    @staticmethod
    def from_dict(d: dict) -> "ScrollEvent":
        return ScrollEvent(
            timestamp=d["timestamp"],
            delta_x=d.get("deltaX", 0.0),
            delta_y=d.get("deltaY", 0.0),
        )


@dataclass
class Recording:
    """Everything captured for one source recording.

    Event lists are sorted by timestamp on construction so lookups can
    binary-search them.
    """
    id: str
    width: float
    height: float
    duration: float
    mouse_events: List[MouseEvent] = field(default_factory=list)
    click_events: List[ClickEvent] = field(default_factory=list)
    key_events: List[KeyEvent] | None = None
    scroll_events: List[ScrollEvent] | None = None

    def __post_init__(self) -> None:
        self.mouse_events.sort(key=lambda m: m.timestamp)
        self.click_events.sort(key=lambda c: c.timestamp)
        if self.key_events:
            self.key_events.sort(key=lambda k: k.timestamp)

    def to_dict(self) -> dict:
        d = {
            "id": self.id,
            "width": self.width,
            "height": self.height,
            "duration": self.duration,
            "mouseEvents": [m.to_dict() for m in self.mouse_events],
            "clickEvents": [c.to_dict() for c in self.click_events],
        }
        if self.key_events:
            d["keyEvents"] = [k.to_dict() for k in self.key_events]
        if self.scroll_events:
            d["scrollEvents"] = [s.to_dict() for s in self.scroll_events]
        return d

    @staticmethod
    def from_dict(d: dict) -> "Recording":
        key_events = None
        if "keyEvents" in d:
            key_events = [KeyEvent.from_dict(k) for k in d["keyEvents"]]
        scroll_events = None
        if "scrollEvents" in d:
            scroll_events = [ScrollEvent.from_dict(s) for s in d["scrollEvents"]]
        return Recording(
            id=d["id"],
            width=d["width"],
            height=d["height"],
            duration=d["duration"],
            mouse_events=[MouseEvent.from_dict(m) for m in d.get("mouseEvents", [])],
            click_events=[ClickEvent.from_dict(c) for c in d.get("clickEvents", [])],
            key_events=key_events,
            scroll_events=scroll_events,
        )


# ── Clips and tracks ───────────────────────────────────────────────


@dataclass
class TimeRemapPeriod:
    """A source span played back at *speed_multiplier*.

    Output (clip-local) duration is ``(end - start) / speed_multiplier``.
    """
    source_start_time: float
    source_end_time: float
    speed_multiplier: float

    @property
    def source_duration(self) -> float:
        return self.source_end_time - self.source_start_time

    @property
    def output_duration(self) -> float:
        return self.source_duration / self.speed_multiplier

    def to_dict(self) -> dict:
        return {
            "sourceStartTime": self.source_start_time,
            "sourceEndTime": self.source_end_time,
            "speedMultiplier": self.speed_multiplier,
        }

    @staticmethod
    def from_dict(d: dict) -> "TimeRemapPeriod":
        return TimeRemapPeriod(
            source_start_time=d["sourceStartTime"],
            source_end_time=d["sourceEndTime"],
            speed_multiplier=d["speedMultiplier"],
        )


@dataclass
class Clip:
    """A span of one recording placed on the timeline.

    *start_time* and *duration* are timeline milliseconds.  *source_in* /
    *source_out* bound the span on the recording's source axis; when
    omitted they default to ``0`` and ``source_in + duration * playback_rate``.
    With *time_remap_periods* set, the periods (not *playback_rate*)
    define the local-to-source mapping.
    """
    id: str
    recording_id: str
    start_time: float
    duration: float
    source_in: Optional[float] = None
    source_out: Optional[float] = None
    playback_rate: float = 1.0
    time_remap_periods: List[TimeRemapPeriod] | None = None
    typing_speed_applied: bool = False

    @staticmethod
    def create(
        recording_id: str,
        start_time: float,
        duration: float,
        source_in: Optional[float] = None,
        source_out: Optional[float] = None,
        playback_rate: float = 1.0,
    ) -> "Clip":
        """Factory that auto-generates a UUID for the clip."""
        return Clip(
            id=str(uuid.uuid4()),
            recording_id=recording_id,
            start_time=start_time,
            duration=duration,
            source_in=source_in,
            source_out=source_out,
            playback_rate=playback_rate,
        )

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    @property
    def resolved_source_in(self) -> float:
        return self.source_in if self.source_in is not None else 0.0

    @property
    def resolved_source_out(self) -> float:
        if self.source_out is not None:
            return self.source_out
        return self.resolved_source_in + self.duration * self.playback_rate

    def with_updates(self, **changes) -> "Clip":
        """Return a copy with *changes* applied (the clip itself is never mutated)."""
        return replace(self, **changes)

    def validate(self) -> None:
        """Raise :class:`ClipValidationError` if the clip is unusable."""
        if not self.duration > 0:
            raise ClipValidationError(self.id, f"duration must be positive, got {self.duration}")
        if not self.playback_rate > 0:
            raise ClipValidationError(
                self.id, f"playback rate must be positive, got {self.playback_rate}")
        src_in = self.resolved_source_in
        src_out = self.resolved_source_out
        if not src_out > src_in:
            raise ClipValidationError(
                self.id, f"source range [{src_in}, {src_out}] is empty")
        if self.time_remap_periods:
            self._validate_periods(src_in, src_out)

    def _validate_periods(self, src_in: float, src_out: float) -> None:
        periods = self.time_remap_periods or []
        cursor = src_in
        total = 0.0
        for p in periods:
            if not p.speed_multiplier > 0:
                raise ClipValidationError(
                    self.id, f"remap speed must be positive, got {p.speed_multiplier}")
            if abs(p.source_start_time - cursor) > PERIOD_EPSILON_MS:
                raise ClipValidationError(
                    self.id, f"remap periods leave a gap or overlap at {cursor}ms")
            if not p.source_end_time > p.source_start_time:
                raise ClipValidationError(
                    self.id, f"remap period at {p.source_start_time}ms is empty")
            cursor = p.source_end_time
            total += p.output_duration
        if abs(cursor - src_out) > PERIOD_EPSILON_MS:
            raise ClipValidationError(
                self.id, f"remap periods end at {cursor}ms, source ends at {src_out}ms")
        if abs(total - self.duration) > DURATION_TOLERANCE_MS:
            raise ClipValidationError(
                self.id, f"remap output {total:.3f}ms does not match duration {self.duration}ms")

    def to_dict(self) -> dict:
        d = {
            "id": self.id,
            "recordingId": self.recording_id,
            "startTime": self.start_time,
            "duration": self.duration,
            "playbackRate": self.playback_rate,
        }
        if self.source_in is not None:
            d["sourceIn"] = self.source_in
        if self.source_out is not None:
            d["sourceOut"] = self.source_out
        if self.time_remap_periods:
            d["timeRemapPeriods"] = [p.to_dict() for p in self.time_remap_periods]
        if self.typing_speed_applied:
            d["typingSpeedApplied"] = True
        return d

    @staticmethod
    def from_dict(d: dict) -> "Clip":
        periods = None
        if d.get("timeRemapPeriods"):
            periods = [TimeRemapPeriod.from_dict(p) for p in d["timeRemapPeriods"]]
        return Clip(
            id=d["id"],
            recording_id=d["recordingId"],
            start_time=d["startTime"],
            duration=d["duration"],
            source_in=d.get("sourceIn"),
            source_out=d.get("sourceOut"),
            playback_rate=d.get("playbackRate", 1.0),
            time_remap_periods=periods,
            typing_speed_applied=d.get("typingSpeedApplied", False),
        )


@dataclass
class Track:
    """An ordered lane of non-overlapping clips."""
    id: str
    clips: List[Clip] = field(default_factory=list)
    name: str = ""

    def __post_init__(self) -> None:
        self.clips.sort(key=lambda c: c.start_time)

    def clip(self, clip_id: str) -> Optional[Clip]:
        for c in self.clips:
            if c.id == clip_id:
                return c
        return None

    def validate(self) -> None:
        prev: Optional[Clip] = None
        for c in self.clips:
            c.validate()
            if prev is not None and c.start_time < prev.end_time - PERIOD_EPSILON_MS:
                raise TimelineValidationError(
                    f"track {self.id!r}: clip {c.id!r} overlaps {prev.id!r}")
            prev = c

    def to_dict(self) -> dict:
        d = {"id": self.id, "clips": [c.to_dict() for c in self.clips]}
        if self.name:
            d["name"] = self.name
        return d

    @staticmethod
    def from_dict(d: dict) -> "Track":
        return Track(
            id=d["id"],
            clips=[Clip.from_dict(c) for c in d.get("clips", [])],
            name=d.get("name", ""),
        )


# ── Effects ────────────────────────────────────────────────────────


class EffectKind(Enum):
    ZOOM = "zoom"
    CURSOR = "cursor"
    BACKGROUND = "background"


class FollowStrategy(Enum):
    FIXED = "fixed"   # hold the stored target point
    MOUSE = "mouse"   # track the recorded cursor


class CursorStyle(Enum):
    MACOS = "macOS"
    WINDOWS = "windows"
    CUSTOM = "custom"


@dataclass
class ZoomEffectData:
    """Zoom parameters.  *target_x* / *target_y* are pixels in a
    ``screen_width`` x ``screen_height`` space and only matter for
    :attr:`FollowStrategy.FIXED`."""
    scale: float = 2.0
    target_x: Optional[float] = None
    target_y: Optional[float] = None
    screen_width: Optional[float] = None
    screen_height: Optional[float] = None
    intro_ms: float = 300.0
    outro_ms: float = 300.0
    follow_strategy: FollowStrategy = FollowStrategy.MOUSE

    def to_dict(self) -> dict:
        d = {
            "scale": self.scale,
            "introMs": self.intro_ms,
            "outroMs": self.outro_ms,
            "followStrategy": self.follow_strategy.value,
        }
        for key, value in (("targetX", self.target_x), ("targetY", self.target_y),
                           ("screenWidth", self.screen_width),
                           ("screenHeight", self.screen_height)):
            if value is not None:
                d[key] = value
        return d

    @staticmethod
    def from_dict(d: dict) -> "ZoomEffectData":
        return ZoomEffectData(
            scale=d.get("scale", 2.0),
            target_x=d.get("targetX"),
            target_y=d.get("targetY"),
            screen_width=d.get("screenWidth"),
            screen_height=d.get("screenHeight"),
            intro_ms=d.get("introMs", 300.0),
            outro_ms=d.get("outroMs", 300.0),
            follow_strategy=FollowStrategy(d.get("followStrategy", "mouse")),
        )


@dataclass
class CursorEffectData:
    """Cursor overlay settings.

    *speed* (0–1) and *smoothness* (0–1) shape the gliding filter;
    *idle_timeout* is ms without movement before the cursor hides.
    """
    style: CursorStyle = CursorStyle.MACOS
    size: float = 4.0
    color: str = "#ffffff"
    click_effects: bool = True
    motion_blur: bool = True
    hide_on_idle: bool = True
    idle_timeout: float = 3000.0
    gliding: bool = True
    speed: float = 0.2
    smoothness: float = 0.85

    def to_dict(self) -> dict:
        return {
            "style": self.style.value,
            "size": self.size,
            "color": self.color,
            "clickEffects": self.click_effects,
            "motionBlur": self.motion_blur,
            "hideOnIdle": self.hide_on_idle,
            "idleTimeout": self.idle_timeout,
            "gliding": self.gliding,
            "speed": self.speed,
            "smoothness": self.smoothness,
        }

    @staticmethod
    def from_dict(d: dict) -> "CursorEffectData":
        return CursorEffectData(
            style=CursorStyle(d.get("style", "macOS")),
            size=d.get("size", 4.0),
            color=d.get("color", "#ffffff"),
            click_effects=d.get("clickEffects", True),
            motion_blur=d.get("motionBlur", True),
            hide_on_idle=d.get("hideOnIdle", True),
            idle_timeout=d.get("idleTimeout", 3000.0),
            gliding=d.get("gliding", True),
            speed=d.get("speed", 0.2),
            smoothness=d.get("smoothness", 0.85),
        )


DEFAULT_CURSOR_DATA = CursorEffectData()


@dataclass
class BackgroundEffectData:
    """Canvas padding around the recording; passed through to the renderer."""
    padding: float = 60.0
    corner_radius: float = 15.0
    color: str = "#000000"

    def to_dict(self) -> dict:
        return {"padding": self.padding, "cornerRadius": self.corner_radius,
                "color": self.color}

    @staticmethod
    def from_dict(d: dict) -> "BackgroundEffectData":
        return BackgroundEffectData(
            padding=d.get("padding", 60.0),
            corner_radius=d.get("cornerRadius", 15.0),
            color=d.get("color", "#000000"),
        )


EffectData = ZoomEffectData | CursorEffectData | BackgroundEffectData


def _data_from_dict(kind: EffectKind, d: dict) -> EffectData:
    if kind is EffectKind.ZOOM:
        return ZoomEffectData.from_dict(d)
    if kind is EffectKind.CURSOR:
        return CursorEffectData.from_dict(d)
    return BackgroundEffectData.from_dict(d)


@dataclass
class Effect:
    """A timeline effect active over ``[start_time, end_time)`` (timeline ms)."""
    id: str
    kind: EffectKind
    start_time: float
    end_time: float
    data: EffectData
    enabled: bool = True

    @staticmethod
    def zoom(start_time: float, end_time: float, **kwargs) -> "Effect":
        """Factory for a zoom effect; *kwargs* go to :class:`ZoomEffectData`."""
        return Effect(
            id=str(uuid.uuid4()),
            kind=EffectKind.ZOOM,
            start_time=start_time,
            end_time=end_time,
            data=ZoomEffectData(**kwargs),
        )

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def contains(self, timeline_ms: float) -> bool:
        return self.enabled and self.start_time <= timeline_ms < self.end_time

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.kind.value,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "enabled": self.enabled,
            "data": self.data.to_dict(),
        }

    @staticmethod
    def from_dict(d: dict) -> "Effect":
        kind = EffectKind(d["type"])
        return Effect(
            id=d["id"],
            kind=kind,
            start_time=d["startTime"],
            end_time=d["endTime"],
            data=_data_from_dict(kind, d.get("data", {})),
            enabled=d.get("enabled", True),
        )


# ── Project ─────────────────────────────────────────────────────────


@dataclass
class Project:
    """Top-level container: tracks, effects and the recordings they use."""
    id: str
    fps: int = DEFAULT_FPS
    tracks: List[Track] = field(default_factory=list)
    recordings: List[Recording] = field(default_factory=list)
    effects: List[Effect] = field(default_factory=list)

    def recording(self, recording_id: str) -> Optional[Recording]:
        for r in self.recordings:
            if r.id == recording_id:
                return r
        return None

    def effects_of(self, kind: EffectKind) -> List[Effect]:
        return [e for e in self.effects if e.kind is kind]

    def validate(self) -> None:
        if not self.fps > 0:
            raise TimelineValidationError(f"fps must be positive, got {self.fps}")
        for t in self.tracks:
            t.validate()

    def to_json(self) -> str:
        data = {
            "id": self.id,
            "fps": self.fps,
            "tracks": [t.to_dict() for t in self.tracks],
            "recordings": [r.to_dict() for r in self.recordings],
            "effects": [e.to_dict() for e in self.effects],
        }
        return json.dumps(data, indent=2)

    @staticmethod
    def from_json(s: str) -> "Project":
        d = json.loads(s)
        return Project(
            id=d["id"],
            fps=d.get("fps", DEFAULT_FPS),
            tracks=[Track.from_dict(t) for t in d.get("tracks", [])],
            recordings=[Recording.from_dict(r) for r in d.get("recordings", [])],
            effects=[Effect.from_dict(e) for e in d.get("effects", [])],
        )
