"""Per-frame evaluation: timeline frame in, render parameters out.

For a requested frame the evaluator finds the clip covering it in the
frame layout, maps the frame to source time, and runs the camera and
cursor calculators against that clip's recording.  The result is a
:class:`RenderParams` bundle for the compositor or encoder.

All state that carries from one frame to the next lives in an
:class:`EvaluatorSnapshot` owned by the caller.  Apart from a locked
set of recordings already reported missing, the evaluator is read-only
after construction, so export workers can share one.

Recording data is reached through a :class:`RecordingRegistry`, an
explicitly constructed service that memoises the per-recording trace
indexes for its own lifetime.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from .camera import CameraCalculator, CameraOutput, CameraPhysicsState, LinearEffectIndex, EffectIndex
from .cursor import CursorState, CursorType, calculate_cursor_state, hidden_state
from .errors import MissingRecordingError, TimelineValidationError
from .frame_layout import (
    FrameLayoutItem,
    build_frame_layout,
    find_layout_item,
    timeline_duration_frames,
)
from .models import BackgroundEffectData, CursorEffectData, EffectKind, Project, Recording
from .mouse_trace import MouseTrace
from .time_mapping import clip_relative_to_source

logger = logging.getLogger(__name__)


# ── Recording registry ──────────────────────────────────────────────


class RecordingRegistry:
    """Recordings by id plus lazily built :class:`MouseTrace` indexes.

    Create one per playback session or export run and pass it in; the
    cache is dropped with the registry.
    """

    def __init__(self, recordings: Optional[List[Recording]] = None) -> None:
        self._recordings: Dict[str, Recording] = {}
        self._traces: Dict[str, MouseTrace] = {}
        self._lock = threading.Lock()
        for r in recordings or []:
            self.add(r)

    def add(self, recording: Recording) -> None:
        with self._lock:
            self._recordings[recording.id] = recording
            self._traces.pop(recording.id, None)

    def __contains__(self, recording_id: str) -> bool:
        return recording_id in self._recordings

    def get(self, recording_id: str) -> Recording:
        try:
            return self._recordings[recording_id]
        except KeyError:
            raise MissingRecordingError(recording_id) from None

    def trace(self, recording_id: str) -> MouseTrace:
        """Memoised trace index for *recording_id*."""
        with self._lock:
            trace = self._traces.get(recording_id)
            if trace is None:
                trace = MouseTrace.from_recording(self.get(recording_id))
                self._traces[recording_id] = trace
        return trace

    def duration(self, recording_id: str) -> float:
        return self.get(recording_id).duration

    def clear(self) -> None:
        with self._lock:
            self._traces.clear()


# ── Snapshot and output bundle ──────────────────────────────────────


@dataclass
class EvaluatorSnapshot:
    """Everything carried between frames; small and serialisable."""
    camera: CameraPhysicsState = field(default_factory=CameraPhysicsState)
    cursor: Optional[CursorState] = None

    def copy(self) -> "EvaluatorSnapshot":
        cursor = None
        if self.cursor is not None:
            cursor = CursorState.from_dict(self.cursor.to_dict())
        return EvaluatorSnapshot(camera=self.camera.snapshot(), cursor=cursor)

    def to_dict(self) -> dict:
        d = {"camera": self.camera.to_dict()}
        if self.cursor is not None:
            d["cursor"] = self.cursor.to_dict()
        return d

    @staticmethod
    def from_dict(d: dict) -> "EvaluatorSnapshot":
        cursor = CursorState.from_dict(d["cursor"]) if d.get("cursor") else None
        return EvaluatorSnapshot(camera=CameraPhysicsState.from_dict(d["camera"]), cursor=cursor)


@dataclass
class RenderParams:
    """What the compositor needs to draw one frame.

    Positions are normalised 0–1 in capture space.  *source_time* is
    ``None`` for frames that fall in a gap between clips.
    """
    frame: int
    timeline_ms: float
    clip_id: Optional[str] = None
    source_time: Optional[float] = None
    zoom_center: Tuple[float, float] = (0.5, 0.5)
    zoom_scale: float = 1.0
    cursor_position: Tuple[float, float] = (0.5, 0.5)
    cursor_visible: bool = False
    cursor_opacity: float = 0.0
    cursor_scale: float = 1.0
    cursor_type: CursorType = CursorType.ARROW
    cursor_click_state: list = field(default_factory=list)
    motion_blur: Optional[float] = None
    background_padding: float = 0.0

    @property
    def click_active(self) -> bool:
        return bool(self.cursor_click_state)

    def to_dict(self) -> dict:
        return {
            "frame": self.frame,
            "timelineMs": self.timeline_ms,
            "clipId": self.clip_id,
            "sourceTime": self.source_time,
            "zoomCenter": {"x": self.zoom_center[0], "y": self.zoom_center[1]},
            "zoomScale": self.zoom_scale,
            "cursorPosition": {"x": self.cursor_position[0], "y": self.cursor_position[1]},
            "cursorVisible": self.cursor_visible,
            "cursorOpacity": self.cursor_opacity,
            "cursorScale": self.cursor_scale,
            "cursorType": self.cursor_type.value,
            "cursorClickState": {
                "active": self.click_active,
                "effects": [c.to_dict() for c in self.cursor_click_state],
            },
            "motionBlur": self.motion_blur,
            "backgroundPadding": self.background_padding,
        }


@dataclass
class _FrameStep:
    clip_id: str
    source_ms: float
    trace: Optional[MouseTrace]
    camera: CameraOutput
    cursor: CursorState


# ── Evaluator ───────────────────────────────────────────────────────


class TimelineEvaluator:
    """Evaluates one track of a project frame by frame."""

    def __init__(
        self,
        project: Project,
        registry: RecordingRegistry,
        track_id: Optional[str] = None,
        index: Optional[EffectIndex] = None,
        camera: Optional[CameraCalculator] = None,
    ) -> None:
        if not project.tracks:
            raise TimelineValidationError(f"project {project.id!r} has no tracks")
        track = project.tracks[0]
        if track_id is not None:
            track = next((t for t in project.tracks if t.id == track_id), None)
            if track is None:
                raise TimelineValidationError(f"track {track_id!r} not found")

        self.project = project
        self.fps = project.fps
        self.registry = registry
        self.layout: List[FrameLayoutItem] = build_frame_layout(track.clips, self.fps)
        self.index = index or LinearEffectIndex(project.effects)
        self.camera = camera or CameraCalculator()
        self._reported_missing: Set[str] = set()
        self._missing_lock = threading.Lock()

    @property
    def total_frames(self) -> int:
        return timeline_duration_frames(self.layout)

    def frame_to_ms(self, frame: int) -> float:
        return frame * 1000.0 / self.fps

    def ms_to_frame(self, timeline_ms: float) -> int:
        return int(timeline_ms * self.fps / 1000.0)

    def evaluate_frame(
        self,
        frame: int,
        snapshot: EvaluatorSnapshot,
        wall_dt_ms: Optional[float] = None,
    ) -> RenderParams:
        """Render parameters for *frame*; advances *snapshot* in place."""
        return self._evaluate(frame, self.frame_to_ms(frame), snapshot, wall_dt_ms)

    def evaluate_time(
        self,
        timeline_ms: float,
        snapshot: EvaluatorSnapshot,
        wall_dt_ms: Optional[float] = None,
    ) -> RenderParams:
        """Like :meth:`evaluate_frame` for an arbitrary timeline position."""
        return self._evaluate(self.ms_to_frame(timeline_ms), timeline_ms, snapshot, wall_dt_ms)

    def evaluate_range(self, start: int, end: int, snapshot: EvaluatorSnapshot) -> List[RenderParams]:
        """Frames ``[start, end)`` in order, deterministic mode."""
        return [self.evaluate_frame(f, snapshot) for f in range(start, end)]

    def advance_frame(self, frame: int, snapshot: EvaluatorSnapshot) -> None:
        """Move *snapshot* past *frame* without building render parameters.

        Leaves *snapshot* exactly as :meth:`evaluate_frame` would, at a
        fraction of the cost, for walking up to a chunk boundary.
        """
        self._step(frame, self.frame_to_ms(frame), snapshot, None, with_effects=False)

    # ── internal ────────────────────────────────────────────────────

    def _report_missing(self, recording_id: str) -> None:
        with self._missing_lock:
            if recording_id in self._reported_missing:
                return
            self._reported_missing.add(recording_id)
        logger.error("Recording %s is missing; rendering neutral state", recording_id)

    def _step(
        self,
        frame: int,
        timeline_ms: float,
        snapshot: EvaluatorSnapshot,
        wall_dt_ms: Optional[float],
        with_effects: bool = True,
    ) -> Optional[_FrameStep]:
        """Advance *snapshot* to *frame*.  ``None`` for a gap frame."""
        item = find_layout_item(self.layout, frame)
        if item is None:
            return None

        clip = item.clip
        local_ms = timeline_ms - self.frame_to_ms(item.start_frame)
        source_ms = clip_relative_to_source(local_ms, clip)

        try:
            trace: Optional[MouseTrace] = self.registry.trace(clip.recording_id)
        except MissingRecordingError:
            self._report_missing(clip.recording_id)
            trace = None

        cam = self.camera.compute(
            self.index, timeline_ms, source_ms, trace, snapshot.camera, wall_dt_ms)

        cursor_effect = self.index.active_of(EffectKind.CURSOR, timeline_ms)
        data: Optional[CursorEffectData] = cursor_effect.data if cursor_effect else None
        if trace is None:
            cursor = hidden_state(source_ms)
        else:
            cursor = calculate_cursor_state(
                data, trace, source_ms, snapshot.cursor, self.fps, wall_dt_ms, with_effects)
        snapshot.cursor = cursor
        return _FrameStep(clip.id, source_ms, trace, cam, cursor)

    def _evaluate(
        self,
        frame: int,
        timeline_ms: float,
        snapshot: EvaluatorSnapshot,
        wall_dt_ms: Optional[float],
    ) -> RenderParams:
        params = RenderParams(frame=frame, timeline_ms=timeline_ms)
        background = self.index.active_of(EffectKind.BACKGROUND, timeline_ms)
        if background is not None:
            bg: BackgroundEffectData = background.data
            params.background_padding = bg.padding

        step = self._step(frame, timeline_ms, snapshot, wall_dt_ms)
        if step is None:
            return params

        params.clip_id = step.clip_id
        params.source_time = step.source_ms
        params.zoom_center = step.camera.zoom_center
        params.zoom_scale = step.camera.zoom_scale

        cursor = step.cursor
        if step.trace is not None and cursor.visible:
            w, h = step.trace.dimensions_at(step.source_ms)
            params.cursor_position = (cursor.x / w, cursor.y / h)
        params.cursor_visible = cursor.visible
        params.cursor_opacity = cursor.opacity
        params.cursor_scale = cursor.scale
        params.cursor_type = cursor.cursor_type
        params.cursor_click_state = cursor.click_effects
        if cursor.motion_blur is not None:
            params.motion_blur = cursor.motion_blur.velocity
        return params
