"""Tests for timeline_fx.models — validation and JSON serialization."""

import json

import pytest

from timeline_fx.errors import ClipValidationError, TimelineValidationError
from timeline_fx.models import (
    BackgroundEffectData,
    Clip,
    ClickEvent,
    CursorEffectData,
    CursorStyle,
    DEFAULT_FPS,
    Effect,
    EffectKind,
    FollowStrategy,
    KeyEvent,
    MouseEvent,
    Project,
    Recording,
    TimeRemapPeriod,
    Track,
    ZoomEffectData,
)


# ── Events ──────────────────────────────────────────────────────────


class TestEvents:
    def test_mouse_event_optional_capture_size(self) -> None:
        d = MouseEvent(timestamp=1, x=2, y=3).to_dict()
        assert set(d.keys()) == {"timestamp", "x", "y"}
        d = MouseEvent(timestamp=1, x=2, y=3, capture_width=800, capture_height=600).to_dict()
        assert d["captureWidth"] == 800
        assert MouseEvent.from_dict(d).capture_height == 600

    def test_mouse_event_cursor_type(self) -> None:
        d = MouseEvent(timestamp=1, x=2, y=3, cursor_type="pointer").to_dict()
        assert d["cursorType"] == "pointer"
        assert MouseEvent.from_dict(d).cursor_type == "pointer"
        assert MouseEvent.from_dict({"timestamp": 1, "x": 2, "y": 3}).cursor_type is None

    def test_key_event_modifiers(self) -> None:
        ke = KeyEvent.from_dict({"timestamp": 5, "key": "c", "modifiers": ["cmd"]})
        assert ke.modifiers == ["cmd"]
        assert "modifiers" not in KeyEvent(timestamp=5, key="c").to_dict()

    def test_recording_sorts_events(self) -> None:
        rec = Recording(
            id="r", width=100, height=100, duration=100,
            mouse_events=[MouseEvent(20, 1, 1), MouseEvent(10, 0, 0)],
            click_events=[ClickEvent(50, 0, 0), ClickEvent(5, 0, 0)],
        )
        assert [m.timestamp for m in rec.mouse_events] == [10, 20]
        assert [c.timestamp for c in rec.click_events] == [5, 50]


# ── Clip ────────────────────────────────────────────────────────────


class TestClip:
    def test_default_source_range(self) -> None:
        clip = Clip(id="c", recording_id="r", start_time=0, duration=4000, playback_rate=2.0)
        assert clip.resolved_source_in == 0.0
        assert clip.resolved_source_out == 8000.0

    def test_explicit_source_range(self) -> None:
        clip = Clip(id="c", recording_id="r", start_time=0, duration=1000,
                    source_in=500, source_out=1500)
        assert clip.resolved_source_in == 500
        assert clip.resolved_source_out == 1500

    @pytest.mark.parametrize("duration", [0, -10])
    def test_non_positive_duration_rejected(self, duration: float) -> None:
        with pytest.raises(ClipValidationError):
            Clip(id="c", recording_id="r", start_time=0, duration=duration).validate()

    def test_empty_source_range_rejected(self) -> None:
        clip = Clip(id="c", recording_id="r", start_time=0, duration=1000,
                    source_in=500, source_out=500)
        with pytest.raises(ClipValidationError):
            clip.validate()

    def test_validation_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            Clip(id="c", recording_id="r", start_time=0, duration=0).validate()

    def test_valid_remap_periods(self) -> None:
        clip = Clip(
            id="c", recording_id="r", start_time=0, duration=9000,
            source_in=0, source_out=10000,
            time_remap_periods=[
                TimeRemapPeriod(0, 2000, 1.0),
                TimeRemapPeriod(2000, 4000, 2.0),
                TimeRemapPeriod(4000, 10000, 1.0),
            ],
        )
        clip.validate()

    def test_remap_gap_rejected(self) -> None:
        clip = Clip(
            id="c", recording_id="r", start_time=0, duration=8000,
            source_in=0, source_out=10000,
            time_remap_periods=[TimeRemapPeriod(0, 2000, 1.0), TimeRemapPeriod(4000, 10000, 1.0)],
        )
        with pytest.raises(ClipValidationError, match="gap or overlap"):
            clip.validate()

    def test_remap_duration_mismatch_rejected(self) -> None:
        clip = Clip(
            id="c", recording_id="r", start_time=0, duration=10000,
            source_in=0, source_out=10000,
            time_remap_periods=[TimeRemapPeriod(0, 10000, 2.0)],
        )
        with pytest.raises(ClipValidationError, match="does not match duration"):
            clip.validate()

    def test_roundtrip(self) -> None:
        clip = Clip(
            id="c", recording_id="r", start_time=100, duration=1000,
            source_in=0, source_out=2000,
            time_remap_periods=[TimeRemapPeriod(0, 2000, 2.0)],
            typing_speed_applied=True,
        )
        clip2 = Clip.from_dict(clip.to_dict())
        assert clip2 == clip

    def test_with_updates_does_not_mutate(self) -> None:
        clip = Clip(id="c", recording_id="r", start_time=0, duration=1000)
        moved = clip.with_updates(start_time=500)
        assert clip.start_time == 0
        assert moved.start_time == 500


# ── Track ───────────────────────────────────────────────────────────


class TestTrack:
    def test_sorted_on_construction(self) -> None:
        a = Clip(id="a", recording_id="r", start_time=1000, duration=500)
        b = Clip(id="b", recording_id="r", start_time=0, duration=500)
        track = Track(id="t", clips=[a, b])
        assert [c.id for c in track.clips] == ["b", "a"]

    def test_overlap_rejected(self) -> None:
        a = Clip(id="a", recording_id="r", start_time=0, duration=1000)
        b = Clip(id="b", recording_id="r", start_time=500, duration=1000)
        with pytest.raises(TimelineValidationError, match="overlaps"):
            Track(id="t", clips=[a, b]).validate()

    def test_lookup(self) -> None:
        a = Clip(id="a", recording_id="r", start_time=0, duration=1000)
        track = Track(id="t", clips=[a])
        assert track.clip("a") is a
        assert track.clip("zzz") is None


# ── Effects ─────────────────────────────────────────────────────────


class TestEffects:
    def test_zoom_defaults(self) -> None:
        data = ZoomEffectData()
        assert data.scale == 2.0
        assert data.intro_ms == 300
        assert data.outro_ms == 300
        assert data.follow_strategy is FollowStrategy.MOUSE

    def test_cursor_defaults(self) -> None:
        data = CursorEffectData()
        assert data.style is CursorStyle.MACOS
        assert data.size == 4.0
        assert data.idle_timeout == 3000
        assert data.gliding is True
        assert data.speed == pytest.approx(0.2)
        assert data.smoothness == pytest.approx(0.85)

    @pytest.mark.parametrize("kind, data", [
        (EffectKind.ZOOM, ZoomEffectData(scale=1.5, target_x=10, target_y=20,
                                         follow_strategy=FollowStrategy.FIXED)),
        (EffectKind.CURSOR, CursorEffectData(size=2.0, hide_on_idle=False)),
        (EffectKind.BACKGROUND, BackgroundEffectData(padding=40)),
    ])
    def test_roundtrip_dispatches_on_kind(self, kind: EffectKind, data) -> None:
        effect = Effect(id="e", kind=kind, start_time=0, end_time=1000, data=data)
        d = effect.to_dict()
        assert d["type"] == kind.value
        assert Effect.from_dict(d) == effect

    def test_contains_half_open(self) -> None:
        effect = Effect.zoom(1000, 2000)
        assert not effect.contains(999)
        assert effect.contains(1000)
        assert not effect.contains(2000)

    def test_disabled_never_contains(self) -> None:
        effect = Effect.zoom(0, 2000)
        effect.enabled = False
        assert not effect.contains(500)


# ── Project ─────────────────────────────────────────────────────────


class TestProject:
    def test_json_roundtrip(self, effects_project: Project) -> None:
        s = effects_project.to_json()
        data = json.loads(s)
        assert data["fps"] == 60
        p2 = Project.from_json(s)
        assert p2.id == effects_project.id
        assert p2.tracks[0].clips[0] == effects_project.tracks[0].clips[0]
        assert p2.effects == effects_project.effects
        assert len(p2.recordings[0].mouse_events) == len(effects_project.recordings[0].mouse_events)

    def test_unknown_keys_ignored(self) -> None:
        s = json.dumps({"id": "p", "fps": 30, "futureField": {"x": 1}})
        p = Project.from_json(s)
        assert p.fps == 30
        assert p.tracks == []

    def test_default_fps(self) -> None:
        assert Project.from_json(json.dumps({"id": "p"})).fps == DEFAULT_FPS

    def test_validate_rejects_bad_fps(self) -> None:
        with pytest.raises(TimelineValidationError):
            Project(id="p", fps=0).validate()

    def test_recording_lookup(self, effects_project: Project) -> None:
        assert effects_project.recording("rec-wander") is not None
        assert effects_project.recording("missing") is None
