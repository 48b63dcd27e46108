"""Tests for timeline_fx.cursor — gliding, idle fade and click ripples."""

import math

import pytest

from timeline_fx.cursor import (
    CLICK_MAX_OPACITY,
    CursorState,
    CursorType,
    calculate_cursor_state,
    click_effects_at,
    cursor_type_for,
    glide_tau_ms,
    idle_opacity,
)
from timeline_fx.models import ClickEvent, CursorEffectData, MouseEvent, Recording
from timeline_fx.mouse_trace import MouseTrace


def _run(data, trace, times, fps=60.0, previous=None):
    states = []
    for t in times:
        previous = calculate_cursor_state(data, trace, t, previous, fps)
        states.append(previous)
    return states


@pytest.fixture
def jittery_trace() -> MouseTrace:
    """Moves to (500, 500) over one second, then rests with ±1 px noise."""
    events = []
    for i in range(0, 3000, 16):
        t = float(i)
        if t < 1000:
            events.append(MouseEvent(t, 100.0 + 400.0 * t / 1000.0, 500.0))
        else:
            sign = 1.0 if (i // 16) % 2 else -1.0
            events.append(MouseEvent(t, 500.0 + sign, 500.0 - sign))
    return MouseTrace(events, width=1000, height=1000)


class TestGliding:
    def test_tau(self) -> None:
        assert glide_tau_ms(0.2, 0.85) == pytest.approx(8 + 100 * 0.85 * 0.8)
        assert glide_tau_ms(1.0, 1.0) == pytest.approx(8)
        assert glide_tau_ms(5.0, -1.0) == pytest.approx(8)

    def test_rest_jitter_suppressed(self, jittery_trace: MouseTrace) -> None:
        times = [i * 1000.0 / 60.0 for i in range(180)]
        states = _run(CursorEffectData(), jittery_trace, times)
        settled = [s for s, t in zip(states, times) if t >= 1500]
        xs = [s.x for s in settled]
        ys = [s.y for s in settled]
        assert max(xs) - min(xs) < 3.5
        assert max(ys) - min(ys) < 3.5
        assert all(abs(x - 500) < 3.5 for x in xs)

    def test_frame_rate_independent(self) -> None:
        trace = MouseTrace([MouseEvent(0, 100, 100), MouseEvent(1000, 100, 100)])
        start = CursorState(x=0.0, y=100.0, visible=True, opacity=1.0, last_time_ms=0.0)
        data = CursorEffectData()
        at60 = _run(data, trace, [i * 1000.0 / 60.0 for i in range(1, 7)], 60.0, start)[-1]
        at30 = _run(data, trace, [i * 1000.0 / 30.0 for i in range(1, 4)], 30.0, start)[-1]
        expected = 100.0 - 100.0 * math.exp(-100.0 / glide_tau_ms(data.speed, data.smoothness))
        assert at60.x == pytest.approx(expected)
        assert at30.x == pytest.approx(expected)

    def test_gliding_off_follows_raw(self, sweep_trace: MouseTrace) -> None:
        data = CursorEffectData(gliding=False)
        state = _run(data, sweep_trace, [0.0, 16.0, 500.0])[-1]
        assert state.x == pytest.approx(sweep_trace.position_at(500.0)[0])

    def test_seek_snaps_to_pointer(self, sweep_trace: MouseTrace) -> None:
        previous = CursorState(x=0.0, y=0.0, visible=True, opacity=1.0, last_time_ms=0.0)
        state = calculate_cursor_state(CursorEffectData(), sweep_trace, 1000.0, previous, 60)
        assert (state.x, state.y) == pytest.approx(sweep_trace.position_at(1000.0))

    def test_hidden_previous_snaps_to_pointer(self, sweep_trace: MouseTrace) -> None:
        # Left behind by a frame with no cursor effect
        previous = CursorState(last_time_ms=984.0)
        state = calculate_cursor_state(CursorEffectData(), sweep_trace, 1000.0, previous, 60)
        assert (state.x, state.y) == pytest.approx(sweep_trace.position_at(1000.0))
        assert state.motion_blur is None

    def test_motion_blur_while_moving(self, sweep_trace: MouseTrace) -> None:
        states = _run(CursorEffectData(), sweep_trace, [i * 1000.0 / 60.0 for i in range(60)])
        assert states[0].motion_blur is None
        assert states[-1].motion_blur is not None
        assert states[-1].motion_blur.velocity > 2.0


class TestVisibility:
    def test_idle_opacity(self) -> None:
        assert idle_opacity(0, 3000) == 1.0
        assert idle_opacity(2700, 3000) == 1.0
        assert idle_opacity(2850, 3000) == pytest.approx(0.5)
        assert idle_opacity(3001, 3000) == 0.0

    def test_fades_after_pointer_rests(self, wandering_recording: Recording) -> None:
        trace = MouseTrace.from_recording(wandering_recording)
        data = CursorEffectData(idle_timeout=1000)
        # Last movement at 2512 ms
        assert calculate_cursor_state(data, trace, 3000, None, 60).opacity == 1.0
        fading = calculate_cursor_state(data, trace, 3400, None, 60)
        assert fading.opacity == pytest.approx(1.0 - (888.0 - 700.0) / 300.0)
        assert fading.visible
        gone = calculate_cursor_state(data, trace, 3600, None, 60)
        assert gone.opacity == 0.0
        assert not gone.visible

    def test_hide_on_idle_off(self, wandering_recording: Recording) -> None:
        trace = MouseTrace.from_recording(wandering_recording)
        data = CursorEffectData(idle_timeout=1000, hide_on_idle=False)
        assert calculate_cursor_state(data, trace, 3600, None, 60).visible

    def test_hidden_without_effect(self, sweep_trace: MouseTrace) -> None:
        state = calculate_cursor_state(None, sweep_trace, 500, None, 60)
        assert not state.visible
        assert state.opacity == 0.0

    def test_hidden_without_trace(self) -> None:
        state = calculate_cursor_state(CursorEffectData(), None, 500, None, 60)
        assert not state.visible

    def test_scale_from_size(self, sweep_trace: MouseTrace) -> None:
        state = calculate_cursor_state(CursorEffectData(size=2.5), sweep_trace, 500, None, 60)
        assert state.scale == 2.5


class TestClicks:
    def test_ripple_midway(self) -> None:
        (ripple,) = click_effects_at([ClickEvent(timestamp=1000, x=10, y=20)], 1250)
        assert ripple.progress == pytest.approx(0.5)
        assert ripple.radius == pytest.approx(10 + 0.875 * 50)
        assert ripple.opacity == pytest.approx(0.5 * CLICK_MAX_OPACITY)

    def test_ripple_window(self) -> None:
        clicks = [ClickEvent(timestamp=1000, x=0, y=0)]
        assert click_effects_at(clicks, 999) == []
        assert click_effects_at(clicks, 1500) == []

    def test_state_carries_clicks(self, sweep_trace: MouseTrace) -> None:
        state = calculate_cursor_state(CursorEffectData(), sweep_trace, 1100, None, 60)
        assert state.click_active
        assert state.click_effects[0].timestamp == 1000
        quiet = calculate_cursor_state(CursorEffectData(click_effects=False),
                                       sweep_trace, 1100, None, 60)
        assert not quiet.click_active

    def test_roundtrip_drops_ripples(self, sweep_trace: MouseTrace) -> None:
        state = calculate_cursor_state(CursorEffectData(), sweep_trace, 1100, None, 60)
        restored = CursorState.from_dict(state.to_dict())
        assert (restored.x, restored.y, restored.last_time_ms) == (state.x, state.y, state.last_time_ms)
        assert restored.click_effects == []

    def test_without_effects(self, sweep_trace: MouseTrace) -> None:
        data = CursorEffectData(gliding=False)
        previous = calculate_cursor_state(data, sweep_trace, 1084, None, 60)
        full = calculate_cursor_state(data, sweep_trace, 1100, previous, 60)
        light = calculate_cursor_state(data, sweep_trace, 1100, previous, 60,
                                       with_effects=False)
        assert full.click_active and full.motion_blur is not None
        assert not light.click_active
        assert light.motion_blur is None
        assert light.to_dict() == CursorState.from_dict(full.to_dict()).to_dict()


class TestCursorType:
    @pytest.mark.parametrize("name, expected", [
        ("default", CursorType.ARROW),
        ("pointer", CursorType.POINTING_HAND),
        ("text", CursorType.IBEAM),
        ("grabbing", CursorType.CLOSED_HAND),
        ("nwse-resize", CursorType.RESIZE_LEFT_RIGHT),
        ("something-new", CursorType.ARROW),
        (None, CursorType.ARROW),
    ])
    def test_system_names(self, name, expected: CursorType) -> None:
        assert cursor_type_for(name) is expected

    def test_state_carries_type(self) -> None:
        trace = MouseTrace([MouseEvent(0, 10, 10, cursor_type="text"),
                            MouseEvent(500, 400, 10, cursor_type="pointer")])
        data = CursorEffectData()
        assert calculate_cursor_state(data, trace, 100, None, 60).cursor_type is CursorType.IBEAM
        state = calculate_cursor_state(data, trace, 600, None, 60)
        assert state.cursor_type is CursorType.POINTING_HAND
        assert state.to_dict()["type"] == "pointingHand"
        assert CursorState.from_dict(state.to_dict()).cursor_type is CursorType.POINTING_HAND
