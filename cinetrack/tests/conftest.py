"""Shared pytest fixtures for CineTrack tests."""

import math

import pytest
from PySide6.QtCore import QCoreApplication

from timeline_fx.models import (
    Clip,
    ClickEvent,
    CursorEffectData,
    Effect,
    EffectKind,
    KeyEvent,
    MouseEvent,
    Project,
    Recording,
    Track,
    ZoomEffectData,
)
from timeline_fx.mouse_trace import MouseTrace


# ── Qt ──────────────────────────────────────────────────────────────

@pytest.fixture(scope="session")
def qapp() -> QCoreApplication:
    """A core application so QObject signals and timers work."""
    return QCoreApplication.instance() or QCoreApplication([])


# ── Mouse traces ───────────────────────────────────────────────────

@pytest.fixture
def sweep_events() -> list[MouseEvent]:
    """Linear sweep 100→900 px across a 1000×1000 capture over 2000 ms,
    sampled every 33 ms."""
    events: list[MouseEvent] = []
    t = 0.0
    while t <= 2000.0:
        x = 100.0 + 800.0 * t / 2000.0
        events.append(MouseEvent(timestamp=t, x=x, y=500.0,
                                 capture_width=1000, capture_height=1000))
        t += 33.0
    return events


@pytest.fixture
def sweep_recording(sweep_events: list[MouseEvent]) -> Recording:
    return Recording(
        id="rec-sweep",
        width=1000,
        height=1000,
        duration=2000,
        mouse_events=sweep_events,
        click_events=[ClickEvent(timestamp=1000, x=500, y=500)],
    )


@pytest.fixture
def sweep_trace(sweep_recording: Recording) -> MouseTrace:
    return MouseTrace.from_recording(sweep_recording)


@pytest.fixture
def wandering_recording() -> Recording:
    """6 s of looping motion with a 1.5 s pause and a few clicks."""
    events: list[MouseEvent] = []
    for i in range(0, 6000, 16):
        t = float(i)
        if 2500 <= t < 4000:
            # Resting between moves
            x, y = 960.0 + 300.0 * math.cos(2.5), 540.0 + 200.0 * math.sin(5.0)
        else:
            phase = t / 1000.0
            x = 960.0 + 300.0 * math.cos(phase)
            y = 540.0 + 200.0 * math.sin(2 * phase)
        events.append(MouseEvent(timestamp=t, x=x, y=y))
    return Recording(
        id="rec-wander",
        width=1920,
        height=1080,
        duration=6000,
        mouse_events=events,
        click_events=[
            ClickEvent(timestamp=1200, x=1100, y=600),
            ClickEvent(timestamp=2400, x=700, y=500),
        ],
    )


# ── Clips / projects ───────────────────────────────────────────────

@pytest.fixture
def plain_clip() -> Clip:
    """10 s clip with no explicit source range."""
    return Clip(id="clip-1", recording_id="rec-wander", start_time=0, duration=10000)


@pytest.fixture
def effects_project(wandering_recording: Recording) -> Project:
    """5 s single-clip project at 60 fps with a zoom and a cursor effect."""
    clip = Clip(id="clip-a", recording_id=wandering_recording.id,
                start_time=0, duration=5000, source_in=500, source_out=5500)
    return Project(
        id="proj-effects",
        fps=60,
        tracks=[Track(id="video", clips=[clip])],
        recordings=[wandering_recording],
        effects=[
            Effect(id="zoom-1", kind=EffectKind.ZOOM, start_time=500, end_time=4000,
                   data=ZoomEffectData(scale=2.0)),
            Effect(id="cursor-1", kind=EffectKind.CURSOR, start_time=0, end_time=5000,
                   data=CursorEffectData()),
        ],
    )


# ── Keyboard ───────────────────────────────────────────────────────

@pytest.fixture
def typing_burst() -> list[KeyEvent]:
    """'hello world' typed twice at a steady 200 ms per key (~4.4 s)."""
    keys: list[KeyEvent] = []
    text = "hello world hello world"
    for i, ch in enumerate(text):
        keys.append(KeyEvent(timestamp=1000.0 + i * 200, key="Space" if ch == " " else ch))
    return keys
