"""Detect typing periods in a keyboard trace and suggest speed-ups.

A *typing period* is a run of typing keys (printable characters, Space,
Backspace, Enter and friends, never chorded with modifiers) whose
consecutive presses are at most ``MAX_GAP_BETWEEN_KEYS_MS`` apart, with
at least ``MIN_KEYS_FOR_TYPING`` keys spanning ``MIN_TYPING_DURATION_MS``.

Each period gets a words-per-minute estimate, a 0–1 confidence that the
presses really are typing, and a suggested speed multiplier: slow typists
are sped up more, low-confidence periods less.  The periods feed
:mod:`timeline_fx.typing_speed`, which turns them into remap periods.
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import List, Optional

from .models import KeyEvent

logger = logging.getLogger(__name__)


# ── Tuning constants ────────────────────────────────────────────────

MIN_TYPING_DURATION_MS = 2000  # shortest run that counts as typing
MAX_GAP_BETWEEN_KEYS_MS = 3000  # longer pause ends the run
MIN_KEYS_FOR_TYPING = 8
CHARS_PER_WORD = 5

# Speed suggestion
MIN_SUGGESTED_SPEED = 1.2
MAX_SUGGESTED_SPEED = 4.0
LONG_PERIOD_MS = 10000      # periods longer than this get a 10% bonus
LONG_PERIOD_BONUS = 1.1

_TYPING_CHAR = re.compile(r"""^[a-zA-Z0-9\s.,;:!?\-_(){}\[\]"'`~@#$%^&*+=<>/\\|]$""")
_KEY_CODE = re.compile(r"^\d+$")
_LETTER = re.compile(r"^[a-zA-Z]$")

TYPING_KEYS = {"Space", "Backspace", "Delete", "Enter", "Return", "Tab"}
PRINTABLE_KEYS = {"Space", "Return", "Enter", "Tab"}


@dataclass
class TypingPeriod:
    """A detected typing run on the recording's source axis."""
    start_time: float
    end_time: float
    key_count: int
    average_wpm: float
    suggested_speed_multiplier: float
    confidence: float

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def to_dict(self) -> dict:
        return {
            "startTime": self.start_time,
            "endTime": self.end_time,
            "keyCount": self.key_count,
            "averageWpm": self.average_wpm,
            "suggestedSpeedMultiplier": self.suggested_speed_multiplier,
            "confidence": self.confidence,
        }


@dataclass
class TypingSuggestions:
    periods: List[TypingPeriod]
    speed_multiplier: Optional[float] = None  # weighted over all periods
    time_saved_ms: Optional[float] = None


# ── Key classification ──────────────────────────────────────────────


def is_typing_key(key: str) -> bool:
    """True for keys produced by typing text (not navigation or shortcuts)."""
    if len(key) == 1 and _TYPING_CHAR.match(key):
        return True
    # Raw key codes from the capture hook arrive as digit strings
    if _KEY_CODE.match(key):
        return True
    return key in TYPING_KEYS


def is_printable_key(key: str) -> bool:
    if key in PRINTABLE_KEYS:
        return True
    if _KEY_CODE.match(key):
        return True
    return len(key) == 1 and bool(_TYPING_CHAR.match(key))


# ── Scoring ─────────────────────────────────────────────────────────


def _confidence(events: List[KeyEvent], wpm: float) -> float:
    """Heuristic 0–1 score that *events* are real typing."""
    confidence = 0.5
    if 20 <= wpm <= 120:
        confidence += 0.3
    elif 10 <= wpm <= 150:
        confidence += 0.1

    keys = [e.key for e in events]
    if "Space" in keys:
        confidence += 0.1
    if "Backspace" in keys:
        confidence += 0.1
    if any(_LETTER.match(k) for k in keys):
        confidence += 0.1

    intervals = [b.timestamp - a.timestamp for a, b in zip(events, events[1:])]
    if len(intervals) > 1:
        mean = sum(intervals) / len(intervals)
        variance = sum((i - mean) ** 2 for i in intervals) / len(intervals)
        # Even rhythm reads as typing rather than random presses
        if math.sqrt(variance) < mean * 0.5:
            confidence += 0.1

    return min(1.0, max(0.0, confidence))


def suggest_speed(wpm: float, confidence: float, duration_ms: float) -> float:
    """Speed multiplier for a period typed at *wpm*."""
    if wpm < 30:
        speed = 3.0
    elif wpm < 50:
        speed = 2.5
    elif wpm < 70:
        speed = 2.0
    else:
        speed = 1.5

    speed *= confidence
    if duration_ms > LONG_PERIOD_MS:
        speed *= LONG_PERIOD_BONUS
    return min(MAX_SUGGESTED_SPEED, max(MIN_SUGGESTED_SPEED, speed))


def _make_period(events: List[KeyEvent]) -> TypingPeriod:
    start = events[0].timestamp
    end = events[-1].timestamp
    duration = end - start

    chars = sum(1 for e in events if is_printable_key(e.key))
    minutes = duration / 60000.0
    wpm = (chars / CHARS_PER_WORD) / minutes if minutes > 0 else 0.0

    confidence = _confidence(events, wpm)
    return TypingPeriod(
        start_time=start,
        end_time=end,
        key_count=len(events),
        average_wpm=wpm,
        suggested_speed_multiplier=suggest_speed(wpm, confidence, duration),
        confidence=confidence,
    )


def _is_valid_run(events: List[KeyEvent]) -> bool:
    if len(events) < MIN_KEYS_FOR_TYPING:
        return False
    return events[-1].timestamp - events[0].timestamp >= MIN_TYPING_DURATION_MS


# ── Public API ──────────────────────────────────────────────────────


def detect_typing_periods(key_events: Optional[List[KeyEvent]]) -> List[TypingPeriod]:
    """Split the typing keys of *key_events* into qualifying periods."""
    if not key_events:
        return []
    typing = [
        e for e in sorted(key_events, key=lambda e: e.timestamp)
        if is_typing_key(e.key) and not e.modifiers
    ]
    if len(typing) < MIN_KEYS_FOR_TYPING:
        return []

    periods: List[TypingPeriod] = []
    run: List[KeyEvent] = []
    for event in typing:
        if run and event.timestamp - run[-1].timestamp > MAX_GAP_BETWEEN_KEYS_MS:
            if _is_valid_run(run):
                periods.append(_make_period(run))
            run = []
        run.append(event)
    if _is_valid_run(run):
        periods.append(_make_period(run))

    logger.info("Typing detection: %d periods from %d typing keys", len(periods), len(typing))
    return periods


def analyze_typing(key_events: Optional[List[KeyEvent]]) -> TypingSuggestions:
    """Detect periods and compute an overall speed suggestion.

    The overall multiplier is the duration x confidence weighted mean of
    the per-period suggestions, rounded to one decimal place.
    """
    periods = detect_typing_periods(key_events)
    if not periods:
        return TypingSuggestions(periods=[])

    total_duration = 0.0
    total_weight = 0.0
    weighted = 0.0
    for p in periods:
        weight = p.duration * p.confidence
        total_duration += p.duration
        total_weight += weight
        weighted += p.suggested_speed_multiplier * weight

    if total_weight <= 0:
        return TypingSuggestions(periods=periods)

    speed = weighted / total_weight
    saved = total_duration * (1.0 - 1.0 / speed)
    return TypingSuggestions(
        periods=periods,
        speed_multiplier=round(speed, 1),
        time_saved_ms=float(round(saved)),
    )


def periods_in_range(periods: List[TypingPeriod], start: float, end: float) -> List[TypingPeriod]:
    """Periods that overlap ``[start, end)``."""
    return [p for p in periods if p.start_time < end and p.end_time > start]
