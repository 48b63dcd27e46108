"""Indexed, interpolating view of a recording's mouse trace.

A :class:`MouseTrace` copies the samples into numpy arrays once so that
per-frame lookups are binary searches rather than list scans.  Position
lookup uses a Catmull-Rom spline through neighbouring samples, falling
back to smoothstep easing when fewer than four samples exist.  Times
before the first or after the last sample clamp to that sample.

Dwell clusters, spans where the pointer lingers near one spot, are
found once at construction and give the camera a steadier aim point
than the raw cursor.

Traces are immutable after construction and safe to share between
export workers.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .models import ClickEvent, MouseEvent, Recording

logger = logging.getLogger(__name__)


# ── Tuning constants ────────────────────────────────────────────────

DEFAULT_CAPTURE_WIDTH = 1920.0
DEFAULT_CAPTURE_HEIGHT = 1080.0
CINEMATIC_WINDOW_MS = 200.0  # trailing window averaged for the camera target
CINEMATIC_SAMPLES = 5
MOVE_THRESHOLD_PX = 0.0      # position change that counts as movement
CLUSTER_RADIUS_RATIO = 0.15  # of the capture diagonal
MIN_CLUSTER_DURATION_MS = 400.0
CLUSTER_HOLD_BUFFER_MS = 0.0
STOP_LOOKBACK_MS = 50.0
STOP_JITTER_PX = 2.0


def smoothstep(t: float) -> float:
    return t * t * (3.0 - 2.0 * t)


def _catmull_rom(p0: float, p1: float, p2: float, p3: float, t: float) -> float:
    v0 = (p2 - p0) * 0.5
    v1 = (p3 - p1) * 0.5
    t2 = t * t
    t3 = t2 * t
    return (p1 + v0 * t + (3 * (p2 - p1) - 2 * v0 - v1) * t2
            + (2 * (p1 - p2) + v0 + v1) * t3)


@dataclass(frozen=True)
class DwellCluster:
    """A stretch of time the pointer lingered around one spot."""
    start_ms: float
    end_ms: float
    x: float  # centroid, capture pixels
    y: float


class MouseTrace:
    """Timestamp-sorted mouse samples with interpolation helpers."""

    def __init__(
        self,
        events: List[MouseEvent],
        clicks: Optional[List[ClickEvent]] = None,
        width: float = DEFAULT_CAPTURE_WIDTH,
        height: float = DEFAULT_CAPTURE_HEIGHT,
    ) -> None:
        ordered = sorted(events, key=lambda e: e.timestamp)
        self._t = np.array([e.timestamp for e in ordered], dtype=np.float64)
        self._x = np.array([e.x for e in ordered], dtype=np.float64)
        self._y = np.array([e.y for e in ordered], dtype=np.float64)
        self._cw = np.array(
            [e.capture_width or 0.0 for e in ordered], dtype=np.float64)
        self._ch = np.array(
            [e.capture_height or 0.0 for e in ordered], dtype=np.float64)
        self._types: List[Optional[str]] = [e.cursor_type for e in ordered]
        self.width = float(width or DEFAULT_CAPTURE_WIDTH)
        self.height = float(height or DEFAULT_CAPTURE_HEIGHT)

        self.clicks: List[ClickEvent] = sorted(clicks or [], key=lambda c: c.timestamp)
        self._click_t = np.array([c.timestamp for c in self.clicks], dtype=np.float64)

        # Timestamps of samples that differ from their predecessor
        if len(self._t) > 1:
            moved = (np.abs(np.diff(self._x)) > MOVE_THRESHOLD_PX) | \
                    (np.abs(np.diff(self._y)) > MOVE_THRESHOLD_PX)
            self._move_t = self._t[1:][moved]
        else:
            self._move_t = np.empty(0, dtype=np.float64)

        self.clusters: List[DwellCluster] = self._find_clusters()
        self._cluster_start = np.array([c.start_ms for c in self.clusters], dtype=np.float64)

    @staticmethod
    def from_recording(recording: Recording) -> "MouseTrace":
        return MouseTrace(
            recording.mouse_events,
            recording.click_events,
            width=recording.width,
            height=recording.height,
        )

    def __len__(self) -> int:
        return len(self._t)

    @property
    def start_time(self) -> float:
        return float(self._t[0]) if len(self._t) else 0.0

    @property
    def end_time(self) -> float:
        return float(self._t[-1]) if len(self._t) else 0.0

    # ── position lookup ─────────────────────────────────────────────

    def position_at(self, time_ms: float) -> Optional[Tuple[float, float]]:
        """Interpolated position in capture pixels, or ``None`` if empty."""
        n = len(self._t)
        if n == 0:
            return None
        if time_ms <= self._t[0]:
            return float(self._x[0]), float(self._y[0])
        if time_ms >= self._t[-1]:
            return float(self._x[-1]), float(self._y[-1])

        i = int(np.searchsorted(self._t, time_ms, side="right")) - 1
        span = self._t[i + 1] - self._t[i]
        t = (time_ms - self._t[i]) / span if span > 0 else 0.0

        if n < 4:
            s = smoothstep(t)
            return (float(self._x[i] + (self._x[i + 1] - self._x[i]) * s),
                    float(self._y[i] + (self._y[i + 1] - self._y[i]) * s))

        i0 = max(0, i - 1)
        i3 = min(n - 1, i + 2)
        x = _catmull_rom(self._x[i0], self._x[i], self._x[i + 1], self._x[i3], t)
        y = _catmull_rom(self._y[i0], self._y[i], self._y[i + 1], self._y[i3], t)
        return float(x), float(y)

    def cinematic_position_at(self, time_ms: float) -> Optional[Tuple[float, float]]:
        """Mean position over the trailing ``CINEMATIC_WINDOW_MS``.

        Averaging a few samples behind *time_ms* takes the edge off
        sudden flicks before they reach the camera.
        """
        if len(self._t) == 0:
            return None
        step = CINEMATIC_WINDOW_MS / CINEMATIC_SAMPLES
        points = [self.position_at(time_ms - i * step) for i in range(CINEMATIC_SAMPLES)]
        xs, ys = zip(*points)
        return sum(xs) / len(xs), sum(ys) / len(ys)

    # ── capture geometry ────────────────────────────────────────────

    def dimensions_at(self, time_ms: float) -> Tuple[float, float]:
        """Capture size in effect at *time_ms*.

        Uses the dimensions carried by the latest sample at or before
        *time_ms*, else the recording size.
        """
        if len(self._t) == 0:
            return self.width, self.height
        i = max(0, int(np.searchsorted(self._t, time_ms, side="right")) - 1)
        w, h = self._cw[i], self._ch[i]
        if w > 0 and h > 0:
            return float(w), float(h)
        return self.width, self.height

    def normalized_position_at(self, time_ms: float, cinematic: bool = False) -> Optional[Tuple[float, float]]:
        """Position as 0–1 fractions of the capture size, clamped."""
        pos = self.cinematic_position_at(time_ms) if cinematic else self.position_at(time_ms)
        return self._normalize(pos, time_ms)

    def _normalize(self, pos: Optional[Tuple[float, float]],
                   time_ms: float) -> Optional[Tuple[float, float]]:
        if pos is None:
            return None
        w, h = self.dimensions_at(time_ms)
        return (min(1.0, max(0.0, pos[0] / w)),
                min(1.0, max(0.0, pos[1] / h)))

    # ── activity ────────────────────────────────────────────────────

    def last_movement_time(self, time_ms: float) -> Optional[float]:
        """Time of the last position change at or before *time_ms*.

        A trace that never moved reports its first sample.  ``None``
        when no sample precedes *time_ms*.
        """
        if len(self._t) == 0 or time_ms < self._t[0]:
            return None
        i = int(np.searchsorted(self._move_t, time_ms, side="right"))
        if i == 0:
            return float(self._t[0])
        return float(self._move_t[i - 1])

    def clicks_between(self, start_ms: float, end_ms: float) -> List[ClickEvent]:
        """Clicks with ``start_ms <= timestamp <= end_ms``."""
        lo = int(np.searchsorted(self._click_t, start_ms, side="left"))
        hi = int(np.searchsorted(self._click_t, end_ms, side="right"))
        return self.clicks[lo:hi]

    def cursor_type_at(self, time_ms: float) -> Optional[str]:
        """System cursor name of the latest sample at or before *time_ms*."""
        if len(self._t) == 0:
            return None
        i = max(0, int(np.searchsorted(self._t, time_ms, side="right")) - 1)
        return self._types[i]

    def velocity_at(self, time_ms: float,
                    lookback_ms: float = STOP_LOOKBACK_MS) -> Tuple[float, Optional[float]]:
        """Pointer speed over the trailing *lookback_ms*, and when it stopped.

        Speed is in capture widths per second.  The second value is the
        time the pointer came to rest, or ``None`` while it is moving.
        Moves within ``STOP_JITTER_PX`` count as resting.
        """
        n = len(self._t)
        if n < 2:
            return 0.0, time_ms
        hi = int(np.searchsorted(self._t, time_ms, side="right"))
        lo = int(np.searchsorted(self._t, time_ms - lookback_ms, side="left"))

        if hi - lo < 2:
            last = float(self._t[hi - 1] if hi > 0 else self._t[-1])
            if time_ms - last > lookback_ms:
                return 0.0, last
            return 0.0, None

        first, last = lo, hi - 1
        dx = self._x[last] - self._x[first]
        dy = self._y[last] - self._y[first]
        if abs(dx) <= STOP_JITTER_PX and abs(dy) <= STOP_JITTER_PX:
            return 0.0, float(self._t[first])

        dt = (self._t[last] - self._t[first]) / 1000.0
        if dt < 0.001:
            return 0.0, None
        w, h = self.dimensions_at(time_ms)
        return float(math.hypot(dx / w, dy / h) / dt), None

    # ── dwell clusters ──────────────────────────────────────────────

    def _find_clusters(self) -> List[DwellCluster]:
        """Group consecutive samples that stay near their running centroid.

        A sample further than ``CLUSTER_RADIUS_RATIO`` of the capture
        diagonal from the centroid closes the current group; groups
        lasting ``MIN_CLUSTER_DURATION_MS`` or more are kept.
        """
        clusters: List[DwellCluster] = []
        n = len(self._t)
        if n == 0:
            return clusters
        radius = math.hypot(self.width, self.height) * CLUSTER_RADIUS_RATIO

        def close(start: int, end: int, sum_x: float, sum_y: float) -> None:
            if self._t[end] - self._t[start] >= MIN_CLUSTER_DURATION_MS:
                count = end - start + 1
                clusters.append(DwellCluster(float(self._t[start]), float(self._t[end]),
                                             sum_x / count, sum_y / count))

        start = 0
        sum_x, sum_y = float(self._x[0]), float(self._y[0])
        for i in range(1, n):
            count = i - start
            cx, cy = sum_x / count, sum_y / count
            x, y = float(self._x[i]), float(self._y[i])
            if math.hypot(x - cx, y - cy) <= radius:
                sum_x += x
                sum_y += y
            else:
                close(start, i - 1, sum_x, sum_y)
                start = i
                sum_x, sum_y = x, y
        close(start, n - 1, sum_x, sum_y)
        return clusters

    def cluster_at(self, time_ms: float) -> Optional[DwellCluster]:
        """The dwell cluster covering *time_ms*, if any."""
        i = int(np.searchsorted(self._cluster_start, time_ms, side="right")) - 1
        if i < 0:
            return None
        cluster = self.clusters[i]
        if time_ms <= cluster.end_ms + CLUSTER_HOLD_BUFFER_MS:
            return cluster
        return None

    def attractor_at(self, time_ms: float) -> Optional[Tuple[float, float]]:
        """Where the camera should aim, in capture pixels.

        The centroid of the current dwell cluster, else the cinematic
        position.
        """
        cluster = self.cluster_at(time_ms)
        if cluster is not None:
            return cluster.x, cluster.y
        return self.cinematic_position_at(time_ms)

    def normalized_attractor_at(self, time_ms: float) -> Optional[Tuple[float, float]]:
        return self._normalize(self.attractor_at(time_ms), time_ms)
