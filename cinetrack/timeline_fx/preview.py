"""Interactive preview playback driven by a Qt timer.

A fast ``QTimer`` fires every few milliseconds.  Each tick measures the
real time since the previous tick with ``time.perf_counter``, advances
the playhead by that amount and evaluates the timeline in continuous
mode, so camera and cursor physics follow wall-clock time.  Long gaps
between ticks (window dragged, machine suspended) are clamped so the
spring never sees a destabilising step.

Seeking discards the physics state; the next frame starts fresh at the
new position.
"""

import logging
import time as _time
from typing import Callable, Optional

from PySide6.QtCore import QObject, QTimer, Signal

from .evaluator import EvaluatorSnapshot, RenderParams, TimelineEvaluator

logger = logging.getLogger(__name__)


TICK_INTERVAL_MS = 8
MAX_FRAME_DELTA_MS = 100.0  # longest step taken after a stalled tick


class PreviewPlayer(QObject):
    """Plays a :class:`TimelineEvaluator` in real time."""

    frame_ready = Signal(object)  # RenderParams
    finished = Signal()

    def __init__(
        self,
        evaluator: TimelineEvaluator,
        parent: QObject | None = None,
        clock: Callable[[], float] = _time.perf_counter,
    ) -> None:
        super().__init__(parent)
        self._evaluator = evaluator
        self._clock = clock
        self._snapshot = EvaluatorSnapshot()
        self._position_ms: float = 0.0
        self._last_wall: float = 0.0
        self._playing: bool = False
        self._last_params: Optional[RenderParams] = None

        self._timer = QTimer(self)
        self._timer.setInterval(TICK_INTERVAL_MS)
        self._timer.timeout.connect(self._tick)

    # ── public API ──────────────────────────────────────────────────

    @property
    def duration_ms(self) -> float:
        return self._evaluator.frame_to_ms(self._evaluator.total_frames)

    @property
    def position_ms(self) -> float:
        return self._position_ms

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def last_params(self) -> Optional[RenderParams]:
        return self._last_params

    def play(self) -> None:
        """Start playback from the current position."""
        if self._playing:
            return
        # Wrap to the start when parked at the end
        if self._position_ms >= self.duration_ms - 1.0:
            self.seek(0.0)
        self._last_wall = self._clock()
        self._playing = True
        self._timer.start()

    def pause(self) -> None:
        self._playing = False
        self._timer.stop()

    def seek(self, time_ms: float) -> RenderParams:
        """Jump to *time_ms*, reset physics and show that frame."""
        self._position_ms = min(max(time_ms, 0.0), self.duration_ms)
        self._snapshot = EvaluatorSnapshot()
        self._last_wall = self._clock()
        params = self._evaluator.evaluate_time(self._position_ms, self._snapshot)
        self._emit(params)
        return params

    # ── internal ────────────────────────────────────────────────────

    def _emit(self, params: RenderParams) -> None:
        self._last_params = params
        self.frame_ready.emit(params)

    def _tick(self) -> None:
        if not self._playing:
            return
        now = self._clock()
        elapsed_ms = (now - self._last_wall) * 1000.0
        self._last_wall = now
        if elapsed_ms > MAX_FRAME_DELTA_MS:
            logger.debug("Preview tick stalled %.0fms; clamping", elapsed_ms)
            elapsed_ms = MAX_FRAME_DELTA_MS
        elif elapsed_ms < 0:
            elapsed_ms = 0.0

        self._position_ms += elapsed_ms
        if self._position_ms >= self.duration_ms:
            self._position_ms = self.duration_ms
            self.pause()
            self.finished.emit()
            return

        params = self._evaluator.evaluate_time(self._position_ms, self._snapshot, wall_dt_ms=elapsed_ms)
        self._emit(params)
