"""Map clip-local output time to source-media time and back.

A clip without remap periods plays its source linearly::

    source = source_in + local * playback_rate

With ``time_remap_periods`` each period contributes
``(source_end - source_start) / speed`` ms of output.  A local time is
located in the cumulative output ranges and interpolated linearly across
that period's source span, so the mapping is continuous at every period
boundary and strictly increasing.

Also hosts the editing helpers that preserve this mapping:
:func:`split_clip_at` and :func:`reflow_clips`.
"""

import bisect
import logging
import uuid
from typing import List, Optional, Tuple

from .errors import ClipValidationError, TimelineValidationError
from .models import Clip, TimeRemapPeriod, Track

logger = logging.getLogger(__name__)


def _cumulative_outputs(periods: List[TimeRemapPeriod]) -> List[float]:
    """Output-time end of each period, relative to the clip start."""
    ends: List[float] = []
    total = 0.0
    for p in periods:
        total += p.output_duration
        ends.append(total)
    return ends


def effective_duration(clip: Clip) -> float:
    """Output duration implied by the clip's source range and speeds."""
    if clip.time_remap_periods:
        return sum(p.output_duration for p in clip.time_remap_periods)
    return (clip.resolved_source_out - clip.resolved_source_in) / clip.playback_rate


def clip_relative_to_source(local_ms: float, clip: Clip) -> float:
    """Source time (ms) shown at *local_ms* into *clip*.

    *local_ms* is clamped to ``[0, clip.duration]``.
    """
    local = min(max(local_ms, 0.0), clip.duration)
    periods = clip.time_remap_periods
    if not periods:
        return clip.resolved_source_in + local * clip.playback_rate

    ends = _cumulative_outputs(periods)
    idx = bisect.bisect_right(ends, local)
    if idx >= len(periods):
        return periods[-1].source_end_time
    period = periods[idx]
    period_start = ends[idx - 1] if idx > 0 else 0.0
    source = period.source_start_time + (local - period_start) * period.speed_multiplier
    return min(source, period.source_end_time)


def source_to_clip_relative(source_ms: float, clip: Clip) -> float:
    """Inverse of :func:`clip_relative_to_source`, clamped to the clip."""
    periods = clip.time_remap_periods
    if not periods:
        local = (source_ms - clip.resolved_source_in) / clip.playback_rate
        return min(max(local, 0.0), clip.duration)

    if source_ms <= periods[0].source_start_time:
        return 0.0
    starts = [p.source_start_time for p in periods]
    idx = bisect.bisect_right(starts, source_ms) - 1
    period = periods[idx]
    if source_ms >= period.source_end_time and idx == len(periods) - 1:
        return clip.duration
    ends = _cumulative_outputs(periods)
    period_start = ends[idx - 1] if idx > 0 else 0.0
    local = period_start + (source_ms - period.source_start_time) / period.speed_multiplier
    return min(local, clip.duration)


def timeline_to_source(timeline_ms: float, clip: Clip) -> float:
    """Source time for an absolute timeline position inside *clip*."""
    return clip_relative_to_source(timeline_ms - clip.start_time, clip)


def source_time_for_frame(frame: int, fps: float, clip: Clip, start_frame: int) -> float:
    """Source time for *frame* of a clip laid out from *start_frame*.

    The offset is measured in frames from the clip's first frame so that
    layout rounding never shifts the source position.
    """
    local_ms = (frame - start_frame) * 1000.0 / fps
    return clip_relative_to_source(local_ms, clip)


# ── Editing helpers ─────────────────────────────────────────────────


def _split_periods(
    periods: List[TimeRemapPeriod], split_source: float,
) -> Tuple[List[TimeRemapPeriod], List[TimeRemapPeriod]]:
    before: List[TimeRemapPeriod] = []
    after: List[TimeRemapPeriod] = []
    for p in periods:
        if p.source_end_time <= split_source:
            before.append(p)
        elif p.source_start_time >= split_source:
            after.append(p)
        else:
            before.append(TimeRemapPeriod(p.source_start_time, split_source, p.speed_multiplier))
            after.append(TimeRemapPeriod(split_source, p.source_end_time, p.speed_multiplier))
    return before, after


def split_clip_at(clip: Clip, relative_ms: float) -> Tuple[Clip, Clip]:
    """Cut *clip* at *relative_ms* (clip-local output time).

    Missing ``source_in`` / ``source_out`` are filled in on both halves
    so each carries an explicit source range.  Remap periods are cut at
    the split's source time.  Raises :class:`ClipValidationError` when
    the split point is not strictly inside the clip.
    """
    if not 0 < relative_ms < clip.duration:
        raise ClipValidationError(
            clip.id, f"split point {relative_ms}ms is outside (0, {clip.duration})")

    split_source = clip_relative_to_source(relative_ms, clip)
    src_in = clip.resolved_source_in
    src_out = clip.resolved_source_out

    first_periods: Optional[List[TimeRemapPeriod]] = None
    second_periods: Optional[List[TimeRemapPeriod]] = None
    if clip.time_remap_periods:
        first_periods, second_periods = _split_periods(clip.time_remap_periods, split_source)

    first = clip.with_updates(
        duration=relative_ms,
        source_in=src_in,
        source_out=split_source,
        time_remap_periods=first_periods,
    )
    second = clip.with_updates(
        id=str(uuid.uuid4()),
        start_time=clip.start_time + relative_ms,
        duration=clip.duration - relative_ms,
        source_in=split_source,
        source_out=src_out,
        time_remap_periods=second_periods,
    )
    logger.debug("Split clip %s at %.1fms (source %.1fms)", clip.id, relative_ms, split_source)
    return first, second


def chain_clips(clips: List[Clip], start_index: int = 0) -> List[Clip]:
    """Return *clips* with every clip from *start_index* on moved to
    start where its predecessor ends.  Order is taken as given."""
    if start_index < 0 or start_index > len(clips):
        raise TimelineValidationError(f"reflow index {start_index} out of range")
    chained = list(clips[:start_index])
    cursor = chained[-1].end_time if chained else None
    for clip in clips[start_index:]:
        if cursor is None:
            cursor = clip.start_time
        chained.append(clip.with_updates(start_time=cursor))
        cursor += clip.duration
    return chained


def reflow_clips(track: Track, start_index: int = 0) -> Track:
    """Return a copy of *track* whose clips from *start_index* on are
    chained end-to-start with no gaps."""
    return Track(id=track.id, clips=chain_clips(track.clips, start_index), name=track.name)
