"""Turn detected typing periods into time-remap periods on a clip.

Input periods live on the clip's *source* axis.  They are validated,
sorted and completed with base-speed gaps so that the result partitions
``[source_in, source_out]`` with no holes::

    [0, 2000] @1x   [2000, 4000] @2x   [4000, 10000] @1x

A gap shorter than one frame (``1000 / fps`` ms) is folded into the
neighbouring period instead of producing an unrenderable sliver.  The
remapped clip's duration is the sum of the periods' output durations.

Two output shapes are supported:

* :func:`apply_typing_speed` — one clip carrying ``time_remap_periods``.
* :func:`apply_typing_speed_split` — legacy mode, one clip per segment
  with a constant ``playback_rate``.
"""

import logging
from dataclasses import dataclass, replace
from typing import Iterable, List, Sequence

from .errors import RemapValidationError, TimelineValidationError
from .models import DEFAULT_FPS, Clip, Effect, Project, TimeRemapPeriod, Track
from .time_mapping import chain_clips, source_to_clip_relative, timeline_to_source

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpeedSegment:
    """A source span and its speed relative to the clip's own rate."""
    start: float
    end: float
    multiplier: float


def _field(period, name: str, key: str) -> float:
    if isinstance(period, dict):
        return period[key]
    return getattr(period, name)


def _normalize(periods: Iterable) -> List[SpeedSegment]:
    """Accept :class:`~timeline_fx.typing_detector.TypingPeriod` objects
    or camelCase dicts with the same fields."""
    return [
        SpeedSegment(
            start=_field(p, "start_time", "startTime"),
            end=_field(p, "end_time", "endTime"),
            multiplier=_field(p, "suggested_speed_multiplier", "suggestedSpeedMultiplier"),
        )
        for p in periods
    ]


def _validate(segments: List[SpeedSegment], src_in: float, src_out: float) -> None:
    prev = None
    for seg in segments:
        if not seg.multiplier > 0:
            raise RemapValidationError(
                f"speed multiplier must be positive, got {seg.multiplier}")
        if not seg.end > seg.start:
            raise RemapValidationError(
                f"typing period [{seg.start}, {seg.end}] is empty")
        if seg.start < src_in or seg.end > src_out:
            raise RemapValidationError(
                f"typing period [{seg.start}, {seg.end}] is outside the clip "
                f"source range [{src_in}, {src_out}]")
        if prev is not None and seg.start < prev.end:
            raise RemapValidationError(
                f"typing periods [{prev.start}, {prev.end}] and "
                f"[{seg.start}, {seg.end}] overlap")
        prev = seg


def build_speed_segments(clip: Clip, periods: Iterable, fps: float = DEFAULT_FPS) -> List[SpeedSegment]:
    """Full-coverage ordered segments of the clip's source range.

    Raises :class:`RemapValidationError` for overlapping, empty or
    out-of-range periods and non-positive multipliers.
    """
    clip.validate()
    src_in = clip.resolved_source_in
    src_out = clip.resolved_source_out
    segments = sorted(_normalize(periods), key=lambda s: s.start)
    _validate(segments, src_in, src_out)

    min_gap = 1000.0 / fps
    out: List[SpeedSegment] = []
    cursor = src_in
    for seg in segments:
        gap = seg.start - cursor
        if gap >= min_gap:
            out.append(SpeedSegment(cursor, seg.start, 1.0))
        elif gap > 0:
            # Sub-frame gap: stretch the neighbour over it
            if out:
                out[-1] = replace(out[-1], end=seg.start)
            else:
                seg = replace(seg, start=cursor)
        out.append(seg)
        cursor = seg.end

    tail = src_out - cursor
    if tail >= min_gap or not out:
        out.append(SpeedSegment(cursor, src_out, 1.0))
    elif tail > 0:
        out[-1] = replace(out[-1], end=src_out)
    return out


def build_remap_periods(clip: Clip, periods: Iterable, fps: float = DEFAULT_FPS) -> List[TimeRemapPeriod]:
    """Remap periods for *clip*; speeds include the clip's base rate."""
    rate = clip.playback_rate
    return [
        TimeRemapPeriod(seg.start, seg.end, rate * seg.multiplier)
        for seg in build_speed_segments(clip, periods, fps)
    ]


def apply_typing_speed(clip: Clip, periods: Iterable, fps: float = DEFAULT_FPS) -> Clip:
    """Return a copy of *clip* carrying full-coverage remap periods."""
    remap = build_remap_periods(clip, periods, fps)
    duration = sum(p.output_duration for p in remap)
    logger.info(
        "Typing speed on clip %s: %d periods, %.1fms -> %.1fms",
        clip.id, len(remap), clip.duration, duration,
    )
    return clip.with_updates(
        duration=duration,
        source_in=clip.resolved_source_in,
        source_out=clip.resolved_source_out,
        time_remap_periods=remap,
        typing_speed_applied=True,
    )


def apply_typing_speed_split(clip: Clip, periods: Iterable, fps: float = DEFAULT_FPS) -> List[Clip]:
    """Legacy mode: one constant-rate clip per segment, chained from
    ``clip.start_time``."""
    base = clip.playback_rate
    clips: List[Clip] = []
    position = clip.start_time
    for i, seg in enumerate(build_speed_segments(clip, periods, fps)):
        rate = base * seg.multiplier
        duration = (seg.end - seg.start) / rate
        clips.append(Clip(
            id=f"{clip.id}-split-{i}",
            recording_id=clip.recording_id,
            start_time=position,
            duration=duration,
            source_in=seg.start,
            source_out=seg.end,
            playback_rate=rate,
            typing_speed_applied=seg.multiplier > 1,
        ))
        position += duration
    logger.info("Typing speed split clip %s into %d clips", clip.id, len(clips))
    return clips


def apply_typing_speed_to_track(
    track: Track,
    clip_id: str,
    periods: Iterable,
    fps: float = DEFAULT_FPS,
    split: bool = False,
) -> Track:
    """Replace *clip_id* in *track* with its remapped version and close
    up the clips after it."""
    index = next((i for i, c in enumerate(track.clips) if c.id == clip_id), -1)
    if index < 0:
        raise TimelineValidationError(f"clip {clip_id!r} not found on track {track.id!r}")
    clip = track.clips[index]
    if split:
        replacement = apply_typing_speed_split(clip, periods, fps)
    else:
        replacement = [apply_typing_speed(clip, periods, fps)]

    clips = track.clips[:index] + replacement + track.clips[index + 1:]
    clips = chain_clips(clips, index + len(replacement))
    return Track(id=track.id, clips=clips, name=track.name)


def retime_effects(effects: Sequence[Effect], before: Clip, after: Clip) -> List[Effect]:
    """Move effect boundaries so they stay on the same source frames.

    Boundaries inside *before* are mapped through source time onto
    *after*; boundaries past its end shift by the change in duration.
    """
    delta = after.end_time - before.end_time

    def _move(t: float) -> float:
        if t < before.start_time:
            return t
        if t > before.end_time:
            return t + delta
        source = timeline_to_source(t, before)
        return after.start_time + source_to_clip_relative(source, after)

    return [
        replace(e, start_time=_move(e.start_time), end_time=_move(e.end_time))
        for e in effects
    ]


def apply_typing_speed_to_project(
    project: Project,
    clip_id: str,
    periods: Iterable,
    split: bool = False,
) -> Project:
    """Project-level apply: remaps the clip, reflows its track and keeps
    effects aligned with the source content they decorate.

    Effects are retimed only in single-clip mode; the split result has
    no single clip to map them onto, so effects are left as authored.
    """
    periods = list(periods)
    for t_index, track in enumerate(project.tracks):
        original = track.clip(clip_id)
        if original is None:
            continue
        new_track = apply_typing_speed_to_track(track, clip_id, periods, project.fps, split)
        tracks = list(project.tracks)
        tracks[t_index] = new_track
        effects = list(project.effects)
        if not split:
            effects = retime_effects(effects, original, new_track.clip(clip_id))
        return replace(project, tracks=tracks, effects=effects)
    raise TimelineValidationError(f"clip {clip_id!r} not found in project {project.id!r}")
