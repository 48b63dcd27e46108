"""Frame layout — assign integer frame ranges to millisecond-timed clips.

Frame boundaries come from a running cumulative cursor rather than from
rounding each clip's own duration, so a run of timeline-contiguous clips
never gains or loses a frame at a seam::

    end_frame[i] == start_frame[i + 1]

An explicit gap between two clips is rounded on its own and kept as a
whole number of empty frames.  Within a contiguous run every end frame
is measured from the run's anchor, so rounding error never accumulates.
"""

import bisect
import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .errors import TimelineValidationError
from .models import Clip

logger = logging.getLogger(__name__)

CONTIGUOUS_EPSILON_MS = 1e-6


def ms_to_frames(ms: float, fps: float) -> int:
    """Round *ms* to the nearest frame, halves rounding up.

    ``round()`` would use banker's rounding and make identical clips
    land on different frames depending on parity.
    """
    return int(math.floor(ms * fps / 1000.0 + 0.5))


@dataclass(frozen=True)
class FrameLayoutItem:
    """A clip's place on the frame grid; *end_frame* is exclusive."""
    clip: Clip
    start_frame: int
    end_frame: int

    @property
    def duration_frames(self) -> int:
        return self.end_frame - self.start_frame

    def contains(self, frame: int) -> bool:
        return self.start_frame <= frame < self.end_frame

    def to_dict(self) -> dict:
        return {
            "clipId": self.clip.id,
            "startFrame": self.start_frame,
            "endFrame": self.end_frame,
            "durationFrames": self.duration_frames,
        }


def build_frame_layout(clips: Iterable[Clip], fps: float) -> List[FrameLayoutItem]:
    """Lay *clips* out on a *fps* frame grid in a single ordered pass.

    Every clip is validated first; a clip with a non-positive duration
    or an empty source range raises
    :class:`~timeline_fx.errors.ClipValidationError` before any frame
    is assigned.  Overlapping clips raise
    :class:`~timeline_fx.errors.TimelineValidationError`.
    """
    if not fps > 0:
        raise TimelineValidationError(f"fps must be positive, got {fps}")

    ordered = sorted(clips, key=lambda c: c.start_time)
    for clip in ordered:
        clip.validate()

    layout: List[FrameLayoutItem] = []
    prev: Optional[Clip] = None
    prev_end_frame = 0
    # Start of the current contiguous run on both axes
    anchor_ms = 0.0
    anchor_frame = 0

    for clip in ordered:
        if prev is None:
            start_frame = ms_to_frames(clip.start_time, fps)
            anchor_ms, anchor_frame = clip.start_time, start_frame
        else:
            gap_ms = clip.start_time - prev.end_time
            if gap_ms < -CONTIGUOUS_EPSILON_MS:
                raise TimelineValidationError(
                    f"clip {clip.id!r} overlaps {prev.id!r} by {-gap_ms:.3f}ms")
            if gap_ms <= CONTIGUOUS_EPSILON_MS:
                start_frame = prev_end_frame
            else:
                start_frame = prev_end_frame + ms_to_frames(gap_ms, fps)
                anchor_ms, anchor_frame = clip.start_time, start_frame

        end_frame = anchor_frame + ms_to_frames(clip.end_time - anchor_ms, fps)
        # A very short clip still owns one frame
        end_frame = max(end_frame, start_frame + 1)

        layout.append(FrameLayoutItem(clip=clip, start_frame=start_frame, end_frame=end_frame))
        prev = clip
        prev_end_frame = end_frame

    logger.info(
        "Frame layout: %d clips, %d frames at %s fps",
        len(layout), timeline_duration_frames(layout), fps,
    )
    return layout


def timeline_duration_frames(layout: List[FrameLayoutItem]) -> int:
    """Total frame count (end of the last clip)."""
    if not layout:
        return 0
    return layout[-1].end_frame


def find_layout_item(layout: List[FrameLayoutItem], frame: int) -> Optional[FrameLayoutItem]:
    """Return the item covering *frame*, or ``None`` in a gap or past the end."""
    starts = [item.start_frame for item in layout]
    idx = bisect.bisect_right(starts, frame) - 1
    if idx < 0:
        return None
    item = layout[idx]
    return item if item.contains(frame) else None
