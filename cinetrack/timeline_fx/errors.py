"""Exception types raised by the timeline engine.

Validation problems are raised synchronously at ingestion and service
boundaries (building a layout, applying a remap) so callers see them
before any frame is evaluated.  Frame evaluation itself never raises
for missing data: it logs and falls back to a neutral render state.
"""


class TimelineValidationError(ValueError):
    """Base class for malformed timeline input."""


class ClipValidationError(TimelineValidationError):
    """A clip has a non-positive duration, an empty source range, or
    remap periods that do not cover its source range."""

    def __init__(self, clip_id: str, message: str) -> None:
        super().__init__(f"clip {clip_id!r}: {message}")
        self.clip_id = clip_id


class RemapValidationError(TimelineValidationError):
    """Typing-speed periods overlap, fall outside the clip, or carry a
    non-positive speed multiplier."""


class MissingRecordingError(TimelineValidationError, LookupError):
    """A clip references a recording that is not registered."""

    def __init__(self, recording_id: str) -> None:
        super().__init__(f"recording {recording_id!r} is not available")
        self.recording_id = recording_id
