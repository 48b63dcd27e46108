"""Single source of truth for the CineTrack version string."""

__version__ = "0.4.0"
