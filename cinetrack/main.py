"""CineTrack — batch renderer for timeline zoom/cursor effects.

Loads a project JSON file, evaluates every frame of its timeline in
parallel chunks and writes the per-frame render parameters as JSON
Lines for the compositor and encoder to consume.
"""

import argparse
import logging
import sys
from pathlib import Path

from PySide6.QtCore import QCoreApplication, QTimer

from timeline_fx.errors import TimelineValidationError
from timeline_fx.export import DEFAULT_CHUNK_FRAMES, DEFAULT_WORKERS, ChunkedExporter
from timeline_fx.models import Project
from timeline_fx.version import __version__

logging.basicConfig(
    level=logging.INFO,
    format="%(name)s | %(levelname)s | %(message)s",
)

_logger = logging.getLogger(__name__)

EXIT_INVALID_PROJECT = 2
EXIT_EXPORT_FAILED = 1


def _global_exception_handler(exc_type, exc_value, exc_tb):
    """Log unhandled exceptions instead of crashing silently."""
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)
        return
    _logger.critical("Unhandled exception", exc_info=(exc_type, exc_value, exc_tb))


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="cinetrack",
        description="Render per-frame camera and cursor parameters for a project.",
    )
    parser.add_argument("project", type=Path, help="project JSON file")
    parser.add_argument("-o", "--output", type=Path, default=None,
                        help="output .jsonl path (default: <project>.render.jsonl)")
    parser.add_argument("--fps", type=int, default=None,
                        help="override the project frame rate")
    parser.add_argument("--chunk-frames", type=int, default=DEFAULT_CHUNK_FRAMES,
                        help="frames per export chunk")
    parser.add_argument("--workers", type=int, default=DEFAULT_WORKERS,
                        help="parallel chunk workers")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def load_project(path: Path, fps: int | None = None) -> Project:
    """Read and validate a project file."""
    project = Project.from_json(path.read_text(encoding="utf-8"))
    if fps is not None:
        project.fps = fps
    project.validate()
    return project


def main(argv: list[str] | None = None) -> int:
    """Entry point — loads the project and runs the chunked export."""
    sys.excepthook = _global_exception_handler
    args = _parse_args(sys.argv[1:] if argv is None else argv)

    try:
        project = load_project(args.project, args.fps)
    except (OSError, ValueError, KeyError) as exc:
        # TimelineValidationError is a ValueError; so is malformed JSON
        kind = "invalid project" if isinstance(exc, TimelineValidationError) else "cannot load project"
        _logger.error("%s %s: %s", kind.capitalize(), args.project, exc)
        return EXIT_INVALID_PROJECT

    output = args.output or args.project.with_suffix(".render.jsonl")

    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    app.setApplicationName("CineTrack")
    app.setApplicationVersion(__version__)

    exporter = ChunkedExporter()
    status = {"code": 0}

    def _on_finished(path: str) -> None:
        _logger.info("Wrote %s", path)
        app.quit()

    def _on_error(message: str) -> None:
        _logger.error("Export failed: %s", message)
        status["code"] = EXIT_EXPORT_FAILED
        app.quit()

    def _on_progress(fraction: float) -> None:
        _logger.info("Export %3.0f%%", fraction * 100)

    exporter.finished.connect(_on_finished)
    exporter.error.connect(_on_error)
    exporter.progress.connect(_on_progress)
    exporter.status.connect(lambda text: _logger.info("%s", text))

    # Start once the event loop is running so queued signals are delivered
    QTimer.singleShot(0, lambda: exporter.export(
        project, str(output), args.chunk_frames, args.workers))
    app.exec()
    return status["code"]


if __name__ == "__main__":
    sys.exit(main())
