"""Chunked, parallel export of per-frame render parameters.

The frame range is cut into fixed-size chunks.  A sequential *seed
pass* walks the timeline once, advancing only camera and cursor state,
and records an :class:`EvaluatorSnapshot` at each chunk boundary.  Each chunk is then rendered on its own worker
starting from nothing but its seed, so chunks can finish in any order,
be retried, or be resumed later from a saved seed.  Results are
assembled in frame order.

Cancelling stops new chunks from being issued; chunks still running
notice the flag, and their partial output is thrown away.

:class:`ChunkedExporter` wraps the run in a background thread and
reports through Qt signals, the same way the rest of the app reports
long-running work.
"""

import json
import logging
import os
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from PySide6.QtCore import QObject, Signal

from .evaluator import EvaluatorSnapshot, RecordingRegistry, RenderParams, TimelineEvaluator
from .models import Project

logger = logging.getLogger(__name__)


DEFAULT_CHUNK_FRAMES = 150
DEFAULT_WORKERS = max(1, min(4, (os.cpu_count() or 2) - 1))


@dataclass(frozen=True)
class ChunkPlan:
    index: int
    start_frame: int
    end_frame: int  # exclusive

    @property
    def frame_count(self) -> int:
        return self.end_frame - self.start_frame


@dataclass
class ExportResult:
    frames: List[RenderParams] = field(default_factory=list)
    completed: Dict[int, List[RenderParams]] = field(default_factory=dict)
    cancelled: bool = False


def plan_chunks(total_frames: int, chunk_frames: int = DEFAULT_CHUNK_FRAMES,
                start_frame: int = 0) -> List[ChunkPlan]:
    """Split ``[start_frame, total_frames)`` into consecutive chunks."""
    if chunk_frames <= 0:
        raise ValueError(f"chunk size must be positive, got {chunk_frames}")
    chunks: List[ChunkPlan] = []
    start = start_frame
    while start < total_frames:
        end = min(start + chunk_frames, total_frames)
        chunks.append(ChunkPlan(index=len(chunks), start_frame=start, end_frame=end))
        start = end
    return chunks


def compute_chunk_seeds(
    evaluator: TimelineEvaluator,
    chunks: List[ChunkPlan],
    initial: Optional[EvaluatorSnapshot] = None,
    cancel: Optional[threading.Event] = None,
) -> Optional[List[EvaluatorSnapshot]]:
    """Snapshot at the first frame of every chunk, in timeline order.

    Returns ``None`` if *cancel* is set before the pass finishes.
    """
    state = initial.copy() if initial is not None else EvaluatorSnapshot()
    seeds: List[EvaluatorSnapshot] = []
    frame = chunks[0].start_frame if chunks else 0
    for chunk in chunks:
        if cancel is not None and cancel.is_set():
            return None
        for f in range(frame, chunk.start_frame):
            evaluator.advance_frame(f, state)
        frame = chunk.start_frame
        seeds.append(state.copy())
    return seeds


def render_chunk(
    evaluator: TimelineEvaluator,
    chunk: ChunkPlan,
    seed: EvaluatorSnapshot,
    cancel: Optional[threading.Event] = None,
) -> Optional[List[RenderParams]]:
    """Evaluate one chunk from its seed.  ``None`` if cancelled midway."""
    state = seed.copy()
    out: List[RenderParams] = []
    for f in range(chunk.start_frame, chunk.end_frame):
        if cancel is not None and cancel.is_set():
            logger.debug("Chunk %d cancelled at frame %d", chunk.index, f)
            return None
        out.append(evaluator.evaluate_frame(f, state))
    return out


def export_render_params(
    evaluator: TimelineEvaluator,
    chunk_frames: int = DEFAULT_CHUNK_FRAMES,
    workers: int = DEFAULT_WORKERS,
    cancel: Optional[threading.Event] = None,
    on_progress: Optional[Callable[[float], None]] = None,
) -> ExportResult:
    """Render every frame of *evaluator*'s timeline across *workers* threads."""
    chunks = plan_chunks(evaluator.total_frames, chunk_frames)
    result = ExportResult()
    if not chunks:
        return result

    seeds = compute_chunk_seeds(evaluator, chunks, cancel=cancel)
    if seeds is None:
        result.cancelled = True
        return result
    logger.info("Export: %d frames in %d chunks on %d workers",
                evaluator.total_frames, len(chunks), workers)

    pending = list(chunks)
    running: Dict[Future, ChunkPlan] = {}
    with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
        while pending or running:
            while pending and len(running) < max(1, workers):
                if cancel is not None and cancel.is_set():
                    pending.clear()
                    break
                chunk = pending.pop(0)
                running[pool.submit(render_chunk, evaluator, chunk, seeds[chunk.index], cancel)] = chunk
            if not running:
                break
            done, _ = wait(list(running), return_when=FIRST_COMPLETED)
            for fut in done:
                chunk = running.pop(fut)
                frames = fut.result()
                if frames is None:
                    continue
                result.completed[chunk.index] = frames
                logger.debug("Chunk %d done (%d frames)", chunk.index, len(frames))
                if on_progress is not None:
                    on_progress(len(result.completed) / len(chunks))

    if cancel is not None and cancel.is_set():
        logger.warning("Export cancelled after %d/%d chunks", len(result.completed), len(chunks))
        result.cancelled = True
        return result

    for i in range(len(chunks)):
        result.frames.extend(result.completed[i])
    return result


def write_render_params(path: str, frames: List[RenderParams]) -> None:
    """Write one JSON object per frame (JSON Lines)."""
    with open(path, "w", encoding="utf-8") as f:
        for params in frames:
            f.write(json.dumps(params.to_dict()))
            f.write("\n")


class ChunkedExporter(QObject):
    """Runs :func:`export_render_params` on a background thread."""

    progress = Signal(float)  # 0.0–1.0
    finished = Signal(str)    # output path
    error = Signal(str)
    status = Signal(str)

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._thread: Optional[threading.Thread] = None
        self._cancel = threading.Event()

    # ── public API ──────────────────────────────────────────────────

    def export(
        self,
        project: Project,
        output_path: str,
        chunk_frames: int = DEFAULT_CHUNK_FRAMES,
        workers: int = DEFAULT_WORKERS,
    ) -> None:
        """Start the export; results are written to *output_path*."""
        self._cancel.clear()
        self._thread = threading.Thread(
            target=self._run,
            args=(project, output_path, chunk_frames, workers),
            daemon=True,
        )
        self._thread.start()

    def cancel(self) -> None:
        self._cancel.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the worker thread exits.  True if it did."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # ── internal ────────────────────────────────────────────────────

    def _run(self, project: Project, output_path: str, chunk_frames: int, workers: int) -> None:
        try:
            project.validate()
            registry = RecordingRegistry(project.recordings)
            evaluator = TimelineEvaluator(project, registry)
            self.status.emit(f"Rendering {evaluator.total_frames} frames…")
            result = export_render_params(
                evaluator, chunk_frames, workers,
                cancel=self._cancel, on_progress=self.progress.emit,
            )
            if result.cancelled:
                self.status.emit("Export cancelled")
                return
            write_render_params(output_path, result.frames)
            logger.info("Export finished: %s (%d frames)", output_path, len(result.frames))
            self.progress.emit(1.0)
            self.finished.emit(output_path)
        except Exception as exc:
            logger.exception("Export failed")
            self.error.emit(str(exc))
