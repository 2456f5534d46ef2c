"""
Progress tracking for running jobs.

A job is split into weighted steps; progress inside a step is mapped onto the
job's overall 0-100 progress and committed to the job row so pollers see it.
"""
from dataclasses import dataclass
from typing import Callable, Optional
from uuid import UUID

import structlog
from sqlalchemy.orm import Session, sessionmaker

from mediaflow.repositories.jobs import SqlAlchemyJobsRepository

logger = structlog.get_logger(__name__)


@dataclass
class ProgressStep:
    """Defines a step in the processing pipeline."""
    name: str
    description: str
    weight: float  # Weight of this step in overall progress (0-1)


class ProgressTracker:
    """
    Tracks and persists job progress.

    Usage:
        tracker = ProgressTracker(session_factory, job_id, [
            ProgressStep("extract", "Extracting audio", 0.2),
            ProgressStep("transcribe", "Transcribing audio", 0.7),
            ProgressStep("write", "Writing subtitles", 0.1),
        ])

        tracker.start_step("extract")
        tracker.update(0.5, "Extracted 50%")
        tracker.complete_step()
    """

    MIN_DELTA = 1.0  # percentage points between writes

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        job_id: UUID,
        steps: list[ProgressStep],
    ):
        if not steps:
            raise ValueError("ProgressTracker needs at least one step")
        self._session_factory = session_factory
        self.job_id = job_id
        self.steps = steps
        self.current_step_idx = -1
        self.progress = 0.0
        self._last_written = -1.0

        total_weight = sum(s.weight for s in steps) or 1.0
        self.normalized_weights = [s.weight / total_weight for s in steps]
        self.cumulative_weights = []
        cumsum = 0.0
        for w in self.normalized_weights:
            self.cumulative_weights.append(cumsum)
            cumsum += w

    def start_step(self, step_name: str, message: Optional[str] = None) -> None:
        for i, step in enumerate(self.steps):
            if step.name == step_name:
                self.current_step_idx = i
                break
        else:
            logger.warning("progress.unknown_step", job_id=str(self.job_id), step_name=step_name)
            return

        step = self.steps[self.current_step_idx]
        self._write(self.cumulative_weights[self.current_step_idx] * 100, message or step.description, force=True)
        logger.debug(
            "progress.step_start",
            job_id=str(self.job_id),
            step=step_name,
            step_num=self.current_step_idx + 1,
            total_steps=len(self.steps),
        )

    def update(self, step_progress: float, message: Optional[str] = None) -> None:
        """Report progress (0-1) within the current step."""
        if self.current_step_idx < 0:
            return
        step_progress = max(0.0, min(1.0, step_progress))
        base = self.cumulative_weights[self.current_step_idx]
        weight = self.normalized_weights[self.current_step_idx]
        self._write((base + weight * step_progress) * 100, message)

    def complete_step(self) -> None:
        if self.current_step_idx < 0:
            return
        step = self.steps[self.current_step_idx]
        done = (self.cumulative_weights[self.current_step_idx] + self.normalized_weights[self.current_step_idx]) * 100
        self._write(done, f"{step.description} - done", force=True)

    def callback(self) -> Callable[[float, str], None]:
        """Adapter for ffmpeg progress callbacks of the form (0-1, message)."""
        return lambda fraction, message: self.update(fraction, message)

    def _write(self, progress: float, message: Optional[str], force: bool = False) -> None:
        progress = round(min(99.0, max(0.0, progress)), 2)
        self.progress = progress
        if not force and progress - self._last_written < self.MIN_DELTA:
            return
        self._last_written = progress
        with self._session_factory() as session:
            SqlAlchemyJobsRepository(session).update_progress(self.job_id, progress, message)
            session.commit()
