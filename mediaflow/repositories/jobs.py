from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from ..domain.jobs import Job, JobStatus, JobType, QueueStats
from ..models.common import utcnow
from ..models.job import ProcessingJob


class JobsRepository(Protocol):
    def create(
        self,
        job_type: JobType,
        content_id: UUID,
        parameters: dict[str, Any],
        priority: int,
        sequence: int,
    ) -> Job: ...

    def get(self, job_id: UUID) -> Job | None: ...

    def list_for_content(self, content_id: UUID, job_type: JobType | None = None) -> list[Job]: ...

    def claim_next(self, job_type: JobType, now: datetime) -> Job | None: ...

    def update_progress(self, job_id: UUID, progress: float, message: str | None = None) -> None: ...

    def mark_completed(self, job_id: UUID, result: dict[str, Any] | None) -> Job | None: ...

    def mark_failed(self, job_id: UUID, error: str) -> Job | None: ...

    def schedule_retry(self, job_id: UUID, error: str, available_at: datetime) -> Job | None: ...

    def reset_for_retry(self, job_id: UUID) -> Job | None: ...

    def requeue_orphaned(self, message: str, updated_before: datetime | None = None) -> list[Job]: ...

    def queue_statistics(self, now: datetime) -> dict[str, QueueStats]: ...


class SqlAlchemyJobsRepository:
    """SQL-backed job record store.

    Methods flush but never commit; the caller owns the transaction.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def create(
        self,
        job_type: JobType,
        content_id: UUID,
        parameters: dict[str, Any],
        priority: int,
        sequence: int,
    ) -> Job:
        model = ProcessingJob(
            job_type=job_type.value,
            content_id=content_id,
            parameters=parameters,
            priority=priority,
            sequence=sequence,
            status=JobStatus.PENDING.value,
            progress=0.0,
            retry_count=0,
            attempts=0,
        )
        self._session.add(model)
        self._session.flush()
        return Job.model_validate(model)

    def get(self, job_id: UUID) -> Job | None:
        model = self._session.get(ProcessingJob, job_id)
        if not model:
            return None
        return Job.model_validate(model)

    def list_for_content(self, content_id: UUID, job_type: JobType | None = None) -> list[Job]:
        stmt = select(ProcessingJob).where(ProcessingJob.content_id == content_id)
        if job_type is not None:
            stmt = stmt.where(ProcessingJob.job_type == job_type.value)
        stmt = stmt.order_by(ProcessingJob.created_at.desc(), ProcessingJob.sequence.desc())
        return [Job.model_validate(row) for row in self._session.scalars(stmt).all()]

    def claim_next(self, job_type: JobType, now: datetime) -> Job | None:
        """Move the most urgent dispatchable job to processing.

        Ordering is priority ascending then submission sequence. The status
        guard on the update keeps two workers from claiming the same row.
        """

        candidates = self._session.scalars(
            select(ProcessingJob.id)
            .where(
                ProcessingJob.job_type == job_type.value,
                ProcessingJob.status == JobStatus.PENDING.value,
                or_(ProcessingJob.available_at.is_(None), ProcessingJob.available_at <= now),
            )
            .order_by(ProcessingJob.priority.asc(), ProcessingJob.sequence.asc())
            .limit(5)
        ).all()
        for job_id in candidates:
            result = self._session.execute(
                update(ProcessingJob)
                .where(
                    ProcessingJob.id == job_id,
                    ProcessingJob.status == JobStatus.PENDING.value,
                )
                .values(
                    status=JobStatus.PROCESSING.value,
                    progress=0.0,
                    progress_message=None,
                    attempts=ProcessingJob.attempts + 1,
                    started_at=now,
                    completed_at=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                model = self._session.get(ProcessingJob, job_id, populate_existing=True)
                return Job.model_validate(model)
        return None

    def update_progress(self, job_id: UUID, progress: float, message: str | None = None) -> None:
        values: dict[str, object] = {"progress": max(0.0, min(100.0, float(progress))), "updated_at": utcnow()}
        if message is not None:
            values["progress_message"] = message[:255]
        self._session.execute(
            update(ProcessingJob)
            .where(ProcessingJob.id == job_id, ProcessingJob.status == JobStatus.PROCESSING.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    def mark_completed(self, job_id: UUID, result: dict[str, Any] | None) -> Job | None:
        model = self._session.get(ProcessingJob, job_id, populate_existing=True)
        if not model:
            return None
        now = utcnow()
        model.status = JobStatus.COMPLETED.value
        model.progress = 100.0
        model.result_data = result
        model.error_message = None
        model.available_at = None
        model.completed_at = now
        model.updated_at = now
        self._session.flush()
        return Job.model_validate(model)

    def mark_failed(self, job_id: UUID, error: str) -> Job | None:
        model = self._session.get(ProcessingJob, job_id, populate_existing=True)
        if not model:
            return None
        now = utcnow()
        model.status = JobStatus.FAILED.value
        model.error_message = error
        model.available_at = None
        model.completed_at = now
        model.updated_at = now
        self._session.flush()
        return Job.model_validate(model)

    def schedule_retry(self, job_id: UUID, error: str, available_at: datetime) -> Job | None:
        """Send a job that failed an attempt back to pending after a delay."""

        model = self._session.get(ProcessingJob, job_id, populate_existing=True)
        if not model:
            return None
        model.status = JobStatus.PENDING.value
        model.error_message = error
        model.retry_count = (model.retry_count or 0) + 1
        model.available_at = available_at
        model.updated_at = utcnow()
        self._session.flush()
        return Job.model_validate(model)

    def reset_for_retry(self, job_id: UUID) -> Job | None:
        """Manual retry of a permanently failed job; returns None unless it was failed."""

        model = self._session.get(ProcessingJob, job_id, populate_existing=True)
        if not model or model.status != JobStatus.FAILED.value:
            return None
        model.status = JobStatus.PENDING.value
        model.progress = 0.0
        model.progress_message = None
        model.retry_count = (model.retry_count or 0) + 1
        model.attempts = 0
        model.error_message = None
        model.result_data = None
        model.available_at = None
        model.started_at = None
        model.completed_at = None
        model.updated_at = utcnow()
        self._session.flush()
        return Job.model_validate(model)

    def requeue_orphaned(self, message: str, updated_before: datetime | None = None) -> list[Job]:
        stmt = select(ProcessingJob).where(ProcessingJob.status == JobStatus.PROCESSING.value)
        if updated_before is not None:
            stmt = stmt.where(ProcessingJob.updated_at <= updated_before)
        rows = self._session.scalars(stmt).all()
        now = utcnow()
        for model in rows:
            model.status = JobStatus.PENDING.value
            model.retry_count = (model.retry_count or 0) + 1
            model.error_message = message
            model.available_at = None
            model.updated_at = now
        self._session.flush()
        return [Job.model_validate(row) for row in rows]

    def queue_statistics(self, now: datetime) -> dict[str, QueueStats]:
        stats = {job_type.value: QueueStats() for job_type in JobType}
        rows = self._session.execute(
            select(ProcessingJob.job_type, ProcessingJob.status, func.count(ProcessingJob.id))
            .group_by(ProcessingJob.job_type, ProcessingJob.status)
        ).all()
        field_for_status = {
            JobStatus.PENDING.value: "waiting",
            JobStatus.PROCESSING.value: "active",
            JobStatus.COMPLETED.value: "completed",
            JobStatus.FAILED.value: "failed",
        }
        for job_type, status, count in rows:
            if job_type not in stats or status not in field_for_status:
                continue
            setattr(stats[job_type], field_for_status[status], int(count))

        delayed = self._session.execute(
            select(ProcessingJob.job_type, func.count(ProcessingJob.id))
            .where(
                and_(
                    ProcessingJob.status == JobStatus.PENDING.value,
                    ProcessingJob.available_at.is_not(None),
                    ProcessingJob.available_at > now,
                )
            )
            .group_by(ProcessingJob.job_type)
        ).all()
        for job_type, count in delayed:
            if job_type in stats:
                stats[job_type].delayed = int(count)
        return stats
