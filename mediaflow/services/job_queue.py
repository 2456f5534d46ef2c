"""Priority job queues backed by the processing_jobs table.

Each job type has its own bounded pool of worker threads. The database row is
the queue entry: workers claim the most urgent dispatchable row with a guarded
update, run the handler for its type and commit every status change before
moving on.
"""

from __future__ import annotations

import threading
import time
import traceback
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping
from uuid import UUID

import structlog
from pydantic import BaseModel
from sqlalchemy.orm import Session, sessionmaker

from .. import telemetry
from ..core.config import Settings
from ..core.errors import NotFoundError, ValidationError, is_retryable
from ..domain.jobs import Job, JobStatus, JobType, QueueStats, decode_parameters, encode_payload
from ..models.common import utcnow
from ..repositories.jobs import SqlAlchemyJobsRepository

logger = structlog.get_logger(__name__)

JobHandler = Callable[[Job], BaseModel | None]
JobListener = Callable[[Job], None]

STALLED_MESSAGE = "worker stalled"


@dataclass(frozen=True)
class QueuePolicy:
    max_attempts: int
    backoff_base_seconds: float
    concurrency: int = 1

    def backoff(self, attempts: int, scale: float = 1.0) -> float:
        """Delay before the next attempt after ``attempts`` executions failed."""

        return self.backoff_base_seconds * (2 ** max(0, attempts - 1)) * scale


DEFAULT_POLICIES: dict[JobType, QueuePolicy] = {
    JobType.TRANSCODE: QueuePolicy(max_attempts=3, backoff_base_seconds=2.0, concurrency=1),
    JobType.SUBTITLE: QueuePolicy(max_attempts=2, backoff_base_seconds=5.0, concurrency=1),
    JobType.METADATA: QueuePolicy(max_attempts=2, backoff_base_seconds=3.0, concurrency=2),
    JobType.THUMBNAIL: QueuePolicy(max_attempts=2, backoff_base_seconds=2.0, concurrency=2),
}


def policies_from_settings(settings: Settings) -> dict[JobType, QueuePolicy]:
    return {
        job_type: QueuePolicy(
            max_attempts=policy.max_attempts,
            backoff_base_seconds=policy.backoff_base_seconds,
            concurrency=settings.queue_concurrency(job_type.value),
        )
        for job_type, policy in DEFAULT_POLICIES.items()
    }


class JobQueueManager:
    """Submits, dispatches and retries background jobs."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        handlers: Mapping[JobType, JobHandler],
        policies: Mapping[JobType, QueuePolicy] | None = None,
        *,
        poll_interval: float = 1.0,
        backoff_scale: float = 1.0,
        clock: Callable[[], datetime] = utcnow,
        on_finished: JobListener | None = None,
        stall_timeout: float = 0.0,
    ) -> None:
        self._session_factory = session_factory
        self._handlers = dict(handlers)
        self._policies = {**DEFAULT_POLICIES, **(policies or {})}
        self._poll_interval = poll_interval
        self._backoff_scale = backoff_scale
        self._clock = clock
        self._on_finished = on_finished
        self._stall_timeout = stall_timeout

        self._sequence_lock = threading.Lock()
        self._last_sequence = 0
        self._futures: dict[UUID, Future[Job]] = {}
        self._futures_lock = threading.Lock()
        self._wakeups = {job_type: threading.Event() for job_type in JobType}
        self._stopping = threading.Event()
        self._threads: list[threading.Thread] = []

    # Lifecycle --------------------------------------------------------------

    @property
    def running(self) -> bool:
        return bool(self._threads) and not self._stopping.is_set()

    def start(self) -> None:
        if self._threads:
            return
        self._stopping.clear()
        self.recover()
        for job_type in JobType:
            policy = self._policies[job_type]
            for idx in range(max(1, policy.concurrency)):
                thread = threading.Thread(
                    target=self._worker_loop,
                    args=(job_type,),
                    name=f"mediaflow-{job_type.value}-{idx}",
                    daemon=True,
                )
                thread.start()
                self._threads.append(thread)
        logger.info(
            "queue.started",
            workers={jt.value: self._policies[jt].concurrency for jt in JobType},
        )

    def stop(self, wait: bool = True, timeout: float | None = None) -> None:
        """Stop accepting work; running handlers finish their current job."""

        self._stopping.set()
        for event in self._wakeups.values():
            event.set()
        if wait:
            for thread in self._threads:
                thread.join(timeout)
        self._threads = []
        logger.info("queue.stopped")

    def recover(self) -> list[Job]:
        """Re-queue jobs left in processing by a worker that no longer exists.

        Only rows untouched for ``stall_timeout`` seconds are taken back, so a
        job whose progress another process is still reporting keeps running.
        """

        cutoff = self._clock() - timedelta(seconds=self._stall_timeout)
        with self._session_factory() as session:
            orphaned = SqlAlchemyJobsRepository(session).requeue_orphaned(STALLED_MESSAGE, cutoff)
            session.commit()
        for job in orphaned:
            logger.warning("queue.job_recovered", job_id=str(job.id), job_type=job.job_type.value)
        self._wake_all()
        return orphaned

    # Submission -------------------------------------------------------------

    def submit(
        self,
        job_type: JobType | str,
        content_id: UUID,
        parameters: BaseModel | Mapping[str, Any],
        priority: int = 5,
    ) -> UUID:
        """Persist a pending job and return its id without waiting for execution."""

        try:
            job_type = JobType(job_type)
        except ValueError:
            raise ValidationError(f"Unknown job type {job_type!r}") from None
        if content_id is None:
            raise ValidationError("content_id is required")
        if isinstance(priority, bool) or not isinstance(priority, int) or priority < 0:
            raise ValidationError(f"priority must be a non-negative integer, got {priority!r}")
        raw = encode_payload(parameters) if isinstance(parameters, BaseModel) else {"kind": job_type.value, **parameters}
        payload = encode_payload(decode_parameters(job_type, raw))

        with self._session_factory() as session:
            job = SqlAlchemyJobsRepository(session).create(
                job_type, content_id, payload, priority, self._next_sequence()
            )
            session.commit()

        with self._futures_lock:
            self._futures[job.id] = Future()
        self._wakeups[job_type].set()
        logger.info(
            "queue.job_submitted",
            job_id=str(job.id),
            job_type=job_type.value,
            content_id=str(content_id),
            priority=priority,
        )
        return job.id

    def retry_failed_job(self, job_id: UUID) -> Job:
        """Send a permanently failed job back to its queue, skipping backoff."""

        with self._session_factory() as session:
            job = SqlAlchemyJobsRepository(session).reset_for_retry(job_id)
            if job is None:
                raise NotFoundError(f"Job {job_id} not found or not failed")
            session.commit()

        with self._futures_lock:
            self._futures[job.id] = Future()
        self._wakeups[job.job_type].set()
        logger.info("queue.job_retried", job_id=str(job.id), job_type=job.job_type.value, retry_count=job.retry_count)
        return job

    # Queries ----------------------------------------------------------------

    def get_job_status(self, job_id: UUID) -> Job:
        with self._session_factory() as session:
            job = SqlAlchemyJobsRepository(session).get(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    def get_content_jobs(self, content_id: UUID, job_type: JobType | None = None) -> list[Job]:
        with self._session_factory() as session:
            return SqlAlchemyJobsRepository(session).list_for_content(content_id, job_type)

    def get_queue_statistics(self) -> dict[str, QueueStats]:
        with self._session_factory() as session:
            return SqlAlchemyJobsRepository(session).queue_statistics(self._clock())

    def result_future(self, job_id: UUID) -> Future[Job]:
        """Future resolved once, with the job, when it reaches completed or failed."""

        with self._futures_lock:
            future = self._futures.get(job_id)
            if future is None:
                future = Future()
                self._futures[job_id] = future
        job = self.get_job_status(job_id)
        if job.is_terminal:
            self._resolve(job)
        return future

    def wait_for(self, job_id: UUID, timeout: float | None = None) -> Job:
        return self.result_future(job_id).result(timeout)

    # Dispatch ---------------------------------------------------------------

    def run_next(self, job_type: JobType | str) -> Job | None:
        """Claim and execute one job of ``job_type`` in the calling thread."""

        job = self._claim(JobType(job_type))
        if job is None:
            return None
        return self._execute(job)

    def _worker_loop(self, job_type: JobType) -> None:
        wakeup = self._wakeups[job_type]
        while not self._stopping.is_set():
            wakeup.clear()
            try:
                job = self._claim(job_type)
            except Exception as e:
                logger.error(
                    "queue.claim_error",
                    job_type=job_type.value,
                    error=str(e),
                    traceback=traceback.format_exc(),
                )
                self._stopping.wait(self._poll_interval)
                continue
            if job is None:
                wakeup.wait(self._poll_interval)
                continue
            try:
                self._execute(job)
            except Exception as e:
                logger.error(
                    "queue.job_error",
                    job_id=str(job.id),
                    job_type=job_type.value,
                    error=str(e),
                    traceback=traceback.format_exc(),
                )
                self._release(job, e)

    def _claim(self, job_type: JobType) -> Job | None:
        with self._session_factory() as session:
            job = SqlAlchemyJobsRepository(session).claim_next(job_type, self._clock())
            session.commit()
        return job

    def _execute(self, job: Job) -> Job:
        queue = job.job_type.value
        log = logger.bind(job_id=str(job.id), job_type=queue, attempt=job.attempts)
        log.info("queue.job_started", content_id=str(job.content_id))
        telemetry.record_job_started(queue)
        started = time.perf_counter()

        handler = self._handlers.get(job.job_type)
        try:
            if handler is None:
                raise ValidationError(f"No handler registered for {queue} jobs")
            result = handler(job)
            payload = encode_payload(result) if result is not None else None
        except Exception as e:
            return self._handle_failure(job, e, time.perf_counter() - started)

        with self._session_factory() as session:
            finished = SqlAlchemyJobsRepository(session).mark_completed(job.id, payload)
            session.commit()
        if finished is None:
            raise NotFoundError(f"Job {job.id} disappeared while running")
        elapsed = time.perf_counter() - started
        telemetry.record_job_finished(queue, "succeeded", elapsed)
        log.info("queue.job_completed", duration=round(elapsed, 3))
        self._finish(finished)
        return finished

    def _handle_failure(self, job: Job, error: Exception, elapsed: float) -> Job:
        queue = job.job_type.value
        policy = self._policies[job.job_type]
        message = str(error) or error.__class__.__name__

        if is_retryable(error) and job.attempts < policy.max_attempts:
            delay = policy.backoff(job.attempts, self._backoff_scale)
            available_at = self._clock() + timedelta(seconds=delay)
            with self._session_factory() as session:
                retried = SqlAlchemyJobsRepository(session).schedule_retry(job.id, message, available_at)
                session.commit()
            if retried is None:
                raise NotFoundError(f"Job {job.id} disappeared while running")
            telemetry.record_job_finished(queue, "retried", elapsed)
            logger.warning(
                "queue.job_retry_scheduled",
                job_id=str(job.id),
                job_type=queue,
                attempt=job.attempts,
                max_attempts=policy.max_attempts,
                delay=delay,
                error=message,
            )
            self._wakeups[job.job_type].set()
            return retried

        with self._session_factory() as session:
            failed = SqlAlchemyJobsRepository(session).mark_failed(job.id, message)
            session.commit()
        if failed is None:
            raise NotFoundError(f"Job {job.id} disappeared while running")
        telemetry.record_job_finished(queue, "failed", elapsed)
        logger.error(
            "queue.job_failed",
            job_id=str(job.id),
            job_type=queue,
            attempts=job.attempts,
            error=message,
            traceback="".join(traceback.format_exception(type(error), error, error.__traceback__)),
        )
        self._finish(failed)
        return failed

    def _release(self, job: Job, error: Exception) -> None:
        """Settle a job whose bookkeeping raised so it does not sit in processing."""

        try:
            current = self.get_job_status(job.id)
            if current.status is JobStatus.PROCESSING:
                self._handle_failure(job, error, 0.0)
            elif current.is_terminal:
                self._resolve(current)
        except Exception as e:
            # left for start-up recovery
            logger.error(
                "queue.job_release_error",
                job_id=str(job.id),
                error=str(e),
                traceback=traceback.format_exc(),
            )

    def _finish(self, job: Job) -> None:
        if self._on_finished is not None:
            try:
                self._on_finished(job)
            except Exception as e:
                logger.error(
                    "queue.finish_hook_error",
                    job_id=str(job.id),
                    error=str(e),
                    traceback=traceback.format_exc(),
                )
        self._resolve(job)

    def _resolve(self, job: Job) -> None:
        with self._futures_lock:
            future = self._futures.pop(job.id, None)
        if future is not None and not future.done():
            future.set_result(job)

    def _next_sequence(self) -> int:
        with self._sequence_lock:
            self._last_sequence = max(self._last_sequence + 1, time.time_ns())
            return self._last_sequence

    def _wake_all(self) -> None:
        for event in self._wakeups.values():
            event.set()
