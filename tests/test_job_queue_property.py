"""
Property-based tests for the job queue manager.

Property: Within one queue, pending jobs are dispatched by ascending priority
and, for equal priority, in submission order.

Property: Parameters submitted with a job are returned unchanged by
get_job_status.
"""

import threading
import uuid
from datetime import datetime, timedelta

import pytest
from hypothesis import given, settings, strategies as st
from sqlalchemy import update

from mediaflow.core.errors import MediaProcessingError, NotFoundError, ValidationError
from mediaflow.db.session import build_engine, build_session_factory, init_db
from mediaflow.domain.jobs import (
    JobStatus,
    JobType,
    MetadataParameters,
    MetadataResult,
    SubtitleParameters,
    ThumbnailParameters,
)
from mediaflow.models.common import utcnow
from mediaflow.models.job import ProcessingJob
from mediaflow.repositories.jobs import SqlAlchemyJobsRepository
from mediaflow.services.job_queue import DEFAULT_POLICIES, STALLED_MESSAGE, JobQueueManager, QueuePolicy

from support import make_session_factory

text_strategy = st.text(
    alphabet=st.characters(blacklist_categories=("Cs", "Cc")),
    min_size=1,
    max_size=80,
)


class Clock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def _metadata_result(job):
    return MetadataResult(duration=1.0)


def _failing(error):
    def handler(job):
        raise error

    return handler


def _params(asset_id=None):
    return MetadataParameters(asset_id=asset_id or uuid.uuid4(), source_path="/videos/a.mp4")


def _file_session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'queue.db'}")
    init_db(engine)
    return build_session_factory(engine)


def _metadata_workers():
    return [t for t in threading.enumerate() if t.name.startswith("mediaflow-metadata-")]


@settings(max_examples=100, deadline=None)
@given(priorities=st.lists(st.integers(min_value=0, max_value=5), min_size=1, max_size=12))
def test_dispatch_order_is_priority_then_submission(priorities):
    dispatched = []

    def handler(job):
        dispatched.append(job.id)
        return None

    manager = JobQueueManager(make_session_factory(), {JobType.METADATA: handler})
    submitted = [
        (priority, index, manager.submit(JobType.METADATA, uuid.uuid4(), _params(), priority=priority))
        for index, priority in enumerate(priorities)
    ]

    while manager.run_next(JobType.METADATA) is not None:
        pass

    expected = [job_id for _, _, job_id in sorted(submitted)]
    assert dispatched == expected


@settings(max_examples=100, deadline=None)
@given(source_path=text_strategy, language=st.text(alphabet="abcdefghijklmnopqrstuvwxyz-", min_size=1, max_size=16))
def test_submitted_parameters_round_trip(source_path, language):
    manager = JobQueueManager(make_session_factory(), {})
    params = SubtitleParameters(asset_id=uuid.uuid4(), source_path=source_path, language=language)

    job_id = manager.submit(JobType.SUBTITLE, params.asset_id, params, priority=4)

    job = manager.get_job_status(job_id)
    assert job.status is JobStatus.PENDING
    assert job.typed_parameters == params
    assert job.retry_count == 0
    assert job.progress == 0.0


def test_queues_are_independent(session_factory):
    manager = JobQueueManager(session_factory, {JobType.METADATA: _metadata_result})
    manager.submit(JobType.THUMBNAIL, uuid.uuid4(), ThumbnailParameters(asset_id=uuid.uuid4(), source_path="a"))

    assert manager.run_next(JobType.METADATA) is None
    assert manager.get_queue_statistics()["thumbnail"].waiting == 1


def test_submit_validates_input(session_factory):
    manager = JobQueueManager(session_factory, {})
    with pytest.raises(ValidationError):
        manager.submit("encode", uuid.uuid4(), _params())
    with pytest.raises(ValidationError):
        manager.submit(JobType.METADATA, uuid.uuid4(), _params(), priority=-1)
    with pytest.raises(ValidationError):
        manager.submit(JobType.METADATA, uuid.uuid4(), {"source_path": "a.mp4"})
    with pytest.raises(ValidationError):
        manager.submit(JobType.TRANSCODE, uuid.uuid4(), _params())


def test_submit_accepts_plain_mapping(session_factory):
    manager = JobQueueManager(session_factory, {})
    asset_id = uuid.uuid4()
    job_id = manager.submit("metadata", asset_id, {"asset_id": str(asset_id), "source_path": "a.mp4"})
    assert manager.get_job_status(job_id).typed_parameters == MetadataParameters(asset_id=asset_id, source_path="a.mp4")


def test_completed_job_stores_result(session_factory):
    manager = JobQueueManager(session_factory, {JobType.METADATA: _metadata_result})
    job_id = manager.submit(JobType.METADATA, uuid.uuid4(), _params())

    finished = manager.run_next(JobType.METADATA)

    assert finished.id == job_id
    assert finished.status is JobStatus.COMPLETED
    assert finished.progress == 100.0
    assert finished.attempts == 1
    assert finished.typed_result == MetadataResult(duration=1.0)
    assert manager.wait_for(job_id, timeout=1).status is JobStatus.COMPLETED


def test_retryable_failure_backs_off_exponentially(session_factory):
    clock = Clock(datetime(2030, 1, 1, 12, 0, 0))
    policies = {JobType.TRANSCODE: QueuePolicy(max_attempts=3, backoff_base_seconds=2.0)}
    manager = JobQueueManager(
        session_factory,
        {JobType.TRANSCODE: _failing(MediaProcessingError("encoder crashed"))},
        policies,
        clock=clock,
    )
    job_id = manager.submit(JobType.TRANSCODE, uuid.uuid4(), {"asset_id": str(uuid.uuid4()), "source_path": "a"})

    first = manager.run_next(JobType.TRANSCODE)
    assert first.status is JobStatus.PENDING
    assert first.retry_count == 1
    assert first.available_at == clock.now + timedelta(seconds=2)
    assert manager.get_queue_statistics()["transcode"].delayed == 1

    assert manager.run_next(JobType.TRANSCODE) is None
    clock.advance(2)
    second = manager.run_next(JobType.TRANSCODE)
    assert second.status is JobStatus.PENDING
    assert second.attempts == 2
    assert second.available_at == clock.now + timedelta(seconds=4)

    clock.advance(3)
    assert manager.run_next(JobType.TRANSCODE) is None
    clock.advance(1)
    final = manager.run_next(JobType.TRANSCODE)
    assert final.status is JobStatus.FAILED
    assert final.attempts == 3
    assert final.retry_count == 2
    assert final.error_message == "encoder crashed"
    assert manager.wait_for(job_id, timeout=1).status is JobStatus.FAILED


def test_permanent_errors_are_not_retried(session_factory):
    manager = JobQueueManager(session_factory, {JobType.METADATA: _failing(ValidationError("bad payload"))})
    manager.submit(JobType.METADATA, uuid.uuid4(), _params())

    failed = manager.run_next(JobType.METADATA)

    assert failed.status is JobStatus.FAILED
    assert failed.attempts == 1
    assert failed.retry_count == 0
    assert manager.get_queue_statistics()["metadata"].failed == 1


def test_missing_handler_fails_job(session_factory):
    manager = JobQueueManager(session_factory, {})
    manager.submit(JobType.METADATA, uuid.uuid4(), _params())
    assert manager.run_next(JobType.METADATA).status is JobStatus.FAILED


def test_retry_failed_job_requeues(session_factory):
    calls = []

    def flaky(job):
        calls.append(job.attempts)
        if len(calls) == 1:
            raise ValidationError("first run rejected")
        return MetadataResult(duration=3.0)

    manager = JobQueueManager(session_factory, {JobType.METADATA: flaky})
    job_id = manager.submit(JobType.METADATA, uuid.uuid4(), _params())
    assert manager.run_next(JobType.METADATA).status is JobStatus.FAILED

    retried = manager.retry_failed_job(job_id)

    assert retried.status is JobStatus.PENDING
    assert retried.retry_count == 1
    assert retried.attempts == 0
    assert retried.error_message is None
    assert manager.run_next(JobType.METADATA).status is JobStatus.COMPLETED
    assert calls == [1, 1]


def test_retry_requires_failed_job(session_factory):
    manager = JobQueueManager(session_factory, {})
    job_id = manager.submit(JobType.METADATA, uuid.uuid4(), _params())

    with pytest.raises(NotFoundError):
        manager.retry_failed_job(job_id)
    with pytest.raises(NotFoundError):
        manager.retry_failed_job(uuid.uuid4())
    assert manager.get_job_status(job_id).retry_count == 0


def test_recover_requeues_orphaned_jobs(session_factory):
    manager = JobQueueManager(session_factory, {JobType.METADATA: _metadata_result})
    job_id = manager.submit(JobType.METADATA, uuid.uuid4(), _params())
    with session_factory() as session:
        SqlAlchemyJobsRepository(session).claim_next(JobType.METADATA, utcnow())
        session.commit()
    assert manager.get_job_status(job_id).status is JobStatus.PROCESSING

    restarted = JobQueueManager(session_factory, {JobType.METADATA: _metadata_result})
    recovered = restarted.recover()

    assert [job.id for job in recovered] == [job_id]
    job = restarted.get_job_status(job_id)
    assert job.status is JobStatus.PENDING
    assert job.retry_count == 1
    assert job.error_message == STALLED_MESSAGE
    assert restarted.run_next(JobType.METADATA).status is JobStatus.COMPLETED


def test_content_jobs_and_statistics(session_factory):
    manager = JobQueueManager(session_factory, {JobType.METADATA: _metadata_result})
    asset_id = uuid.uuid4()
    manager.submit(JobType.METADATA, asset_id, _params(asset_id))
    manager.submit(JobType.THUMBNAIL, asset_id, ThumbnailParameters(asset_id=asset_id, source_path="a"))
    manager.run_next(JobType.METADATA)

    jobs = manager.get_content_jobs(asset_id)
    assert {job.job_type for job in jobs} == {JobType.METADATA, JobType.THUMBNAIL}
    assert [j.job_type for j in manager.get_content_jobs(asset_id, JobType.THUMBNAIL)] == [JobType.THUMBNAIL]

    stats = manager.get_queue_statistics()
    assert set(stats) == {"transcode", "subtitle", "metadata", "thumbnail"}
    assert stats["metadata"].completed == 1
    assert stats["thumbnail"].waiting == 1


def test_default_policies():
    assert DEFAULT_POLICIES[JobType.TRANSCODE] == QueuePolicy(3, 2.0, 1)
    assert DEFAULT_POLICIES[JobType.SUBTITLE] == QueuePolicy(2, 5.0, 1)
    assert DEFAULT_POLICIES[JobType.METADATA] == QueuePolicy(2, 3.0, 2)
    assert DEFAULT_POLICIES[JobType.THUMBNAIL] == QueuePolicy(2, 2.0, 2)
    assert QueuePolicy(3, 2.0).backoff(1) == 2.0
    assert QueuePolicy(3, 2.0).backoff(2) == 4.0
    assert QueuePolicy(3, 2.0).backoff(3, scale=0.5) == 4.0


def test_content_jobs_are_newest_first(session_factory):
    manager = JobQueueManager(session_factory, {})
    asset_id = uuid.uuid4()
    submitted = [manager.submit(JobType.METADATA, asset_id, _params(asset_id)) for _ in range(3)]
    submitted.append(
        manager.submit(JobType.THUMBNAIL, asset_id, ThumbnailParameters(asset_id=asset_id, source_path="a"))
    )

    assert [job.id for job in manager.get_content_jobs(asset_id)] == submitted[::-1]

    with session_factory() as session:
        session.execute(
            update(ProcessingJob)
            .where(ProcessingJob.content_id == asset_id)
            .values(created_at=datetime(2030, 1, 1, 12, 0, 0))
        )
        session.commit()

    assert [job.id for job in manager.get_content_jobs(asset_id)] == submitted[::-1]
    assert [job.id for job in manager.get_content_jobs(asset_id, JobType.METADATA)] == submitted[2::-1]


def test_recover_leaves_recently_active_jobs(session_factory):
    clock = Clock(datetime(2030, 1, 1, 12, 0, 0))
    manager = JobQueueManager(session_factory, {JobType.METADATA: _metadata_result}, clock=clock, stall_timeout=60)
    job_id = manager.submit(JobType.METADATA, uuid.uuid4(), _params())
    with session_factory() as session:
        SqlAlchemyJobsRepository(session).claim_next(JobType.METADATA, clock.now)
        session.commit()

    clock.advance(30)
    assert manager.recover() == []
    assert manager.get_job_status(job_id).status is JobStatus.PROCESSING

    clock.advance(31)
    assert [job.id for job in manager.recover()] == [job_id]
    assert manager.get_job_status(job_id).status is JobStatus.PENDING


def test_unserialisable_result_fails_only_that_job(tmp_path):
    def handler(job):
        if job.typed_parameters.source_path == "/videos/broken.mp4":
            return {"duration": 1.0}
        return MetadataResult(duration=2.0)

    manager = JobQueueManager(
        _file_session_factory(tmp_path),
        {JobType.METADATA: handler},
        {JobType.METADATA: QueuePolicy(max_attempts=1, backoff_base_seconds=0.0, concurrency=1)},
        poll_interval=0.05,
    )
    broken = manager.submit(
        JobType.METADATA,
        uuid.uuid4(),
        MetadataParameters(asset_id=uuid.uuid4(), source_path="/videos/broken.mp4"),
        priority=1,
    )
    healthy = manager.submit(JobType.METADATA, uuid.uuid4(), _params(), priority=2)

    manager.start()
    try:
        failed = manager.wait_for(broken, timeout=10)
        completed = manager.wait_for(healthy, timeout=10)
        assert len(_metadata_workers()) == 1
    finally:
        manager.stop(timeout=5)

    assert failed.status is JobStatus.FAILED
    assert "model_dump" in failed.error_message
    assert completed.status is JobStatus.COMPLETED
    assert completed.typed_result == MetadataResult(duration=2.0)


def test_worker_survives_bookkeeping_error(tmp_path, monkeypatch):
    original = SqlAlchemyJobsRepository.mark_completed
    calls = []

    def mark_completed(self, job_id, result):
        calls.append(job_id)
        if len(calls) == 1:
            raise RuntimeError("database is locked")
        return original(self, job_id, result)

    monkeypatch.setattr(SqlAlchemyJobsRepository, "mark_completed", mark_completed)
    manager = JobQueueManager(
        _file_session_factory(tmp_path),
        {JobType.METADATA: _metadata_result},
        {JobType.METADATA: QueuePolicy(max_attempts=2, backoff_base_seconds=0.0, concurrency=1)},
        poll_interval=0.05,
    )
    first = manager.submit(JobType.METADATA, uuid.uuid4(), _params())
    second = manager.submit(JobType.METADATA, uuid.uuid4(), _params())

    manager.start()
    try:
        first_done = manager.wait_for(first, timeout=10)
        second_done = manager.wait_for(second, timeout=10)
        assert len(_metadata_workers()) == 1
    finally:
        manager.stop(timeout=5)

    assert first_done.status is JobStatus.COMPLETED
    assert first_done.attempts == 2
    assert first_done.retry_count == 1
    assert second_done.status is JobStatus.COMPLETED
    assert second_done.attempts == 1
