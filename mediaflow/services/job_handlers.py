"""Per-queue job handlers that adapt typed payloads to media engine calls."""

from __future__ import annotations

import threading
from typing import Callable, TypeVar
from uuid import UUID

import structlog
from pydantic import BaseModel
from sqlalchemy.orm import Session, sessionmaker

from ..core.errors import NotFoundError, ValidationError
from ..domain.jobs import (
    Job,
    JobStatus,
    JobType,
    MetadataParameters,
    MetadataResult,
    SubtitleParameters,
    SubtitleResult,
    ThumbnailParameters,
    ThumbnailResult,
    TranscodeParameters,
    TranscodeResult,
)
from ..domain.media import ProcessingStatus
from ..repositories.jobs import SqlAlchemyJobsRepository
from ..repositories.media import SqlAlchemyMediaRepository
from .media_processing import MediaProcessingEngine
from .progress_tracker import ProgressStep, ProgressTracker

logger = structlog.get_logger(__name__)

JobHandler = Callable[[Job], BaseModel]

P = TypeVar("P", bound=BaseModel)


def _expect(job: Job, expected: type[P]) -> P:
    params = job.typed_parameters
    if not isinstance(params, expected):
        raise ValidationError(f"Job {job.id} carries {type(params).__name__}, expected {expected.__name__}")
    return params


class MediaJobHandlers:
    """Handlers for the four media queues plus the asset status roll-up."""

    def __init__(self, session_factory: sessionmaker[Session], engine: MediaProcessingEngine) -> None:
        self._session_factory = session_factory
        self._engine = engine
        self._status_lock = threading.Lock()

    def registry(self) -> dict[JobType, JobHandler]:
        return {
            JobType.METADATA: self.handle_metadata,
            JobType.THUMBNAIL: self.handle_thumbnail,
            JobType.TRANSCODE: self.handle_transcode,
            JobType.SUBTITLE: self.handle_subtitle,
        }

    def handle_metadata(self, job: Job) -> MetadataResult:
        params = _expect(job, MetadataParameters)
        self._mark_asset_processing(params.asset_id)
        probe = self._engine.extract_metadata(params.source_path)
        with self._session_factory() as session:
            asset = SqlAlchemyMediaRepository(session).apply_probe(params.asset_id, probe)
            if asset is None:
                raise NotFoundError(f"Media asset {params.asset_id} not found")
            session.commit()
        return MetadataResult(
            duration=probe.duration,
            bitrate=probe.bitrate,
            resolution=probe.resolution,
            format=probe.format,
        )

    def handle_thumbnail(self, job: Job) -> ThumbnailResult:
        params = _expect(job, ThumbnailParameters)
        self._mark_asset_processing(params.asset_id)
        path = self._engine.generate_thumbnail(params.asset_id, params.source_path, params.time_offset)
        return ThumbnailResult(thumbnail_path=path)

    def handle_transcode(self, job: Job) -> TranscodeResult:
        params = _expect(job, TranscodeParameters)
        self._mark_asset_processing(params.asset_id)
        tracker = ProgressTracker(
            self._session_factory,
            job.id,
            [ProgressStep("encode", "Encoding renditions", 1.0)],
        )
        tracker.start_step("encode")
        rendition_ids = self._engine.transcode(
            params.asset_id,
            params.source_path,
            params.ladder,
            on_progress=tracker.callback(),
        )
        tracker.complete_step()
        return TranscodeResult(
            rendition_ids=rendition_ids,
            processed_resolutions=[rung.resolution for rung in params.ladder],
        )

    def handle_subtitle(self, job: Job) -> SubtitleResult:
        params = _expect(job, SubtitleParameters)
        self._mark_asset_processing(params.asset_id)
        tracker = ProgressTracker(
            self._session_factory,
            job.id,
            [
                ProgressStep("transcribe", "Transcribing audio", 0.9),
                ProgressStep("write", "Writing subtitles", 0.1),
            ],
        )
        tracker.start_step("transcribe")
        subtitle_id = self._engine.generate_subtitles(
            params.asset_id,
            params.source_path,
            params.language,
            on_progress=tracker.callback(),
        )
        tracker.start_step("write")
        document = self._engine.get_subtitles(params.asset_id, params.language)
        tracker.complete_step()
        return SubtitleResult(
            subtitle_id=subtitle_id,
            language=params.language,
            segment_count=len(document.segments),
        )

    def job_finished(self, job: Job) -> None:
        """Roll every job of the asset up into the asset's processing status."""

        self.refresh_asset_status(job.content_id)

    def refresh_asset_status(self, asset_id: UUID) -> ProcessingStatus | None:
        # serialized so a slower roll-up cannot overwrite a newer one
        with self._status_lock, self._session_factory() as session:
            media = SqlAlchemyMediaRepository(session)
            if media.get_asset(asset_id) is None:
                return None
            statuses = {j.status for j in SqlAlchemyJobsRepository(session).list_for_content(asset_id)}
            status = _aggregate_status(statuses)
            media.set_processing_status(asset_id, status)
            session.commit()
        logger.debug("media.asset.status", asset_id=str(asset_id), status=status.value)
        return status

    def _mark_asset_processing(self, asset_id: UUID) -> None:
        with self._session_factory() as session:
            media = SqlAlchemyMediaRepository(session)
            if media.get_asset(asset_id) is None:
                raise NotFoundError(f"Media asset {asset_id} not found")
            media.set_processing_status(asset_id, ProcessingStatus.PROCESSING)
            session.commit()


def _aggregate_status(statuses: set[JobStatus]) -> ProcessingStatus:
    if not statuses:
        return ProcessingStatus.PENDING
    if JobStatus.PROCESSING in statuses or (
        JobStatus.PENDING in statuses and statuses != {JobStatus.PENDING}
    ):
        return ProcessingStatus.PROCESSING
    if statuses == {JobStatus.PENDING}:
        return ProcessingStatus.PENDING
    if statuses == {JobStatus.COMPLETED}:
        return ProcessingStatus.COMPLETED
    if statuses == {JobStatus.FAILED}:
        return ProcessingStatus.FAILED
    return ProcessingStatus.PARTIAL
