"""Turns an accepted upload into a media asset, four queued jobs and a draft workflow."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session, sessionmaker

from ..core.errors import NotFoundError, ValidationError
from ..domain.content import ContentType, MetadataInput, MetadataType, TagInput
from ..domain.jobs import (
    DEFAULT_LADDER,
    JobType,
    LadderRung,
    MetadataParameters,
    SubtitleParameters,
    ThumbnailParameters,
    TranscodeParameters,
)
from ..repositories.content import SqlAlchemyContentDirectory
from ..repositories.media import SqlAlchemyMediaRepository
from .job_queue import JobQueueManager
from .workflow import ContentWorkflowService

logger = structlog.get_logger(__name__)

METADATA_PRIORITY = 1
THUMBNAIL_PRIORITY = 2
TRANSCODE_PRIORITY = 3
SUBTITLE_PRIORITY = 4


@dataclass
class UploadReceipt:
    asset_id: UUID
    workflow_id: UUID
    job_ids: dict[JobType, UUID] = field(default_factory=dict)


def _metadata_input(key: str, value: object) -> MetadataInput:
    if isinstance(value, MetadataInput):
        return value
    if isinstance(value, bool):
        return MetadataInput(key=key, value=str(value).lower(), type=MetadataType.BOOLEAN)
    if isinstance(value, (int, float)):
        return MetadataInput(key=key, value=str(value), type=MetadataType.NUMBER)
    return MetadataInput(key=key, value=str(value))


class UploadOrchestrator:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        job_queue: JobQueueManager,
        workflows: ContentWorkflowService,
    ) -> None:
        self._session_factory = session_factory
        self._job_queue = job_queue
        self._workflows = workflows

    def submit_upload(
        self,
        lesson_id: UUID,
        file_path: str,
        original_filename: str,
        *,
        actor_id: UUID | None = None,
        metadata: Mapping[str, object] | None = None,
        tags: Iterable[TagInput | str] | None = None,
        ladder: Sequence[LadderRung] = DEFAULT_LADDER,
        language: str = "en",
    ) -> UploadReceipt:
        """Register the upload and queue its processing; returns without waiting on any job."""

        if not file_path or not str(file_path).strip():
            raise ValidationError("file_path is required")
        if not original_filename or not original_filename.strip():
            raise ValidationError("original_filename is required")
        if not ladder:
            raise ValidationError("ladder must contain at least one rung")
        if not language or not language.strip():
            raise ValidationError("language is required")
        try:
            tag_inputs = [tag if isinstance(tag, TagInput) else TagInput(name=str(tag)) for tag in tags or ()]
            metadata_inputs = [_metadata_input(key, value) for key, value in (metadata or {}).items()]
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid upload metadata: {exc}") from exc

        try:
            size = os.path.getsize(file_path)
        except OSError:
            size = None

        with self._session_factory() as session:
            if SqlAlchemyContentDirectory(session).resolve(ContentType.LESSON, lesson_id) is None:
                raise NotFoundError(f"Lesson {lesson_id} not found")
            asset = SqlAlchemyMediaRepository(session).create_asset(
                lesson_id=lesson_id,
                original_filename=original_filename,
                original_path=str(file_path),
                original_size=size,
            )
            session.commit()

        source = str(file_path)
        job_ids: dict[JobType, UUID] = {}
        job_ids[JobType.METADATA] = self._job_queue.submit(
            JobType.METADATA,
            asset.id,
            MetadataParameters(asset_id=asset.id, source_path=source),
            priority=METADATA_PRIORITY,
        )
        job_ids[JobType.THUMBNAIL] = self._job_queue.submit(
            JobType.THUMBNAIL,
            asset.id,
            ThumbnailParameters(asset_id=asset.id, source_path=source, time_offset="00:00:05"),
            priority=THUMBNAIL_PRIORITY,
        )
        job_ids[JobType.TRANSCODE] = self._job_queue.submit(
            JobType.TRANSCODE,
            asset.id,
            TranscodeParameters(asset_id=asset.id, source_path=source, ladder=list(ladder)),
            priority=TRANSCODE_PRIORITY,
        )
        job_ids[JobType.SUBTITLE] = self._job_queue.submit(
            JobType.SUBTITLE,
            asset.id,
            SubtitleParameters(asset_id=asset.id, source_path=source, language=language),
            priority=SUBTITLE_PRIORITY,
        )

        workflow = self._workflows.ensure_workflow(lesson_id, ContentType.LESSON, actor_id)
        receipt = UploadReceipt(asset_id=asset.id, workflow_id=workflow.id, job_ids=job_ids)

        for entry in metadata_inputs:
            self._workflows.add_metadata(lesson_id, ContentType.LESSON, entry)
        if tag_inputs:
            self._workflows.add_tags(lesson_id, ContentType.LESSON, tag_inputs)

        logger.info(
            "upload.accepted",
            asset_id=str(asset.id),
            lesson_id=str(lesson_id),
            workflow_id=str(workflow.id),
            jobs={job_type.value: str(job_id) for job_type, job_id in receipt.job_ids.items()},
        )
        return receipt
