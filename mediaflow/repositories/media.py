from __future__ import annotations

from typing import Iterable, Protocol
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..domain.jobs import LadderRung
from ..domain.media import (
    ArtifactStatus,
    MediaAsset,
    ProbeResult,
    ProcessingStatus,
    Rendition,
    SubtitleSegment,
    SubtitleSet,
)
from ..models.common import utcnow
from ..models.media import MediaAsset as MediaAssetModel
from ..models.media import Rendition as RenditionModel
from ..models.subtitle import SubtitleSegment as SubtitleSegmentModel
from ..models.subtitle import SubtitleSet as SubtitleSetModel


class MediaRepository(Protocol):
    def create_asset(
        self,
        lesson_id: UUID,
        original_filename: str,
        original_path: str,
        original_size: int | None,
    ) -> MediaAsset: ...

    def get_asset(self, asset_id: UUID) -> MediaAsset | None: ...

    def apply_probe(self, asset_id: UUID, probe: ProbeResult) -> MediaAsset | None: ...

    def set_thumbnail(self, asset_id: UUID, thumbnail_path: str) -> None: ...

    def set_processing_status(self, asset_id: UUID, status: ProcessingStatus) -> None: ...

    def upsert_rendition(self, asset_id: UUID, rung: LadderRung, file_path: str) -> Rendition: ...

    def list_renditions(self, asset_id: UUID, status: ArtifactStatus | None = None) -> list[Rendition]: ...

    def upsert_subtitle_set(self, asset_id: UUID, language: str, fmt: str, file_path: str) -> SubtitleSet: ...


class SqlAlchemyMediaRepository:
    """Assets, renditions and subtitle sets. Flushes only; callers commit."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def create_asset(
        self,
        lesson_id: UUID,
        original_filename: str,
        original_path: str,
        original_size: int | None,
    ) -> MediaAsset:
        model = MediaAssetModel(
            lesson_id=lesson_id,
            original_filename=original_filename,
            original_path=original_path,
            original_size=original_size,
            upload_status="uploaded",
            processing_status=ProcessingStatus.PENDING.value,
        )
        self._session.add(model)
        self._session.flush()
        return MediaAsset.model_validate(model)

    def get_asset(self, asset_id: UUID) -> MediaAsset | None:
        model = self._session.get(MediaAssetModel, asset_id)
        return MediaAsset.model_validate(model) if model else None

    def apply_probe(self, asset_id: UUID, probe: ProbeResult) -> MediaAsset | None:
        model = self._session.get(MediaAssetModel, asset_id)
        if not model:
            return None
        model.duration = probe.duration
        model.bitrate = probe.bitrate
        model.resolution = probe.resolution
        model.format = probe.format
        model.video_codec = probe.video_codec
        model.audio_codec = probe.audio_codec
        model.frame_rate = probe.frame_rate
        model.audio_channels = probe.audio_channels
        if probe.size is not None and not model.original_size:
            model.original_size = probe.size
        self._session.flush()
        return MediaAsset.model_validate(model)

    def set_thumbnail(self, asset_id: UUID, thumbnail_path: str) -> None:
        model = self._session.get(MediaAssetModel, asset_id)
        if model:
            model.thumbnail_path = thumbnail_path
            self._session.flush()

    def set_processing_status(self, asset_id: UUID, status: ProcessingStatus) -> None:
        model = self._session.get(MediaAssetModel, asset_id)
        if model and model.processing_status != status.value:
            model.processing_status = status.value
            self._session.flush()

    # Renditions -------------------------------------------------------------

    def upsert_rendition(self, asset_id: UUID, rung: LadderRung, file_path: str) -> Rendition:
        model = self._session.scalar(
            select(RenditionModel).where(
                RenditionModel.asset_id == asset_id,
                RenditionModel.resolution == rung.resolution,
            )
        )
        if model is None:
            model = RenditionModel(asset_id=asset_id, resolution=rung.resolution)
            self._session.add(model)
        model.quality = rung.quality.value
        model.bitrate = rung.bitrate
        model.format = "mp4"
        model.file_path = file_path
        if model.status != ArtifactStatus.COMPLETED.value:
            model.status = ArtifactStatus.PENDING.value
            model.progress = 0.0
            model.error_message = None
        self._session.flush()
        return Rendition.model_validate(model)

    def get_rendition(self, rendition_id: UUID) -> Rendition | None:
        model = self._session.get(RenditionModel, rendition_id)
        return Rendition.model_validate(model) if model else None

    def mark_rendition_processing(self, rendition_id: UUID) -> None:
        model = self._session.get(RenditionModel, rendition_id)
        if model:
            model.status = ArtifactStatus.PROCESSING.value
            model.progress = 0.0
            model.error_message = None
            model.processing_started_at = utcnow()
            model.processing_completed_at = None
            self._session.flush()

    def update_rendition_progress(self, rendition_id: UUID, progress: float) -> None:
        model = self._session.get(RenditionModel, rendition_id)
        if model:
            model.progress = max(0.0, min(100.0, progress))
            self._session.flush()

    def complete_rendition(self, rendition_id: UUID, file_size: int | None) -> None:
        model = self._session.get(RenditionModel, rendition_id)
        if model:
            model.status = ArtifactStatus.COMPLETED.value
            model.progress = 100.0
            model.file_size = file_size
            model.error_message = None
            model.processing_completed_at = utcnow()
            self._session.flush()

    def fail_rendition(self, rendition_id: UUID, error: str) -> None:
        model = self._session.get(RenditionModel, rendition_id)
        if model:
            model.status = ArtifactStatus.FAILED.value
            model.error_message = error
            model.processing_completed_at = utcnow()
            self._session.flush()

    def list_renditions(self, asset_id: UUID, status: ArtifactStatus | None = None) -> list[Rendition]:
        stmt = select(RenditionModel).where(RenditionModel.asset_id == asset_id)
        if status is not None:
            stmt = stmt.where(RenditionModel.status == status.value)
        stmt = stmt.order_by(RenditionModel.bitrate.desc(), RenditionModel.resolution)
        return [Rendition.model_validate(row) for row in self._session.scalars(stmt).all()]

    # Subtitles --------------------------------------------------------------

    def upsert_subtitle_set(self, asset_id: UUID, language: str, fmt: str, file_path: str) -> SubtitleSet:
        model = self._session.scalar(
            select(SubtitleSetModel).where(
                SubtitleSetModel.asset_id == asset_id,
                SubtitleSetModel.language == language,
                SubtitleSetModel.format == fmt,
            )
        )
        if model is None:
            model = SubtitleSetModel(asset_id=asset_id, language=language, format=fmt)
            self._session.add(model)
        model.file_path = file_path
        model.status = ArtifactStatus.PROCESSING.value
        model.error_message = None
        model.completed_at = None
        self._session.flush()
        return SubtitleSet.model_validate(model)

    def replace_segments(self, subtitle_id: UUID, segments: Iterable[SubtitleSegment]) -> int:
        """Drop the previous run's segments and write the new ones in order."""

        self._session.execute(
            delete(SubtitleSegmentModel).where(SubtitleSegmentModel.subtitle_id == subtitle_id)
        )
        count = 0
        for segment in segments:
            self._session.add(
                SubtitleSegmentModel(
                    subtitle_id=subtitle_id,
                    start_time=segment.start_time,
                    end_time=segment.end_time,
                    text=segment.text,
                    confidence=segment.confidence,
                    segment_order=segment.segment_order,
                )
            )
            count += 1
        self._session.flush()
        return count

    def complete_subtitle_set(self, subtitle_id: UUID, confidence: float | None, word_count: int) -> None:
        model = self._session.get(SubtitleSetModel, subtitle_id)
        if model:
            model.status = ArtifactStatus.COMPLETED.value
            model.confidence_score = confidence
            model.word_count = word_count
            model.error_message = None
            model.completed_at = utcnow()
            self._session.flush()

    def fail_subtitle_set(self, subtitle_id: UUID, error: str) -> None:
        model = self._session.get(SubtitleSetModel, subtitle_id)
        if model:
            model.status = ArtifactStatus.FAILED.value
            model.error_message = error
            self._session.flush()

    def list_subtitle_sets(self, asset_id: UUID) -> list[SubtitleSet]:
        rows = self._session.scalars(
            select(SubtitleSetModel)
            .where(SubtitleSetModel.asset_id == asset_id)
            .order_by(SubtitleSetModel.language)
        ).all()
        return [SubtitleSet.model_validate(row) for row in rows]

    def find_completed_subtitles(
        self, asset_id: UUID, language: str, fmt: str
    ) -> tuple[SubtitleSet, list[SubtitleSegment]] | None:
        model = self._session.scalar(
            select(SubtitleSetModel).where(
                SubtitleSetModel.asset_id == asset_id,
                SubtitleSetModel.language == language,
                SubtitleSetModel.format == fmt,
                SubtitleSetModel.status == ArtifactStatus.COMPLETED.value,
            )
        )
        if model is None:
            return None
        segments = self._session.scalars(
            select(SubtitleSegmentModel)
            .where(SubtitleSegmentModel.subtitle_id == model.id)
            .order_by(SubtitleSegmentModel.segment_order)
        ).all()
        return SubtitleSet.model_validate(model), [SubtitleSegment.model_validate(s) for s in segments]
