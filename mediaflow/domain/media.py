from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from .jobs import Job, QualityTier


class ProcessingStatus(str, Enum):
    """Aggregate state of all background jobs for one asset."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class ArtifactStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ProbeResult(BaseModel):
    duration: float
    size: Optional[int] = None
    bitrate: Optional[int] = None
    format: Optional[str] = None
    resolution: Optional[str] = None
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    frame_rate: Optional[float] = None
    audio_channels: Optional[int] = None
    audio_sample_rate: Optional[int] = None


class MediaAsset(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    lesson_id: UUID
    original_filename: str
    original_path: str
    original_size: Optional[int] = None
    duration: Optional[float] = None
    bitrate: Optional[int] = None
    resolution: Optional[str] = None
    format: Optional[str] = None
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    frame_rate: Optional[float] = None
    audio_channels: Optional[int] = None
    thumbnail_path: Optional[str] = None
    upload_status: str
    processing_status: ProcessingStatus
    created_at: datetime
    updated_at: datetime


class Rendition(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    asset_id: UUID
    resolution: str
    quality: QualityTier
    bitrate: int
    format: str
    file_path: str
    status: ArtifactStatus
    progress: float = 0.0
    file_size: Optional[int] = None
    error_message: Optional[str] = None
    processing_started_at: Optional[datetime] = None
    processing_completed_at: Optional[datetime] = None


class SubtitleSegment(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    start_time: float
    end_time: float
    text: str
    confidence: Optional[float] = None
    segment_order: int


class SubtitleSet(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    asset_id: UUID
    language: str
    format: str
    file_path: str
    confidence_score: Optional[float] = None
    word_count: Optional[int] = None
    status: ArtifactStatus
    error_message: Optional[str] = None
    completed_at: Optional[datetime] = None


class SubtitleDocument(BaseModel):
    subtitle: SubtitleSet
    segments: list[SubtitleSegment]

    def to_srt(self) -> str:
        from ..services.subtitles import build_srt

        return build_srt(self.segments)


class VideoProcessingStatus(BaseModel):
    asset: MediaAsset
    renditions: list[Rendition]
    subtitles: list[SubtitleSet]
    jobs: list[Job]
