from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from ..core.errors import ValidationError

RESOLUTION_PATTERN = re.compile(r"^(\d{2,5})x(\d{2,5})$")


class JobStatus(str, Enum):
    """Lifecycle states for background processing jobs."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobType(str, Enum):
    """Queue a job belongs to; each type has its own worker pool."""

    TRANSCODE = "transcode"
    SUBTITLE = "subtitle"
    METADATA = "metadata"
    THUMBNAIL = "thumbnail"


class QualityTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class LadderRung(BaseModel):
    """One output of the transcoding ladder."""

    resolution: str
    quality: QualityTier
    bitrate: int = Field(gt=0, description="Target video bitrate in kbps")

    @field_validator("resolution")
    @classmethod
    def _check_resolution(cls, value: str) -> str:
        if not RESOLUTION_PATTERN.match(value):
            raise ValueError(f"resolution must look like 1280x720, got {value!r}")
        return value

    @property
    def dimensions(self) -> tuple[int, int]:
        width, height = self.resolution.split("x")
        return int(width), int(height)


DEFAULT_LADDER: tuple[LadderRung, ...] = (
    LadderRung(resolution="1920x1080", quality=QualityTier.HIGH, bitrate=5000),
    LadderRung(resolution="1280x720", quality=QualityTier.MEDIUM, bitrate=2500),
    LadderRung(resolution="854x480", quality=QualityTier.LOW, bitrate=1000),
)


class TranscodeParameters(BaseModel):
    kind: Literal["transcode"] = "transcode"
    asset_id: UUID
    source_path: str
    ladder: list[LadderRung] = Field(default_factory=lambda: list(DEFAULT_LADDER), min_length=1)


class SubtitleParameters(BaseModel):
    kind: Literal["subtitle"] = "subtitle"
    asset_id: UUID
    source_path: str
    language: str = Field(default="en", min_length=1, max_length=16)


class MetadataParameters(BaseModel):
    kind: Literal["metadata"] = "metadata"
    asset_id: UUID
    source_path: str


class ThumbnailParameters(BaseModel):
    kind: Literal["thumbnail"] = "thumbnail"
    asset_id: UUID
    source_path: str
    time_offset: str = "00:00:05"


JobParameters = Annotated[
    Union[TranscodeParameters, SubtitleParameters, MetadataParameters, ThumbnailParameters],
    Field(discriminator="kind"),
]


class TranscodeResult(BaseModel):
    kind: Literal["transcode"] = "transcode"
    rendition_ids: list[UUID]
    processed_resolutions: list[str]


class SubtitleResult(BaseModel):
    kind: Literal["subtitle"] = "subtitle"
    subtitle_id: UUID
    language: str
    segment_count: int


class MetadataResult(BaseModel):
    kind: Literal["metadata"] = "metadata"
    duration: float
    bitrate: Optional[int] = None
    resolution: Optional[str] = None
    format: Optional[str] = None


class ThumbnailResult(BaseModel):
    kind: Literal["thumbnail"] = "thumbnail"
    thumbnail_path: str


JobResult = Annotated[
    Union[TranscodeResult, SubtitleResult, MetadataResult, ThumbnailResult],
    Field(discriminator="kind"),
]

_parameters_adapter: TypeAdapter[JobParameters] = TypeAdapter(JobParameters)
_result_adapter: TypeAdapter[JobResult] = TypeAdapter(JobResult)


def decode_parameters(job_type: JobType | str, raw: dict) -> JobParameters:
    """Decode a stored payload into the variant that belongs to ``job_type``."""

    job_type = JobType(job_type)
    try:
        params = _parameters_adapter.validate_python(raw)
    except ValueError as exc:
        raise ValidationError(f"Invalid {job_type.value} parameters: {exc}") from exc
    if params.kind != job_type.value:
        raise ValidationError(f"Parameters of kind {params.kind!r} do not match job type {job_type.value!r}")
    return params


def decode_result(raw: dict | None) -> JobResult | None:
    if raw is None:
        return None
    return _result_adapter.validate_python(raw)


def encode_payload(payload: BaseModel) -> dict:
    return payload.model_dump(mode="json")


class Job(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_type: JobType
    content_id: UUID
    priority: int
    sequence: int
    status: JobStatus
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    progress_message: Optional[str] = None
    parameters: dict
    result_data: Optional[dict] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    attempts: int = 0
    available_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @property
    def typed_parameters(self) -> JobParameters:
        return decode_parameters(self.job_type, self.parameters)

    @property
    def typed_result(self) -> JobResult | None:
        return decode_result(self.result_data)

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)


class QueueStats(BaseModel):
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
