import uuid

from sqlalchemy import BigInteger, Column, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from mediaflow.db.base import Base
from mediaflow.models.common import TimestampMixin


class MediaAsset(Base, TimestampMixin):
    __tablename__ = "media_assets"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    lesson_id = Column(Uuid, nullable=False, index=True)
    original_filename = Column(String(255), nullable=False)
    original_path = Column(String(1024), nullable=False)
    original_size = Column(BigInteger)
    duration = Column(Float)
    bitrate = Column(Integer)  # kbps
    resolution = Column(String(32))  # WxH
    format = Column(String(64))
    video_codec = Column(String(64))
    audio_codec = Column(String(64))
    frame_rate = Column(Float)
    audio_channels = Column(Integer)
    thumbnail_path = Column(String(1024))
    upload_status = Column(String(32), default="uploaded", nullable=False)
    processing_status = Column(String(32), default="pending", nullable=False)  # pending|processing|completed|partial|failed

    renditions = relationship(
        "Rendition", back_populates="asset", cascade="all, delete-orphan", order_by="Rendition.bitrate.desc()"
    )
    subtitle_sets = relationship("SubtitleSet", back_populates="asset", cascade="all, delete-orphan")


class Rendition(Base, TimestampMixin):
    __tablename__ = "renditions"
    __table_args__ = (
        UniqueConstraint("asset_id", "resolution", name="uq_rendition_asset_resolution"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    asset_id = Column(Uuid, ForeignKey("media_assets.id"), nullable=False, index=True)
    resolution = Column(String(32), nullable=False)
    quality = Column(String(16), nullable=False)  # high|medium|low
    bitrate = Column(Integer, nullable=False)  # target kbps
    format = Column(String(16), default="mp4", nullable=False)
    file_path = Column(String(1024), nullable=False)
    status = Column(String(32), default="pending", nullable=False)  # pending|processing|completed|failed
    progress = Column(Float, default=0.0, nullable=False)
    file_size = Column(BigInteger)
    error_message = Column(Text)
    processing_started_at = Column(DateTime)
    processing_completed_at = Column(DateTime)

    asset = relationship("MediaAsset", back_populates="renditions")
