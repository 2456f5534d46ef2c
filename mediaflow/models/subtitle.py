import uuid

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from mediaflow.db.base import Base
from mediaflow.models.common import TimestampMixin


class SubtitleSet(Base, TimestampMixin):
    __tablename__ = "subtitle_sets"
    __table_args__ = (
        UniqueConstraint("asset_id", "language", "format", name="uq_subtitle_asset_language_format"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    asset_id = Column(Uuid, ForeignKey("media_assets.id"), nullable=False, index=True)
    language = Column(String(16), default="en", nullable=False)
    format = Column(String(16), default="srt", nullable=False)
    file_path = Column(String(1024), nullable=False)
    confidence_score = Column(Float)
    word_count = Column(Integer)
    status = Column(String(32), default="processing", nullable=False)  # processing|completed|failed
    error_message = Column(Text)
    completed_at = Column(DateTime)

    asset = relationship("MediaAsset", back_populates="subtitle_sets")
    segments = relationship(
        "SubtitleSegment",
        back_populates="subtitle_set",
        cascade="all, delete-orphan",
        order_by="SubtitleSegment.segment_order",
    )


class SubtitleSegment(Base):
    __tablename__ = "subtitle_segments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    subtitle_id = Column(Uuid, ForeignKey("subtitle_sets.id"), nullable=False, index=True)
    start_time = Column(Float, nullable=False)
    end_time = Column(Float, nullable=False)
    text = Column(Text, nullable=False)
    confidence = Column(Float)
    segment_order = Column(Integer, nullable=False)

    subtitle_set = relationship("SubtitleSet", back_populates="segments")
