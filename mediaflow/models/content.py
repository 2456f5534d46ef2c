"""SQLAlchemy models for courses, lessons and their descriptive data."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from mediaflow.db.base import Base
from mediaflow.models.common import utcnow


class CourseModel(Base):
    __tablename__ = "courses"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    instructor_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow, nullable=False)


class LessonModel(Base):
    __tablename__ = "lessons"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    course_id: Mapped[UUID | None] = mapped_column(Uuid, ForeignKey("courses.id"), nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    instructor_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow, nullable=False)


class ContentMetadataModel(Base):
    __tablename__ = "content_metadata"
    __table_args__ = (Index("ix_content_metadata_content", "content_id", "content_type"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    content_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    content_type: Mapped[str] = mapped_column(String(16), nullable=False)
    metadata_key: Mapped[str] = mapped_column(String(128), nullable=False)
    metadata_value: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_type: Mapped[str] = mapped_column(String(16), default="string", nullable=False)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_searchable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=utcnow, onupdate=utcnow, nullable=False
    )


class ContentTagModel(Base):
    __tablename__ = "content_tags"
    __table_args__ = (Index("ix_content_tags_content", "content_id", "content_type"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    content_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    content_type: Mapped[str] = mapped_column(String(16), nullable=False)
    tag_name: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    tag_category: Mapped[str] = mapped_column(String(64), default="general", nullable=False)
    tag_weight: Mapped[float] = mapped_column(Float, default=1.0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow, nullable=False)
