"""SQLAlchemy models for the editorial review workflow."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mediaflow.db.base import Base
from mediaflow.models.common import utcnow


class ContentWorkflowModel(Base):
    """Lifecycle record for one course or lesson."""

    __tablename__ = "content_workflows"
    __table_args__ = (
        UniqueConstraint("content_id", "content_type", name="uq_workflow_content"),
        Index("ix_content_workflows_status", "status", "updated_at"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    content_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    content_type: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="draft", nullable=False)
    current_reviewer_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    review_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=utcnow, onupdate=utcnow, nullable=False
    )

    history = relationship(
        "WorkflowHistoryModel",
        back_populates="workflow",
        order_by="WorkflowHistoryModel.position",
        cascade="all, delete-orphan",
    )


class WorkflowHistoryModel(Base):
    """Append-only record of workflow status changes."""

    __tablename__ = "workflow_history"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    workflow_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("content_workflows.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)  # 1-based order within the workflow
    from_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    to_status: Mapped[str] = mapped_column(String(16), nullable=False)
    actor_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow, nullable=False)

    workflow = relationship("ContentWorkflowModel", back_populates="history")
