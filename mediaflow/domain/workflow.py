from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .content import ContentItem, ContentType


class WorkflowStatus(str, Enum):
    """Editorial lifecycle states of a content item."""

    DRAFT = "draft"
    REVIEW = "review"
    APPROVED = "approved"
    PUBLISHED = "published"
    ARCHIVED = "archived"


TRANSITIONS: dict[WorkflowStatus, frozenset[WorkflowStatus]] = {
    WorkflowStatus.DRAFT: frozenset({WorkflowStatus.REVIEW, WorkflowStatus.ARCHIVED}),
    WorkflowStatus.REVIEW: frozenset({WorkflowStatus.DRAFT, WorkflowStatus.APPROVED, WorkflowStatus.ARCHIVED}),
    WorkflowStatus.APPROVED: frozenset({WorkflowStatus.PUBLISHED, WorkflowStatus.REVIEW, WorkflowStatus.ARCHIVED}),
    WorkflowStatus.PUBLISHED: frozenset({WorkflowStatus.ARCHIVED}),
    WorkflowStatus.ARCHIVED: frozenset({WorkflowStatus.DRAFT}),
}


def can_transition(from_status: WorkflowStatus, to_status: WorkflowStatus) -> bool:
    return to_status in TRANSITIONS[from_status]


class Workflow(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    content_id: UUID
    content_type: ContentType
    status: WorkflowStatus
    current_reviewer_id: Optional[UUID] = None
    review_deadline: Optional[datetime] = None
    review_notes: Optional[str] = None
    published_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class WorkflowHistoryEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    workflow_id: UUID
    position: int
    from_status: Optional[WorkflowStatus] = None
    to_status: WorkflowStatus
    actor_id: Optional[UUID] = None
    notes: Optional[str] = None
    created_at: datetime


class WorkflowView(BaseModel):
    """A workflow annotated with the course or lesson it tracks."""

    workflow: Workflow
    content: Optional[ContentItem] = None


class WorkflowDetail(WorkflowView):
    history: list[WorkflowHistoryEntry] = Field(default_factory=list)


class OverdueReview(WorkflowView):
    days_overdue: int


class StatusChange(BaseModel):
    workflow_id: UUID
    old_status: WorkflowStatus
    new_status: WorkflowStatus
    changed_by: Optional[UUID] = None
    notes: str = ""


class ReviewerAssignment(BaseModel):
    workflow_id: UUID
    reviewer_id: UUID
    deadline: Optional[datetime] = None


class BulkStatusOutcome(BaseModel):
    content_id: UUID
    success: bool
    result: Optional[StatusChange] = None
    error: Optional[str] = None


class ContentSearch(BaseModel):
    status: Optional[WorkflowStatus] = None
    content_type: Optional[ContentType] = None
    metadata: dict[str, str] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)
    limit: Optional[int] = Field(default=None, gt=0)


class WorkflowStatistic(BaseModel):
    status: WorkflowStatus
    content_type: ContentType
    count: int


__all__ = [
    "BulkStatusOutcome",
    "ContentItem",
    "ContentSearch",
    "OverdueReview",
    "ReviewerAssignment",
    "StatusChange",
    "TRANSITIONS",
    "Workflow",
    "WorkflowDetail",
    "WorkflowHistoryEntry",
    "WorkflowStatistic",
    "WorkflowStatus",
    "WorkflowView",
    "can_transition",
]
