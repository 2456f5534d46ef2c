from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import exists, func, select
from sqlalchemy.orm import Session

from ..domain.content import ContentType
from ..domain.workflow import (
    ContentSearch,
    Workflow,
    WorkflowHistoryEntry,
    WorkflowStatistic,
    WorkflowStatus,
)
from ..models.common import utcnow
from ..models.content import ContentMetadataModel, ContentTagModel
from ..models.workflow import ContentWorkflowModel, WorkflowHistoryModel


class WorkflowsRepository(Protocol):
    def create(self, content_id: UUID, content_type: ContentType) -> Workflow: ...

    def get(self, workflow_id: UUID) -> Workflow | None: ...

    def find_by_content(self, content_id: UUID, content_type: ContentType) -> Workflow | None: ...

    def update_fields(self, workflow_id: UUID, **values: Any) -> Workflow | None: ...

    def append_history(
        self,
        workflow_id: UUID,
        from_status: WorkflowStatus | None,
        to_status: WorkflowStatus,
        actor_id: UUID | None,
        notes: str | None,
    ) -> WorkflowHistoryEntry: ...

    def list_history(self, workflow_id: UUID, newest_first: bool = False) -> list[WorkflowHistoryEntry]: ...


class SqlAlchemyWorkflowsRepository:
    """SQL-backed workflow store. Flushes only; the service commits."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, content_id: UUID, content_type: ContentType) -> Workflow:
        model = ContentWorkflowModel(
            content_id=content_id,
            content_type=content_type.value,
            status=WorkflowStatus.DRAFT.value,
        )
        self._session.add(model)
        self._session.flush()
        return Workflow.model_validate(model)

    def get(self, workflow_id: UUID) -> Workflow | None:
        model = self._session.get(ContentWorkflowModel, workflow_id)
        return Workflow.model_validate(model) if model else None

    def find_by_content(self, content_id: UUID, content_type: ContentType) -> Workflow | None:
        model = self._session.scalar(
            select(ContentWorkflowModel).where(
                ContentWorkflowModel.content_id == content_id,
                ContentWorkflowModel.content_type == content_type.value,
            )
        )
        return Workflow.model_validate(model) if model else None

    def update_fields(self, workflow_id: UUID, **values: Any) -> Workflow | None:
        model = self._session.get(ContentWorkflowModel, workflow_id)
        if model is None:
            return None
        for key, value in values.items():
            if isinstance(value, WorkflowStatus):
                value = value.value
            setattr(model, key, value)
        model.updated_at = utcnow()
        self._session.flush()
        return Workflow.model_validate(model)

    def append_history(
        self,
        workflow_id: UUID,
        from_status: WorkflowStatus | None,
        to_status: WorkflowStatus,
        actor_id: UUID | None,
        notes: str | None,
    ) -> WorkflowHistoryEntry:
        position = self._session.scalar(
            select(func.coalesce(func.max(WorkflowHistoryModel.position), 0)).where(
                WorkflowHistoryModel.workflow_id == workflow_id
            )
        )
        model = WorkflowHistoryModel(
            workflow_id=workflow_id,
            position=int(position or 0) + 1,
            from_status=from_status.value if from_status is not None else None,
            to_status=to_status.value,
            actor_id=actor_id,
            notes=notes,
        )
        self._session.add(model)
        self._session.flush()
        return WorkflowHistoryEntry.model_validate(model)

    def list_history(self, workflow_id: UUID, newest_first: bool = False) -> list[WorkflowHistoryEntry]:
        order = WorkflowHistoryModel.position.desc() if newest_first else WorkflowHistoryModel.position.asc()
        rows = self._session.scalars(
            select(WorkflowHistoryModel).where(WorkflowHistoryModel.workflow_id == workflow_id).order_by(order)
        ).all()
        return [WorkflowHistoryEntry.model_validate(row) for row in rows]

    def list_by_status(
        self,
        status: WorkflowStatus,
        content_type: ContentType | None,
        limit: int,
        offset: int,
    ) -> list[Workflow]:
        stmt = select(ContentWorkflowModel).where(ContentWorkflowModel.status == status.value)
        if content_type is not None:
            stmt = stmt.where(ContentWorkflowModel.content_type == content_type.value)
        stmt = stmt.order_by(ContentWorkflowModel.updated_at.desc()).limit(limit).offset(offset)
        return [Workflow.model_validate(row) for row in self._session.scalars(stmt).all()]

    def list_pending_reviews(self, reviewer_id: UUID, limit: int, offset: int) -> list[Workflow]:
        stmt = (
            select(ContentWorkflowModel)
            .where(
                ContentWorkflowModel.current_reviewer_id == reviewer_id,
                ContentWorkflowModel.status == WorkflowStatus.REVIEW.value,
            )
            .order_by(
                ContentWorkflowModel.review_deadline.is_(None),
                ContentWorkflowModel.review_deadline.asc(),
                ContentWorkflowModel.updated_at.desc(),
            )
            .limit(limit)
            .offset(offset)
        )
        return [Workflow.model_validate(row) for row in self._session.scalars(stmt).all()]

    def list_overdue(self, now: datetime) -> list[Workflow]:
        stmt = (
            select(ContentWorkflowModel)
            .where(
                ContentWorkflowModel.status == WorkflowStatus.REVIEW.value,
                ContentWorkflowModel.review_deadline.is_not(None),
                ContentWorkflowModel.review_deadline < now,
            )
            .order_by(ContentWorkflowModel.review_deadline.asc())
        )
        return [Workflow.model_validate(row) for row in self._session.scalars(stmt).all()]

    def search(self, criteria: ContentSearch) -> list[Workflow]:
        stmt = select(ContentWorkflowModel)
        if criteria.status is not None:
            stmt = stmt.where(ContentWorkflowModel.status == criteria.status.value)
        if criteria.content_type is not None:
            stmt = stmt.where(ContentWorkflowModel.content_type == criteria.content_type.value)
        for key, value in criteria.metadata.items():
            stmt = stmt.where(
                exists().where(
                    ContentMetadataModel.content_id == ContentWorkflowModel.content_id,
                    ContentMetadataModel.content_type == ContentWorkflowModel.content_type,
                    ContentMetadataModel.is_searchable.is_(True),
                    ContentMetadataModel.metadata_key == key,
                    ContentMetadataModel.metadata_value.contains(value, autoescape=True),
                )
            )
        if criteria.tags:
            stmt = stmt.where(
                exists().where(
                    ContentTagModel.content_id == ContentWorkflowModel.content_id,
                    ContentTagModel.content_type == ContentWorkflowModel.content_type,
                    ContentTagModel.tag_name.in_(criteria.tags),
                )
            )
        stmt = stmt.order_by(ContentWorkflowModel.updated_at.desc())
        if criteria.limit:
            stmt = stmt.limit(criteria.limit)
        return [Workflow.model_validate(row) for row in self._session.scalars(stmt).all()]

    def statistics(self) -> list[WorkflowStatistic]:
        rows = self._session.execute(
            select(
                ContentWorkflowModel.status,
                ContentWorkflowModel.content_type,
                func.count(ContentWorkflowModel.id),
            )
            .group_by(ContentWorkflowModel.status, ContentWorkflowModel.content_type)
            .order_by(ContentWorkflowModel.status, ContentWorkflowModel.content_type)
        ).all()
        return [
            WorkflowStatistic(status=status, content_type=content_type, count=int(count))
            for status, content_type, count in rows
        ]
