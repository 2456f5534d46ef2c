"""Editorial lifecycle of courses and lessons.

Every status change validates against the transition table first and commits
the workflow row together with its history entry, so a rejected change leaves
no trace.
"""

from __future__ import annotations

import traceback
from datetime import datetime
from typing import Iterable, Sequence
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..core.errors import (
    InvalidStateError,
    InvalidTransitionError,
    MediaflowError,
    NotFoundError,
    ValidationError,
)
from ..domain.content import ContentType, MetadataEntry, MetadataInput, Tag, TagInput
from ..domain.workflow import (
    BulkStatusOutcome,
    ContentSearch,
    OverdueReview,
    ReviewerAssignment,
    StatusChange,
    Workflow,
    WorkflowDetail,
    WorkflowHistoryEntry,
    WorkflowStatistic,
    WorkflowStatus,
    WorkflowView,
    can_transition,
)
from ..models.common import utcnow
from ..repositories.content import SqlAlchemyContentAttributesRepository, SqlAlchemyContentDirectory
from ..repositories.workflows import SqlAlchemyWorkflowsRepository

logger = structlog.get_logger(__name__)

DEFAULT_PAGE_SIZE = 50


def _parse_status(value: WorkflowStatus | str) -> WorkflowStatus:
    try:
        return WorkflowStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown workflow status {value!r}") from None


def _parse_content_type(value: ContentType | str) -> ContentType:
    try:
        return ContentType(value)
    except ValueError:
        raise ValidationError(f"Unknown content type {value!r}") from None


def _check_page(limit: int, offset: int) -> None:
    if limit <= 0 or offset < 0:
        raise ValidationError("limit must be positive and offset non-negative")


class ContentWorkflowService:
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    # Lifecycle --------------------------------------------------------------

    def create_workflow(
        self,
        content_id: UUID,
        content_type: ContentType | str,
        actor_id: UUID | None = None,
    ) -> Workflow:
        content_type = _parse_content_type(content_type)
        with self._session_factory() as session:
            repo = SqlAlchemyWorkflowsRepository(session)
            if repo.find_by_content(content_id, content_type) is not None:
                raise ValidationError(f"Workflow already exists for {content_type.value} {content_id}")
            workflow = self._create(session, content_id, content_type, actor_id)
        return workflow

    def ensure_workflow(
        self,
        content_id: UUID,
        content_type: ContentType | str,
        actor_id: UUID | None = None,
    ) -> Workflow:
        """Return the content's workflow, creating it in draft when missing."""

        content_type = _parse_content_type(content_type)
        with self._session_factory() as session:
            existing = SqlAlchemyWorkflowsRepository(session).find_by_content(content_id, content_type)
            if existing is not None:
                return existing
            try:
                return self._create(session, content_id, content_type, actor_id)
            except IntegrityError:
                # another caller created it between our read and insert
                session.rollback()
                existing = SqlAlchemyWorkflowsRepository(session).find_by_content(content_id, content_type)
                if existing is None:
                    raise
                return existing

    def _create(
        self,
        session: Session,
        content_id: UUID,
        content_type: ContentType,
        actor_id: UUID | None,
    ) -> Workflow:
        repo = SqlAlchemyWorkflowsRepository(session)
        workflow = repo.create(content_id, content_type)
        repo.append_history(workflow.id, None, WorkflowStatus.DRAFT, actor_id, "Content created")
        session.commit()
        logger.info(
            "workflow.created",
            workflow_id=str(workflow.id),
            content_id=str(content_id),
            content_type=content_type.value,
        )
        return workflow

    def get_workflow(self, content_id: UUID, content_type: ContentType | str) -> WorkflowDetail:
        content_type = _parse_content_type(content_type)
        with self._session_factory() as session:
            repo = SqlAlchemyWorkflowsRepository(session)
            workflow = repo.find_by_content(content_id, content_type)
            if workflow is None:
                raise NotFoundError(f"No workflow for {content_type.value} {content_id}")
            return self._detail(session, workflow)

    def get_workflow_by_id(self, workflow_id: UUID) -> WorkflowDetail:
        with self._session_factory() as session:
            workflow = SqlAlchemyWorkflowsRepository(session).get(workflow_id)
            if workflow is None:
                raise NotFoundError(f"Workflow {workflow_id} not found")
            return self._detail(session, workflow)

    def _detail(self, session: Session, workflow: Workflow) -> WorkflowDetail:
        content = SqlAlchemyContentDirectory(session).resolve(workflow.content_type, workflow.content_id)
        history = SqlAlchemyWorkflowsRepository(session).list_history(workflow.id, newest_first=True)
        return WorkflowDetail(workflow=workflow, content=content, history=history)

    def update_status(
        self,
        workflow_id: UUID,
        new_status: WorkflowStatus | str,
        actor_id: UUID | None = None,
        notes: str = "",
    ) -> StatusChange:
        new_status = _parse_status(new_status)
        with self._session_factory() as session:
            change = self._apply_status(session, workflow_id, new_status, actor_id, notes)
            session.commit()
        logger.info(
            "workflow.status_changed",
            workflow_id=str(workflow_id),
            old_status=change.old_status.value,
            new_status=change.new_status.value,
            actor_id=str(actor_id) if actor_id else None,
        )
        return change

    def _apply_status(
        self,
        session: Session,
        workflow_id: UUID,
        new_status: WorkflowStatus,
        actor_id: UUID | None,
        notes: str,
    ) -> StatusChange:
        repo = SqlAlchemyWorkflowsRepository(session)
        workflow = repo.get(workflow_id)
        if workflow is None:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        old_status = workflow.status
        if not can_transition(old_status, new_status):
            raise InvalidTransitionError(old_status.value, new_status.value)

        values: dict[str, object] = {"status": new_status}
        now = utcnow()
        if new_status is WorkflowStatus.REVIEW:
            values.update(current_reviewer_id=None, review_deadline=None)
        elif new_status is WorkflowStatus.PUBLISHED:
            values.update(published_at=now, current_reviewer_id=None)
        elif new_status is WorkflowStatus.ARCHIVED:
            values.update(archived_at=now, current_reviewer_id=None)
        repo.update_fields(workflow_id, **values)
        repo.append_history(workflow_id, old_status, new_status, actor_id, notes)
        return StatusChange(
            workflow_id=workflow_id,
            old_status=old_status,
            new_status=new_status,
            changed_by=actor_id,
            notes=notes,
        )

    def assign_reviewer(
        self,
        workflow_id: UUID,
        reviewer_id: UUID,
        actor_id: UUID | None = None,
        deadline: datetime | None = None,
    ) -> ReviewerAssignment:
        with self._session_factory() as session:
            repo = SqlAlchemyWorkflowsRepository(session)
            workflow = repo.get(workflow_id)
            if workflow is None:
                raise NotFoundError(f"Workflow {workflow_id} not found")
            if workflow.status is not WorkflowStatus.REVIEW:
                raise InvalidStateError(
                    f"Reviewers can only be assigned in review, workflow is {workflow.status.value}"
                )
            repo.update_fields(workflow_id, current_reviewer_id=reviewer_id, review_deadline=deadline)
            repo.append_history(
                workflow_id, WorkflowStatus.REVIEW, WorkflowStatus.REVIEW, actor_id, "Reviewer assigned"
            )
            session.commit()
        logger.info("workflow.reviewer_assigned", workflow_id=str(workflow_id), reviewer_id=str(reviewer_id))
        return ReviewerAssignment(workflow_id=workflow_id, reviewer_id=reviewer_id, deadline=deadline)

    def add_review_notes(self, workflow_id: UUID, reviewer_id: UUID, notes: str) -> Workflow:
        with self._session_factory() as session:
            repo = SqlAlchemyWorkflowsRepository(session)
            workflow = repo.get(workflow_id)
            if workflow is None:
                raise NotFoundError(f"Workflow {workflow_id} not found")
            if workflow.current_reviewer_id != reviewer_id:
                raise InvalidStateError(f"{reviewer_id} is not the assigned reviewer of workflow {workflow_id}")
            updated = repo.update_fields(workflow_id, review_notes=notes)
            session.commit()
        return updated

    def bulk_update_status(
        self,
        content_ids: Sequence[UUID],
        content_type: ContentType | str,
        new_status: WorkflowStatus | str,
        actor_id: UUID | None = None,
        notes: str = "",
    ) -> list[BulkStatusOutcome]:
        """Apply one status change per content item; each item commits on its own."""

        content_type = _parse_content_type(content_type)
        outcomes: list[BulkStatusOutcome] = []
        for content_id in content_ids:
            try:
                new = _parse_status(new_status)
                with self._session_factory() as session:
                    workflow = SqlAlchemyWorkflowsRepository(session).find_by_content(content_id, content_type)
                    if workflow is None:
                        raise NotFoundError(f"No workflow for {content_type.value} {content_id}")
                    change = self._apply_status(session, workflow.id, new, actor_id, notes)
                    session.commit()
            except MediaflowError as exc:
                logger.info("workflow.bulk_item_failed", content_id=str(content_id), error=str(exc))
                outcomes.append(BulkStatusOutcome(content_id=content_id, success=False, error=str(exc)))
                continue
            except SQLAlchemyError as exc:
                logger.error(
                    "workflow.bulk_item_error",
                    content_id=str(content_id),
                    error=str(exc),
                    traceback=traceback.format_exc(),
                )
                outcomes.append(BulkStatusOutcome(content_id=content_id, success=False, error=str(exc)))
                continue
            outcomes.append(BulkStatusOutcome(content_id=content_id, success=True, result=change))
        return outcomes

    # Queries ----------------------------------------------------------------

    def get_content_by_status(
        self,
        status: WorkflowStatus | str,
        content_type: ContentType | str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[WorkflowView]:
        status = _parse_status(status)
        content_type = _parse_content_type(content_type) if content_type is not None else None
        _check_page(limit, offset)
        with self._session_factory() as session:
            workflows = SqlAlchemyWorkflowsRepository(session).list_by_status(status, content_type, limit, offset)
            return self._annotate(session, workflows)

    def get_pending_reviews(
        self,
        reviewer_id: UUID,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> list[WorkflowView]:
        _check_page(limit, offset)
        with self._session_factory() as session:
            workflows = SqlAlchemyWorkflowsRepository(session).list_pending_reviews(reviewer_id, limit, offset)
            return self._annotate(session, workflows)

    def get_overdue_reviews(self, now: datetime | None = None) -> list[OverdueReview]:
        now = now or utcnow()
        with self._session_factory() as session:
            workflows = SqlAlchemyWorkflowsRepository(session).list_overdue(now)
            views = self._annotate(session, workflows)
        return [
            OverdueReview(
                workflow=view.workflow,
                content=view.content,
                days_overdue=(now.date() - view.workflow.review_deadline.date()).days,
            )
            for view in views
            if view.workflow.review_deadline is not None
        ]

    def search_by_metadata_and_tags(self, criteria: ContentSearch) -> list[WorkflowView]:
        with self._session_factory() as session:
            workflows = SqlAlchemyWorkflowsRepository(session).search(criteria)
            return self._annotate(session, workflows)

    def get_workflow_timeline(self, workflow_id: UUID) -> list[WorkflowHistoryEntry]:
        with self._session_factory() as session:
            repo = SqlAlchemyWorkflowsRepository(session)
            if repo.get(workflow_id) is None:
                raise NotFoundError(f"Workflow {workflow_id} not found")
            return repo.list_history(workflow_id)

    def get_workflow_statistics(self) -> list[WorkflowStatistic]:
        with self._session_factory() as session:
            return SqlAlchemyWorkflowsRepository(session).statistics()

    def _annotate(self, session: Session, workflows: Iterable[Workflow]) -> list[WorkflowView]:
        workflows = list(workflows)
        content = SqlAlchemyContentDirectory(session).resolve_many(
            (workflow.content_type, workflow.content_id) for workflow in workflows
        )
        return [
            WorkflowView(workflow=workflow, content=content.get((workflow.content_type, workflow.content_id)))
            for workflow in workflows
        ]

    # Metadata and tags ------------------------------------------------------

    def add_metadata(self, content_id: UUID, content_type: ContentType | str, entry: MetadataInput) -> UUID:
        content_type = _parse_content_type(content_type)
        with self._session_factory() as session:
            metadata_id = SqlAlchemyContentAttributesRepository(session).add_metadata(content_id, content_type, entry)
            session.commit()
        return metadata_id

    def update_metadata(self, metadata_id: UUID, entry: MetadataInput) -> None:
        with self._session_factory() as session:
            if not SqlAlchemyContentAttributesRepository(session).update_metadata(metadata_id, entry):
                raise NotFoundError(f"Metadata entry {metadata_id} not found")
            session.commit()

    def get_content_metadata(
        self,
        content_id: UUID,
        content_type: ContentType | str,
        include_private: bool = False,
    ) -> list[MetadataEntry]:
        content_type = _parse_content_type(content_type)
        with self._session_factory() as session:
            return SqlAlchemyContentAttributesRepository(session).list_metadata(
                content_id, content_type, include_private
            )

    def add_tags(self, content_id: UUID, content_type: ContentType | str, tags: Iterable[TagInput]) -> list[UUID]:
        content_type = _parse_content_type(content_type)
        with self._session_factory() as session:
            ids = SqlAlchemyContentAttributesRepository(session).add_tags(content_id, content_type, tags)
            session.commit()
        return ids

    def get_content_tags(self, content_id: UUID, content_type: ContentType | str) -> list[Tag]:
        content_type = _parse_content_type(content_type)
        with self._session_factory() as session:
            return SqlAlchemyContentAttributesRepository(session).list_tags(content_id, content_type)
