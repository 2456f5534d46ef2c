"""Reviewer assignment, bulk updates and the workflow query surface."""

import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from mediaflow.core.errors import InvalidStateError, NotFoundError, ValidationError
from mediaflow.domain.content import ContentType, MetadataInput, TagInput
from mediaflow.domain.workflow import ContentSearch, WorkflowStatus
from mediaflow.repositories.content import SqlAlchemyContentDirectory
from mediaflow.repositories.workflows import SqlAlchemyWorkflowsRepository
from mediaflow.services.workflow import ContentWorkflowService


@pytest.fixture
def service(session_factory):
    return ContentWorkflowService(session_factory)


def _in_review(service, content_id=None):
    workflow = service.create_workflow(content_id or uuid.uuid4(), ContentType.LESSON)
    service.update_status(workflow.id, WorkflowStatus.REVIEW)
    return workflow


def test_create_workflow_rejects_duplicates(service):
    content_id = uuid.uuid4()
    service.create_workflow(content_id, "lesson")
    with pytest.raises(ValidationError):
        service.create_workflow(content_id, "lesson")


def test_ensure_workflow_returns_existing(service):
    content_id = uuid.uuid4()
    first = service.ensure_workflow(content_id, ContentType.LESSON)
    second = service.ensure_workflow(content_id, ContentType.LESSON)
    assert first.id == second.id
    assert len(service.get_workflow_timeline(first.id)) == 1


def test_get_workflow_resolves_lesson_owner(service, session_factory):
    with session_factory() as session:
        directory = SqlAlchemyContentDirectory(session)
        instructor = uuid.uuid4()
        course = directory.create_course("Queues 101", instructor_id=instructor)
        lesson = directory.create_lesson("Backoff", course_id=course.id)
        session.commit()

    service.create_workflow(lesson.id, ContentType.LESSON)
    detail = service.get_workflow(lesson.id, ContentType.LESSON)

    assert detail.content.kind == "lesson"
    assert detail.content.title == "Backoff"
    assert detail.content.owner_id == instructor


def test_get_workflow_missing_raises(service):
    with pytest.raises(NotFoundError):
        service.get_workflow(uuid.uuid4(), ContentType.COURSE)


def test_unknown_status_is_a_validation_error(service):
    workflow = service.create_workflow(uuid.uuid4(), ContentType.LESSON)
    with pytest.raises(ValidationError):
        service.update_status(workflow.id, "deleted")


def test_assign_reviewer_requires_review_state(service):
    workflow = service.create_workflow(uuid.uuid4(), ContentType.LESSON)

    with pytest.raises(InvalidStateError):
        service.assign_reviewer(workflow.id, uuid.uuid4())

    detail = service.get_workflow_by_id(workflow.id)
    assert detail.workflow.current_reviewer_id is None
    assert len(detail.history) == 1


def test_assign_reviewer_records_history(service):
    workflow = _in_review(service)
    reviewer = uuid.uuid4()
    deadline = datetime(2030, 1, 1, 12, 0)

    assignment = service.assign_reviewer(workflow.id, reviewer, deadline=deadline)

    detail = service.get_workflow_by_id(workflow.id)
    assert assignment.reviewer_id == reviewer
    assert detail.workflow.current_reviewer_id == reviewer
    assert detail.workflow.review_deadline == deadline
    assert detail.history[0].from_status is WorkflowStatus.REVIEW
    assert detail.history[0].to_status is WorkflowStatus.REVIEW
    assert detail.history[0].notes == "Reviewer assigned"


def test_review_notes_only_from_assigned_reviewer(service):
    workflow = _in_review(service)
    reviewer = uuid.uuid4()
    service.assign_reviewer(workflow.id, reviewer)

    with pytest.raises(InvalidStateError):
        service.add_review_notes(workflow.id, uuid.uuid4(), "looks fine")

    updated = service.add_review_notes(workflow.id, reviewer, "needs captions")
    assert updated.review_notes == "needs captions"


def test_publishing_clears_reviewer(service):
    workflow = _in_review(service)
    service.assign_reviewer(workflow.id, uuid.uuid4())
    service.update_status(workflow.id, WorkflowStatus.APPROVED)
    service.update_status(workflow.id, WorkflowStatus.PUBLISHED)

    published = service.get_workflow_by_id(workflow.id).workflow
    assert published.current_reviewer_id is None
    assert published.published_at is not None


def test_bulk_update_reports_each_item(service):
    ok = uuid.uuid4()
    already_in_review = uuid.uuid4()
    missing = uuid.uuid4()
    service.create_workflow(ok, ContentType.LESSON)
    _in_review(service, already_in_review)

    outcomes = service.bulk_update_status([ok, already_in_review, missing], ContentType.LESSON, WorkflowStatus.REVIEW)

    assert [o.content_id for o in outcomes] == [ok, already_in_review, missing]
    assert [o.success for o in outcomes] == [True, False, False]
    assert outcomes[0].result.new_status is WorkflowStatus.REVIEW
    assert "Invalid status transition" in outcomes[1].error
    assert outcomes[2].result is None

    assert service.get_workflow(ok, ContentType.LESSON).workflow.status is WorkflowStatus.REVIEW
    unchanged = service.get_workflow(already_in_review, ContentType.LESSON)
    assert unchanged.workflow.status is WorkflowStatus.REVIEW
    assert len(unchanged.history) == 2


def test_bulk_update_continues_after_database_error(service, monkeypatch):
    original = SqlAlchemyWorkflowsRepository.append_history
    calls = []

    def append_history(self, *args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            raise OperationalError("INSERT INTO workflow_history", {}, Exception("database is locked"))
        return original(self, *args, **kwargs)

    content_ids = [uuid.uuid4() for _ in range(3)]
    for content_id in content_ids:
        service.create_workflow(content_id, ContentType.LESSON)
    monkeypatch.setattr(SqlAlchemyWorkflowsRepository, "append_history", append_history)

    outcomes = service.bulk_update_status(content_ids, ContentType.LESSON, WorkflowStatus.REVIEW)

    assert [o.success for o in outcomes] == [False, True, True]
    assert "database is locked" in outcomes[0].error
    statuses = [service.get_workflow(c, ContentType.LESSON).workflow.status for c in content_ids]
    assert statuses == [WorkflowStatus.DRAFT, WorkflowStatus.REVIEW, WorkflowStatus.REVIEW]


def test_pending_reviews_sorted_by_deadline(service):
    reviewer = uuid.uuid4()
    late = _in_review(service)
    soon = _in_review(service)
    undated = _in_review(service)
    other = _in_review(service)
    service.assign_reviewer(late.id, reviewer, deadline=datetime(2030, 6, 1))
    service.assign_reviewer(soon.id, reviewer, deadline=datetime(2030, 1, 1))
    service.assign_reviewer(undated.id, reviewer)
    service.assign_reviewer(other.id, uuid.uuid4(), deadline=datetime(2029, 1, 1))

    views = service.get_pending_reviews(reviewer)

    assert [v.workflow.id for v in views] == [soon.id, late.id, undated.id]


def test_overdue_reviews_report_whole_days(service):
    workflow = _in_review(service)
    service.assign_reviewer(workflow.id, uuid.uuid4(), deadline=datetime(2030, 1, 1, 9, 0))
    on_time = _in_review(service)
    service.assign_reviewer(on_time.id, uuid.uuid4(), deadline=datetime(2030, 2, 1))

    overdue = service.get_overdue_reviews(now=datetime(2030, 1, 4, 8, 0))

    assert [o.workflow.id for o in overdue] == [workflow.id]
    assert overdue[0].days_overdue == 3


def test_content_by_status_pages(service):
    for _ in range(3):
        service.create_workflow(uuid.uuid4(), ContentType.COURSE)
    service.create_workflow(uuid.uuid4(), ContentType.LESSON)

    assert len(service.get_content_by_status("draft")) == 4
    assert len(service.get_content_by_status("draft", ContentType.COURSE)) == 3
    assert len(service.get_content_by_status("draft", limit=2, offset=2)) == 2
    with pytest.raises(ValidationError):
        service.get_content_by_status("draft", limit=0)


def test_search_by_metadata_and_tags(service):
    python_lesson = uuid.uuid4()
    go_lesson = uuid.uuid4()
    hidden = uuid.uuid4()
    for content_id in (python_lesson, go_lesson, hidden):
        service.create_workflow(content_id, ContentType.LESSON)
    service.add_metadata(python_lesson, "lesson", MetadataInput(key="language", value="python 3.12"))
    service.add_metadata(go_lesson, "lesson", MetadataInput(key="language", value="go"))
    service.add_metadata(
        hidden, "lesson", MetadataInput(key="language", value="python", is_searchable=False)
    )
    service.add_tags(python_lesson, "lesson", [TagInput(name="beginner")])
    service.add_tags(go_lesson, "lesson", [TagInput(name="advanced")])

    by_metadata = service.search_by_metadata_and_tags(ContentSearch(metadata={"language": "python"}))
    assert [v.workflow.content_id for v in by_metadata] == [python_lesson]

    by_tag = service.search_by_metadata_and_tags(ContentSearch(tags=["advanced", "expert"]))
    assert [v.workflow.content_id for v in by_tag] == [go_lesson]

    both = service.search_by_metadata_and_tags(
        ContentSearch(metadata={"language": "python"}, tags=["advanced"])
    )
    assert both == []


def test_metadata_visibility_and_update(service):
    content_id = uuid.uuid4()
    public_id = service.add_metadata(content_id, "course", MetadataInput(key="level", value="intro"))
    service.add_metadata(content_id, "course", MetadataInput(key="cost", value="12", is_public=False))

    assert [m.key for m in service.get_content_metadata(content_id, "course")] == ["level"]
    assert [m.key for m in service.get_content_metadata(content_id, "course", include_private=True)] == [
        "cost",
        "level",
    ]

    service.update_metadata(public_id, MetadataInput(key="level", value="advanced"))
    assert service.get_content_metadata(content_id, "course")[0].value == "advanced"
    with pytest.raises(NotFoundError):
        service.update_metadata(uuid.uuid4(), MetadataInput(key="level", value="x"))


def test_tags_ordered_by_weight(service):
    content_id = uuid.uuid4()
    service.add_tags(
        content_id,
        ContentType.COURSE,
        [TagInput(name="video", weight=0.5), TagInput(name="python", category="language", weight=2.0)],
    )
    tags = service.get_content_tags(content_id, ContentType.COURSE)
    assert [t.name for t in tags] == ["python", "video"]
    assert tags[0].category == "language"


def test_statistics_group_by_status_and_type(service):
    service.create_workflow(uuid.uuid4(), ContentType.COURSE)
    service.create_workflow(uuid.uuid4(), ContentType.COURSE)
    _in_review(service)

    stats = {(s.status, s.content_type): s.count for s in service.get_workflow_statistics()}
    assert stats == {
        (WorkflowStatus.DRAFT, ContentType.COURSE): 2,
        (WorkflowStatus.REVIEW, ContentType.LESSON): 1,
    }


def test_timeline_is_chronological(service):
    workflow = _in_review(service)
    service.update_status(workflow.id, WorkflowStatus.APPROVED, notes="ok")
    timeline = service.get_workflow_timeline(workflow.id)
    assert [e.position for e in timeline] == [1, 2, 3]
    assert [e.to_status for e in timeline] == [
        WorkflowStatus.DRAFT,
        WorkflowStatus.REVIEW,
        WorkflowStatus.APPROVED,
    ]
    with pytest.raises(NotFoundError):
        service.get_workflow_timeline(uuid.uuid4())
