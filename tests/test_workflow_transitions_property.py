"""
Property-based tests for the content workflow state machine.

Property: For any workflow state and any requested target, update_status either
applies a listed transition and appends exactly one history entry, or raises
InvalidTransitionError and leaves the workflow and its history untouched.
"""

import uuid

import pytest
from hypothesis import given, settings, strategies as st

from mediaflow.core.errors import InvalidTransitionError
from mediaflow.domain.content import ContentType
from mediaflow.domain.workflow import TRANSITIONS, WorkflowStatus
from mediaflow.services.workflow import ContentWorkflowService

from support import make_session_factory

# Shortest listed path from draft to every state.
PATH_FROM_DRAFT = {
    WorkflowStatus.DRAFT: [],
    WorkflowStatus.REVIEW: [WorkflowStatus.REVIEW],
    WorkflowStatus.APPROVED: [WorkflowStatus.REVIEW, WorkflowStatus.APPROVED],
    WorkflowStatus.PUBLISHED: [WorkflowStatus.REVIEW, WorkflowStatus.APPROVED, WorkflowStatus.PUBLISHED],
    WorkflowStatus.ARCHIVED: [WorkflowStatus.ARCHIVED],
}

status_strategy = st.sampled_from(list(WorkflowStatus))
notes_strategy = st.text(
    alphabet=st.characters(blacklist_categories=("Cs", "Cc")),
    max_size=200,
)


def _workflow_in(service: ContentWorkflowService, status: WorkflowStatus):
    workflow = service.create_workflow(uuid.uuid4(), ContentType.LESSON)
    for step in PATH_FROM_DRAFT[status]:
        service.update_status(workflow.id, step)
    return workflow


@settings(max_examples=100, deadline=None)
@given(from_status=status_strategy, to_status=status_strategy)
def test_update_status_follows_transition_table(from_status, to_status):
    service = ContentWorkflowService(make_session_factory())
    workflow = _workflow_in(service, from_status)
    before = service.get_workflow_by_id(workflow.id)
    assert before.workflow.status is from_status

    if to_status in TRANSITIONS[from_status]:
        change = service.update_status(workflow.id, to_status)
        after = service.get_workflow_by_id(workflow.id)
        assert change.old_status is from_status
        assert change.new_status is to_status
        assert after.workflow.status is to_status
        assert len(after.history) == len(before.history) + 1
        assert after.history[0].from_status is from_status
        assert after.history[0].to_status is to_status
    else:
        with pytest.raises(InvalidTransitionError):
            service.update_status(workflow.id, to_status)
        after = service.get_workflow_by_id(workflow.id)
        assert after.workflow.status is from_status
        assert after.workflow.updated_at == before.workflow.updated_at
        assert [h.id for h in after.history] == [h.id for h in before.history]


@settings(max_examples=100, deadline=None)
@given(notes=notes_strategy)
def test_history_notes_round_trip(notes):
    service = ContentWorkflowService(make_session_factory())
    actor = uuid.uuid4()
    workflow = service.create_workflow(uuid.uuid4(), ContentType.COURSE, actor)

    service.update_status(workflow.id, WorkflowStatus.REVIEW, actor, notes)

    timeline = service.get_workflow_timeline(workflow.id)
    assert [entry.to_status for entry in timeline] == [WorkflowStatus.DRAFT, WorkflowStatus.REVIEW]
    assert timeline[0].from_status is None
    assert timeline[0].notes == "Content created"
    assert timeline[1].notes == notes
    assert timeline[1].actor_id == actor


def test_status_side_effects():
    service = ContentWorkflowService(make_session_factory())
    workflow = _workflow_in(service, WorkflowStatus.APPROVED)

    service.update_status(workflow.id, WorkflowStatus.PUBLISHED)
    published = service.get_workflow_by_id(workflow.id).workflow
    assert published.published_at is not None
    assert published.archived_at is None

    service.update_status(workflow.id, WorkflowStatus.ARCHIVED)
    archived = service.get_workflow_by_id(workflow.id).workflow
    assert archived.archived_at is not None
    assert archived.published_at == published.published_at
