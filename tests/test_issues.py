from datetime import timedelta

import pytest

from conftest import ctx_for
from kandy_tasks.errors import (
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from kandy_tasks.models.enums import (
    IssuePriority,
    IssueStatus,
    IssueType,
    RequestedAction,
    TaskStatus,
)
from kandy_tasks.models.models import Issue, Notification
from kandy_tasks.services import issues as issue_service
from kandy_tasks.services.validation import local_today


@pytest.fixture()
def assigned_task(manager, electrician, make_task):
    return make_task(manager, status=TaskStatus.in_progress, assignee=electrician)


def _report(db, user, task, **kwargs):
    values = dict(
        issue_type=IssueType.materials,
        description="Customer has no spare breaker; need a 63A RCCB",
        requested_action=RequestedAction.materials,
        priority=IssuePriority.urgent,
    )
    values.update(kwargs)
    return issue_service.report_issue(db, ctx_for(user), task.id, **values)


def test_report_issue_notifies_managers(db, manager, electrician, assigned_task):
    issue = _report(db, electrician, assigned_task)

    assert issue.status == IssueStatus.open
    assert issue.reported_by_id == electrician.id
    assert issue.requested_action == "materials"
    notes = db.query(Notification).filter(Notification.user_id == manager.id).all()
    assert [n.type for n in notes] == ["issue_reported"]
    assert notes[0].issue_id == issue.id


def test_report_by_non_assignee_creates_nothing(db, other_electrician, assigned_task):
    with pytest.raises(UnauthorizedError):
        _report(db, other_electrician, assigned_task)
    assert db.query(Issue).count() == 0


def test_report_requires_open_work(db, manager, electrician, make_task):
    pending = make_task(manager)
    done = make_task(
        manager, status=TaskStatus.completed, assignee=electrician,
        completion_notes="done", completed_at=pending.created_at,
    )
    with pytest.raises(UnauthorizedError):
        _report(db, electrician, pending)
    with pytest.raises(InvalidStateError):
        _report(db, electrician, done)


def test_report_requires_description(db, electrician, assigned_task):
    with pytest.raises(ValidationError):
        _report(db, electrician, assigned_task, description="   ")


def test_report_on_missing_task(db, electrician, manager):
    with pytest.raises(NotFoundError):
        issue_service.report_issue(db, ctx_for(electrician), manager.id, IssueType.other, "x")


def test_resolve_requires_notes(db, manager, electrician, assigned_task):
    issue = _report(db, electrician, assigned_task)

    with pytest.raises(ValidationError):
        issue_service.update_issue_status(db, ctx_for(manager), issue.id, IssueStatus.resolved, "")

    db.expire_all()
    assert db.get(Issue, issue.id).status == IssueStatus.open


def test_issue_workflow(db, manager, electrician, assigned_task):
    issue = _report(db, electrician, assigned_task)
    mgr = ctx_for(manager)

    issue = issue_service.update_issue_status(db, mgr, issue.id, IssueStatus.in_progress)
    assert issue.status == IssueStatus.in_progress

    issue = issue_service.update_issue_status(db, mgr, issue.id, IssueStatus.resolved, "RCCB delivered")
    assert issue.status == IssueStatus.resolved
    assert issue.resolved_by_id == manager.id
    assert issue.resolved_at is not None
    assert issue.resolution_notes == "RCCB delivered"

    with pytest.raises(InvalidTransitionError):
        issue_service.update_issue_status(db, mgr, issue.id, IssueStatus.open)

    updates = db.query(Notification).filter(
        Notification.user_id == electrician.id, Notification.type == "issue_updated"
    )
    assert updates.count() == 2


def test_electrician_cannot_update_issue(db, electrician, assigned_task):
    issue = _report(db, electrician, assigned_task)
    with pytest.raises(UnauthorizedError):
        issue_service.update_issue_status(db, ctx_for(electrician), issue.id, IssueStatus.in_progress)


def test_admin_may_resolve_issues(db, admin, electrician, assigned_task):
    issue = _report(db, electrician, assigned_task)
    issue = issue_service.update_issue_status(db, ctx_for(admin), issue.id, IssueStatus.resolved, "Handled")
    assert issue.status == IssueStatus.resolved


def test_list_filters_and_visibility(db, manager, electrician, other_electrician, make_task, assigned_task):
    other_task = make_task(manager, status=TaskStatus.assigned, assignee=other_electrician)
    mine = _report(db, electrician, assigned_task, priority=IssuePriority.emergency)
    _report(db, other_electrician, other_task, priority=IssuePriority.normal)

    mgr = ctx_for(manager)
    assert len(issue_service.list_issues(db, mgr)) == 2
    emergencies = issue_service.list_issues(db, mgr, priority=IssuePriority.emergency)
    assert [i.id for i in emergencies] == [mine.id]

    today = local_today()
    assert len(issue_service.list_issues(db, mgr, start_date=today, end_date=today)) == 2
    assert issue_service.list_issues(db, mgr, start_date=today + timedelta(days=1)) == []
    assert issue_service.list_issues(db, mgr, end_date=today - timedelta(days=1)) == []

    visible = issue_service.list_issues(db, ctx_for(electrician))
    assert [i.id for i in visible] == [mine.id]
    with pytest.raises(UnauthorizedError):
        issue_service.get_issue_for(db, ctx_for(electrician), _other_issue_id(db, mine))


def _other_issue_id(db, mine):
    return db.query(Issue.id).filter(Issue.id != mine.id).scalar()


def test_issue_stats(db, manager, electrician, assigned_task):
    first = _report(db, electrician, assigned_task, priority=IssuePriority.emergency)
    _report(db, electrician, assigned_task, priority=IssuePriority.urgent)
    third = _report(db, electrician, assigned_task, priority=IssuePriority.urgent)
    mgr = ctx_for(manager)
    issue_service.update_issue_status(db, mgr, first.id, IssueStatus.in_progress)
    issue_service.update_issue_status(db, mgr, third.id, IssueStatus.resolved, "Sorted")

    stats = issue_service.issue_stats(issue_service.list_issues(db, mgr))
    assert stats == {
        "total_issues": 3,
        "open_issues": 2,
        "in_progress_issues": 1,
        "resolved_issues": 1,
        "urgent_issues": 1,
        "emergency_issues": 1,
    }


def test_issue_update_race_loser_gets_conflict(db, session_factory, manager, electrician, assigned_task):
    issue = _report(db, electrician, assigned_task)
    assert db.get(Issue, issue.id).status == IssueStatus.open

    other = session_factory()
    try:
        issue_service.update_issue_status(other, ctx_for(manager), issue.id, IssueStatus.in_progress)
    finally:
        other.close()

    with pytest.raises(InvalidTransitionError) as exc:
        issue_service.update_issue_status(db, ctx_for(manager), issue.id, IssueStatus.resolved, "Closed out")
    assert exc.value.current_status == "in_progress"

    db.expire_all()
    issue = db.get(Issue, issue.id)
    assert issue.status == IssueStatus.in_progress
    assert issue.resolution_notes is None
    assert issue.resolved_at is None
