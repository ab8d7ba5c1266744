from __future__ import annotations

from uuid import uuid4

from sqlalchemy import func, select

from jira_migrator.models.issue import Issue
from jira_migrator.models.project import State
from jira_migrator.models.user import User
from jira_migrator.models.workspace import WorkspaceMember
from jira_migrator.services.issues_import import db_steps
from jira_migrator.services.issues_import.steps import utcnow


def _issue(sequence: int, parent: Issue | None = None) -> Issue:
    return Issue(id=uuid4(), name=f"Issue {sequence}", sequence_id=sequence, parent_id=parent.id if parent else None)


def test_order_issues_puts_parents_first() -> None:
    epic = _issue(9)
    story = _issue(3, epic)
    task = _issue(1, story)
    loose = _issue(5)

    ordered = db_steps.order_issues([task, story, loose, epic])

    assert [issue.sequence_id for issue in ordered] == [5, 9, 3, 1]


def test_order_issues_survives_parent_cycles() -> None:
    first, second = _issue(1), _issue(2)
    first.parent_id, second.parent_id = second.id, first.id
    assert len(db_steps.order_issues([first, second])) == 2


def test_save_issues_in_reverse_order(make_context, session_factory) -> None:  # noqa: ANN001
    context = make_context()
    parent = _issue(2)
    child = _issue(1, parent)
    for issue in (child, parent):
        issue.project_id = context.project_id
        issue.workspace_id = context.workspace_id
        context.issues.put(f"PRJ-{issue.sequence_id}", issue)

    with session_factory() as db:
        db_steps.save_project(context, db)
        db_steps.save_issues(context, db)
        db.commit()
        assert db.scalar(select(func.count()).select_from(Issue)) == 2


def test_save_states_renames_duplicates(make_context, session_factory) -> None:  # noqa: ANN001
    context = make_context()
    context.raw_statuses = [
        {"id": "1", "name": "Done", "statusCategory": {"key": "done"}},
        {"id": "2", "name": "Done", "statusCategory": {"key": "done"}},
        {"id": "3", "name": "Done", "statusCategory": {"key": "done"}},
    ]
    for status_id in ("1", "2", "3"):
        context.states.get(status_id)

    with session_factory() as db:
        db_steps.save_project(context, db)
        db_steps.save_states(context, db)
        db.commit()
        rows = {state.name: state.color for state in db.scalars(select(State))}

    assert rows == {"Done": "#26b5ce", "Done (2)": "#199600", "Done (3)": "#199600"}


def test_memberships_are_inserted_once(make_context, session_factory, workspace) -> None:  # noqa: ANN001
    _, actor = workspace
    context = make_context()
    context.workspace_members.append(WorkspaceMember(
        id=uuid4(), workspace_id=context.workspace_id, member_id=actor.id, role=10, created_at=utcnow(),
    ))

    with session_factory() as db:
        db_steps.save_workspace_members(context, db)
        db.commit()
        count = db.scalar(select(func.count()).select_from(WorkspaceMember))

    assert count == 1


def test_duplicated_user_becomes_alias(make_context, session_factory) -> None:  # noqa: ANN001
    context = make_context()
    with session_factory() as db:
        stored = User(id=uuid4(), username="dave", email="dave@example.com")
        db.add(stored)
        db.commit()

    fresh = User(id=uuid4(), username="erin", email="erin@example.com")
    clash = User(id=uuid4(), username="dave", email="other@example.com")
    context.users_to_create.extend([fresh, clash])
    issue = _issue(1)
    issue.created_by_id = clash.id
    context.issues.put("PRJ-1", issue)

    with session_factory() as db:
        db_steps.save_users(context, db)
        db.commit()
        usernames = set(db.scalars(select(User.username)))

    assert {"dave", "erin"} <= usernames
    assert context.user_aliases == {clash.id: stored.id}
    assert issue.created_by_id == stored.id
    assert set(context.passwords) == {fresh.id}
    assert fresh.password_hash and fresh.password_hash != context.passwords[fresh.id]
