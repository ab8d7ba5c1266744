from __future__ import annotations

from uuid import uuid4

import pytest
from sqlalchemy import select

from conftest import JIRA_URL, FakeJiraClient, FakeStorage, jira_issue
from jira_migrator.core.config import settings
from jira_migrator.core.exceptions import AlreadyImportingError, ProjectConflictError, TargetWorkspaceNotFoundError
from jira_migrator.integrations.jira.schemas import JiraImportRequest
from jira_migrator.models.email_log import EmailLog
from jira_migrator.models.enums import EmailKind, MemberRole
from jira_migrator.models.file_asset import FileAsset
from jira_migrator.models.imported_project import ImportedProject
from jira_migrator.models.issue import (
    Issue,
    IssueAssignee,
    IssueAttachment,
    IssueBlocker,
    IssueComment,
    IssueLabel,
    IssueLink,
)
from jira_migrator.models.project import Label, Project, ProjectMember, State
from jira_migrator.models.user import User
from jira_migrator.models.workspace import WorkspaceMember
from jira_migrator.services.email import ImportNotifier
from jira_migrator.services.issues_import import service
from jira_migrator.services.issues_import.counters import ImportState
from jira_migrator.services.issues_import.registry import ImportRegistry

ATTACHMENT_URL = f"{JIRA_URL}/secure/attachment/500/notes.txt"
BROKEN_URL = f"{JIRA_URL}/secure/attachment/501/broken.txt"

STATUSES = [
    {"id": "1", "name": "To Do", "statusCategory": {"key": "new"}},
    {"id": "5", "name": "Done", "statusCategory": {"key": "done"}},
]

USERS = [
    {"name": "alice", "emailAddress": "alice@example.com", "displayName": "Liddell Alice", "timeZone": "Europe/Paris"},
    {"name": "bob", "emailAddress": "bob@example.com", "displayName": "Bob", "timeZone": "Mars/Olympus"},
]


def _jira() -> FakeJiraClient:
    block = {"type": {"id": "10000", "name": "Blocks"}, "outwardIssue": {"key": "PRJ-2"}}
    return FakeJiraClient(
        statuses=STATUSES,
        users=USERS,
        project={"key": "PRJ", "name": "Project X", "description": "imported", "lead": {"name": "alice"}},
        blobs={ATTACHMENT_URL: b"hello"},
        issues=[
            jira_issue(
                "PRJ-1",
                status={"id": "1"},
                reporter={"name": "alice"},
                assignee={"name": "bob"},
                labels=["backend"],
                attachment=[
                    {"id": "500", "filename": "notes.txt", "size": 5, "content": ATTACHMENT_URL},
                    {"id": "501", "filename": "broken.txt", "size": 3, "content": BROKEN_URL},
                ],
                comment={"comments": [{
                    "id": "301",
                    "body": "looks good",
                    "author": {"name": "bob"},
                    "created": "2026-02-15T08:00:00.000+0000",
                }]},
                rendered={
                    "description": f'<p>See <a href="{ATTACHMENT_URL}">notes</a></p>',
                    "comment": {"comments": [{"id": "301", "body": "<p>looks <b>good</b></p>"}]},
                },
            ),
            jira_issue("PRJ-2", status={"id": "5"}, reporter={"name": "bob"}, parent={"key": "PRJ-1"}),
            jira_issue("PRJ-3", status={"id": "1"}, reporter={"name": "alice"}, issuelinks=[block]),
        ],
    )


def _payload(workspace_id) -> JiraImportRequest:  # noqa: ANN001
    return JiraImportRequest(
        username="importer@example.com",
        token="secret",
        jira_url=JIRA_URL,
        target_workspace_id=workspace_id,
        block_link_id="10000",
    )


@pytest.fixture
def jira(monkeypatch) -> FakeJiraClient:  # noqa: ANN001
    client = _jira()
    monkeypatch.setattr(settings, "IMPORT_ATTACHMENT_RETRY_DELAY_SECONDS", 0)
    monkeypatch.setattr(service, "client_factory", lambda *_args: client)
    return client


def test_full_import_commits_the_project(jira, session_factory, workspace) -> None:  # noqa: ANN001
    target, actor = workspace
    registry = ImportRegistry(session_factory)
    storage = FakeStorage()

    with session_factory() as db:
        context = service.start_import(
            db,
            registry,
            actor,
            "prj",
            _payload(target.id),
            storage=storage,
            notifier=ImportNotifier(session_factory),
            session_factory=session_factory,
            background=False,
        )

    assert context.state == ImportState.finished, context.error
    assert jira.closed

    with session_factory() as db:
        project = db.scalars(select(Project)).one()
        assert project.identifier == "PRJ"
        assert project.workspace_id == target.id

        users = {user.username: user for user in db.scalars(select(User))}
        assert set(users) == {"owner", "alice", "bob"}
        assert users["alice"].first_name == "Alice" and users["alice"].last_name == "Liddell"
        assert users["bob"].user_timezone == "UTC"
        assert users["alice"].password_hash
        assert project.project_lead_id == users["alice"].id

        issues = {issue.sequence_id: issue for issue in db.scalars(select(Issue))}
        assert set(issues) == {1, 2, 3}
        assert issues[2].parent_id == issues[1].id
        assert issues[2].sort_order == 1
        assert issues[1].created_by_id == users["alice"].id
        states = {state.id: state.name for state in db.scalars(select(State))}
        assert states[issues[1].state_id] == "To Do"
        assert states[issues[2].state_id] == "Done"

        [blocker] = db.scalars(select(IssueBlocker)).all()
        assert blocker.block_id == issues[2].id
        assert blocker.blocked_by_id == issues[3].id

        [label] = db.scalars(select(Label)).all()
        assert label.name == "backend"
        assert db.scalars(select(IssueLabel)).one().issue_id == issues[1].id
        assert db.scalars(select(IssueAssignee)).one().assignee_id == users["bob"].id

        comment = db.scalars(select(IssueComment)).one()
        assert comment.comment_html == "<p>looks <b>good</b></p>"
        assert comment.actor_id == users["bob"].id

        [attachment] = db.scalars(select(IssueAttachment)).all()
        asset = db.get(FileAsset, attachment.asset_id)
        assert asset.size == 5
        assert db.scalars(select(FileAsset.id)).all() == [asset.id]
        assert issues[1].description_html == f'<p>See <a href="/uploads/{asset.id}">notes</a></p>'
        assert storage.saved[asset.id][0] == b"hello"

        assert len(db.scalars(select(IssueLink)).all()) == 3

        workspace_members = set(db.scalars(select(WorkspaceMember.member_id)))
        assert workspace_members == {actor.id, users["alice"].id, users["bob"].id}
        roles = {row.member_id: row.role for row in db.scalars(select(ProjectMember))}
        assert roles[actor.id] == int(MemberRole.admin)
        assert roles[users["bob"].id] == int(MemberRole.member)

        record = db.scalars(select(ImportedProject)).one()
        assert record.import_id == context.id
        assert record.total_issues == 3
        logs = db.scalars(select(EmailLog)).all()
        assert {row.import_id for row in logs} == {context.id}
        kinds = [row.kind for row in logs]
        assert sorted(kinds) == [EmailKind.import_finished, EmailKind.import_started]

    status = registry.get_user_import_status(context.id, actor.id)
    assert status.finished and status.state == "finished"
    [failed] = status.failed_attachments
    assert (failed.key, failed.name, failed.attachment_id) == ("PRJ-1", "broken.txt", "501")
    assert jira.downloads.count(BROKEN_URL) == settings.IMPORT_ATTACHMENT_ATTEMPTS
    assert set(storage.saved) == {asset.id}
    assert registry.can_start_import(actor.id)


def test_failed_commit_rolls_back_and_cleans_storage(jira, session_factory, workspace, monkeypatch) -> None:  # noqa: ANN001
    target, actor = workspace
    storage = FakeStorage()
    from jira_migrator.services.issues_import import db_steps

    def broken(context, db) -> None:  # noqa: ANN001
        raise RuntimeError("constraint violated")

    monkeypatch.setattr(db_steps, "DB_STEPS", [*db_steps.DB_STEPS[:-1], broken])

    with session_factory() as db:
        context = service.start_import(
            db,
            ImportRegistry(),
            actor,
            "PRJ",
            _payload(target.id),
            storage=storage,
            notifier=None,
            session_factory=session_factory,
            background=False,
        )

    assert context.state == ImportState.failed
    assert "save project to database error" in str(context.error)
    assert storage.saved == {}
    assert len(storage.deleted) == 1
    with session_factory() as db:
        assert db.scalars(select(Issue)).all() == []
        assert db.scalars(select(Project)).all() == []
        assert {user.username for user in db.scalars(select(User))} == {"owner"}


def test_start_import_checks_target(jira, session_factory, workspace) -> None:  # noqa: ANN001
    target, actor = workspace
    registry = ImportRegistry()

    with session_factory() as db:
        with pytest.raises(TargetWorkspaceNotFoundError):
            service.start_import(db, registry, actor, "PRJ", _payload(uuid4()), background=False)

        db.add(Project(name="Existing", identifier="PRJ", created_by_id=actor.id, workspace_id=target.id))
        db.commit()
        with pytest.raises(ProjectConflictError):
            service.start_import(db, registry, actor, "PRJ", _payload(target.id), background=False)


def test_start_import_rejects_second_running_import(jira, session_factory, workspace, make_context) -> None:  # noqa: ANN001
    target, actor = workspace
    registry = ImportRegistry()
    registry.register(make_context())

    with session_factory() as db:
        with pytest.raises(AlreadyImportingError):
            service.start_import(db, registry, actor, "PRJ", _payload(target.id), background=False)


def test_jira_info(jira) -> None:  # noqa: ANN001
    info = service.get_jira_info("importer", "secret", JIRA_URL)
    assert info.projects[0]["key"] == "PRJ"
    assert info.link_types == [{"id": "10000", "name": "Blocks"}]
    assert jira.closed
