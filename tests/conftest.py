from __future__ import annotations

import os
import sys
from contextlib import contextmanager
from pathlib import Path
from uuid import uuid4

import pytest

BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SMTP_HOST", "")

from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

import jira_migrator.models  # noqa: E402,F401
from jira_migrator.db.base import Base  # noqa: E402
from jira_migrator.models.enums import MemberRole, UserRole  # noqa: E402
from jira_migrator.models.project import Project  # noqa: E402
from jira_migrator.models.user import User  # noqa: E402
from jira_migrator.models.workspace import Workspace, WorkspaceMember  # noqa: E402
from jira_migrator.services.issues_import.context import ImportContext  # noqa: E402

JIRA_URL = "https://jira.example.com"
PROJECT_KEY = "PRJ"


class FakeJiraClient:
    """In-memory Jira: issues, users and blobs served from plain dicts."""

    def __init__(
        self,
        *,
        issues: list[dict] | None = None,
        users: list[dict] | None = None,
        statuses: list[dict] | None = None,
        project: dict | None = None,
        watchers: dict[str, list[dict]] | None = None,
        attachments: dict[str, dict] | None = None,
        blobs: dict[str, bytes] | None = None,
    ) -> None:
        self.base_url = JIRA_URL
        self.host = "jira.example.com"
        self.issues = list(issues or [])
        self.users = list(users or [])
        self.statuses = list(statuses or [])
        self.project = project or {"key": PROJECT_KEY, "name": "Project", "description": ""}
        self.watchers = watchers or {}
        self.attachments = attachments or {}
        self.blobs = blobs or {}
        self.downloads: list[str] = []
        self.watcher_calls: list[str] = []
        self.closed = False

    def get_myself(self) -> dict:
        return {"name": "importer"}

    def list_projects(self) -> list[dict]:
        return [self.project]

    def get_link_types(self) -> list[dict]:
        return [{"id": "10000", "name": "Blocks"}]

    def get_priorities(self) -> list[dict]:
        return [{"id": "1", "name": "Highest"}]

    def get_all_statuses(self) -> list[dict]:
        return self.statuses

    def count_issues(self, jql: str) -> int:  # noqa: ARG002
        return len(self.issues)

    def iter_issues(self, jql: str):  # noqa: ANN201, ARG002
        yield from self.issues

    def get_issue(self, key: str) -> dict:
        for issue in self.issues:
            if issue["key"] == key:
                return issue
        raise LookupError(key)

    def find_assignable_users(self, project_key: str, *, start_at: int = 0, max_results: int = 100) -> list[dict]:  # noqa: ARG002
        return self.users[start_at:start_at + max_results]

    def get_user(self, account: str) -> dict:
        for user in self.users:
            if account in (user.get("name"), user.get("accountId")):
                return user
        raise LookupError(account)

    def get_project(self, key: str) -> dict:  # noqa: ARG002
        return self.project

    def get_watchers(self, issue_id: str) -> list[dict]:
        self.watcher_calls.append(issue_id)
        return self.watchers.get(issue_id, [])

    def get_attachment(self, attachment_id: str) -> dict:
        return self.attachments[attachment_id]

    def download(self, url: str) -> tuple[bytes, str]:
        self.downloads.append(url)
        if url not in self.blobs:
            raise ConnectionError(f"unreachable {url}")
        return self.blobs[url], "application/octet-stream"

    @contextmanager
    def stream(self, url: str):  # noqa: ANN201
        raise ConnectionError(f"unreachable {url}")
        yield  # pragma: no cover

    def close(self) -> None:
        self.closed = True


class FakeStorage:
    def __init__(self) -> None:
        self.saved: dict = {}
        self.deleted: list = []

    def save(self, data: bytes, size: int, asset_id, content_type: str, metadata=None) -> None:  # noqa: ANN001
        self.saved[asset_id] = (data, size, content_type, metadata or {})

    def delete(self, asset_id) -> None:  # noqa: ANN001
        self.deleted.append(asset_id)
        self.saved.pop(asset_id, None)


@pytest.fixture
def engine(tmp_path):  # noqa: ANN001
    engine = create_engine(f"sqlite:///{tmp_path / 'target.db'}", connect_args={"check_same_thread": False})

    # pysqlite needs these for SAVEPOINT support and enforced foreign keys;
    # WAL lets the request session read while the import writes
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _record) -> None:  # noqa: ANN001
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn) -> None:  # noqa: ANN001
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):  # noqa: ANN001
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def workspace(session_factory):  # noqa: ANN001
    with session_factory() as db:
        actor = User(
            id=uuid4(),
            username="owner",
            email="owner@example.com",
            first_name="Olga",
            last_name="Owner",
            role=UserRole.admin,
        )
        target = Workspace(id=uuid4(), name="Target", slug="target")
        db.add_all([actor, target])
        db.flush()
        db.add(WorkspaceMember(workspace_id=target.id, member_id=actor.id, role=int(MemberRole.admin)))
        db.commit()
    return target, actor


@pytest.fixture
def make_context(session_factory, workspace):  # noqa: ANN001
    target, actor = workspace

    def factory(client: FakeJiraClient | None = None, *, with_project: bool = True, **kwargs) -> ImportContext:  # noqa: ANN003
        kwargs.setdefault("ignore_attachments", False)
        kwargs.setdefault("notify_new_members", False)
        context = ImportContext(
            client=client or FakeJiraClient(),
            session_factory=session_factory,
            storage=kwargs.pop("storage", None) or FakeStorage(),
            actor=actor,
            project_key=PROJECT_KEY,
            target_workspace_id=target.id,
            web_url="https://planner.example.com",
            **kwargs,
        )
        context.attachment_retry_delay = 0
        if with_project:
            context.project = Project(
                id=uuid4(),
                name="Project",
                identifier=PROJECT_KEY,
                description="",
                created_by_id=actor.id,
                workspace_id=target.id,
            )
        return context

    return factory


def jira_issue(key: str, **fields) -> dict:  # noqa: ANN003
    """Minimal Jira REST issue payload with ``renderedFields``."""
    number = key.split("-")[1]
    rendered = fields.pop("rendered", {})
    payload_fields = {
        "summary": f"Issue {key}",
        "created": "2026-02-14T10:00:00.000+0000",
        "updated": "2026-02-14T11:00:00.000+0000",
        "watches": {"watchCount": 0},
    }
    payload_fields.update(fields)
    return {
        "id": f"100{number}",
        "key": key,
        "self": f"{JIRA_URL}/rest/api/2/issue/100{number}",
        "fields": payload_fields,
        "renderedFields": rendered,
    }
