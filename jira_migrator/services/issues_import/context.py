"""Shared state of one Jira project import."""

from __future__ import annotations

import datetime as dt
import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterator
from uuid import UUID, uuid4
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from jira_migrator.core.config import settings
from jira_migrator.core.exceptions import ImportCancelled
from jira_migrator.core.logging import import_logger
from jira_migrator.integrations.jira.client import JiraClient
from jira_migrator.models.enums import UserRole
from jira_migrator.models.file_asset import FileAsset
from jira_migrator.models.issue import (
    Issue,
    IssueAssignee,
    IssueBlocker,
    IssueComment,
    IssueLabel,
    IssueLink,
    IssueWatcher,
    LinkedIssue,
)
from jira_migrator.models.project import Label, Project, ProjectMember, State
from jira_migrator.models.user import User
from jira_migrator.models.workspace import WorkspaceMember
from jira_migrator.services.issues_import import mappers
from jira_migrator.services.issues_import.atomic import (
    AtomicList,
    ConvertMap,
    ImportMap,
    SortOrderCounter,
    SyncMap,
)
from jira_migrator.services.issues_import.counters import ImportCounters, ImportStage, ImportState
from jira_migrator.services.issues_import.entity import Attachment, LinkMapper, PrioritiesMapping, RawLinkedIssues
from jira_migrator.services.issues_import.utils import account_of, sequence_of
from jira_migrator.services.storage import FileStorage

STATE_COLOR = "#26b5ce"


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class ImportContext:
    """Everything one import run reads and stages before the commit.

    Staging collections are keyed by Jira identifiers and are safe to use
    from the mapper and attachment worker threads. Cancellation is
    cooperative: steps poll ``finished`` through ``check_cancelled``.
    """

    def __init__(
        self,
        *,
        client: JiraClient,
        session_factory: Callable[..., Session],
        storage: FileStorage,
        actor: User,
        project_key: str,
        target_workspace_id: UUID,
        notifier: Any = None,
        web_url: str | None = None,
        block_link_id: str = "",
        relate_link_mapper: LinkMapper | None = None,
        priorities_mapping: PrioritiesMapping | None = None,
        ignore_attachments: bool | None = None,
        notify_new_members: bool | None = None,
    ) -> None:
        self.id = str(uuid4())
        self.client = client
        self.session_factory = session_factory
        self.storage = storage
        self.notifier = notifier
        self.actor = actor
        self.project_key = project_key
        self.target_workspace_id = target_workspace_id
        self.web_url = (web_url or settings.web_url).rstrip("/")

        self.block_link_id = (block_link_id or "").strip()
        self.relate_link_mapper = relate_link_mapper or LinkMapper()
        self.priorities_mapping = priorities_mapping or PrioritiesMapping()
        self.ignore_attachments = settings.IMPORT_IGNORE_ATTACHMENTS if ignore_attachments is None else ignore_attachments
        self.notify_new_members = settings.IMPORT_NOTIFY_NEW_MEMBERS if notify_new_members is None else notify_new_members

        self.workers = max(1, settings.IMPORT_WORKERS)
        self.attachment_attempts = max(1, settings.IMPORT_ATTACHMENT_ATTEMPTS)
        self.attachment_retry_delay = max(0.0, settings.IMPORT_ATTACHMENT_RETRY_DELAY_SECONDS)
        self.db_batch_size = max(1, settings.IMPORT_DB_BATCH_SIZE)

        self.start_at = utcnow()
        self.end_at: dt.datetime | None = None
        self.stage: ImportStage | None = None
        self.counters = ImportCounters()
        self.started = False
        self.finished = False
        self.error: Exception | None = None

        self.raw_statuses: list[dict[str, Any]] = []
        self.project: Project | None = None

        self.raw_issues: ConvertMap[dict[str, Any]] = ConvertMap(lambda issue: issue["key"])
        self.states: ImportMap[State] = ImportMap(self.resolve_state)
        # e-mail -> Jira account that claimed it first
        self.emails_map: SyncMap[str, str] = SyncMap()
        self.users: ImportMap[User] = ImportMap(self.resolve_user)
        self.users_to_create: list[User] = []
        self.avatar_assets: list[FileAsset] = []
        self.workspace_members: list[WorkspaceMember] = []
        self.project_members: list[ProjectMember] = []
        # translated user id -> id of a matching user found at membership time
        self.user_aliases: dict[UUID, UUID] = {}

        self.issues: ImportMap[Issue] = ImportMap(self.resolve_issue)
        # keys being mapped, with the thread mapping them
        self.mapping_keys: SyncMap[str, int] = SyncMap()
        self.attachments: ImportMap[Attachment] = ImportMap()
        self.bad_attachments: AtomicList[Attachment] = AtomicList()
        self.labels: ImportMap[Label] = ImportMap()
        self.issue_links: AtomicList[IssueLink] = AtomicList()
        # keyed by Jira comment id
        self.issue_comments: SyncMap[str, IssueComment] = SyncMap()
        self.issue_labels: AtomicList[IssueLabel] = AtomicList()
        self.issue_assignees: ConvertMap[IssueAssignee] = ConvertMap(lambda row: f"{row.issue_id}:{row.assignee_id}")
        self.issue_watchers: ConvertMap[IssueWatcher] = ConvertMap(lambda row: f"{row.issue_id}:{row.watcher_id}")
        self.linked_issues: list[LinkedIssue] = []
        self.blockers: ConvertMap[IssueBlocker] = ConvertMap(lambda row: f"{row.blocked_by_id}:{row.block_id}")
        # Jira key -> blockers whose blocked issue (block_id) is that key
        self.blocks: SyncMap[str, list[IssueBlocker]] = SyncMap()
        # Jira key -> blockers whose blocking issue (blocked_by_id) is that key
        self.blocked: SyncMap[str, list[IssueBlocker]] = SyncMap()
        self.linked: ConvertMap[RawLinkedIssues] = ConvertMap(str)
        # Jira version id -> release label
        self.release_tags: SyncMap[str, Label] = SyncMap()
        self.file_assets: AtomicList[FileAsset] = AtomicList()
        self.asset_ids: AtomicList[UUID] = AtomicList()
        self.sort_order = SortOrderCounter()
        self.passwords: dict[UUID, str] = {}

        self._cancel_event = threading.Event()
        self._assets_lock = threading.Lock()

        self.log = import_logger(__name__, project_key=project_key, actor_id=str(actor.id))

    # ----- lifecycle -----

    def prepare(self) -> None:
        """Load the Jira statuses and count the issues to import."""
        self.raw_statuses = self.client.get_all_statuses()
        self.counters.total_issues = self.client.count_issues(f"project={self.project_key}")
        self.log.info("Prepared import: %s issues, %s statuses", self.counters.total_issues, len(self.raw_statuses))

    @property
    def workspace_id(self) -> UUID:
        return self.target_workspace_id

    @property
    def project_id(self) -> UUID | None:
        return self.project.id if self.project is not None else None

    @property
    def state(self) -> ImportState:
        if not self.finished:
            return ImportState.running if self.started else ImportState.created
        if isinstance(self.error, ImportCancelled):
            return ImportState.cancelled
        if self.error is not None:
            return ImportState.failed
        return ImportState.finished

    def check_cancelled(self) -> None:
        if self.finished:
            raise ImportCancelled()

    def sleep(self, seconds: float) -> bool:
        """Wait up to ``seconds``; True when the import got cancelled meanwhile."""
        return self._cancel_event.wait(seconds)

    def finish(self) -> None:
        self.end_at = utcnow()
        self.finished = True
        self._cancel_event.set()

    @contextmanager
    def committing(self) -> Iterator[None]:
        """Hold cancellation off while the commit runs; finishes the import on success."""
        with self._assets_lock:
            if self.finished:
                raise ImportCancelled()
            yield
            self.finish()

    def fail(self, error: Exception) -> bool:
        """Record a failure; False when the import had already ended."""
        with self._assets_lock:
            if self.finished:
                self.log.info("Ignore error of finished import: %s", error)
                return False
            self.error = error
            self.finish()
        self.log.error("Import failed: %s", error)
        return True

    def cancel(self) -> None:
        self.log.info("Import canceled")
        with self._assets_lock:
            if self.finished:
                return
            self.error = ImportCancelled()
            self.finish()
        self.cleanup_assets()

    def cleanup_assets(self) -> None:
        asset_ids = self.asset_ids.snapshot()
        self.log.info("Clean storage assets, count=%s", len(asset_ids))
        for asset_id in asset_ids:
            self._delete_asset(asset_id)

    def _delete_asset(self, asset_id: UUID) -> None:
        try:
            self.storage.delete(asset_id)
        except Exception as exc:  # noqa: BLE001
            self.log.error("Delete storage asset %s failed: %s", asset_id, exc)

    def record_transferred(self, asset_id: UUID) -> bool:
        """Remember a stored blob for cleanup; a blob stored after cancel is dropped at once."""
        with self._assets_lock:
            if not self.finished:
                self.asset_ids.append(asset_id)
                return True
        self._delete_asset(asset_id)
        return False

    # ----- resolvers -----

    def _find_db_user(self, usernames: list[str], email: str | None) -> User | None:
        clauses = [User.username.in_([name for name in usernames if name])]
        if email:
            clauses.append(User.email == email)
        with self.session_factory() as db:
            return db.scalars(select(User).where(or_(*clauses))).first()

    def resolve_user(self, account: str) -> User | None:
        """Resolver of the users map: look the account up in Jira, then in the target store."""
        if not account:
            return None
        self.log.debug("User %s not found in buffer", account)
        raw = self.client.get_user(account)
        email = raw.get("emailAddress") or ""
        if email:
            existing = self.emails_map.get(email)
            if existing is not None and existing != account:
                self.log.warning("Duplicated user email, merge %s into %s", account, existing)
                return self.users.get(existing)
            self.emails_map.put(email, account)

        db_user = self._find_db_user([account, raw.get("name") or ""], email)
        if db_user is not None:
            return db_user
        return self.translate_user(raw)

    def resolve_state(self, status_id: str) -> State | None:
        for status in self.raw_statuses:
            if str(status.get("id")) != status_id:
                continue
            return State(
                id=uuid4(),
                name=status.get("name") or status_id,
                description=status.get("description") or "",
                group=mappers.map_status_category(status.get("statusCategory")),
                color=STATE_COLOR,
                project_id=self.project_id,
                workspace_id=self.target_workspace_id,
                created_at=utcnow(),
            )
        self.log.warning("Unknown Jira status %s", status_id)
        return None

    def resolve_issue(self, key: str) -> Issue | None:
        raw = self.raw_issues.get(key)
        if raw is None:
            self.log.warning("Issue %s not found in buffer", key)
            raw = self.client.get_issue(key)
        return mappers.map_issue(self, raw)

    def translate_user(self, raw: dict[str, Any]) -> User:
        timezone = raw.get("timeZone") or "UTC"
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError):
            self.log.error("Unknown Jira user timezone %s", timezone)
            timezone = "UTC"

        # Jira display names are "Last First" in the source instance.
        names = (raw.get("displayName") or "").split()
        first_name, last_name = "", ""
        if len(names) == 1:
            first_name = names[0]
        elif len(names) >= 2:
            first_name, last_name = names[1], names[0]

        return User(
            id=uuid4(),
            username=raw.get("name") or raw.get("accountId") or None,
            email=raw.get("emailAddress") or None,
            first_name=first_name,
            last_name=last_name,
            role=UserRole.user,
            is_active=bool(raw.get("active", True)),
            user_timezone=timezone,
            avatar_url=(raw.get("avatarUrls") or {}).get("48x48"),
            created_at=utcnow(),
        )

    # ----- fetchers -----

    def fetch_project_users(self) -> None:
        page_size = settings.JIRA_USERS_PAGE_SIZE
        start_at = 0
        while True:
            self.check_cancelled()
            rows = self.client.find_assignable_users(self.project_key, start_at=start_at, max_results=page_size)
            for raw in rows:
                account = account_of(raw)
                if not account:
                    continue
                email = raw.get("emailAddress") or ""
                if email:
                    existing = self.emails_map.get(email)
                    if existing is not None and existing != account:
                        self.log.warning("Duplicated user email, merge %s into %s", account, existing)
                        merged = self.users.get_light(existing)
                        if merged is not None:
                            self.users.put(account, merged)
                        continue
                    self.emails_map.put(email, account)

                user = self._find_db_user([raw.get("accountId") or "", raw.get("name") or ""], email)
                self.users.put(account, user if user is not None else self.translate_user(raw))
            if len(rows) < page_size:
                return
            start_at += len(rows)

    def fetch_project(self, key: str) -> None:
        raw = self.client.get_project(key)
        # The lead resolves through the users map, which needs the project id.
        self.project = Project(
            id=uuid4(),
            name=raw.get("name") or key,
            identifier=raw.get("key") or key,
            description=raw.get("description") or "",
            created_by_id=self.actor.id,
            workspace_id=self.target_workspace_id,
            created_at=utcnow(),
        )
        lead_account = account_of(raw.get("lead"))
        if lead_account:
            lead = self.users.get(lead_account)
            if lead is not None:
                self.project.project_lead_id = lead.id

    def fetch_project_issues(self, key: str) -> None:
        self.stage = ImportStage.fetch
        for raw in self.client.iter_issues(f"project={key}"):
            self.raw_issues.put(raw)
            self.counters.fetched_issues.add()
            self.check_cancelled()

        self.stage = ImportStage.issues
        for issue_key, raw in sorted(self.raw_issues.items(), key=lambda item: sequence_of(item[0])):
            self.check_cancelled()
            try:
                mappers.map_issue(self, raw)
            except ImportCancelled:
                raise
            except Exception as exc:  # noqa: BLE001
                self.log.error("Map Jira issue %s failed: %s", issue_key, exc)
            self.counters.mapped_issues.add()
        self.check_cancelled()
