"""Process-wide registry of import sessions.

Import records live in a private in-memory SQLite database next to the live
``ImportContext`` objects. A partial unique index keeps at most one
unfinished import per actor; finished records are swept after the retention
window by a background loop started with the application.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import threading
from typing import Callable
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Index, String, create_engine, delete, or_, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from jira_migrator.core.config import settings
from jira_migrator.core.exceptions import AlreadyImportingError, NotFoundError
from jira_migrator.integrations.jira.schemas import ActorOut, FailedAttachmentOut, ImportStatusOut
from jira_migrator.models.user import User
from jira_migrator.services.issues_import.context import ImportContext

logger = logging.getLogger(__name__)


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class RegistryBase(DeclarativeBase):
    pass


class ImportRecord(RegistryBase):
    __tablename__ = "imports"
    __table_args__ = (
        Index("uq_imports_active_actor", "actor_id", unique=True, sqlite_where=text("finished = 0")),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    project_key: Mapped[str] = mapped_column(String(64), index=True)
    target_workspace_id: Mapped[str] = mapped_column(String(36), index=True)
    actor_id: Mapped[str] = mapped_column(String(36))
    finished: Mapped[bool] = mapped_column(Boolean, default=False)
    start_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    end_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


def build_status(record: ImportRecord, context: ImportContext) -> ImportStatusOut:
    counters = context.counters
    progress = counters.stage_progress(context.stage)
    global_progress = counters.global_progress(context.stage)
    if context.finished:
        progress = global_progress = 100

    return ImportStatusOut(
        id=record.id,
        actor_id=record.actor_id,
        project_key=record.project_key,
        target_workspace_id=record.target_workspace_id,
        stage=context.stage.value if context.stage is not None else None,
        state=context.state.value,
        total_issues=counters.total_issues,
        done_issues=counters.mapped_issues.value,
        total_attachments=counters.total_attachments,
        imported_attachments=counters.imported_attachments.value,
        failed_attachments=[
            FailedAttachmentOut(key=item.jira_key, name=item.name, attachment_id=item.source_key)
            for item in context.bad_attachments
        ],
        start_at=context.start_at,
        end_at=context.end_at if context.finished else None,
        progress=progress,
        global_progress=global_progress,
        finished=context.finished,
        error=str(context.error) if context.error is not None else "",
    )


class ImportRegistry:
    def __init__(
        self,
        session_factory: Callable[..., Session] | None = None,
        *,
        retention_hours: int | None = None,
        sweep_interval_seconds: int | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.retention = dt.timedelta(hours=retention_hours if retention_hours is not None else settings.IMPORT_RETENTION_HOURS)
        self.sweep_interval = max(1, sweep_interval_seconds or settings.IMPORT_SWEEP_INTERVAL_SECONDS)

        self._engine = create_engine(
            "sqlite://",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        RegistryBase.metadata.create_all(self._engine)
        self._sessions = sessionmaker(bind=self._engine, expire_on_commit=False)
        self._contexts: dict[str, ImportContext] = {}
        # one shared SQLite connection
        self._lock = threading.Lock()
        self._task: asyncio.Task | None = None

    # ----- queries -----

    def can_start_import(self, actor_id: UUID | str) -> bool:
        with self._lock, self._sessions() as db:
            working = db.scalar(
                select(ImportRecord.id).where(ImportRecord.actor_id == str(actor_id), ImportRecord.finished.is_(False))
            )
        return working is None

    def register(self, context: ImportContext) -> None:
        record = ImportRecord(
            id=context.id,
            project_key=context.project_key,
            target_workspace_id=str(context.target_workspace_id),
            actor_id=str(context.actor.id),
            finished=False,
            start_at=context.start_at,
        )
        with self._lock, self._sessions() as db:
            db.add(record)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise AlreadyImportingError(str(context.actor.id)) from exc
            self._contexts[context.id] = context
        logger.info("Registered import %s of %s for %s", context.id, context.project_key, context.actor.id)

    def get_context(self, import_id: str) -> ImportContext | None:
        with self._lock:
            return self._contexts.get(import_id)

    def mark_finished(self, import_id: str) -> None:
        with self._lock, self._sessions() as db:
            context = self._contexts.get(import_id)
            end_at = context.end_at if context is not None and context.end_at is not None else utcnow()
            db.execute(update(ImportRecord).where(ImportRecord.id == import_id).values(finished=True, end_at=end_at))
            db.commit()

    def _statuses(self, records: list[ImportRecord]) -> list[ImportStatusOut]:
        with self._lock:
            pairs = [(record, self._contexts.get(record.id)) for record in records]
        return [build_status(record, context) for record, context in pairs if context is not None]

    def get_user_imports(self, actor_id: UUID | str) -> list[ImportStatusOut]:
        with self._lock, self._sessions() as db:
            records = list(db.scalars(
                select(ImportRecord)
                .where(ImportRecord.actor_id == str(actor_id))
                .order_by(ImportRecord.finished, ImportRecord.start_at)
            ))
        return self._statuses(records)

    def _find_user_record(self, import_id: str, actor_id: UUID | str) -> ImportRecord:
        # project key lookup keeps old clients working
        with self._lock, self._sessions() as db:
            record = db.scalars(
                select(ImportRecord)
                .where(
                    ImportRecord.actor_id == str(actor_id),
                    or_(ImportRecord.id == import_id, ImportRecord.project_key == import_id),
                )
                .order_by(ImportRecord.finished, ImportRecord.start_at.desc())
            ).first()
        if record is None:
            raise NotFoundError("import not found", details={"import_id": import_id})
        return record

    def get_user_import_status(self, import_id: str, actor_id: UUID | str) -> ImportStatusOut:
        record = self._find_user_record(import_id, actor_id)
        statuses = self._statuses([record])
        if not statuses:
            raise NotFoundError("import not found", details={"import_id": import_id})
        return statuses[0]

    def get_active_imports(self) -> list[ImportStatusOut]:
        with self._lock, self._sessions() as db:
            records = list(db.scalars(
                select(ImportRecord).where(ImportRecord.finished.is_(False)).order_by(ImportRecord.start_at)
            ))
        statuses = self._statuses(records)
        if not statuses or self.session_factory is None:
            return statuses

        actor_ids = {UUID(status.actor_id) for status in statuses}
        try:
            with self.session_factory() as db:
                actors = {str(user.id): user for user in db.scalars(select(User).where(User.id.in_(actor_ids)))}
        except Exception as exc:  # noqa: BLE001
            logger.error("Get import actors failed: %s", exc)
            return statuses

        for status in statuses:
            actor = actors.get(status.actor_id)
            if actor is not None:
                status.actor_details = ActorOut(
                    id=actor.id,
                    username=actor.username,
                    email=actor.email,
                    first_name=actor.first_name,
                    last_name=actor.last_name,
                )
        return statuses

    # ----- commands -----

    def _cancel(self, record: ImportRecord) -> None:
        context = self.get_context(record.id)
        if context is not None:
            context.cancel()
        self.mark_finished(record.id)

    def cancel_import(self, import_id: str, actor_id: UUID | str) -> None:
        """Cancel an import of the actor; cancelling a finished one is a no-op."""
        record = self._find_user_record(import_id, actor_id)
        if record.finished:
            return
        self._cancel(record)

    def cancel_workspace_imports(self, workspace_id: UUID | str) -> int:
        with self._lock, self._sessions() as db:
            records = list(db.scalars(
                select(ImportRecord)
                .where(ImportRecord.finished.is_(False), ImportRecord.target_workspace_id == str(workspace_id))
                .order_by(ImportRecord.start_at)
            ))
        for record in records:
            self._cancel(record)
        if records:
            logger.info("Cancelled %s imports into workspace %s", len(records), workspace_id)
        return len(records)

    def sweep(self, now: dt.datetime | None = None) -> int:
        """Forget finished imports that ended before the retention window."""
        threshold = (now or utcnow()) - self.retention
        with self._lock, self._sessions() as db:
            ids = list(db.scalars(
                select(ImportRecord.id).where(ImportRecord.finished.is_(True), ImportRecord.end_at <= threshold)
            ))
            if ids:
                db.execute(delete(ImportRecord).where(ImportRecord.id.in_(ids)))
                db.commit()
            for import_id in ids:
                self._contexts.pop(import_id, None)
        if ids:
            logger.info("Removed %s old finished imports", len(ids))
        return len(ids)

    # ----- background sweep -----

    def _sweep_once(self) -> None:
        try:
            self.sweep()
        except Exception as exc:  # noqa: BLE001
            logger.error("Remove old finished imports failed: %s", exc)

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            await asyncio.to_thread(self._sweep_once)

    async def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._loop(), name="import-registry-sweep")
        logger.info("Import registry sweep started (every %s seconds)", self.sweep_interval)

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
