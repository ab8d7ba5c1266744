"""Entry points of the Jira project import used by the API and the CLI."""

from __future__ import annotations

import logging
import threading
from typing import Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from jira_migrator.core.exceptions import (
    AlreadyImportingError,
    ImportCancelled,
    ImportFetchError,
    ImportSaveError,
    MigratorException,
    ProjectConflictError,
    TargetWorkspaceNotFoundError,
)
from jira_migrator.core.sanitize import clean_project_key
from jira_migrator.db.session import SessionLocal
from jira_migrator.integrations.jira.client import JiraClient
from jira_migrator.integrations.jira.schemas import JiraImportRequest, JiraInfoOut
from jira_migrator.models.enums import MemberRole
from jira_migrator.models.imported_project import ImportedProject
from jira_migrator.models.project import Project
from jira_migrator.models.user import User
from jira_migrator.models.workspace import WorkspaceMember
from jira_migrator.services.email import ImportNotifier
from jira_migrator.services.issues_import.context import ImportContext
from jira_migrator.services.issues_import.counters import ImportState
from jira_migrator.services.issues_import.db_steps import run_db_steps
from jira_migrator.services.issues_import.entity import LinkMapper, PrioritiesMapping
from jira_migrator.services.issues_import.registry import ImportRegistry
from jira_migrator.services.issues_import.steps import run_import_steps
from jira_migrator.services.storage import FileStorage, LocalFileStorage

logger = logging.getLogger(__name__)

client_factory: Callable[..., JiraClient] = JiraClient


def _connect(jira_url: str, username: str, token: str) -> JiraClient:
    client = client_factory(jira_url, username, token)
    try:
        client.get_myself()
    except MigratorException:
        client.close()
        raise
    except Exception as exc:
        client.close()
        raise ImportFetchError(f"jira is not reachable: {exc}") from exc
    return client


def get_jira_info(username: str, token: str, jira_url: str) -> JiraInfoOut:
    """Projects, link types and priorities for building an import request."""
    client = _connect(jira_url, username, token)
    try:
        return JiraInfoOut(
            projects=client.list_projects(),
            link_types=client.get_link_types(),
            priorities=client.get_priorities(),
        )
    except Exception as exc:
        raise ImportFetchError(f"get jira info: {exc}") from exc
    finally:
        client.close()


def _check_target(db: Session, actor: User, workspace_id: UUID, project_key: str) -> None:
    membership = db.scalar(
        select(WorkspaceMember).where(
            WorkspaceMember.workspace_id == workspace_id,
            WorkspaceMember.member_id == actor.id,
        )
    )
    if membership is None or membership.role < MemberRole.admin:
        raise TargetWorkspaceNotFoundError(str(workspace_id))

    conflict = db.scalar(
        select(Project.id).where(Project.workspace_id == workspace_id, Project.identifier == project_key)
    )
    if conflict is not None:
        raise ProjectConflictError(project_key)


def start_import(
    db: Session,
    registry: ImportRegistry,
    actor: User,
    project_key: str,
    payload: JiraImportRequest,
    *,
    storage: FileStorage | None = None,
    notifier: ImportNotifier | None = None,
    session_factory: Callable[..., Session] = SessionLocal,
    background: bool = True,
) -> ImportContext:
    project_key = clean_project_key(project_key)
    if not registry.can_start_import(actor.id):
        raise AlreadyImportingError(str(actor.id))
    _check_target(db, actor, payload.target_workspace_id, project_key)

    client = _connect(payload.jira_url, payload.username, payload.token)
    mapping = payload.priorities_mapping
    context = ImportContext(
        client=client,
        session_factory=session_factory,
        storage=storage or LocalFileStorage(),
        actor=actor,
        project_key=project_key,
        target_workspace_id=payload.target_workspace_id,
        notifier=notifier if notifier is not None else ImportNotifier(session_factory),
        block_link_id=payload.block_link_id,
        relate_link_mapper=LinkMapper.of(*payload.relates_link_ids),
        priorities_mapping=PrioritiesMapping(
            urgent_id=mapping.urgent_id,
            high_id=mapping.high_id,
            medium_id=mapping.medium_id,
            low_id=mapping.low_id,
        ),
    )
    try:
        context.prepare()
        registry.register(context)
    except MigratorException:
        client.close()
        raise
    except Exception as exc:
        client.close()
        raise ImportFetchError(f"get project info error: {exc}") from exc

    if background:
        thread = threading.Thread(target=run_import, args=(context, registry), name=f"import-{project_key}", daemon=True)
        thread.start()
    else:
        run_import(context, registry)
    return context


def _notify_new_members(context: ImportContext) -> None:
    for user in context.users_to_create:
        password = context.passwords.get(user.id)
        if password is None or not user.is_active:
            continue
        try:
            context.notifier.new_user_password(user, password, import_id=context.id)
        except Exception as exc:  # noqa: BLE001
            context.log.error("Send password to %s failed: %s", user.username or user.email, exc)


def _record_import(context: ImportContext) -> None:
    try:
        with context.session_factory() as db:
            db.add(ImportedProject(
                import_id=context.id,
                source_project_key=context.project_key,
                source_url=context.client.base_url,
                project_id=context.project_id,
                workspace_id=context.workspace_id,
                actor_id=context.actor.id,
                total_issues=len(context.issues),
                total_attachments=len(context.file_assets),
                started_at=context.start_at,
                finished_at=context.end_at,
            ))
            db.commit()
    except Exception as exc:  # noqa: BLE001
        context.log.error("Record imported project failed: %s", exc)


def run_import(context: ImportContext, registry: ImportRegistry) -> None:
    """Pipeline, then commit; always leaves the import finished in the registry."""
    try:
        run_import_steps(context)
        if context.finished:
            if context.state == ImportState.failed:
                context.cleanup_assets()
            return

        try:
            # staged objects are read again by the notifications below
            with context.session_factory(expire_on_commit=False) as db:
                run_db_steps(context, db)
                with context.committing():
                    db.commit()
        except ImportCancelled:
            return
        except Exception as exc:  # noqa: BLE001
            if context.fail(ImportSaveError(f"save project to database error: {exc}")):
                context.cleanup_assets()
            return

        context.log.info(
            "Import finished: issues=%s attachments=%s failed_attachments=%s",
            len(context.issues),
            len(context.file_assets),
            len(context.bad_attachments),
        )

        if context.notify_new_members and context.notifier is not None:
            _notify_new_members(context)
        _record_import(context)
        if context.notifier is not None:
            try:
                context.notifier.import_finished(
                    context.actor,
                    context.project,
                    total_issues=len(context.issues),
                    failed_attachments=len(context.bad_attachments),
                    import_id=context.id,
                )
            except Exception as exc:  # noqa: BLE001
                context.log.error("Send import finished notification failed: %s", exc)
    finally:
        registry.mark_finished(context.id)
        context.client.close()
