"""Pipeline of one import run, executed step by step before the commit."""

from __future__ import annotations

import datetime as dt
import queue
import threading
from typing import Callable
from uuid import uuid4

from sqlalchemy import or_, select

from jira_migrator.core.exceptions import ImportCancelled, ImportFetchError
from jira_migrator.models.enums import MemberRole
from jira_migrator.models.file_asset import FileAsset
from jira_migrator.models.issue import LinkedIssue
from jira_migrator.models.project import ProjectMember
from jira_migrator.models.user import User
from jira_migrator.models.workspace import WorkspaceMember
from jira_migrator.services.issues_import.context import ImportContext
from jira_migrator.services.issues_import.counters import ImportStage
from jira_migrator.services.issues_import.entity import Attachment


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def get_users_step(context: ImportContext) -> None:
    context.log.info("Get users from project")
    try:
        context.fetch_project_users()
    except ImportCancelled:
        raise
    except Exception as exc:
        raise ImportFetchError(f"get project users: {exc}") from exc
    context.log.info("Fetch users done, total=%s", len(context.users))


def get_project_step(context: ImportContext) -> None:
    context.log.info("Get project")
    try:
        context.fetch_project(context.project_key)
    except ImportCancelled:
        raise
    except Exception as exc:
        raise ImportFetchError(f"get project: {exc}") from exc


def email_notify_step(context: ImportContext) -> None:
    if context.notifier is None:
        return
    try:
        context.notifier.import_started(context.actor, context.project, import_id=context.id)
    except Exception as exc:  # noqa: BLE001
        context.log.error("Send import started notification failed: %s", exc)


def get_issues_step(context: ImportContext) -> None:
    context.log.info("Get issues from project, total=%s", context.counters.total_issues)
    try:
        context.fetch_project_issues(context.project_key)
    except ImportCancelled:
        raise
    except Exception as exc:
        raise ImportFetchError(f"get project issues: {exc}") from exc


def transfer_attachment(context: ImportContext, descriptor: Attachment) -> bool:
    """Download one blob into storage, retrying with a fixed delay.

    Returns True once the blob is stored; a descriptor that runs out of
    attempts lands in ``bad_attachments``.
    """
    url = descriptor.download_url
    if not url:
        descriptor.errors.append("no download url")
        context.bad_attachments.append(descriptor)
        return False

    for attempt in range(1, context.attachment_attempts + 1):
        if attempt > 1 and context.sleep(context.attachment_retry_delay):
            return False
        try:
            data, content_type = context.client.download(url)
            context.storage.save(data, len(data), descriptor.dst_asset_id, content_type, descriptor.storage_metadata())
        except Exception as exc:  # noqa: BLE001
            context.log.error("Download attachment %s, try %s failed: %s", url, attempt, exc)
            descriptor.errors.append(str(exc))
            continue

        if not context.record_transferred(descriptor.dst_asset_id):
            return False
        descriptor.content_type = content_type
        context.counters.imported_attachments.add()
        context.file_assets.append(descriptor.file_asset(size=len(data), content_type=content_type))
        return True

    context.log.error("Can't download jira attachment %s", url)
    context.bad_attachments.append(descriptor)
    return False


def _attachment_worker(context: ImportContext, work: queue.Queue) -> None:
    while True:
        descriptor = work.get()
        if descriptor is None:
            return
        # drain the queue once the import is cancelled
        if context.finished:
            continue
        transfer_attachment(context, descriptor)


def download_attachments_step(context: ImportContext) -> None:
    if context.ignore_attachments:
        return

    descriptors = context.attachments.values()
    context.stage = ImportStage.attachments
    context.counters.total_attachments = len(descriptors)
    context.log.info("Copy attachments to storage, count=%s", len(descriptors))

    work: queue.Queue[Attachment | None] = queue.Queue(maxsize=1)
    workers = [
        threading.Thread(target=_attachment_worker, args=(context, work), name=f"attachments-{index}", daemon=True)
        for index in range(context.workers)
    ]
    for worker in workers:
        worker.start()
    for descriptor in descriptors:
        if context.finished:
            break
        work.put(descriptor)
    for _ in workers:
        work.put(None)
    for worker in workers:
        worker.join()

    for descriptor in context.bad_attachments:
        context.attachments.delete(descriptor.source_key)
    if len(context.bad_attachments):
        context.log.warning("Attachments not transferred: %s", len(context.bad_attachments))
    context.check_cancelled()


def map_links_step(context: ImportContext) -> None:
    """Resolve relations staged by source key now that every issue is mapped."""
    dropped = 0
    for key, rows in context.blocks.items():
        target = context.issues.get_light(key)
        if target is None:
            dropped += len(rows)
            continue
        for row in rows:
            row.block_id = target.id
            context.blockers.put(row)

    for key, rows in context.blocked.items():
        target = context.issues.get_light(key)
        if target is None:
            dropped += len(rows)
            continue
        for row in rows:
            row.blocked_by_id = target.id
            context.blockers.put(row)

    for pair in context.linked.values():
        first = context.issues.get_light(pair.key1)
        second = context.issues.get_light(pair.key2)
        if first is None or second is None:
            dropped += 1
            continue
        context.linked_issues.append(LinkedIssue.between(first.id, second.id, workspace_id=context.workspace_id))

    if dropped:
        context.log.info("Dropped %s relations to issues that were not imported", dropped)


def _find_existing_user(db, user: User) -> User | None:  # noqa: ANN001
    clauses = [User.id == user.id]
    if user.email:
        clauses.append(User.email == user.email)
    if user.username:
        clauses.append(User.username == user.username)
    return db.scalars(select(User).where(or_(*clauses))).first()


def prepare_memberships_step(context: ImportContext) -> None:
    context.stage = ImportStage.users

    users: list[User] = []
    seen = set()
    for account, user in context.users.items():
        if user is None or user.id in seen:
            continue
        if not user.username:
            context.log.warning("Empty username, account=%s", account)
        seen.add(user.id)
        users.append(user)
    context.counters.total_users = len(users)

    now = utcnow()
    with context.session_factory() as db:
        workspace_member_ids = set(
            db.scalars(select(WorkspaceMember.member_id).where(WorkspaceMember.workspace_id == context.workspace_id))
        )
        project_member_ids = set()
        for user in users:
            existing = _find_existing_user(db, user)
            if existing is None:
                context.users_to_create.append(user)
                member_id = user.id
            else:
                member_id = existing.id
                if existing.id != user.id:
                    context.user_aliases[user.id] = existing.id

            if member_id not in workspace_member_ids:
                workspace_member_ids.add(member_id)
                context.workspace_members.append(WorkspaceMember(
                    id=uuid4(),
                    workspace_id=context.workspace_id,
                    member_id=member_id,
                    role=int(MemberRole.member),
                    created_at=now,
                ))
            if member_id not in project_member_ids:
                project_member_ids.add(member_id)
                context.project_members.append(ProjectMember(
                    id=uuid4(),
                    project_id=context.project_id,
                    member_id=member_id,
                    workspace_id=context.workspace_id,
                    role=int(MemberRole.member),
                    created_at=now,
                ))

    if context.actor.id in project_member_ids:
        for member in context.project_members:
            if member.member_id == context.actor.id:
                member.role = int(MemberRole.admin)
    else:
        context.project_members.append(ProjectMember(
            id=uuid4(),
            project_id=context.project_id,
            member_id=context.actor.id,
            workspace_id=context.workspace_id,
            role=int(MemberRole.admin),
            created_at=now,
        ))

    context.counters.total_users = len(context.users_to_create)
    context.log.info("Users to create: %s", len(context.users_to_create))


def avatars_step(context: ImportContext) -> None:
    if context.ignore_attachments:
        return

    context.log.info("Copy avatars to storage, count=%s", len(context.users_to_create))
    for user in context.users_to_create:
        context.check_cancelled()
        if user.avatar_url:
            asset_id = uuid4()
            try:
                data, content_type = context.client.download(user.avatar_url)
                context.storage.save(data, len(data), asset_id, content_type, {"workspace_id": str(context.workspace_id)})
            except Exception as exc:  # noqa: BLE001
                context.log.error("Copy avatar %s failed: %s", user.avatar_url, exc)
            else:
                if not context.record_transferred(asset_id):
                    return
                context.avatar_assets.append(FileAsset(
                    id=asset_id,
                    name=f"{user.username or user.id}.png",
                    size=len(data),
                    content_type=content_type,
                    attributes={"kind": "avatar"},
                    workspace_id=context.workspace_id,
                    created_at=utcnow(),
                ))
                user.avatar_id = asset_id
        context.counters.imported_users.add()


IMPORT_STEPS: list[Callable[[ImportContext], None]] = [
    get_users_step,
    get_project_step,
    email_notify_step,
    get_issues_step,
    download_attachments_step,
    map_links_step,
    prepare_memberships_step,
    avatars_step,
]


def run_import_steps(context: ImportContext) -> None:
    """Run the pipeline; errors end the import instead of propagating."""
    context.started = True
    for step in IMPORT_STEPS:
        if context.finished:
            return
        try:
            step(context)
        except ImportCancelled:
            if not context.finished:
                context.cancel()
            return
        except Exception as exc:  # noqa: BLE001
            if not context.finished:
                context.fail(exc)
            return
