"""Commit of the staged entity graph into the target store in one transaction."""

from __future__ import annotations

from typing import Any, Callable, Iterable, Iterator, Sequence, TypeVar
from uuid import UUID

from sqlalchemy import inspect as sa_inspect
from sqlalchemy import or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from jira_migrator.core.security import generate_password, hash_password
from jira_migrator.models.issue import Issue
from jira_migrator.models.project import Label, ProjectMember, State
from jira_migrator.models.user import User
from jira_migrator.models.workspace import WorkspaceMember
from jira_migrator.services.issues_import.context import ImportContext
from jira_migrator.services.issues_import.counters import ImportStage

T = TypeVar("T")

DUPLICATE_STATE_COLOR = "#199600"

_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _chunks(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _row(obj: Any) -> dict[str, Any]:
    """Column values of a mapped object, keyed by column name."""
    mapper = sa_inspect(type(obj))
    return {prop.columns[0].key: getattr(obj, prop.key) for prop in mapper.column_attrs}


def _dialect_insert(db: Session, model: type) -> Any:
    name = db.get_bind().dialect.name
    try:
        return _INSERTS[name](model.__table__)
    except KeyError:
        raise NotImplementedError(f"conflict handling is not supported on {name}") from None


def insert_or_ignore(db: Session, model: type, objects: Iterable[Any], batch_size: int) -> None:
    rows = [_row(obj) for obj in objects]
    for chunk in _chunks(rows, batch_size):
        db.execute(_dialect_insert(db, model).values(list(chunk)).on_conflict_do_nothing())


def insert_or_update(db: Session, model: type, objects: Iterable[Any], batch_size: int) -> None:
    rows = [_row(obj) for obj in objects]
    for chunk in _chunks(rows, batch_size):
        stmt = _dialect_insert(db, model).values(list(chunk))
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={column.name: stmt.excluded[column.name] for column in model.__table__.columns if column.name != "id"},
        )
        db.execute(stmt)


def _add_all(context: ImportContext, db: Session, objects: Sequence[Any]) -> None:
    for chunk in _chunks(objects, context.db_batch_size):
        db.add_all(chunk)
        db.flush()


def issue_depth(issue: Issue, parents: dict[UUID, UUID | None]) -> int:
    depth = 0
    parent_id = issue.parent_id
    seen = set()
    while parent_id is not None and parent_id not in seen:
        seen.add(parent_id)
        depth += 1
        parent_id = parents.get(parent_id)
    return depth


def issue_sort_key(issue: Issue, parents: dict[UUID, UUID | None]) -> tuple[int, int]:
    """Parents first: depth in the parent chain, then the Jira sequence number."""
    return issue_depth(issue, parents), issue.sequence_id


def order_issues(issues: Iterable[Issue]) -> list[Issue]:
    issues = list(issues)
    parents = {issue.id: issue.parent_id for issue in issues}
    return sorted(issues, key=lambda issue: issue_sort_key(issue, parents))


def remap_user_aliases(context: ImportContext) -> None:
    """Point staged rows at the stored user when a translated one turned out to exist."""
    aliases = context.user_aliases
    if not aliases:
        return

    def alias(user_id: UUID | None) -> UUID | None:
        return aliases.get(user_id, user_id) if user_id is not None else None

    if context.project is not None:
        context.project.project_lead_id = alias(context.project.project_lead_id)
    for member in context.workspace_members:
        member.member_id = alias(member.member_id)
    for member in context.project_members:
        member.member_id = alias(member.member_id)
    for issue in context.issues.values():
        issue.created_by_id = alias(issue.created_by_id)
    for link in context.issue_links:
        link.created_by_id = alias(link.created_by_id)
    for comment in context.issue_comments.values():
        comment.actor_id = alias(comment.actor_id)
    for assignee in context.issue_assignees.values():
        assignee.assignee_id = alias(assignee.assignee_id)
    for watcher in context.issue_watchers.values():
        watcher.watcher_id = alias(watcher.watcher_id)
    for attachment in context.attachments.values():
        if attachment.issue_attachment is not None:
            attachment.issue_attachment.created_by_id = alias(attachment.issue_attachment.created_by_id)


def save_avatars(context: ImportContext, db: Session) -> None:
    if context.ignore_attachments:
        return
    context.log.info("Create avatars, count=%s", len(context.avatar_assets))
    _add_all(context, db, context.avatar_assets)


def save_users(context: ImportContext, db: Session) -> None:
    context.log.info("Create users, count=%s", len(context.users_to_create))
    for user in context.users_to_create:
        password = generate_password()
        user.password_hash = hash_password(password)
        try:
            with db.begin_nested():
                db.add(user)
                db.flush()
        except IntegrityError:
            existing = db.scalars(
                select(User).where(or_(User.email == user.email, User.username == user.username))
            ).first()
            context.log.warning("Duplicated user %s", user.username or user.email)
            if existing is not None:
                context.user_aliases[user.id] = existing.id
            continue
        context.passwords[user.id] = password
    remap_user_aliases(context)


def save_workspace_members(context: ImportContext, db: Session) -> None:
    context.log.info("Create workspace members, count=%s", len(context.workspace_members))
    insert_or_ignore(db, WorkspaceMember, context.workspace_members, context.db_batch_size)


def save_project(context: ImportContext, db: Session) -> None:
    context.log.info("Create project")
    db.add(context.project)
    db.flush()


def save_project_members(context: ImportContext, db: Session) -> None:
    context.log.info("Create project members, count=%s", len(context.project_members))
    insert_or_ignore(db, ProjectMember, context.project_members, context.db_batch_size)


def save_states(context: ImportContext, db: Session) -> None:
    states = context.states.values()
    context.log.info("Create states, count=%s", len(states))
    names: set[str] = set()
    for state in states:
        if state.name not in names:
            names.add(state.name)
            continue
        base, index = state.name, 2
        while f"{base} ({index})" in names:
            index += 1
        state.name = f"{base} ({index})"
        state.color = DUPLICATE_STATE_COLOR
        names.add(state.name)
    insert_or_update(db, State, states, context.db_batch_size)


def save_labels(context: ImportContext, db: Session) -> None:
    labels = {label.id: label for label in context.labels.values()}
    for tag in context.release_tags.values():
        labels[tag.id] = tag
    context.log.info("Create labels, count=%s", len(labels))
    insert_or_ignore(db, Label, labels.values(), context.db_batch_size)


def save_issues(context: ImportContext, db: Session) -> None:
    issues = order_issues(context.issues.values())
    context.log.info("Create issues, count=%s", len(issues))
    _add_all(context, db, issues)


def save_linked_issues(context: ImportContext, db: Session) -> None:
    context.log.info("Create linked issues, count=%s", len(context.linked_issues))
    _add_all(context, db, context.linked_issues)


def save_issue_links(context: ImportContext, db: Session) -> None:
    links = context.issue_links.snapshot()
    context.log.info("Create links, count=%s", len(links))
    _add_all(context, db, links)


def save_comments(context: ImportContext, db: Session) -> None:
    comments = context.issue_comments.values()
    context.log.info("Create comments, count=%s", len(comments))
    _add_all(context, db, comments)


def save_issue_labels(context: ImportContext, db: Session) -> None:
    rows = context.issue_labels.snapshot()
    context.log.info("Create issue labels links, count=%s", len(rows))
    _add_all(context, db, rows)


def save_blockers(context: ImportContext, db: Session) -> None:
    rows = context.blockers.values()
    context.log.info("Create blockers, count=%s", len(rows))
    _add_all(context, db, rows)


def save_assignees(context: ImportContext, db: Session) -> None:
    rows = context.issue_assignees.values()
    context.log.info("Create issue assignees, count=%s", len(rows))
    _add_all(context, db, rows)


def save_watchers(context: ImportContext, db: Session) -> None:
    rows = context.issue_watchers.values()
    context.log.info("Create issue watchers, count=%s", len(rows))
    _add_all(context, db, rows)


def save_file_assets(context: ImportContext, db: Session) -> None:
    if context.ignore_attachments:
        return
    assets = {asset.id: asset for asset in context.file_assets}
    context.log.info("Create file assets, count=%s", len(assets))
    _add_all(context, db, list(assets.values()))


def save_attachments(context: ImportContext, db: Session) -> None:
    if context.ignore_attachments:
        return
    rows = [
        descriptor.issue_attachment
        for descriptor in context.attachments.values()
        if descriptor.issue_attachment is not None
    ]
    context.log.info("Create attachments, count=%s", len(rows))
    _add_all(context, db, rows)


DB_STEPS: list[Callable[[ImportContext, Session], None]] = [
    save_avatars,
    save_users,
    save_workspace_members,
    save_project,
    save_project_members,
    save_states,
    save_labels,
    save_issues,
    save_linked_issues,
    save_issue_links,
    save_comments,
    save_issue_labels,
    save_blockers,
    save_assignees,
    save_watchers,
    save_file_assets,
    save_attachments,
]


def run_db_steps(context: ImportContext, db: Session) -> None:
    """Run every commit step on ``db``; the caller owns the transaction."""
    context.log.info("Save project to workspace")
    context.stage = ImportStage.db
    context.counters.total_db_stages = len(DB_STEPS)
    context.counters.current_db_stage = 0
    for step in DB_STEPS:
        context.check_cancelled()
        step(context, db)
        context.counters.current_db_stage += 1
