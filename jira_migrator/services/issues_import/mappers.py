"""Translation of Jira issues and their relations into target rows."""

from __future__ import annotations

import datetime as dt
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING, Any, Callable
from uuid import uuid4

from bs4 import BeautifulSoup

from jira_migrator.core.exceptions import ImportCancelled, MappingError
from jira_migrator.models.enums import StateGroup
from jira_migrator.models.issue import (
    Issue,
    IssueAssignee,
    IssueAttachment,
    IssueBlocker,
    IssueComment,
    IssueLabel,
    IssueLink,
    IssueWatcher,
)
from jira_migrator.models.project import Label
from jira_migrator.services.issues_import.atomic import SyncMap
from jira_migrator.services.issues_import.entity import Attachment, RawLinkedIssues
from jira_migrator.services.issues_import.html_converter import rewrite_document
from jira_migrator.services.issues_import.utils import (
    account_of,
    first_not_none,
    internal_issue_path,
    issue_browse_url,
    parse_key,
    sequence_of,
)

if TYPE_CHECKING:
    from jira_migrator.services.issues_import.context import ImportContext

SLOW_MAPPING_SECONDS = 4.0

STATUS_CATEGORIES: dict[str, StateGroup] = {
    "new": StateGroup.backlog,
    "indeterminate": StateGroup.started,
    "done": StateGroup.completed,
}


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def parse_jira_datetime(value: str | None) -> dt.datetime | None:
    if not value:
        return None
    for fmt in ("%Y-%m-%dT%H:%M:%S.%f%z", "%Y-%m-%dT%H:%M:%S%z"):
        try:
            return dt.datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


def parse_jira_date(value: str | None) -> dt.date | None:
    if not value:
        return None
    try:
        return dt.date.fromisoformat(value[:10])
    except ValueError:
        return None


def strip_html(value: str | None) -> str:
    if not value:
        return ""
    return BeautifulSoup(value, "html.parser").get_text(" ", strip=True)


def map_status_category(category: dict[str, Any] | None) -> StateGroup:
    return STATUS_CATEGORIES.get((category or {}).get("key") or "", StateGroup.backlog)


def map_priority(context: ImportContext, priority: dict[str, Any] | None) -> str | None:
    """Priority through the configured id table; unmapped ids give no priority."""
    if not priority:
        return None
    target = context.priorities_mapping.table().get(str(priority.get("id") or "").strip().lower())
    return target.value if target is not None else None


def map_comment(context: ImportContext, raw: dict[str, Any], issue: Issue) -> IssueComment:
    author = context.users.get(account_of(raw.get("author")))
    created = parse_jira_datetime(raw.get("created"))
    if created is None:
        raise MappingError(f"invalid comment date {raw.get('created')!r}", key=str(raw.get("id")))
    body = raw.get("body") or ""
    return IssueComment(
        id=uuid4(),
        comment_html=body,
        comment_stripped=strip_html(body),
        original_id=str(raw.get("id")),
        actor_id=author.id if author is not None else None,
        issue_id=issue.id,
        project_id=issue.project_id,
        workspace_id=issue.workspace_id,
        created_at=created,
        updated_at=parse_jira_datetime(raw.get("updated")) or created,
    )


def issue_link_for(context: ImportContext, issue: Issue, link: dict[str, Any]) -> IssueLink:
    """External hyperlink for a Jira link that is not kept as a relation."""
    link_type = link.get("type") or {}
    if link.get("outwardIssue") is not None:
        label = link_type.get("outward") or link_type.get("name") or ""
    else:
        label = link_type.get("inward") or link_type.get("name") or ""
    other = first_not_none(link.get("outwardIssue"), link.get("inwardIssue")) or {}
    other_key = other.get("key") or ""

    project, sequence = parse_key(other_key)
    if project == context.project_key:
        url = context.web_url + internal_issue_path(context.workspace_id, context.project_id, sequence)
    else:
        url = issue_browse_url(other)

    return IssueLink(
        id=uuid4(),
        title=f"{label} {other_key}".strip(),
        url=url,
        link_metadata={"type": link_type.get("name") or "", "key": other_key},
        issue_id=issue.id,
        project_id=issue.project_id,
        workspace_id=issue.workspace_id,
        created_by_id=issue.created_by_id,
        created_at=utcnow(),
    )


class IssueMapper:
    """Stages the relations of one issue.

    Rows are collected locally and handed to the context only once every
    sub-mapper succeeded, so a failed issue leaves nothing behind.
    """

    def __init__(self, context: ImportContext, raw: dict[str, Any], issue: Issue) -> None:
        self.context = context
        self.raw = raw
        self.key: str = raw["key"]
        self.fields: dict[str, Any] = raw.get("fields") or {}
        self.rendered: dict[str, Any] = raw.get("renderedFields") or {}
        self.issue = issue

        self.links: list[IssueLink] = []
        self.comments: SyncMap[str, IssueComment] = SyncMap()
        self.issue_labels: list[IssueLabel] = []
        self.release_labels: list[IssueLabel] = []
        self.assignees: list[IssueAssignee] = []
        self.watchers: list[IssueWatcher] = []
        self.blocks: list[tuple[str, IssueBlocker]] = []
        self.blocked: list[tuple[str, IssueBlocker]] = []
        self.linked: list[RawLinkedIssues] = []
        self.attachment_keys: list[str] = []
        self._lock = threading.Lock()

    # ----- helpers used by the rich-text rewriter -----

    def register_attachment(self, key: str, descriptor: Attachment) -> Attachment:
        """Stage a descriptor unless one exists for ``key``; returns the staged one."""
        stored = self.context.attachments.update(key, lambda current: current or descriptor)
        if stored is descriptor:
            with self._lock:
                self.attachment_keys.append(key)
        return stored

    def find_comment(self, original_id: str) -> IssueComment | None:
        return self.comments.get(original_id) or self.context.issue_comments.get(original_id)

    # ----- orchestration -----

    def run(self, tasks: list[Callable[[], None]]) -> None:
        with ThreadPoolExecutor(max_workers=len(tasks), thread_name_prefix=f"map-{self.key}") as pool:
            futures = [pool.submit(task) for task in tasks]
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            for future in done:
                error = future.exception()
                if error is not None:
                    for other in pending:
                        other.cancel()
                    raise error

    def commit(self) -> None:
        context = self.context
        context.issue_links.append(*self.links)
        for comment in self.comments.values():
            context.issue_comments.put(comment.original_id, comment)
        context.issue_labels.append(*self.issue_labels, *self.release_labels)
        for assignee in self.assignees:
            context.issue_assignees.put(assignee)
        for watcher in self.watchers:
            context.issue_watchers.put(watcher)
        for target_key, blocker in self.blocks:
            context.blocks.update(target_key, lambda current, row=blocker: [*(current or []), row])
        for target_key, blocker in self.blocked:
            context.blocked.update(target_key, lambda current, row=blocker: [*(current or []), row])
        for pair in self.linked:
            context.linked.put(pair)

    def rollback(self) -> None:
        for key in self.attachment_keys:
            self.context.attachments.delete(key)

    # ----- sub-mappers -----

    def map_parent(self) -> None:
        parent_ref = self.fields.get("parent")
        if not parent_ref or not parent_ref.get("key"):
            return
        parent_key = parent_ref["key"]
        if parse_key(parent_key)[0] != self.context.project_key:
            self.context.log.debug("Parent %s of %s is in another project", parent_key, self.key)
            return
        if self.context.mapping_keys.get(parent_key) == threading.get_ident():
            self.context.log.warning("Parent cycle between %s and %s, parent link dropped", self.key, parent_key)
            return
        try:
            parent = self.context.issues.get(parent_key)
        except ImportCancelled:
            raise
        except Exception as exc:  # noqa: BLE001
            self.context.log.warning("Parent %s of %s could not be mapped: %s", parent_key, self.key, exc)
            return
        if parent is None:
            return
        self.issue.parent_id = parent.id
        self.issue.sort_order = self.context.sort_order.next(parent.id)

    def register_attachments(self) -> None:
        if self.context.ignore_attachments:
            return
        for raw in self.fields.get("attachment") or []:
            asset_id = uuid4()
            self.register_attachment(
                str(raw.get("id")),
                Attachment(
                    dst_asset_id=asset_id,
                    jira_key=self.key,
                    jira_attachment=raw,
                    issue_attachment=IssueAttachment(
                        id=uuid4(),
                        asset_id=asset_id,
                        attributes={"name": raw.get("filename") or "", "size": int(raw.get("size") or 0)},
                        issue_id=self.issue.id,
                        project_id=self.issue.project_id,
                        workspace_id=self.issue.workspace_id,
                        created_by_id=self.issue.created_by_id,
                        created_at=parse_jira_datetime(raw.get("created")) or utcnow(),
                    ),
                ),
            )

    def map_links(self) -> None:
        context = self.context
        for link in self.fields.get("issuelinks") or []:
            type_id = str((link.get("type") or {}).get("id") or "")
            outward = link.get("outwardIssue")
            inward = link.get("inwardIssue")
            other = first_not_none(outward, inward)
            if other is None:
                continue
            same_project = parse_key(other.get("key"))[0] == context.project_key

            if context.block_link_id and type_id == context.block_link_id:
                if not same_project:
                    context.log.debug("Issue %s from another project", other.get("key"))
                    self.links.append(issue_link_for(context, self.issue, link))
                elif outward is not None:
                    # this issue blocks the outward one
                    self.blocks.append((outward["key"], IssueBlocker(
                        id=uuid4(),
                        blocked_by_id=self.issue.id,
                        project_id=self.issue.project_id,
                        workspace_id=self.issue.workspace_id,
                    )))
                else:
                    # this issue is blocked by the inward one
                    self.blocked.append((inward["key"], IssueBlocker(
                        id=uuid4(),
                        block_id=self.issue.id,
                        project_id=self.issue.project_id,
                        workspace_id=self.issue.workspace_id,
                    )))
                continue

            if context.relate_link_mapper.match(type_id):
                if same_project:
                    self.linked.append(RawLinkedIssues.of(self.key, other["key"]))
                else:
                    context.log.debug("Issue %s from another project", other.get("key"))
                    self.links.append(issue_link_for(context, self.issue, link))
                continue

            self.links.append(issue_link_for(context, self.issue, link))

        # Link back to the Jira page of the issue.
        self.links.append(IssueLink(
            id=uuid4(),
            title=self.key,
            url=issue_browse_url(self.raw),
            link_metadata={"type": "jira", "key": self.key},
            issue_id=self.issue.id,
            project_id=self.issue.project_id,
            workspace_id=self.issue.workspace_id,
            created_by_id=self.issue.created_by_id,
            created_at=utcnow(),
        ))

    def map_attachments(self) -> None:
        description = self.rendered.get("description")
        if not description:
            return
        self.issue.description_html = rewrite_document(self, description, issue=self.issue)

    def map_comments(self) -> None:
        for raw in (self.fields.get("comment") or {}).get("comments") or []:
            try:
                comment = map_comment(self.context, raw, self.issue)
            except ImportCancelled:
                raise
            except Exception as exc:  # noqa: BLE001
                self.context.log.error("Map comment %s of %s failed: %s", raw.get("id"), self.key, exc)
                continue
            self.comments.put(comment.original_id, comment)

        rendered = [
            item
            for item in (self.rendered.get("comment") or {}).get("comments") or []
            if self.comments.contains(str(item.get("id")))
        ]
        if not rendered:
            return
        with ThreadPoolExecutor(max_workers=min(len(rendered), self.context.workers), thread_name_prefix=f"comments-{self.key}") as pool:
            list(pool.map(self._rewrite_comment, rendered))

    def _rewrite_comment(self, rendered: dict[str, Any]) -> None:
        comment = self.comments.get(str(rendered.get("id")))
        if comment is None or not rendered.get("body"):
            return
        comment.comment_html = rewrite_document(self, rendered["body"], comment=comment)
        comment.comment_stripped = strip_html(comment.comment_html)

    def map_labels(self) -> None:
        for name in self.fields.get("labels") or []:
            label = self.context.labels.update(name, lambda current, name=name: current or Label(
                id=uuid4(),
                name=name,
                description="",
                project_id=self.issue.project_id,
                workspace_id=self.issue.workspace_id,
                created_at=utcnow(),
            ))
            self.issue_labels.append(IssueLabel(
                id=uuid4(),
                issue_id=self.issue.id,
                label_id=label.id,
                project_id=self.issue.project_id,
                workspace_id=self.issue.workspace_id,
            ))

    def map_assignees(self) -> None:
        account = account_of(self.fields.get("assignee"))
        if not account:
            return
        assignee = self.context.users.get(account)
        if assignee is None:
            return
        self.assignees.append(IssueAssignee(
            id=uuid4(),
            issue_id=self.issue.id,
            assignee_id=assignee.id,
            project_id=self.issue.project_id,
            workspace_id=self.issue.workspace_id,
        ))

    def map_watchers(self) -> None:
        watches = self.fields.get("watches")
        if isinstance(watches, dict) and not watches.get("watchCount"):
            return
        seen = set()
        for raw in self.context.client.get_watchers(str(self.raw.get("id") or self.key)):
            watcher = self.context.users.get(account_of(raw))
            if watcher is None or watcher.id in seen:
                continue
            seen.add(watcher.id)
            self.watchers.append(IssueWatcher(
                id=uuid4(),
                issue_id=self.issue.id,
                watcher_id=watcher.id,
                project_id=self.issue.project_id,
                workspace_id=self.issue.workspace_id,
            ))

    def map_releases(self) -> None:
        for version in self.fields.get("fixVersions") or []:
            tag = self.context.release_tags.update(str(version.get("id")), lambda current, version=version: current or Label(
                id=uuid4(),
                name=version.get("name") or "",
                description=version.get("description") or "",
                project_id=self.issue.project_id,
                workspace_id=self.issue.workspace_id,
                created_at=utcnow(),
            ))
            self.release_labels.append(IssueLabel(
                id=uuid4(),
                issue_id=self.issue.id,
                label_id=tag.id,
                project_id=self.issue.project_id,
                workspace_id=self.issue.workspace_id,
            ))


def map_issue(context: ImportContext, raw: dict[str, Any]) -> Issue | None:
    """Stage one Jira issue; mapping a key twice is a no-op that returns None."""
    key = raw["key"]
    if context.issues.contains(key) or context.mapping_keys.contains(key):
        return None

    context.mapping_keys.put(key, threading.get_ident())
    try:
        return _map_new_issue(context, raw, key)
    finally:
        context.mapping_keys.delete(key)


def _map_new_issue(context: ImportContext, raw: dict[str, Any], key: str) -> Issue:
    started = time.monotonic()
    fields = raw.get("fields") or {}
    rendered = raw.get("renderedFields") or {}

    state = None
    status_id = str((fields.get("status") or {}).get("id") or "")
    if status_id:
        state = context.states.get(status_id)

    # Reporter is the current author; Jira lets it differ from the creator.
    reporter = account_of(fields.get("reporter") or fields.get("creator"))
    author = context.users.get(reporter) if reporter else None

    description = rendered.get("description") or ""
    created = parse_jira_datetime(fields.get("created")) or utcnow()
    issue = Issue(
        id=uuid4(),
        name=fields.get("summary") or key,
        description_html=description or "<p></p>",
        description_stripped=strip_html(description),
        priority=map_priority(context, fields.get("priority")),
        sequence_id=sequence_of(key),
        sort_order=0,
        state_id=state.id if state is not None else None,
        project_id=context.project_id,
        workspace_id=context.workspace_id,
        created_by_id=author.id if author is not None else context.actor.id,
        target_date=parse_jira_date(fields.get("duedate")),
        completed_at=parse_jira_datetime(fields.get("resolutiondate")),
        created_at=created,
        updated_at=parse_jira_datetime(fields.get("updated")) or created,
    )

    mapper = IssueMapper(context, raw, issue)
    mapper.map_parent()
    mapper.register_attachments()
    try:
        mapper.run([
            mapper.map_links,
            mapper.map_attachments,
            mapper.map_comments,
            mapper.map_labels,
            mapper.map_assignees,
            mapper.map_watchers,
            mapper.map_releases,
        ])
    except ImportCancelled:
        mapper.rollback()
        raise
    except Exception as exc:
        mapper.rollback()
        raise MappingError(f"map issue {key}: {exc}", key=key) from exc

    mapper.commit()
    context.issues.put(key, issue)

    elapsed = time.monotonic() - started
    if elapsed > SLOW_MAPPING_SECONDS:
        context.log.debug("Slow mapping of %s: %.1fs", key, elapsed)
    return issue
