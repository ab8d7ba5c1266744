from __future__ import annotations

import threading
from uuid import uuid4

import pytest

from conftest import JIRA_URL, FakeJiraClient, FakeStorage, jira_issue
from jira_migrator.core.exceptions import ImportCancelled, ImportFetchError
from jira_migrator.models.enums import MemberRole
from jira_migrator.models.issue import IssueAttachment
from jira_migrator.models.user import User
from jira_migrator.services.issues_import import mappers, steps
from jira_migrator.services.issues_import.counters import ImportState
from jira_migrator.services.issues_import.entity import Attachment, LinkMapper


def _descriptor(context, attachment_id: str) -> Attachment:  # noqa: ANN001
    asset_id = uuid4()
    return Attachment(
        dst_asset_id=asset_id,
        jira_key="PRJ-1",
        jira_attachment={
            "id": attachment_id,
            "filename": f"{attachment_id}.txt",
            "content": f"{JIRA_URL}/secure/attachment/{attachment_id}/{attachment_id}.txt",
        },
        issue_attachment=IssueAttachment(
            id=uuid4(),
            asset_id=asset_id,
            issue_id=uuid4(),
            project_id=context.project_id,
            workspace_id=context.workspace_id,
        ),
    )


def test_attachments_are_transferred_and_failures_dropped(make_context) -> None:  # noqa: ANN001
    client = FakeJiraClient(blobs={f"{JIRA_URL}/secure/attachment/500/500.txt": b"abc"})
    storage = FakeStorage()
    context = make_context(client, storage=storage)
    context.attachment_attempts = 3
    good, bad = _descriptor(context, "500"), _descriptor(context, "501")
    context.attachments.put("500", good)
    context.attachments.put("501", bad)

    steps.download_attachments_step(context)

    assert context.counters.total_attachments == 2
    assert context.counters.imported_attachments.value == 1
    assert storage.saved[good.dst_asset_id][0] == b"abc"
    assert storage.saved[good.dst_asset_id][3]["project_id"] == str(context.project_id)
    assert context.asset_ids.snapshot() == [good.dst_asset_id]
    [asset] = context.file_assets.snapshot()
    assert asset.id == good.dst_asset_id
    assert asset.size == 3

    assert context.bad_attachments.snapshot() == [bad]
    assert len(bad.errors) == 3
    assert client.downloads.count(bad.download_url) == 3
    assert context.attachments.get_light("501") is None
    assert context.attachments.get_light("500") is good


def test_descriptor_without_url_is_bad(make_context) -> None:  # noqa: ANN001
    context = make_context()
    descriptor = Attachment(dst_asset_id=uuid4(), jira_key="PRJ-1", jira_attachment={"id": "9"})
    assert steps.transfer_attachment(context, descriptor) is False
    assert context.bad_attachments.snapshot() == [descriptor]


def test_cancel_deletes_transferred_blobs(make_context) -> None:  # noqa: ANN001
    storage = FakeStorage()
    context = make_context(storage=storage)
    first, second = uuid4(), uuid4()
    assert context.record_transferred(first)
    assert context.record_transferred(second)

    context.cancel()
    context.cancel()

    assert storage.deleted == [first, second]
    assert context.state == ImportState.cancelled
    assert context.finished and context.end_at is not None

    late = uuid4()
    assert context.record_transferred(late) is False
    assert storage.deleted[-1] == late
    assert late not in context.asset_ids.snapshot()


def test_transfer_stops_retrying_once_cancelled(make_context) -> None:  # noqa: ANN001
    client = FakeJiraClient()
    context = make_context(client)
    context.attachment_attempts = 5
    descriptor = _descriptor(context, "502")
    context.cancel()

    assert steps.transfer_attachment(context, descriptor) is False
    assert client.downloads == [descriptor.download_url]
    assert context.bad_attachments.snapshot() == []


def test_map_links_step_resolves_only_mapped_issues(make_context) -> None:  # noqa: ANN001
    context = make_context(block_link_id="10000", relate_link_mapper=LinkMapper.of("10003"))
    blocking = {"type": {"id": "10000"}, "outwardIssue": {"key": "PRJ-2"}}
    missing = {"type": {"id": "10000"}, "outwardIssue": {"key": "PRJ-99"}}
    related = {"type": {"id": "10003"}, "inwardIssue": {"key": "PRJ-1"}}
    related_missing = {"type": {"id": "10003"}, "inwardIssue": {"key": "PRJ-98"}}
    first = mappers.map_issue(context, jira_issue("PRJ-1"))
    second = mappers.map_issue(context, jira_issue("PRJ-2"))
    third = mappers.map_issue(context, jira_issue("PRJ-3", issuelinks=[blocking, missing, related, related_missing]))

    steps.map_links_step(context)

    [blocker] = context.blockers.values()
    assert blocker.block_id == second.id
    assert blocker.blocked_by_id == third.id
    [linked] = context.linked_issues
    assert {linked.id1, linked.id2} == {first.id, third.id}


def test_prepare_memberships(make_context, session_factory, workspace) -> None:  # noqa: ANN001
    _, actor = workspace
    context = make_context()
    with session_factory() as db:
        existing = User(id=uuid4(), username="carol", email="carol@example.com")
        db.add(existing)
        db.commit()

    alice = User(id=uuid4(), username="alice", email="alice@example.com")
    carol_copy = User(id=uuid4(), username="carol", email="carol@example.com")
    context.users.put("alice", alice)
    context.users.put("alice-old", alice)
    context.users.put("carol", carol_copy)
    context.users.put("owner", actor)

    steps.prepare_memberships_step(context)

    assert context.users_to_create == [alice]
    assert context.user_aliases == {carol_copy.id: existing.id}
    assert context.counters.total_users == 1
    assert {member.member_id for member in context.workspace_members} == {alice.id, existing.id}
    roles = {member.member_id: member.role for member in context.project_members}
    assert roles == {
        alice.id: int(MemberRole.member),
        existing.id: int(MemberRole.member),
        actor.id: int(MemberRole.admin),
    }


def test_avatars_are_copied_for_new_users(make_context) -> None:  # noqa: ANN001
    avatar = "https://avatars.example.com/alice.png"
    storage = FakeStorage()
    context = make_context(FakeJiraClient(blobs={avatar: b"png"}), storage=storage)
    alice = User(id=uuid4(), username="alice", avatar_url=avatar)
    bob = User(id=uuid4(), username="bob", avatar_url="https://avatars.example.com/missing.png")
    context.users_to_create.extend([alice, bob])

    steps.avatars_step(context)

    [asset] = context.avatar_assets
    assert alice.avatar_id == asset.id
    assert bob.avatar_id is None
    assert storage.saved[asset.id][0] == b"png"
    assert context.counters.imported_users.value == 2


def test_fetch_failure_fails_the_import(make_context, monkeypatch) -> None:  # noqa: ANN001
    client = FakeJiraClient()
    context = make_context(client, with_project=False)

    def broken(*_args, **_kwargs):  # noqa: ANN002, ANN003, ANN202
        raise ConnectionError("jira down")

    monkeypatch.setattr(client, "find_assignable_users", broken)
    steps.run_import_steps(context)

    assert context.state == ImportState.failed
    assert isinstance(context.error, ImportFetchError)


class SlowJiraClient(FakeJiraClient):
    """Signals after ``cancel_after`` downloads and stalls later ones until the cancel lands."""

    def __init__(self, cancel_after: int, **kwargs) -> None:  # noqa: ANN003
        super().__init__(**kwargs)
        self.cancel_after = cancel_after
        self.reached = threading.Event()
        self.cancelled = threading.Event()
        self._lock = threading.Lock()

    def download(self, url: str) -> tuple[bytes, str]:
        with self._lock:
            self.downloads.append(url)
            count = len(self.downloads)
        if count == self.cancel_after:
            self.reached.set()
        elif count > self.cancel_after:
            self.cancelled.wait(timeout=5)
        return self.blobs[url], "text/plain"


def test_cancel_during_transfer_leaves_no_blobs(make_context) -> None:  # noqa: ANN001
    storage = FakeStorage()
    blobs = {f"{JIRA_URL}/secure/attachment/{600 + n}/{600 + n}.txt": b"data" for n in range(20)}
    client = SlowJiraClient(5, blobs=blobs)
    context = make_context(client, storage=storage)
    context.workers = 4
    for n in range(20):
        context.attachments.put(str(600 + n), _descriptor(context, str(600 + n)))

    def cancel_midway() -> None:
        client.reached.wait(timeout=5)
        context.cancel()
        client.cancelled.set()

    canceller = threading.Thread(target=cancel_midway)
    canceller.start()
    with pytest.raises(ImportCancelled):
        steps.download_attachments_step(context)
    canceller.join()

    assert context.finished
    assert isinstance(context.error, ImportCancelled)
    assert context.state == ImportState.cancelled
    assert 5 <= len(client.downloads) < 20
    assert storage.saved == {}
    assert set(context.asset_ids.snapshot()) <= set(storage.deleted)


def test_error_after_cancel_keeps_the_import_cancelled(make_context, monkeypatch) -> None:  # noqa: ANN001
    storage = FakeStorage()
    context = make_context(storage=storage, with_project=False)
    context.record_transferred(uuid4())

    def cancelled_then_broken(*_args, **_kwargs):  # noqa: ANN002, ANN003, ANN202
        context.cancel()
        raise ConnectionError("connection reset")

    monkeypatch.setattr(context, "fetch_project_users", cancelled_then_broken)
    steps.run_import_steps(context)

    assert context.state == ImportState.cancelled
    assert isinstance(context.error, ImportCancelled)
    assert len(storage.deleted) == 1

    end_at = context.end_at
    assert context.fail(RuntimeError("late")) is False
    assert context.end_at == end_at
    assert context.state == ImportState.cancelled
