from __future__ import annotations

import httpx
import pytest

from jira_migrator.core.exceptions import JiraUnauthorizedError
from jira_migrator.integrations.jira import client as client_module
from jira_migrator.integrations.jira.client import JiraClient


def _client(handler) -> JiraClient:  # noqa: ANN001
    return JiraClient(
        "https://jira.example.com/",
        "importer",
        "secret",
        max_retries=3,
        transport=httpx.MockTransport(handler),
    )


def test_retries_transient_statuses(monkeypatch) -> None:  # noqa: ANN001
    sleeps: list[float] = []
    monkeypatch.setattr(client_module.time, "sleep", sleeps.append)
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] < 3:
            return httpx.Response(503)
        return httpx.Response(200, json=[{"key": "PRJ", "name": "Project"}, "junk"])

    jira = _client(handler)

    assert jira.list_projects() == [{"key": "PRJ", "name": "Project"}]
    assert calls["count"] == 3
    assert sleeps == [0.5, 1.0]


def test_rejected_credentials(monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setattr(client_module.time, "sleep", lambda _seconds: None)
    jira = _client(lambda request: httpx.Response(401))

    with pytest.raises(JiraUnauthorizedError):
        jira.get_myself()


def test_iter_issues_follows_pages() -> None:
    pages = {
        "0": {"total": 3, "issues": [{"key": "PRJ-1"}, {"key": "PRJ-2"}]},
        "2": {"total": 3, "issues": [{"key": "PRJ-3"}]},
    }
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(dict(request.url.params))
        return httpx.Response(200, json=pages[request.url.params["startAt"]])

    jira = _client(handler)

    assert [issue["key"] for issue in jira.iter_issues("project = PRJ", page_size=2)] == ["PRJ-1", "PRJ-2", "PRJ-3"]
    assert seen[0]["expand"] == "renderedFields"
    assert seen[0]["jql"] == "project = PRJ"
    assert jira.host == "jira.example.com"


def test_download_returns_bytes_and_content_type() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url) == "https://jira.example.com/secure/attachment/1/a.png"
        return httpx.Response(200, content=b"png", headers={"content-type": "image/png"})

    data, content_type = _client(handler).download("/secure/attachment/1/a.png")

    assert data == b"png"
    assert content_type == "image/png"
