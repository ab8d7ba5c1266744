"""Jira REST v2 client wrapper with retries, bound to one set of credentials."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Iterator
from urllib.parse import urlsplit

import httpx

from jira_migrator.core.config import settings
from jira_migrator.core.exceptions import JiraUnauthorizedError

logger = logging.getLogger(__name__)

RETRY_STATUSES = {429, 500, 502, 503, 504}
ISSUE_EXPAND = "renderedFields"
ISSUE_FIELDS = "*all"


class JiraClient:
    def __init__(
        self,
        base_url: str,
        login: str,
        api_token: str,
        *,
        timeout: float | None = None,
        max_retries: int | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.login = login
        self.timeout = timeout or settings.JIRA_TIMEOUT_SECONDS
        self.max_retries = max_retries or settings.JIRA_MAX_RETRIES
        # httpx.Client is safe to share between the import worker threads.
        self._http = httpx.Client(
            timeout=self.timeout,
            auth=(login, api_token),
            headers={"Accept": "application/json"},
            follow_redirects=True,
            transport=transport,
        )

    @property
    def host(self) -> str:
        return urlsplit(self.base_url).netloc

    def close(self) -> None:
        self._http.close()

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        backoff = 0.5
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self._http.request(method, url, **kwargs)
            except httpx.HTTPError:
                if attempt >= self.max_retries:
                    raise
                time.sleep(backoff)
                backoff *= 2
                continue

            if response.status_code in RETRY_STATUSES and attempt < self.max_retries:
                logger.debug("Jira %s %s returned %s, retrying", method, url, response.status_code)
                time.sleep(backoff)
                backoff *= 2
                continue

            response.raise_for_status()
            return response
        raise httpx.HTTPError(f"Jira request failed: {method} {url}")

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self._send(method, self._url(path), **kwargs)
        if not response.content:
            return {}
        return response.json()

    def get_myself(self) -> dict[str, Any]:
        try:
            return self._request("GET", "/rest/api/2/myself")
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code in {401, 403}:
                raise JiraUnauthorizedError() from exc
            raise

    def list_projects(self) -> list[dict[str, Any]]:
        rows = self._request("GET", "/rest/api/2/project")
        return [item for item in rows if isinstance(item, dict)] if isinstance(rows, list) else []

    def get_link_types(self) -> list[dict[str, Any]]:
        payload = self._request("GET", "/rest/api/2/issueLinkType")
        rows = payload.get("issueLinkTypes") if isinstance(payload, dict) else None
        return [item for item in rows if isinstance(item, dict)] if isinstance(rows, list) else []

    def get_priorities(self) -> list[dict[str, Any]]:
        rows = self._request("GET", "/rest/api/2/priority")
        return [item for item in rows if isinstance(item, dict)] if isinstance(rows, list) else []

    def get_all_statuses(self) -> list[dict[str, Any]]:
        rows = self._request("GET", "/rest/api/2/status")
        return [item for item in rows if isinstance(item, dict)] if isinstance(rows, list) else []

    def get_project(self, project_key: str) -> dict[str, Any]:
        return self._request("GET", f"/rest/api/2/project/{project_key}")

    def search_issues(
        self,
        *,
        jql: str,
        start_at: int = 0,
        max_results: int | None = None,
        expand: str | None = ISSUE_EXPAND,
        fields: str = ISSUE_FIELDS,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "jql": jql,
            "startAt": start_at,
            "maxResults": settings.JIRA_PAGE_SIZE if max_results is None else max_results,
            "fields": fields,
        }
        if expand:
            params["expand"] = expand
        return self._request("GET", "/rest/api/2/search", params=params)

    def iter_issues(self, jql: str, *, page_size: int | None = None) -> Iterator[dict[str, Any]]:
        limit = page_size or settings.JIRA_PAGE_SIZE
        start_at = 0
        while True:
            payload = self.search_issues(jql=jql, start_at=start_at, max_results=limit)
            issues = payload.get("issues") or []
            for issue in issues:
                if isinstance(issue, dict):
                    yield issue
            start_at += len(issues)
            total = int(payload.get("total") or 0)
            if not issues or start_at >= total:
                return

    def count_issues(self, jql: str) -> int:
        payload = self.search_issues(jql=jql, max_results=0, expand=None, fields="key")
        return int(payload.get("total") or 0)

    def get_issue(self, issue_key: str) -> dict[str, Any]:
        return self._request(
            "GET",
            f"/rest/api/2/issue/{issue_key}",
            params={"expand": ISSUE_EXPAND, "fields": ISSUE_FIELDS},
        )

    def get_user(self, account: str) -> dict[str, Any]:
        return self._request("GET", "/rest/api/2/user", params={"username": account, "accountId": account})

    def find_assignable_users(self, project_key: str, *, start_at: int = 0, max_results: int | None = None) -> list[dict[str, Any]]:
        rows = self._request(
            "GET",
            "/rest/api/2/user/assignable/search",
            params={
                "project": project_key,
                "startAt": start_at,
                "maxResults": max_results or settings.JIRA_USERS_PAGE_SIZE,
            },
        )
        return [item for item in rows if isinstance(item, dict)] if isinstance(rows, list) else []

    def get_watchers(self, issue_id: str) -> list[dict[str, Any]]:
        payload = self._request("GET", f"/rest/api/2/issue/{issue_id}/watchers")
        rows = payload.get("watchers") if isinstance(payload, dict) else None
        return [item for item in rows if isinstance(item, dict)] if isinstance(rows, list) else []

    def get_attachment(self, attachment_id: str) -> dict[str, Any]:
        return self._request("GET", f"/rest/api/2/attachment/{attachment_id}")

    def download(self, url: str) -> tuple[bytes, str]:
        """Fetch raw bytes from a Jira content URL or any absolute URL."""
        response = self._send("GET", self._url(url), headers={"Accept": "*/*"})
        content_type = response.headers.get("content-type", "application/octet-stream")
        return response.content, content_type

    @contextmanager
    def stream(self, url: str) -> Iterator[httpx.Response]:
        with self._http.stream("GET", self._url(url), headers={"Accept": "*/*"}) as response:
            response.raise_for_status()
            yield response
