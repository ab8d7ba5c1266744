"""Small helpers around Jira keys and URLs."""

from __future__ import annotations

from typing import Any
from urllib.parse import urlsplit, urlunsplit


def parse_key(key: str | None) -> tuple[str, str]:
    """Split ``PRJ-12`` into ``("PRJ", "12")``; empty strings when malformed."""
    parts = (key or "").strip().split("-")
    if len(parts) < 2:
        return "", ""
    return parts[0], parts[1]


def sequence_of(key: str) -> int:
    _, seq = parse_key(key)
    try:
        return int(seq)
    except ValueError:
        return 0


def first_not_none(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def issue_browse_url(issue: dict[str, Any]) -> str:
    """Public page of an issue, built from its REST ``self`` address."""
    parts = urlsplit(issue.get("self") or "")
    return urlunsplit((parts.scheme, parts.netloc, f"/browse/{issue.get('key', '')}", "", ""))


def internal_issue_path(workspace_id: Any, project_id: Any, sequence: str | int) -> str:
    return f"/{workspace_id}/projects/{project_id}/issues/{sequence}"


def account_of(user: dict[str, Any] | None) -> str:
    """Jira Server users are keyed by name, Jira Cloud users by account id."""
    if not user:
        return ""
    return user.get("name") or user.get("accountId") or ""
