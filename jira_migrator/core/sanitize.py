"""Normalization of Jira identifiers coming from request payloads and the CLI."""

from __future__ import annotations

import re
import unicodedata
from typing import Iterable

_WHITESPACE_RE = re.compile(r"\s+")
_LINK_TYPE_ID_RE = re.compile(r"^[0-9]+$")


def clean_single_line(value: str | None) -> str:
    if value is None:
        return ""
    value = str(value).replace("\r", " ").replace("\n", " ")
    value = "".join(ch for ch in value if unicodedata.category(ch) != "Cc").strip()
    return _WHITESPACE_RE.sub(" ", value)


def clean_project_key(value: str | None) -> str:
    """Jira project keys are upper-case identifiers like ``PRJ``."""
    return clean_single_line(value).replace(" ", "").upper()


def clean_jira_url(value: str | None) -> str:
    url = clean_single_line(value)
    if not url.startswith(("http://", "https://")):
        raise ValueError("jira_url must be an http(s) address")
    return url.rstrip("/")


def clean_link_type_ids(values: Iterable[str] | str | None, *, max_items: int = 32) -> list[str]:
    """Numeric issue link type ids, de-duplicated in their original order."""
    if values is None:
        return []
    if isinstance(values, str):
        values = values.split(",")
    cleaned: list[str] = []
    for item in values:
        link_id = clean_single_line(item)
        if not link_id or link_id in cleaned:
            continue
        if not _LINK_TYPE_ID_RE.match(link_id):
            raise ValueError(f"invalid link type id {link_id!r}")
        cleaned.append(link_id)
    if len(cleaned) > max_items:
        raise ValueError("too_many_link_types")
    return cleaned
