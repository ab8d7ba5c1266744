"""Value objects used while translating a Jira project."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from jira_migrator.models.enums import IssuePriority
from jira_migrator.models.file_asset import FileAsset
from jira_migrator.models.issue import IssueAttachment


@dataclass(frozen=True)
class RawLinkedIssues:
    """Unordered pair of related Jira issue keys, normalized so key1 < key2."""

    key1: str
    key2: str

    @classmethod
    def of(cls, first: str, second: str) -> "RawLinkedIssues":
        if first < second:
            return cls(first, second)
        return cls(second, first)

    def __str__(self) -> str:
        return f"{self.key1}:{self.key2}"


@dataclass(frozen=True)
class LinkMapper:
    """Jira link type ids translated to "relates to" pairs."""

    types: tuple[str, ...] = ()

    @classmethod
    def of(cls, *types: str) -> "LinkMapper":
        return cls(tuple(t.strip() for t in types if t and t.strip()))

    def match(self, type_id: str | None) -> bool:
        return (type_id or "").strip() in self.types


@dataclass(frozen=True)
class PrioritiesMapping:
    urgent_id: str = ""
    high_id: str = ""
    medium_id: str = ""
    low_id: str = ""

    def table(self) -> dict[str, IssuePriority]:
        pairs = (
            (self.urgent_id, IssuePriority.urgent),
            (self.high_id, IssuePriority.high),
            (self.medium_id, IssuePriority.medium),
            (self.low_id, IssuePriority.low),
        )
        return {source.strip().lower(): target for source, target in pairs if source and source.strip()}


@dataclass
class Attachment:
    """One blob waiting for transfer into storage.

    The source is either a Jira attachment (``jira_attachment``, raw REST
    payload) or an arbitrary image URL (``full_url``). ``issue_attachment`` is
    set for files attached to an issue, ``inline_asset`` for images embedded
    in rich text.
    """

    dst_asset_id: UUID
    jira_key: str = ""
    jira_attachment: dict[str, Any] | None = None
    full_url: str | None = None
    issue_attachment: IssueAttachment | None = None
    inline_asset: FileAsset | None = None
    content_type: str | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def source_key(self) -> str:
        if self.jira_attachment is not None:
            return str(self.jira_attachment.get("id") or "")
        return self.full_url or ""

    @property
    def download_url(self) -> str | None:
        if self.jira_attachment is not None:
            return self.jira_attachment.get("content") or None
        return self.full_url

    @property
    def name(self) -> str:
        if self.jira_attachment is not None and self.jira_attachment.get("filename"):
            return str(self.jira_attachment["filename"])
        if self.inline_asset is not None and self.inline_asset.name:
            return self.inline_asset.name
        return (self.full_url or "").rsplit("/", 1)[-1]

    @property
    def size(self) -> int:
        if self.jira_attachment is not None:
            return int(self.jira_attachment.get("size") or 0)
        return 0

    def storage_metadata(self) -> dict[str, str]:
        metadata: dict[str, str] = {}
        if self.issue_attachment is not None:
            metadata["workspace_id"] = str(self.issue_attachment.workspace_id)
            metadata["project_id"] = str(self.issue_attachment.project_id)
            metadata["issue_id"] = str(self.issue_attachment.issue_id)
        elif self.inline_asset is not None:
            if self.inline_asset.workspace_id is not None:
                metadata["workspace_id"] = str(self.inline_asset.workspace_id)
            if self.inline_asset.issue_id is not None:
                metadata["issue_id"] = str(self.inline_asset.issue_id)
            if self.inline_asset.comment_id is not None:
                metadata["comment_id"] = str(self.inline_asset.comment_id)
        return metadata

    def file_asset(self, *, size: int, content_type: str) -> FileAsset:
        """Metadata row recorded once the blob is stored."""
        if self.inline_asset is not None:
            self.inline_asset.size = size
            self.inline_asset.content_type = content_type
            return self.inline_asset
        issue = self.issue_attachment
        return FileAsset(
            id=self.dst_asset_id,
            name=self.name,
            size=size,
            content_type=content_type,
            attributes={"jira_attachment_id": self.source_key},
            workspace_id=issue.workspace_id if issue is not None else None,
            issue_id=issue.issue_id if issue is not None else None,
        )
