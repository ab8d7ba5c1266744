"""Metadata rows for blobs held by the object storage."""

from __future__ import annotations

import datetime as dt
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from jira_migrator.db.base import Base, JSONType


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class FileAsset(Base):
    __tablename__ = "file_assets"

    # Same id as the blob in storage.
    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(512), default="", nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    content_type: Mapped[str] = mapped_column(String(255), default="application/octet-stream", nullable=False)
    attributes: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    workspace_id: Mapped[UUID | None] = mapped_column(ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=True)
    issue_id: Mapped[UUID | None] = mapped_column(ForeignKey("issues.id", ondelete="CASCADE"), nullable=True)
    comment_id: Mapped[UUID | None] = mapped_column(ForeignKey("issue_comments.id", ondelete="CASCADE"), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
