"""User model for authentication and project membership."""

from __future__ import annotations

import datetime as dt
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, Enum, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from jira_migrator.db.base import Base
from jira_migrator.models.enums import UserRole


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class User(Base):
    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    email: Mapped[str | None] = mapped_column(String(255), unique=True, index=True, nullable=True)
    username: Mapped[str | None] = mapped_column(String(255), unique=True, index=True, nullable=True)
    first_name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    last_name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role", values_callable=lambda x: [e.value for e in x]),
        default=UserRole.user,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    user_timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)
    # Remote avatar address, copied into storage during import.
    avatar_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    # file_assets.id, left without a constraint (file_assets -> issue_comments -> users).
    avatar_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    @property
    def display_name(self) -> str:
        full = " ".join(part for part in (self.first_name, self.last_name) if part)
        return full or self.username or self.email or str(self.id)
