"""Shared enum values used by the database models and schemas."""

from __future__ import annotations

import enum


class UserRole(str, enum.Enum):
    admin = "admin"
    user = "user"


class MemberRole(enum.IntEnum):
    guest = 5
    member = 10
    admin = 15


class StateGroup(str, enum.Enum):
    backlog = "backlog"
    unstarted = "unstarted"
    started = "started"
    completed = "completed"
    cancelled = "cancelled"


class IssuePriority(str, enum.Enum):
    urgent = "urgent"
    high = "high"
    medium = "medium"
    low = "low"


class EmailKind(str, enum.Enum):
    import_started = "import_started"
    import_finished = "import_finished"
    new_user_password = "new_user_password"
