"""Progress counters of one import session."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from jira_migrator.services.issues_import.atomic import AtomicCounter


class ImportStage(str, enum.Enum):
    fetch = "fetch"
    issues = "issues"
    attachments = "attachments"
    users = "users"
    db = "db"


class ImportState(str, enum.Enum):
    created = "created"
    running = "running"
    finished = "finished"
    cancelled = "cancelled"
    failed = "failed"


# (offset, weight) of each stage in the overall progress.
STAGE_WEIGHTS: dict[ImportStage, tuple[int, float]] = {
    ImportStage.fetch: (0, 0.2),
    ImportStage.issues: (20, 0.2),
    ImportStage.attachments: (40, 0.2),
    ImportStage.users: (60, 0.2),
    ImportStage.db: (80, 0.2),
}


def _percent(done: int, total: int) -> int:
    if total <= 0:
        return 100
    return min(100, int(done / total * 100))


@dataclass
class ImportCounters:
    total_issues: int = 0
    fetched_issues: AtomicCounter = field(default_factory=AtomicCounter)
    mapped_issues: AtomicCounter = field(default_factory=AtomicCounter)
    total_attachments: int = 0
    imported_attachments: AtomicCounter = field(default_factory=AtomicCounter)
    total_users: int = 0
    imported_users: AtomicCounter = field(default_factory=AtomicCounter)
    total_db_stages: int = 0
    current_db_stage: int = 0

    def fetch_progress(self) -> int:
        return _percent(self.fetched_issues.value, self.total_issues)

    def mapping_progress(self) -> int:
        return _percent(self.mapped_issues.value, self.total_issues)

    def attachments_progress(self) -> int:
        return _percent(self.imported_attachments.value, self.total_attachments)

    def users_progress(self) -> int:
        return _percent(self.imported_users.value, self.total_users)

    def db_progress(self) -> int:
        return _percent(self.current_db_stage, self.total_db_stages)

    def stage_progress(self, stage: ImportStage | None) -> int:
        if stage is None:
            return 0
        return {
            ImportStage.fetch: self.fetch_progress,
            ImportStage.issues: self.mapping_progress,
            ImportStage.attachments: self.attachments_progress,
            ImportStage.users: self.users_progress,
            ImportStage.db: self.db_progress,
        }[stage]()

    def global_progress(self, stage: ImportStage | None) -> int:
        if stage is None:
            return 0
        offset, weight = STAGE_WEIGHTS[stage]
        return offset + int(self.stage_progress(stage) * weight)
