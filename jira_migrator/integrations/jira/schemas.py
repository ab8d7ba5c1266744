"""DTOs for the Jira project import endpoints."""

from __future__ import annotations

import datetime as dt
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from jira_migrator.core.sanitize import clean_jira_url, clean_link_type_ids, clean_single_line


class JiraCredentials(BaseModel):
    username: str = Field(min_length=1, max_length=255)
    token: str = Field(min_length=1, max_length=1024)
    jira_url: str = Field(min_length=1, max_length=1024)

    @field_validator("username", mode="before")
    @classmethod
    def normalize_line(cls, value: str) -> str:
        return clean_single_line(value)

    @field_validator("jira_url", mode="before")
    @classmethod
    def normalize_url(cls, value: str) -> str:
        return clean_jira_url(value)


class PrioritiesMappingIn(BaseModel):
    urgent_id: str = ""
    high_id: str = ""
    medium_id: str = ""
    low_id: str = ""


class JiraImportRequest(JiraCredentials):
    target_workspace_id: UUID
    block_link_id: str = ""
    relates_link_ids: list[str] = Field(default_factory=list, max_length=32)
    priorities_mapping: PrioritiesMappingIn = Field(default_factory=PrioritiesMappingIn)

    @field_validator("relates_link_ids", mode="before")
    @classmethod
    def normalize_link_ids(cls, value: list[str]) -> list[str]:
        return clean_link_type_ids(value)


class JiraInfoOut(BaseModel):
    projects: list[dict] = Field(default_factory=list)
    link_types: list[dict] = Field(default_factory=list)
    priorities: list[dict] = Field(default_factory=list)


class ActorOut(BaseModel):
    id: UUID
    username: str | None = None
    email: str | None = None
    first_name: str = ""
    last_name: str = ""


class FailedAttachmentOut(BaseModel):
    key: str
    name: str
    attachment_id: str


class ImportStatusOut(BaseModel):
    id: str
    actor_id: str
    project_key: str
    target_workspace_id: str
    stage: str | None = None
    state: str
    total_issues: int = 0
    done_issues: int = 0
    total_attachments: int = 0
    imported_attachments: int = 0
    failed_attachments: list[FailedAttachmentOut] = Field(default_factory=list)
    start_at: dt.datetime
    end_at: dt.datetime | None = None
    progress: int = 0
    global_progress: int = 0
    finished: bool = False
    error: str = ""
    actor_details: ActorOut | None = None


class ImportStartResponse(BaseModel):
    id: str
    project_key: str
    status: str = "started"
