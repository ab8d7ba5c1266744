"""Convenience imports for Alembic metadata discovery."""

from jira_migrator.models.user import User
from jira_migrator.models.workspace import Workspace, WorkspaceMember
from jira_migrator.models.project import Label, Project, ProjectMember, State
from jira_migrator.models.issue import (
    Issue,
    IssueAssignee,
    IssueAttachment,
    IssueBlocker,
    IssueComment,
    IssueLabel,
    IssueLink,
    IssueWatcher,
    LinkedIssue,
)
from jira_migrator.models.file_asset import FileAsset
from jira_migrator.models.imported_project import ImportedProject
from jira_migrator.models.email_log import EmailLog
