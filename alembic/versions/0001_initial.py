"""initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _uuid() -> postgresql.UUID:
    return postgresql.UUID(as_uuid=True)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False)


def upgrade() -> None:
    user_role = postgresql.ENUM("admin", "user", name="user_role")
    state_group = postgresql.ENUM("backlog", "unstarted", "started", "completed", "cancelled", name="state_group")
    email_kind = postgresql.ENUM("import_started", "import_finished", "new_user_password", name="email_kind")

    user_role_col = postgresql.ENUM("admin", "user", name="user_role", create_type=False)
    state_group_col = postgresql.ENUM(
        "backlog", "unstarted", "started", "completed", "cancelled", name="state_group", create_type=False
    )
    email_kind_col = postgresql.ENUM(
        "import_started", "import_finished", "new_user_password", name="email_kind", create_type=False
    )

    bind = op.get_bind()
    user_role.create(bind, checkfirst=True)
    state_group.create(bind, checkfirst=True)
    email_kind.create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("username", sa.String(length=255), nullable=True),
        sa.Column("first_name", sa.String(length=255), nullable=False),
        sa.Column("last_name", sa.String(length=255), nullable=False),
        sa.Column("role", user_role_col, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("user_timezone", sa.String(length=64), nullable=False),
        sa.Column("avatar_url", sa.String(length=1024), nullable=True),
        sa.Column("avatar_id", _uuid(), nullable=True),
        sa.Column("password_hash", sa.String(length=255), nullable=True),
        _created_at(),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)
    op.create_index(op.f("ix_users_username"), "users", ["username"], unique=True)

    op.create_table(
        "workspaces",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=64), nullable=False, unique=True),
        _created_at(),
    )

    op.create_table(
        "workspace_members",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("workspace_id", _uuid(), sa.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False),
        sa.Column("member_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.Integer(), nullable=False),
        _created_at(),
        sa.UniqueConstraint("workspace_id", "member_id", name="uq_workspace_members_workspace_member"),
    )
    op.create_index(op.f("ix_workspace_members_workspace_id"), "workspace_members", ["workspace_id"])
    op.create_index(op.f("ix_workspace_members_member_id"), "workspace_members", ["member_id"])

    op.create_table(
        "projects",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("identifier", sa.String(length=32), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("project_lead_id", _uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_by_id", _uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("workspace_id", _uuid(), sa.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False),
        _created_at(),
        sa.UniqueConstraint("workspace_id", "identifier", name="uq_projects_workspace_identifier"),
    )
    op.create_index(op.f("ix_projects_workspace_id"), "projects", ["workspace_id"])

    op.create_table(
        "project_members",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("project_id", _uuid(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("member_id", _uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("workspace_id", _uuid(), sa.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.Integer(), nullable=False),
        _created_at(),
        sa.UniqueConstraint("project_id", "member_id", name="uq_project_members_project_member"),
    )
    op.create_index(op.f("ix_project_members_project_id"), "project_members", ["project_id"])
    op.create_index(op.f("ix_project_members_member_id"), "project_members", ["member_id"])

    op.create_table(
        "states",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("group", state_group_col, nullable=False),
        sa.Column("color", sa.String(length=16), nullable=False),
        sa.Column("project_id", _uuid(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("workspace_id", _uuid(), sa.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False),
        _created_at(),
        sa.UniqueConstraint("project_id", "name", name="uq_states_project_name"),
    )
    op.create_index(op.f("ix_states_project_id"), "states", ["project_id"])

    op.create_table(
        "labels",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("color", sa.String(length=16), nullable=True),
        sa.Column("project_id", _uuid(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("workspace_id", _uuid(), sa.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False),
        _created_at(),
    )
    op.create_index(op.f("ix_labels_project_id"), "labels", ["project_id"])

    op.create_table(
        "issues",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=512), nullable=False),
        sa.Column("description_html", sa.Text(), nullable=False),
        sa.Column("description_stripped", sa.Text(), nullable=True),
        sa.Column("priority", sa.String(length=16), nullable=True),
        sa.Column("sequence_id", sa.Integer(), nullable=False),
        sa.Column("sort_order", sa.Float(), nullable=False),
        sa.Column("parent_id", _uuid(), sa.ForeignKey("issues.id", ondelete="CASCADE"), nullable=True),
        sa.Column("state_id", _uuid(), sa.ForeignKey("states.id", ondelete="SET NULL"), nullable=True),
        sa.Column("project_id", _uuid(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("workspace_id", _uuid(), sa.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_by_id", _uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("target_date", sa.Date(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("project_id", "sequence_id", name="uq_issues_project_sequence"),
    )
    op.create_index(op.f("ix_issues_parent_id"), "issues", ["parent_id"])
    op.create_index(op.f("ix_issues_project_id"), "issues", ["project_id"])

    op.create_table(
        "issue_comments",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("comment_html", sa.Text(), nullable=False),
        sa.Column("comment_stripped", sa.Text(), nullable=False),
        sa.Column("original_id", sa.String(length=64), nullable=True),
        sa.Column("actor_id", _uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("issue_id", _uuid(), sa.ForeignKey("issues.id", ondelete="CASCADE"), nullable=False),
        sa.Column("project_id", _uuid(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("workspace_id", _uuid(), sa.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(op.f("ix_issue_comments_original_id"), "issue_comments", ["original_id"])
    op.create_index(op.f("ix_issue_comments_issue_id"), "issue_comments", ["issue_id"])

    op.create_table(
        "file_assets",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=512), nullable=False),
        sa.Column("size", sa.BigInteger(), nullable=False),
        sa.Column("content_type", sa.String(length=255), nullable=False),
        sa.Column("attributes", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("workspace_id", _uuid(), sa.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=True),
        sa.Column("issue_id", _uuid(), sa.ForeignKey("issues.id", ondelete="CASCADE"), nullable=True),
        sa.Column("comment_id", _uuid(), sa.ForeignKey("issue_comments.id", ondelete="CASCADE"), nullable=True),
        _created_at(),
    )

    op.create_table(
        "issue_links",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("title", sa.String(length=512), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("issue_id", _uuid(), sa.ForeignKey("issues.id", ondelete="CASCADE"), nullable=False),
        sa.Column("project_id", _uuid(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("workspace_id", _uuid(), sa.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_by_id", _uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        _created_at(),
    )
    op.create_index(op.f("ix_issue_links_issue_id"), "issue_links", ["issue_id"])

    for table, column, name in (
        ("issue_labels", ("label_id", "labels.id"), "uq_issue_labels_issue_label"),
        ("issue_assignees", ("assignee_id", "users.id"), "uq_issue_assignees_issue_assignee"),
        ("issue_watchers", ("watcher_id", "users.id"), "uq_issue_watchers_issue_watcher"),
    ):
        op.create_table(
            table,
            sa.Column("id", _uuid(), primary_key=True, nullable=False),
            sa.Column("issue_id", _uuid(), sa.ForeignKey("issues.id", ondelete="CASCADE"), nullable=False),
            sa.Column(column[0], _uuid(), sa.ForeignKey(column[1], ondelete="CASCADE"), nullable=False),
            sa.Column("project_id", _uuid(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
            sa.Column("workspace_id", _uuid(), sa.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False),
            sa.UniqueConstraint("issue_id", column[0], name=name),
        )
        op.create_index(op.f(f"ix_{table}_issue_id"), table, ["issue_id"])

    op.create_table(
        "issue_blockers",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("block_id", _uuid(), sa.ForeignKey("issues.id", ondelete="CASCADE"), nullable=False),
        sa.Column("blocked_by_id", _uuid(), sa.ForeignKey("issues.id", ondelete="CASCADE"), nullable=False),
        sa.Column("project_id", _uuid(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("workspace_id", _uuid(), sa.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("block_id", "blocked_by_id", name="uq_issue_blockers_pair"),
    )
    op.create_index(op.f("ix_issue_blockers_block_id"), "issue_blockers", ["block_id"])
    op.create_index(op.f("ix_issue_blockers_blocked_by_id"), "issue_blockers", ["blocked_by_id"])

    op.create_table(
        "linked_issues",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("id1", _uuid(), sa.ForeignKey("issues.id", ondelete="CASCADE"), nullable=False),
        sa.Column("id2", _uuid(), sa.ForeignKey("issues.id", ondelete="CASCADE"), nullable=False),
        sa.Column("workspace_id", _uuid(), sa.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False),
        sa.UniqueConstraint("id1", "id2", name="uq_linked_issues_pair"),
    )
    op.create_index(op.f("ix_linked_issues_id1"), "linked_issues", ["id1"])
    op.create_index(op.f("ix_linked_issues_id2"), "linked_issues", ["id2"])

    op.create_table(
        "issue_attachments",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("asset_id", _uuid(), sa.ForeignKey("file_assets.id", ondelete="CASCADE"), nullable=False),
        sa.Column("attributes", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("issue_id", _uuid(), sa.ForeignKey("issues.id", ondelete="CASCADE"), nullable=False),
        sa.Column("project_id", _uuid(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("workspace_id", _uuid(), sa.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_by_id", _uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        _created_at(),
    )
    op.create_index(op.f("ix_issue_attachments_issue_id"), "issue_attachments", ["issue_id"])

    op.create_table(
        "imported_projects",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("import_id", sa.String(length=64), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("source_project_key", sa.String(length=64), nullable=False),
        sa.Column("source_url", sa.String(length=1024), nullable=False),
        sa.Column("project_id", _uuid(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("workspace_id", _uuid(), sa.ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False),
        sa.Column("actor_id", _uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("total_issues", sa.Integer(), nullable=False),
        sa.Column("total_attachments", sa.Integer(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(op.f("ix_imported_projects_import_id"), "imported_projects", ["import_id"])

    op.create_table(
        "email_logs",
        sa.Column("id", _uuid(), primary_key=True, nullable=False),
        sa.Column("import_id", sa.String(length=36), nullable=True),
        sa.Column("to", sa.String(length=255), nullable=False),
        sa.Column("subject", sa.String(length=255), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("kind", email_kind_col, nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(op.f("ix_email_logs_import_id"), "email_logs", ["import_id"])


def downgrade() -> None:
    for table in (
        "email_logs",
        "imported_projects",
        "issue_attachments",
        "linked_issues",
        "issue_blockers",
        "issue_watchers",
        "issue_assignees",
        "issue_labels",
        "issue_links",
        "file_assets",
        "issue_comments",
        "issues",
        "labels",
        "states",
        "project_members",
        "projects",
        "workspace_members",
        "workspaces",
        "users",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    postgresql.ENUM(name="email_kind").drop(bind, checkfirst=True)
    postgresql.ENUM(name="state_group").drop(bind, checkfirst=True)
    postgresql.ENUM(name="user_role").drop(bind, checkfirst=True)
