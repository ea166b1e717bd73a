"""permission graph tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610190001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "project_configs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_project_configs_created_at", "project_configs", ["created_at"])

    op.create_table(
        "projects",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("config_id", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["config_id"], ["project_configs.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_projects_config_id", "projects", ["config_id"])
    op.create_index("ix_projects_created_at", "projects", ["created_at"])

    op.create_table(
        "teams",
        sa.Column("project_id", sa.String(), nullable=False),
        sa.Column("team_id", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"]),
        sa.PrimaryKeyConstraint("project_id", "team_id"),
    )
    op.create_index("ix_teams_created_at", "teams", ["created_at"])

    op.create_table(
        "team_members",
        sa.Column("project_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("team_id", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["project_id", "team_id"],
            ["teams.project_id", "teams.team_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("project_id", "user_id", "team_id"),
    )
    op.create_index("ix_team_members_project_user", "team_members", ["project_id", "user_id"])
    op.create_index("ix_team_members_created_at", "team_members", ["created_at"])

    op.create_table(
        "permissions",
        sa.Column("db_id", sa.String(), nullable=False),
        sa.Column("queriable_id", sa.String(), nullable=False),
        sa.Column("scope", sa.Enum("GLOBAL", "TEAM", name="permissionstoragescope"), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("project_config_id", sa.String(), nullable=True),
        sa.Column("project_id", sa.String(), nullable=True),
        sa.Column("team_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["project_config_id"], ["project_configs.id"]),
        sa.ForeignKeyConstraint(
            ["project_id", "team_id"],
            ["teams.project_id", "teams.team_id"],
            ondelete="CASCADE",
        ),
        sa.CheckConstraint(
            "(project_config_id IS NULL) <> (team_id IS NULL)",
            name="ck_permissions_single_owner",
        ),
        sa.CheckConstraint(
            "scope = 'TEAM' OR team_id IS NULL",
            name="ck_permissions_global_not_team_owned",
        ),
        sa.PrimaryKeyConstraint("db_id"),
        sa.UniqueConstraint(
            "project_config_id",
            "queriable_id",
            name="uq_permissions_config_queriable_id",
        ),
        sa.UniqueConstraint(
            "project_id",
            "team_id",
            "queriable_id",
            name="uq_permissions_team_queriable_id",
        ),
    )
    op.create_index("ix_permissions_queriable_id", "permissions", ["queriable_id"])
    op.create_index("ix_permissions_project_config_id", "permissions", ["project_config_id"])
    op.create_index("ix_permissions_project_id", "permissions", ["project_id"])
    op.create_index("ix_permissions_team_id", "permissions", ["team_id"])
    op.create_index("ix_permissions_created_at", "permissions", ["created_at"])

    op.create_table(
        "permission_edges",
        sa.Column("child_db_id", sa.String(), nullable=False),
        sa.Column("parent_db_id", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["child_db_id"], ["permissions.db_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("child_db_id", "parent_db_id"),
    )
    op.create_index("ix_permission_edges_parent_db_id", "permission_edges", ["parent_db_id"])
    op.create_index("ix_permission_edges_created_at", "permission_edges", ["created_at"])

    op.create_table(
        "team_member_direct_permissions",
        sa.Column("project_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("team_id", sa.String(), nullable=False),
        sa.Column("permission_db_id", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["project_id", "user_id", "team_id"],
            ["team_members.project_id", "team_members.user_id", "team_members.team_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("project_id", "user_id", "team_id", "permission_db_id"),
    )
    op.create_index(
        "ix_team_member_direct_permissions_permission_db_id",
        "team_member_direct_permissions",
        ["permission_db_id"],
    )
    op.create_index(
        "ix_team_member_direct_permissions_created_at",
        "team_member_direct_permissions",
        ["created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_team_member_direct_permissions_created_at", table_name="team_member_direct_permissions")
    op.drop_index(
        "ix_team_member_direct_permissions_permission_db_id",
        table_name="team_member_direct_permissions",
    )
    op.drop_table("team_member_direct_permissions")

    op.drop_index("ix_permission_edges_created_at", table_name="permission_edges")
    op.drop_index("ix_permission_edges_parent_db_id", table_name="permission_edges")
    op.drop_table("permission_edges")

    op.drop_index("ix_permissions_created_at", table_name="permissions")
    op.drop_index("ix_permissions_team_id", table_name="permissions")
    op.drop_index("ix_permissions_project_id", table_name="permissions")
    op.drop_index("ix_permissions_project_config_id", table_name="permissions")
    op.drop_index("ix_permissions_queriable_id", table_name="permissions")
    op.drop_table("permissions")
    sa.Enum(name="permissionstoragescope").drop(op.get_bind(), checkfirst=True)

    op.drop_index("ix_team_members_created_at", table_name="team_members")
    op.drop_index("ix_team_members_project_user", table_name="team_members")
    op.drop_table("team_members")

    op.drop_index("ix_teams_created_at", table_name="teams")
    op.drop_table("teams")

    op.drop_index("ix_projects_created_at", table_name="projects")
    op.drop_index("ix_projects_config_id", table_name="projects")
    op.drop_table("projects")

    op.drop_index("ix_project_configs_created_at", table_name="project_configs")
    op.drop_table("project_configs")
