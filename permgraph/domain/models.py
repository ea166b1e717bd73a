from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import CheckConstraint, ForeignKeyConstraint, Index, UniqueConstraint
from sqlmodel import Field, SQLModel

from permgraph.domain.scopes import PermissionScope


def now_utc() -> datetime:
    return datetime.now(UTC)


class ProjectConfig(SQLModel, table=True):
    __tablename__ = "project_configs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Project(SQLModel, table=True):
    __tablename__ = "projects"

    id: str = Field(primary_key=True)
    config_id: str = Field(foreign_key="project_configs.id", index=True)
    display_name: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Team(SQLModel, table=True):
    __tablename__ = "teams"

    project_id: str = Field(foreign_key="projects.id", primary_key=True)
    team_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    display_name: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class TeamMember(SQLModel, table=True):
    __tablename__ = "team_members"
    __table_args__ = (
        ForeignKeyConstraint(
            ["project_id", "team_id"],
            ["teams.project_id", "teams.team_id"],
            ondelete="CASCADE",
        ),
        Index("ix_team_members_project_user", "project_id", "user_id"),
    )

    project_id: str = Field(primary_key=True)
    user_id: str = Field(primary_key=True)
    team_id: str = Field(primary_key=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class PermissionStorageScope(StrEnum):
    GLOBAL = "GLOBAL"
    TEAM = "TEAM"


class PermissionRecord(SQLModel, table=True):
    __tablename__ = "permissions"
    __table_args__ = (
        UniqueConstraint(
            "project_config_id",
            "queriable_id",
            name="uq_permissions_config_queriable_id",
        ),
        UniqueConstraint(
            "project_id",
            "team_id",
            "queriable_id",
            name="uq_permissions_team_queriable_id",
        ),
        ForeignKeyConstraint(
            ["project_id", "team_id"],
            ["teams.project_id", "teams.team_id"],
            ondelete="CASCADE",
        ),
        CheckConstraint(
            "(project_config_id IS NULL) <> (team_id IS NULL)",
            name="ck_permissions_single_owner",
        ),
        CheckConstraint(
            "scope = 'TEAM' OR team_id IS NULL",
            name="ck_permissions_global_not_team_owned",
        ),
    )

    db_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    queriable_id: str = Field(index=True)
    scope: PermissionStorageScope
    description: str | None = None
    project_config_id: str | None = Field(default=None, foreign_key="project_configs.id", index=True)
    project_id: str | None = Field(default=None, index=True)
    team_id: str | None = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class PermissionEdge(SQLModel, table=True):
    __tablename__ = "permission_edges"

    # parent_db_id has no foreign key: deleting a parent leaves the edge dangling
    child_db_id: str = Field(
        foreign_key="permissions.db_id",
        primary_key=True,
        ondelete="CASCADE",
    )
    parent_db_id: str = Field(primary_key=True, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class TeamMemberDirectPermission(SQLModel, table=True):
    __tablename__ = "team_member_direct_permissions"
    __table_args__ = (
        ForeignKeyConstraint(
            ["project_id", "user_id", "team_id"],
            ["team_members.project_id", "team_members.user_id", "team_members.team_id"],
            ondelete="CASCADE",
        ),
    )

    project_id: str = Field(primary_key=True)
    user_id: str = Field(primary_key=True)
    team_id: str = Field(primary_key=True)
    permission_db_id: str = Field(primary_key=True, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class PermissionDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    database_unique_id: str
    id: str
    scope: PermissionScope
    description: str | None = None
    inherit_from_permission_ids: list[str] = PydanticField(default_factory=list)
    # every edge target, including ones whose parent row no longer exists
    parent_database_ids: list[str] = PydanticField(default_factory=list, exclude=True)


class PermissionCreate(BaseModel):
    id: str
    description: str | None = None
    inherit_from_permission_ids: list[str] = PydanticField(default_factory=list)


class PermissionUpdate(BaseModel):
    id: str | None = None
    description: str | None = None
    inherit_from_permission_ids: list[str] | None = None


class DirectPermissionUpdate(BaseModel):
    id: str
    set: bool
