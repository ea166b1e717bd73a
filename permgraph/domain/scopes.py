from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Literal, assert_never

from pydantic import BaseModel, ConfigDict, Field


class PermissionType(StrEnum):
    TEAM = "team"
    GLOBAL = "global"


class _ScopeBase(BaseModel):
    model_config = ConfigDict(frozen=True)


class GlobalScope(_ScopeBase):
    type: Literal["global"] = "global"


class AnyTeamScope(_ScopeBase):
    type: Literal["any-team"] = "any-team"


class SpecificTeamScope(_ScopeBase):
    type: Literal["specific-team"] = "specific-team"
    team_id: str


PermissionScope = Annotated[
    GlobalScope | AnyTeamScope | SpecificTeamScope,
    Field(discriminator="type"),
]

GLOBAL = GlobalScope()
ANY_TEAM = AnyTeamScope()


def specific_team(team_id: str) -> SpecificTeamScope:
    return SpecificTeamScope(team_id=team_id)


def parent_candidate_scopes(scope: PermissionScope) -> list[PermissionScope]:
    """Scopes a permission defined at ``scope`` may inherit from, broadest first."""
    match scope:
        case GlobalScope():
            return [GLOBAL]
        case AnyTeamScope():
            return [GLOBAL, ANY_TEAM]
        case SpecificTeamScope():
            return [GLOBAL, ANY_TEAM, scope]
        case _:
            assert_never(scope)


def resolution_root_scopes(permission_type: PermissionType, team_id: str) -> list[PermissionScope]:
    """Scopes a membership of the given type may hold direct grants in."""
    match permission_type:
        case PermissionType.TEAM:
            return [specific_team(team_id), ANY_TEAM]
        case PermissionType.GLOBAL:
            return [GLOBAL]
        case _:
            assert_never(permission_type)


def other_permission_type(permission_type: PermissionType) -> PermissionType:
    match permission_type:
        case PermissionType.TEAM:
            return PermissionType.GLOBAL
        case PermissionType.GLOBAL:
            return PermissionType.TEAM
        case _:
            assert_never(permission_type)


def permission_type_of(scope: PermissionScope) -> PermissionType:
    match scope:
        case GlobalScope():
            return PermissionType.GLOBAL
        case AnyTeamScope() | SpecificTeamScope():
            return PermissionType.TEAM
        case _:
            assert_never(scope)


def describe_scope(scope: PermissionScope) -> str:
    match scope:
        case GlobalScope():
            return "global"
        case AnyTeamScope():
            return "any-team"
        case SpecificTeamScope(team_id=team_id):
            return f"specific-team:{team_id}"
        case _:
            assert_never(scope)
