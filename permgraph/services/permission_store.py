"""Relational adapter between permission rows and ``PermissionDefinition``.

The store never commits. Callers own the transaction: every mutating method
only stages and flushes rows in the session it was given, so a failing
operation leaves nothing behind once the session is rolled back.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, assert_never

from sqlmodel import Session, col, select

from permgraph.domain.errors import (
    PermissionGraphIntegrityError,
    ProjectNotFoundError,
    TeamNotFoundError,
    UserNotFoundError,
)
from permgraph.domain.models import (
    PermissionDefinition,
    PermissionEdge,
    PermissionRecord,
    PermissionStorageScope,
    Project,
    Team,
    TeamMember,
    TeamMemberDirectPermission,
)
from permgraph.domain.scopes import (
    ANY_TEAM,
    GLOBAL,
    AnyTeamScope,
    GlobalScope,
    PermissionScope,
    SpecificTeamScope,
    parent_candidate_scopes,
    specific_team,
)

logger = logging.getLogger(__name__)


def scope_from_record(record: PermissionRecord) -> PermissionScope:
    if record.project_config_id is None and record.team_id is None:
        raise PermissionGraphIntegrityError(
            "permission row has neither a config owner nor a team owner",
            db_id=record.db_id,
        )
    if record.project_config_id is not None and record.team_id is not None:
        raise PermissionGraphIntegrityError(
            "permission row has both a config owner and a team owner",
            db_id=record.db_id,
        )
    if record.scope == PermissionStorageScope.GLOBAL:
        if record.team_id is not None:
            raise PermissionGraphIntegrityError(
                "global permission row is owned by a team",
                db_id=record.db_id,
            )
        return GLOBAL
    if record.team_id is not None:
        return specific_team(record.team_id)
    return ANY_TEAM


class PermissionStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_project(self, project_id: str) -> Project | None:
        return self.session.get(Project, project_id)

    def require_project(self, project_id: str) -> Project:
        project = self.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    def require_team(self, project_id: str, team_id: str) -> Team:
        self.require_project(project_id)
        team = self.session.get(Team, (project_id, team_id))
        if team is None:
            raise TeamNotFoundError(team_id)
        return team

    def get_membership(self, project_id: str, user_id: str, team_id: str) -> TeamMember | None:
        return self.session.get(TeamMember, (project_id, user_id, team_id))

    def owner_fields(self, project_id: str, scope: PermissionScope) -> dict[str, Any]:
        """Column values that place a new row in the collection owning ``scope``."""
        match scope:
            case GlobalScope():
                project = self.require_project(project_id)
                return {
                    "scope": PermissionStorageScope.GLOBAL,
                    "project_config_id": project.config_id,
                }
            case AnyTeamScope():
                project = self.require_project(project_id)
                return {
                    "scope": PermissionStorageScope.TEAM,
                    "project_config_id": project.config_id,
                }
            case SpecificTeamScope(team_id=team_id):
                self.require_team(project_id, team_id)
                return {
                    "scope": PermissionStorageScope.TEAM,
                    "project_id": project_id,
                    "team_id": team_id,
                }
            case _:
                assert_never(scope)

    def _records_by_scope(self, project_id: str, scope: PermissionScope) -> list[PermissionRecord]:
        match scope:
            case GlobalScope() | AnyTeamScope():
                project = self.require_project(project_id)
                storage_scope = (
                    PermissionStorageScope.GLOBAL
                    if isinstance(scope, GlobalScope)
                    else PermissionStorageScope.TEAM
                )
                statement = (
                    select(PermissionRecord)
                    .where(PermissionRecord.project_config_id == project.config_id)
                    .where(PermissionRecord.scope == storage_scope)
                )
            case SpecificTeamScope(team_id=team_id):
                self.require_team(project_id, team_id)
                statement = (
                    select(PermissionRecord)
                    .where(PermissionRecord.project_id == project_id)
                    .where(PermissionRecord.team_id == team_id)
                )
            case _:
                assert_never(scope)
        return list(self.session.exec(statement).all())

    def list_by_scope(self, project_id: str, scope: PermissionScope) -> list[PermissionDefinition]:
        return self.assemble(self._records_by_scope(project_id, scope))

    def list_config_permissions(self, project_id: str) -> list[PermissionDefinition]:
        project = self.require_project(project_id)
        statement = select(PermissionRecord).where(PermissionRecord.project_config_id == project.config_id)
        return self.assemble(self.session.exec(statement).all())

    def list_potential_parents(self, project_id: str, scope: PermissionScope) -> list[PermissionDefinition]:
        # candidate scopes are disjoint storage partitions, so plain concatenation never duplicates
        results: list[PermissionDefinition] = []
        for candidate_scope in parent_candidate_scopes(scope):
            results.extend(self.list_by_scope(project_id, candidate_scope))
        return results

    def find_record(self, project_id: str, scope: PermissionScope, queriable_id: str) -> PermissionRecord | None:
        match scope:
            case GlobalScope() | AnyTeamScope():
                project = self.require_project(project_id)
                statement = (
                    select(PermissionRecord)
                    .where(PermissionRecord.project_config_id == project.config_id)
                    .where(PermissionRecord.queriable_id == queriable_id)
                )
                record = self.session.exec(statement).first()
                # global and any-team rows share the config's id namespace
                if record is not None and scope_from_record(record) != scope:
                    return None
                return record
            case SpecificTeamScope(team_id=team_id):
                self.require_team(project_id, team_id)
                statement = (
                    select(PermissionRecord)
                    .where(PermissionRecord.project_id == project_id)
                    .where(PermissionRecord.team_id == team_id)
                    .where(PermissionRecord.queriable_id == queriable_id)
                )
                return self.session.exec(statement).first()
            case _:
                assert_never(scope)

    def find_by_queriable_id(
        self,
        project_id: str,
        scope: PermissionScope,
        queriable_id: str,
    ) -> PermissionDefinition | None:
        record = self.find_record(project_id, scope, queriable_id)
        if record is None:
            return None
        return self.assemble([record])[0]

    def get_by_db_ids(self, db_ids: Iterable[str]) -> list[PermissionDefinition]:
        wanted = list(dict.fromkeys(db_ids))
        if not wanted:
            return []
        records = self.session.exec(
            select(PermissionRecord).where(col(PermissionRecord.db_id).in_(wanted))
        ).all()
        by_db_id = {record.db_id: record for record in records}
        missing = [db_id for db_id in wanted if db_id not in by_db_id]
        if missing:
            raise PermissionGraphIntegrityError("referenced permission rows are missing", db_ids=missing)
        return self.assemble(by_db_id[db_id] for db_id in wanted)

    def assemble(self, records: Iterable[PermissionRecord]) -> list[PermissionDefinition]:
        records = list(records)
        if not records:
            return []
        child_ids = [record.db_id for record in records]
        edges = self.session.exec(
            select(PermissionEdge).where(col(PermissionEdge.child_db_id).in_(child_ids))
        ).all()
        parents_by_child: dict[str, list[str]] = {db_id: [] for db_id in child_ids}
        for edge in edges:
            parents_by_child[edge.child_db_id].append(edge.parent_db_id)

        parent_ids = {edge.parent_db_id for edge in edges}
        queriable_by_db_id: dict[str, str] = {}
        if parent_ids:
            rows = self.session.exec(
                select(PermissionRecord.db_id, PermissionRecord.queriable_id).where(
                    col(PermissionRecord.db_id).in_(parent_ids)
                )
            ).all()
            queriable_by_db_id = {db_id: queriable_id for db_id, queriable_id in rows}

        definitions: list[PermissionDefinition] = []
        for record in records:
            parent_db_ids = parents_by_child[record.db_id]
            definitions.append(
                PermissionDefinition(
                    database_unique_id=record.db_id,
                    id=record.queriable_id,
                    scope=scope_from_record(record),
                    description=record.description or None,
                    inherit_from_permission_ids=[
                        queriable_by_db_id[db_id] for db_id in parent_db_ids if db_id in queriable_by_db_id
                    ],
                    parent_database_ids=parent_db_ids,
                )
            )
        return definitions

    def add_permission(self, record: PermissionRecord) -> PermissionRecord:
        self.session.add(record)
        self.session.flush()
        return record

    def upsert_edges(self, child_db_id: str, parent_db_ids: Iterable[str]) -> None:
        """Make the child's parent edge set exactly ``parent_db_ids``.

        Edges that already exist are left untouched; the rest are added or
        removed in the current transaction.
        """
        wanted = set(parent_db_ids)
        existing = self.session.exec(
            select(PermissionEdge).where(PermissionEdge.child_db_id == child_db_id)
        ).all()
        existing_ids = {edge.parent_db_id for edge in existing}
        for edge in existing:
            if edge.parent_db_id not in wanted:
                self.session.delete(edge)
        for parent_db_id in wanted - existing_ids:
            self.session.add(PermissionEdge(child_db_id=child_db_id, parent_db_id=parent_db_id))
        self.session.flush()
        logger.debug(
            "replaced inheritance edges",
            extra={
                "child_db_id": child_db_id,
                "added": len(wanted - existing_ids),
                "removed": len(existing_ids - wanted),
            },
        )

    def delete_permission(self, record: PermissionRecord) -> None:
        # edges are owned by the child; edges naming this row as parent stay behind
        for edge in self.session.exec(
            select(PermissionEdge).where(PermissionEdge.child_db_id == record.db_id)
        ).all():
            self.session.delete(edge)
        self.session.flush()
        self.session.delete(record)
        self.session.flush()

    def list_direct_grants(self, project_id: str, user_id: str, team_id: str) -> list[str]:
        if self.get_membership(project_id, user_id, team_id) is None:
            raise UserNotFoundError(user_id, team_id)
        statement = (
            select(TeamMemberDirectPermission.permission_db_id)
            .where(TeamMemberDirectPermission.project_id == project_id)
            .where(TeamMemberDirectPermission.user_id == user_id)
            .where(TeamMemberDirectPermission.team_id == team_id)
        )
        return list(self.session.exec(statement).all())

    def set_direct_grant(
        self,
        project_id: str,
        user_id: str,
        team_id: str,
        permission_db_id: str,
        granted: bool,
    ) -> bool:
        """Grant or revoke one permission; returns whether anything changed."""
        key = (project_id, user_id, team_id, permission_db_id)
        existing = self.session.get(TeamMemberDirectPermission, key)
        if granted:
            if existing is not None:
                return False
            self.session.add(
                TeamMemberDirectPermission(
                    project_id=project_id,
                    user_id=user_id,
                    team_id=team_id,
                    permission_db_id=permission_db_id,
                )
            )
        else:
            if existing is None:
                return False
            self.session.delete(existing)
        self.session.flush()
        return True
