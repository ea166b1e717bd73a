from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from permgraph.domain.errors import (
    ConflictError,
    PermissionGraphIntegrityError,
    PermissionNotFoundError,
    PermissionScopeMismatchError,
    UserNotFoundError,
)
from permgraph.domain.models import (
    DirectPermissionUpdate,
    PermissionCreate,
    PermissionDefinition,
    PermissionRecord,
    PermissionUpdate,
)
from permgraph.domain.scopes import (
    PermissionScope,
    PermissionType,
    SpecificTeamScope,
    describe_scope,
    other_permission_type,
    permission_type_of,
    resolution_root_scopes,
    specific_team,
)
from permgraph.infra.db import get_engine
from permgraph.services.permission_store import PermissionStore

logger = logging.getLogger(__name__)


def expand_inheritance(
    root_db_ids: Iterable[str],
    permissions_by_db_id: Mapping[str, PermissionDefinition],
) -> list[PermissionDefinition]:
    """Transitive closure of ``root_db_ids`` through inheritance edges.

    Each permission is visited once, so shared ancestors and cycles terminate.
    Result order follows the depth-first walk and carries no meaning.
    """
    result: dict[str, PermissionDefinition] = {}
    pending = list(root_db_ids)
    while pending:
        db_id = pending.pop()
        permission = permissions_by_db_id.get(db_id)
        if permission is None:
            raise PermissionGraphIntegrityError(
                "permission referenced by a grant or edge does not exist",
                db_id=db_id,
                resolved=sorted(result),
            )
        if db_id in result:
            continue
        result[db_id] = permission
        pending.extend(permission.parent_database_ids)
    return list(result.values())


def index_by_queriable_id(permissions: Iterable[PermissionDefinition]) -> dict[str, PermissionDefinition]:
    # later entries win, so callers pass broadest scope first to let narrower scopes shadow
    return {permission.id: permission for permission in permissions}


class PermissionService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _resolve_parent_db_ids(
        self,
        store: PermissionStore,
        project_id: str,
        scope: PermissionScope,
        parent_ids: Sequence[str],
    ) -> list[str]:
        candidates = index_by_queriable_id(store.list_potential_parents(project_id, scope))
        parent_db_ids: list[str] = []
        for parent_id in parent_ids:
            parent = candidates.get(parent_id)
            if parent is None:
                raise PermissionNotFoundError(parent_id)
            if parent.database_unique_id not in parent_db_ids:
                parent_db_ids.append(parent.database_unique_id)
        return parent_db_ids

    def _find_or_raise(
        self,
        store: PermissionStore,
        project_id: str,
        scope: PermissionScope,
        permission_id: str,
    ) -> PermissionRecord:
        record = store.find_record(project_id, scope, permission_id)
        if record is None:
            raise PermissionNotFoundError(permission_id)
        return record

    def _commit(self, session: Session, permission_id: str) -> None:
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise ConflictError(
                f"permission id already exists in scope: {permission_id}",
                permission_id=permission_id,
            ) from exc

    def list_permissions(
        self,
        project_id: str,
        scope: PermissionScope | None = None,
    ) -> list[PermissionDefinition]:
        with self._session() as session:
            store = PermissionStore(session)
            if scope is None:
                return store.list_config_permissions(project_id)
            return store.list_by_scope(project_id, scope)

    def list_potential_parents(self, project_id: str, scope: PermissionScope) -> list[PermissionDefinition]:
        with self._session() as session:
            return PermissionStore(session).list_potential_parents(project_id, scope)

    def get_permission(self, project_id: str, scope: PermissionScope, permission_id: str) -> PermissionDefinition:
        with self._session() as session:
            permission = PermissionStore(session).find_by_queriable_id(project_id, scope, permission_id)
            if permission is None:
                raise PermissionNotFoundError(permission_id)
            return permission

    def create_permission(
        self,
        project_id: str,
        scope: PermissionScope,
        payload: PermissionCreate,
    ) -> PermissionDefinition:
        with self._session() as session:
            store = PermissionStore(session)
            owner = store.owner_fields(project_id, scope)
            parent_db_ids = self._resolve_parent_db_ids(
                store,
                project_id,
                scope,
                payload.inherit_from_permission_ids,
            )
            record = PermissionRecord(
                queriable_id=payload.id,
                description=payload.description,
                **owner,
            )
            try:
                store.add_permission(record)
            except IntegrityError as exc:
                session.rollback()
                raise ConflictError(
                    f"permission id already exists in scope: {payload.id}",
                    permission_id=payload.id,
                ) from exc
            store.upsert_edges(record.db_id, parent_db_ids)
            self._commit(session, payload.id)
            logger.info(
                "permission created",
                extra={
                    "project_id": project_id,
                    "scope": describe_scope(scope),
                    "permission_id": payload.id,
                    "parent_count": len(parent_db_ids),
                },
            )
            return store.get_by_db_ids([record.db_id])[0]

    def update_permission(
        self,
        project_id: str,
        scope: PermissionScope,
        permission_id: str,
        payload: PermissionUpdate,
    ) -> PermissionDefinition:
        changed = payload.model_fields_set
        with self._session() as session:
            store = PermissionStore(session)
            record = self._find_or_raise(store, project_id, scope, permission_id)

            if "inherit_from_permission_ids" in changed and payload.inherit_from_permission_ids is not None:
                parent_db_ids = self._resolve_parent_db_ids(
                    store,
                    project_id,
                    scope,
                    payload.inherit_from_permission_ids,
                )
                store.upsert_edges(record.db_id, parent_db_ids)

            # after edge writes, so a rename conflict surfaces at commit
            if "id" in changed and payload.id is not None:
                record.queriable_id = payload.id
            if "description" in changed:
                record.description = payload.description
            session.add(record)
            self._commit(session, record.queriable_id)
            logger.info(
                "permission updated",
                extra={
                    "project_id": project_id,
                    "scope": describe_scope(scope),
                    "permission_id": permission_id,
                    "fields": sorted(changed),
                },
            )
            return store.get_by_db_ids([record.db_id])[0]

    def delete_permission(self, project_id: str, scope: PermissionScope, permission_id: str) -> None:
        with self._session() as session:
            store = PermissionStore(session)
            record = self._find_or_raise(store, project_id, scope, permission_id)
            store.delete_permission(record)
            session.commit()
        logger.info(
            "permission deleted",
            extra={
                "project_id": project_id,
                "scope": describe_scope(scope),
                "permission_id": permission_id,
            },
        )

    def resolve_effective_permissions(
        self,
        project_id: str,
        user_id: str,
        team_id: str,
        permission_type: PermissionType,
    ) -> list[PermissionDefinition]:
        with self._session() as session:
            store = PermissionStore(session)
            # global < any-team < this team: everything a grant of either type may legally reach
            visible = store.list_potential_parents(project_id, specific_team(team_id))
            by_db_id = {permission.database_unique_id: permission for permission in visible}
            grant_ids = store.list_direct_grants(project_id, user_id, team_id)

        roots: list[str] = []
        for db_id in grant_ids:
            granted = by_db_id.get(db_id)
            if granted is None:
                logger.error(
                    "direct grant references a missing permission",
                    extra={"project_id": project_id, "team_id": team_id, "user_id": user_id, "db_id": db_id},
                )
                raise PermissionGraphIntegrityError(
                    "direct grant references a missing permission",
                    db_id=db_id,
                    user_id=user_id,
                    team_id=team_id,
                )
            if permission_type_of(granted.scope) == permission_type:
                roots.append(db_id)

        try:
            effective = expand_inheritance(roots, by_db_id)
        except PermissionGraphIntegrityError as exc:
            logger.error(
                "inheritance edge references a missing permission",
                extra={"project_id": project_id, "team_id": team_id, "user_id": user_id, **exc.details},
            )
            raise
        logger.debug(
            "resolved effective permissions",
            extra={
                "project_id": project_id,
                "team_id": team_id,
                "user_id": user_id,
                "permission_type": str(permission_type),
                "direct": len(roots),
                "effective": len(effective),
            },
        )
        return effective

    def check_user_permission(
        self,
        project_id: str,
        user_id: str,
        team_id: str,
        permission_type: PermissionType,
        permission_id: str,
    ) -> PermissionDefinition:
        effective = self.resolve_effective_permissions(project_id, user_id, team_id, permission_type)
        matches = [permission for permission in effective if permission.id == permission_id]
        if matches:
            # a team-local definition shadows an any-team one with the same id
            matches.sort(key=lambda permission: not isinstance(permission.scope, SpecificTeamScope))
            return matches[0]

        # diagnostic only: never grants across types
        other_type = other_permission_type(permission_type)
        with self._session() as session:
            store = PermissionStore(session)
            for scope in resolution_root_scopes(other_type, team_id):
                if store.find_record(project_id, scope, permission_id) is not None:
                    raise PermissionScopeMismatchError(
                        permission_id,
                        found_scope=str(other_type),
                        expected_scope=str(permission_type),
                    )
        raise PermissionNotFoundError(permission_id)

    def list_user_direct_permissions(
        self,
        project_id: str,
        team_id: str,
        user_id: str,
        permission_type: PermissionType,
    ) -> list[PermissionDefinition]:
        with self._session() as session:
            store = PermissionStore(session)
            direct = store.get_by_db_ids(store.list_direct_grants(project_id, user_id, team_id))
        return [permission for permission in direct if permission_type_of(permission.scope) == permission_type]

    def grant_or_revoke_direct_permissions(
        self,
        project_id: str,
        user_id: str,
        scope: PermissionScope,
        updates: Sequence[DirectPermissionUpdate],
        *,
        team_id: str | None = None,
    ) -> None:
        """Apply a batch of direct grant changes for one team member.

        Every id is validated against ``scope`` before anything is written and
        the whole batch commits together. Granting a held permission or
        revoking an unheld one is a no-op.
        """
        if isinstance(scope, SpecificTeamScope):
            if team_id is not None and team_id != scope.team_id:
                raise ValueError("team_id does not match the specific-team scope")
            team_id = scope.team_id
        if team_id is None:
            raise ValueError("team_id is required for global and any-team grants")

        with self._session() as session:
            store = PermissionStore(session)
            candidates = index_by_queriable_id(store.list_by_scope(project_id, scope))
            resolved: list[tuple[str, bool]] = []
            for update in updates:
                permission = candidates.get(update.id)
                if permission is None:
                    raise PermissionNotFoundError(update.id)
                resolved.append((permission.database_unique_id, update.set))

            if store.get_membership(project_id, user_id, team_id) is None:
                raise UserNotFoundError(user_id, team_id)

            changed = 0
            for db_id, granted in resolved:
                if store.set_direct_grant(project_id, user_id, team_id, db_id, granted):
                    changed += 1
            session.commit()
        logger.info(
            "direct permissions updated",
            extra={
                "project_id": project_id,
                "team_id": team_id,
                "user_id": user_id,
                "scope": describe_scope(scope),
                "requested": len(resolved),
                "changed": changed,
            },
        )

    def _set_team_user_permission(
        self,
        project_id: str,
        team_id: str,
        user_id: str,
        permission_type: PermissionType,
        permission_id: str,
        granted: bool,
    ) -> None:
        with self._session() as session:
            store = PermissionStore(session)
            record: PermissionRecord | None = None
            for scope in resolution_root_scopes(permission_type, team_id):
                record = store.find_record(project_id, scope, permission_id)
                if record is not None:
                    break
            if record is None:
                raise PermissionNotFoundError(permission_id)
            if store.get_membership(project_id, user_id, team_id) is None:
                raise UserNotFoundError(user_id, team_id)
            store.set_direct_grant(project_id, user_id, team_id, record.db_id, granted)
            session.commit()

    def grant_team_user_permission(
        self,
        project_id: str,
        team_id: str,
        user_id: str,
        permission_type: PermissionType,
        permission_id: str,
    ) -> None:
        self._set_team_user_permission(project_id, team_id, user_id, permission_type, permission_id, True)

    def revoke_team_user_permission(
        self,
        project_id: str,
        team_id: str,
        user_id: str,
        permission_type: PermissionType,
        permission_id: str,
    ) -> None:
        self._set_team_user_permission(project_id, team_id, user_id, permission_type, permission_id, False)
