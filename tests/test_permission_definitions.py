from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine, select

from permgraph.domain.errors import (
    ConflictError,
    PermissionNotFoundError,
    ProjectNotFoundError,
    TeamNotFoundError,
)
from permgraph.domain.models import (
    PermissionCreate,
    PermissionEdge,
    PermissionRecord,
    PermissionUpdate,
    Project,
    ProjectConfig,
    Team,
)
from permgraph.domain.scopes import ANY_TEAM, GLOBAL, AnyTeamScope, GlobalScope, specific_team
from permgraph.infra import db
from permgraph.services.permission_service import PermissionService


@pytest.fixture()
def service(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[PermissionService, None, None]:
    db_path = tmp_path / "permission_definitions_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    yield PermissionService()
    test_engine.dispose()


def _seed_project(project_id: str, team_ids: list[str]) -> None:
    with Session(db.get_engine()) as session:
        config = ProjectConfig()
        session.add(config)
        session.flush()
        session.add(Project(id=project_id, config_id=config.id))
        session.flush()
        for team_id in team_ids:
            session.add(Team(project_id=project_id, team_id=team_id))
        session.commit()


def _ids(permissions: list) -> set[str]:
    return {permission.id for permission in permissions}


def test_create_then_list_round_trip(service: PermissionService) -> None:
    _seed_project("proj", ["t1"])
    service.create_permission("proj", GLOBAL, PermissionCreate(id="read"))
    service.create_permission("proj", GLOBAL, PermissionCreate(id="list"))
    created = service.create_permission(
        "proj",
        GLOBAL,
        PermissionCreate(
            id="write",
            description="modify resources",
            inherit_from_permission_ids=["read", "list"],
        ),
    )

    assert created.database_unique_id
    assert created.scope == GlobalScope()

    listed = {permission.id: permission for permission in service.list_permissions("proj", GLOBAL)}
    assert set(listed) == {"read", "list", "write"}
    write = listed["write"]
    assert write.description == "modify resources"
    assert set(write.inherit_from_permission_ids) == {"read", "list"}
    assert write.database_unique_id == created.database_unique_id


def test_scope_partitions_are_listed_separately(service: PermissionService) -> None:
    _seed_project("proj", ["t1", "t2"])
    service.create_permission("proj", GLOBAL, PermissionCreate(id="g"))
    service.create_permission("proj", ANY_TEAM, PermissionCreate(id="a"))
    service.create_permission("proj", specific_team("t1"), PermissionCreate(id="t1-only"))
    service.create_permission("proj", specific_team("t2"), PermissionCreate(id="t2-only"))

    assert _ids(service.list_permissions("proj", GLOBAL)) == {"g"}
    assert _ids(service.list_permissions("proj", ANY_TEAM)) == {"a"}
    assert _ids(service.list_permissions("proj", specific_team("t1"))) == {"t1-only"}
    assert _ids(service.list_permissions("proj", specific_team("t2"))) == {"t2-only"}
    assert _ids(service.list_permissions("proj")) == {"g", "a"}


def test_potential_parents_follow_scope_hierarchy(service: PermissionService) -> None:
    _seed_project("proj", ["t1", "t2"])
    service.create_permission("proj", GLOBAL, PermissionCreate(id="g"))
    service.create_permission("proj", ANY_TEAM, PermissionCreate(id="a"))
    service.create_permission("proj", specific_team("t1"), PermissionCreate(id="s1"))
    service.create_permission("proj", specific_team("t2"), PermissionCreate(id="s2"))

    assert _ids(service.list_potential_parents("proj", GLOBAL)) == {"g"}
    assert _ids(service.list_potential_parents("proj", ANY_TEAM)) == {"g", "a"}
    assert _ids(service.list_potential_parents("proj", specific_team("t1"))) == {"g", "a", "s1"}


def test_team_permission_may_inherit_from_broader_scopes(service: PermissionService) -> None:
    _seed_project("proj", ["t1"])
    service.create_permission("proj", GLOBAL, PermissionCreate(id="g"))
    service.create_permission("proj", ANY_TEAM, PermissionCreate(id="a"))

    created = service.create_permission(
        "proj",
        specific_team("t1"),
        PermissionCreate(id="local", inherit_from_permission_ids=["g", "a"]),
    )
    assert set(created.inherit_from_permission_ids) == {"g", "a"}


def test_global_permission_cannot_inherit_from_narrower_scope(service: PermissionService) -> None:
    _seed_project("proj", ["t1"])
    service.create_permission("proj", ANY_TEAM, PermissionCreate(id="a"))
    service.create_permission("proj", specific_team("t1"), PermissionCreate(id="s"))
    service.create_permission("proj", GLOBAL, PermissionCreate(id="g"))

    with pytest.raises(PermissionNotFoundError) as any_team_exc:
        service.create_permission("proj", GLOBAL, PermissionCreate(id="g2", inherit_from_permission_ids=["a"]))
    assert any_team_exc.value.permission_id == "a"

    with pytest.raises(PermissionNotFoundError):
        service.create_permission("proj", GLOBAL, PermissionCreate(id="g3", inherit_from_permission_ids=["s"]))

    with pytest.raises(PermissionNotFoundError):
        service.update_permission("proj", GLOBAL, "g", PermissionUpdate(inherit_from_permission_ids=["a"]))

    assert _ids(service.list_permissions("proj", GLOBAL)) == {"g"}
    assert service.get_permission("proj", GLOBAL, "g").inherit_from_permission_ids == []


def test_other_team_permissions_are_not_parent_candidates(service: PermissionService) -> None:
    _seed_project("proj", ["t1", "t2"])
    service.create_permission("proj", specific_team("t2"), PermissionCreate(id="elsewhere"))

    with pytest.raises(PermissionNotFoundError):
        service.create_permission(
            "proj",
            specific_team("t1"),
            PermissionCreate(id="local", inherit_from_permission_ids=["elsewhere"]),
        )


def test_create_with_unknown_parent_creates_nothing(service: PermissionService) -> None:
    _seed_project("proj", [])
    service.create_permission("proj", GLOBAL, PermissionCreate(id="read"))

    with pytest.raises(PermissionNotFoundError) as exc_info:
        service.create_permission(
            "proj",
            GLOBAL,
            PermissionCreate(id="draft", inherit_from_permission_ids=["read", "nonexistent"]),
        )
    assert exc_info.value.permission_id == "nonexistent"
    assert "draft" not in _ids(service.list_permissions("proj", GLOBAL))

    with Session(db.get_engine()) as session:
        assert session.exec(select(PermissionEdge)).all() == []


def test_update_replaces_edge_set(service: PermissionService) -> None:
    _seed_project("proj", [])
    for permission_id in ("a", "b", "c"):
        service.create_permission("proj", GLOBAL, PermissionCreate(id=permission_id))
    service.create_permission("proj", GLOBAL, PermissionCreate(id="x", inherit_from_permission_ids=["a", "b"]))

    updated = service.update_permission(
        "proj",
        GLOBAL,
        "x",
        PermissionUpdate(inherit_from_permission_ids=["b", "c"]),
    )
    assert set(updated.inherit_from_permission_ids) == {"b", "c"}
    assert set(service.get_permission("proj", GLOBAL, "x").inherit_from_permission_ids) == {"b", "c"}

    cleared = service.update_permission("proj", GLOBAL, "x", PermissionUpdate(inherit_from_permission_ids=[]))
    assert cleared.inherit_from_permission_ids == []


def test_update_keeps_edges_when_field_absent(service: PermissionService) -> None:
    _seed_project("proj", [])
    service.create_permission("proj", GLOBAL, PermissionCreate(id="a"))
    service.create_permission(
        "proj",
        GLOBAL,
        PermissionCreate(id="x", description="before", inherit_from_permission_ids=["a"]),
    )

    updated = service.update_permission("proj", GLOBAL, "x", PermissionUpdate(description="after"))
    assert updated.description == "after"
    assert updated.inherit_from_permission_ids == ["a"]

    cleared = service.update_permission("proj", GLOBAL, "x", PermissionUpdate(description=None))
    assert cleared.description is None
    assert cleared.inherit_from_permission_ids == ["a"]


def test_rename_preserves_edges_in_both_directions(service: PermissionService) -> None:
    _seed_project("proj", [])
    service.create_permission("proj", GLOBAL, PermissionCreate(id="base"))
    service.create_permission("proj", GLOBAL, PermissionCreate(id="mid", inherit_from_permission_ids=["base"]))
    service.create_permission("proj", GLOBAL, PermissionCreate(id="top", inherit_from_permission_ids=["mid"]))

    renamed = service.update_permission("proj", GLOBAL, "mid", PermissionUpdate(id="middle"))
    assert renamed.id == "middle"
    assert renamed.inherit_from_permission_ids == ["base"]

    with pytest.raises(PermissionNotFoundError):
        service.get_permission("proj", GLOBAL, "mid")
    assert service.get_permission("proj", GLOBAL, "top").inherit_from_permission_ids == ["middle"]


def test_update_unknown_permission(service: PermissionService) -> None:
    _seed_project("proj", [])
    with pytest.raises(PermissionNotFoundError):
        service.update_permission("proj", GLOBAL, "ghost", PermissionUpdate(description="x"))


def test_update_is_scoped_to_the_owning_collection(service: PermissionService) -> None:
    _seed_project("proj", ["t1"])
    service.create_permission("proj", specific_team("t1"), PermissionCreate(id="local"))

    updated = service.update_permission(
        "proj",
        specific_team("t1"),
        "local",
        PermissionUpdate(description="team scoped"),
    )
    assert updated.description == "team scoped"

    with pytest.raises(PermissionNotFoundError):
        service.update_permission("proj", ANY_TEAM, "local", PermissionUpdate(description="nope"))


def test_duplicate_id_in_shared_configuration_conflicts(service: PermissionService) -> None:
    _seed_project("proj", ["t1"])
    service.create_permission("proj", GLOBAL, PermissionCreate(id="read"))

    with pytest.raises(ConflictError):
        service.create_permission("proj", GLOBAL, PermissionCreate(id="read"))
    # global and any-team share the configuration's id namespace
    with pytest.raises(ConflictError):
        service.create_permission("proj", ANY_TEAM, PermissionCreate(id="read"))

    team_read = service.create_permission("proj", specific_team("t1"), PermissionCreate(id="read"))
    assert team_read.scope == specific_team("t1")


def test_rename_onto_existing_id_conflicts(service: PermissionService) -> None:
    _seed_project("proj", [])
    service.create_permission("proj", GLOBAL, PermissionCreate(id="a"))
    service.create_permission("proj", GLOBAL, PermissionCreate(id="b"))

    with pytest.raises(ConflictError):
        service.update_permission("proj", GLOBAL, "b", PermissionUpdate(id="a"))
    assert _ids(service.list_permissions("proj", GLOBAL)) == {"a", "b"}


def test_team_local_parent_shadows_shared_parent_with_same_id(service: PermissionService) -> None:
    _seed_project("proj", ["t1"])
    service.create_permission("proj", GLOBAL, PermissionCreate(id="read"))
    team_read = service.create_permission("proj", specific_team("t1"), PermissionCreate(id="read"))

    child = service.create_permission(
        "proj",
        specific_team("t1"),
        PermissionCreate(id="child", inherit_from_permission_ids=["read"]),
    )
    assert child.parent_database_ids == [team_read.database_unique_id]


def test_delete_permission(service: PermissionService) -> None:
    _seed_project("proj", ["t1"])
    service.create_permission("proj", GLOBAL, PermissionCreate(id="read"))
    service.create_permission("proj", specific_team("t1"), PermissionCreate(id="local"))

    with pytest.raises(PermissionNotFoundError):
        service.delete_permission("proj", ANY_TEAM, "read")

    service.delete_permission("proj", GLOBAL, "read")
    service.delete_permission("proj", specific_team("t1"), "local")
    assert service.list_permissions("proj", GLOBAL) == []
    assert service.list_permissions("proj", specific_team("t1")) == []

    with pytest.raises(PermissionNotFoundError) as exc_info:
        service.delete_permission("proj", GLOBAL, "read")
    assert exc_info.value.permission_id == "read"


def test_delete_leaves_child_edges_dangling(service: PermissionService) -> None:
    _seed_project("proj", [])
    parent = service.create_permission("proj", GLOBAL, PermissionCreate(id="parent"))
    service.create_permission("proj", ANY_TEAM, PermissionCreate(id="child", inherit_from_permission_ids=["parent"]))

    service.delete_permission("proj", GLOBAL, "parent")

    child = service.get_permission("proj", ANY_TEAM, "child")
    assert child.scope == AnyTeamScope()
    assert child.inherit_from_permission_ids == []
    assert child.parent_database_ids == [parent.database_unique_id]


def test_delete_removes_own_edges(service: PermissionService) -> None:
    _seed_project("proj", [])
    service.create_permission("proj", GLOBAL, PermissionCreate(id="parent"))
    child = service.create_permission("proj", GLOBAL, PermissionCreate(id="child", inherit_from_permission_ids=["parent"]))

    service.delete_permission("proj", GLOBAL, "child")

    with Session(db.get_engine()) as session:
        edges = session.exec(select(PermissionEdge).where(PermissionEdge.child_db_id == child.database_unique_id))
        assert edges.all() == []
        assert session.get(PermissionRecord, child.database_unique_id) is None


def test_missing_team_and_project(service: PermissionService) -> None:
    _seed_project("proj", ["t1"])

    with pytest.raises(TeamNotFoundError) as team_exc:
        service.list_permissions("proj", specific_team("missing"))
    assert team_exc.value.team_id == "missing"

    with pytest.raises(TeamNotFoundError):
        service.create_permission("proj", specific_team("missing"), PermissionCreate(id="x"))
    with pytest.raises(TeamNotFoundError):
        service.delete_permission("proj", specific_team("missing"), "x")

    with pytest.raises(ProjectNotFoundError):
        service.list_permissions("nope", GLOBAL)
    with pytest.raises(ProjectNotFoundError):
        service.create_permission("nope", ANY_TEAM, PermissionCreate(id="x"))
    with pytest.raises(ProjectNotFoundError):
        service.delete_permission("nope", GLOBAL, "x")
