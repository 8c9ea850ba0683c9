from __future__ import annotations

import pytest
from sqlalchemy import event
from sqlalchemy.dialects import postgresql

from grantsync.acl.association_rules import AssociationRuleTable
from grantsync.acl.bootstrap import AclApp
from grantsync.acl.events import AclEvent, ResourceSaved
from grantsync.acl.models import Role
from grantsync.acl.transactional import pending_patches
from grantsync.database import create_db_engine, create_session_factory, import_all_models
from grantsync.exceptions import RebuildError, ValidationError
from grantsync.models.base import Base


def _allowed(acl, role, resource, action):
    return acl.check(role, resource, action).allowed


def _rebuilt_table(session_factory):
    fresh = AclApp(AssociationRuleTable.with_builtin_rules())
    fresh.start(session_factory)
    return fresh.registry.table


def test_rebuild_on_empty_database(acl, session_factory):
    summary = acl.start(session_factory)

    assert acl.registry.is_ready
    assert summary.roles == 0
    assert summary.grants == 0
    assert acl.start(session_factory) is None


def test_resource_grant_cascades_to_association_and_target(started_acl, repo, session, orders_schema):
    repo.create_role("member")
    repo.save_resource("member", "orders", actions=[{"name": "update", "fields": ["items"]}])

    # Nothing is visible until the transaction commits.
    assert not _allowed(started_acl, "member", "orders", "update")
    session.commit()

    update = started_acl.check("member", "orders", "update")
    assert update.reason == "grant"
    assert update.fields == frozenset({"items"})
    for action in ("add", "remove", "toggle"):
        assert started_acl.check("member", "orders.items", action).reason == "cascade"
    assert _allowed(started_acl, "member", "lineItems", "view")
    assert not _allowed(started_acl, "member", "lineItems", "update")
    assert not _allowed(started_acl, "member", "orders.items", "list")


def test_rolled_back_changes_never_reach_the_registry(started_acl, repo, session, orders_schema):
    repo.create_role("member")
    repo.save_resource("member", "orders", actions=[{"name": "view"}])
    session.rollback()

    assert "member" not in started_acl.registry.roles()
    assert not _allowed(started_acl, "member", "orders", "view")
    assert not _allowed(started_acl, "member", "orders.items", "list")


def test_action_scope_is_carried_to_decision(started_acl, repo, session, orders_schema):
    own = repo.create_scope("Own records", {"createdById": "{{ ctx.state.currentUser.id }}"})
    repo.create_role("member")
    repo.save_resource("member", "orders", actions=[{"name": "update", "scope_id": own.id}])
    session.commit()

    decision = started_acl.check("member", "orders", "update")
    assert decision.scope == {"createdById": "{{ ctx.state.currentUser.id }}"}
    assert decision.fields is None


def test_only_one_default_role(repo, session):
    repo.create_role("member", default=True)
    repo.create_role("editor", default=True)
    session.commit()

    assert repo.default_role().name == "editor"
    assert session.get(Role, "member").default is False

    repo.update_role("member", default=True)
    session.commit()
    defaults = session.query(Role).filter(Role.default.is_(True)).all()
    assert [r.name for r in defaults] == ["member"]


def test_role_strategy_covers_unconfigured_resources(started_acl, repo, session, orders_schema):
    repo.create_role("member", strategy={"actions": ["view", "update:own"]})
    repo.save_resource(
        "member", "orders", using_actions_config=False, actions=[{"name": "destroy"}]
    )
    session.commit()

    assert started_acl.check("member", "orders", "view").reason == "strategy"
    assert started_acl.check("member", "orders", "update").scope == "own"
    assert not _allowed(started_acl, "member", "orders", "destroy")

    repo.save_resource("member", "orders", using_actions_config=True)
    session.commit()

    assert started_acl.check("member", "orders", "destroy").reason == "grant"
    assert not _allowed(started_acl, "member", "orders", "view")


def test_updating_role_strategy(started_acl, repo, session):
    repo.create_role("member", strategy={"actions": ["view"]})
    session.commit()
    repo.update_role("member", strategy={"actions": ["export"]})
    session.commit()

    assert not _allowed(started_acl, "member", "posts", "view")
    assert _allowed(started_acl, "member", "posts", "export")


def test_field_lists_follow_schema_changes(
    started_acl, repo, session, session_factory, orders_schema
):
    repo.create_role("member")
    repo.save_resource(
        "member",
        "orders",
        actions=[{"name": "update", "fields": ["total"]}, {"name": "view", "fields": []}],
    )
    session.commit()
    assert started_acl.check("member", "orders", "update").fields == frozenset({"total"})

    repo.create_field("orders", "notes", interface="textarea")
    session.commit()
    assert started_acl.check("member", "orders", "update").fields == frozenset({"total", "notes"})
    # An empty list already means every field and is left alone.
    view = repo.get_resource("member", "orders").actions[1]
    assert view.name == "view" and view.fields == []

    repo.destroy_field("orders", "total")
    session.commit()
    assert started_acl.check("member", "orders", "update").fields == frozenset({"notes"})

    repo.destroy_field("orders", "notes")
    session.commit()
    assert not _allowed(started_acl, "member", "orders", "update")
    assert [a.name for a in repo.get_resource("member", "orders").actions] == ["view"]
    assert started_acl.registry.table == _rebuilt_table(session_factory)


def test_new_association_field_extends_cascades(started_acl, repo, session, orders_schema):
    repo.create_collection("customers", fields=[{"name": "name", "interface": "input"}])
    repo.create_role("member")
    repo.save_resource("member", "orders", actions=[{"name": "view"}])
    session.commit()
    assert not _allowed(started_acl, "member", "orders.customer", "get")

    repo.create_field("orders", "customer", interface="linkTo", target="customers")
    session.commit()
    assert _allowed(started_acl, "member", "orders.customer", "get")

    repo.destroy_field("orders", "customer")
    session.commit()
    assert not _allowed(started_acl, "member", "orders.customer", "get")
    assert _allowed(started_acl, "member", "orders.items", "get")


def test_shared_target_survives_until_last_origin_goes(started_acl, repo, session, orders_schema):
    repo.create_collection(
        "invoices",
        fields=[{"name": "lines", "interface": "linkTo", "target": "lineItems"}],
    )
    repo.create_role("member")
    repo.save_resource("member", "orders", actions=[{"name": "update"}])
    repo.save_resource("member", "invoices", actions=[{"name": "update"}])
    session.commit()
    assert started_acl.check("member", "lineItems", "view").reason == "cascade"

    repo.destroy_resource("member", "orders")
    session.commit()
    assert _allowed(started_acl, "member", "lineItems", "view")
    assert not _allowed(started_acl, "member", "orders.items", "add")

    repo.destroy_resource("member", "invoices")
    session.commit()
    assert not _allowed(started_acl, "member", "lineItems", "view")


def test_action_update_leaves_sibling_actions(started_acl, repo, session, orders_schema):
    repo.create_role("member")
    resource = repo.save_resource(
        "member", "orders", actions=[{"name": "update"}, {"name": "view"}]
    )
    session.commit()
    update = next(a for a in resource.actions if a.name == "update")

    repo.update_action(update.id, fields=["total"])
    session.commit()

    assert started_acl.check("member", "orders", "update").fields == frozenset({"total"})
    assert not _allowed(started_acl, "member", "orders.items", "add")
    assert not _allowed(started_acl, "member", "lineItems", "view")
    assert started_acl.check("member", "orders", "view").fields is None
    assert _allowed(started_acl, "member", "orders.items", "list")


def test_saving_resource_replaces_its_actions(started_acl, repo, session, orders_schema):
    repo.create_role("member")
    repo.save_resource("member", "orders", actions=[{"name": "update"}, {"name": "view"}])
    session.commit()

    repo.save_resource("member", "orders", actions=[{"name": "view"}])
    session.commit()

    assert not _allowed(started_acl, "member", "orders", "update")
    assert not _allowed(started_acl, "member", "lineItems", "view")
    assert _allowed(started_acl, "member", "orders.items", "list")


def test_destroying_role_removes_its_grants(started_acl, repo, session, orders_schema):
    repo.create_role("member", strategy={"actions": ["view"]})
    repo.create_role("admin")
    repo.save_resource("member", "orders", actions=[{"name": "update"}])
    repo.save_resource("admin", "orders", actions=[{"name": "update"}])
    session.commit()

    assert repo.destroy_role("member") is True
    session.commit()

    assert "member" not in started_acl.registry.roles()
    assert not _allowed(started_acl, "member", "orders", "update")
    assert not _allowed(started_acl, "member", "posts", "view")
    assert _allowed(started_acl, "admin", "lineItems", "view")
    assert repo.destroy_role("member") is False


def test_destroying_collection_removes_role_resources(started_acl, repo, session, orders_schema):
    repo.create_role("member")
    repo.save_resource("member", "orders", actions=[{"name": "update"}])
    repo.save_resource("member", "lineItems", actions=[{"name": "list"}])
    session.commit()

    repo.destroy_collection("orders")
    session.commit()

    assert repo.get_resource("member", "orders") is None
    assert not _allowed(started_acl, "member", "orders", "update")
    assert not _allowed(started_acl, "member", "lineItems", "view")
    assert _allowed(started_acl, "member", "lineItems", "list")


def test_stale_event_is_ignored(started_acl, session):
    assert started_acl.sync.handle(ResourceSaved(resource_id=999), session) is None


def test_unknown_event_is_rejected(started_acl, session):
    with pytest.raises(ValidationError):
        started_acl.sync.handle(AclEvent(event_type="users.saved"), session)


def test_repository_validation(repo):
    with pytest.raises(ValidationError):
        repo.create_role(" ")
    repo.create_role("member")
    with pytest.raises(ValidationError):
        repo.create_role("member")
    with pytest.raises(ValidationError):
        repo.save_resource("nobody", "orders")
    with pytest.raises(ValidationError):
        repo.save_resource("member", "orders", actions=[{"name": "view"}, {"name": "view"}])


def test_incremental_state_matches_rebuild(started_acl, repo, session, session_factory, orders_schema):
    repo.create_role("member", strategy={"actions": ["view"]})
    repo.create_role("admin")
    repo.save_resource("member", "orders", actions=[{"name": "update", "fields": ["items"]}])
    repo.save_resource("admin", "orders", actions=[{"name": "view"}, {"name": "create"}])
    session.commit()
    repo.create_field("lineItems", "order", interface="linkTo", target="orders")
    repo.save_resource("admin", "lineItems", actions=[{"name": "update"}])
    session.commit()
    repo.destroy_resource("member", "orders")
    session.commit()

    assert started_acl.registry.table == _rebuilt_table(session_factory)


def _populate(session_factory, role_order):
    session = session_factory()
    try:
        acl = AclApp(AssociationRuleTable.with_builtin_rules())
        acl.start(session_factory)
        repo = acl.repository(session)
        repo.create_collection("lineItems", fields=[{"name": "sku", "interface": "input"}])
        repo.create_collection(
            "orders",
            fields=[{"name": "items", "interface": "linkTo", "target": "lineItems"}],
        )
        for name in role_order:
            repo.create_role(name)
            repo.save_resource(name, "orders", actions=[{"name": "update"}, {"name": "view"}])
        session.commit()
    finally:
        session.close()


def test_rebuild_is_independent_of_insertion_order():
    import_all_models()
    tables = []
    for order in (["admin", "member"], ["member", "admin"]):
        engine = create_db_engine("sqlite:///:memory:")
        Base.metadata.create_all(bind=engine)
        factory = create_session_factory(engine)
        _populate(factory, order)
        tables.append(_rebuilt_table(factory))
        engine.dispose()

    assert tables[0] == tables[1]
    assert len(tables[0]) > 0


def test_failed_rebuild_leaves_registry_not_ready():
    engine = create_db_engine("sqlite:///:memory:")
    factory = create_session_factory(engine)
    acl = AclApp(AssociationRuleTable.with_builtin_rules())

    with pytest.raises(RebuildError):
        acl.start(factory)
    assert not acl.registry.is_ready
    assert not acl.started

    import_all_models()
    Base.metadata.create_all(bind=engine)
    acl.start(factory)
    assert acl.registry.is_ready
    engine.dispose()


def test_savepoint_rollback_keeps_outer_changes(
    started_acl, repo, session, session_factory, orders_schema
):
    repo.create_role("member")
    repo.save_resource("member", "orders", actions=[{"name": "view"}])
    staged = len(pending_patches(session))

    savepoint = session.begin_nested()
    repo.create_role("editor")
    assert len(pending_patches(session)) == staged + 1
    savepoint.rollback()

    assert len(pending_patches(session)) == staged
    session.commit()

    assert _allowed(started_acl, "member", "orders", "view")
    assert _allowed(started_acl, "member", "orders.items", "list")
    assert "editor" not in started_acl.registry.roles()
    assert started_acl.registry.table == _rebuilt_table(session_factory)


def test_released_savepoint_waits_for_outer_commit(started_acl, repo, session, orders_schema):
    repo.create_role("member")
    with session.begin_nested():
        repo.save_resource("member", "orders", actions=[{"name": "view"}])

    assert started_acl.registry.roles() == ()
    session.commit()

    assert _allowed(started_acl, "member", "orders", "view")


def test_outer_rollback_drops_released_savepoint_changes(started_acl, repo, session):
    repo.create_role("member")
    with session.begin_nested():
        repo.create_role("editor")
    session.rollback()

    assert pending_patches(session) == []
    assert started_acl.registry.roles() == ()


def test_making_a_role_default_locks_roles_first(started_acl, repo):
    compiled = str(repo._lock_roles().statement.compile(dialect=postgresql.dialect()))

    assert "FOR UPDATE" in compiled


def test_interleaved_default_writes_leave_one_default(started_acl, engine, session_factory):
    setup = session_factory()
    try:
        started_acl.repository(setup).create_role("a")
        started_acl.repository(setup).create_role("b")
        setup.commit()
    finally:
        setup.close()

    statements = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    first, second = session_factory(), session_factory()
    event.listen(engine, "before_cursor_execute", _record)
    try:
        started_acl.repository(first).update_role("a", default=True)
        started_acl.repository(second).update_role("b", default=True)
        first.commit()
        second.commit()
    finally:
        event.remove(engine, "before_cursor_execute", _record)
        first.close()
        second.close()

    check = session_factory()
    try:
        defaults = check.query(Role).filter(Role.default.is_(True)).all()
        assert [r.name for r in defaults] == ["b"]
    finally:
        check.close()

    lock_at = next(
        i for i, s in enumerate(statements) if "FROM acl_roles ORDER BY acl_roles.name" in s
    )
    write_at = next(i for i, s in enumerate(statements) if s.startswith("UPDATE acl_roles"))
    assert lock_at < write_at
