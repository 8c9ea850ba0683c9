from __future__ import annotations

import pytest

from grantsync.acl.association_rules import AssociationRuleTable
from grantsync.acl.cascade import CascadeResolver, DerivedGrant, association_resource
from grantsync.acl.grant_table import CascadeOrigin
from grantsync.acl.schema import FieldInfo, StaticSchemaProvider


@pytest.fixture()
def resolver():
    return CascadeResolver(AssociationRuleTable.with_builtin_rules().freeze())


@pytest.fixture()
def schema():
    return StaticSchemaProvider(
        {
            "orders": {
                "total": FieldInfo("total", "number"),
                "items": FieldInfo("items", "linkTo", "lineItems"),
                "files": FieldInfo("files", "attachments", "attachments"),
            }
        }
    )


@pytest.fixture()
def orders_fields(schema):
    return schema.get_fields("orders")


def test_update_on_link_field_derives_association_and_target(resolver, orders_fields):
    derived = resolver.derive("orders", "update", ["items"], orders_fields)

    origin = CascadeOrigin("orders", "update", "items")
    assert derived == [
        DerivedGrant("lineItems", "view", origin),
        DerivedGrant("orders.items", "add", origin),
        DerivedGrant("orders.items", "remove", origin),
        DerivedGrant("orders.items", "toggle", origin),
    ]


def test_empty_fields_cover_every_field(resolver, orders_fields):
    derived = resolver.derive("orders", "view", None, orders_fields)

    assert {(d.resource, d.action) for d in derived} == {
        ("orders.items", "list"),
        ("orders.items", "get"),
        ("orders.files", "list"),
        ("orders.files", "get"),
    }


def test_fields_limit_derivation(resolver, orders_fields):
    derived = resolver.derive("orders", "update", ["total", "files"], orders_fields)

    assert {d.resource for d in derived} == {"orders.files"}
    assert {d.origin.field for d in derived} == {"files"}


def test_derivation_is_deterministic(resolver, orders_fields):
    first = resolver.derive("orders", "update", ["items", "files", "items"], orders_fields)
    second = resolver.derive("orders", "update", ["files", "items"], orders_fields)

    assert first == second
    assert len(first) == len(set(first))


def test_target_actions_need_a_target(resolver):
    fields = {"items": FieldInfo("items", "linkTo", None)}

    derived = resolver.derive("orders", "create", None, fields)

    assert [(d.resource, d.action) for d in derived] == [("orders.items", "add")]


def test_no_rule_no_grants(resolver, orders_fields):
    assert resolver.derive("orders", "destroy", None, orders_fields) == []
    assert resolver.derive("orders", "update", ["missing"], orders_fields) == []
    assert resolver.derive("orders", "view", None, {}) == []


def test_derive_all_merges_actions(resolver, orders_fields):
    derived = resolver.derive_all(
        "orders", [("view", ["items"]), ("update", ["items"])], orders_fields
    )

    assert ("lineItems", "view") in {(d.resource, d.action) for d in derived}
    assert {d.origin.action for d in derived} == {"view", "update"}


def test_association_resource_name():
    assert association_resource("orders", "items") == "orders.items"


def test_unknown_collection_has_no_fields(resolver, schema):
    assert schema.get_fields("invoices") == {}
    assert resolver.derive("invoices", "view", None, schema.get_fields("invoices")) == []
