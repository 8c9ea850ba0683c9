from __future__ import annotations

import pytest

from grantsync.acl.association_rules import AssociationRuleTable
from grantsync.acl.bootstrap import AclApp
from grantsync.database import create_db_engine, create_session_factory, import_all_models
from grantsync.models.base import Base


@pytest.fixture()
def engine():
    engine = create_db_engine("sqlite:///:memory:")
    import_all_models()
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture()
def session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def acl():
    return AclApp(AssociationRuleTable.with_builtin_rules())


@pytest.fixture()
def started_acl(acl, session_factory):
    acl.start(session_factory)
    return acl


@pytest.fixture()
def repo(started_acl, session):
    return started_acl.repository(session)


@pytest.fixture()
def orders_schema(repo, session):
    """orders(total, notes?, items -> lineItems), lineItems(sku)."""
    repo.create_collection("lineItems", fields=[{"name": "sku", "interface": "input"}])
    repo.create_collection(
        "orders",
        fields=[
            {"name": "total", "interface": "number"},
            {"name": "items", "interface": "linkTo", "target": "lineItems"},
        ],
    )
    session.commit()
