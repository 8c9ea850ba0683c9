"""
Persisted-record repository for roles, resources, actions, scopes and
collection metadata.

Every write is flushed and then reported to the sync engine with the session
as the unit of work, so the registry changes exactly when the caller commits.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from grantsync.acl.events import (
    ActionUpdated,
    CollectionDestroyed,
    FieldCreated,
    FieldDestroyed,
    ResourceDestroyed,
    ResourceSaved,
    RoleDestroyed,
    RoleSaved,
)
from grantsync.acl.models import Role, RoleResource, RoleResourceAction, RoleResourceScope
from grantsync.acl.schema import Collection, CollectionField
from grantsync.acl.sync import SyncEngine
from grantsync.exceptions import ValidationError

_UNSET: Any = object()


class AclRepository:
    def __init__(self, session: Session, sync: SyncEngine):
        self.session = session
        self.sync = sync

    # Roles ---------------------------------------------------------------------

    def get_role(self, name: str) -> Optional[Role]:
        return self.session.get(Role, name)

    def list_roles(self, *, include_hidden: bool = False) -> List[Role]:
        query = self.session.query(Role)
        if not include_hidden:
            query = query.filter(Role.hidden.is_(False))
        return query.order_by(Role.name).all()

    def create_role(
        self,
        name: str,
        *,
        title: Optional[str] = None,
        hidden: bool = False,
        default: bool = False,
        strategy: Optional[Dict[str, Any]] = None,
    ) -> Role:
        if not name or not name.strip():
            raise ValidationError("Role name is required", field="name")
        if self.session.get(Role, name) is not None:
            raise ValidationError(f"Role already exists: {name}", field="name")
        if default:
            self._lock_roles().all()

        role = Role(name=name, title=title or name, hidden=hidden, default=default, strategy=strategy)
        self.session.add(role)
        self.session.flush()
        self.sync.handle(RoleSaved(role_name=name), self.session)
        return role

    def update_role(
        self,
        name: str,
        *,
        title: Optional[str] = _UNSET,
        hidden: bool = _UNSET,
        default: bool = _UNSET,
        strategy: Optional[Dict[str, Any]] = _UNSET,
    ) -> Role:
        role = self._require_role(name)
        if default is True:
            self._lock_roles().all()
        if title is not _UNSET:
            role.title = title
        if hidden is not _UNSET:
            role.hidden = hidden
        if default is not _UNSET:
            role.default = default
        if strategy is not _UNSET:
            role.strategy = strategy
        self.session.flush()
        self.sync.handle(RoleSaved(role_name=name), self.session)
        return role

    def destroy_role(self, name: str) -> bool:
        role = self.session.get(Role, name)
        if role is None:
            return False
        self.session.delete(role)
        self.session.flush()
        self.sync.handle(RoleDestroyed(role_name=name), self.session)
        return True

    def default_role(self) -> Optional[Role]:
        return self.session.query(Role).filter(Role.default.is_(True)).first()

    # Scopes --------------------------------------------------------------------

    def create_scope(
        self, name: str, scope: Any, *, resource_name: Optional[str] = None
    ) -> RoleResourceScope:
        record = RoleResourceScope(name=name, scope=scope, resource_name=resource_name)
        self.session.add(record)
        self.session.flush()
        return record

    def find_scope(self, name: str) -> Optional[RoleResourceScope]:
        return (
            self.session.query(RoleResourceScope)
            .filter(RoleResourceScope.name == name)
            .first()
        )

    # Resources -----------------------------------------------------------------

    def get_resource(self, role_name: str, name: str) -> Optional[RoleResource]:
        return (
            self.session.query(RoleResource)
            .filter(RoleResource.role_name == role_name, RoleResource.name == name)
            .first()
        )

    def save_resource(
        self,
        role_name: str,
        name: str,
        *,
        using_actions_config: bool = True,
        actions: Optional[Iterable[Dict[str, Any]]] = None,
    ) -> RoleResource:
        """
        Create or update a role's resource with its nested actions.

        `actions` items are `{"name": ..., "fields": [...], "scope_id": ...}`;
        when given they replace the resource's current actions.
        """
        role = self._require_role(role_name)
        resource = self.get_resource(role_name, name)
        if resource is None:
            resource = RoleResource(name=name)
            role.resources.append(resource)
        resource.using_actions_config = using_actions_config

        if actions is not None:
            payloads = list(actions)
            names = [str(a.get("name") or "").strip() for a in payloads]
            if any(not n for n in names):
                raise ValidationError("Action name is required", field="actions")
            if len(set(names)) != len(names):
                raise ValidationError("Duplicate action names", field="actions")

            existing = {a.name: a for a in resource.actions}
            for stale in [a for n, a in existing.items() if n not in names]:
                resource.actions.remove(stale)
            for action_name, payload in zip(names, payloads):
                action = existing.get(action_name)
                if action is None:
                    action = RoleResourceAction(name=action_name)
                    resource.actions.append(action)
                action.fields = list(payload.get("fields") or [])
                action.scope_id = payload.get("scope_id")

        self.session.flush()
        for action in resource.actions:
            self.session.expire(action, ["scope"])
        self.sync.handle(ResourceSaved(resource_id=resource.id), self.session)
        return resource

    def destroy_resource(self, role_name: str, name: str) -> bool:
        resource = self.get_resource(role_name, name)
        if resource is None:
            return False
        resource.role.resources.remove(resource)
        self.session.flush()
        self.sync.handle(
            ResourceDestroyed(role_name=role_name, resource_name=name), self.session
        )
        return True

    # Actions -------------------------------------------------------------------

    def update_action(
        self,
        action_id: int,
        *,
        fields: Optional[List[str]] = _UNSET,
        scope_id: Optional[int] = _UNSET,
    ) -> RoleResourceAction:
        action = self.session.get(RoleResourceAction, action_id)
        if action is None:
            raise ValidationError(f"Action not found: {action_id}", field="action_id")
        if fields is not _UNSET:
            action.fields = list(fields or [])
        if scope_id is not _UNSET:
            action.scope_id = scope_id
        self.session.flush()
        self.session.expire(action, ["scope"])
        self.sync.handle(ActionUpdated(action_id=action.id), self.session)
        return action

    # Collections ---------------------------------------------------------------

    def create_collection(
        self,
        name: str,
        *,
        title: Optional[str] = None,
        fields: Optional[Iterable[Dict[str, Any]]] = None,
    ) -> Collection:
        """Create a collection; initial fields are part of its definition and emit no events."""
        collection = Collection(name=name, title=title or name)
        for payload in fields or []:
            collection.fields.append(
                CollectionField(
                    name=payload["name"],
                    interface=payload.get("interface"),
                    target=payload.get("target"),
                )
            )
        self.session.add(collection)
        self.session.flush()
        return collection

    def create_field(
        self,
        collection_name: str,
        name: str,
        *,
        interface: Optional[str] = None,
        target: Optional[str] = None,
    ) -> CollectionField:
        collection = self.session.get(Collection, collection_name)
        if collection is None:
            raise ValidationError(f"Collection not found: {collection_name}", field="collection")
        field = CollectionField(name=name, interface=interface, target=target)
        collection.fields.append(field)
        self.session.flush()
        self.sync.handle(
            FieldCreated(collection_name=collection_name, field_name=name), self.session
        )
        return field

    def destroy_field(self, collection_name: str, name: str) -> bool:
        field = (
            self.session.query(CollectionField)
            .filter(
                CollectionField.collection_name == collection_name,
                CollectionField.name == name,
            )
            .first()
        )
        if field is None:
            return False
        field.collection.fields.remove(field)
        self.session.flush()
        self.sync.handle(
            FieldDestroyed(collection_name=collection_name, field_name=name), self.session
        )
        return True

    def destroy_collection(self, name: str) -> bool:
        collection = self.session.get(Collection, name)
        if collection is None:
            return False
        self.session.delete(collection)
        self.session.flush()
        self.sync.handle(CollectionDestroyed(collection_name=name), self.session)
        return True

    # Helpers -------------------------------------------------------------------

    def _lock_roles(self):
        """
        Row-lock every role, in name order, before a role becomes the default.

        Concurrent "make default" writes then run one after the other, so the
        second one clears the flag the first one committed.
        """
        return self.session.query(Role).order_by(Role.name).with_for_update()

    def _require_role(self, name: str) -> Role:
        role = self.session.get(Role, name)
        if role is None:
            raise ValidationError(f"Role not found: {name}", field="role")
        return role
