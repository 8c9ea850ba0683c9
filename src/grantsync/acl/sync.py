"""
Sync engine: keeps the permission registry in step with persisted roles,
resources, actions and collection fields.

Two modes:
- `rebuild()` loads everything once at process start and publishes a fresh
  table in one swap.
- `handle()` reacts to one lifecycle event inside the caller's transaction:
  it performs any follow-up writes on the session, reads the metadata it
  needs, and stages a registry patch that is applied when the session
  commits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Type

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from grantsync.acl.cascade import CascadeResolver
from grantsync.acl.events import (
    AclEvent,
    ActionUpdated,
    CollectionDestroyed,
    FieldCreated,
    FieldDestroyed,
    ResourceDestroyed,
    ResourceSaved,
    RoleDestroyed,
    RoleSaved,
)
from grantsync.acl.grant_table import GrantTable
from grantsync.acl.models import Role, RoleResource, RoleResourceAction
from grantsync.acl.registry import PermissionRegistry, RegistryPatch
from grantsync.acl.schema import SchemaProvider, SqlSchemaProvider
from grantsync.acl.transactional import stage_patch
from grantsync.exceptions import RebuildError, ValidationError

logger = logging.getLogger(__name__)

SchemaProviderFactory = Callable[[Session], SchemaProvider]


@dataclass(frozen=True)
class RebuildSummary:
    roles: int
    resources: int
    actions: int
    grants: int


class SyncEngine:
    def __init__(
        self,
        registry: PermissionRegistry,
        resolver: CascadeResolver,
        schema_provider_factory: SchemaProviderFactory = SqlSchemaProvider,
    ):
        self.registry = registry
        self.resolver = resolver
        self.schema_provider_factory = schema_provider_factory
        self._handlers: Dict[
            Type[AclEvent], Callable[[AclEvent, Session, SchemaProvider], Optional[RegistryPatch]]
        ] = {
            RoleSaved: self._on_role_saved,
            RoleDestroyed: self._on_role_destroyed,
            ResourceSaved: self._on_resource_saved,
            ResourceDestroyed: self._on_resource_destroyed,
            ActionUpdated: self._on_action_updated,
            FieldCreated: self._on_field_created,
            FieldDestroyed: self._on_field_destroyed,
            CollectionDestroyed: self._on_collection_destroyed,
        }

    # Full rebuild -------------------------------------------------------------

    def rebuild(self, session: Session) -> RebuildSummary:
        """
        Rebuild the registry from persisted records.

        The new table is built off to the side and published only when
        complete; on failure the registry keeps its previous state (and stays
        not-ready if it never became ready).
        """
        try:
            roles = (
                session.query(Role)
                .options(
                    selectinload(Role.resources)
                    .selectinload(RoleResource.actions)
                    .selectinload(RoleResourceAction.scope)
                )
                .order_by(Role.name)
                .all()
            )
            schema = self.schema_provider_factory(session)
            patch = RegistryPatch()
            resources = actions = 0
            for role in roles:
                self._write_role(patch, role, schema)
                resources += len(role.resources)
                actions += sum(len(r.actions) for r in role.resources)
        except SQLAlchemyError as e:
            logger.error(f"Permission registry rebuild failed: {e}")
            raise RebuildError(f"Failed to load persisted ACL records: {e}") from e

        table = GrantTable()
        patch.apply_to(table)
        self.registry.replace(table, ready=True)

        summary = RebuildSummary(
            roles=len(roles), resources=resources, actions=actions, grants=len(table)
        )
        logger.info(
            f"Rebuilt permission registry: {summary.roles} roles, "
            f"{summary.resources} resources, {summary.actions} actions, {summary.grants} grants"
        )
        return summary

    # Incremental updates -------------------------------------------------------

    def handle(self, event: AclEvent, session: Session) -> Optional[RegistryPatch]:
        """
        Apply one lifecycle event.

        Persisted follow-up writes go through `session`; the registry patch is
        staged on it and becomes visible when it commits.
        """
        handler = self._handlers.get(type(event))
        if handler is None:
            raise ValidationError(f"Unsupported ACL event: {type(event).__name__}", field="event")

        schema = self.schema_provider_factory(session)
        patch = handler(event, session, schema)
        if not patch:
            return None
        stage_patch(session, self.registry, patch)
        logger.debug(f"Staged {len(patch)} registry operation(s) for {event.event_type}")
        return patch

    def _on_role_saved(
        self, event: RoleSaved, session: Session, schema: SchemaProvider
    ) -> Optional[RegistryPatch]:
        role = session.get(Role, event.role_name)
        if role is None:
            logger.debug(f"Role {event.role_name} no longer exists; skipping")
            return None

        if role.default:
            # At most one default role.
            (
                session.query(Role)
                .filter(Role.name != role.name, Role.default.is_(True))
                .update({Role.default: False}, synchronize_session="fetch")
            )

        patch = RegistryPatch().remove_role(role.name)
        self._write_role(patch, role, schema)
        return patch

    def _on_role_destroyed(
        self, event: RoleDestroyed, session: Session, schema: SchemaProvider
    ) -> Optional[RegistryPatch]:
        return RegistryPatch().remove_role(event.role_name)

    def _on_resource_saved(
        self, event: ResourceSaved, session: Session, schema: SchemaProvider
    ) -> Optional[RegistryPatch]:
        resource = session.get(RoleResource, event.resource_id)
        if resource is None or resource.role is None:
            logger.debug(f"Resource #{event.resource_id} no longer exists; skipping")
            return None

        patch = RegistryPatch().define_role(resource.role_name, resource.role.strategy)
        self._write_resource(patch, resource.role_name, resource, schema)
        return patch

    def _on_resource_destroyed(
        self, event: ResourceDestroyed, session: Session, schema: SchemaProvider
    ) -> Optional[RegistryPatch]:
        return RegistryPatch().revoke_resource(event.role_name, event.resource_name)

    def _on_action_updated(
        self, event: ActionUpdated, session: Session, schema: SchemaProvider
    ) -> Optional[RegistryPatch]:
        action = session.get(RoleResourceAction, event.action_id)
        if action is None or action.resource is None:
            logger.debug(f"Action #{event.action_id} no longer exists; skipping")
            return None
        return self._reapply_actions([action], schema)

    def _on_field_created(
        self, event: FieldCreated, session: Session, schema: SchemaProvider
    ) -> Optional[RegistryPatch]:
        actions = self._actions_for_collection(session, event.collection_name)
        for action in actions:
            fields = list(action.fields or [])
            # An empty list already covers every field.
            if fields and event.field_name not in fields:
                action.fields = fields + [event.field_name]
        session.flush()
        logger.info(
            f"Field {event.collection_name}.{event.field_name} added; "
            f"re-applied {len(actions)} action grant(s)"
        )
        return self._reapply_actions(actions, schema)

    def _on_field_destroyed(
        self, event: FieldDestroyed, session: Session, schema: SchemaProvider
    ) -> Optional[RegistryPatch]:
        actions = self._actions_for_collection(session, event.collection_name)
        patch = RegistryPatch()
        kept: List[RoleResourceAction] = []
        for action in actions:
            fields = list(action.fields or [])
            if event.field_name not in fields:
                kept.append(action)
                continue
            remaining = [f for f in fields if f != event.field_name]
            if remaining:
                action.fields = remaining
                kept.append(action)
                continue
            # The grant covered only fields that no longer exist.
            resource = action.resource
            patch.revoke_action(resource.role_name, resource.name, action.name)
            resource.actions.remove(action)
        session.flush()
        logger.info(
            f"Field {event.collection_name}.{event.field_name} removed; "
            f"re-applied {len(kept)} action grant(s), dropped {len(actions) - len(kept)}"
        )
        return patch.extend(self._reapply_actions(kept, schema))

    def _on_collection_destroyed(
        self, event: CollectionDestroyed, session: Session, schema: SchemaProvider
    ) -> Optional[RegistryPatch]:
        resources = (
            session.query(RoleResource)
            .filter(RoleResource.name == event.collection_name)
            .all()
        )
        patch = RegistryPatch()
        for resource in resources:
            patch.revoke_resource(resource.role_name, resource.name)
            resource.role.resources.remove(resource)
        session.flush()
        return patch

    # Helpers -------------------------------------------------------------------

    def _actions_for_collection(
        self, session: Session, collection: str
    ) -> List[RoleResourceAction]:
        return (
            session.query(RoleResourceAction)
            .join(RoleResource, RoleResourceAction.resource_id == RoleResource.id)
            .filter(RoleResource.name == collection)
            .order_by(RoleResource.role_name, RoleResourceAction.name)
            .all()
        )

    def _reapply_actions(
        self, actions: List[RoleResourceAction], schema: SchemaProvider
    ) -> RegistryPatch:
        patch = RegistryPatch()
        for action in actions:
            resource = action.resource
            patch.revoke_action(resource.role_name, resource.name, action.name)
            if resource.using_actions_config:
                self._write_action(patch, resource.role_name, resource.name, action, schema)
        return patch

    def _write_role(self, patch: RegistryPatch, role: Role, schema: SchemaProvider) -> None:
        patch.define_role(role.name, role.strategy)
        for resource in role.resources:
            self._write_resource(patch, role.name, resource, schema)

    def _write_resource(
        self,
        patch: RegistryPatch,
        role_name: str,
        resource: RoleResource,
        schema: SchemaProvider,
    ) -> None:
        patch.revoke_resource(role_name, resource.name)
        if not resource.using_actions_config:
            return
        patch.configure_resource(role_name, resource.name)
        for action in resource.actions:
            self._write_action(patch, role_name, resource.name, action, schema)

    def _write_action(
        self,
        patch: RegistryPatch,
        role_name: str,
        resource_name: str,
        action: RoleResourceAction,
        schema: SchemaProvider,
    ) -> None:
        fields = list(action.fields or []) or None
        scope = action.scope.scope if action.scope is not None else None
        patch.grant(role_name, resource_name, action.name, fields=fields, scope=scope)
        for derived in self.resolver.derive(
            resource_name, action.name, fields, schema.get_fields(resource_name)
        ):
            patch.grant(role_name, derived.resource, derived.action, origin=derived.origin)
