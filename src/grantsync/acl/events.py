"""
Lifecycle events the sync engine reacts to.
Emitted by the persisted-record repository after the change is flushed.
"""

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field


class AclEvent(BaseModel):
    """Base class for all ACL lifecycle events."""

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RoleSaved(AclEvent):
    event_type: str = "roles.saved"
    role_name: str


class RoleDestroyed(AclEvent):
    event_type: str = "roles.destroyed"
    role_name: str


class ResourceSaved(AclEvent):
    event_type: str = "roles_resources.saved"
    resource_id: int


class ResourceDestroyed(AclEvent):
    event_type: str = "roles_resources.destroyed"
    role_name: str
    resource_name: str


class ActionUpdated(AclEvent):
    event_type: str = "roles_resources_actions.updated"
    action_id: int


class FieldCreated(AclEvent):
    event_type: str = "fields.created"
    collection_name: str
    field_name: str


class FieldDestroyed(AclEvent):
    event_type: str = "fields.destroyed"
    collection_name: str
    field_name: str


class CollectionDestroyed(AclEvent):
    event_type: str = "collections.destroyed"
    collection_name: str
