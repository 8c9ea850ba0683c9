"""
Grant resolution engine.

Public API:
- Registry: PermissionRegistry, RegistryPatch, Decision
- Rules: AssociationRuleTable, AssociationFieldAction, load_association_rules
- Cascades: CascadeResolver
- Sync: SyncEngine, AclRepository
- Lifecycle: AclApp
"""

from .association_rules import (
    AssociationFieldAction,
    AssociationRuleTable,
    load_association_rules,
)
from .bootstrap import AclApp
from .cascade import CascadeResolver, DerivedGrant
from .grant_table import CascadeOrigin, GrantTable
from .registry import Decision, PermissionRegistry, RegistryPatch
from .repository import AclRepository
from .sync import RebuildSummary, SyncEngine

__all__ = [
    "AclApp",
    "AclRepository",
    "AssociationFieldAction",
    "AssociationRuleTable",
    "CascadeOrigin",
    "CascadeResolver",
    "Decision",
    "DerivedGrant",
    "GrantTable",
    "PermissionRegistry",
    "RebuildSummary",
    "RegistryPatch",
    "SyncEngine",
    "load_association_rules",
]
