"""
Cascade resolution: explicit grants on a resource imply grants on its
association fields (addressed as `<resource>.<field>`) and on the
associations' target resources.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Set, Tuple

from grantsync.acl.association_rules import AssociationRuleTable
from grantsync.acl.grant_table import CascadeOrigin
from grantsync.acl.schema import FieldInfo

logger = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class DerivedGrant:
    resource: str
    action: str
    origin: CascadeOrigin


def association_resource(resource: str, field: str) -> str:
    return f"{resource}.{field}"


class CascadeResolver:
    def __init__(self, rules: AssociationRuleTable):
        self.rules = rules

    def derive(
        self,
        resource: str,
        action: str,
        fields: Optional[Iterable[str]],
        schema: Mapping[str, FieldInfo],
    ) -> List[DerivedGrant]:
        """
        Grants implied by the explicit grant `(resource, action)`.

        `fields` are the fields the grant covers; empty or None covers every
        field in `schema`. Returned sorted and free of duplicates.
        """
        covered = list(fields) if fields else list(schema)
        derived: Set[DerivedGrant] = set()

        for field_name in covered:
            info = schema.get(field_name)
            if info is None:
                continue
            rule = self.rules.lookup(info.kind, action)
            if rule is None:
                continue

            origin = CascadeOrigin(resource=resource, action=action, field=field_name)
            assoc = association_resource(resource, field_name)
            for name in rule.association_actions:
                derived.add(DerivedGrant(assoc, name, origin))

            if not rule.target_actions:
                continue
            if not info.target:
                logger.debug(
                    f"Association {resource}.{field_name} ({info.kind}) has no target; "
                    "skipping target actions"
                )
                continue
            for name in rule.target_actions:
                derived.add(DerivedGrant(info.target, name, origin))

        return sorted(derived)

    def derive_all(
        self,
        resource: str,
        grants: Iterable[Tuple[str, Optional[Iterable[str]]]],
        schema: Mapping[str, FieldInfo],
    ) -> List[DerivedGrant]:
        derived: Set[DerivedGrant] = set()
        for action, fields in grants:
            derived.update(self.derive(resource, action, fields, schema))
        return sorted(derived)
