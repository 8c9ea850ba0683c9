"""
Permission registry: the in-memory decision surface every authorization
check consults.

Mutations never touch the published table. They run on a private copy under
a writer lock and the copy replaces the published table in one reference
swap, so `check` always reads one complete snapshot without locking.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple, Union

from grantsync.acl.grant_table import (
    CascadeOrigin,
    ExplicitGrant,
    GrantTable,
    normalize_fields,
)
from grantsync.exceptions import ConfigurationError, RegistryNotReadyError

logger = logging.getLogger(__name__)

WILDCARD = "*"

SkipPredicate = Callable[[Any], bool]


@dataclass(frozen=True)
class Decision:
    allowed: bool
    fields: Optional[FrozenSet[str]] = None
    scope: Any = None
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "fields": sorted(self.fields) if self.fields else None,
            "scope": self.scope,
            "reason": self.reason,
        }


DENY = Decision(allowed=False, reason="not_granted")


@dataclass(frozen=True)
class SkipRule:
    resource: str
    action: str
    predicate: SkipPredicate
    name: str = ""

    def matches(self, resource: str, action: str, context: Any) -> bool:
        if self.resource != WILDCARD and self.resource != resource:
            return False
        if self.action != WILDCARD and self.action != action:
            return False
        return bool(self.predicate(context))


def _is_logged_in(context: Any) -> bool:
    return bool(getattr(context, "current_user_id", None))


BUILTIN_PREDICATES: Dict[str, SkipPredicate] = {
    "public": lambda _context: True,
    "logged-in": _is_logged_in,
}


def parse_strategy(strategy: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Turn a role strategy `{"actions": ["view", "update:own"]}` into
    `{action_name: scope}`; the part after ":" is kept as an opaque scope.
    """
    parsed: Dict[str, Any] = {}
    if not isinstance(strategy, dict):
        return parsed
    for raw in strategy.get("actions") or []:
        name, _, scope = str(raw).partition(":")
        name = name.strip()
        if name:
            parsed[name] = scope.strip() or None
    return parsed


# Patch operations --------------------------------------------------------------


def _op_define_role(table: GrantTable, role: str, strategy: Optional[Dict[str, Any]]) -> None:
    table.define_role(role, parse_strategy(strategy))


def _op_grant(
    table: GrantTable,
    role: str,
    resource: str,
    action: str,
    fields: Optional[Iterable[str]] = None,
    scope: Any = None,
    origin: Optional[CascadeOrigin] = None,
) -> None:
    if origin is not None:
        table.add_origin(role, resource, action, origin)
        return
    table.put_explicit(
        role, resource, action, ExplicitGrant(fields=normalize_fields(fields), scope=scope)
    )
    table.mark_configured(role, resource)


def _op_configure_resource(table: GrantTable, role: str, resource: str) -> None:
    table.mark_configured(role, resource)


def _op_revoke_resource(table: GrantTable, role: str, resource: str) -> None:
    table.remove_explicit_resource(role, resource)
    table.discard_origins(role, lambda o: o.resource == resource)
    table.unmark_configured(role, resource)


def _op_revoke_action(table: GrantTable, role: str, resource: str, action: str) -> None:
    table.remove_explicit(role, resource, action)
    table.discard_origins(role, lambda o: o.resource == resource and o.action == action)


def _op_remove_role(table: GrantTable, role: str) -> None:
    table.drop_role(role)


_OPERATIONS: Dict[str, Callable[..., None]] = {
    "define_role": _op_define_role,
    "grant": _op_grant,
    "configure_resource": _op_configure_resource,
    "revoke_resource": _op_revoke_resource,
    "revoke_action": _op_revoke_action,
    "remove_role": _op_remove_role,
}


@dataclass
class RegistryPatch:
    """An ordered batch of registry operations applied as one mutation."""

    operations: List[Tuple[str, Tuple[Any, ...], Dict[str, Any]]] = field(default_factory=list)

    def _add(self, op: str, *args: Any, **kwargs: Any) -> "RegistryPatch":
        self.operations.append((op, args, kwargs))
        return self

    def define_role(self, role: str, strategy: Optional[Dict[str, Any]] = None) -> "RegistryPatch":
        return self._add("define_role", role, strategy)

    def grant(
        self,
        role: str,
        resource: str,
        action: str,
        fields: Optional[Iterable[str]] = None,
        scope: Any = None,
        origin: Optional[CascadeOrigin] = None,
    ) -> "RegistryPatch":
        fields = list(fields) if fields else None
        return self._add("grant", role, resource, action, fields=fields, scope=scope, origin=origin)

    def configure_resource(self, role: str, resource: str) -> "RegistryPatch":
        return self._add("configure_resource", role, resource)

    def revoke_resource(self, role: str, resource: str) -> "RegistryPatch":
        return self._add("revoke_resource", role, resource)

    def revoke_action(self, role: str, resource: str, action: str) -> "RegistryPatch":
        return self._add("revoke_action", role, resource, action)

    def remove_role(self, role: str) -> "RegistryPatch":
        return self._add("remove_role", role)

    def extend(self, other: "RegistryPatch") -> "RegistryPatch":
        self.operations.extend(other.operations)
        return self

    def apply_to(self, table: GrantTable) -> None:
        for op, args, kwargs in self.operations:
            _OPERATIONS[op](table, *args, **kwargs)

    def __bool__(self) -> bool:
        return bool(self.operations)

    def __len__(self) -> int:
        return len(self.operations)


class PermissionRegistry:
    """
    Process-wide permission registry.

    Lifecycle: constructed empty, populated by one `replace(..., ready=True)`
    from the full rebuild, then mutated through `apply()` only. Until it is
    ready, `check` refuses to answer.
    """

    def __init__(self) -> None:
        self._table = GrantTable()
        self._write_lock = Lock()
        self._skip_rules: List[SkipRule] = []
        self._predicates: Dict[str, SkipPredicate] = dict(BUILTIN_PREDICATES)
        self._ready = False

    # Lifecycle ---------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def table(self) -> GrantTable:
        """The currently published snapshot. Treat as read-only."""
        return self._table

    def replace(self, table: GrantTable, *, ready: bool = True) -> None:
        with self._write_lock:
            self._table = table
            if ready:
                self._ready = True
        logger.info(f"Permission registry published ({len(table)} grants)")

    def reset(self) -> None:
        with self._write_lock:
            self._table = GrantTable()
            self._ready = False

    @contextmanager
    def mutate(self) -> Iterator[GrantTable]:
        """Yield a working copy; publish it only if the block completes."""
        with self._write_lock:
            working = self._table.copy()
            yield working
            self._table = working

    def apply(self, *patches: RegistryPatch) -> None:
        with self.mutate() as table:
            for patch in patches:
                patch.apply_to(table)

    # Mutations -----------------------------------------------------------------

    def define_role(self, role: str, strategy: Optional[Dict[str, Any]] = None) -> None:
        self.apply(RegistryPatch().define_role(role, strategy))

    def grant(
        self,
        role: str,
        resource: str,
        action: str,
        fields: Optional[Iterable[str]] = None,
        scope: Any = None,
        origin: Optional[CascadeOrigin] = None,
    ) -> None:
        self.apply(RegistryPatch().grant(role, resource, action, fields, scope, origin))

    def revoke_resource(self, role: str, resource: str) -> None:
        self.apply(RegistryPatch().revoke_resource(role, resource))

    def revoke_action(self, role: str, resource: str, action: str) -> None:
        self.apply(RegistryPatch().revoke_action(role, resource, action))

    def remove_role(self, role: str) -> None:
        self.apply(RegistryPatch().remove_role(role))

    # Skip rules ----------------------------------------------------------------

    def register_predicate(self, name: str, predicate: SkipPredicate) -> None:
        self._predicates[name] = predicate

    def skip(
        self,
        resource: str,
        action: str,
        predicate: Union[str, SkipPredicate],
    ) -> SkipRule:
        if isinstance(predicate, str):
            fn = self._predicates.get(predicate)
            if fn is None:
                raise ConfigurationError(
                    f"Unknown skip predicate: {predicate}", config_key="skip"
                )
            name = predicate
        elif callable(predicate):
            fn = predicate
            name = getattr(predicate, "__name__", "predicate")
        else:
            raise ConfigurationError("Skip predicate must be a name or callable", config_key="skip")

        rule = SkipRule(resource=resource, action=action, predicate=fn, name=name)
        self._skip_rules.append(rule)
        logger.debug(f"Registered skip rule {resource}:{action} ({name})")
        return rule

    @property
    def skip_rules(self) -> Tuple[SkipRule, ...]:
        return tuple(self._skip_rules)

    # Queries -------------------------------------------------------------------

    def check(self, role: str, resource: str, action: str, context: Any = None) -> Decision:
        if not self._ready:
            raise RegistryNotReadyError()

        for rule in self._skip_rules:
            if rule.matches(resource, action, context):
                return Decision(allowed=True, reason=f"skip:{rule.name}")

        table = self._table
        entry = table.get(role, resource, action)
        if entry is not None and entry.is_live:
            if entry.explicit is not None:
                return Decision(
                    allowed=True,
                    fields=entry.explicit.fields,
                    scope=entry.explicit.scope,
                    reason="grant",
                )
            return Decision(allowed=True, reason="cascade")

        if not table.is_configured(role, resource):
            strategy = table.strategy(role)
            if action in strategy:
                return Decision(allowed=True, scope=strategy[action], reason="strategy")

        return DENY

    def roles(self) -> Tuple[str, ...]:
        return self._table.roles()

    def describe_role(self, role: str) -> Optional[Dict[str, Any]]:
        table = self._table
        if not table.has_role(role):
            return None
        resources = table.to_dict().get(role, {})
        return {
            "role": role,
            "strategy": {
                "actions": [
                    f"{name}:{scope}" if scope else name
                    for name, scope in sorted(table.strategy(role).items())
                ]
            },
            "configured": list(table.configured_resources(role)),
            "resources": resources,
        }
