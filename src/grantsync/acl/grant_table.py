"""
Grant table: the storage behind the permission registry.

Layout is role -> resource -> action -> GrantEntry. An entry may hold an
explicit grant (fields + scope), any number of cascade origins, or both. It
stays in the table while at least one of them is present.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, Iterator, Optional, Set, Tuple


@dataclass(frozen=True, order=True)
class CascadeOrigin:
    """The explicit grant `(resource, action)` that produced a derived grant via `field`."""

    resource: str
    action: str
    field: str


@dataclass(frozen=True)
class ExplicitGrant:
    fields: Optional[FrozenSet[str]] = None  # None: all fields
    scope: Any = None


@dataclass
class GrantEntry:
    explicit: Optional[ExplicitGrant] = None
    origins: Set[CascadeOrigin] = field(default_factory=set)

    @property
    def is_live(self) -> bool:
        return self.explicit is not None or bool(self.origins)

    def copy(self) -> "GrantEntry":
        return GrantEntry(explicit=self.explicit, origins=set(self.origins))


def normalize_fields(fields: Optional[Iterable[str]]) -> Optional[FrozenSet[str]]:
    if not fields:
        return None
    return frozenset(str(f) for f in fields)


class GrantTable:
    def __init__(self) -> None:
        self._entries: Dict[str, Dict[str, Dict[str, GrantEntry]]] = {}
        self._strategies: Dict[str, Dict[str, Any]] = {}
        self._configured: Dict[str, Set[str]] = {}

    def copy(self) -> "GrantTable":
        clone = GrantTable()
        clone._entries = {
            role: {
                resource: {action: entry.copy() for action, entry in actions.items()}
                for resource, actions in resources.items()
            }
            for role, resources in self._entries.items()
        }
        clone._strategies = {role: dict(s) for role, s in self._strategies.items()}
        clone._configured = {role: set(r) for role, r in self._configured.items()}
        return clone

    # Roles -----------------------------------------------------------------

    def define_role(self, role: str, strategy: Optional[Dict[str, Any]] = None) -> None:
        self._entries.setdefault(role, {})
        self._configured.setdefault(role, set())
        self._strategies[role] = dict(strategy or {})

    def has_role(self, role: str) -> bool:
        return role in self._entries

    def roles(self) -> Tuple[str, ...]:
        return tuple(sorted(self._entries))

    def drop_role(self, role: str) -> None:
        self._entries.pop(role, None)
        self._strategies.pop(role, None)
        self._configured.pop(role, None)

    def strategy(self, role: str) -> Dict[str, Any]:
        return self._strategies.get(role, {})

    # Resources ---------------------------------------------------------------

    def mark_configured(self, role: str, resource: str) -> None:
        self.define_role_if_missing(role)
        self._configured[role].add(resource)

    def unmark_configured(self, role: str, resource: str) -> None:
        self._configured.get(role, set()).discard(resource)

    def is_configured(self, role: str, resource: str) -> bool:
        return resource in self._configured.get(role, ())

    def configured_resources(self, role: str) -> Tuple[str, ...]:
        return tuple(sorted(self._configured.get(role, ())))

    def resources(self, role: str) -> Tuple[str, ...]:
        return tuple(sorted(self._entries.get(role, {})))

    def define_role_if_missing(self, role: str) -> None:
        if role not in self._entries:
            self.define_role(role)

    # Entries -----------------------------------------------------------------

    def get(self, role: str, resource: str, action: str) -> Optional[GrantEntry]:
        return self._entries.get(role, {}).get(resource, {}).get(action)

    def actions(self, role: str, resource: str) -> Dict[str, GrantEntry]:
        return dict(self._entries.get(role, {}).get(resource, {}))

    def _slot(self, role: str, resource: str, action: str) -> GrantEntry:
        self.define_role_if_missing(role)
        actions = self._entries[role].setdefault(resource, {})
        entry = actions.get(action)
        if entry is None:
            entry = actions[action] = GrantEntry()
        return entry

    def put_explicit(self, role: str, resource: str, action: str, grant: ExplicitGrant) -> None:
        self._slot(role, resource, action).explicit = grant

    def add_origin(self, role: str, resource: str, action: str, origin: CascadeOrigin) -> None:
        self._slot(role, resource, action).origins.add(origin)

    def remove_explicit(self, role: str, resource: str, action: str) -> None:
        entry = self.get(role, resource, action)
        if entry is None:
            return
        entry.explicit = None
        self._prune(role, resource, action)

    def remove_explicit_resource(self, role: str, resource: str) -> None:
        for action in list(self._entries.get(role, {}).get(resource, {})):
            self.remove_explicit(role, resource, action)

    def discard_origins(self, role: str, match: Callable[[CascadeOrigin], bool]) -> None:
        """Drop every origin of `role` accepted by `match`, pruning emptied entries."""
        for resource, actions in list(self._entries.get(role, {}).items()):
            for action, entry in list(actions.items()):
                stale = {o for o in entry.origins if match(o)}
                if stale:
                    entry.origins -= stale
                    self._prune(role, resource, action)

    def _prune(self, role: str, resource: str, action: str) -> None:
        resources = self._entries.get(role)
        if not resources or resource not in resources:
            return
        actions = resources[resource]
        entry = actions.get(action)
        if entry is not None and not entry.is_live:
            del actions[action]
        if not actions:
            del resources[resource]

    # Views -------------------------------------------------------------------

    def iter_entries(self) -> Iterator[Tuple[str, str, str, GrantEntry]]:
        for role in sorted(self._entries):
            for resource in sorted(self._entries[role]):
                for action in sorted(self._entries[role][resource]):
                    yield role, resource, action, self._entries[role][resource][action]

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for role, resource, action, entry in self.iter_entries():
            explicit = entry.explicit
            out.setdefault(role, {}).setdefault(resource, {})[action] = {
                "explicit": explicit is not None,
                "fields": sorted(explicit.fields) if explicit and explicit.fields else None,
                "scope": explicit.scope if explicit else None,
                "origins": [
                    f"{o.resource}:{o.action}@{o.field}" for o in sorted(entry.origins)
                ],
            }
        return out

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GrantTable):
            return NotImplemented
        return (
            self._entries == other._entries
            and self._strategies == other._strategies
            and self._configured == other._configured
        )

    def __len__(self) -> int:
        return sum(1 for _ in self.iter_entries())
