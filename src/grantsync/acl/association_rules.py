"""
Association rule table.

For each association kind (linkTo, attachments, subTable, ...) and each action
available on the owning resource, which actions are implied on the
association itself and on the association's target resource.

The table is configuration: built once at startup (built-in rules plus an
optional YAML file), validated, then frozen.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from grantsync.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssociationFieldAction:
    association_actions: Tuple[str, ...] = ()
    target_actions: Tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, payload: Any) -> "AssociationFieldAction":
        if isinstance(payload, AssociationFieldAction):
            return payload
        if not isinstance(payload, Mapping):
            raise ConfigurationError(
                "Association rule entry must be a mapping", config_key="association_rules"
            )
        association = payload.get("association_actions", payload.get("associationActions"))
        target = payload.get("target_actions", payload.get("targetActions"))
        return cls(
            association_actions=tuple(_as_list(association)),
            target_actions=tuple(_as_list(target)),
        )

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "association_actions": list(self.association_actions),
            "target_actions": list(self.target_actions),
        }


RuleEntries = Mapping[str, Union[AssociationFieldAction, Mapping[str, Any]]]


BUILTIN_ACTIONS: Tuple[str, ...] = (
    "view",
    "list",
    "get",
    "create",
    "update",
    "destroy",
    "export",
    "add",
    "remove",
    "toggle",
    "set",
    "upload",
)


BUILTIN_ASSOCIATION_RULES: Dict[str, Dict[str, AssociationFieldAction]] = {
    "linkTo": {
        "view": AssociationFieldAction(("list", "get")),
        "create": AssociationFieldAction(("add",), ("view",)),
        "update": AssociationFieldAction(("add", "remove", "toggle"), ("view",)),
    },
    "attachments": {
        "view": AssociationFieldAction(("list", "get")),
        "add": AssociationFieldAction(("upload", "add")),
        "update": AssociationFieldAction(("update", "add", "remove", "toggle")),
    },
    "subTable": {
        "view": AssociationFieldAction(("list", "get")),
        "create": AssociationFieldAction(("create",)),
        "update": AssociationFieldAction(("update", "destroy")),
    },
}


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        items = [item.strip() for item in value.split(",")]
        return [item for item in items if item]
    if isinstance(value, Iterable):
        items = [str(item).strip() for item in value]
        return [item for item in items if item]
    return []


class AssociationRuleTable:
    def __init__(self, actions: Iterable[str] = BUILTIN_ACTIONS) -> None:
        self._rules: Dict[str, Dict[str, AssociationFieldAction]] = {}
        self._actions: Set[str] = set(actions)
        self._frozen = False

    @classmethod
    def with_builtin_rules(cls) -> "AssociationRuleTable":
        table = cls()
        for kind, entries in BUILTIN_ASSOCIATION_RULES.items():
            table.register(kind, entries)
        return table

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _ensure_mutable(self) -> None:
        if self._frozen:
            raise ConfigurationError(
                "Association rules are frozen after startup validation",
                config_key="association_rules",
            )

    def register_action(self, name: str) -> None:
        """Declare a custom action name so rules may reference it."""
        self._ensure_mutable()
        self._actions.add(name)

    def register(self, kind: str, entries: RuleEntries) -> None:
        """Register (or replace) the rules of one association kind."""
        self._ensure_mutable()
        self._rules[kind] = {
            str(action): AssociationFieldAction.from_payload(payload)
            for action, payload in entries.items()
        }

    def lookup(self, kind: Optional[str], action: str) -> Optional[AssociationFieldAction]:
        if not kind:
            return None
        return self._rules.get(kind, {}).get(action)

    def kinds(self) -> Tuple[str, ...]:
        return tuple(sorted(self._rules))

    @property
    def actions(self) -> Tuple[str, ...]:
        return tuple(sorted(self._actions))

    def errors(self) -> List[str]:
        errors: List[str] = []
        for kind, entries in sorted(self._rules.items()):
            if not kind.strip():
                errors.append("Association kind must be a non-empty name")
            if not entries:
                errors.append(f"{kind}: no actions configured")
            for action, rule in sorted(entries.items()):
                if action not in self._actions:
                    errors.append(f"{kind}.{action}: unknown available action '{action}'")
                if not rule.association_actions and not rule.target_actions:
                    errors.append(f"{kind}.{action}: rule grants nothing")
                for name in rule.association_actions:
                    if name not in self._actions:
                        errors.append(f"{kind}.{action}: unknown association action '{name}'")
                for name in rule.target_actions:
                    if name not in self._actions:
                        errors.append(f"{kind}.{action}: unknown target action '{name}'")
        return errors

    def validate(self) -> None:
        errors = self.errors()
        if errors:
            raise ConfigurationError(
                "Invalid association rules", config_key="association_rules", errors=errors
            )

    def freeze(self) -> "AssociationRuleTable":
        self.validate()
        self._frozen = True
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "actions": list(self.actions),
            "rules": {
                kind: {action: rule.to_dict() for action, rule in sorted(entries.items())}
                for kind, entries in sorted(self._rules.items())
            },
        }


def apply_rules_payload(table: AssociationRuleTable, payload: Any, *, source: str) -> None:
    """
    Merge a `{"actions": [...], "rules": {kind: {action: {...}}}}` payload.

    Kinds present in the payload replace the existing kind wholesale.
    """
    if not isinstance(payload, Mapping):
        raise ConfigurationError(
            f"Association rules must be a mapping ({source})", config_key="association_rules"
        )
    for name in _as_list(payload.get("actions")):
        table.register_action(name)
    rules = payload.get("rules") or {}
    if not isinstance(rules, Mapping):
        raise ConfigurationError(
            f"'rules' must map association kinds to actions ({source})",
            config_key="association_rules",
        )
    for kind, entries in rules.items():
        if not isinstance(entries, Mapping):
            raise ConfigurationError(
                f"Rules for '{kind}' must be a mapping ({source})",
                config_key="association_rules",
            )
        table.register(str(kind), entries)


def load_association_rules(path: Optional[Union[str, Path]] = None) -> AssociationRuleTable:
    """Built-in rules, merged with the YAML file at `path` if given; validated and frozen."""
    table = AssociationRuleTable.with_builtin_rules()
    if path:
        rules_path = Path(path)
        if not rules_path.exists():
            raise ConfigurationError(
                f"Association rules file not found: {rules_path}",
                config_key="ASSOCIATION_RULES_FILE",
            )
        import yaml

        with open(rules_path, "r", encoding="utf-8") as f:
            payload = yaml.safe_load(f) or {}
        apply_rules_payload(table, payload, source=str(rules_path))
        logger.info(f"Loaded association rules from {rules_path}")
    return table.freeze()
