"""
Wiring and lifecycle of the grant engine.

    acl = AclApp.from_settings()
    acl.register_default_skip_rules()
    acl.start(SessionLocal)      # exactly one full rebuild before serving
    ...
    acl.shutdown()
"""

from __future__ import annotations

import logging
from threading import Lock
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from grantsync.acl.association_rules import AssociationRuleTable, load_association_rules
from grantsync.acl.cascade import CascadeResolver
from grantsync.acl.registry import Decision, PermissionRegistry
from grantsync.acl.repository import AclRepository
from grantsync.acl.sync import RebuildSummary, SyncEngine
from grantsync.config import Settings, get_settings

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]

# (resource, action, predicate) registered by default.
LOGGED_IN_SKIP_RULES = (
    ("roles.menuUiSchemas", "set"),
    ("roles.menuUiSchemas", "toggle"),
    ("roles.menuUiSchemas", "list"),
    ("roles", "check"),
)


def root_role_predicate(root_role: str) -> Callable[[Any], bool]:
    def is_root(context: Any) -> bool:
        return getattr(context, "current_role", None) == root_role

    is_root.__name__ = f"role:{root_role}"
    return is_root


class AclApp:
    def __init__(self, rules: AssociationRuleTable, *, root_role: str = "root"):
        if not rules.frozen:
            rules.freeze()
        self.rules = rules
        self.root_role = root_role
        self.registry = PermissionRegistry()
        self.resolver = CascadeResolver(rules)
        self.sync = SyncEngine(self.registry, self.resolver)
        self._start_lock = Lock()
        self._started = False
        self._default_skips_registered = False

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "AclApp":
        settings = settings or get_settings()
        rules = load_association_rules(settings.ASSOCIATION_RULES_FILE or None)
        return cls(rules, root_role=settings.ROOT_ROLE)

    @property
    def started(self) -> bool:
        return self._started

    def register_default_skip_rules(self) -> None:
        if self._default_skips_registered:
            return
        for resource, action in LOGGED_IN_SKIP_RULES:
            self.registry.skip(resource, action, "logged-in")
        self.registry.skip("*", "*", root_role_predicate(self.root_role))
        self._default_skips_registered = True

    def start(self, session_factory: SessionFactory) -> Optional[RebuildSummary]:
        """
        Run the one full rebuild of this process.

        Later calls are no-ops once a rebuild has succeeded; a failed rebuild
        raises and leaves the registry not-ready so `start` can be retried.
        """
        with self._start_lock:
            if self._started:
                return None
            session = session_factory()
            try:
                summary = self.sync.rebuild(session)
            finally:
                session.close()
            self._started = True
            return summary

    def shutdown(self) -> None:
        with self._start_lock:
            self.registry.reset()
            self._started = False
        logger.info("Permission registry torn down")

    def repository(self, session: Session) -> AclRepository:
        return AclRepository(session, self.sync)

    def check(self, role: str, resource: str, action: str, context: Any = None) -> Decision:
        return self.registry.check(role, resource, action, context)
