from __future__ import annotations

from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional


role_var: ContextVar[Optional[str]] = ContextVar("current_role", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("current_user_id", default=None)


@dataclass(frozen=True)
class AclContext:
    """What a skip-rule predicate may look at; opaque to the registry itself."""

    current_role: Optional[str] = None
    current_user_id: Optional[str] = None

    @property
    def is_logged_in(self) -> bool:
        return bool(self.current_user_id)


def get_acl_context() -> AclContext:
    return AclContext(
        current_role=role_var.get(),
        current_user_id=user_id_var.get(),
    )
