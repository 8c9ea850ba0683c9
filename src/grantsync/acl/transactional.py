"""
Transaction-scoped registry updates.

Registry patches computed inside a SQLAlchemy Session are collected on the
session and applied only after the outermost transaction successfully
commits. Each patch remembers the transaction (or SAVEPOINT) it was staged
in, so rolling back a SAVEPOINT drops only the patches staged inside it.
"""

from __future__ import annotations

import logging
from threading import Lock
from typing import List, Optional, Tuple

from sqlalchemy import event
from sqlalchemy.orm import Session, SessionTransaction

from grantsync.acl.registry import PermissionRegistry, RegistryPatch

logger = logging.getLogger(__name__)

_PENDING_PATCHES_KEY = "grantsync_pending_patches"
_REGISTER_LOCK = Lock()
_REGISTERED = False

PendingPatch = Tuple[Optional[SessionTransaction], PermissionRegistry, RegistryPatch]


def stage_patch(
    session: Optional[Session], registry: PermissionRegistry, patch: RegistryPatch
) -> None:
    """
    Queue `patch` for `registry` until `session` commits.

    Without a session (no unit of work) the patch is applied immediately.
    """
    if session is None:
        registry.apply(patch)
        return
    _ensure_session_hooks()
    transaction = session.get_nested_transaction() or session.get_transaction()
    pending: List[PendingPatch] = session.info.setdefault(_PENDING_PATCHES_KEY, [])
    pending.append((transaction, registry, patch))


def pending_patches(session: Session) -> List[Tuple[PermissionRegistry, RegistryPatch]]:
    """Patches staged on `session` and not yet applied, in staging order."""
    return [(registry, patch) for _, registry, patch in session.info.get(_PENDING_PATCHES_KEY, [])]


def _ensure_session_hooks() -> None:
    global _REGISTERED
    if _REGISTERED:
        return
    with _REGISTER_LOCK:
        if _REGISTERED:
            return
        event.listen(Session, "after_commit", _after_commit)
        event.listen(Session, "after_soft_rollback", _after_rollback)
        _REGISTERED = True


def _staged_within(
    transaction: Optional[SessionTransaction], ancestor: SessionTransaction
) -> bool:
    if transaction is None:
        return ancestor.parent is None
    while transaction is not None:
        if transaction is ancestor:
            return True
        transaction = transaction.parent
    return False


def _after_commit(session: Session) -> None:
    # Releasing a SAVEPOINT is not a commit of the unit of work.
    if session.get_nested_transaction() is not None:
        return
    pending: List[PendingPatch] = session.info.pop(_PENDING_PATCHES_KEY, [])
    if not pending:
        return
    # One mutation per registry so readers see the whole commit or none of it.
    by_registry: List[Tuple[PermissionRegistry, List[RegistryPatch]]] = []
    for _, registry, patch in pending:
        for known, patches in by_registry:
            if known is registry:
                patches.append(patch)
                break
        else:
            by_registry.append((registry, [patch]))
    for registry, patches in by_registry:
        registry.apply(*patches)
        logger.debug(f"Applied {len(patches)} staged registry patch(es) after commit")


def _after_rollback(session: Session, previous_transaction: SessionTransaction) -> None:
    # Drop only what was staged inside the transaction or SAVEPOINT that rolled back.
    pending: List[PendingPatch] = session.info.get(_PENDING_PATCHES_KEY, [])
    if not pending:
        return
    kept = [item for item in pending if not _staged_within(item[0], previous_transaction)]
    dropped = len(pending) - len(kept)
    if kept:
        session.info[_PENDING_PATCHES_KEY] = kept
    else:
        session.info.pop(_PENDING_PATCHES_KEY, None)
    if dropped:
        logger.debug(f"Discarded {dropped} staged registry patch(es) on rollback")
