from __future__ import annotations

from fastapi import APIRouter, Request

from grantsync import __version__
from grantsync.config import get_settings

router = APIRouter(tags=["system"])


@router.get("/health")
def health(request: Request) -> dict:
    settings = get_settings()
    acl = request.app.state.acl
    return {
        "ok": acl.registry.is_ready,
        "service": "grantsync",
        "version": __version__,
        "environment": settings.ENVIRONMENT,
        "registry_ready": acl.registry.is_ready,
        "roles": len(acl.registry.roles()),
        "skip_rules": len(acl.registry.skip_rules),
    }
