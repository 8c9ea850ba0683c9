from __future__ import annotations

from typing import Generator

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from grantsync.context import get_acl_context

router = APIRouter(tags=["roles"])


def get_session(request: Request) -> Generator[Session, None, None]:
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


@router.get("/roles:check")
async def check_role(request: Request) -> dict:
    """Everything the current role is allowed to do, as seen by the registry."""
    ctx = get_acl_context()
    acl = request.app.state.acl
    described = acl.registry.describe_role(ctx.current_role or "")
    if described is None:
        raise HTTPException(status_code=404, detail=f"Role not found: {ctx.current_role}")
    described["skip"] = [
        {"resource": rule.resource, "action": rule.action, "predicate": rule.name}
        for rule in acl.registry.skip_rules
    ]
    return described


@router.get("/roles:list")
def list_roles(request: Request, db: Session = Depends(get_session)) -> dict:
    acl = request.app.state.acl
    roles = acl.repository(db).list_roles(include_hidden=False)
    return {
        "items": [
            {
                "name": role.name,
                "title": role.title,
                "default": role.default,
                "strategy": role.strategy,
            }
            for role in roles
        ]
    }
