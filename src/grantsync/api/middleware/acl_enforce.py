from __future__ import annotations

from typing import Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.status import HTTP_403_FORBIDDEN

from grantsync.config import get_settings
from grantsync.context import get_acl_context, role_var, user_id_var
from grantsync.exceptions import RegistryNotReadyError

API_PREFIX = "/api/"
ANONYMOUS_ROLE = "anonymous"


def parse_action_path(path: str) -> Optional[Tuple[str, str]]:
    """
    Map an action URL to `(resource, action)`.

    /api/orders:list          -> ("orders", "list")
    /api/orders/1/items:add   -> ("orders.items", "add")

    Paths without a `<name>:<action>` tail are not action requests.
    """
    if not path.startswith(API_PREFIX):
        return None
    parts = [p for p in path[len(API_PREFIX):].split("/") if p]
    if not parts or ":" not in parts[-1]:
        return None
    name, _, action = parts[-1].rpartition(":")
    if not name or not action:
        return None
    if len(parts) >= 3:
        return f"{parts[0]}.{name}", action
    return name, action


class AclEnforcementMiddleware(BaseHTTPMiddleware):
    """
    Consult the permission registry before every action request.

    The current role and user come from headers; the decision's fields and
    scope are left on `request.state.acl` for the handlers' own filtering.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        settings = get_settings()
        target = parse_action_path(request.url.path)
        if target is None or request.method.upper() == "OPTIONS":
            return await call_next(request)

        role = (request.headers.get(settings.ROLE_HEADER) or "").strip() or ANONYMOUS_ROLE
        user_id = (request.headers.get(settings.USER_HEADER) or "").strip() or None

        role_token = role_var.set(role)
        user_token = user_id_var.set(user_id)
        try:
            resource, action = target
            acl = request.app.state.acl
            try:
                decision = acl.check(role, resource, action, get_acl_context())
            except RegistryNotReadyError as e:
                return JSONResponse(e.to_dict(), status_code=e.status_code)

            if not decision.allowed and settings.ACL_ENFORCE:
                return JSONResponse(
                    {
                        "detail": "No permissions",
                        "role": role,
                        "resource": resource,
                        "action": action,
                    },
                    status_code=HTTP_403_FORBIDDEN,
                )

            request.state.acl = decision
            return await call_next(request)
        finally:
            user_id_var.reset(user_token)
            role_var.reset(role_token)
