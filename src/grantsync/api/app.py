from __future__ import annotations

from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from grantsync import __version__
from grantsync.acl.bootstrap import AclApp
from grantsync.api.middleware.acl_enforce import AclEnforcementMiddleware
from grantsync.api.routers.health import router as health_router
from grantsync.api.routers.roles import router as roles_router
from grantsync.config import get_settings
from grantsync.exceptions import GrantSyncException


def create_app(
    acl: Optional[AclApp] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> FastAPI:
    app = FastAPI(title="grantsync", version=__version__)
    app.state.acl = acl or AclApp.from_settings()
    app.state.acl.register_default_skip_rules()

    if session_factory is None:
        from grantsync.database import SessionLocal

        session_factory = SessionLocal
        manage_schema = True
    else:
        manage_schema = False
    app.state.session_factory = session_factory

    app.add_middleware(AclEnforcementMiddleware)
    app.include_router(health_router, prefix="/api")
    app.include_router(roles_router, prefix="/api")

    @app.exception_handler(GrantSyncException)
    async def _grantsync_exception_handler(_request: Request, exc: GrantSyncException):
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.on_event("startup")
    def _startup() -> None:
        settings = get_settings()
        if manage_schema and settings.ENVIRONMENT == "dev":
            from grantsync.database import init_db

            # Dev convenience: auto-create tables. Production should own its schema.
            init_db(create_tables=True)
        if settings.SEED_ON_START:
            from grantsync.seeder import SeederRegistry

            db = app.state.session_factory()
            try:
                SeederRegistry.run_all(app.state.acl.repository(db))
            finally:
                db.close()
        # Serve nothing before the registry is complete.
        app.state.acl.start(app.state.session_factory)

    @app.on_event("shutdown")
    def _shutdown() -> None:  # pragma: no cover
        app.state.acl.shutdown()

    return app
