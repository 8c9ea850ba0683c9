from __future__ import annotations

import json
import logging
from typing import Optional

import typer
import uvicorn
import yaml

from grantsync import __version__
from grantsync.config import get_settings
from grantsync.context import AclContext
from grantsync.exceptions import GrantSyncException

app = typer.Typer(add_completion=False, help="grantsync CLI")


@app.callback()
def _root(
    log_level: Optional[str] = typer.Option(None, help="Log level (default from settings)"),
) -> None:
    level = (log_level or get_settings().LOG_LEVEL).upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _started_acl():
    from grantsync.acl.bootstrap import AclApp
    from grantsync.database import SessionLocal

    acl = AclApp.from_settings()
    acl.register_default_skip_rules()
    try:
        acl.start(SessionLocal)
    except GrantSyncException as e:
        typer.echo(f"Rebuild failed: {e.message}", err=True)
        raise typer.Exit(code=1)
    return acl


@app.command()
def start(
    host: Optional[str] = typer.Option(None, help="Bind host"),
    port: Optional[int] = typer.Option(None, help="Bind port"),
    reload: bool = typer.Option(False, help="Auto-reload on changes (dev)"),
) -> None:
    settings = get_settings()
    uvicorn.run(
        "grantsync.api.app:create_app",
        factory=True,
        host=host or settings.HOST,
        port=port or settings.PORT,
        reload=reload,
    )


@app.command()
def version() -> None:
    typer.echo(__version__)


@app.command("init-db")
def init_db_cmd() -> None:
    """Create the ACL and collection tables."""
    from grantsync.database import init_db

    init_db(create_tables=True)
    typer.echo("Database initialized.")


@app.command()
def seed() -> None:
    """Seed the default roles and scopes (idempotent)."""
    from grantsync.acl.bootstrap import AclApp
    from grantsync.database import get_db_session, init_db
    from grantsync.seeder import SeederRegistry

    init_db(create_tables=True)
    acl = AclApp.from_settings()
    with get_db_session() as db:
        SeederRegistry.run_all(acl.repository(db))
    typer.echo("Seeding completed.")


@app.command()
def rebuild() -> None:
    """Run a full rebuild and print what was loaded."""
    acl = _started_acl()
    table = acl.registry.table
    typer.echo(f"roles: {len(table.roles())}")
    typer.echo(f"grants: {len(table)}")


@app.command()
def check(
    role: str = typer.Argument(..., help="Role name"),
    resource: str = typer.Argument(..., help="Resource name, e.g. orders or orders.items"),
    action: str = typer.Argument(..., help="Action name"),
    user_id: Optional[str] = typer.Option(None, "--user-id", help="Current user id for skip rules"),
) -> None:
    """Ask the registry for one decision."""
    acl = _started_acl()
    decision = acl.check(role, resource, action, AclContext(current_role=role, current_user_id=user_id))
    typer.echo(json.dumps(decision.to_dict(), ensure_ascii=False, default=str))
    if not decision.allowed:
        raise typer.Exit(code=2)


@app.command("describe-role")
def describe_role(role: str = typer.Argument(..., help="Role name")) -> None:
    acl = _started_acl()
    described = acl.registry.describe_role(role)
    if described is None:
        typer.echo(f"Role not found: {role}", err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(described, indent=2, ensure_ascii=False, default=str))


@app.command()
def rules() -> None:
    """Print the validated association rule table."""
    from grantsync.acl.association_rules import load_association_rules

    try:
        table = load_association_rules(get_settings().ASSOCIATION_RULES_FILE or None)
    except GrantSyncException as e:
        typer.echo(e.message, err=True)
        for error in e.details.get("errors", []):
            typer.echo(f"  - {error}", err=True)
        raise typer.Exit(code=1)
    typer.echo(yaml.safe_dump(table.to_dict(), sort_keys=False))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
