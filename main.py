"""
main.py
-------
Operator CLI for the TaskNest database.

Responsibilities:
    - Apply pending migrations and report ledger status.
    - Check connectivity and compare the live schema with the descriptors.
    - Create (or drop and recreate) the database itself.
    - Generate the next numbered migration script from table descriptors.

Usage:
    tasknest-db migrate
    tasknest-db generate add_labels --table todos
"""

import re
from pathlib import Path
from typing import Optional

import click
import psycopg2
from psycopg2 import sql

from config import MAINTENANCE_DB
from db import errors
from db.connection import ConnectionManager, DatabaseConfig, resolve_config
from db.migrations import (
    MigrationRunner,
    discover_scripts,
    migration_status,
    resolve_scripts_dir,
    verify_schema,
)
from db.schema import get_table, render_schema
from utils.logger import configure_logging, get_logger

logger = get_logger(__name__)

_SCRIPT_NUMBER = re.compile(r"^(\d+)_")


def _open(scripts_dir: Optional[str] = None, migrate: bool = False, config: Optional[DatabaseConfig] = None):
    manager = ConnectionManager(config=config, scripts_dir=scripts_dir, migrate=migrate)
    try:
        return manager, manager.get_connection()
    except errors.DatabaseError as e:
        raise click.ClickException(f"[{e.code}] {e.message}") from e


def _maintenance_connection(config: DatabaseConfig):
    """Autocommit connection to the server's maintenance database."""
    try:
        conn = psycopg2.connect(**config.with_database(MAINTENANCE_DB).connect_kwargs())
    except psycopg2.Error as e:
        err = errors.translate(e)
        raise click.ClickException(f"[{err.code}] {err.message}") from e
    conn.autocommit = True
    return conn


def _database_exists(cur, name: str) -> bool:
    cur.execute("SELECT 1 FROM pg_database WHERE datname = %s;", (name,))
    return cur.fetchone() is not None


def _target_config(name: Optional[str]) -> DatabaseConfig:
    try:
        config = resolve_config()
    except errors.DatabaseError as e:
        raise click.ClickException(f"[{e.code}] {e.message}") from e
    if name:
        config = config.with_database(name)
    if not config.database_name:
        raise click.ClickException("No database name configured (set DB_NAME or pass NAME).")
    return config


def _run_migrations(config: DatabaseConfig, scripts_dir: Optional[str] = None) -> list[str]:
    manager, database = _open(scripts_dir=scripts_dir, config=config)
    try:
        return MigrationRunner(database, scripts_dir).apply_pending()
    except errors.DatabaseError as e:
        raise click.ClickException(f"[{e.code}] {e.message}") from e
    finally:
        manager.reset()


@click.group()
@click.version_option(package_name="tasknest")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Database management for TaskNest.

    Connection settings come from DATABASE_URL or the DB_* variables,
    optionally loaded from a .env file.
    """
    if verbose:
        configure_logging("DEBUG")


# ── 1. Migrations ─────────────────────────────────────────

@cli.command()
@click.option("--dir", "scripts_dir", type=click.Path(file_okay=False), default=None,
              help="Directory holding the numbered .sql scripts.")
def migrate(scripts_dir: Optional[str]) -> None:
    """Apply every pending migration script in order."""
    applied = _run_migrations(_target_config(None), scripts_dir)
    if applied:
        for name in applied:
            click.echo(f"  applied {name}")
    click.echo(f"Applied {len(applied)} migration(s).")


@cli.command()
@click.option("--dir", "scripts_dir", type=click.Path(file_okay=False), default=None)
def status(scripts_dir: Optional[str]) -> None:
    """Show applied and pending migration scripts."""
    manager, database = _open(scripts_dir=scripts_dir)
    try:
        state = migration_status(database, scripts_dir)
    except errors.DatabaseError as e:
        raise click.ClickException(f"[{e.code}] {e.message}") from e
    finally:
        manager.reset()

    for name in state.applied:
        click.echo(f"  [x] {name}")
    for name in state.pending:
        click.echo(f"  [ ] {name}")
    click.echo("Up to date." if state.up_to_date else f"{len(state.pending)} pending.")


# ── 2. Diagnostics ────────────────────────────────────────

@cli.command()
def health() -> None:
    """Check that the database answers a trivial query."""
    manager = ConnectionManager(migrate=False)
    current = manager.status()
    manager.reset()
    if not current.healthy:
        raise click.ClickException(f"Unhealthy: {current.error or 'no response'}")
    click.echo(f"Healthy: {current.database.config.describe()}")


@cli.command()
def verify() -> None:
    """Compare live tables and columns with the table descriptors."""
    manager, database = _open()
    try:
        problems = verify_schema(database)
    except errors.DatabaseError as e:
        raise click.ClickException(f"[{e.code}] {e.message}") from e
    finally:
        manager.reset()

    if problems:
        for problem in problems:
            click.echo(f"  - {problem}")
        raise click.ClickException(f"Schema drift: {len(problems)} problem(s).")
    click.echo("Schema matches descriptors.")


# ── 3. Database lifecycle ─────────────────────────────────

@cli.command("init-db")
@click.argument("name", required=False)
def init_db(name: Optional[str]) -> None:
    """Create the database if it is missing, then migrate it."""
    config = _target_config(name)
    target = config.database_name
    conn = _maintenance_connection(config)
    try:
        with conn.cursor() as cur:
            if _database_exists(cur, target):
                click.echo(f"Database {target} already exists.")
            else:
                cur.execute(sql.SQL("CREATE DATABASE {}").format(sql.Identifier(target)))
                logger.info(f"Created database {target}")
                click.echo(f"Created database {target}.")
    except psycopg2.Error as e:
        err = errors.translate(e)
        raise click.ClickException(f"[{err.code}] {err.message}") from e
    finally:
        conn.close()

    applied = _run_migrations(config)
    click.echo(f"Applied {len(applied)} migration(s).")


@cli.command()
@click.argument("name", required=False)
@click.confirmation_option(prompt="This drops the database and every row in it. Continue?")
def setup(name: Optional[str]) -> None:
    """Drop and recreate the database, then migrate it from scratch."""
    config = _target_config(name)
    target = config.database_name
    conn = _maintenance_connection(config)
    try:
        with conn.cursor() as cur:
            # Other sessions would block DROP DATABASE.
            cur.execute(
                "SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
                "WHERE datname = %s AND pid <> pg_backend_pid();",
                (target,),
            )
            cur.execute(sql.SQL("DROP DATABASE IF EXISTS {}").format(sql.Identifier(target)))
            cur.execute(sql.SQL("CREATE DATABASE {}").format(sql.Identifier(target)))
        logger.warning(f"Recreated database {target}")
        click.echo(f"Recreated database {target}.")
    except psycopg2.Error as e:
        err = errors.translate(e)
        raise click.ClickException(f"[{err.code}] {err.message}") from e
    finally:
        conn.close()

    applied = _run_migrations(config)
    click.echo(f"Applied {len(applied)} migration(s).")


# ── 4. Script generation ──────────────────────────────────

def next_script_path(scripts_dir: Path, name: str) -> Path:
    """Path for the next numbered script, e.g. ``0003_add_labels.sql``."""
    slug = re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")
    if not slug:
        raise click.BadParameter("name must contain letters or digits", param_hint="NAME")
    numbers = [
        int(m.group(1))
        for m in (_SCRIPT_NUMBER.match(s.name) for s in discover_scripts(scripts_dir))
        if m
    ]
    return scripts_dir / f"{max(numbers, default=0) + 1:04d}_{slug}.sql"


@cli.command()
@click.argument("name")
@click.option("--table", "tables", multiple=True, required=True,
              help="Table descriptor to render (repeatable).")
@click.option("--dir", "scripts_dir", type=click.Path(file_okay=False), default=None)
def generate(name: str, tables: tuple, scripts_dir: Optional[str]) -> None:
    """Write the next numbered migration script rendered from descriptors."""
    try:
        directory = resolve_scripts_dir(scripts_dir)
        descriptors = [get_table(t) for t in tables]
    except (errors.DatabaseError, KeyError) as e:
        raise click.ClickException(str(e)) from e

    path = next_script_path(directory, name)
    header = f"-- {path.stem}: {', '.join(t.name for t in descriptors)}\n"
    path.write_text(header + render_schema(descriptors), encoding="utf-8")
    logger.info(f"Generated migration script {path.name}")
    click.echo(f"Wrote {path}")


if __name__ == "__main__":
    cli()
