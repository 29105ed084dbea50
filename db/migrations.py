"""
db/migrations.py
----------------
Applies the ordered, append-only SQL scripts in ``db/sql/`` and
records each one in the ``schema_migrations`` ledger.

Run directly (or through ``main.py migrate``) against the configured
database:
    python -m db.migrations
"""

import hashlib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from config import MIGRATIONS_DIR
from db import errors
from db.schema import ALL_TABLES
from utils.logger import get_logger

logger = get_logger(__name__)

LEDGER_TABLE = "schema_migrations"
# Shared by every process migrating the same database.
ADVISORY_LOCK_KEY = 7240113

LEDGER_SQL = f"""
CREATE TABLE IF NOT EXISTS {LEDGER_TABLE} (
    name        TEXT PRIMARY KEY,
    checksum    TEXT NOT NULL,
    applied_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

PathLike = Union[str, Path, None]


class MigrationState(Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    APPLIED = "applied"
    FAILED = "failed"


@dataclass(frozen=True)
class MigrationScript:
    """One SQL file; its file name is its ledger key."""
    name: str
    path: Path

    def read_sql(self) -> str:
        return self.path.read_text(encoding="utf-8")

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.path.read_bytes()).hexdigest()


@dataclass
class MigrationStatus:
    applied: list[str]
    pending: list[str]

    @property
    def last_applied(self) -> Optional[str]:
        return self.applied[-1] if self.applied else None

    @property
    def up_to_date(self) -> bool:
        return not self.pending

    def to_dict(self) -> dict:
        return {
            "applied": self.applied,
            "pending": self.pending,
            "last_applied": self.last_applied,
        }


def resolve_scripts_dir(scripts_dir: PathLike = None) -> Path:
    """
    Locate the migrations folder.

    An explicit path wins; otherwise MIGRATIONS_DIR, then the folder next
    to this module, then ``./db/sql`` under the working directory.

    Raises:
        MigrationError: If no candidate directory exists.
    """
    if scripts_dir:
        candidates = [Path(scripts_dir)]
    else:
        candidates = [
            Path(__file__).resolve().parent / "sql",
            Path.cwd() / "db" / "sql",
        ]
        if MIGRATIONS_DIR:
            candidates.insert(0, Path(MIGRATIONS_DIR))

    for candidate in candidates:
        if candidate.is_dir():
            return candidate
    tried = ", ".join(str(c) for c in candidates)
    raise errors.MigrationError(f"No migrations directory found (tried: {tried})")


def discover_scripts(scripts_dir: PathLike = None) -> list[MigrationScript]:
    """All ``*.sql`` files in ascending name order."""
    directory = resolve_scripts_dir(scripts_dir)
    scripts = [MigrationScript(p.name, p) for p in directory.glob("*.sql") if p.is_file()]
    return sorted(scripts, key=lambda s: s.name)


class MigrationRunner:
    """
    Brings one database up to the newest script, safely re-entrant.

    Each script and its ledger row are committed in the same transaction,
    so a failure leaves earlier scripts applied and the rest pending.
    """

    def __init__(self, database, scripts_dir: PathLike = None):
        self.database = database
        self.scripts_dir = scripts_dir
        self.state = MigrationState.NOT_STARTED
        self.last_run: list[str] = []

    # ── Ledger ────────────────────────────────────────────

    def _ensure_ledger(self) -> None:
        with self.database.transaction() as cur:
            cur.execute(LEDGER_SQL)

    def _read_ledger(self) -> dict[str, str]:
        """Applied script names mapped to their recorded checksums."""
        with self.database.transaction() as cur:
            cur.execute("SELECT to_regclass(%s) AS ledger;", (LEDGER_TABLE,))
            row = cur.fetchone()
            if not row or row["ledger"] is None:
                return {}
            cur.execute(f"SELECT name, checksum FROM {LEDGER_TABLE} ORDER BY name;")
            return {r["name"]: r["checksum"] for r in cur.fetchall()}

    # ── Ordering ──────────────────────────────────────────

    @staticmethod
    def _pending(scripts: list[MigrationScript], ledger: dict[str, str]) -> list[MigrationScript]:
        on_disk = {s.name: s for s in scripts}
        for name, checksum in ledger.items():
            script = on_disk.get(name)
            if script is None:
                logger.warning(f"Ledger lists {name} but no such script exists.")
            elif script.checksum != checksum:
                logger.warning(f"Applied migration {name} was modified after it ran.")

        pending = [s for s in scripts if s.name not in ledger]
        if ledger and pending:
            newest = max(ledger)
            skipped = [s.name for s in pending if s.name < newest]
            if skipped:
                raise errors.MigrationError(
                    f"Unapplied migration(s) {', '.join(skipped)} sort before "
                    f"already-applied {newest}; refusing to apply out of order"
                )
        return pending

    # ── Operations ────────────────────────────────────────

    def _apply(self, script: MigrationScript) -> bool:
        try:
            sql = script.read_sql()
            checksum = script.checksum
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Could not read migration {script.name}: {e}")
            raise errors.MigrationError(f"Could not read migration {script.name}: {e}", e) from e
        try:
            with self.database.transaction() as cur:
                cur.execute("SELECT pg_advisory_xact_lock(%s);", (ADVISORY_LOCK_KEY,))
                cur.execute(f"SELECT 1 FROM {LEDGER_TABLE} WHERE name = %s;", (script.name,))
                if cur.fetchone():
                    logger.info(f"Migration {script.name} was applied concurrently; skipping.")
                    return False
                if sql.strip():
                    cur.execute(sql)
                cur.execute(
                    f"INSERT INTO {LEDGER_TABLE} (name, checksum) VALUES (%s, %s);",
                    (script.name, checksum),
                )
        except errors.DatabaseError as e:
            logger.error(f"Migration {script.name} failed: {e}")
            raise errors.MigrationError(f"Migration {script.name} failed: {e.message}", e) from e
        logger.info(f"Applied migration {script.name}")
        return True

    def apply_pending(self) -> list[str]:
        """
        Apply every script not yet in the ledger, in name order.

        Returns:
            Names applied by this call (empty when already up to date).

        Raises:
            MigrationError: On a failing script, an out-of-order ledger or
                an unreachable database.
        """
        self.state = MigrationState.RUNNING
        applied: list[str] = []
        try:
            scripts = discover_scripts(self.scripts_dir)
            self._ensure_ledger()
            pending = self._pending(scripts, self._read_ledger())
            if pending:
                logger.info(f"Applying {len(pending)} pending migration(s)...")
            for script in pending:
                if self._apply(script):
                    applied.append(script.name)
        except errors.DatabaseError as e:
            self.state = MigrationState.FAILED
            if isinstance(e, errors.MigrationError):
                raise
            raise errors.MigrationError(f"Migration run failed: {e.message}", e) from e
        except (OSError, UnicodeDecodeError) as e:
            self.state = MigrationState.FAILED
            logger.error(f"Migration run failed: {e}")
            raise errors.MigrationError(f"Migration run failed: {e}", e) from e

        self.state = MigrationState.APPLIED
        self.last_run = applied
        if not applied:
            logger.info("Database schema is up to date.")
        return applied

    def status(self) -> MigrationStatus:
        """Read-only view of applied and pending scripts."""
        scripts = discover_scripts(self.scripts_dir)
        ledger = self._read_ledger()
        return MigrationStatus(
            applied=sorted(ledger),
            pending=[s.name for s in scripts if s.name not in ledger],
        )


def apply_pending(database, scripts_dir: PathLike = None) -> list[str]:
    return MigrationRunner(database, scripts_dir).apply_pending()


def migration_status(database, scripts_dir: PathLike = None) -> MigrationStatus:
    return MigrationRunner(database, scripts_dir).status()


def verify_schema(database, tables=ALL_TABLES) -> list[str]:
    """
    Compare the live schema with the table descriptors.

    Returns:
        Human-readable drift messages; empty when everything matches.
    """
    names = [t.name for t in tables]
    with database.transaction() as cur:
        cur.execute(
            """
            SELECT table_name, column_name, data_type, is_nullable
            FROM information_schema.columns
            WHERE table_schema = current_schema() AND table_name = ANY(%s);
            """,
            (names,),
        )
        rows = cur.fetchall()

    live: dict[str, dict[str, dict]] = {}
    for row in rows:
        live.setdefault(row["table_name"], {})[row["column_name"]] = row

    problems = []
    for table in tables:
        columns = live.get(table.name)
        if not columns:
            problems.append(f"{table.name}: table missing")
            continue
        for col in table.columns:
            info = columns.get(col.name)
            if info is None:
                problems.append(f"{table.name}.{col.name}: column missing")
                continue
            if info["data_type"] != col.info_schema_type:
                problems.append(
                    f"{table.name}.{col.name}: type {info['data_type']} "
                    f"(expected {col.info_schema_type})"
                )
            if (info["is_nullable"] == "YES") != col.nullable:
                expected = "nullable" if col.nullable else "NOT NULL"
                problems.append(f"{table.name}.{col.name}: expected {expected}")
        for name in sorted(set(columns) - set(table.column_names)):
            problems.append(f"{table.name}.{name}: column not described")
    return problems


if __name__ == "__main__":
    from db.connection import ConnectionManager

    manager = ConnectionManager(migrate=False)
    db = manager.get_connection()
    newly = apply_pending(db)
    db.close()
    print(f"Applied {len(newly)} migration(s).")
