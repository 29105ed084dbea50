"""
db/connection.py
----------------
Manages the PostgreSQL connection pool and its lifecycle.
Uses psycopg2's ThreadedConnectionPool for connection reuse across
concurrent request threads.

The process entry point builds one `ConnectionManager` and hands the
`Database` it produces to the repositories. Nothing here lives in module
globals.
"""

import os
import threading
import time
import weakref
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Iterator, Mapping, Optional, Union
from urllib.parse import urlsplit

import psycopg2
from psycopg2 import extras, pool

from config import (
    DEFAULT_CONNECT_TIMEOUT_SECONDS,
    DEFAULT_IDLE_TIMEOUT_SECONDS,
    DEFAULT_POOL_MAX,
    DEFAULT_POOL_MIN,
)
from db import errors
from db.migrations import MigrationRunner
from utils.logger import get_logger

logger = get_logger(__name__)

_DISCRETE_KEYS = ("DB_HOST", "DB_PORT", "DB_USER", "DB_PASSWORD", "DB_NAME")
_TRUTHY = ("1", "true", "yes", "on")


# ── Configuration ─────────────────────────────────────────

@dataclass(frozen=True)
class DatabaseConfig:
    """
    Resolved connection settings.

    Either `dsn` is set, or all of host/port/user/password/database are.
    `database` may also accompany a dsn to override its database name.
    """
    dsn: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    user: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    database: Optional[str] = None
    ssl: bool = False
    max_connections: int = DEFAULT_POOL_MAX
    min_connections: int = DEFAULT_POOL_MIN
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS
    idle_timeout: float = DEFAULT_IDLE_TIMEOUT_SECONDS
    statement_timeout_ms: Optional[int] = None

    @property
    def database_name(self) -> Optional[str]:
        if self.database:
            return self.database
        if self.dsn:
            return urlsplit(self.dsn).path.lstrip("/") or None
        return None

    def connect_kwargs(self) -> dict:
        """Keyword arguments for ``psycopg2.connect``."""
        kwargs: dict = {"connect_timeout": max(1, int(self.connect_timeout))}
        if self.dsn:
            kwargs["dsn"] = self.dsn
        else:
            kwargs.update(
                host=self.host,
                port=self.port,
                user=self.user,
                password=self.password,
            )
        if self.database:
            kwargs["dbname"] = self.database
        if self.ssl:
            kwargs["sslmode"] = "require"
        if self.statement_timeout_ms:
            kwargs["options"] = f"-c statement_timeout={int(self.statement_timeout_ms)}"
        return kwargs

    def with_database(self, name: str) -> "DatabaseConfig":
        """Same server and credentials, different database."""
        return replace(self, database=name)

    def describe(self) -> str:
        """Connection target without credentials, safe for logs."""
        if self.dsn:
            parts = urlsplit(self.dsn)
            host = parts.hostname or "localhost"
            port = parts.port or 5432
            user = parts.username or "?"
        else:
            host, port, user = self.host, self.port, self.user
        return f"{user}@{host}:{port}/{self.database_name or '?'}"


def _read(env: Mapping[str, str], key: str) -> Optional[str]:
    value = env.get(key)
    if value is None or not str(value).strip():
        return None
    return str(value).strip()


def _int_setting(env: Mapping[str, str], key: str, default: Optional[int], minimum: int) -> Optional[int]:
    raw = _read(env, key)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise errors.ConfigurationError(f"{key} must be an integer, got {raw!r}")
    if value < minimum:
        raise errors.ConfigurationError(f"{key} must be >= {minimum}, got {value}")
    return value


def _float_setting(env: Mapping[str, str], key: str, default: float) -> float:
    raw = _read(env, key)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise errors.ConfigurationError(f"{key} must be a number, got {raw!r}")
    if value <= 0:
        raise errors.ConfigurationError(f"{key} must be positive, got {value}")
    return value


def resolve_config(env: Optional[Mapping[str, str]] = None) -> DatabaseConfig:
    """
    Build a DatabaseConfig from environment-style settings.

    Args:
        env: Key/value mapping; defaults to ``os.environ``.

    Returns:
        A DatabaseConfig using DATABASE_URL when present, otherwise the
        discrete DB_* fields.

    Raises:
        ConfigurationError: If neither form is complete, or a value is
            malformed. Partial discrete sets are rejected, never defaulted.
    """
    env = os.environ if env is None else env

    max_conn = _int_setting(env, "DB_POOL_MAX", DEFAULT_POOL_MAX, 1)
    min_conn = _int_setting(env, "DB_POOL_MIN", min(DEFAULT_POOL_MIN, max_conn), 0)
    if min_conn > max_conn:
        raise errors.ConfigurationError(
            f"DB_POOL_MIN ({min_conn}) cannot exceed DB_POOL_MAX ({max_conn})"
        )
    tuning = dict(
        ssl=(_read(env, "DB_SSL") or "").lower() in _TRUTHY,
        max_connections=max_conn,
        min_connections=min_conn,
        connect_timeout=_float_setting(env, "DB_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT_SECONDS),
        idle_timeout=_float_setting(env, "DB_IDLE_TIMEOUT", DEFAULT_IDLE_TIMEOUT_SECONDS),
        statement_timeout_ms=_int_setting(env, "DB_STATEMENT_TIMEOUT_MS", None, 1),
    )

    url = _read(env, "DATABASE_URL")
    if url:
        return DatabaseConfig(dsn=url, **tuning)

    values = {key: _read(env, key) for key in _DISCRETE_KEYS}
    missing = [key for key, value in values.items() if value is None]
    if missing:
        raise errors.ConfigurationError(
            "Missing required database environment variables. "
            f"Provide either DATABASE_URL or all of: {', '.join(_DISCRETE_KEYS)} "
            f"(missing: {', '.join(missing)})"
        )

    return DatabaseConfig(
        host=values["DB_HOST"],
        port=_int_setting(env, "DB_PORT", None, 1),
        user=values["DB_USER"],
        password=values["DB_PASSWORD"],
        database=values["DB_NAME"],
        **tuning,
    )


# ── Pool ──────────────────────────────────────────────────

class BoundedPool:
    """
    ThreadedConnectionPool that makes callers wait for a free slot.

    psycopg2 pools raise immediately when exhausted; here acquisition
    blocks until a connection is returned or `connect_timeout` elapses.
    Returned connections are kept for reuse up to `max_connections`, and
    ones left idle longer than `idle_timeout` are replaced on their next
    checkout.
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        try:
            self._pool = pool.ThreadedConnectionPool(
                config.min_connections, config.max_connections, **config.connect_kwargs()
            )
        except psycopg2.Error as e:
            raise errors.ConnectionError(
                f"Could not open connection pool for {config.describe()}: {e}", e
            ) from e
        # psycopg2 closes returned connections beyond minconn; only the
        # first min_connections are opened eagerly.
        self._pool.minconn = config.max_connections
        self._slots = threading.BoundedSemaphore(config.max_connections)
        self._idle_since: "weakref.WeakKeyDictionary[object, float]" = weakref.WeakKeyDictionary()
        self._lock = threading.Lock()

    def _stale(self, conn) -> bool:
        with self._lock:
            idle_since = self._idle_since.pop(conn, None)
        if conn.closed:
            return True
        return idle_since is not None and time.monotonic() - idle_since > self.config.idle_timeout

    def getconn(self):
        if not self._slots.acquire(timeout=self.config.connect_timeout):
            raise errors.ConnectionError(
                f"Timed out after {self.config.connect_timeout:g}s waiting for a pooled connection"
            )
        try:
            conn = self._pool.getconn()
            if self._stale(conn):
                logger.debug("Replacing stale pooled connection")
                self._pool.putconn(conn, close=True)
                conn = self._pool.getconn()
            return conn
        except psycopg2.Error as e:
            self._slots.release()
            raise errors.ConnectionError(f"Could not acquire a database connection: {e}", e) from e
        except BaseException:
            self._slots.release()
            raise

    def putconn(self, conn, close: bool = False) -> None:
        try:
            close = close or bool(conn.closed)
            with self._lock:
                if close:
                    self._idle_since.pop(conn, None)
                else:
                    self._idle_since[conn] = time.monotonic()
            self._pool.putconn(conn, close=close)
        except psycopg2.Error as e:
            logger.warning(f"Could not return connection to pool: {e}")
        finally:
            self._slots.release()

    def idle_count(self) -> int:
        """Connections currently parked in the pool."""
        return len(self._pool._pool)

    def closeall(self) -> None:
        if not self._pool.closed:
            self._pool.closeall()
        with self._lock:
            self._idle_since.clear()


# ── Database handle ───────────────────────────────────────

class Database:
    """A pooled connection handle shared by all repositories."""

    def __init__(self, pool_, config: DatabaseConfig):
        self.pool = pool_
        self.config = config

    @staticmethod
    def _rollback(conn) -> bool:
        """Roll back; returns True when the connection should be discarded."""
        if conn.closed:
            return True
        try:
            conn.rollback()
            return False
        except psycopg2.Error as e:
            logger.warning(f"Rollback failed, discarding connection: {e}")
            return True

    @contextmanager
    def transaction(self) -> Iterator[extras.RealDictCursor]:
        """
        Check out a connection and yield a dict cursor inside one transaction.

        Commits when the block exits normally; rolls back otherwise.
        Driver errors are re-raised as data-layer errors.

        Raises:
            ConnectionError: If no connection can be acquired.
        """
        conn = self.pool.getconn()
        discard = False
        try:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                yield cur
            conn.commit()
        except psycopg2.Error as e:
            discard = self._rollback(conn)
            raise errors.translate(e) from e
        except BaseException:
            discard = self._rollback(conn)
            raise
        finally:
            self.pool.putconn(conn, close=discard)

    def close(self) -> None:
        """Close all connections in the pool."""
        self.pool.closeall()
        logger.info(f"Database connection pool closed ({self.config.describe()}).")


def health_check(database: Database) -> bool:
    """
    Issue a trivial round-trip query.

    Returns:
        True if the database answered, False on any failure (never raises).
    """
    try:
        with database.transaction() as cur:
            cur.execute("SELECT 1 AS ok;")
            cur.fetchone()
        return True
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        return False


# ── Lifecycle ─────────────────────────────────────────────

@dataclass
class ConnectionStatus:
    """Snapshot returned by `ConnectionManager.status()`."""
    database: Optional[Database]
    error: Optional[errors.DatabaseError]
    healthy: bool

    def to_dict(self) -> dict:
        return {
            "healthy": self.healthy,
            "error": self.error.message if self.error else None,
        }


class ConnectionManager:
    """
    Owns one pooled `Database` per configuration.

    The first `get_connection()` opens the pool and applies pending
    migrations exactly once; concurrent first callers wait for that same
    initialization. If initialization fails, the error is cached and
    re-raised on every later call without reconnecting. Only `reset()`
    or an explicit `reconnect()` clears it.
    """

    def __init__(
        self,
        config: Optional[DatabaseConfig] = None,
        env: Optional[Mapping[str, str]] = None,
        scripts_dir: Union[str, Path, None] = None,
        migrate: bool = True,
        pool_factory: Callable[[DatabaseConfig], object] = BoundedPool,
        runner_factory: Callable[..., MigrationRunner] = MigrationRunner,
    ):
        self._config = config
        self._env = env
        self._scripts_dir = scripts_dir
        self._migrate = migrate
        self._pool_factory = pool_factory
        self._runner_factory = runner_factory
        self._lock = threading.Lock()
        self._database: Optional[Database] = None
        self._error: Optional[errors.DatabaseError] = None
        self.healthy = False

    @property
    def last_error(self) -> Optional[errors.DatabaseError]:
        return self._error

    def get_connection(self) -> Database:
        """
        Return the shared handle, creating it on first use.

        Raises:
            ConfigurationError / ConnectionError / MigrationError: From the
                first failed initialization, cached until reset.
        """
        with self._lock:
            if self._database is None:
                if self._error is not None:
                    raise self._error
                self._database = self._initialize()
                return self._database
            database = self._database

        self.healthy = health_check(database)
        if not self.healthy:
            logger.warning("Cached database handle failed its health check.")
        return database

    def reconnect(self) -> Database:
        """Operator-initiated retry that ignores any cached failure."""
        with self._lock:
            self._close_current()
            self._error = None
            self._database = self._initialize()
            return self._database

    def reset(self) -> None:
        """Tear down the pool and forget cached handle and error state."""
        with self._lock:
            self._close_current()
            self._error = None
            self.healthy = False
        logger.info("Connection manager reset.")

    def status(self) -> ConnectionStatus:
        """Connection snapshot for health endpoints; never raises."""
        try:
            database = self.get_connection()
        except errors.DatabaseError as e:
            return ConnectionStatus(database=None, error=e, healthy=False)
        return ConnectionStatus(database=database, error=None, healthy=self.healthy)

    # ── internals (caller holds self._lock) ───────────────

    def _close_current(self) -> None:
        if self._database is not None:
            try:
                self._database.close()
            except Exception as e:
                logger.warning(f"Error while closing database pool: {e}")
            self._database = None

    def _initialize(self) -> Database:
        database: Optional[Database] = None
        try:
            config = self._config or resolve_config(self._env)
            logger.info(
                f"Opening database pool for {config.describe()} "
                f"(max {config.max_connections} connections)"
            )
            database = Database(self._pool_factory(config), config)

            if self._migrate:
                runner = self._runner_factory(database, self._scripts_dir)
                applied = runner.apply_pending()
                logger.info(f"Migrations complete ({len(applied)} newly applied).")

            if not health_check(database):
                raise errors.ConnectionError(
                    f"Database health check failed for {config.describe()}"
                )
        except Exception as e:
            if database is not None:
                try:
                    database.close()
                except Exception as close_error:
                    logger.warning(f"Error while closing database pool: {close_error}")
            self.healthy = False
            logger.error(f"Database initialization failed: {e}")
            if isinstance(e, errors.DatabaseError):
                self._error = e
                raise
            self._error = errors.ConnectionError(f"Database initialization failed: {e}", e)
            raise self._error from e

        self._error = None
        self.healthy = True
        return database
