"""
db/errors.py
------------
Error taxonomy shared by every layer of the data package.

Repositories never let a psycopg2 exception escape: everything passes
through `translate()` and comes out as one of the classes below. Each
class carries the HTTP status a route handler should answer with.
"""

from typing import Any, Optional

import psycopg2
from psycopg2 import errors as pg_errors


class DatabaseError(Exception):
    """Base class for all data-layer failures."""

    code = "DATABASE_ERROR"
    http_status = 500

    def __init__(self, message: str, original: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.original = original

    def to_dict(self) -> dict:
        return {"code": self.code, "error": self.message}


class ConfigurationError(DatabaseError):
    """Missing or incomplete connection configuration. Fatal at startup."""

    code = "CONFIGURATION_ERROR"
    http_status = 500


class ConnectionError(DatabaseError):  # noqa: A001 - part of the public taxonomy
    """Storage unreachable, pool exhausted or an operation timed out."""

    code = "CONNECTION_ERROR"
    http_status = 503


class MigrationError(DatabaseError):
    """A migration script failed or the ledger is out of order."""

    code = "MIGRATION_ERROR"
    http_status = 500


class QueryError(DatabaseError):
    """Any other driver failure (syntax errors, missing tables, ...)."""

    code = "QUERY_ERROR"
    http_status = 500


class ValidationError(DatabaseError):
    """
    Payload failed the schema rules before reaching storage.

    Attributes:
        details: List of ``{"field": str, "message": str}`` entries.
    """

    code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(
        self,
        message: str,
        details: Optional[list[dict[str, Any]]] = None,
        original: Optional[BaseException] = None,
    ):
        super().__init__(message, original)
        self.details = details or []

    @property
    def fields(self) -> list[str]:
        return [d["field"] for d in self.details]

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["details"] = self.details
        return payload


class ConstraintError(DatabaseError):
    """
    A unique, foreign-key, check or not-null constraint rejected a row.

    Attributes:
        kind: 'unique' | 'foreign_key' | 'check' | 'not_null' | 'integrity'.
        constraint: Constraint name reported by PostgreSQL, if any.
    """

    code = "CONSTRAINT_ERROR"

    def __init__(
        self,
        message: str,
        kind: str = "integrity",
        constraint: Optional[str] = None,
        original: Optional[BaseException] = None,
    ):
        super().__init__(message, original)
        self.kind = kind
        self.constraint = constraint

    @property
    def http_status(self) -> int:  # type: ignore[override]
        return 409 if self.kind == "unique" else 400

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["kind"] = self.kind
        payload["constraint"] = self.constraint
        return payload


# ── Driver error translation ──────────────────────────────

_CONSTRAINT_KINDS = (
    (pg_errors.UniqueViolation, "unique"),
    (pg_errors.ForeignKeyViolation, "foreign_key"),
    (pg_errors.CheckViolation, "check"),
    (pg_errors.NotNullViolation, "not_null"),
)


def _constraint_name(exc: psycopg2.Error) -> Optional[str]:
    diag = getattr(exc, "diag", None)
    return getattr(diag, "constraint_name", None) if diag is not None else None


def translate(exc: BaseException) -> DatabaseError:
    """
    Map a psycopg2 exception onto the data-layer taxonomy.

    Already-translated errors are returned unchanged.
    """
    if isinstance(exc, DatabaseError):
        return exc

    detail = str(exc).strip() or exc.__class__.__name__

    if isinstance(exc, pg_errors.QueryCanceled):
        return ConnectionError(f"Statement timed out: {detail}", exc)

    if isinstance(exc, psycopg2.IntegrityError):
        for cls, kind in _CONSTRAINT_KINDS:
            if isinstance(exc, cls):
                return ConstraintError(
                    f"{kind.replace('_', ' ')} constraint violated: {detail}",
                    kind=kind,
                    constraint=_constraint_name(exc),
                    original=exc,
                )
        return ConstraintError(
            f"Integrity constraint violated: {detail}",
            constraint=_constraint_name(exc),
            original=exc,
        )

    if isinstance(exc, psycopg2.DataError):
        return ValidationError(
            f"Invalid value for storage: {detail}",
            details=[{"field": None, "message": detail}],
            original=exc,
        )

    if isinstance(exc, (psycopg2.OperationalError, psycopg2.InterfaceError)):
        return ConnectionError(f"Database unreachable: {detail}", exc)

    if isinstance(exc, psycopg2.Error):
        return QueryError(f"Query failed: {detail}", exc)

    if isinstance(exc, TimeoutError):
        return ConnectionError(f"Operation timed out: {detail}", exc)

    return QueryError(f"Unexpected database failure: {detail}", exc)
