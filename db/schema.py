"""
db/schema.py
------------
Declarative table descriptors: the single source of truth for every
table's columns, defaults and field rules.

Two generators read the same descriptors:
    - `render_table` / `render_schema` produce PostgreSQL DDL for
      migration scripts and for drift checks.
    - `insert_model` / `update_model` build pydantic models that
      repositories use to validate payloads before any SQL runs.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Annotated, Any, Literal, Mapping, Optional

import pydantic
from pydantic import AnyHttpUrl, ConfigDict, EmailStr, Field, StringConstraints

from db.errors import ValidationError

# ── Descriptor types ──────────────────────────────────────

_INFO_SCHEMA_TYPES = {
    "TEXT": "text",
    "BOOLEAN": "boolean",
    "TIMESTAMPTZ": "timestamp with time zone",
    "DATE": "date",
}


@dataclass(frozen=True)
class ForeignKey:
    """Reference to a parent table column."""
    table: str
    column: str = "id"
    on_delete: str = "CASCADE"


@dataclass(frozen=True)
class Column:
    """
    One column of a table.

    Attributes:
        name: Column name (also the payload key).
        sql_type: PostgreSQL type as written in DDL.
        kind: Semantic type driving validation
              ('id', 'text', 'email', 'url', 'bool', 'timestamp', 'date', 'enum').
        nullable: Whether NULL is allowed.
        default: SQL default expression, rendered verbatim.
        min_length / max_length: Character bounds for text-like kinds.
        choices: Allowed values for 'enum' columns.
        unique: Single-column uniqueness.
        primary_key: Marks the primary key.
        references: Foreign key target, if any.
        writable: Whether callers may supply the value (ids, owner ids
                  and timestamps are set by the repositories).
    """
    name: str
    sql_type: str
    kind: str = "text"
    nullable: bool = True
    default: Optional[str] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    choices: tuple = ()
    unique: bool = False
    primary_key: bool = False
    references: Optional[ForeignKey] = None
    writable: bool = True

    @property
    def required(self) -> bool:
        """True when an insert payload must provide this column."""
        return self.writable and not self.nullable and self.default is None

    @property
    def info_schema_type(self) -> str:
        return _INFO_SCHEMA_TYPES.get(self.sql_type, self.sql_type.lower())


@dataclass(frozen=True)
class Index:
    name: str
    columns: tuple
    unique: bool = False


@dataclass(frozen=True)
class Table:
    name: str
    columns: tuple
    unique_together: tuple = ()
    indexes: tuple = ()

    def column(self, name: str) -> Column:
        for col in self.columns:
            if col.name == name:
                return col
        raise KeyError(f"{self.name} has no column {name!r}")

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    @property
    def writable_columns(self) -> list[Column]:
        return [c for c in self.columns if c.writable]


def _id() -> Column:
    return Column("id", "TEXT", kind="id", nullable=False, primary_key=True, writable=False)


def _owner() -> Column:
    return Column(
        "user_id", "TEXT", kind="id", nullable=False,
        references=ForeignKey("users"), writable=False,
    )


def _timestamps() -> tuple:
    return (
        Column("created_at", "TIMESTAMPTZ", kind="timestamp", nullable=False,
               default="NOW()", writable=False),
        Column("updated_at", "TIMESTAMPTZ", kind="timestamp", nullable=False,
               default="NOW()", writable=False),
    )


# ── Tables ────────────────────────────────────────────────

TODO_PRIORITIES = ("low", "medium", "high")

USERS = Table(
    name="users",
    columns=(
        _id(),
        Column("external_id", "TEXT", min_length=1, max_length=255, unique=True),
        Column("email", "TEXT", kind="email", nullable=False, unique=True),
        Column("name", "TEXT", min_length=1, max_length=100),
        Column("avatar_url", "TEXT", kind="url"),
        Column("email_verified", "BOOLEAN", kind="bool", nullable=False, default="FALSE"),
        Column("dark_mode", "BOOLEAN", kind="bool", nullable=False, default="FALSE"),
        Column("timezone", "TEXT", max_length=64, default="'UTC'"),
        Column("language", "TEXT", min_length=2, max_length=5, default="'en'"),
        *_timestamps(),
    ),
)

SESSIONS = Table(
    name="sessions",
    columns=(
        _id(),
        _owner(),
        Column("token", "TEXT", nullable=False, unique=True, min_length=1),
        Column("expires_at", "TIMESTAMPTZ", kind="timestamp", nullable=False),
        Column("ip_address", "TEXT", max_length=64),
        Column("user_agent", "TEXT"),
        *_timestamps(),
    ),
    indexes=(Index("idx_sessions_user", ("user_id",)),),
)

ACCOUNTS = Table(
    name="accounts",
    columns=(
        _id(),
        _owner(),
        Column("account_id", "TEXT", nullable=False, min_length=1),
        Column("provider_id", "TEXT", nullable=False, min_length=1),
        Column("access_token", "TEXT"),
        Column("refresh_token", "TEXT"),
        Column("id_token", "TEXT"),
        Column("access_token_expires_at", "TIMESTAMPTZ", kind="timestamp"),
        Column("refresh_token_expires_at", "TIMESTAMPTZ", kind="timestamp"),
        Column("scope", "TEXT"),
        Column("password", "TEXT"),
        *_timestamps(),
    ),
    unique_together=(("provider_id", "account_id"),),
    indexes=(Index("idx_accounts_user", ("user_id",)),),
)

VERIFICATIONS = Table(
    name="verifications",
    columns=(
        _id(),
        Column("identifier", "TEXT", nullable=False, min_length=1),
        Column("value", "TEXT", nullable=False, min_length=1),
        Column("expires_at", "TIMESTAMPTZ", kind="timestamp", nullable=False),
        *_timestamps(),
    ),
    indexes=(Index("idx_verifications_identifier", ("identifier",)),),
)

TODOS = Table(
    name="todos",
    columns=(
        _id(),
        _owner(),
        Column("title", "TEXT", nullable=False, min_length=1, max_length=255),
        Column("description", "TEXT", max_length=1000),
        Column("completed", "BOOLEAN", kind="bool", nullable=False, default="FALSE"),
        Column("priority", "TEXT", kind="enum", nullable=False, default="'medium'",
               choices=TODO_PRIORITIES),
        Column("due_date", "DATE", kind="date"),
        *_timestamps(),
    ),
    indexes=(Index("idx_todos_user_created", ("user_id", "created_at DESC")),),
)

# Parents before children.
ALL_TABLES = (USERS, SESSIONS, ACCOUNTS, VERIFICATIONS, TODOS)


def get_table(name: str) -> Table:
    for table in ALL_TABLES:
        if table.name == name:
            return table
    raise KeyError(f"Unknown table {name!r}")


# ── DDL generator ─────────────────────────────────────────

def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _check_clause(col: Column) -> Optional[str]:
    if col.choices:
        options = ", ".join(_quote(c) for c in col.choices)
        return f"CHECK ({col.name} IN ({options}))"
    if col.min_length is not None and col.max_length is not None:
        return f"CHECK (char_length({col.name}) BETWEEN {col.min_length} AND {col.max_length})"
    if col.max_length is not None:
        return f"CHECK (char_length({col.name}) <= {col.max_length})"
    if col.min_length is not None:
        return f"CHECK (char_length({col.name}) >= {col.min_length})"
    return None


def render_column(col: Column) -> str:
    """Render a single column definition."""
    parts = [col.name, col.sql_type]
    if col.primary_key:
        parts.append("PRIMARY KEY")
    elif not col.nullable:
        parts.append("NOT NULL")
    if col.unique:
        parts.append("UNIQUE")
    if col.default is not None:
        parts.append(f"DEFAULT {col.default}")
    if col.references is not None:
        ref = col.references
        parts.append(f"REFERENCES {ref.table}({ref.column}) ON DELETE {ref.on_delete}")
    check = _check_clause(col)
    if check:
        parts.append(check)
    return " ".join(parts)


def render_table(table: Table) -> str:
    """
    Render CREATE TABLE plus its indexes.

    Output is idempotent (IF NOT EXISTS) so a script built from it can be
    replayed against a database that already has the table.
    """
    lines = [f"    {render_column(c)}" for c in table.columns]
    lines += [f"    UNIQUE ({', '.join(cols)})" for cols in table.unique_together]
    statements = [
        f"CREATE TABLE IF NOT EXISTS {table.name} (\n" + ",\n".join(lines) + "\n);"
    ]
    for idx in table.indexes:
        kind = "UNIQUE INDEX" if idx.unique else "INDEX"
        statements.append(
            f"CREATE {kind} IF NOT EXISTS {idx.name} ON {table.name} ({', '.join(idx.columns)});"
        )
    return "\n".join(statements)


def render_schema(tables=ALL_TABLES) -> str:
    return "\n\n".join(render_table(t) for t in tables) + "\n"


# ── Validator generator ───────────────────────────────────

_KIND_TYPES: dict[str, Any] = {
    "id": str,
    "text": str,
    "email": EmailStr,
    "url": AnyHttpUrl,
    "bool": bool,
    "timestamp": datetime,
    "date": date,
}

_EMAIL = pydantic.TypeAdapter(EmailStr)


def normalize_email(value: Any) -> Optional[str]:
    """
    Normalise an address the way `email` columns are stored on insert.

    Returns:
        The normalised address, or None if `value` is not a valid email.
    """
    try:
        return _EMAIL.validate_python(value)
    except pydantic.ValidationError:
        return None


_model_cache: dict[tuple[str, str], type[pydantic.BaseModel]] = {}


def _python_type(col: Column) -> Any:
    if col.kind == "enum":
        return Literal[col.choices]
    base = _KIND_TYPES[col.kind]
    if base is str and (col.min_length is not None or col.max_length is not None):
        return Annotated[str, StringConstraints(min_length=col.min_length, max_length=col.max_length)]
    return base


def _build_model(table: Table, mode: str) -> type[pydantic.BaseModel]:
    fields: dict[str, Any] = {}
    for col in table.writable_columns:
        annotation = _python_type(col)
        if col.nullable:
            annotation = Optional[annotation]
        if mode == "insert" and col.required:
            fields[col.name] = (annotation, ...)
        else:
            # Unset defaults are never validated, so a non-nullable column
            # still rejects an explicit None.
            fields[col.name] = (annotation, Field(default=None))
    model_name = "".join(p.capitalize() for p in table.name.split("_")) + mode.capitalize()
    return pydantic.create_model(
        model_name,
        __config__=ConfigDict(extra="ignore"),
        **fields,
    )


def insert_model(table: Table) -> type[pydantic.BaseModel]:
    """Pydantic model for creating a row of `table`."""
    key = (table.name, "insert")
    if key not in _model_cache:
        _model_cache[key] = _build_model(table, "insert")
    return _model_cache[key]


def update_model(table: Table) -> type[pydantic.BaseModel]:
    """Pydantic model for a partial update of `table`; every field optional."""
    key = (table.name, "update")
    if key not in _model_cache:
        _model_cache[key] = _build_model(table, "update")
    return _model_cache[key]


def _error_details(exc: pydantic.ValidationError) -> list[dict]:
    details = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or None
        details.append({"field": loc, "message": err.get("msg", "invalid value")})
    return details


def _to_storage(table: Table, values: dict) -> dict:
    for name, value in values.items():
        if value is not None and table.column(name).kind == "url":
            values[name] = str(value)
    return values


def _validate(table: Table, model: type[pydantic.BaseModel], payload: Any, action: str) -> dict:
    if isinstance(payload, pydantic.BaseModel):
        payload = payload.model_dump(exclude_unset=True)
    try:
        parsed = model.model_validate(payload)
    except pydantic.ValidationError as e:
        details = _error_details(e)
        fields = ", ".join(str(d["field"]) for d in details)
        raise ValidationError(
            f"Invalid {table.name} {action} payload ({fields})", details=details, original=e
        ) from e
    return _to_storage(table, parsed.model_dump(exclude_unset=True))


def validate_insert(table: Table, data: Mapping[str, Any]) -> dict:
    """
    Validate a create payload.

    Returns:
        Dict of caller-supplied, writable columns ready for INSERT.
        Columns the caller omitted are left to their SQL defaults.

    Raises:
        ValidationError: If any rule fails.
    """
    return _validate(table, insert_model(table), data, "insert")


def validate_update(table: Table, patch: Mapping[str, Any]) -> dict:
    """
    Validate a partial update.

    Returns:
        Dict containing only the keys present in `patch` that map to
        writable columns.

    Raises:
        ValidationError: If any supplied value breaks a rule.
    """
    return _validate(table, update_model(table), patch, "update")


def validate_pagination(limit: Any = None, offset: Any = None) -> tuple[Optional[int], Optional[int]]:
    """
    Check optional limit/offset values.

    Raises:
        ValidationError: If limit is not a positive integer or offset is
            negative.
    """
    details = []
    for name, value, minimum in (("limit", limit, 1), ("offset", offset, 0)):
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
            details.append({"field": name, "message": f"must be an integer >= {minimum}"})
    if details:
        raise ValidationError(
            f"Invalid pagination ({', '.join(d['field'] for d in details)})", details=details
        )
    return limit, offset
