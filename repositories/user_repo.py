"""
repositories/user_repo.py
--------------------------
Data access layer for user records.

Users are addressed directly by id, email or identity-provider id; there
is no ownership scope. Deleting a user cascades to their sessions,
accounts and todos at the storage level.
"""

import uuid
from typing import Any, Mapping, Optional

from db.connection import Database
from db.errors import DatabaseError, ValidationError
from db.schema import USERS, normalize_email, validate_insert, validate_pagination, validate_update
from models.user import User
from utils.logger import get_logger

logger = get_logger(__name__)


class UserRepository:
    """Repository for CRUD operations on the users table."""

    def __init__(self, database: Database):
        self.db = database

    def create(self, data: Mapping[str, Any]) -> User:
        """
        Insert a new user with a generated id.

        Raises:
            ValidationError: Payload breaks a field rule.
            ConstraintError: Email or external id already taken.
        """
        values = {"id": str(uuid.uuid4()), **validate_insert(USERS, data)}
        columns = ", ".join(values)
        placeholders = ", ".join(["%s"] * len(values))
        sql = f"INSERT INTO users ({columns}) VALUES ({placeholders}) RETURNING *;"
        try:
            with self.db.transaction() as cur:
                cur.execute(sql, list(values.values()))
                row = cur.fetchone()
        except DatabaseError as e:
            logger.error(f"Failed to create user: {e}")
            raise
        user = User.from_row(row)
        logger.info(f"Created user {user.id}")
        return user

    def _fetch_one(self, column: str, value: Any) -> Optional[User]:
        sql = f"SELECT * FROM users WHERE {column} = %s;"
        with self.db.transaction() as cur:
            cur.execute(sql, (value,))
            row = cur.fetchone()
            return User.from_row(row) if row else None

    def get_by_id(self, user_id: str) -> Optional[User]:
        return self._fetch_one("id", user_id)

    def get_by_email(self, email: str) -> Optional[User]:
        """Look up by address, normalised as on insert; invalid input matches nobody."""
        normalized = normalize_email(email)
        if normalized is None:
            return None
        return self._fetch_one("email", normalized)

    def get_by_external_id(self, external_id: str) -> Optional[User]:
        return self._fetch_one("external_id", external_id)

    def list(self, limit: Optional[int] = None, offset: Optional[int] = None) -> list[User]:
        """All users, newest first, optionally paginated."""
        limit, offset = validate_pagination(limit, offset)
        sql = "SELECT * FROM users ORDER BY created_at DESC, id DESC"
        params: list = []
        if limit is not None:
            sql += " LIMIT %s"
            params.append(limit)
        if offset is not None:
            sql += " OFFSET %s"
            params.append(offset)
        with self.db.transaction() as cur:
            cur.execute(sql + ";", params)
            return [User.from_row(r) for r in cur.fetchall()]

    def update(self, user_id: str, patch: Mapping[str, Any]) -> Optional[User]:
        """
        Change only the supplied fields; always refreshes `updated_at`.

        Returns:
            The updated User, or None if no such user.
        """
        values = validate_update(USERS, patch)
        assignments = [f"{name} = %s" for name in values] + ["updated_at = NOW()"]
        sql = f"UPDATE users SET {', '.join(assignments)} WHERE id = %s RETURNING *;"
        try:
            with self.db.transaction() as cur:
                cur.execute(sql, [*values.values(), user_id])
                row = cur.fetchone()
        except DatabaseError as e:
            logger.error(f"Failed to update user {user_id}: {e}")
            raise
        return User.from_row(row) if row else None

    def delete(self, user_id: str) -> Optional[User]:
        """
        Physically delete a user; dependent rows go with it.

        Returns:
            The deleted User, or None if no such user.
        """
        sql = "DELETE FROM users WHERE id = %s RETURNING *;"
        try:
            with self.db.transaction() as cur:
                cur.execute(sql, (user_id,))
                row = cur.fetchone()
        except DatabaseError as e:
            logger.error(f"Failed to delete user {user_id}: {e}")
            raise
        if row:
            logger.info(f"Deleted user {user_id}")
            return User.from_row(row)
        return None

    def upsert_from_external_identity(self, external_id: str, attrs: Mapping[str, Any]) -> User:
        """
        Create or refresh the local profile for an identity-provider user.

        Uses PostgreSQL's ON CONFLICT (upsert) on `external_id`; an existing
        row only has the attributes present in `attrs` overwritten.

        Args:
            external_id: The provider's stable user id.
            attrs: Profile attributes (`email` required, plus any of `name`,
                   `avatar_url`, `email_verified`, ...).

        Raises:
            ValidationError: Missing external id or invalid attributes.
            ConstraintError: The email belongs to a different user.
        """
        if not isinstance(external_id, str) or not external_id.strip():
            raise ValidationError(
                "external_id is required",
                details=[{"field": "external_id", "message": "must be a non-empty string"}],
            )
        values = validate_insert(USERS, {**dict(attrs), "external_id": external_id})
        row_values = {"id": str(uuid.uuid4()), **values}
        columns = ", ".join(row_values)
        placeholders = ", ".join(["%s"] * len(row_values))
        updates = [f"{c} = EXCLUDED.{c}" for c in values if c != "external_id"]
        updates.append("updated_at = NOW()")
        sql = f"""
            INSERT INTO users ({columns})
            VALUES ({placeholders})
            ON CONFLICT (external_id) DO UPDATE SET {', '.join(updates)}
            RETURNING *, (xmax = 0) AS inserted;
        """
        try:
            with self.db.transaction() as cur:
                cur.execute(sql, list(row_values.values()))
                row = cur.fetchone()
        except DatabaseError as e:
            logger.error(f"Failed to sync user {external_id}: {e}")
            raise
        action = "Created" if row.get("inserted") else "Updated"
        user = User.from_row(row)
        logger.info(f"{action} user {user.id} from external identity {external_id}")
        return user
