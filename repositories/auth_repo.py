"""
repositories/auth_repo.py
--------------------------
Storage for the auth collaborator's rows: sessions, provider accounts and
verification tokens. Nothing here issues or checks credentials; values
are stored and returned as given.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from db.connection import Database
from db.errors import DatabaseError
from db.schema import ACCOUNTS, SESSIONS, VERIFICATIONS, validate_insert, validate_update
from models.auth import Account, Session, Verification
from utils.logger import get_logger

logger = get_logger(__name__)


def _insert(db: Database, table: str, values: dict) -> dict:
    columns = ", ".join(values)
    placeholders = ", ".join(["%s"] * len(values))
    sql = f"INSERT INTO {table} ({columns}) VALUES ({placeholders}) RETURNING *;"
    with db.transaction() as cur:
        cur.execute(sql, list(values.values()))
        return cur.fetchone()


def _delete_count(db: Database, sql: str, params: tuple = ()) -> int:
    with db.transaction() as cur:
        cur.execute(sql, params)
        return cur.rowcount


class SessionRepository:
    """Repository for the sessions table."""

    def __init__(self, database: Database):
        self.db = database

    def create(
        self,
        user_id: str,
        token: str,
        expires_at: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Session:
        values = validate_insert(SESSIONS, {
            "token": token,
            "expires_at": expires_at,
            "ip_address": ip_address,
            "user_agent": user_agent,
        })
        try:
            row = _insert(self.db, "sessions", {"id": str(uuid.uuid4()), "user_id": user_id, **values})
        except DatabaseError as e:
            logger.error(f"Failed to create session for user {user_id}: {e}")
            raise
        logger.info(f"Created session for user {user_id}")
        return Session.from_row(row)

    def get_by_token(self, token: str) -> Optional[Session]:
        """Fetch an unexpired session by its token."""
        sql = "SELECT * FROM sessions WHERE token = %s AND expires_at > NOW();"
        with self.db.transaction() as cur:
            cur.execute(sql, (token,))
            row = cur.fetchone()
            return Session.from_row(row) if row else None

    def list_by_user(self, user_id: str) -> list[Session]:
        sql = "SELECT * FROM sessions WHERE user_id = %s ORDER BY created_at DESC;"
        with self.db.transaction() as cur:
            cur.execute(sql, (user_id,))
            return [Session.from_row(r) for r in cur.fetchall()]

    def extend(self, token: str, expires_at: datetime) -> Optional[Session]:
        """Move a session's expiry; returns None for unknown tokens."""
        values = validate_update(SESSIONS, {"expires_at": expires_at})
        sql = """
            UPDATE sessions SET expires_at = %s, updated_at = NOW()
            WHERE token = %s RETURNING *;
        """
        with self.db.transaction() as cur:
            cur.execute(sql, (values["expires_at"], token))
            row = cur.fetchone()
            return Session.from_row(row) if row else None

    def delete_by_token(self, token: str) -> bool:
        return _delete_count(self.db, "DELETE FROM sessions WHERE token = %s;", (token,)) > 0

    def delete_for_user(self, user_id: str) -> int:
        """Remove every session of a user (sign out everywhere)."""
        count = _delete_count(self.db, "DELETE FROM sessions WHERE user_id = %s;", (user_id,))
        logger.info(f"Removed {count} session(s) for user {user_id}")
        return count

    def delete_expired(self) -> int:
        count = _delete_count(self.db, "DELETE FROM sessions WHERE expires_at <= NOW();")
        if count:
            logger.info(f"Purged {count} expired session(s)")
        return count


class AccountRepository:
    """Repository for the accounts table."""

    def __init__(self, database: Database):
        self.db = database

    def link(self, user_id: str, provider_id: str, account_id: str, **fields: Any) -> Account:
        """
        Attach a provider account to a user.

        Extra keyword fields (`access_token`, `password`, `scope`, ...) are
        stored verbatim.

        Raises:
            ConstraintError: The provider account is already linked.
        """
        values = validate_insert(ACCOUNTS, {**fields, "provider_id": provider_id, "account_id": account_id})
        try:
            row = _insert(self.db, "accounts", {"id": str(uuid.uuid4()), "user_id": user_id, **values})
        except DatabaseError as e:
            logger.error(f"Failed to link {provider_id} account for user {user_id}: {e}")
            raise
        logger.info(f"Linked {provider_id} account for user {user_id}")
        return Account.from_row(row)

    def get_by_provider(self, provider_id: str, account_id: str) -> Optional[Account]:
        sql = "SELECT * FROM accounts WHERE provider_id = %s AND account_id = %s;"
        with self.db.transaction() as cur:
            cur.execute(sql, (provider_id, account_id))
            row = cur.fetchone()
            return Account.from_row(row) if row else None

    def list_by_user(self, user_id: str) -> list[Account]:
        sql = "SELECT * FROM accounts WHERE user_id = %s ORDER BY created_at ASC;"
        with self.db.transaction() as cur:
            cur.execute(sql, (user_id,))
            return [Account.from_row(r) for r in cur.fetchall()]

    def update(self, account_pk: str, user_id: str, patch: dict) -> Optional[Account]:
        """Refresh stored tokens or credentials, scoped to the owning user."""
        values = validate_update(ACCOUNTS, patch)
        assignments = [f"{name} = %s" for name in values] + ["updated_at = NOW()"]
        sql = (
            f"UPDATE accounts SET {', '.join(assignments)} "
            "WHERE id = %s AND user_id = %s RETURNING *;"
        )
        with self.db.transaction() as cur:
            cur.execute(sql, [*values.values(), account_pk, user_id])
            row = cur.fetchone()
            return Account.from_row(row) if row else None

    def unlink(self, account_pk: str, user_id: str) -> Optional[Account]:
        sql = "DELETE FROM accounts WHERE id = %s AND user_id = %s RETURNING *;"
        with self.db.transaction() as cur:
            cur.execute(sql, (account_pk, user_id))
            row = cur.fetchone()
        if row:
            logger.info(f"Unlinked account {account_pk} from user {user_id}")
            return Account.from_row(row)
        return None


class VerificationRepository:
    """Repository for short-lived verification tokens."""

    def __init__(self, database: Database):
        self.db = database

    def create(self, identifier: str, value: str, expires_at: datetime) -> Verification:
        values = validate_insert(VERIFICATIONS, {
            "identifier": identifier,
            "value": value,
            "expires_at": expires_at,
        })
        row = _insert(self.db, "verifications", {"id": str(uuid.uuid4()), **values})
        return Verification.from_row(row)

    def consume(self, identifier: str, value: str) -> Optional[Verification]:
        """
        Delete and return a matching, unexpired token.

        A token can be consumed once; later calls return None.
        """
        sql = """
            DELETE FROM verifications
            WHERE identifier = %s AND value = %s AND expires_at > NOW()
            RETURNING *;
        """
        with self.db.transaction() as cur:
            cur.execute(sql, (identifier, value))
            row = cur.fetchone()
            return Verification.from_row(row) if row else None

    def delete_expired(self) -> int:
        count = _delete_count(self.db, "DELETE FROM verifications WHERE expires_at <= NOW();")
        if count:
            logger.info(f"Purged {count} expired verification token(s)")
        return count
