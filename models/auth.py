"""
models/auth.py
--------------
Rows owned by the external auth collaborator. The data layer stores and
returns them without interpreting tokens or credential hashes.
"""

from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Optional


def _from_row(cls, row: dict):
    names = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in row.items() if k in names})


def _expired(expires_at: datetime, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now(timezone.utc)
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at <= now


@dataclass
class Session:
    """An active sign-in session tied to one user."""
    id: str
    user_id: str
    token: str
    expires_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    from_row = classmethod(_from_row)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return _expired(self.expires_at, now)


@dataclass
class Account:
    """A provider link (OAuth or password) for one user."""
    id: str
    user_id: str
    account_id: str
    provider_id: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    access_token_expires_at: Optional[datetime] = None
    refresh_token_expires_at: Optional[datetime] = None
    scope: Optional[str] = None
    password: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    from_row = classmethod(_from_row)

    def __repr__(self) -> str:
        # Tokens and hashes stay out of logs.
        return (
            f"Account(id={self.id!r}, user_id={self.user_id!r}, "
            f"provider_id={self.provider_id!r}, account_id={self.account_id!r})"
        )


@dataclass
class Verification:
    """A short-lived token looked up by identifier + value."""
    id: str
    identifier: str
    value: str
    expires_at: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    from_row = classmethod(_from_row)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return _expired(self.expires_at, now)
