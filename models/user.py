"""
models/user.py
--------------
Domain model for local user profiles.
"""

from dataclasses import asdict, dataclass, fields
from datetime import datetime
from typing import Optional


@dataclass
class User:
    """
    A local identity record.

    Attributes:
        id: UUID primary key.
        email: Unique email address.
        external_id: Identity-provider id used for profile sync (optional).
        name: Display name (optional, up to 100 characters).
        avatar_url: Avatar image URL (optional).
        email_verified: Whether the provider verified the email.
        dark_mode / timezone / language: Profile preferences.
        created_at / updated_at: Row timestamps.
    """
    id: str
    email: str
    external_id: Optional[str] = None
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    email_verified: bool = False
    dark_mode: bool = False
    timezone: Optional[str] = "UTC"
    language: Optional[str] = "en"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict) -> "User":
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in row.items() if k in names})

    @property
    def display_name(self) -> str:
        return self.name or self.email.split("@", 1)[0]

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("created_at", "updated_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data

    def __str__(self) -> str:
        return f"{self.display_name} <{self.email}>"
