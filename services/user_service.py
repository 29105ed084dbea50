"""
services/user_service.py
------------------------
Business logic boundary for user profiles, including the sync hook the
auth collaborator calls after every sign-in.
"""

from typing import Any, Mapping, Optional

from db.connection import Database
from repositories.user_repo import UserRepository
from services.result import Result, run_safely


class UserService:
    """Handles user profile operations."""

    def __init__(self, database: Database, repo: Optional[UserRepository] = None):
        self.repo = repo or UserRepository(database)

    def create_user(self, data: Mapping[str, Any]) -> Result:
        return run_safely("create_user", self.repo.create, data)

    def get_user(self, user_id: str) -> Result:
        return run_safely("get_user", self.repo.get_by_id, user_id)

    def get_user_by_email(self, email: str) -> Result:
        return run_safely("get_user_by_email", self.repo.get_by_email, email)

    def list_users(self, limit: Optional[int] = None, offset: Optional[int] = None) -> Result:
        return run_safely("list_users", self.repo.list, limit, offset)

    def update_profile(self, user_id: str, patch: Mapping[str, Any]) -> Result:
        return run_safely("update_profile", self.repo.update, user_id, patch)

    def delete_user(self, user_id: str) -> Result:
        return run_safely("delete_user", self.repo.delete, user_id)

    def sync_external_identity(self, external_id: str, attrs: Mapping[str, Any]) -> Result:
        """
        Create or refresh the local profile for a signed-in provider user.

        Args:
            external_id: Identity-provider user id.
            attrs: Provider profile (email, name, avatar_url, email_verified).

        Returns:
            Result wrapping the local User.
        """
        return run_safely(
            "sync_external_identity", self.repo.upsert_from_external_identity, external_id, attrs
        )
