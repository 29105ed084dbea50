"""
services/todo_service.py
------------------------
Business logic boundary for todos.
Wraps TodoRepository and turns data-layer errors into failed Results.
"""

from typing import Any, Mapping, Optional

from db.connection import Database
from repositories.todo_repo import TodoRepository
from services.result import Result, run_safely


class TodoService:
    """
    Handles todo operations on behalf of an authenticated user.

    Every method takes the caller's `user_id`; todos owned by someone else
    behave exactly like missing ones.
    """

    def __init__(self, database: Database, repo: Optional[TodoRepository] = None):
        self.repo = repo or TodoRepository(database)

    def create_todo(self, user_id: str, data: Mapping[str, Any]) -> Result:
        return run_safely("create_todo", self.repo.create, user_id, data)

    def list_todos(
        self,
        user_id: str,
        completed: Optional[bool] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> Result:
        return run_safely("list_todos", self.repo.list_by_user, user_id, completed, limit, offset)

    def get_todo(self, todo_id: str, user_id: str) -> Result:
        return run_safely("get_todo", self.repo.get_by_id, todo_id, user_id)

    def update_todo(self, todo_id: str, user_id: str, patch: Mapping[str, Any]) -> Result:
        return run_safely("update_todo", self.repo.update, todo_id, user_id, patch)

    def toggle_todo(self, todo_id: str, user_id: str) -> Result:
        return run_safely("toggle_todo", self.repo.toggle_completion, todo_id, user_id)

    def delete_todo(self, todo_id: str, user_id: str) -> Result:
        return run_safely("delete_todo", self.repo.delete, todo_id, user_id)

    def get_stats(self, user_id: str) -> Result:
        """Counts and completion rate for the user's todos."""
        return run_safely("get_stats", self.repo.stats, user_id)
