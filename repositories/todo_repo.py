"""
repositories/todo_repo.py
-------------------------
Data access layer for todos.
All SQL queries related to the `todos` table live here.

Every query that touches an existing todo carries ``user_id = %s`` in its
WHERE clause, so another user's todo is indistinguishable from a missing
one.
"""

import uuid
from typing import Any, Mapping, Optional

from db.connection import Database
from db.errors import DatabaseError
from db.schema import TODOS, validate_insert, validate_pagination, validate_update
from models.todo import Todo, TodoStats
from utils.logger import get_logger

logger = get_logger(__name__)


class TodoRepository:
    """Repository for CRUD operations on the todos table."""

    def __init__(self, database: Database):
        self.db = database

    # ── CREATE ────────────────────────────────────────────

    def create(self, user_id: str, data: Mapping[str, Any]) -> Todo:
        """
        Insert a new todo for a user.

        Args:
            user_id: Owner's user id.
            data: Payload with `title` and optional `description`,
                  `priority`, `completed`, `due_date`.

        Returns:
            The stored Todo with generated id and timestamps.

        Raises:
            ValidationError: Payload breaks a field rule (nothing is written).
            ConstraintError: The owner does not exist.
        """
        values = validate_insert(TODOS, data)
        values = {"id": str(uuid.uuid4()), "user_id": user_id, **values}
        columns = ", ".join(values)
        placeholders = ", ".join(["%s"] * len(values))
        sql = f"INSERT INTO todos ({columns}) VALUES ({placeholders}) RETURNING *;"
        try:
            with self.db.transaction() as cur:
                cur.execute(sql, list(values.values()))
                row = cur.fetchone()
        except DatabaseError as e:
            logger.error(f"Failed to create todo for user {user_id}: {e}")
            raise
        todo = Todo.from_row(row)
        logger.info(f"Created todo {todo.id} for user {user_id}")
        return todo

    # ── READ ──────────────────────────────────────────────

    def list_by_user(
        self,
        user_id: str,
        completed: Optional[bool] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[Todo]:
        """
        Fetch a user's todos, newest first.

        Args:
            user_id: Owner's user id.
            completed: Optional filter on completion state.
            limit: Optional page size (>= 1).
            offset: Optional number of rows to skip (>= 0).

        Returns:
            List of Todo objects; empty for unknown users.
        """
        limit, offset = validate_pagination(limit, offset)
        sql = "SELECT * FROM todos WHERE user_id = %s"
        params: list = [user_id]
        if completed is not None:
            sql += " AND completed = %s"
            params.append(bool(completed))
        sql += " ORDER BY created_at DESC, id DESC"
        if limit is not None:
            sql += " LIMIT %s"
            params.append(limit)
        if offset is not None:
            sql += " OFFSET %s"
            params.append(offset)
        sql += ";"

        with self.db.transaction() as cur:
            cur.execute(sql, params)
            return [Todo.from_row(r) for r in cur.fetchall()]

    def get_by_id(self, todo_id: str, user_id: str) -> Optional[Todo]:
        """
        Fetch a single todo by ID, scoped to a user.

        Returns:
            A Todo, or None when it does not exist or belongs to someone else.
        """
        sql = "SELECT * FROM todos WHERE id = %s AND user_id = %s;"
        with self.db.transaction() as cur:
            cur.execute(sql, (todo_id, user_id))
            row = cur.fetchone()
            return Todo.from_row(row) if row else None

    def stats(self, user_id: str) -> TodoStats:
        """Load all of a user's todos and fold them into counts."""
        sql = "SELECT * FROM todos WHERE user_id = %s;"
        with self.db.transaction() as cur:
            cur.execute(sql, (user_id,))
            todos = [Todo.from_row(r) for r in cur.fetchall()]
        return TodoStats.from_todos(todos)

    # ── UPDATE ────────────────────────────────────────────

    def update(self, todo_id: str, user_id: str, patch: Mapping[str, Any]) -> Optional[Todo]:
        """
        Change only the fields present in `patch`.

        `updated_at` is refreshed on every successful call, including an
        empty patch.

        Returns:
            The updated Todo, or None if not found for this user.
        """
        values = validate_update(TODOS, patch)
        assignments = [f"{name} = %s" for name in values] + ["updated_at = NOW()"]
        sql = (
            f"UPDATE todos SET {', '.join(assignments)} "
            "WHERE id = %s AND user_id = %s RETURNING *;"
        )
        try:
            with self.db.transaction() as cur:
                cur.execute(sql, [*values.values(), todo_id, user_id])
                row = cur.fetchone()
        except DatabaseError as e:
            logger.error(f"Failed to update todo {todo_id}: {e}")
            raise
        return Todo.from_row(row) if row else None

    def toggle_completion(self, todo_id: str, user_id: str) -> Optional[Todo]:
        """
        Flip `completed` in a single statement.

        Concurrent toggles each take effect; none is lost.

        Returns:
            The updated Todo, or None if not found for this user.
        """
        sql = """
            UPDATE todos
            SET completed = NOT completed, updated_at = NOW()
            WHERE id = %s AND user_id = %s
            RETURNING *;
        """
        try:
            with self.db.transaction() as cur:
                cur.execute(sql, (todo_id, user_id))
                row = cur.fetchone()
        except DatabaseError as e:
            logger.error(f"Failed to toggle todo {todo_id}: {e}")
            raise
        return Todo.from_row(row) if row else None

    # ── DELETE ────────────────────────────────────────────

    def delete(self, todo_id: str, user_id: str) -> Optional[Todo]:
        """
        Delete a todo by ID, scoped to a user.

        Returns:
            The deleted Todo, or None if nothing matched.
        """
        sql = "DELETE FROM todos WHERE id = %s AND user_id = %s RETURNING *;"
        try:
            with self.db.transaction() as cur:
                cur.execute(sql, (todo_id, user_id))
                row = cur.fetchone()
        except DatabaseError as e:
            logger.error(f"Failed to delete todo {todo_id}: {e}")
            raise
        if row:
            logger.info(f"Deleted todo {todo_id} for user {user_id}")
            return Todo.from_row(row)
        return None
