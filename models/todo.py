"""
models/todo.py
--------------
Domain models for todos and per-user todo statistics.
"""

from dataclasses import asdict, dataclass, fields
from datetime import date, datetime
from typing import Optional


@dataclass
class Todo:
    """
    A task owned by exactly one user.

    Attributes:
        id: UUID primary key.
        user_id: Owner's user id.
        title: 1–255 characters.
        description: Optional note, up to 1000 characters.
        completed: Whether the task is done.
        priority: 'low' | 'medium' | 'high'.
        due_date: Optional due date.
        created_at: Timestamp when the record was created.
        updated_at: Timestamp of the last mutation.
    """
    id: str
    user_id: str
    title: str
    description: Optional[str] = None
    completed: bool = False
    priority: str = "medium"  # 'low' | 'medium' | 'high'
    due_date: Optional[date] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict) -> "Todo":
        """Build a Todo from a RealDictCursor row."""
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in row.items() if k in names})

    def is_overdue(self, today: Optional[date] = None) -> bool:
        if self.completed or self.due_date is None:
            return False
        return self.due_date < (today or date.today())

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("due_date", "created_at", "updated_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data

    def __str__(self) -> str:
        mark = "x" if self.completed else " "
        return f"[{mark}] {self.title} ({self.priority})"


@dataclass
class TodoStats:
    """Counts folded from a user's todos."""
    total: int = 0
    completed: int = 0
    pending: int = 0
    high_priority: int = 0
    completion_rate: int = 0

    @classmethod
    def from_todos(cls, todos) -> "TodoStats":
        """
        Fold a user's todos into counts.

        `high_priority` counts open high-priority todos only. The completion
        rate is a whole percentage with halves rounded up, 0 for no todos.
        """
        total = completed = high = 0
        for todo in todos:
            total += 1
            if todo.completed:
                completed += 1
            elif todo.priority == "high":
                high += 1
        rate = (completed * 200 + total) // (total * 2) if total else 0
        return cls(
            total=total,
            completed=completed,
            pending=total - completed,
            high_priority=high,
            completion_rate=rate,
        )

    def to_dict(self) -> dict:
        return asdict(self)
