"""
services/result.py
------------------
Uniform success/failure envelope returned by the service layer.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional

from db.errors import DatabaseError, ValidationError
from utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Result:
    """
    Outcome of a service call.

    A missing row is still a success: `ok` is True and `value` is None.
    """
    ok: bool
    value: Any = None
    error: Optional[DatabaseError] = None

    @classmethod
    def success(cls, value: Any = None) -> "Result":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: DatabaseError) -> "Result":
        return cls(ok=False, error=error)

    @property
    def status_code(self) -> int:
        if self.ok:
            return 200
        return self.error.http_status

    def to_dict(self) -> dict:
        if self.ok:
            value = self.value
            if isinstance(value, list):
                data = [_serialize(v) for v in value]
            else:
                data = _serialize(value)
            return {"success": True, "data": data}

        payload = {"success": False, "error": self.error.message, "code": self.error.code}
        if isinstance(self.error, ValidationError):
            payload["details"] = self.error.details
        return payload


def run_safely(action: str, fn: Callable[..., Any], *args: Any) -> Result:
    """
    Call `fn(*args)` and wrap the outcome in a Result.

    Data-layer errors become failed Results and are logged as warnings;
    anything else propagates.
    """
    try:
        return Result.success(fn(*args))
    except DatabaseError as e:
        logger.warning(f"{action} failed: [{e.code}] {e.message}")
        return Result.failure(e)


def _serialize(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    return to_dict() if callable(to_dict) else value
