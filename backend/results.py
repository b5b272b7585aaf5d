# results.py — Explicit operation outcomes for the mutation surface
"""
Domain operations return ``Ok(value)`` or ``Err(reason)`` instead of loose
dicts. Routers call :func:`unwrap` to turn an ``Err`` into an HTTP error whose
body is rendered as ``{"error": reason}`` by the global handler in main.py.

Operations that are only reachable through already-gated UI raise
:class:`OperationDenied` on authorization failure instead of returning ``Err``.
"""

from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar, Union

from fastapi import HTTPException

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: Optional[T] = None

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    reason: str
    status_code: int = 400

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]


class OperationDenied(Exception):
    """Authorization failure on a gated void operation"""

    def __init__(self, reason: str = "Permission denied"):
        super().__init__(reason)
        self.reason = reason


def forbidden(reason: str) -> Err:
    return Err(reason, status_code=403)


def not_found(entity: str) -> Err:
    return Err(f"{entity} not found", status_code=404)


def unwrap(result: "Result[Any]") -> Any:
    """Return the Ok value or raise the Err as an HTTPException"""
    if isinstance(result, Err):
        raise HTTPException(status_code=result.status_code, detail=result.reason)
    return result.value
