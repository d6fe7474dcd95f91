"""
Outcome type returned by every mutating operation.

Expected business-rule failures (not enough stock, wrong
movement type, an unbalanced entry) are values, not
exceptions. An operation returns Ok(value) when it succeeded
or Err(kind, detail) when a rule stopped it. The unit of work
rolls back on any Err, so an Err never leaves partial writes.

    result = inventory.transfer("FLOUR", "WAREHOUSE", "KITCHEN", 500, today)
    if result.is_err:
        print(result.kind, result.detail)
    else:
        movement = result.value

Unexpected problems (a dropped connection, a constraint
violation) still raise.
"""

import enum
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, enum.Enum):
    """Every business-rule failure an operation can report."""
    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    UNBALANCED_ENTRY = "UNBALANCED_ENTRY"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    INSUFFICIENT_QUANTITY = "INSUFFICIENT_QUANTITY"
    NOT_A_PURCHASE = "NOT_A_PURCHASE"
    NOT_A_TRANSFER = "NOT_A_TRANSFER"
    UNKNOWN_DIRECTION = "UNKNOWN_DIRECTION"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    UNKNOWN_REPAIR = "UNKNOWN_REPAIR"
    ABORTED = "ABORTED"
    CHECK_FAILED = "CHECK_FAILED"


class OperationError(ValueError):
    """Raised by Err.unwrap() for callers that prefer exceptions."""

    def __init__(self, kind: ErrorKind, detail: str):
        super().__init__(f"{kind.value}: {detail}")
        self.kind = kind
        self.detail = detail


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    is_ok = True
    is_err = False

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    detail: str = ""
    # Findings of a failed verification check, one line each
    issues: tuple[str, ...] = ()

    is_ok = False
    is_err = True

    def unwrap(self) -> Any:
        raise OperationError(self.kind, self.detail)


Result = Union[Ok[T], Err]
