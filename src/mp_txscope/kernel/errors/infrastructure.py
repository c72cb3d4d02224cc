"""Infrastructure errors – failures reported by the database client."""

from __future__ import annotations

from typing import Any

from mp_txscope.kernel.errors.base import BaseError


class InfrastructureError(BaseError):
    """Infrastructure / I/O failure that is not a contract violation."""

    default_code = "infrastructure_error"


class CommandExecutionError(InfrastructureError):
    """The store rejected or failed a statement."""

    default_code = "command_execution_error"

    def __init__(
        self,
        statement: str,
        message: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message or "Statement execution failed", **kwargs)
        self.statement = statement
        self.detail.setdefault("statement", statement)


class ReconciliationError(InfrastructureError):
    """A batch of row mutations could not be applied.

    ``applied`` is always ``0``: a batch never reports partial success.
    ``pending`` is the number of mutations left queued for retry.
    """

    default_code = "reconciliation_error"

    def __init__(
        self,
        table: str,
        *,
        pending: int,
        message: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message or f"Failed to apply batch to '{table}'", **kwargs)
        self.table = table
        self.applied = 0
        self.pending = pending
        self.detail.update({"table": table, "applied": 0, "pending": pending})


__all__ = [
    "CommandExecutionError",
    "InfrastructureError",
    "ReconciliationError",
]
