"""Application-layer errors – transaction propagation contract violations."""

from __future__ import annotations

from typing import Any

from mp_txscope.kernel.errors.base import BaseError


class ApplicationError(BaseError):
    """Cross-cutting application-layer concern."""

    default_code = "application_error"


class TransactionError(ApplicationError):
    """Base class for transaction-context failures."""

    default_code = "transaction_error"


class InvalidStateError(TransactionError):
    """Operation attempted on a closed connection or a finished context."""

    default_code = "invalid_state"


class TransactionAbortedError(InvalidStateError):
    """The context is rollback-only and can no longer be completed."""

    default_code = "transaction_aborted"

    def __init__(
        self,
        message: str = "Transaction has been aborted",
        *,
        reason: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message if reason is None else f"{message}: {reason}", **kwargs)
        self.reason = reason


class ConnectionMismatchError(TransactionError):
    """Command connection differs from the connection its context is bound to."""

    default_code = "connection_mismatch"


class ConnectionInUseError(TransactionError):
    """The connection is already owned by another context or execution."""

    default_code = "connection_in_use"


class CardinalityViolationError(TransactionError):
    """A single-row request produced more than one row."""

    default_code = "cardinality_violation"

    def __init__(self, statement: str, **kwargs: Any) -> None:
        super().__init__(
            "Single-row command returned more than one row",
            detail={"statement": statement},
            **kwargs,
        )
        self.statement = statement


class TransactionContextLostError(TransactionError):
    """An ambient context did not flow into the current logical flow."""

    default_code = "transaction_context_lost"


class UnexpectedDistributedTransactionError(TransactionError):
    """The context escalated to a distributed transaction where it should not."""

    default_code = "unexpected_distributed_transaction"

    def __init__(self, message: str = "Unexpected distributed transaction", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class ScopeNestingError(RuntimeError):
    """Ambient scopes were released out of LIFO order.

    This is a programming bug, so it deliberately sits outside the
    :class:`BaseError` hierarchy and is not meant to be handled.
    """


__all__ = [
    "ApplicationError",
    "CardinalityViolationError",
    "ConnectionInUseError",
    "ConnectionMismatchError",
    "InvalidStateError",
    "ScopeNestingError",
    "TransactionAbortedError",
    "TransactionContextLostError",
    "TransactionError",
    "UnexpectedDistributedTransactionError",
]
