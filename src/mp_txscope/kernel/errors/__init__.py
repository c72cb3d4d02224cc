"""Kernel error hierarchy – public re-export surface.

Hierarchy::

    BaseError
    ├── DomainError                      (domain.py)
    │   ├── ValidationError
    │   └── ConflictError
    │       └── ConcurrencyConflictError
    ├── ApplicationError                 (application.py)
    │   └── TransactionError
    │       ├── InvalidStateError
    │       │   └── TransactionAbortedError
    │       ├── ConnectionMismatchError
    │       ├── ConnectionInUseError
    │       ├── CardinalityViolationError
    │       ├── TransactionContextLostError
    │       └── UnexpectedDistributedTransactionError
    └── InfrastructureError              (infrastructure.py)
        ├── CommandExecutionError
        └── ReconciliationError

    RuntimeError
    └── ScopeNestingError                (fatal, not recoverable)
"""

from mp_txscope.kernel.errors.application import (
    ApplicationError,
    CardinalityViolationError,
    ConnectionInUseError,
    ConnectionMismatchError,
    InvalidStateError,
    ScopeNestingError,
    TransactionAbortedError,
    TransactionContextLostError,
    TransactionError,
    UnexpectedDistributedTransactionError,
)
from mp_txscope.kernel.errors.base import BaseError
from mp_txscope.kernel.errors.domain import (
    ConcurrencyConflictError,
    ConflictError,
    DomainError,
    ValidationError,
)
from mp_txscope.kernel.errors.infrastructure import (
    CommandExecutionError,
    InfrastructureError,
    ReconciliationError,
)

__all__ = [
    "ApplicationError",
    "BaseError",
    "CardinalityViolationError",
    "CommandExecutionError",
    "ConcurrencyConflictError",
    "ConflictError",
    "ConnectionInUseError",
    "ConnectionMismatchError",
    "DomainError",
    "InfrastructureError",
    "InvalidStateError",
    "ReconciliationError",
    "ScopeNestingError",
    "TransactionAbortedError",
    "TransactionContextLostError",
    "TransactionError",
    "UnexpectedDistributedTransactionError",
    "ValidationError",
]
