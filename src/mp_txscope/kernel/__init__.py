"""Kernel – framework-agnostic errors and value types."""

from mp_txscope.kernel.errors import (
    ApplicationError,
    BaseError,
    DomainError,
    InfrastructureError,
    InvalidStateError,
    TransactionError,
    ValidationError,
)
from mp_txscope.kernel.types import IsolationLevel, Nothing, Option, Some

__all__ = [
    "ApplicationError",
    "BaseError",
    "DomainError",
    "InfrastructureError",
    "InvalidStateError",
    "IsolationLevel",
    "Nothing",
    "Option",
    "Some",
    "TransactionError",
    "ValidationError",
]
