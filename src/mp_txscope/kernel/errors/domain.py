"""Domain errors – caller input and data-state violations."""

from __future__ import annotations

from typing import Any

from mp_txscope.kernel.errors.base import BaseError


class DomainError(BaseError):
    """Raised when caller-supplied data breaks a rule."""

    default_code = "domain_error"


class ValidationError(DomainError):
    """Input data does not meet validation rules.

    ``errors`` is a list of field-level failures, e.g. one entry per
    missing or mistyped command parameter.
    """

    default_code = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        errors: list[dict[str, Any]] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.errors: list[dict[str, Any]] = errors or []

    def to_dict(self) -> dict[str, Any]:
        base = super().to_dict()
        base["errors"] = self.errors
        return base


class ConflictError(DomainError):
    """The operation conflicts with existing state."""

    default_code = "conflict"


class ConcurrencyConflictError(ConflictError):
    """An UPDATE or DELETE matched no row; the row changed or vanished."""

    default_code = "concurrency_conflict"

    def __init__(self, table: str, key: dict[str, Any], **kwargs: Any) -> None:
        super().__init__(
            f"Row {key!r} in '{table}' was not found or was modified concurrently",
            detail={"table": table, "key": key},
            **kwargs,
        )
        self.table = table
        self.key = key


__all__ = [
    "ConcurrencyConflictError",
    "ConflictError",
    "DomainError",
    "ValidationError",
]
