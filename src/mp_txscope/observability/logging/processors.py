"""Observability – structlog processors and get_logger helper.

TransactionProcessor – injects the ambient transaction id into log events.
get_logger(name)     – returns a bound structlog logger.
"""
from __future__ import annotations

from typing import Any

import structlog


class TransactionProcessor:
    """structlog processor that tags events with the current ambient context.

    Injects the following fields when an ambient transaction is visible to
    the calling flow:

    * ``transaction_id``
    * ``transaction_distributed``

    Usage::

        import structlog
        from mp_txscope.observability.logging import TransactionProcessor

        structlog.configure(processors=[TransactionProcessor(), ...])
    """

    def __call__(
        self,
        logger: Any,           # noqa: ARG002
        method_name: str,      # noqa: ARG002
        event_dict: dict[str, Any],
    ) -> dict[str, Any]:
        from mp_txscope.transactions.ambient import ambient_scopes

        ctx = ambient_scopes.current()
        if ctx is not None:
            event_dict.setdefault("transaction_id", ctx.id)
            event_dict.setdefault("transaction_distributed", ctx.is_distributed)
        return event_dict


def get_logger(name: str | None = None, **initial_values: Any) -> Any:
    """Return a bound structlog logger.

    Parameters
    ----------
    name:
        Logger name (typically ``__name__`` of the calling module).
    **initial_values:
        Key-value pairs to bind on the returned logger.
    """
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger


__all__ = ["TransactionProcessor", "get_logger"]
