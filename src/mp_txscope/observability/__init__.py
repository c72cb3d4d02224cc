"""Observability – structured logging for transaction lifecycles."""
from mp_txscope.observability.logging import JsonLoggerFactory, TransactionProcessor, get_logger

__all__ = ["JsonLoggerFactory", "TransactionProcessor", "get_logger"]
