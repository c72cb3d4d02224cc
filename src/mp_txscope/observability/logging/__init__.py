"""Observability – structured logging helpers."""
from mp_txscope.observability.logging.filters import (
    DEFAULT_SENSITIVE_FIELDS,
    SensitiveFieldsFilter,
    redact_connection_string,
)
from mp_txscope.observability.logging.processors import TransactionProcessor, get_logger
from mp_txscope.observability.logging.factory import JsonLoggerFactory

__all__ = [
    "DEFAULT_SENSITIVE_FIELDS",
    "JsonLoggerFactory",
    "SensitiveFieldsFilter",
    "TransactionProcessor",
    "get_logger",
    "redact_connection_string",
]
