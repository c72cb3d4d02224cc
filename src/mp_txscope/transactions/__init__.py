"""Transactions – explicit and ambient transaction propagation for SQL commands.

Explicit::

    with Connection(url) as conn, conn.begin_transaction() as tx:
        SqlCommand(INSERT_RATE, transaction=tx).execute(rate=0.63219)
        tx.complete()

Ambient::

    with TransactionScope() as scope:
        SqlCommand(INSERT_RATE, connection_string=url).execute(rate=0.63219)
        scope.ensure_not_distributed()
        scope.complete()
"""
from mp_txscope.transactions.ambient import AmbientScopeManager, ambient_scopes
from mp_txscope.transactions.batch import BatchReconciler, MutationKind, RowMutation
from mp_txscope.transactions.command import ExecutionResult, SqlCommand, statement_parameters
from mp_txscope.transactions.connection import Connection, ConnectionState, split_enlist_option
from mp_txscope.transactions.context import (
    Enlistment,
    EscalationPolicy,
    ScopeOption,
    TransactionContext,
    TransactionScope,
    TransactionState,
)
from mp_txscope.transactions.ports import (
    DatabaseClient,
    StatementResult,
    get_default_client,
    set_default_client,
)
from mp_txscope.transactions.records import Record, ResultType, Row

__all__ = [
    "AmbientScopeManager",
    "BatchReconciler",
    "Connection",
    "ConnectionState",
    "DatabaseClient",
    "Enlistment",
    "EscalationPolicy",
    "ExecutionResult",
    "MutationKind",
    "Record",
    "ResultType",
    "Row",
    "RowMutation",
    "ScopeOption",
    "SqlCommand",
    "StatementResult",
    "TransactionContext",
    "TransactionScope",
    "TransactionState",
    "ambient_scopes",
    "get_default_client",
    "set_default_client",
    "split_enlist_option",
    "statement_parameters",
]
