"""Transactions – SqlCommand, the typed command executor.

Enlistment is resolved right before a statement is sent:

* an explicit context supplies its physical transaction;
* a connection enlisted in an ambient scope uses that scope's transaction;
* without a connection, the command opens its own from the connection
  string (auto-enlisting in the visible ambient scope) and closes it after;
* otherwise the statement runs in autocommit mode.
"""
from __future__ import annotations

import asyncio
import contextlib
import re
from typing import Any, AsyncIterator, Iterator, Mapping, TypeAlias

from mp_txscope.config.settings import current_settings
from mp_txscope.kernel.errors import (
    CardinalityViolationError,
    CommandExecutionError,
    ConnectionInUseError,
    ConnectionMismatchError,
    InvalidStateError,
    TransactionContextLostError,
    ValidationError,
)
from mp_txscope.kernel.types import Nothing, Option, Some
from mp_txscope.observability.logging import get_logger
from mp_txscope.transactions.ambient import ambient_scopes
from mp_txscope.transactions.connection import Connection
from mp_txscope.transactions.context import TransactionContext
from mp_txscope.transactions.ports import DatabaseClient, StatementResult
from mp_txscope.transactions.records import Record, ResultType, Row

logger = get_logger(__name__)

# :name binds, skipping PostgreSQL ``::type`` casts
_BIND_PARAM = re.compile(r"(?<![:\w]):([A-Za-z_][A-Za-z0-9_]*)")

ExecutionResult: TypeAlias = int | Option[Row] | Iterator[Row]


def statement_parameters(statement: str) -> tuple[str, ...]:
    """Names of the ``:name`` bind parameters in *statement*, in order of first use."""
    return tuple(dict.fromkeys(_BIND_PARAM.findall(statement)))


class SqlCommand:
    """Parameterised statement bound to a connection and optional context.

    Parameters
    ----------
    statement:
        SQL text with ``:name`` bind parameters.
    connection:
        Open :class:`Connection` to run on. When omitted the command opens
        its own connection from *connection_string* for each execution.
    transaction:
        Explicit or ambient context to enlist in. An explicit context
        without *connection* supplies its own bound connection.
    connection_string:
        Used only when no connection is given; defaults to
        :attr:`TransactionSettings.connection_string`.
    parameters:
        Declared parameter types. Defaults to the names found in the
        statement, with no type check.
    result_type:
        Shape of rows returned by a row-returning statement.
    single_row:
        Return ``Some(row)`` / ``Nothing()`` and reject more than one row.
    """

    def __init__(
        self,
        statement: str,
        *,
        connection: Connection | None = None,
        transaction: TransactionContext | None = None,
        connection_string: str | None = None,
        parameters: Mapping[str, type] | None = None,
        result_type: ResultType = ResultType.RECORDS,
        single_row: bool = False,
        client: DatabaseClient | None = None,
    ) -> None:
        if transaction is not None and not transaction.is_ambient:
            bound = transaction.connection
            if connection is None:
                connection = bound
            elif bound is not None and bound.id != connection.id:
                raise ConnectionMismatchError(
                    "Transaction is bound to a different connection than the command",
                    detail={
                        "transaction_id": transaction.id,
                        "transaction_connection_id": bound.id,
                        "command_connection_id": connection.id,
                    },
                )
        self.statement = statement
        self.parameters: dict[str, type | None] = (
            dict(parameters) if parameters is not None else dict.fromkeys(statement_parameters(statement))
        )
        self.result_type = result_type
        self.single_row = single_row
        self._connection = connection
        self._transaction = transaction
        self._connection_string = connection_string
        self._client = client

    @property
    def connection(self) -> Connection | None:
        return self._connection

    @property
    def transaction(self) -> TransactionContext | None:
        return self._transaction

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self, **params: Any) -> ExecutionResult:
        """Run synchronously and shape the result per ``result_type``/``single_row``."""
        return self._shape(self._run(params), single=self.single_row)

    def execute_single(self, **params: Any) -> Option[Row]:
        """Run and return at most one row."""
        result = self._shape(self._run(params), single=True)
        if isinstance(result, int):
            raise InvalidStateError(
                "Statement did not return rows",
                detail={"statement": self.statement},
            )
        return result  # type: ignore[return-value]

    async def execute_async(self, **params: Any) -> ExecutionResult:
        """Run without blocking the event loop.

        Raises :class:`TransactionContextLostError` when an ambient scope
        exists but did not flow into the calling task or thread.
        """
        bound = self._bind(params)
        if self._transaction is None and ambient_scopes.is_lost():
            lost = ambient_scopes.stack()[-1]
            raise TransactionContextLostError(
                "Ambient transaction did not flow into this logical flow; "
                "create the scope with async_flow=True or pass the transaction explicitly",
                detail={"transaction_id": lost.id, "statement": self.statement},
            )
        async with self._target_async() as (connection, ctx):
            connection.acquire()
            try:
                physical_tx = connection.enlistment.transaction if connection.enlistment is not None else None
                logger.debug("command.execute", statement=self.statement, asynchronous=True, transaction_id=_ctx_id(ctx))
                try:
                    result = await connection.client.execute_async(
                        connection.physical, physical_tx, self.statement, bound
                    )
                except Exception as exc:
                    raise self._failed(exc, ctx) from exc
            finally:
                connection.release()
        return self._shape(result, single=self.single_row)

    def _run(self, params: Mapping[str, Any]) -> StatementResult:
        bound = self._bind(params)
        with self._target() as (connection, ctx), connection.exclusive():
            physical_tx = connection.enlistment.transaction if connection.enlistment is not None else None
            logger.debug("command.execute", statement=self.statement, asynchronous=False, transaction_id=_ctx_id(ctx))
            try:
                return connection.client.execute(connection.physical, physical_tx, self.statement, bound)
            except Exception as exc:
                raise self._failed(exc, ctx) from exc

    def _failed(self, exc: Exception, ctx: TransactionContext | None) -> CommandExecutionError:
        if ctx is not None:
            ctx.doom(f"statement failed: {exc}")
        logger.warning("command.failed", statement=self.statement, transaction_id=_ctx_id(ctx), error=repr(exc))
        return CommandExecutionError(self.statement, str(exc), cause=exc)

    @contextlib.contextmanager
    def _target(self) -> Iterator[tuple[Connection, TransactionContext | None]]:
        if self._connection is not None:
            self._connection.require_open()
            yield self._connection, self._enlist(self._connection)
            return

        connection = self._owned_connection()
        connection._open(self._owned_context(connection))
        try:
            yield connection, self._enlist(connection)
        finally:
            connection.close()

    @contextlib.asynccontextmanager
    async def _target_async(self) -> AsyncIterator[tuple[Connection, TransactionContext | None]]:
        """Like :meth:`_target`, but the owned connection is opened on a worker thread.

        The ambient scope is resolved on the calling flow first; the worker
        only receives the context to enlist in.
        """
        if self._connection is not None:
            self._connection.require_open()
            yield self._connection, self._enlist(self._connection)
            return

        connection = self._owned_connection()
        opening = asyncio.ensure_future(asyncio.to_thread(connection._open, self._owned_context(connection)))
        try:
            await asyncio.shield(opening)
        except asyncio.CancelledError:
            # the worker still finishes opening; close once it has
            opening.add_done_callback(lambda f: f.cancelled() or f.exception() or connection.close())
            raise
        try:
            yield connection, self._enlist(connection)
        finally:
            connection.close()

    def _owned_connection(self) -> Connection:
        connection_string = self._connection_string or current_settings().connection_string
        if not connection_string:
            raise InvalidStateError(
                "SqlCommand needs a connection or a connection string",
                detail={"statement": self.statement},
            )
        return Connection(connection_string, client=self._client)

    def _owned_context(self, connection: Connection) -> TransactionContext | None:
        if self._transaction is not None and self._transaction.is_ambient:
            return self._transaction
        return ambient_scopes.current() if connection.enlist else None

    def _enlist(self, connection: Connection) -> TransactionContext | None:
        tx = self._transaction
        if tx is not None:
            if tx.is_ambient:
                tx._enlist(connection)
            else:
                tx.ensure_usable()
                if connection.transaction is not tx:
                    raise ConnectionMismatchError(
                        "Connection is not bound to the command's transaction",
                        detail={"transaction_id": tx.id, "connection_id": connection.id},
                    )
            return tx

        ctx = connection.transaction
        if ctx is None:
            return None
        if not ctx.is_ambient:
            raise ConnectionInUseError(
                "Connection has a pending explicit transaction; pass it to the command",
                detail={"connection_id": connection.id, "transaction_id": ctx.id},
            )
        ctx.ensure_usable()
        return ctx

    # ------------------------------------------------------------------
    # Parameters & results
    # ------------------------------------------------------------------

    def _bind(self, values: Mapping[str, Any]) -> dict[str, Any]:
        errors: list[dict[str, Any]] = []
        for name, expected in self.parameters.items():
            if name not in values:
                errors.append({"field": name, "error": "missing"})
                continue
            value = values[name]
            if expected is not None and value is not None and not isinstance(value, expected):
                errors.append(
                    {"field": name, "error": f"expected {expected.__name__}", "got": type(value).__name__}
                )
        for name in values:
            if name not in self.parameters:
                errors.append({"field": name, "error": "unknown parameter"})
        if errors:
            raise ValidationError(
                f"Invalid parameters for statement: {self.statement}",
                errors=errors,
            )
        return dict(values)

    def _shape(self, result: StatementResult, *, single: bool) -> ExecutionResult:
        if not result.returns_rows or self.result_type is ResultType.ROWS_AFFECTED:
            return result.rowcount
        if single:
            if len(result.rows) > 1:
                raise CardinalityViolationError(self.statement)
            if not result.rows:
                return Nothing()
            return Some(self._row(result.columns, result.rows[0]))
        return (self._row(result.columns, values) for values in result.rows)

    def _row(self, columns: tuple[str, ...], values: tuple[Any, ...]) -> Row:
        if self.result_type is ResultType.TUPLES:
            return tuple(values)
        return Record(columns, values)

    def __repr__(self) -> str:
        return f"SqlCommand({self.statement!r})"


def _ctx_id(ctx: TransactionContext | None) -> str | None:
    return ctx.id if ctx is not None else None


__all__ = ["ExecutionResult", "SqlCommand", "statement_parameters"]
