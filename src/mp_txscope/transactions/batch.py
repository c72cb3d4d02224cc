"""Transactions – BatchReconciler: buffered row mutations applied as one batch."""
from __future__ import annotations

import contextlib
import dataclasses
import re
from enum import Enum
from typing import Any, Iterator, Mapping, Sequence

from mp_txscope.config.settings import current_settings
from mp_txscope.kernel.errors import (
    ConcurrencyConflictError,
    ConnectionInUseError,
    ConnectionMismatchError,
    InvalidStateError,
    ReconciliationError,
    ValidationError,
)
from mp_txscope.observability.logging import get_logger
from mp_txscope.transactions.connection import Connection
from mp_txscope.transactions.context import TransactionContext

logger = get_logger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")


class MutationKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclasses.dataclass(frozen=True)
class RowMutation:
    kind: MutationKind
    values: Mapping[str, Any] = dataclasses.field(default_factory=dict)
    key: Mapping[str, Any] = dataclasses.field(default_factory=dict)


def quote_identifier(name: str) -> str:
    """Validate and double-quote a (possibly schema-qualified) identifier."""
    if not _IDENTIFIER.match(name):
        raise ValidationError(
            f"Invalid SQL identifier {name!r}",
            errors=[{"field": name, "error": "invalid identifier"}],
        )
    return ".".join(f'"{part}"' for part in name.split("."))


class BatchReconciler:
    """Ordered pending inserts, updates and deletes against one table.

    Usage::

        rates = BatchReconciler("sales.currency_rate", key_columns=("id",))
        rates.add_row(from_code="USD", to_code="GBP", average_rate=0.63219)
        with Connection(url) as conn, conn.begin_transaction() as tx:
            assert rates.apply(conn, tx) == 1
            tx.complete()

    A failed :meth:`apply` or :meth:`bulk_load` never reports partial
    success: every mutation stays pending and the enlisted transaction is
    doomed (or the reconciler's own local transaction rolled back).
    """

    def __init__(self, table: str, *, key_columns: Sequence[str] = ("id",)) -> None:
        self.table = table
        self.key_columns = tuple(key_columns)
        self._quoted_table = quote_identifier(table)
        for column in self.key_columns:
            quote_identifier(column)
        self._pending: list[RowMutation] = []

    @property
    def pending(self) -> tuple[RowMutation, ...]:
        return tuple(self._pending)

    def add_row(self, **values: Any) -> RowMutation:
        return self._queue(RowMutation(MutationKind.INSERT, values=values))

    def update_row(self, key: Mapping[str, Any], **values: Any) -> RowMutation:
        if not values:
            raise ValidationError("update_row needs at least one column to set")
        return self._queue(RowMutation(MutationKind.UPDATE, values=values, key=self._key(key)))

    def delete_row(self, **key: Any) -> RowMutation:
        return self._queue(RowMutation(MutationKind.DELETE, key=self._key(key)))

    def clear(self) -> None:
        self._pending.clear()

    def _key(self, key: Mapping[str, Any]) -> dict[str, Any]:
        missing = [c for c in self.key_columns if c not in key]
        if missing:
            raise ValidationError(
                f"Key for '{self.table}' is missing columns {missing}",
                errors=[{"field": c, "error": "missing"} for c in missing],
            )
        return {c: key[c] for c in self.key_columns}

    def _queue(self, mutation: RowMutation) -> RowMutation:
        for column in [*mutation.values, *mutation.key]:
            quote_identifier(column)
        self._pending.append(mutation)
        return mutation

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def apply(self, connection: Connection | None = None, transaction: TransactionContext | None = None) -> int:
        """Send every pending mutation, one statement per row, as one batch."""
        if not self._pending:
            return 0
        batch = list(self._pending)
        with self._session(connection, transaction) as (conn, physical_tx):
            affected = 0
            for mutation in batch:
                statement, params = self._render(mutation)
                result = conn.client.execute(conn.physical, physical_tx, statement, params)
                if mutation.kind is not MutationKind.INSERT and result.rowcount == 0:
                    raise ConcurrencyConflictError(self.table, dict(mutation.key))
                affected += max(result.rowcount, 0)
        del self._pending[: len(batch)]
        logger.info("batch.apply", table=self.table, mutations=len(batch), rows_affected=affected)
        return affected

    def bulk_load(self, connection: Connection | None = None, transaction: TransactionContext | None = None) -> int:
        """Load pending inserts through the driver's executemany path."""
        if not self._pending:
            return 0
        batch = list(self._pending)
        others = [m for m in batch if m.kind is not MutationKind.INSERT]
        if others:
            raise ValidationError(
                "bulk_load only accepts pending inserts",
                errors=[{"field": m.kind.value, "error": "not an insert"} for m in others],
            )
        groups: dict[tuple[str, ...], list[Mapping[str, Any]]] = {}
        for mutation in batch:
            groups.setdefault(tuple(mutation.values), []).append(mutation.values)

        with self._session(connection, transaction) as (conn, physical_tx):
            loaded = 0
            for columns, rows in groups.items():
                statement = self._insert_sql(columns)
                loaded += conn.client.execute_many(conn.physical, physical_tx, statement, rows)
        del self._pending[: len(batch)]
        logger.info("batch.bulk_load", table=self.table, rows_loaded=loaded, statements=len(groups))
        return loaded

    @contextlib.contextmanager
    def _session(
        self,
        connection: Connection | None,
        transaction: TransactionContext | None,
    ) -> Iterator[tuple[Connection, Any]]:
        """Resolve the enlistment once and turn any failure into ReconciliationError."""
        owned = False
        if connection is None and transaction is not None and not transaction.is_ambient:
            connection = transaction.connection
        if connection is None:
            url = current_settings().connection_string
            if not url:
                raise InvalidStateError(f"No connection available to reconcile '{self.table}'")
            connection = Connection(url)
            if transaction is not None:
                connection._open(transaction)
            else:
                connection.open()
            owned = True

        local: TransactionContext | None = None
        ctx: TransactionContext | None = None
        try:
            connection.require_open()
            ctx = self._enlist(connection, transaction)
            if ctx is None:
                local = connection.begin_transaction()
            enlistment = connection.enlistment
            if enlistment is None:
                raise InvalidStateError(
                    f"Connection is not enlisted in a transaction for '{self.table}'",
                    detail={"connection_id": connection.id},
                )
            physical_tx = enlistment.transaction
            with connection.exclusive():
                try:
                    yield connection, physical_tx
                except Exception as exc:
                    if ctx is not None:
                        ctx.doom(f"batch for '{self.table}' failed")
                    logger.warning("batch.failed", table=self.table, pending=len(self._pending), error=repr(exc))
                    raise ReconciliationError(self.table, pending=len(self._pending), cause=exc) from exc
            if local is not None:
                local.complete()
        finally:
            if local is not None:
                local.release()
            if owned:
                connection.close()

    @staticmethod
    def _enlist(connection: Connection, transaction: TransactionContext | None) -> TransactionContext | None:
        if transaction is not None:
            if transaction.is_ambient:
                transaction._enlist(connection)
            else:
                transaction.ensure_usable()
                if connection.transaction is not transaction:
                    raise ConnectionMismatchError(
                        "Connection is not bound to the supplied transaction",
                        detail={"transaction_id": transaction.id, "connection_id": connection.id},
                    )
            return transaction
        ctx = connection.transaction
        if ctx is not None and not ctx.is_ambient:
            raise ConnectionInUseError(
                "Connection has a pending explicit transaction; pass it to apply()",
                detail={"connection_id": connection.id, "transaction_id": ctx.id},
            )
        if ctx is not None:
            ctx.ensure_usable()
        return ctx

    # ------------------------------------------------------------------
    # SQL rendering
    # ------------------------------------------------------------------

    def _render(self, mutation: RowMutation) -> tuple[str, dict[str, Any]]:
        if mutation.kind is MutationKind.INSERT:
            return self._insert_sql(tuple(mutation.values)), dict(mutation.values)

        params: dict[str, Any] = {f"k_{c}": v for c, v in mutation.key.items()}
        where = " AND ".join(f"{quote_identifier(c)} = :k_{c}" for c in mutation.key)
        if mutation.kind is MutationKind.UPDATE:
            assignments = ", ".join(f"{quote_identifier(c)} = :v_{c}" for c in mutation.values)
            params.update({f"v_{c}": v for c, v in mutation.values.items()})
            return f"UPDATE {self._quoted_table} SET {assignments} WHERE {where}", params
        return f"DELETE FROM {self._quoted_table} WHERE {where}", params

    def _insert_sql(self, columns: tuple[str, ...]) -> str:
        if not columns:
            return f"INSERT INTO {self._quoted_table} DEFAULT VALUES"
        names = ", ".join(quote_identifier(c) for c in columns)
        binds = ", ".join(f":{c}" for c in columns)
        return f"INSERT INTO {self._quoted_table} ({names}) VALUES ({binds})"


__all__ = ["BatchReconciler", "MutationKind", "RowMutation", "quote_identifier"]
