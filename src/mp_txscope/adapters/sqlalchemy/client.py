"""SQLAlchemy adapter – SqlAlchemyClient."""
from __future__ import annotations

import asyncio
import threading
from typing import Any, Mapping, Sequence

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, CursorResult, Engine, RootTransaction

from mp_txscope.kernel.types import IsolationLevel
from mp_txscope.observability.logging import get_logger, redact_connection_string
from mp_txscope.transactions.ports import StatementResult

logger = get_logger(__name__)

_ISOLATION_NAMES: dict[IsolationLevel, str] = {
    IsolationLevel.READ_UNCOMMITTED: "READ UNCOMMITTED",
    IsolationLevel.READ_COMMITTED: "READ COMMITTED",
    IsolationLevel.REPEATABLE_READ: "REPEATABLE READ",
    IsolationLevel.SNAPSHOT: "SNAPSHOT",
    IsolationLevel.SERIALIZABLE: "SERIALIZABLE",
}


class SqlAlchemyClient:
    """:class:`~mp_txscope.transactions.ports.DatabaseClient` on SQLAlchemy Core.

    One :class:`~sqlalchemy.engine.Engine` is created per connection URL and
    reused; ``engine_kwargs`` are forwarded to :func:`sqlalchemy.create_engine`.
    For SQLite combined with :meth:`execute_async` pass
    ``connect_args={"check_same_thread": False}``.
    """

    def __init__(self, **engine_kwargs: Any) -> None:
        self._engine_kwargs = engine_kwargs
        self._engines: dict[str, Engine] = {}
        self._lock = threading.Lock()

    def engine_for(self, connection_string: str) -> Engine:
        with self._lock:
            engine = self._engines.get(connection_string)
            if engine is None:
                logger.debug("sqlalchemy.engine_created", url=redact_connection_string(connection_string))
                engine = create_engine(connection_string, **self._engine_kwargs)
                self._engines[connection_string] = engine
            return engine

    def open(self, connection_string: str) -> Connection:
        return self.engine_for(connection_string).connect()

    def close(self, connection: Connection) -> None:
        connection.close()

    def begin_transaction(self, connection: Connection, isolation_level: IsolationLevel) -> RootTransaction:
        if isolation_level is not IsolationLevel.UNSPECIFIED:
            connection.execution_options(isolation_level=_ISOLATION_NAMES[isolation_level])
        return connection.begin()

    def commit(self, transaction: RootTransaction) -> None:
        transaction.commit()

    def rollback(self, transaction: RootTransaction) -> None:
        if transaction.is_active:
            transaction.rollback()

    def execute(
        self,
        connection: Connection,
        transaction: RootTransaction | None,
        statement: str,
        params: Mapping[str, Any],
    ) -> StatementResult:
        try:
            outcome = self._materialise(connection.execute(text(statement), dict(params)))
        except Exception:
            if transaction is None:
                connection.rollback()
            raise
        if transaction is None:
            connection.commit()
        return outcome

    async def execute_async(
        self,
        connection: Connection,
        transaction: RootTransaction | None,
        statement: str,
        params: Mapping[str, Any],
    ) -> StatementResult:
        return await asyncio.to_thread(self.execute, connection, transaction, statement, params)

    def execute_many(
        self,
        connection: Connection,
        transaction: RootTransaction | None,
        statement: str,
        params: Sequence[Mapping[str, Any]],
    ) -> int:
        if not params:
            return 0
        try:
            result = connection.execute(text(statement), [dict(p) for p in params])
        except Exception:
            if transaction is None:
                connection.rollback()
            raise
        if transaction is None:
            connection.commit()
        return result.rowcount if result.rowcount >= 0 else len(params)

    def dispose(self) -> None:
        with self._lock:
            engines = list(self._engines.values())
            self._engines.clear()
        for engine in engines:
            engine.dispose()

    @staticmethod
    def _materialise(result: CursorResult[Any]) -> StatementResult:
        if not result.returns_rows:
            return StatementResult(rowcount=result.rowcount)
        columns = tuple(result.keys())
        rows = tuple(tuple(row) for row in result)
        return StatementResult(columns=columns, rows=rows, rowcount=result.rowcount, returns_rows=True)


__all__ = ["SqlAlchemyClient"]
