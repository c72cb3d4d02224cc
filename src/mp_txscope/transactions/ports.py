"""Transactions – DatabaseClient port and the process-wide default client."""
from __future__ import annotations

import dataclasses
import threading
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from mp_txscope.kernel.types import IsolationLevel


@dataclasses.dataclass(frozen=True)
class StatementResult:
    """Materialised outcome of one statement.

    ``rows`` is empty and ``returns_rows`` false for DML/DDL; ``rowcount``
    is the driver-reported affected-row count (``-1`` when unknown).
    """

    columns: tuple[str, ...] = ()
    rows: tuple[tuple[Any, ...], ...] = ()
    rowcount: int = -1
    returns_rows: bool = False


@runtime_checkable
class DatabaseClient(Protocol):
    """Port: the underlying database client collaborator.

    Physical connection and transaction objects are opaque to the core.
    Passing ``transaction=None`` to :meth:`execute` means autocommit.
    """

    def open(self, connection_string: str) -> Any: ...

    def close(self, connection: Any) -> None: ...

    def begin_transaction(self, connection: Any, isolation_level: IsolationLevel) -> Any: ...

    def commit(self, transaction: Any) -> None: ...

    def rollback(self, transaction: Any) -> None: ...

    def execute(
        self,
        connection: Any,
        transaction: Any | None,
        statement: str,
        params: Mapping[str, Any],
    ) -> StatementResult: ...

    async def execute_async(
        self,
        connection: Any,
        transaction: Any | None,
        statement: str,
        params: Mapping[str, Any],
    ) -> StatementResult: ...

    def execute_many(
        self,
        connection: Any,
        transaction: Any | None,
        statement: str,
        params: Sequence[Mapping[str, Any]],
    ) -> int: ...


_lock = threading.Lock()
_default_client: DatabaseClient | None = None


def set_default_client(client: DatabaseClient | None) -> None:
    """Install the client used when a connection is created without one."""
    global _default_client
    with _lock:
        _default_client = client


def get_default_client() -> DatabaseClient:
    """Return the default client, creating a :class:`SqlAlchemyClient` on first use."""
    global _default_client
    with _lock:
        if _default_client is None:
            from mp_txscope.adapters.sqlalchemy import SqlAlchemyClient

            _default_client = SqlAlchemyClient()
        return _default_client


__all__ = ["DatabaseClient", "StatementResult", "get_default_client", "set_default_client"]
