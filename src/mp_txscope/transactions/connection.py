"""Transactions – Connection handle."""
from __future__ import annotations

import contextlib
import re
import threading
from enum import Enum
from types import TracebackType
from typing import Any, Iterator
from uuid import uuid4

from mp_txscope.kernel.errors import ConnectionInUseError, InvalidStateError
from mp_txscope.kernel.types import IsolationLevel
from mp_txscope.observability.logging import get_logger
from mp_txscope.transactions.ambient import ambient_scopes
from mp_txscope.transactions.context import Enlistment, TransactionContext, TransactionState
from mp_txscope.transactions.ports import DatabaseClient, get_default_client

logger = get_logger(__name__)

_ENLIST_OPTION = re.compile(r"(^|[?&;])\s*enlist\s*=\s*([^&;]*)", re.IGNORECASE)
_TRUTHY = ("1", "true", "yes", "on")


def split_enlist_option(connection_string: str) -> tuple[str, bool]:
    """Strip the ``enlist`` option and return ``(driver string, enlist flag)``.

    Works for URL query strings (``sqlite:///app.db?enlist=false``) and
    key/value strings (``Data Source=.;Enlist=false``). Absent means ``True``.
    """
    match = _ENLIST_OPTION.search(connection_string)
    if match is None:
        return connection_string, True
    enlist = match.group(2).strip().lower() in _TRUTHY
    head, sep, rest = connection_string[: match.start()], match.group(1), connection_string[match.end():]
    if sep == "?" and rest.startswith("&"):
        rest = "?" + rest[1:]
    elif not head:
        rest = rest.lstrip(";&")
    return head + rest, enlist


class ConnectionState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"


class Connection:
    """Owns one physical connection to the store.

    Opening inside a visible ambient scope enlists the connection in that
    scope unless the connection string carries ``enlist=false``. Use as a
    context manager to guarantee release::

        with Connection(url) as conn:
            with conn.begin_transaction() as tx:
                ...
                tx.complete()
    """

    def __init__(self, connection_string: str, *, client: DatabaseClient | None = None) -> None:
        self.id = uuid4().hex
        self.connection_string = connection_string
        self.driver_connection_string, self.enlist = split_enlist_option(connection_string)
        self._client = client if client is not None else get_default_client()
        self._state = ConnectionState.CLOSED
        self._physical: Any = None
        self._context: TransactionContext | None = None
        self._enlistment: Enlistment | None = None
        self._busy = threading.Lock()

    @property
    def client(self) -> DatabaseClient:
        return self._client

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def physical(self) -> Any:
        return self._physical

    @property
    def transaction(self) -> TransactionContext | None:
        """Active context this connection participates in, if any."""
        return self._context

    @property
    def enlistment(self) -> Enlistment | None:
        return self._enlistment

    def open(self) -> "Connection":
        ctx = ambient_scopes.current() if self.enlist else None
        return self._open(ctx)

    def _open(self, ctx: TransactionContext | None) -> "Connection":
        if self.is_open:
            raise InvalidStateError("Connection is already open", detail={"connection_id": self.id})
        if ctx is not None:
            ctx._enlist(self)
        else:
            self._physical = self._client.open(self.driver_connection_string)
        self._state = ConnectionState.OPEN
        logger.debug(
            "connection.open",
            connection_id=self.id,
            transaction_id=self._context.id if self._context is not None else None,
        )
        return self

    def close(self) -> None:
        if not self.is_open:
            return
        ctx = self._context
        if ctx is not None and not ctx.is_ambient and ctx.state is TransactionState.ACTIVE:
            raise InvalidStateError(
                "Cannot close a connection with an active transaction",
                detail={"connection_id": self.id, "transaction_id": ctx.id},
            )
        if ctx is not None and ctx.is_ambient:
            ctx._detach(self)
        else:
            self._client.close(self._physical)
        self._context = None
        self._enlistment = None
        self._physical = None
        self._state = ConnectionState.CLOSED
        logger.debug("connection.close", connection_id=self.id)

    def begin_transaction(self, isolation_level: IsolationLevel | str | None = None) -> TransactionContext:
        return TransactionContext.begin_explicit(self, isolation_level)

    def require_open(self) -> None:
        if not self.is_open:
            raise InvalidStateError("Connection is not open", detail={"connection_id": self.id})

    def acquire(self) -> None:
        """Claim the connection for one execution; fail fast if another flow holds it."""
        if not self._busy.acquire(blocking=False):
            raise ConnectionInUseError(
                "Connection is executing a statement for another caller",
                detail={"connection_id": self.id},
            )

    def release(self) -> None:
        self._busy.release()

    @contextlib.contextmanager
    def exclusive(self) -> Iterator["Connection"]:
        self.acquire()
        try:
            yield self
        finally:
            self.release()

    def _attach(self, ctx: TransactionContext, enlistment: Enlistment) -> None:
        self._context = ctx
        self._enlistment = enlistment
        self._physical = enlistment.physical

    def _detach_transaction(self) -> None:
        self._context = None
        self._enlistment = None

    def __enter__(self) -> "Connection":
        if not self.is_open:
            self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        # an explicit transaction left uncompleted is rolled back on every exit path
        ctx = self._context
        try:
            if ctx is not None and not ctx.is_ambient and ctx.state is TransactionState.ACTIVE:
                ctx.release(exc_val)
        finally:
            self.close()

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, state={self._state.value})"


__all__ = ["Connection", "ConnectionState", "split_enlist_option"]
