"""Transactions – TransactionContext (explicit) and TransactionScope (ambient).

A context is always acquired with ``with`` so release runs on every exit
path. Release commits only when :meth:`TransactionContext.complete` was
called, nothing doomed the context, and the block did not raise;
otherwise every enlisted physical transaction is rolled back.
"""
from __future__ import annotations

import dataclasses
import threading
from enum import Enum
from types import TracebackType
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from mp_txscope.config.settings import current_settings
from mp_txscope.kernel.errors import (
    ConnectionInUseError,
    InvalidStateError,
    ScopeNestingError,
    TransactionAbortedError,
    UnexpectedDistributedTransactionError,
)
from mp_txscope.kernel.types import IsolationLevel
from mp_txscope.observability.logging import get_logger
from mp_txscope.transactions.ambient import ambient_scopes, current_flow
from mp_txscope.transactions.ports import DatabaseClient

if TYPE_CHECKING:
    from mp_txscope.transactions.connection import Connection

logger = get_logger(__name__)


class TransactionState(str, Enum):
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class ScopeOption(str, Enum):
    """How a new ambient scope relates to an already visible one."""

    REQUIRED = "required"
    REQUIRES_NEW = "requires_new"
    SUPPRESS = "suppress"


class EscalationPolicy(str, Enum):
    ALLOW = "allow"
    REJECT = "reject"


@dataclasses.dataclass(eq=False)
class Enlistment:
    """One physical connection participating in a context.

    ``handle`` is ``None`` once the owning :class:`Connection` was closed;
    the physical connection stays reserved until the context finalizes.
    """

    client: DatabaseClient
    connection_string: str
    physical: Any
    transaction: Any
    handle: "Connection | None"

    @property
    def is_open(self) -> bool:
        return self.handle is not None


class TransactionContext:
    """Unit-of-work boundary bound to one connection or discovered ambiently.

    Do not instantiate directly: use :meth:`begin_explicit`,
    :meth:`begin_ambient` or :class:`TransactionScope`.
    """

    def __init__(
        self,
        *,
        isolation_level: IsolationLevel,
        ambient: bool,
        async_flow: bool = False,
        escalation: EscalationPolicy = EscalationPolicy.ALLOW,
        parent: "TransactionContext | None" = None,
        suppressed: bool = False,
    ) -> None:
        self.id = uuid4().hex
        self.isolation_level = isolation_level
        self.is_ambient = ambient
        self.async_flow = async_flow
        self.suppressed = suppressed
        self._root: TransactionContext = parent._root if parent is not None else self
        self._escalation = escalation
        self._owner_flow = current_flow()
        self._lock = threading.RLock()
        self._state = TransactionState.ACTIVE
        self._completed = False
        self._released = False
        self._pushed = False
        self._doomed_reason: str | None = None
        self._distributed = False
        self._connection: Connection | None = None
        self._enlistments: list[Enlistment] = []

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def begin_explicit(
        cls,
        connection: "Connection",
        isolation_level: IsolationLevel | str | None = None,
    ) -> "TransactionContext":
        """Begin a physical transaction on an open *connection*."""
        if not connection.is_open:
            raise InvalidStateError(
                "Connection must be open to begin a transaction",
                detail={"connection_id": connection.id},
            )
        if connection.transaction is not None:
            raise ConnectionInUseError(
                "Connection already participates in an active transaction",
                detail={"connection_id": connection.id, "transaction_id": connection.transaction.id},
            )
        level = _resolve_isolation(isolation_level)
        ctx = cls(isolation_level=level, ambient=False)
        physical_tx = connection.client.begin_transaction(connection.physical, level)
        enlistment = Enlistment(
            client=connection.client,
            connection_string=connection.connection_string,
            physical=connection.physical,
            transaction=physical_tx,
            handle=connection,
        )
        ctx._enlistments.append(enlistment)
        ctx._connection = connection
        connection._attach(ctx, enlistment)
        logger.info(
            "transaction.begin",
            transaction_id=ctx.id,
            ambient=False,
            isolation_level=level.value,
            connection_id=connection.id,
        )
        return ctx

    @classmethod
    def begin_ambient(
        cls,
        isolation_level: IsolationLevel | str | None = None,
        *,
        async_flow: bool | None = None,
        option: ScopeOption = ScopeOption.REQUIRED,
        escalation: EscalationPolicy | None = None,
    ) -> "TransactionScope":
        """Push a new ambient scope for the calling flow."""
        return TransactionScope(isolation_level, async_flow=async_flow, option=option, escalation=escalation)

    @staticmethod
    def current() -> "TransactionContext | None":
        return ambient_scopes.current()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> TransactionState:
        return self._root._state

    @property
    def is_active(self) -> bool:
        return self._root._state is TransactionState.ACTIVE and not self._released

    @property
    def is_distributed(self) -> bool:
        return self._root._distributed

    @property
    def is_doomed(self) -> bool:
        return self._root._doomed_reason is not None

    @property
    def is_root(self) -> bool:
        return self._root is self

    @property
    def connection(self) -> "Connection | None":
        """Bound connection (explicit) or first enlisted connection (ambient)."""
        return self._root._connection

    @property
    def enlistments(self) -> tuple[Enlistment, ...]:
        return tuple(self._root._enlistments)

    def visible_from(self, flow: tuple[int, Any]) -> bool:
        return self.async_flow or flow == self._owner_flow

    def ensure_not_distributed(self) -> None:
        """Raise if the context escalated; call right before :meth:`complete`."""
        if self.is_distributed:
            raise UnexpectedDistributedTransactionError(
                detail={"transaction_id": self._root.id, "resources": len(self._root._enlistments)},
            )

    def ensure_usable(self) -> None:
        """Raise unless statements may still be enlisted in this context."""
        root = self._root
        if root._state is not TransactionState.ACTIVE or self._released:
            raise InvalidStateError(
                f"Transaction is {root._state.value} and cannot be used",
                detail={"transaction_id": self.id},
            )
        if root._doomed_reason is not None:
            raise TransactionAbortedError(reason=root._doomed_reason, detail={"transaction_id": root.id})

    # ------------------------------------------------------------------
    # Outcome
    # ------------------------------------------------------------------

    def complete(self) -> None:
        """Vote to commit.

        Explicit contexts commit immediately. Ambient contexts commit when
        the outermost scope of the transaction is released.
        """
        root = self._root
        with root._lock:
            if self._completed or self._released or root._state is not TransactionState.ACTIVE:
                raise InvalidStateError(
                    "Transaction has already been completed",
                    detail={"transaction_id": self.id, "state": root._state.value},
                )
            if root._doomed_reason is not None:
                raise TransactionAbortedError(reason=root._doomed_reason, detail={"transaction_id": root.id})
            self._completed = True
            if not self.is_ambient:
                self._finish(commit=True)

    def rollback(self) -> None:
        """Roll back immediately; only valid on the root of a transaction."""
        if not self.is_root:
            raise InvalidStateError("Only the outermost scope can roll back", detail={"transaction_id": self.id})
        with self._lock:
            if self._state is not TransactionState.ACTIVE:
                raise InvalidStateError(
                    f"Transaction is already {self._state.value}",
                    detail={"transaction_id": self.id},
                )
            self._finish(commit=False)

    def cancel(self, reason: str = "cancelled") -> None:
        """Cooperative cancellation: the context can only roll back from now on."""
        self.doom(reason)

    def doom(self, reason: str) -> None:
        root = self._root
        with root._lock:
            if root._doomed_reason is None and root._state is TransactionState.ACTIVE:
                root._doomed_reason = reason
                logger.warning("transaction.doomed", transaction_id=root.id, reason=reason)

    # ------------------------------------------------------------------
    # Enlistment
    # ------------------------------------------------------------------

    def enlist(self, connection: "Connection") -> Enlistment:
        """Enlist an already open *connection* in this ambient transaction."""
        if not connection.is_open:
            raise InvalidStateError("Connection must be open to enlist", detail={"connection_id": connection.id})
        return self._enlist(connection)

    def _enlist(self, connection: "Connection") -> Enlistment:
        root = self._root
        if not root.is_ambient:
            raise InvalidStateError(
                "Explicit transactions are bound to a single connection",
                detail={"transaction_id": root.id},
            )
        with root._lock:
            self.ensure_usable()
            if connection.transaction is root:
                if connection.enlistment is None:
                    raise InvalidStateError(
                        "Connection is bound to the transaction without an enlistment",
                        detail={"transaction_id": root.id, "connection_id": connection.id},
                    )
                return connection.enlistment
            if connection.transaction is not None:
                raise ConnectionInUseError(
                    "Connection already participates in another transaction",
                    detail={"connection_id": connection.id, "transaction_id": connection.transaction.id},
                )

            if not connection.is_open:
                for enlistment in root._enlistments:
                    if not enlistment.is_open and enlistment.connection_string == connection.connection_string:
                        enlistment.handle = connection
                        connection._attach(root, enlistment)
                        logger.debug(
                            "transaction.enlist",
                            transaction_id=root.id,
                            connection_id=connection.id,
                            reused=True,
                        )
                        return enlistment

            open_resources = [e for e in root._enlistments if e.is_open]
            if open_resources and not root._distributed and root._escalation is EscalationPolicy.REJECT:
                root.doom("escalation to a distributed transaction rejected")
                raise UnexpectedDistributedTransactionError(
                    "Enlisting a second open connection would escalate the transaction",
                    detail={"transaction_id": root.id, "connection_id": connection.id},
                )

            client = connection.client
            opened_here = not connection.is_open
            physical = client.open(connection.driver_connection_string) if opened_here else connection.physical
            try:
                physical_tx = client.begin_transaction(physical, root.isolation_level)
            except Exception:
                if opened_here:
                    client.close(physical)
                raise
            enlistment = Enlistment(
                client=client,
                connection_string=connection.connection_string,
                physical=physical,
                transaction=physical_tx,
                handle=connection,
            )
            root._enlistments.append(enlistment)
            if root._connection is None:
                root._connection = connection
            connection._attach(root, enlistment)
            logger.debug(
                "transaction.enlist",
                transaction_id=root.id,
                connection_id=connection.id,
                resources=len(root._enlistments),
            )
            if open_resources and not root._distributed:
                root._distributed = True
                logger.warning(
                    "transaction.escalated",
                    transaction_id=root.id,
                    resources=len(root._enlistments),
                )
            return enlistment

    def _detach(self, connection: "Connection") -> None:
        """Called when an enlisted connection closes before the context ends."""
        with self._root._lock:
            enlistment = connection.enlistment
            if enlistment is not None:
                enlistment.handle = None

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    def __enter__(self) -> "TransactionContext":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.release(exc_val)

    def release(self, error: BaseException | None = None) -> None:
        """Deterministic end of the scope; idempotent."""
        if self._released:
            return
        self._released = True
        if self._pushed:
            try:
                ambient_scopes.pop(self)
            except ScopeNestingError:
                if self.is_root:
                    self._finish(commit=False, suppress_errors=True)
                raise

        if self.suppressed:
            return
        if not self.is_root:
            if not self._completed or error is not None:
                self.doom("nested scope released without completion")
            return

        with self._lock:
            if self._state is not TransactionState.ACTIVE:
                return
            commit = self._completed and error is None and self._doomed_reason is None
            if commit:
                self._finish(commit=True)
                return
            voted = self._completed and error is None
            reason = self._doomed_reason
            self._finish(commit=False, suppress_errors=error is not None)
            if voted and reason is not None:
                raise TransactionAbortedError(reason=reason, detail={"transaction_id": self.id})

    def _finish(self, *, commit: bool, suppress_errors: bool = False) -> None:
        enlistments = list(self._enlistments)
        failure: BaseException | None = None
        committed = 0
        if commit:
            for enlistment in enlistments:
                try:
                    enlistment.client.commit(enlistment.transaction)
                except Exception as exc:  # noqa: BLE001
                    failure = exc
                    logger.error("transaction.commit_failed", transaction_id=self.id, committed=committed, error=repr(exc))
                    break
                committed += 1
        for enlistment in enlistments[committed:]:
            try:
                enlistment.client.rollback(enlistment.transaction)
            except Exception as exc:  # noqa: BLE001
                logger.error("transaction.rollback_failed", transaction_id=self.id, error=repr(exc))
                if failure is None and not suppress_errors:
                    failure = exc

        for enlistment in enlistments:
            if enlistment.handle is None:
                try:
                    enlistment.client.close(enlistment.physical)
                except Exception as exc:  # noqa: BLE001
                    logger.error("transaction.close_failed", transaction_id=self.id, error=repr(exc))
            else:
                enlistment.handle._detach_transaction()
        self._enlistments.clear()

        if commit and failure is None:
            self._state = TransactionState.COMMITTED
            logger.info(
                "transaction.commit",
                transaction_id=self.id,
                resources=len(enlistments),
                distributed=self._distributed,
            )
            return

        self._state = TransactionState.ROLLED_BACK
        logger.info("transaction.rollback", transaction_id=self.id, resources=len(enlistments))
        if failure is not None:
            if commit and committed:
                logger.warning(
                    "transaction.partially_committed",
                    transaction_id=self.id,
                    committed=committed,
                    resources=len(enlistments),
                )
            raise TransactionAbortedError(
                reason="commit failed" if commit else "rollback failed",
                detail={"transaction_id": self.id, "committed_resources": committed},
                cause=failure,
            )

    def __repr__(self) -> str:
        kind = "ambient" if self.is_ambient else "explicit"
        return f"{type(self).__name__}(id={self.id!r}, {kind}, state={self.state.value})"


class TransactionScope(TransactionContext):
    """Ambient transaction scope for the calling logical flow.

    Usage::

        with TransactionScope() as scope:
            InsertRate(connection_string=url).execute(rate=0.63)
            scope.ensure_not_distributed()
            scope.complete()

    ``option`` decides how the scope nests: ``REQUIRED`` joins a visible
    outer scope, ``REQUIRES_NEW`` starts an independent transaction and
    ``SUPPRESS`` hides the ambient transaction from the block.
    """

    def __init__(
        self,
        isolation_level: IsolationLevel | str | None = None,
        *,
        async_flow: bool | None = None,
        option: ScopeOption = ScopeOption.REQUIRED,
        escalation: EscalationPolicy | None = None,
    ) -> None:
        settings = current_settings()
        outer = ambient_scopes.current() if option is ScopeOption.REQUIRED else None
        if outer is not None:
            level = outer.isolation_level if isolation_level is None else IsolationLevel.parse(isolation_level)
            if level is not outer.isolation_level:
                raise InvalidStateError(
                    "Nested scope isolation level differs from the ambient transaction",
                    detail={"ambient": outer.isolation_level.value, "requested": level.value},
                )
        else:
            level = _resolve_isolation(isolation_level)
        if escalation is None:
            escalation = EscalationPolicy.REJECT if settings.reject_distributed else EscalationPolicy.ALLOW
        super().__init__(
            isolation_level=level,
            ambient=True,
            async_flow=settings.async_flow if async_flow is None else async_flow,
            escalation=escalation,
            parent=outer,
            suppressed=option is ScopeOption.SUPPRESS,
        )
        self.option = option
        ambient_scopes.push(self)
        self._pushed = True
        if self.is_root and not self.suppressed:
            logger.info(
                "transaction.begin",
                transaction_id=self.id,
                ambient=True,
                isolation_level=level.value,
                async_flow=self.async_flow,
            )

    def __enter__(self) -> "TransactionScope":
        return self


def _resolve_isolation(isolation_level: IsolationLevel | str | None) -> IsolationLevel:
    if isolation_level is None:
        return current_settings().isolation
    return IsolationLevel.parse(isolation_level)


__all__ = [
    "Enlistment",
    "EscalationPolicy",
    "ScopeOption",
    "TransactionContext",
    "TransactionScope",
    "TransactionState",
]
