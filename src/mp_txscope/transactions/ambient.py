"""Transactions – AmbientScopeManager.

The ambient stack lives in a :class:`~contextvars.ContextVar` holding an
immutable tuple. asyncio tasks and :func:`asyncio.to_thread` copy the
current context, so every logical flow works on its own view of the stack
and concurrent flows never observe each other's pushes.

Whether a copied context is *usable* is decided per scope: a scope created
with ``async_flow=False`` is visible only from the flow (thread + asyncio
task) that created it.
"""
from __future__ import annotations

import asyncio
import threading
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any

from mp_txscope.kernel.errors import ScopeNestingError
from mp_txscope.observability.logging import get_logger

if TYPE_CHECKING:
    from mp_txscope.transactions.context import TransactionContext

logger = get_logger(__name__)

_STACK: ContextVar[tuple["TransactionContext", ...]] = ContextVar("_txscope_ambient_stack", default=())


def current_flow() -> tuple[int, Any]:
    """Identity of the calling logical flow: ``(thread id, asyncio task | None)``."""
    try:
        task = asyncio.current_task()
    except RuntimeError:
        task = None
    return threading.get_ident(), task


class AmbientScopeManager:
    """Per-flow LIFO stack of ambient transaction contexts."""

    def stack(self) -> tuple["TransactionContext", ...]:
        return _STACK.get()

    def current(self) -> "TransactionContext | None":
        """Innermost ambient context visible to the calling flow, or ``None``."""
        stack = _STACK.get()
        if not stack:
            return None
        top = stack[-1]
        if top.suppressed or not top.visible_from(current_flow()):
            return None
        return top

    def is_lost(self) -> bool:
        """True when an ambient context exists here but did not flow into this flow."""
        stack = _STACK.get()
        if not stack:
            return False
        top = stack[-1]
        return not top.suppressed and not top.visible_from(current_flow())

    def push(self, ctx: "TransactionContext") -> None:
        _STACK.set(_STACK.get() + (ctx,))
        logger.debug("ambient.push", transaction_id=ctx.id, depth=len(_STACK.get()))

    def pop(self, ctx: "TransactionContext") -> None:
        """Remove *ctx*, which must be the innermost scope of this flow.

        An out-of-order pop dooms every context on the stack, drops *ctx*
        from it and raises :class:`ScopeNestingError`; the unit of work
        cannot continue.
        """
        stack = _STACK.get()
        if not stack or stack[-1] is not ctx:
            reason = "ambient scopes released out of order"
            for entry in stack:
                entry.doom(reason)
            ctx.doom(reason)
            _STACK.set(tuple(entry for entry in stack if entry is not ctx))
            logger.error(
                "ambient.nesting_violation",
                transaction_id=ctx.id,
                innermost=stack[-1].id if stack else None,
            )
            raise ScopeNestingError(
                f"Scope {ctx.id} released out of order; innermost scope is "
                f"{stack[-1].id if stack else 'none'}"
            )
        _STACK.set(stack[:-1])
        logger.debug("ambient.pop", transaction_id=ctx.id, depth=len(stack) - 1)


ambient_scopes = AmbientScopeManager()

__all__ = ["AmbientScopeManager", "ambient_scopes", "current_flow"]
