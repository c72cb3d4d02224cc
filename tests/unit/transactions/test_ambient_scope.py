"""Unit tests for ambient transaction scopes and the per-flow stack."""

from __future__ import annotations

import contextvars
from concurrent.futures import ThreadPoolExecutor

import pytest

from mp_txscope.config import TransactionSettings, configure
from mp_txscope.kernel.errors import (
    CommandExecutionError,
    InvalidStateError,
    ScopeNestingError,
    TransactionAbortedError,
    UnexpectedDistributedTransactionError,
)
from mp_txscope.kernel.types import IsolationLevel
from mp_txscope.testing import FakeDatabaseClient
from mp_txscope.transactions import (
    Connection,
    EscalationPolicy,
    ScopeOption,
    SqlCommand,
    TransactionContext,
    TransactionScope,
    TransactionState,
    ambient_scopes,
)

INSERT_RATE = "INSERT INTO currency_rate (average_rate) VALUES (:rate)"
INSERT_AUDIT = "INSERT INTO audit_log (message) VALUES (:message)"


def insert_rate(rate: float, url: str = "fake://sales") -> None:
    SqlCommand(INSERT_RATE, connection_string=url).execute(rate=rate)


# ---------------------------------------------------------------------------
# Stack
# ---------------------------------------------------------------------------


class TestAmbientStack:
    def test_no_scope(self) -> None:
        assert ambient_scopes.current() is None
        assert TransactionContext.current() is None
        assert not ambient_scopes.is_lost()

    def test_scope_is_current_inside_block(self, fake_db_client: FakeDatabaseClient) -> None:
        with TransactionScope() as scope:
            assert ambient_scopes.current() is scope
            assert scope.is_ambient
            assert scope.connection is None
            scope.complete()
        assert ambient_scopes.current() is None

    def test_begin_ambient_alias(self, fake_db_client: FakeDatabaseClient) -> None:
        with TransactionContext.begin_ambient("serializable") as scope:
            assert scope.isolation_level is IsolationLevel.SERIALIZABLE
            scope.complete()

    def test_out_of_order_release_is_fatal(self, fake_db_client: FakeDatabaseClient) -> None:
        outer = TransactionScope()
        inner = TransactionScope(option=ScopeOption.REQUIRES_NEW)
        with pytest.raises(ScopeNestingError):
            outer.release()
        assert outer.state is TransactionState.ROLLED_BACK
        assert inner.is_doomed
        inner.release()
        assert ambient_scopes.stack() == ()

    def test_release_is_idempotent(self, fake_db_client: FakeDatabaseClient) -> None:
        scope = TransactionScope()
        scope.complete()
        scope.release()
        scope.release()
        assert scope.state is TransactionState.COMMITTED

    def test_foreign_thread_does_not_see_scope(self, fake_db_client: FakeDatabaseClient) -> None:
        with TransactionScope() as scope:
            ctx = contextvars.copy_context()
            with ThreadPoolExecutor(max_workers=1) as pool:
                seen = pool.submit(ctx.run, ambient_scopes.current).result()
                lost = pool.submit(ctx.run, ambient_scopes.is_lost).result()
            assert seen is None
            assert lost
            scope.complete()

    def test_async_flow_scope_visible_from_thread(self, fake_db_client: FakeDatabaseClient) -> None:
        with TransactionScope(async_flow=True) as scope:
            ctx = contextvars.copy_context()
            with ThreadPoolExecutor(max_workers=1) as pool:
                seen = pool.submit(ctx.run, ambient_scopes.current).result()
            assert seen is scope
            scope.complete()


# ---------------------------------------------------------------------------
# Commit / rollback
# ---------------------------------------------------------------------------


class TestAmbientOutcome:
    def test_complete_commits_on_release(self, fake_db_client: FakeDatabaseClient) -> None:
        with TransactionScope() as scope:
            insert_rate(0.5)
            scope.complete()
            assert fake_db_client.committed == []
            assert scope.state is TransactionState.ACTIVE
        assert scope.state is TransactionState.COMMITTED
        assert fake_db_client.committed_statements == [INSERT_RATE]

    def test_no_complete_rolls_back(self, fake_db_client: FakeDatabaseClient) -> None:
        with TransactionScope() as scope:
            insert_rate(0.5)
        assert scope.state is TransactionState.ROLLED_BACK
        assert fake_db_client.committed == []
        assert fake_db_client.open_connections == []

    def test_exception_after_complete_rolls_back(self, fake_db_client: FakeDatabaseClient) -> None:
        with pytest.raises(ValueError):
            with TransactionScope() as scope:
                insert_rate(0.5)
                scope.complete()
                raise ValueError("late failure")
        assert scope.state is TransactionState.ROLLED_BACK
        assert fake_db_client.committed == []

    def test_complete_twice_raises(self, fake_db_client: FakeDatabaseClient) -> None:
        with TransactionScope() as scope:
            scope.complete()
            with pytest.raises(InvalidStateError):
                scope.complete()

    def test_failed_command_dooms_scope(self, fake_db_client: FakeDatabaseClient) -> None:
        fake_db_client.fail_on(INSERT_AUDIT, RuntimeError("boom"))
        with TransactionScope() as scope:
            insert_rate(0.5)
            with pytest.raises(CommandExecutionError):
                SqlCommand(INSERT_AUDIT, connection_string="fake://sales").execute(message="x")
            with pytest.raises(TransactionAbortedError):
                scope.complete()
            with pytest.raises(TransactionAbortedError):
                insert_rate(0.7)
        assert fake_db_client.committed == []

    def test_cancelled_scope_rolls_back(self, fake_db_client: FakeDatabaseClient) -> None:
        with TransactionScope() as scope:
            insert_rate(0.5)
            scope.cancel()
            assert scope.is_doomed
        assert scope.state is TransactionState.ROLLED_BACK


# ---------------------------------------------------------------------------
# Nesting
# ---------------------------------------------------------------------------


class TestAmbientNesting:
    def test_required_joins_outer(self, fake_db_client: FakeDatabaseClient) -> None:
        with TransactionScope() as outer:
            with TransactionScope() as inner:
                assert not inner.is_root
                assert ambient_scopes.current() is inner
                insert_rate(0.5)
                inner.complete()
            assert ambient_scopes.current() is outer
            insert_rate(0.6)
            outer.complete()
        assert len(fake_db_client.transactions) == 1
        assert fake_db_client.committed_statements == [INSERT_RATE, INSERT_RATE]

    def test_incomplete_inner_dooms_outer(self, fake_db_client: FakeDatabaseClient) -> None:
        with TransactionScope() as outer:
            with TransactionScope():
                insert_rate(0.5)
            assert outer.is_doomed
            with pytest.raises(TransactionAbortedError):
                outer.complete()
        assert fake_db_client.committed == []

    def test_voted_outer_doomed_afterwards_raises_on_release(self, fake_db_client: FakeDatabaseClient) -> None:
        with pytest.raises(TransactionAbortedError):
            with TransactionScope() as outer:
                insert_rate(0.5)
                outer.complete()
                with TransactionScope():
                    pass
        assert fake_db_client.committed == []

    def test_inner_cannot_roll_back(self, fake_db_client: FakeDatabaseClient) -> None:
        with TransactionScope() as outer:
            with TransactionScope() as inner:
                with pytest.raises(InvalidStateError):
                    inner.rollback()
                inner.complete()
            outer.complete()

    def test_isolation_mismatch_rejected(self, fake_db_client: FakeDatabaseClient) -> None:
        with TransactionScope("serializable") as outer:
            with pytest.raises(InvalidStateError):
                TransactionScope("read_committed")
            outer.complete()

    def test_requires_new_is_independent(self, fake_db_client: FakeDatabaseClient) -> None:
        with TransactionScope():
            insert_rate(0.5)
            with TransactionScope(option=ScopeOption.REQUIRES_NEW) as audit:
                assert audit.is_root
                SqlCommand(INSERT_AUDIT, connection_string="fake://audit").execute(message="tried")
                audit.complete()
        assert fake_db_client.committed_statements == [INSERT_AUDIT]

    def test_suppress_runs_in_autocommit(self, fake_db_client: FakeDatabaseClient) -> None:
        with TransactionScope():
            with TransactionScope(option=ScopeOption.SUPPRESS):
                assert ambient_scopes.current() is None
                insert_rate(0.5)
            assert fake_db_client.committed_statements == [INSERT_RATE]
        assert fake_db_client.transactions == []


# ---------------------------------------------------------------------------
# Escalation
# ---------------------------------------------------------------------------


class TestEscalation:
    def test_sequential_same_string_does_not_escalate(self, fake_db_client: FakeDatabaseClient) -> None:
        with TransactionScope() as scope:
            insert_rate(0.5)
            insert_rate(0.6)
            scope.ensure_not_distributed()
            assert not scope.is_distributed
            scope.complete()
        assert len(fake_db_client.connections) == 1
        assert len(fake_db_client.transactions) == 1

    def test_two_open_connections_escalate(self, fake_db_client: FakeDatabaseClient) -> None:
        with TransactionScope() as scope:
            with Connection("fake://sales"), Connection("fake://sales"):
                assert scope.is_distributed
            with pytest.raises(UnexpectedDistributedTransactionError):
                scope.ensure_not_distributed()
            scope.complete()
        assert len(scope.enlistments) == 0
        assert all(tx.state == "committed" for tx in fake_db_client.transactions)

    def test_different_strings_sequentially_do_not_escalate(self, fake_db_client: FakeDatabaseClient) -> None:
        with TransactionScope() as scope:
            insert_rate(0.5, url="fake://sales")
            insert_rate(0.6, url="fake://hr")
            assert not scope.is_distributed
            assert len(scope.enlistments) == 2
            scope.complete()

    def test_reject_policy(self, fake_db_client: FakeDatabaseClient) -> None:
        with TransactionScope(escalation=EscalationPolicy.REJECT) as scope:
            with Connection("fake://sales"):
                with pytest.raises(UnexpectedDistributedTransactionError):
                    Connection("fake://hr").open()
            assert scope.is_doomed
            assert not scope.is_distributed
        assert len(fake_db_client.connections) == 1
        assert scope.state is TransactionState.ROLLED_BACK

    def test_reject_from_settings(self, fake_db_client: FakeDatabaseClient) -> None:
        configure(TransactionSettings(reject_distributed=True))
        with TransactionScope() as scope:
            with Connection("fake://sales"):
                with pytest.raises(UnexpectedDistributedTransactionError):
                    Connection("fake://sales").open()

    def test_reject_from_environment(
        self, fake_db_client: FakeDatabaseClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("TXSCOPE_REJECT_DISTRIBUTED", "true")
        configure(None)
        with TransactionScope() as scope:
            with Connection("fake://sales"):
                with pytest.raises(UnexpectedDistributedTransactionError):
                    Connection("fake://sales").open()


# ---------------------------------------------------------------------------
# Commit across resources
# ---------------------------------------------------------------------------


class TestMultiResourceCommit:
    def test_commit_failure_rolls_back_remaining(self, fake_db_client: FakeDatabaseClient) -> None:
        fake_db_client.fail_next_commit(RuntimeError("network"))
        with pytest.raises(TransactionAbortedError):
            with TransactionScope() as scope:
                insert_rate(0.5, url="fake://sales")
                insert_rate(0.6, url="fake://hr")
                scope.complete()
        assert scope.state is TransactionState.ROLLED_BACK
        assert [tx.state for tx in fake_db_client.transactions] == ["failed", "rolled_back"]
        assert fake_db_client.open_connections == []

    def test_close_failure_does_not_leak_other_connections(
        self, fake_db_client: FakeDatabaseClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        close = fake_db_client.close

        def flaky_close(connection):
            if connection.connection_string == "fake://sales":
                raise RuntimeError("socket reset")
            close(connection)

        monkeypatch.setattr(fake_db_client, "close", flaky_close)
        with TransactionScope() as scope:
            insert_rate(0.5, url="fake://sales")
            insert_rate(0.6, url="fake://hr")
            scope.complete()
        assert scope.state is TransactionState.COMMITTED
        assert scope.enlistments == ()
        assert [c.connection_string for c in fake_db_client.open_connections] == ["fake://sales"]
        assert fake_db_client.committed_statements == [INSERT_RATE, INSERT_RATE]
