"""Unit tests for SqlCommand parameter binding, targeting and result shapes."""

from __future__ import annotations

import pytest

from mp_txscope.config import TransactionSettings
from mp_txscope.kernel.errors import (
    CardinalityViolationError,
    CommandExecutionError,
    ConnectionInUseError,
    InvalidStateError,
    ValidationError,
)
from mp_txscope.kernel.types import Nothing, Some
from mp_txscope.testing import FakeDatabaseClient
from mp_txscope.transactions import (
    Connection,
    Record,
    ResultType,
    SqlCommand,
    statement_parameters,
)

SELECT_TITLE = "SELECT id, title FROM employee WHERE id = :id"
SELECT_TITLES = "SELECT id, title FROM employee"
UPDATE_TITLE = "UPDATE employee SET title = :title WHERE id = :id"


# ---------------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------------


class TestStatementParameters:
    def test_names_in_order_of_first_use(self) -> None:
        assert statement_parameters("SELECT :b, :a, :b") == ("b", "a")

    def test_skips_casts(self) -> None:
        assert statement_parameters("SELECT :value::int, '12:30'") == ("value",)


class TestParameterBinding:
    def test_missing_parameter(self, fake_db_client: FakeDatabaseClient) -> None:
        with Connection("fake://hr") as conn:
            with pytest.raises(ValidationError) as exc_info:
                SqlCommand(SELECT_TITLE, connection=conn).execute()
        assert exc_info.value.errors == [{"field": "id", "error": "missing"}]
        assert fake_db_client.executed == []

    def test_unknown_parameter(self, fake_db_client: FakeDatabaseClient) -> None:
        with Connection("fake://hr") as conn:
            with pytest.raises(ValidationError):
                SqlCommand(SELECT_TITLE, connection=conn).execute(id=1, name="x")

    def test_declared_types_are_checked(self, fake_db_client: FakeDatabaseClient) -> None:
        with Connection("fake://hr") as conn:
            command = SqlCommand(SELECT_TITLE, connection=conn, parameters={"id": int})
            with pytest.raises(ValidationError) as exc_info:
                command.execute(id="7")
            assert exc_info.value.errors[0]["error"] == "expected int"
            list(command.execute(id=7))
            list(command.execute(id=None))

    def test_values_reach_driver(self, fake_db_client: FakeDatabaseClient) -> None:
        with Connection("fake://hr") as conn:
            SqlCommand(UPDATE_TITLE, connection=conn).execute(id=7, title="Technician")
        assert fake_db_client.executed == [(UPDATE_TITLE, {"id": 7, "title": "Technician"})]


# ---------------------------------------------------------------------------
# Result shapes
# ---------------------------------------------------------------------------


class TestResultShapes:
    def test_records(self, fake_db_client: FakeDatabaseClient) -> None:
        fake_db_client.script_rows(SELECT_TITLES, ["id", "title"], [(1, "Engineer"), (2, "Technician")])
        with Connection("fake://hr") as conn:
            rows = list(SqlCommand(SELECT_TITLES, connection=conn).execute())
        assert [r.title for r in rows] == ["Engineer", "Technician"]
        assert isinstance(rows[0], Record)
        assert rows[1]["id"] == 2
        assert dict(rows[0]) == {"id": 1, "title": "Engineer"}

    def test_tuples(self, fake_db_client: FakeDatabaseClient) -> None:
        fake_db_client.script_rows(SELECT_TITLES, ["id", "title"], [(1, "Engineer")])
        with Connection("fake://hr") as conn:
            rows = list(SqlCommand(SELECT_TITLES, connection=conn, result_type=ResultType.TUPLES).execute())
        assert rows == [(1, "Engineer")]

    def test_rows_affected_for_dml(self, fake_db_client: FakeDatabaseClient) -> None:
        fake_db_client.script_rowcount(UPDATE_TITLE, 3)
        with Connection("fake://hr") as conn:
            assert SqlCommand(UPDATE_TITLE, connection=conn).execute(id=1, title="x") == 3

    def test_rows_affected_result_type_ignores_rows(self, fake_db_client: FakeDatabaseClient) -> None:
        fake_db_client.script_rows(SELECT_TITLES, ["id"], [(1,), (2,)])
        with Connection("fake://hr") as conn:
            command = SqlCommand(SELECT_TITLES, connection=conn, result_type=ResultType.ROWS_AFFECTED)
            assert command.execute() == -1

    def test_record_missing_column(self) -> None:
        record = Record(("id",), (1,))
        with pytest.raises(AttributeError):
            _ = record.title
        assert record.as_tuple() == (1,)


class TestSingleRow:
    def test_single_row_some(self, fake_db_client: FakeDatabaseClient) -> None:
        fake_db_client.script_rows(SELECT_TITLE, ["id", "title"], [(7, "Technician")])
        with Connection("fake://hr") as conn:
            result = SqlCommand(SELECT_TITLE, connection=conn, single_row=True).execute(id=7)
        assert isinstance(result, Some)
        assert result.unwrap().title == "Technician"

    def test_single_row_nothing(self, fake_db_client: FakeDatabaseClient) -> None:
        with Connection("fake://hr") as conn:
            result = SqlCommand(SELECT_TITLE, connection=conn, single_row=True).execute(id=99)
        assert result == Nothing()

    def test_single_row_cardinality_violation(self, fake_db_client: FakeDatabaseClient) -> None:
        fake_db_client.script_rows(SELECT_TITLE, ["id"], [(1,), (2,)])
        with Connection("fake://hr") as conn:
            with pytest.raises(CardinalityViolationError) as exc_info:
                SqlCommand(SELECT_TITLE, connection=conn, single_row=True).execute(id=1)
        assert exc_info.value.statement == SELECT_TITLE

    def test_execute_single(self, fake_db_client: FakeDatabaseClient) -> None:
        fake_db_client.script_rows(SELECT_TITLE, ["id", "title"], [(7, "Technician")])
        with Connection("fake://hr") as conn:
            match SqlCommand(SELECT_TITLE, connection=conn).execute_single(id=7):
                case Some(row):
                    assert row.id == 7
                case _:
                    pytest.fail("expected a row")

    def test_execute_single_on_dml_raises(self, fake_db_client: FakeDatabaseClient) -> None:
        with Connection("fake://hr") as conn:
            with pytest.raises(InvalidStateError):
                SqlCommand(UPDATE_TITLE, connection=conn).execute_single(id=1, title="x")


# ---------------------------------------------------------------------------
# Targeting
# ---------------------------------------------------------------------------


class TestCommandTargeting:
    def test_autocommit_without_context(self, fake_db_client: FakeDatabaseClient) -> None:
        with Connection("fake://hr") as conn:
            SqlCommand(UPDATE_TITLE, connection=conn).execute(id=1, title="x")
        assert fake_db_client.committed_statements == [UPDATE_TITLE]

    def test_closed_connection_raises(self, fake_db_client: FakeDatabaseClient) -> None:
        with pytest.raises(InvalidStateError):
            SqlCommand(UPDATE_TITLE, connection=Connection("fake://hr")).execute(id=1, title="x")

    def test_needs_connection_or_string(self, fake_db_client: FakeDatabaseClient) -> None:
        with pytest.raises(InvalidStateError):
            SqlCommand(UPDATE_TITLE).execute(id=1, title="x")

    def test_connection_string_from_settings(
        self,
        fake_db_client: FakeDatabaseClient,
        transaction_settings: TransactionSettings,
    ) -> None:
        SqlCommand(UPDATE_TITLE).execute(id=1, title="x")
        assert fake_db_client.connections[0].connection_string == transaction_settings.connection_string
        assert fake_db_client.open_connections == []

    def test_owned_connection_closed_on_failure(self, fake_db_client: FakeDatabaseClient) -> None:
        fake_db_client.fail_on(UPDATE_TITLE, RuntimeError("deadlock"))
        with pytest.raises(CommandExecutionError) as exc_info:
            SqlCommand(UPDATE_TITLE, connection_string="fake://hr").execute(id=1, title="x")
        assert exc_info.value.detail["statement"] == UPDATE_TITLE
        assert fake_db_client.open_connections == []

    def test_connection_with_pending_explicit_transaction(self, fake_db_client: FakeDatabaseClient) -> None:
        with Connection("fake://hr") as conn, conn.begin_transaction() as tx:
            with pytest.raises(ConnectionInUseError):
                SqlCommand(UPDATE_TITLE, connection=conn).execute(id=1, title="x")
            tx.complete()

    def test_busy_connection_fails_fast(self, fake_db_client: FakeDatabaseClient) -> None:
        with Connection("fake://hr") as conn:
            with conn.exclusive():
                with pytest.raises(ConnectionInUseError):
                    SqlCommand(UPDATE_TITLE, connection=conn).execute(id=1, title="x")
        assert fake_db_client.executed == []

    def test_explicit_client(self, fake_db_client: FakeDatabaseClient) -> None:
        other = FakeDatabaseClient()
        SqlCommand(UPDATE_TITLE, connection_string="fake://hr", client=other).execute(id=1, title="x")
        assert other.executed_statements == [UPDATE_TITLE]
        assert fake_db_client.executed == []
