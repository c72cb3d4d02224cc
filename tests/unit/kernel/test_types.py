"""Unit tests for kernel value types."""

from __future__ import annotations

import pytest

from mp_txscope.kernel.types import IsolationLevel, Nothing, Some


class TestOption:
    def test_some(self) -> None:
        opt = Some(3)
        assert opt.is_some() and not opt.is_none()
        assert opt.unwrap() == 3
        assert opt.value == 3
        assert list(opt) == [3]
        assert bool(opt)

    def test_nothing(self) -> None:
        opt: Nothing[int] = Nothing()
        assert opt.is_none()
        assert opt.unwrap_or(5) == 5
        assert list(opt) == []
        assert not opt
        with pytest.raises(ValueError):
            opt.unwrap()

    def test_expect_message(self) -> None:
        with pytest.raises(ValueError, match="no employee"):
            Nothing().expect("no employee")
        assert Some("x").expect("unused") == "x"

    def test_map(self) -> None:
        assert Some(2).map(lambda v: v * 10) == Some(20)
        assert Nothing().map(lambda v: v * 10) == Nothing()

    def test_equality(self) -> None:
        assert Some(1) == Some(1)
        assert Some(1) != Some(2)
        assert Some(1) != Nothing()
        assert hash(Some(1)) == hash(Some(1))

    def test_pattern_matching(self) -> None:
        match Some("title"):
            case Some(value):
                assert value == "title"
            case _:
                pytest.fail("Some did not match")


class TestIsolationLevel:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("serializable", IsolationLevel.SERIALIZABLE),
            ("Read Committed", IsolationLevel.READ_COMMITTED),
            ("repeatable-read", IsolationLevel.REPEATABLE_READ),
            (IsolationLevel.SNAPSHOT, IsolationLevel.SNAPSHOT),
        ],
    )
    def test_parse(self, raw: str, expected: IsolationLevel) -> None:
        assert IsolationLevel.parse(raw) is expected

    def test_parse_unknown(self) -> None:
        with pytest.raises(ValueError, match="Unknown isolation level"):
            IsolationLevel.parse("chaos")
