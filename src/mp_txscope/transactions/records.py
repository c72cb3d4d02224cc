"""Transactions – result shapes returned by SqlCommand."""
from __future__ import annotations

from enum import Enum
from typing import Any, Iterator, Mapping, TypeAlias


class ResultType(str, Enum):
    """How rows of a row-returning statement are surfaced.

    Statements that return no rows always yield the affected-row count.
    """

    RECORDS = "records"
    TUPLES = "tuples"
    ROWS_AFFECTED = "rows_affected"


class Record(Mapping[str, Any]):
    """Immutable row with both attribute and key access.

    >>> row = Record(("id", "title"), (42, "Technician"))
    >>> row.title, row["id"], row[1]
    ('Technician', 42, 'Technician')
    """

    __slots__ = ("_columns", "_values", "_index")

    def __init__(self, columns: tuple[str, ...], values: tuple[Any, ...]) -> None:
        self._columns = columns
        self._values = values
        self._index = {name: pos for pos, name in enumerate(columns)}

    def __getitem__(self, key: str | int) -> Any:
        if isinstance(key, int):
            return self._values[key]
        return self._values[self._index[key]]

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._values[self._index[name]]
        except KeyError:
            raise AttributeError(f"Record has no column {name!r}") from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._columns)

    def __len__(self) -> int:
        return len(self._columns)

    def as_tuple(self) -> tuple[Any, ...]:
        return self._values

    def __repr__(self) -> str:
        fields = ", ".join(f"{c}={v!r}" for c, v in zip(self._columns, self._values))
        return f"Record({fields})"


Row: TypeAlias = Record | tuple[Any, ...]

__all__ = ["Record", "ResultType", "Row"]
