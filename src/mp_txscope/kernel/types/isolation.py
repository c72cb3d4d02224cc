"""Transaction isolation levels."""

from __future__ import annotations

from enum import Enum


class IsolationLevel(str, Enum):
    """Isolation level requested when a physical transaction begins.

    ``UNSPECIFIED`` leaves the driver's default in place.
    """

    UNSPECIFIED = "unspecified"
    READ_UNCOMMITTED = "read_uncommitted"
    READ_COMMITTED = "read_committed"
    REPEATABLE_READ = "repeatable_read"
    SNAPSHOT = "snapshot"
    SERIALIZABLE = "serializable"

    @classmethod
    def parse(cls, value: "IsolationLevel | str") -> "IsolationLevel":
        """Accept an enum member or a case-insensitive name like ``"Read Committed"``."""
        if isinstance(value, cls):
            return value
        normalised = str(value).strip().lower().replace(" ", "_").replace("-", "_")
        try:
            return cls(normalised)
        except ValueError:
            raise ValueError(f"Unknown isolation level {value!r}") from None


__all__ = ["IsolationLevel"]
