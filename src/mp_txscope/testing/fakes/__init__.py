"""Testing fakes – in-memory doubles for the database client port."""
from mp_txscope.testing.fakes.database import (
    FakeDatabaseClient,
    FakePhysicalConnection,
    FakePhysicalTransaction,
)

__all__ = ["FakeDatabaseClient", "FakePhysicalConnection", "FakePhysicalTransaction"]
