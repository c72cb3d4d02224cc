"""Testing support – fakes and pytest fixtures.

Import in your ``conftest.py``::

    pytest_plugins = ["mp_txscope.testing.fixtures"]
"""

from mp_txscope.testing.fakes import (
    FakeDatabaseClient,
    FakePhysicalConnection,
    FakePhysicalTransaction,
)

__all__ = ["FakeDatabaseClient", "FakePhysicalConnection", "FakePhysicalTransaction"]
