"""Testing fixtures – pytest fixtures for fake doubles.

Import in your ``conftest.py``::

    pytest_plugins = ["mp_txscope.testing.fixtures"]
"""
from mp_txscope.testing.fixtures.database import fake_db_client, sqlite_url, transaction_settings

__all__ = ["fake_db_client", "sqlite_url", "transaction_settings"]
