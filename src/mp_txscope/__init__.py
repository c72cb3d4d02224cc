"""
mp_txscope – typed SQL command execution with transaction propagation.

Import path convention::

    from mp_txscope.transactions import Connection, SqlCommand, TransactionScope
    from mp_txscope.kernel.errors import ConnectionMismatchError
    from mp_txscope.config import TransactionSettings, configure
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
