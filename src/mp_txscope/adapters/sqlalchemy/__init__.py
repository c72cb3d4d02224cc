"""SQLAlchemy adapter – DatabaseClient implementation on SQLAlchemy Core."""
from mp_txscope.adapters.sqlalchemy.client import SqlAlchemyClient

__all__ = ["SqlAlchemyClient"]
