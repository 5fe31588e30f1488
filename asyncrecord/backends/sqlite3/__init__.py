"""
SQLite3 backends.

.. autosummary::
    :toctree:

    aiosqlite
"""
import datetime

from asyncrecord.backends.base import BaseDialect

DEFAULT_CONNECTOR = "aiosqlite"


class Sqlite3Dialect(BaseDialect):
    """
    The dialect for SQLite3.
    """
    name = "sqlite3"

    @property
    def has_checkpoints(self):
        return True

    @property
    def has_returns(self):
        return False

    @property
    def has_ilike(self):
        return False

    @property
    def unbounded_limit(self):
        return -1

    @property
    def lastval_method(self):
        return "last_insert_rowid()"

    def emit_param(self, index: int) -> str:
        return "?"

    def timestamp_value(self, value: datetime.datetime):
        # sqlite has no timestamp type, and the stdlib adapter is deprecated
        return value.isoformat()
