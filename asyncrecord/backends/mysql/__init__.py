"""
MySQL backends.

.. autosummary::
    :toctree:

    aiomysql
"""
from asyncrecord.backends.base import BaseDialect

DEFAULT_CONNECTOR = "aiomysql"


class MysqlDialect(BaseDialect):
    """
    The dialect for MySQL and MariaDB.
    """
    name = "mysql"

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
        # the documented way to OFFSET without a LIMIT
        return 18446744073709551615

    @property
    def lastval_method(self):
        return "LAST_INSERT_ID()"

    def emit_param(self, index: int) -> str:
        # pymysql does client-side interpolation with the pyformat style
        return "%s"

    def lock_clause(self, mode: str) -> str:
        return "FOR UPDATE" if mode == "update" else "LOCK IN SHARE MODE"
