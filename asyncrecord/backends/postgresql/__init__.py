"""
PostgreSQL backends.

.. autosummary::
    :toctree:

    asyncpg
"""
from asyncrecord.backends.base import BaseDialect

DEFAULT_CONNECTOR = "asyncpg"


class PostgresqlDialect(BaseDialect):
    """
    The dialect for Postgres.
    """
    name = "postgresql"

    @property
    def has_checkpoints(self):
        return True

    @property
    def has_returns(self):
        return True

    @property
    def has_ilike(self):
        return True

    @property
    def has_distributed(self):
        return True

    @property
    def lastval_method(self):
        return "LASTVAL()"

    def emit_param(self, index: int) -> str:
        return "${}".format(index)

    def lock_clause(self, mode: str) -> str:
        return "FOR UPDATE" if mode == "update" else "FOR SHARE"
