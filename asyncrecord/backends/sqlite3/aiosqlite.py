"""
A connector for SQLite3 databases using the :ref:`aiosqlite` library.
"""
import logging
import sqlite3
import typing

import aiosqlite

from asyncrecord.backends.base import BaseConnector, BaseTransaction, DictRow
from asyncrecord.exc import DatabaseException, IntegrityError, OperationalError, \
    UnsupportedOperationException

logger = logging.getLogger(__name__)


class AiosqliteTransaction(BaseTransaction):
    """
    Represents a sqlite3 transaction.

    SQLite connections are not shareable between sessions, so this runs on the connector's single
    connection; anything else executed on the connector while this is open is part of it.
    """

    async def begin(self):
        """
        Begins the current transaction.
        """
        logger.debug("Beginning transaction")
        await self.raw("BEGIN")
        return self

    async def commit(self):
        """
        Commits the current transaction.
        """
        await self.raw("COMMIT")

    async def rollback(self, checkpoint: str = None):
        """
        Rolls back the current transaction.
        """
        if checkpoint is not None:
            await self.raw("ROLLBACK TO SAVEPOINT {}".format(checkpoint))
            return

        await self.raw("ROLLBACK")

    async def raw(self, sql: str, params: typing.Sequence[typing.Any] = None):
        return await self.connector.raw(sql, params)

    async def close(self):
        pass


class AiosqliteConnector(BaseConnector):
    """
    A connector powered by `aiosqlite <https://github.com/omnilib/aiosqlite>`_.

    The database path is the DSN path, so ``sqlite3:///:memory:`` opens an in-memory database and
    ``sqlite3:///data.db`` opens ``data.db`` relative to the working directory.
    """

    def __init__(self, parsed, dialect):
        super().__init__(parsed, dialect)

        #: The :class:`aiosqlite.Connection` in use.
        self.connection = None  # type: aiosqlite.Connection

    async def connect(self) -> 'AiosqliteConnector':
        """
        Opens the database file.
        """
        logger.debug("Opening SQLite3 database {}".format(self.db))
        # isolation_level=None puts the driver in autocommit mode
        # explicit transactions are opened with BEGIN
        self.connection = await aiosqlite.connect(self.db, isolation_level=None, **self.params)
        self.connection.row_factory = sqlite3.Row
        return self

    async def close(self):
        """
        Closes this connector.
        """
        if self.connection is not None:
            await self.connection.close()
            self.connection = None

    async def raw(self, sql: str, params: typing.Sequence[typing.Any] = None):
        logger.debug("Executing query {} with params {}".format(sql, params))
        try:
            async with self.connection.execute(sql, tuple(params or ())) as cursor:
                rows = await cursor.fetchall()
        except sqlite3.IntegrityError as e:
            raise IntegrityError(*e.args) from e
        except sqlite3.OperationalError as e:
            raise OperationalError(*e.args) from e
        except sqlite3.DatabaseError as e:
            raise DatabaseException(*e.args) from e

        return [DictRow(zip(row.keys(), row)) for row in rows]

    def get_transaction(self, distributed: str = None) -> AiosqliteTransaction:
        if distributed is not None:
            raise UnsupportedOperationException("SQLite3 has no distributed transactions")

        return AiosqliteTransaction(self)


CONNECTOR_TYPE = AiosqliteConnector
