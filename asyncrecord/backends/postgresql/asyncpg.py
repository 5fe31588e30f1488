"""
The :ref:`asyncpg` connector for PostgreSQL databases.
"""
import logging
import typing
import warnings

import asyncpg

from asyncrecord.backends.base import BaseConnector, BaseTransaction, DictRow
from asyncrecord.exc import DatabaseException, IntegrityError, OperationalError

logger = logging.getLogger(__name__)


async def _fetch(conn: 'asyncpg.connection.Connection', sql: str,
                 params: typing.Sequence[typing.Any] = None) -> typing.List[DictRow]:
    logger.debug("Executing query {} with params {}".format(sql, params))
    try:
        records = await conn.fetch(sql, *(params or ()))
    except asyncpg.IntegrityConstraintViolationError as e:
        raise IntegrityError(*e.args) from e
    except asyncpg.ObjectNotInPrerequisiteStateError as e:
        raise OperationalError(*e.args) from e
    except asyncpg.PostgresError as e:
        raise DatabaseException(*e.args) from e

    return [DictRow(record.items()) for record in records]


class AsyncpgTransaction(BaseTransaction):
    """
    A transaction that uses the `asyncpg <https://github.com/MagicStack/asyncpg>`_ library.

    Distributed transactions are run with PostgreSQL's two-phase commit: the transaction is
    prepared under its global name, then committed with ``COMMIT PREPARED``.
    """

    def __init__(self, conn: 'AsyncpgConnector', distributed: str = None):
        super().__init__(conn, distributed)

        #: The acquired connection from the connection pool.
        self.acquired_connection = None  # type: asyncpg.connection.Connection

    async def begin(self):
        """
        Begins the transaction.
        """
        logger.debug("Acquiring new transaction...")
        self.acquired_connection = await self.connector.pool.acquire()
        await self.acquired_connection.execute("BEGIN")
        return self

    async def commit(self):
        """
        Commits the transaction.
        """
        if self.distributed is None:
            await self.acquired_connection.execute("COMMIT")
            return

        logger.debug("Preparing distributed transaction {}".format(self.distributed))
        await self.acquired_connection.execute("PREPARE TRANSACTION '{}'".format(self.distributed))
        await self.acquired_connection.execute("COMMIT PREPARED '{}'".format(self.distributed))

    async def rollback(self, checkpoint: str = None):
        if checkpoint is not None:
            # execute the ROLLBACK TO
            await self.acquired_connection.execute("ROLLBACK TO {}".format(checkpoint))
        else:
            await self.acquired_connection.execute("ROLLBACK")

    async def raw(self, sql: str, params: typing.Sequence[typing.Any] = None):
        return await _fetch(self.acquired_connection, sql, params)

    async def close(self):
        if self.acquired_connection is not None:
            await self.connector.pool.release(self.acquired_connection)
            self.acquired_connection = None


class AsyncpgConnector(BaseConnector):
    """
    A connector that uses the `asyncpg <https://github.com/MagicStack/asyncpg>`_ library.
    """

    def __init__(self, parsed, dialect):
        super().__init__(parsed, dialect)

        #: The :class:`asyncpg.pool.Pool` connection pool.
        self.pool = None  # type: asyncpg.pool.Pool

    def __del__(self):
        if self.pool is not None and not self.pool._closed:
            warnings.warn("Unclosed asyncpg pool {}".format(self.pool))

    async def connect(self) -> 'AsyncpgConnector':
        # create our connection pool
        port = self.port or 5432
        logger.debug("Connecting to {}".format(self.dsn))
        self.pool = await asyncpg.create_pool(host=self.host, port=port, user=self.username,
                                              password=self.password, database=self.db,
                                              **self.params)
        return self

    async def close(self):
        await self.pool.close()

    async def raw(self, sql: str, params: typing.Sequence[typing.Any] = None):
        async with self.pool.acquire() as conn:
            return await _fetch(conn, sql, params)

    def get_transaction(self, distributed: str = None) -> AsyncpgTransaction:
        return AsyncpgTransaction(self, distributed)


# define the asyncpg connector as the connector type to make an instance of
CONNECTOR_TYPE = AsyncpgConnector
