"""
The :ref:`aiomysql` connector for MySQL/MariaDB databases.
"""
import logging
import typing

import aiomysql
import pymysql

from asyncrecord.backends.base import BaseConnector, BaseTransaction, DictRow
from asyncrecord.exc import DatabaseException, IntegrityError, OperationalError, \
    UnsupportedOperationException

logger = logging.getLogger(__name__)

# hijack aiomysql a bit
aiomysql.DictCursor.dict_type = DictRow


async def _fetch(conn: 'aiomysql.Connection', sql: str,
                 params: typing.Sequence[typing.Any] = None) -> typing.List[DictRow]:
    logger.debug("Executing query {} with params {}".format(sql, params))
    cursor = await conn.cursor(aiomysql.DictCursor)
    try:
        await cursor.execute(sql, tuple(params or ()))
        rows = await cursor.fetchall()
    except pymysql.IntegrityError as e:
        raise IntegrityError(*e.args) from e
    except pymysql.OperationalError as e:
        raise OperationalError(*e.args) from e
    except pymysql.MySQLError as e:
        raise DatabaseException(*e.args) from e
    finally:
        await cursor.close()

    return list(rows or ())


class AiomysqlTransaction(BaseTransaction):
    """
    Represents a transaction for aiomysql.
    """

    def __init__(self, connector: 'AiomysqlConnector', distributed: str = None):
        super().__init__(connector, distributed)

        #: The current acquired connection for this transaction.
        self.connection = None  # type: aiomysql.Connection

    async def begin(self):
        """
        Begins the current transaction.
        """
        self.connection = await self.connector.pool.acquire()
        await self.connection.begin()
        return self

    async def raw(self, sql: str, params: typing.Sequence[typing.Any] = None):
        return await _fetch(self.connection, sql, params)

    async def rollback(self, checkpoint: str = None):
        """
        Rolls back the current transaction.
        """
        if checkpoint is not None:
            await self.raw("ROLLBACK TO SAVEPOINT {}".format(checkpoint))
            return

        await self.connection.rollback()

    async def commit(self):
        """
        Commits the current transaction.
        """
        await self.connection.commit()

    async def close(self):
        """
        Closes the current connection.
        """
        # release it back to the pool so we don't eat all the connections
        if self.connection is not None:
            self.connector.pool.release(self.connection)
            self.connection = None


class AiomysqlConnector(BaseConnector):
    """
    A connector that uses the `aiomysql <https://github.com/aio-libs/aiomysql>`_ library.

    .. warning::
        The pool defaults to a single connection so that ``LAST_INSERT_ID()`` is read on the
        session that performed the insert. Raising ``maxsize`` in the DSN query string breaks
        that guarantee for inserts.
    """

    def __init__(self, dsn, dialect):
        super().__init__(dsn, dialect)

        #: The current connection pool for this connector.
        self.pool = None  # type: aiomysql.Pool

    async def connect(self) -> 'AiomysqlConnector':
        """
        Connects this connector.
        """
        # aiomysql doesnt support a nice dsn
        port = self.port or 3306
        params = {"minsize": 1, "maxsize": 1}
        params.update({k: int(v) if v.isdigit() else v for k, v in self.params.items()})
        logger.info("Connecting to MySQL on mysql://{}:{}/{}".format(self.host, port, self.db))
        self.pool = await aiomysql.create_pool(host=self.host, user=self.username,
                                               password=self.password or "", port=port,
                                               db=self.db, autocommit=True, **params)
        return self

    async def close(self):
        """
        Closes this connector.
        """
        self.pool.close()
        await self.pool.wait_closed()

    async def raw(self, sql: str, params: typing.Sequence[typing.Any] = None):
        async with self.pool.acquire() as conn:
            return await _fetch(conn, sql, params)

    def get_transaction(self, distributed: str = None) -> AiomysqlTransaction:
        """
        Gets a new transaction object.
        """
        if distributed is not None:
            raise UnsupportedOperationException("The aiomysql connector has no XA transactions")

        return AiomysqlTransaction(self)


CONNECTOR_TYPE = AiomysqlConnector
