"""
The base implementation of a backend. This provides some ABC classes.
"""
import datetime
import logging
import typing
from abc import abstractmethod
from collections import OrderedDict
from urllib.parse import ParseResult, parse_qs

from asyncrecord.exc import UnsupportedOperationException
from asyncrecord.meta import AsyncABC

logger = logging.getLogger(__name__)


class BaseDialect:
    """
    The base class for a SQL dialect describer.

    This class signifies what features the SQL dialect can use, and as such can be used to customize
    query creation for faster results on certain servers, or new features on certain servers, etc.

    By default, all ``has_`` properties will default to False, so that none of them need be
    implemented. Regular methods will raise NotImplementedError, however.
    """

    #: The short name of this dialect, as used in a DSN scheme.
    name = None

    def __repr__(self):
        return "<{}>".format(type(self).__name__)

    @property
    def has_checkpoints(self) -> bool:
        """
        Returns True if this dialect can use transaction checkpoints.
        """
        return False

    @property
    def has_returns(self) -> bool:
        """
        Returns True if this dialect has RETURNING.
        """
        return False

    @property
    def has_ilike(self) -> bool:
        """
        Returns True if this dialect has ILIKE.
        """
        return False

    @property
    def has_distributed(self) -> bool:
        """
        Returns True if this dialect can run distributed (two-phase) transactions.
        """
        return False

    @property
    def lastval_method(self) -> str:
        """
        The last value method for a dialect. For example, in SQLite this is last_insert_rowid().
        """
        raise NotImplementedError

    @property
    def unbounded_limit(self):
        """
        The LIMIT value meaning "no limit", for dialects that cannot have an OFFSET without a LIMIT.
        """
        return None

    def emit_param(self, index: int) -> str:
        """
        Emits a parameter placeholder in the format that the DB driver specifies.

        :param index: The 1-based position of this parameter in the statement.
        :return: A str representing the emitted param.
        """
        raise NotImplementedError

    def lock_clause(self, mode: str) -> str:
        """
        Gets the row locking clause for a SELECT.

        :param mode: Either ``share`` or ``update``.
        :return: The clause to append, or an empty string if the dialect has no row locks.
        """
        return ""

    def timestamp_value(self, value: datetime.datetime) -> typing.Any:
        """
        Converts a timestamp into the form this dialect stores in timestamp columns.
        """
        return value


class BaseTransaction(AsyncABC):
    """
    The base class for a transaction. This represents a database transaction (i.e SQL statements
    guarded with a BEGIN and a COMMIT/ROLLBACK).

    Transactions are executors themselves; pass one as the ``bind`` of a query or model operation
    to run it inside the transaction.

    .. code-block:: python3

        async with db.get_transaction() as tr:
            await User.create({"name": "Laura"}, bind=tr)

    Children classes must implement:

        - :meth:`.BaseTransaction.begin`
        - :meth:`.BaseTransaction.rollback`
        - :meth:`.BaseTransaction.commit`
        - :meth:`.BaseTransaction.raw`
        - :meth:`.BaseTransaction.close`
    """

    def __init__(self, connector: 'BaseConnector', distributed: str = None):
        """
        :param connector: The :class:`.BaseConnector` this transaction runs on.
        :param distributed: The global name of a distributed transaction, if this is one.
        """
        self.connector = connector
        self.distributed = distributed

    @property
    def dialect(self) -> BaseDialect:
        return self.connector.dialect

    async def __aenter__(self) -> 'BaseTransaction':
        await self.begin()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is not None:
                await self.rollback()
                return False

            await self.commit()
            return False
        finally:
            await self.close()

    @abstractmethod
    async def begin(self):
        """
        Begins the transaction, emitting a BEGIN instruction.
        """

    @abstractmethod
    async def rollback(self, checkpoint: str = None):
        """
        Rolls back the transaction.

        :param checkpoint: If provided, the checkpoint to rollback to. Otherwise, the entire \
            transaction will be rolled back.
        """

    @abstractmethod
    async def commit(self):
        """
        Commits the current transaction, emitting a COMMIT instruction.
        """

    @abstractmethod
    async def raw(self, sql: str, params: typing.Sequence[typing.Any] = None) \
            -> 'typing.List[DictRow]':
        """
        Executes SQL in the current transaction.

        :param sql: The SQL statement to execute.
        :param params: Any parameters to pass to the query.
        :return: The rows the statement produced, if any.
        """

    @abstractmethod
    async def close(self):
        """
        Called at the end of a transaction to cleanup.
        """

    async def create_savepoint(self, name: str):
        """
        Creates a savepoint in the current transaction.

        .. warning::
            This is not supported in all DB engines. If so, this will raise
            :class:`.UnsupportedOperationException`.

        :param name: The name of the savepoint to create.
        """
        self._check_checkpoints()
        await self.raw("SAVEPOINT {}".format(name))

    async def release_savepoint(self, name: str):
        """
        Releases a savepoint in the current transaction.

        :param name: The name of the savepoint to release.
        """
        self._check_checkpoints()
        await self.raw("RELEASE SAVEPOINT {}".format(name))

    def _check_checkpoints(self):
        if not self.dialect.has_checkpoints:
            raise UnsupportedOperationException("The {} dialect has no checkpoints".format(
                type(self.dialect).__name__))


class BaseConnector(AsyncABC):
    """
    The base class for a connector. This should be used for all connector classes as the parent
    class.

    Children classes must implement:

        - :meth:`.BaseConnector.connect`
        - :meth:`.BaseConnector.close`
        - :meth:`.BaseConnector.raw`
        - :meth:`.BaseConnector.get_transaction`
    """

    def __init__(self, dsn: ParseResult, dialect: BaseDialect):
        """
        :param dsn: The :class:`urllib.parse.ParseResult` created from parsing a DSN.
        :param dialect: The :class:`.BaseDialect` of the server this connects to.
        """
        self.dialect = dialect

        self._parse_result = dsn
        self.dsn = dsn.geturl()
        self.host = dsn.hostname
        self.port = dsn.port
        self.username = dsn.username
        self.password = dsn.password
        self.db = dsn.path[1:]
        self.params = {k: v[0] for k, v in parse_qs(dsn.query).items()}

    @abstractmethod
    async def connect(self) -> 'BaseConnector':
        """
        Connects the current connector to the database server. This is called automatically by the
        :class:`.DatabaseInterface`.

        :return: The original BaseConnector instance.
        """

    @abstractmethod
    async def close(self):
        """
        Closes the current Connector.
        """

    @abstractmethod
    async def raw(self, sql: str, params: typing.Sequence[typing.Any] = None) \
            -> 'typing.List[DictRow]':
        """
        Executes a single statement outside of any explicit transaction.

        :param sql: The SQL statement to execute.
        :param params: The positional parameters for the placeholders in ``sql``.
        :return: A list of :class:`.DictRow`; empty for statements that produce no rows.
        """

    @abstractmethod
    def get_transaction(self, distributed: str = None) -> BaseTransaction:
        """
        Gets a new transaction object for this connection.

        :param distributed: The global name for a distributed transaction, if one is wanted.
        :return: A new :class:`~.BaseTransaction` object attached to this connection.
        """


# python 3.5 dicts are unordered
# so we inherit from OrderedDict instead of dict
class DictRow(OrderedDict):
    """
    Represents a row returned from a query, in dict form.

    This class allows for accessing both via key and index.
    """
    def __getitem__(self, item):
        if isinstance(item, int):
            try:
                return list(self.values())[item]
            except IndexError:
                raise KeyError(item)

        return super().__getitem__(item)

    def __setitem__(self, key, value, **kwargs):
        if isinstance(key, int):
            # find the actual string key at position ``key``
            # then set the item using said dict key
            d_key = list(self.keys())[key]
            return super().__setitem__(d_key, value, **kwargs)

        return super().__setitem__(key, value, **kwargs)
