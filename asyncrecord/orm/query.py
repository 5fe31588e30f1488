"""
Classes for query objects.
"""
import asyncio
import copy
import logging
import math
import typing

from asyncrecord.backends.base import BaseDialect, DictRow
from asyncrecord.exc import ModelNotFoundError
from asyncrecord.orm import compiler as md_compiler, operators as md_operators
from asyncrecord.sentinels import NO_VALUE

logger = logging.getLogger(__name__)


class Page(object):
    """
    A single page of results, returned from :meth:`.QueryBuilder.paginate`.
    """
    __slots__ = ("data", "total", "page", "limit", "total_pages")

    def __init__(self, data: list, total: int, page: int, limit: int):
        #: The rows (or models) on this page.
        self.data = data

        #: The total number of rows matching the query, across every page.
        self.total = total

        #: The 1-based number of this page.
        self.page = page

        #: The number of rows per page.
        self.limit = limit

        #: The number of pages there are.
        self.total_pages = int(math.ceil(total / limit)) if limit else 0

    def __repr__(self):
        return "<Page {}/{} total={}>".format(self.page, self.total_pages, self.total)

    def __iter__(self):
        return iter(self.data)

    def __len__(self):
        return len(self.data)


class QueryBuilder(object):
    """
    A fluent builder for queries against one table.

    Every builder method mutates the builder and returns it, so calls can be chained. The terminal
    methods (:meth:`.get`, :meth:`.first`, :meth:`.insert` etc) are coroutines that compile the
    query and run it on the bound executor.

    .. code-block:: python3

        users = await QueryBuilder(db, "users") \\
            .where("age", ">", 18) \\
            .where_in("role", ["admin", "staff"]) \\
            .order_by_desc("created_at") \\
            .limit(10) \\
            .get()

    Use :meth:`.clone` to branch a builder without both branches seeing each other's clauses.
    """

    def __init__(self, bind, table: str, primary_key: str = "id"):
        """
        :param bind: The executor to run queries on. This is anything with a ``dialect`` and a \
            coroutine ``raw(sql, params)``, such as a :class:`.DatabaseInterface` or a transaction.
        :param table: The name of the table to query.
        :param primary_key: The name of the primary key column.
        """
        #: The executor this query runs on.
        self.bind = bind

        #: The :class:`.QueryState` being built.
        self.state = md_compiler.QueryState(table)

        #: The name of the primary key column.
        self.primary_key = primary_key

        #: A callable every fetched row is passed through, if set.
        self.row_transformer = None  # type: typing.Callable[[DictRow], typing.Any]

    def __repr__(self):
        return "<{} table={}>".format(type(self).__name__, self.state.table)

    @property
    def dialect(self) -> BaseDialect:
        """
        The dialect of the bound executor.
        """
        return self.bind.dialect

    @property
    def compiler(self) -> 'md_compiler.QueryCompiler':
        return md_compiler.QueryCompiler(self.dialect)

    def clone(self) -> 'QueryBuilder':
        """
        Copies this builder. The copy has its own state, so it can be extended independently.
        """
        new = copy.copy(self)
        new.state = self.state.copy()
        return new

    def qualify(self, column: str) -> str:
        """
        Qualifies a column name with this query's table (or alias), unless it is already qualified.
        """
        if "." in column:
            return column

        return "{}.{}".format(self.state.reference, column)

    # selection
    def select(self, *columns: str) -> 'QueryBuilder':
        """
        Sets the columns to select, replacing any previous selection.
        """
        self.state.selects = list(columns)
        return self

    def add_select(self, *columns: str) -> 'QueryBuilder':
        """
        Adds columns to the current selection.
        """
        if not self.state.selects:
            self.state.selects.append("{}.*".format(self.state.reference))

        self.state.selects.extend(columns)
        return self

    def distinct(self, distinct: bool = True) -> 'QueryBuilder':
        self.state.distinct = distinct
        return self

    # conditions
    def where(self, column, operator: typing.Any = NO_VALUE, value: typing.Any = NO_VALUE,
              combinator: str = "AND") -> 'QueryBuilder':
        """
        Adds a WHERE condition.

        .. code-block:: python3

            query.where("name", "Laura")  # name = ?
            query.where("age", ">=", 18)  # age >= ?
            query.where("deleted_at", None)  # deleted_at IS NULL
            query.where({"name": "Laura", "age": 18})  # name = ? AND age = ?
            # a callable opens a nested group
            query.where(lambda q: q.where("a", 1).or_where("b", 2))  # (a = ? OR b = ?)

        :param column: The column to compare, a mapping of column to value, or a callable that \
            fills a nested group.
        :param operator: The comparison operator. If the value is omitted, this is the value and \
            the operator is ``=``.
        :param value: The value to compare against.
        :param combinator: ``AND`` or ``OR``.
        """
        if callable(column):
            nested = self.clone()
            nested.state.wheres = []
            column(nested)
            if nested.state.wheres:
                self.state.wheres.append(md_operators.NestedClause(nested.state.wheres,
                                                                   combinator=combinator))
            return self

        if isinstance(column, dict):
            for key, item in column.items():
                self.where(key, item, combinator=combinator)
            return self

        if operator is NO_VALUE:
            raise TypeError("where() needs a value to compare with")

        if value is NO_VALUE:
            operator, value = "=", operator

        if value is None and operator in ("=", "!=", "<>"):
            clause = md_operators.NullClause(column, negated=operator != "=",
                                             combinator=combinator)
        else:
            clause = md_operators.ColumnClause(column, operator, value, combinator=combinator)

        self.state.wheres.append(clause)
        return self

    def or_where(self, column, operator: typing.Any = NO_VALUE,
                 value: typing.Any = NO_VALUE) -> 'QueryBuilder':
        return self.where(column, operator, value, combinator="OR")

    def where_raw(self, sql: str, params: typing.Sequence[typing.Any] = None,
                  combinator: str = "AND") -> 'QueryBuilder':
        """
        Adds a raw SQL condition. The SQL must use this dialect's placeholders for its params.
        """
        self.state.wheres.append(md_operators.RawClause(sql, params, combinator=combinator))
        return self

    def or_where_raw(self, sql: str, params: typing.Sequence[typing.Any] = None):
        return self.where_raw(sql, params, combinator="OR")

    def where_in(self, column: str, values: typing.Iterable[typing.Any], negated: bool = False,
                 combinator: str = "AND") -> 'QueryBuilder':
        """
        Adds a ``column IN (...)`` condition. An empty list matches nothing.
        """
        self.state.wheres.append(md_operators.InClause(column, values, negated=negated,
                                                       combinator=combinator))
        return self

    def or_where_in(self, column: str, values: typing.Iterable[typing.Any]):
        return self.where_in(column, values, combinator="OR")

    def where_not_in(self, column: str, values: typing.Iterable[typing.Any]):
        return self.where_in(column, values, negated=True)

    def or_where_not_in(self, column: str, values: typing.Iterable[typing.Any]):
        return self.where_in(column, values, negated=True, combinator="OR")

    def where_null(self, column: str, negated: bool = False,
                   combinator: str = "AND") -> 'QueryBuilder':
        self.state.wheres.append(md_operators.NullClause(column, negated=negated,
                                                         combinator=combinator))
        return self

    def or_where_null(self, column: str):
        return self.where_null(column, combinator="OR")

    def where_not_null(self, column: str):
        return self.where_null(column, negated=True)

    def or_where_not_null(self, column: str):
        return self.where_null(column, negated=True, combinator="OR")

    def where_between(self, column: str, values: typing.Sequence[typing.Any],
                      negated: bool = False, combinator: str = "AND") -> 'QueryBuilder':
        """
        Adds a ``column BETWEEN low AND high`` condition.

        :param values: A two item sequence of the low and high bounds.
        """
        low, high = values
        self.state.wheres.append(md_operators.BetweenClause(column, low, high, negated=negated,
                                                            combinator=combinator))
        return self

    def where_not_between(self, column: str, values: typing.Sequence[typing.Any]):
        return self.where_between(column, values, negated=True)

    # joins
    def join(self, table: str, first: str, operator: str = None, second: str = None,
             kind: str = "INNER") -> 'QueryBuilder':
        """
        Adds a JOIN.

        .. code-block:: python3

            query.join("posts", "posts.user_id = users.id")
            query.join("posts", "posts.user_id", "users.id")
            query.join("posts", "posts.user_id", "=", "users.id")

        """
        if operator is None:
            on = first
        elif second is None:
            on = "{} = {}".format(first, operator)
        else:
            on = "{} {} {}".format(first, operator, second)

        self.state.joins.append(md_operators.JoinClause(table, on, kind=kind))
        return self

    def left_join(self, table: str, first: str, operator: str = None, second: str = None):
        return self.join(table, first, operator, second, kind="LEFT")

    def right_join(self, table: str, first: str, operator: str = None, second: str = None):
        return self.join(table, first, operator, second, kind="RIGHT")

    def cross_join(self, table: str) -> 'QueryBuilder':
        self.state.joins.append(md_operators.JoinClause(table, kind="CROSS"))
        return self

    # grouping, ordering and paging
    def group_by(self, *columns: str) -> 'QueryBuilder':
        self.state.group_bys.extend(columns)
        return self

    def having(self, sql: str, params: typing.Sequence[typing.Any] = None) -> 'QueryBuilder':
        """
        Adds a raw HAVING fragment. Several fragments are joined with AND.
        """
        self.state.havings.append(md_operators.RawClause(sql, params))
        return self

    def order_by(self, column: str, direction: str = "ASC") -> 'QueryBuilder':
        """
        Adds an ORDER BY entry.

        :param direction: ``ASC`` or ``DESC``.
        """
        self.state.orders.append(md_operators.OrderClause(column, direction))
        return self

    def order_by_desc(self, column: str):
        return self.order_by(column, "DESC")

    def limit(self, row_limit: int) -> 'QueryBuilder':
        """
        Sets a limit of the number of rows that can be returned from this query.
        """
        self.state.limit = row_limit
        return self

    def offset(self, offset: int) -> 'QueryBuilder':
        """
        Sets the offset of rows to start returning results from.
        """
        self.state.offset = offset
        return self

    def for_page(self, page: int, per_page: int = 15) -> 'QueryBuilder':
        """
        Sets the limit and offset for a 1-based page number.
        """
        return self.offset(max(page - 1, 0) * per_page).limit(per_page)

    def lock_for_share(self):
        self.state.lock_mode = "share"
        return self

    def lock_for_update(self):
        self.state.lock_mode = "update"
        return self

    # running
    def get_state(self) -> 'md_compiler.QueryState':
        """
        Gets the state to compile for a terminal method.
        """
        return self.state

    def to_sql(self) -> md_compiler.Compiled:
        """
        Compiles this query as a SELECT, without running it.
        """
        return self.compiler.compile_select(self.get_state())

    async def _execute(self, sql: str, params: typing.List[typing.Any]) -> typing.List[DictRow]:
        return await self.bind.raw(sql, params)

    async def _select_rows(self) -> typing.List[DictRow]:
        return await self._execute(*self.compiler.compile_select(self.get_state()))

    async def get(self) -> list:
        """
        Runs this query.

        :return: A list of rows, passed through :attr:`.row_transformer` if it is set.
        """
        rows = await self._select_rows()
        if self.row_transformer is None:
            return rows

        return [self.row_transformer(row) for row in rows]

    async def first(self):
        """
        Gets the first row this query matches, or None if nothing matched.
        """
        results = await self.clone().limit(1).get()
        if results:
            return results[0]

        return None

    async def first_or_fail(self):
        """
        Gets the first row this query matches.

        :raises ModelNotFoundError: If nothing matched.
        """
        result = await self.first()
        if result is None:
            raise ModelNotFoundError("No rows in {} matched".format(self.state.table))

        return result

    async def find(self, key: typing.Any):
        """
        Gets the row with the specified primary key, or None.
        """
        return await self.clone().where(self.qualify(self.primary_key), key).first()

    async def find_or_fail(self, key: typing.Any):
        result = await self.find(key)
        if result is None:
            raise ModelNotFoundError("No row in {} with {} {!r}".format(
                self.state.table, self.primary_key, key))

        return result

    async def count(self, column: str = "*") -> int:
        """
        Counts the rows this query matches.
        """
        rows = await self._execute(*self.compiler.compile_count(self.get_state(), column))
        return int(rows[0][0])

    async def exists(self) -> bool:
        """
        Checks if this query matches any row.
        """
        rows = await self._execute(*self.compiler.compile_exists(self.get_state()))
        return bool(rows[0][0])

    async def pluck(self, column: str) -> list:
        """
        Gets a list of the values of a single column.
        """
        rows = await self.clone().select(column)._select_rows()
        return [row[0] for row in rows]

    async def value(self, column: str) -> typing.Any:
        """
        Gets the value of a single column on the first matching row, or None.
        """
        rows = await self.clone().select(column).limit(1)._select_rows()
        if not rows:
            return None

        return rows[0][0]

    async def paginate(self, page: int = 1, per_page: int = 15) -> Page:
        """
        Gets one page of results, as well as the total number of matching rows.

        .. warning::
            The data and count queries run concurrently, so a write in between can make the total
            disagree with the data.
        """
        data, total = await asyncio.gather(
            self.clone().for_page(page, per_page).get(),
            self.clone().count(),
        )
        return Page(data, total, page, per_page)

    # writing
    async def insert(self, data: typing.Mapping[str, typing.Any]) -> DictRow:
        """
        Inserts a row, and returns it as stored.

        On dialects with RETURNING, this is one statement. Otherwise, the generated key is fetched
        with the dialect's last value function (unless the primary key was passed in ``data``),
        and the row is re-selected by it.

        .. warning::
            Without RETURNING, this is only correct if nothing else runs on the same connection
            between the INSERT and the key lookup.

        :param data: The mapping of column to value to insert.
        """
        sql, params = self.compiler.compile_insert(self.state.table, [data])
        rows = await self._execute(sql, params)
        if self.dialect.has_returns:
            return rows[0]

        key = data.get(self.primary_key)
        if key is None:
            result = await self._execute("SELECT {} AS id".format(self.dialect.lastval_method), [])
            key = result[0][0]
            logger.debug("Generated key for {} is {}".format(self.state.table, key))

        lookup = QueryBuilder(self.bind, self.state.table, self.primary_key)
        return await lookup.where(self.primary_key, key).first()

    async def insert_many(self, rows: typing.Iterable[typing.Mapping[str, typing.Any]]) \
            -> typing.List[DictRow]:
        """
        Inserts several rows one by one, returning them as stored.
        """
        inserted = []
        for row in rows:
            inserted.append(await self.insert(row))

        return inserted

    async def insert_batch(self, rows: typing.Iterable[typing.Mapping[str, typing.Any]]):
        """
        Inserts several rows in a single statement. Nothing is returned or re-selected.
        """
        rows = list(rows)
        if not rows:
            return

        sql, params = self.compiler.compile_insert(self.state.table, rows, returning=False)
        await self._execute(sql, params)

    async def update(self, data: typing.Mapping[str, typing.Any]) -> typing.Optional[int]:
        """
        Updates every row this query matches.

        :return: The number of rows updated on dialects with RETURNING, otherwise None.
        """
        rows = await self._execute(*self.compiler.compile_update(self.get_state(), data))
        if self.dialect.has_returns:
            return len(rows)

        return None

    async def delete(self) -> typing.Optional[int]:
        """
        Deletes every row this query matches.

        :return: The number of rows deleted on dialects with RETURNING, otherwise None.
        """
        rows = await self._execute(*self.compiler.compile_delete(self.get_state()))
        if self.dialect.has_returns:
            return len(rows)

        return None
