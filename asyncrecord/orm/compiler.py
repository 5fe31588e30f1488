"""
The query compiler.

This turns a :class:`.QueryState` into a ``(sql, params)`` pair for a specific dialect. Nothing in
here talks to a database; a compiler is a pure function of its dialect and the state passed in.
"""
import importlib
import itertools
import typing

from asyncrecord.backends.base import BaseDialect
from asyncrecord.orm import operators as md_operators

Compiled = typing.Tuple[str, typing.List[typing.Any]]


class QueryState(object):
    """
    The description of a pending query. Query builders mutate one of these; the compiler reads it.
    """

    def __init__(self, table: str, alias: str = None):
        #: The table being queried.
        self.table = table

        #: The alias of the table in this query, if any.
        self.alias = alias

        #: The select expressions. Empty means ``*``.
        self.selects = []  # type: typing.List[str]

        #: The WHERE clauses, in order.
        self.wheres = []  # type: typing.List[md_operators.WhereClause]

        #: The ORDER BY entries, in order.
        self.orders = []  # type: typing.List[md_operators.OrderClause]

        #: The JOIN entries, in order.
        self.joins = []  # type: typing.List[md_operators.JoinClause]

        #: The limit on the number of rows returned from this query.
        self.limit = None  # type: int

        #: The offset to start fetching rows from.
        self.offset = None  # type: int

        #: The GROUP BY columns.
        self.group_bys = []  # type: typing.List[str]

        #: The HAVING fragments. These are raw clauses, so they may carry parameters.
        self.havings = []  # type: typing.List[md_operators.RawClause]

        #: If this is a SELECT DISTINCT.
        self.distinct = False

        #: The row lock mode; one of ``None``, ``"share"`` or ``"update"``.
        self.lock_mode = None  # type: str

    def __repr__(self):
        return "<QueryState table={} wheres={}>".format(self.table, len(self.wheres))

    @property
    def reference(self) -> str:
        """
        The name columns of this table are qualified with in this query.
        """
        return self.alias or self.table

    def copy(self) -> 'QueryState':
        """
        Copies this state. Every list is copied, so the copy can be mutated independently.
        """
        new = QueryState(self.table, self.alias)
        new.selects = list(self.selects)
        new.wheres = list(self.wheres)
        new.orders = list(self.orders)
        new.joins = list(self.joins)
        new.limit = self.limit
        new.offset = self.offset
        new.group_bys = list(self.group_bys)
        new.havings = list(self.havings)
        new.distinct = self.distinct
        new.lock_mode = self.lock_mode
        return new


def get_dialect(dialect: typing.Union[str, BaseDialect]) -> BaseDialect:
    """
    Gets a dialect instance.

    :param dialect: Either a :class:`.BaseDialect` (returned as-is), or the name of a backend \
        package, such as ``postgresql``.
    """
    if isinstance(dialect, BaseDialect):
        return dialect

    package = importlib.import_module("asyncrecord.backends.{}".format(dialect))
    return getattr(package, "{}Dialect".format(dialect.title()))()


class QueryCompiler(object):
    """
    Compiles query states into SQL for one dialect.

    .. code-block:: python3

        compiler = QueryCompiler(get_dialect("postgresql"))
        state = QueryState("users")
        state.wheres.append(ColumnClause("name", "=", "Laura"))
        sql, params = compiler.compile_select(state)
        # SELECT * FROM users WHERE name = $1, ["Laura"]

    Placeholder numbering restarts at 1 for every compile call.
    """

    def __init__(self, dialect: typing.Union[str, BaseDialect]):
        #: The :class:`.BaseDialect` being compiled for.
        self.dialect = get_dialect(dialect)

    def __repr__(self):
        return "<QueryCompiler dialect={!r}>".format(self.dialect)

    def _rewrite(self, clauses: 'typing.List[md_operators.WhereClause]'):
        # swap ILIKE out on dialects that don't understand it
        if self.dialect.has_ilike:
            return clauses

        rewritten = []
        for clause in clauses:
            if isinstance(clause, md_operators.NestedClause):
                clause = md_operators.NestedClause(self._rewrite(clause.clauses),
                                                   combinator=clause.combinator)
            elif isinstance(clause, md_operators.ColumnClause) and clause.operator == "ILIKE":
                clause = md_operators.InsensitiveLikeClause(clause.column, clause.value,
                                                            combinator=clause.combinator)
            rewritten.append(clause)

        return rewritten

    def _from(self, state: QueryState) -> str:
        if state.alias:
            return "{} AS {}".format(state.table, state.alias)

        return state.table

    def _filters(self, state: QueryState, counter: itertools.count,
                 full: bool = True) -> Compiled:
        """
        Generates the JOIN, WHERE, GROUP BY and HAVING parts of a query.

        :param full: If False, only the WHERE part is generated. Used for UPDATE and DELETE.
        """
        parts = []
        params = []
        for join in (state.joins if full else ()):
            parts.append(join.generate_sql())

        if state.wheres:
            response = md_operators.generate_clauses(self._rewrite(state.wheres),
                                                     self.dialect.emit_param, counter)
            parts.append("WHERE {}".format(response.sql))
            params.extend(response.parameters)

        if full and state.group_bys:
            parts.append("GROUP BY {}".format(", ".join(state.group_bys)))

        if full and state.havings:
            response = md_operators.generate_clauses(state.havings, self.dialect.emit_param,
                                                     counter, separator="AND")
            parts.append("HAVING {}".format(response.sql))
            params.extend(response.parameters)

        return " ".join(parts), params

    def _paging(self, state: QueryState, counter: itertools.count) -> Compiled:
        parts = []
        params = []
        limit = state.limit
        if limit is None and state.offset is not None:
            limit = self.dialect.unbounded_limit

        if limit is not None:
            parts.append("LIMIT {}".format(self.dialect.emit_param(next(counter))))
            params.append(limit)

        if state.offset is not None:
            parts.append("OFFSET {}".format(self.dialect.emit_param(next(counter))))
            params.append(state.offset)

        return " ".join(parts), params

    @staticmethod
    def _join(*parts: str) -> str:
        return " ".join(part for part in parts if part)

    def compile_select(self, state: QueryState) -> Compiled:
        """
        Compiles a SELECT query.

        :param state: The :class:`.QueryState` to compile.
        :return: A two item tuple, the SQL to use and the list of params to pass.
        """
        counter = itertools.count(1)

        columns = ", ".join(state.selects) if state.selects else "*"
        head = "SELECT DISTINCT {}" if state.distinct else "SELECT {}"
        filters, params = self._filters(state, counter)

        orders = ""
        if state.orders:
            orders = "ORDER BY {}".format(", ".join(o.generate_sql() for o in state.orders))

        paging, paging_params = self._paging(state, counter)
        params.extend(paging_params)

        lock = ""
        if state.lock_mode is not None:
            lock = self.dialect.lock_clause(state.lock_mode)

        sql = self._join(head.format(columns), "FROM", self._from(state), filters, orders, paging,
                         lock)
        return sql, params

    def compile_count(self, state: QueryState, column: str = "*") -> Compiled:
        """
        Compiles a COUNT query. Ordering and paging are dropped.

        :param column: The column or expression to count.
        """
        counter = itertools.count(1)
        if state.distinct and state.selects and column == "*":
            column = "DISTINCT {}".format(", ".join(state.selects))

        filters, params = self._filters(state, counter)
        sql = self._join("SELECT COUNT({}) AS aggregate FROM".format(column), self._from(state),
                         filters)
        return sql, params

    def compile_exists(self, state: QueryState) -> Compiled:
        """
        Compiles an EXISTS query, which returns a single row with a single truthy or falsey column.
        """
        counter = itertools.count(1)
        filters, params = self._filters(state, counter)
        limit = self.dialect.emit_param(next(counter))
        params.append(1)

        inner = self._join("SELECT 1 FROM", self._from(state), filters, "LIMIT {}".format(limit))
        return "SELECT EXISTS({}) AS aggregate".format(inner), params

    def compile_insert(self, table: str, rows: typing.List[typing.Mapping[str, typing.Any]],
                       returning: bool = True) -> Compiled:
        """
        Compiles an INSERT of one or more rows.

        The column list is the union of every row's keys; a row missing a column inserts NULL.

        :param table: The table to insert into.
        :param rows: The rows to insert.
        :param returning: If RETURNING * should be added on dialects that have it.
        """
        counter = itertools.count(1)
        columns = []
        for row in rows:
            for key in row:
                if key not in columns:
                    columns.append(key)

        if not columns:
            sql = "INSERT INTO {} DEFAULT VALUES".format(table)
            params = []
        else:
            params = []
            values = []
            for row in rows:
                placeholders = []
                for column in columns:
                    placeholders.append(self.dialect.emit_param(next(counter)))
                    params.append(row.get(column))
                values.append("({})".format(", ".join(placeholders)))

            sql = "INSERT INTO {} ({}) VALUES {}".format(table, ", ".join(columns),
                                                         ", ".join(values))

        if returning and self.dialect.has_returns:
            sql += " RETURNING *"

        return sql, params

    def compile_update(self, state: QueryState, data: typing.Mapping[str, typing.Any]) -> Compiled:
        """
        Compiles an UPDATE of every row matching the state's WHERE clauses.

        :param data: The mapping of column to new value.
        """
        counter = itertools.count(1)
        sets = []
        params = []
        for column, value in data.items():
            sets.append("{} = {}".format(column, self.dialect.emit_param(next(counter))))
            params.append(value)

        filters, filter_params = self._filters(state, counter, full=False)
        params.extend(filter_params)

        sql = self._join("UPDATE", state.table, "SET", ", ".join(sets), filters)
        if self.dialect.has_returns:
            sql += " RETURNING *"

        return sql, params

    def compile_delete(self, state: QueryState) -> Compiled:
        """
        Compiles a DELETE of every row matching the state's WHERE clauses.
        """
        counter = itertools.count(1)
        filters, params = self._filters(state, counter, full=False)

        sql = self._join("DELETE FROM", state.table, filters)
        if self.dialect.has_returns:
            sql += " RETURNING *"

        return sql, params
