"""
Classes for the clauses that make up a query.

Every WHERE clause knows how to generate its own SQL; the compiler only hands it a parameter
emitter and a counter, and collects the :class:`.OperatorResponse`.
"""
import abc
import itertools
import typing

#: The comparison operators a :class:`.ColumnClause` accepts.
COMPARISON_OPERATORS = ("=", "!=", "<>", "<", ">", "<=", ">=", "LIKE", "NOT LIKE", "ILIKE")

Emitter = typing.Callable[[int], str]


class OperatorResponse:
    """
    A storage class for the generated SQL from an operator.
    """
    __slots__ = ("sql", "parameters")

    def __init__(self, sql: str, parameters: list = None):
        """
        :param sql: The generated SQL for this operator.
        :param parameters: A list of parameters to use for this response, in placeholder order.
        """
        self.sql = sql
        self.parameters = parameters
        if self.parameters is None:
            self.parameters = []


class WhereClause(abc.ABC):
    """
    The base class for a single entry in a WHERE (or HAVING) clause list.
    """

    def __init__(self, combinator: str = "AND"):
        combinator = combinator.upper()
        if combinator not in ("AND", "OR"):
            raise TypeError("Unknown combinator {}".format(combinator))

        #: The keyword joining this clause to the one before it.
        self.combinator = combinator

    def get_param(self, emitter: Emitter, counter: itertools.count) -> str:
        """
        Gets the next parameter placeholder.

        :param emitter: A function that emits a placeholder for a 1-based parameter position.
        :param counter: The counter for parameters.
        """
        return emitter(next(counter))

    @abc.abstractmethod
    def generate_sql(self, emitter: Emitter, counter: itertools.count) -> OperatorResponse:
        """
        Generates the SQL for this clause, without the leading combinator.

        Parameters must be generated using the emitter callable.

        :param emitter: A callable that can be used to generate param placeholders in a query.
        :param counter: The current "parameter number".
        :return: A :class:`.OperatorResponse` representing the result.
        """


class ColumnClause(WhereClause):
    """
    A ``column <operator> value`` comparison.
    """

    def __init__(self, column: str, operator: str, value: typing.Any, combinator: str = "AND"):
        super().__init__(combinator)
        operator = operator.upper()
        if operator not in COMPARISON_OPERATORS:
            raise TypeError("Unknown operator {}".format(operator))

        self.column = column
        self.operator = operator
        self.value = value

    def __repr__(self):
        return "<ColumnClause {} {} {!r}>".format(self.column, self.operator, self.value)

    def generate_sql(self, emitter: Emitter, counter: itertools.count):
        param = self.get_param(emitter, counter)
        sql = "{} {} {}".format(self.column, self.operator, param)
        return OperatorResponse(sql, [self.value])


class InsensitiveLikeClause(ColumnClause):
    """
    A "hacky" ILIKE for databases that do not support it.
    """

    def __init__(self, column: str, value: typing.Any, combinator: str = "AND"):
        super().__init__(column, "LIKE", value, combinator)

    def generate_sql(self, emitter: Emitter, counter: itertools.count):
        # lower(column) like lower(pattern)
        param = self.get_param(emitter, counter)
        sql = "LOWER({}) LIKE LOWER({})".format(self.column, param)
        return OperatorResponse(sql, [self.value])


class InClause(WhereClause):
    """
    A ``column IN (...)`` clause. Each value gets its own placeholder.
    """

    def __init__(self, column: str, values: typing.Iterable[typing.Any], negated: bool = False,
                 combinator: str = "AND"):
        super().__init__(combinator)
        self.column = column
        self.values = list(values)
        self.negated = negated

    @property
    def operator(self) -> str:
        return "NOT IN" if self.negated else "IN"

    def generate_sql(self, emitter: Emitter, counter: itertools.count):
        if not self.values:
            # IN () is not valid SQL anywhere
            return OperatorResponse("1 = 1" if self.negated else "1 = 0")

        placeholders = [self.get_param(emitter, counter) for _ in self.values]
        sql = "{} {} ({})".format(self.column, self.operator, ", ".join(placeholders))
        return OperatorResponse(sql, list(self.values))


class NullClause(WhereClause):
    """
    A ``column IS [NOT] NULL`` clause.
    """

    def __init__(self, column: str, negated: bool = False, combinator: str = "AND"):
        super().__init__(combinator)
        self.column = column
        self.negated = negated

    @property
    def operator(self) -> str:
        return "IS NOT NULL" if self.negated else "IS NULL"

    def generate_sql(self, emitter: Emitter, counter: itertools.count):
        return OperatorResponse("{} {}".format(self.column, self.operator))


class BetweenClause(WhereClause):
    """
    A ``column [NOT] BETWEEN low AND high`` clause.
    """

    def __init__(self, column: str, low: typing.Any, high: typing.Any, negated: bool = False,
                 combinator: str = "AND"):
        super().__init__(combinator)
        self.column = column
        self.low = low
        self.high = high
        self.negated = negated

    def generate_sql(self, emitter: Emitter, counter: itertools.count):
        low = self.get_param(emitter, counter)
        high = self.get_param(emitter, counter)
        keyword = "NOT BETWEEN" if self.negated else "BETWEEN"
        sql = "{} {} {} AND {}".format(self.column, keyword, low, high)
        return OperatorResponse(sql, [self.low, self.high])


class RawClause(WhereClause):
    """
    A literal SQL fragment, with its own parameters.

    The fragment is spliced in verbatim; it must already use the dialect's placeholder format.
    The counter is advanced by the number of parameters so that generated placeholders after it
    keep their positions on numbered dialects.
    """

    def __init__(self, sql: str, params: typing.Iterable[typing.Any] = None,
                 combinator: str = "AND"):
        super().__init__(combinator)
        self.sql = sql
        self.params = list(params or ())

    def __repr__(self):
        return "<RawClause {!r} {!r}>".format(self.sql, self.params)

    def generate_sql(self, emitter: Emitter, counter: itertools.count):
        for _ in self.params:
            next(counter)

        return OperatorResponse("({})".format(self.sql), list(self.params))


class NestedClause(WhereClause):
    """
    A parenthesised group of other clauses.
    """

    def __init__(self, clauses: 'typing.List[WhereClause]', combinator: str = "AND"):
        super().__init__(combinator)
        self.clauses = list(clauses)

    def generate_sql(self, emitter: Emitter, counter: itertools.count):
        response = generate_clauses(self.clauses, emitter, counter)
        return OperatorResponse("({})".format(response.sql), response.parameters)


def generate_clauses(clauses: 'typing.Iterable[WhereClause]', emitter: Emitter,
                     counter: itertools.count, separator: str = None) -> OperatorResponse:
    """
    Generates the SQL for a list of clauses.

    The first clause has no leading combinator; every clause after it is prefixed with its own.

    :param separator: If passed, joins every clause with this keyword instead of its combinator.
    """
    parts = []
    params = []
    for index, clause in enumerate(clauses):
        response = clause.generate_sql(emitter, counter)
        params.extend(response.parameters)
        if index == 0:
            parts.append(response.sql)
        else:
            parts.append("{} {}".format(separator or clause.combinator, response.sql))

    return OperatorResponse(" ".join(parts), params)


class OrderClause:
    """
    An ORDER BY entry.
    """
    __slots__ = ("column", "direction")

    def __init__(self, column: str, direction: str = "ASC"):
        direction = direction.upper()
        if direction not in ("ASC", "DESC"):
            raise TypeError("Unknown sort order {}".format(direction))

        self.column = column
        self.direction = direction

    def __repr__(self):
        return "<OrderClause {} {}>".format(self.column, self.direction)

    def generate_sql(self) -> str:
        return "{} {}".format(self.column, self.direction)


class JoinClause:
    """
    A JOIN entry.
    """
    __slots__ = ("kind", "table", "on")

    def __init__(self, table: str, on: str = None, kind: str = "INNER"):
        kind = kind.upper()
        if kind not in ("INNER", "LEFT", "RIGHT", "CROSS"):
            raise TypeError("Unknown join type {}".format(kind))

        if kind != "CROSS" and not on:
            raise TypeError("{} joins need a join predicate".format(kind))

        self.kind = kind
        self.table = table
        self.on = on

    def __repr__(self):
        return "<JoinClause {} {} ON {}>".format(self.kind, self.table, self.on)

    def generate_sql(self) -> str:
        if self.kind == "CROSS":
            return "CROSS JOIN {}".format(self.table)

        return "{} JOIN {} ON {}".format(self.kind, self.table, self.on)
