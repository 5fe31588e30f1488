"""
Global query scopes.

A global scope is a named function that mutates every query built for a model:

.. code-block:: python3

    User.add_global_scope("active", lambda query: query.where("users.active", 1))

    await User.all()  # only active users
    await User.query().without_global_scope("active").get()  # everybody

"""
import collections
import typing

#: The name the soft delete scope is registered under.
SOFT_DELETE_SCOPE = "soft_deletes"


class SoftDeleteScope(object):
    """
    Excludes rows that have a delete marker set.
    """

    def __init__(self, column: str):
        """
        :param column: The fully qualified delete marker column, e.g. ``posts.deleted_at``.
        """
        self.column = column

    def __repr__(self):
        return "<SoftDeleteScope {}>".format(self.column)

    def __call__(self, query):
        query.where_null(self.column)


class ScopeRegistry(object):
    """
    The global scopes of a single model class, applied in registration order.
    """

    def __init__(self, parent: 'ScopeRegistry' = None):
        """
        :param parent: The registry of the parent model class, whose scopes are inherited.
        """
        self._scopes = collections.OrderedDict()
        if parent is not None:
            self._scopes.update(parent._scopes)

    def __contains__(self, name: str):
        return name in self._scopes

    def __len__(self):
        return len(self._scopes)

    def __repr__(self):
        return "<ScopeRegistry {}>".format(list(self._scopes))

    def add(self, name: str, scope: typing.Callable[[typing.Any], typing.Any]):
        """
        Adds a global scope. A scope with the same name is replaced.

        :param name: The name of the scope.
        :param scope: A callable that receives the query builder and mutates it in place.
        """
        self._scopes[name] = scope

    def remove(self, name: str):
        """
        Removes a global scope. Removing a scope that doesn't exist does nothing.
        """
        self._scopes.pop(name, None)

    def clear(self):
        self._scopes.clear()

    def get(self, name: str):
        return self._scopes.get(name)

    def apply(self, query, excluded: typing.Iterable[str] = ()):
        """
        Applies every scope that is not excluded to a query.

        :param query: The query builder to mutate.
        :param excluded: The names of scopes to skip.
        """
        excluded = set(excluded)
        for name, scope in self._scopes.items():
            if name in excluded:
                continue

            scope(query)

        return query
