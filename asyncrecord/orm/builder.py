"""
The model query builder, which returns model instances and eager loads their relations.
"""
import datetime
import logging
import typing
from collections import OrderedDict

from asyncrecord.exc import NoSuchRelationshipError
from asyncrecord.orm import compiler as md_compiler, model as md_model, \
    operators as md_operators, query as md_query, scopes as md_scopes

logger = logging.getLogger(__name__)

Constraint = typing.Callable[['ModelQueryBuilder'], typing.Any]


class ModelQueryBuilder(md_query.QueryBuilder):
    """
    A :class:`.QueryBuilder` for a model. Rows are returned as model instances, the model's global
    scopes are applied and relations can be eager loaded.

    .. code-block:: python3

        users = await User.query() \\
            .where("age", ">", 18) \\
            .with_("posts.comments", "roles") \\
            .get()

    Local scopes, classmethods on the model named ``scope_<name>``, can be called directly on the
    builder:

    .. code-block:: python3

        class Post(Model):
            @classmethod
            def scope_published(cls, query, since=None):
                query.where_not_null("published_at")

        posts = await Post.query().published().get()

    """

    def __init__(self, model: 'md_model.ModelMeta', bind):
        """
        :param model: The model class this query is for.
        :param bind: The executor to run queries on.
        """
        super().__init__(bind, model.__tablename__, model.primary_key)

        #: The model class this query is for.
        self.model = model

        #: The relations to eager load, as path -> constraint, in the order they were added.
        self._eager_loads = OrderedDict()  # type: typing.Dict[str, Constraint]

        #: The names of the global scopes that are not applied.
        self._removed_scopes = set()

        #: If no global scopes are applied at all.
        self._without_scopes = False

        #: Clauses every row must match, however the other WHERE clauses are combined.
        self._constraints = []  # type: typing.List[md_operators.WhereClause]

    def __getattr__(self, item: str):
        if item.startswith("_"):
            raise AttributeError(item)

        scope = getattr(self.model, "scope_{}".format(item), None)
        if scope is None:
            raise AttributeError("'{}' object has no attribute '{}'".format(type(self).__name__,
                                                                            item))

        def apply_scope(*args, **kwargs):
            result = scope(self, *args, **kwargs)
            return self if result is None else result

        return apply_scope

    def clone(self) -> 'ModelQueryBuilder':
        new = super().clone()
        new._eager_loads = OrderedDict(self._eager_loads)
        new._removed_scopes = set(self._removed_scopes)
        new._constraints = list(self._constraints)
        return new

    def constrain(self, callback: Constraint) -> 'ModelQueryBuilder':
        """
        Adds clauses that every row must match. Unlike :meth:`.where`, a later ``or_where`` can't
        widen them, as the other clauses are grouped when any of them is an OR.

        .. code-block:: python3

            query.constrain(lambda q: q.where("posts.user_id", 1))
            query.where("title", "a").or_where("title", "b")
            # posts.user_id = ? AND (title = ? OR title = ?)

        :param callback: Called with an empty query, to add the clauses to.
        """
        pinned = self.clone()
        pinned.state.wheres = []
        callback(pinned)
        self._constraints.extend(pinned.state.wheres)
        return self

    # scopes
    def without_global_scope(self, *names: str) -> 'ModelQueryBuilder':
        """
        Skips global scopes for this query.
        """
        self._removed_scopes.update(names)
        return self

    def without_global_scopes(self) -> 'ModelQueryBuilder':
        """
        Skips every global scope for this query.
        """
        self._without_scopes = True
        return self

    def with_trashed(self) -> 'ModelQueryBuilder':
        """
        Includes soft deleted rows in this query.
        """
        return self.without_global_scope(md_scopes.SOFT_DELETE_SCOPE)

    def only_trashed(self) -> 'ModelQueryBuilder':
        """
        Only returns soft deleted rows.
        """
        self.with_trashed()
        return self.where_not_null(self.qualify(self.model.deleted_at_column))

    def get_state(self) -> 'md_compiler.QueryState':
        apply_scopes = not self._without_scopes and len(self.model._scopes) > 0
        if not apply_scopes and not self._constraints:
            return self.state

        scoped = self.clone()
        scoped._without_scopes = True
        scoped._constraints = []
        wheres = scoped.state.wheres
        if any(clause.combinator == "OR" for clause in wheres):
            # a OR b AND scope is a OR (b AND scope)
            wheres = [md_operators.NestedClause(wheres)]

        scoped.state.wheres = list(self._constraints) + wheres
        if apply_scopes:
            self.model._scopes.apply(scoped, excluded=self._removed_scopes)

        return scoped.state

    # eager loading
    def with_(self, *relations) -> 'ModelQueryBuilder':
        """
        Eager loads relations. One query is issued per relation, for every row of the result.

        .. code-block:: python3

            # a single relation, or several
            User.query().with_("posts")
            User.query().with_("posts", "roles")
            # nested relations
            User.query().with_("posts.comments")
            # a constraint, which is called with the relation's query
            User.query().with_("posts", lambda query: query.where("title", "Published"))
            User.query().with_({"posts": lambda query: query.limit(5), "roles": None})

        :param relations: Relation paths, or mappings of relation path to constraint.
        """
        if len(relations) == 2 and isinstance(relations[0], str) and callable(relations[1]):
            relations = ({relations[0]: relations[1]},)

        for relation in relations:
            if isinstance(relation, dict):
                items = relation.items()
            else:
                items = [(relation, None)]

            for path, constraint in items:
                self._add_eager_load(path, constraint)

        return self

    def _add_eager_load(self, path: str, constraint: Constraint = None):
        segments = path.split(".")
        for index in range(1, len(segments) + 1):
            prefix = ".".join(segments[:index])
            if prefix == path:
                self._eager_loads[prefix] = constraint
            else:
                self._eager_loads.setdefault(prefix, None)

    async def eager_load(self, models: 'typing.List[md_model.Model]'):
        """
        Loads the queued relations onto already fetched models.

        Relations are loaded in the order they were added. Nested relations are loaded as soon as
        their parent relation is loaded, using every loaded child as the parent set.
        """
        for name, constraint in self._eager_loads.items():
            if "." in name:
                continue

            prefix = name + "."
            nested = OrderedDict((path[len(prefix):], c) for path, c in self._eager_loads.items()
                                 if path.startswith(prefix))
            await self._load_relation(models, name, constraint, nested)

        return models

    async def _load_relation(self, models: 'typing.List[md_model.Model]', name: str,
                             constraint: Constraint, nested: 'typing.Dict[str, Constraint]'):
        relationship = self.model.get_relationship(name)
        if relationship is None:
            raise NoSuchRelationshipError("Model {} has no relationship {}".format(
                self.model.__name__, name))

        relation = relationship.get_instance(None, bind=self.bind)
        keys = relation.add_eager_constraints(models)
        if not keys:
            # no parent has a key, so nothing can match
            relation.match(models, [])
            return

        relation.query._eager_loads.update(nested)
        if constraint is not None:
            constraint(relation.query)

        logger.debug("Eager loading {}.{} for {} keys".format(self.model.__name__, name,
                                                              len(keys)))
        results = await relation.fetch()
        relation.match(models, results)

    # running
    async def get(self) -> 'typing.List[md_model.Model]':
        """
        Runs this query.

        :return: A list of model instances, with any queued relations loaded.
        """
        rows = await self._select_rows()
        models = self.model.hydrate(rows, bind=self.bind)
        if models and self._eager_loads:
            await self.eager_load(models)

        return models

    async def first_or_create(self, conditions: typing.Mapping[str, typing.Any],
                              values: typing.Mapping[str, typing.Any] = None) -> 'md_model.Model':
        """
        Gets the first row matching the conditions, or creates it with the conditions and values.
        """
        found = await self.clone().where(dict(conditions)).first()
        if found is not None:
            return found

        return await self.model.create(dict(conditions, **(values or {})), bind=self.bind)

    async def update_or_create(self, conditions: typing.Mapping[str, typing.Any],
                               values: typing.Mapping[str, typing.Any] = None) \
            -> 'md_model.Model':
        """
        Updates the first row matching the conditions with the values, or creates it.
        """
        found = await self.clone().where(dict(conditions)).first()
        if found is not None:
            await found.fill(values or {}).save()
            return found

        return await self.model.create(dict(conditions, **(values or {})), bind=self.bind)

    async def delete(self) -> typing.Optional[int]:
        """
        Deletes every row this query matches. On soft deleting models, the delete marker is set
        instead. Hooks are not run.
        """
        if self.model.soft_deletes:
            now = datetime.datetime.now(datetime.timezone.utc)
            return await self.update({self.model.deleted_at_column:
                                      self.dialect.timestamp_value(now)})

        return await super().delete()

    async def force_delete(self) -> typing.Optional[int]:
        """
        Deletes every row this query matches from the database, even on soft deleting models.
        """
        return await super().delete()

    async def restore(self) -> typing.Optional[int]:
        """
        Restores every soft deleted row this query matches. Hooks are not run.
        """
        return await self.with_trashed().update({self.model.deleted_at_column: None})
