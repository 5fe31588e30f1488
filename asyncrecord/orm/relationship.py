"""
Relationship helpers.
"""
import abc
import asyncio
import copy
import logging
import re
import typing
from collections import OrderedDict

from cached_property import cached_property

from asyncrecord.exc import NoSuchRelationshipError
from asyncrecord.orm import builder as md_builder, model as md_model, query as md_query
from asyncrecord.utils import model_keys, unique

logger = logging.getLogger(__name__)


def snake_case(name: str) -> str:
    """
    Converts a class name into snake case, e.g. ``BlogPost`` into ``blog_post``.
    """
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


class Relationship(object):
    """
    Represents a relationship to another model.

    Relationships are declared in the class body with :func:`.has_one`, :func:`.has_many`,
    :func:`.belongs_to` and :func:`.belongs_to_many`:

    .. code-block:: python3

        class User(Model):
            posts = has_many("Post")  # posts.user_id = users.id
            profile = has_one("Profile")  # profiles.user_id = users.id
            roles = belongs_to_many("Role")  # through role_user

        class Post(Model):
            user = belongs_to(User)  # posts.user_id = users.id

    Accessing the relationship on an instance returns the loaded value if the relation was loaded
    (by eager loading, or with :meth:`.Model.load`). Otherwise, a relation object is returned,
    which can be awaited for its value or narrowed first:

    .. code-block:: python3

        posts = await user.posts
        recent = await user.posts.order_by_desc("created_at").limit(5).get()

    The related model can be passed as a class, or as the name of a model (class name or table
    name) from the same :class:`.ModelMetadata`.
    """

    def __init__(self, kind: str,
                 related: 'typing.Union[md_model.ModelMeta, str]', *,
                 foreign_key: str = None, local_key: str = None,
                 pivot_table: str = None, related_pivot_key: str = None,
                 related_key: str = None):
        """
        :param kind: The kind of relationship; one of :data:`.RELATION_TYPES`.
        :param related: The related model, or its name.
        :param foreign_key: The foreign key column.

            For ``has_one`` and ``has_many`` this is on the related table, for ``belongs_to`` it
            is on this table, and for ``belongs_to_many`` it is the pivot column referencing this
            table.

        :param local_key: The column the foreign key references.

            For ``has_one``, ``has_many`` and ``belongs_to_many`` this is on this table, for
            ``belongs_to`` this is on the related table.

        :param pivot_table: The pivot table of a ``belongs_to_many`` relationship.
        :param related_pivot_key: The pivot column referencing the related table.
        :param related_key: The column on the related table the pivot references.
        """
        if kind not in RELATION_TYPES:
            raise TypeError("Unknown relationship kind {}".format(kind))

        #: The kind of this relationship.
        self.kind = kind

        #: The owner model of this relationship.
        self.owner = None  # type: md_model.ModelMeta

        #: The name of this relationship.
        self.name = None  # type: str

        self._related = related
        self._foreign_key = foreign_key
        self._local_key = local_key
        self._pivot_table = pivot_table
        self._related_pivot_key = related_pivot_key
        self._related_key = related_key

    def __set_name__(self, owner, name):
        self.owner = owner
        self.name = name

    def __repr__(self):
        related = self._related if isinstance(self._related, str) else self._related.__name__
        return "<Relationship {} {} -> {}>".format(self.kind, self.name, related)

    def __get__(self, instance, owner):
        if instance is None:
            return self

        if instance.relation_loaded(self.name):
            return instance.get_relation(self.name)

        return self.get_instance(instance)

    @cached_property
    def related(self) -> 'md_model.ModelMeta':
        """
        Gets the related model class.
        """
        if not isinstance(self._related, str):
            return self._related

        model = self.owner.metadata.get_model(self._related)
        if model is None:
            raise NoSuchRelationshipError("No such model '{}' exists (from relationship {}.{})"
                                          .format(self._related, self.owner.__name__, self.name))

        return model

    @cached_property
    def foreign_key(self) -> str:
        if self._foreign_key is not None:
            return self._foreign_key

        if self.kind == "belongs_to":
            return "{}_id".format(self.name)

        return "{}_id".format(snake_case(self.owner.__name__))

    @cached_property
    def local_key(self) -> str:
        if self._local_key is not None:
            return self._local_key

        if self.kind == "belongs_to":
            return self.related.primary_key

        return self.owner.primary_key

    @cached_property
    def pivot_table(self) -> str:
        if self._pivot_table is not None:
            return self._pivot_table

        names = sorted([snake_case(self.owner.__name__), snake_case(self.related.__name__)])
        return "_".join(names)

    @cached_property
    def related_pivot_key(self) -> str:
        if self._related_pivot_key is not None:
            return self._related_pivot_key

        return "{}_id".format(snake_case(self.related.__name__))

    @cached_property
    def related_key(self) -> str:
        if self._related_key is not None:
            return self._related_key

        return self.related.primary_key

    def get_instance(self, parent: 'typing.Union[md_model.Model, None]',
                     bind=None) -> 'BaseRelation':
        """
        Gets a new relation object.

        :param parent: The model instance the relation is for, or None for an eager load, in \
            which case :meth:`.BaseRelation.add_eager_constraints` must be called.
        :param bind: The executor to prefer if the related model has no executor of its own.
        """
        return RELATION_TYPES[self.kind](self, parent, bind=bind)


def has_one(related, foreign_key: str = None, local_key: str = None) -> Relationship:
    """
    Declares a one to one relationship, where the related table holds the foreign key.
    """
    return Relationship("has_one", related, foreign_key=foreign_key, local_key=local_key)


def has_many(related, foreign_key: str = None, local_key: str = None) -> Relationship:
    """
    Declares a one to many relationship, where the related table holds the foreign key.
    """
    return Relationship("has_many", related, foreign_key=foreign_key, local_key=local_key)


def belongs_to(related, foreign_key: str = None, owner_key: str = None) -> Relationship:
    """
    Declares the inverse of a one to one or one to many relationship, where this table holds the
    foreign key.

    :param owner_key: The column on the related table the foreign key references.
    """
    return Relationship("belongs_to", related, foreign_key=foreign_key, local_key=owner_key)


def belongs_to_many(related, pivot_table: str = None, foreign_pivot_key: str = None,
                    related_pivot_key: str = None, parent_key: str = None,
                    related_key: str = None) -> Relationship:
    """
    Declares a many to many relationship through a pivot table.

    :param pivot_table: The pivot table. Defaults to both snake cased model names, sorted and \
        joined with an underscore, e.g. ``role_user``.
    :param foreign_pivot_key: The pivot column referencing this table.
    :param related_pivot_key: The pivot column referencing the related table.
    :param parent_key: The column on this table the pivot references.
    :param related_key: The column on the related table the pivot references.
    """
    return Relationship("belongs_to_many", related, foreign_key=foreign_pivot_key,
                        local_key=parent_key, pivot_table=pivot_table,
                        related_pivot_key=related_pivot_key, related_key=related_key)


# Specific relation types produced for model instances.
class BaseRelation(abc.ABC):
    """
    A relation object, which loads one relationship of a parent row (lazy loading), or of a list
    of parent rows at once (eager loading).

    Builder methods are forwarded to the underlying :class:`.ModelQueryBuilder`, and return this
    relation so they can be chained.
    """

    def __init__(self, relationship: Relationship, parent: 'md_model.Model' = None, bind=None):
        """
        :param relationship: The :class:`.Relationship` that lies underneath this object.
        :param parent: The model instance this is being loaded from, or None when eager loading.
        :param bind: The executor to prefer if the related model has no executor of its own.
        """
        self.relationship = relationship
        self.parent = parent

        if bind is None and parent is not None:
            bind = parent._bind

        related = relationship.related
        #: The query for the related rows.
        self.query = related.query(related.get_bind(bind))  # type: md_builder.ModelQueryBuilder

        if parent is not None:
            self.add_constraints()

    def __repr__(self):
        return "<{} {} of {!r}>".format(type(self).__name__, self.name, self.parent)

    def __getattr__(self, item: str):
        if item.startswith("_") or item == "query":
            raise AttributeError(item)

        attr = getattr(self.query, item)
        if not callable(attr):
            return attr

        def forward(*args, **kwargs):
            result = attr(*args, **kwargs)
            return self if result is self.query else result

        return forward

    def __await__(self):
        return self.get_results().__await__()

    @property
    def name(self) -> str:
        return self.relationship.name

    @property
    def related(self) -> 'md_model.ModelMeta':
        return self.relationship.related

    @staticmethod
    def _key_of(model: 'md_model.Model', key: str):
        return model._attributes.get(key)

    def _constrain(self, column: str, key):
        if key is None:
            # an unsaved parent has nothing related
            self.query.constrain(lambda query: query.where_in(column, []))
        else:
            self.query.constrain(lambda query: query.where(column, key))

    def _constrain_in(self, column: str, keys: list):
        self.query.constrain(lambda query: query.where_in(column, keys))

    # constraints
    @abc.abstractmethod
    def add_constraints(self):
        """
        Narrows the query to the rows related to :attr:`.parent`.
        """

    @abc.abstractmethod
    def add_eager_constraints(self, models: 'typing.List[md_model.Model]') -> list:
        """
        Narrows the query to the rows related to any of the models.

        :return: The keys the query was narrowed to. If this is empty, nothing can match.
        """

    @abc.abstractmethod
    def match(self, models: 'typing.List[md_model.Model]',
              results: 'typing.List[md_model.Model]'):
        """
        Sets the loaded relation on every model, from the results of an eager load.

        Models without a match get an empty list or None.
        """

    @abc.abstractmethod
    async def get_results(self):
        """
        Gets the value of this relation: a list, or a single model or None.
        """

    # running
    async def fetch(self) -> 'typing.List[md_model.Model]':
        """
        Runs the query for the related rows.
        """
        return await self.query.get()

    def where(self, *args, **kwargs) -> 'BaseRelation':
        self.query.where(*args, **kwargs)
        return self

    def or_where(self, *args, **kwargs) -> 'BaseRelation':
        self.query.or_where(*args, **kwargs)
        return self

    def where_in(self, column: str, values) -> 'BaseRelation':
        self.query.where_in(column, values)
        return self

    def order_by(self, column: str, direction: str = "ASC") -> 'BaseRelation':
        self.query.order_by(column, direction)
        return self

    def limit(self, row_limit: int) -> 'BaseRelation':
        self.query.limit(row_limit)
        return self

    async def get(self) -> 'typing.List[md_model.Model]':
        return await self.fetch()

    async def first(self) -> 'typing.Union[md_model.Model, None]':
        limited = copy.copy(self)
        limited.query = self.query.clone().limit(1)
        results = await limited.fetch()
        return results[0] if results else None

    async def count(self) -> int:
        return await self.query.count()

    async def exists(self) -> bool:
        return await self.query.exists()


def _group(results: 'typing.List[md_model.Model]', key: typing.Callable) -> dict:
    grouped = OrderedDict()
    for result in results:
        grouped.setdefault(key(result), []).append(result)

    return grouped


class HasMany(BaseRelation):
    """
    A one to many relation. The related table holds the foreign key.
    """

    def add_constraints(self):
        self._constrain(self.query.qualify(self.relationship.foreign_key),
                        self._key_of(self.parent, self.relationship.local_key))

    def add_eager_constraints(self, models):
        keys = unique(self._key_of(model, self.relationship.local_key) for model in models)
        self._constrain_in(self.query.qualify(self.relationship.foreign_key), keys)
        return keys

    def match(self, models, results):
        grouped = _group(results, lambda r: self._key_of(r, self.relationship.foreign_key))
        for model in models:
            key = self._key_of(model, self.relationship.local_key)
            model.set_relation(self.name, grouped.get(key, []))

    async def get_results(self):
        return await self.get()

    async def save(self, instance: 'md_model.Model') -> 'md_model.Model':
        """
        Sets the foreign key of a model to the parent, and saves it.
        """
        key = self._key_of(self.parent, self.relationship.local_key)
        instance.force_fill({self.relationship.foreign_key: key})
        await instance.save(bind=self.query.bind)
        return instance

    async def create(self, data: typing.Mapping[str, typing.Any] = None,
                     **kwargs) -> 'md_model.Model':
        """
        Creates a related row, with the foreign key set to the parent.
        """
        return await self.save(self.related(data, **kwargs))


class HasOne(BaseRelation):
    """
    A one to one relation. The related table holds the foreign key.
    """

    def add_constraints(self):
        self._constrain(self.query.qualify(self.relationship.foreign_key),
                        self._key_of(self.parent, self.relationship.local_key))

    def add_eager_constraints(self, models):
        keys = unique(self._key_of(model, self.relationship.local_key) for model in models)
        self._constrain_in(self.query.qualify(self.relationship.foreign_key), keys)
        return keys

    def match(self, models, results):
        grouped = _group(results, lambda r: self._key_of(r, self.relationship.foreign_key))
        for model in models:
            key = self._key_of(model, self.relationship.local_key)
            model.set_relation(self.name, grouped.get(key, [None])[0])

    async def get_results(self):
        return await self.first()

    async def save(self, instance: 'md_model.Model') -> 'md_model.Model':
        key = self._key_of(self.parent, self.relationship.local_key)
        instance.force_fill({self.relationship.foreign_key: key})
        await instance.save(bind=self.query.bind)
        return instance

    async def create(self, data: typing.Mapping[str, typing.Any] = None,
                     **kwargs) -> 'md_model.Model':
        return await self.save(self.related(data, **kwargs))


class BelongsTo(BaseRelation):
    """
    The inverse of a one to one or one to many relation. The parent table holds the foreign key.
    """

    def add_constraints(self):
        self._constrain(self.query.qualify(self.relationship.local_key),
                        self._key_of(self.parent, self.relationship.foreign_key))

    def add_eager_constraints(self, models):
        keys = unique(self._key_of(model, self.relationship.foreign_key) for model in models)
        self._constrain_in(self.query.qualify(self.relationship.local_key), keys)
        return keys

    def match(self, models, results):
        owners = {self._key_of(r, self.relationship.local_key): r for r in results}
        for model in models:
            key = self._key_of(model, self.relationship.foreign_key)
            model.set_relation(self.name, owners.get(key) if key is not None else None)

    async def get_results(self):
        return await self.first()

    def associate(self, owner: 'typing.Union[md_model.Model, typing.Any]') -> 'md_model.Model':
        """
        Sets the foreign key of the parent to an owner. The parent is not saved.

        :param owner: The owner model instance, or its key.
        """
        if isinstance(owner, md_model.Model):
            key = self._key_of(owner, self.relationship.local_key)
            self.parent.set_relation(self.name, owner)
        else:
            key = owner
            self.parent._relations.pop(self.name, None)

        self.parent.force_fill({self.relationship.foreign_key: key})
        return self.parent

    def dissociate(self) -> 'md_model.Model':
        """
        Clears the foreign key of the parent. The parent is not saved.
        """
        self.parent.force_fill({self.relationship.foreign_key: None})
        self.parent.set_relation(self.name, None)
        return self.parent


class BelongsToMany(BaseRelation):
    """
    A many to many relation, through a pivot table.

    The pivot columns of each related row are available as :attr:`.Model.pivot`:

    .. code-block:: python3

        roles = await user.roles.with_pivot("granted_at").get()
        roles[0].pivot["granted_at"]

    """

    def __init__(self, relationship: Relationship, parent: 'md_model.Model' = None, bind=None):
        #: The pivot columns selected with the related rows.
        self.pivot_columns = [relationship.foreign_key, relationship.related_pivot_key]

        super().__init__(relationship, parent, bind=bind)

        pivot = self.relationship.pivot_table
        self.query.select("{}.*".format(self.query.state.reference))
        for column in self.pivot_columns:
            self._select_pivot(column)

        self.query.join(pivot, "{}.{}".format(pivot, self.relationship.related_pivot_key),
                        self.query.qualify(self.relationship.related_key))

    def _select_pivot(self, column: str):
        self.query.add_select("{}.{} AS pivot_{}".format(self.relationship.pivot_table,
                                                         column, column))

    @property
    def _pivot_key(self) -> str:
        return "{}.{}".format(self.relationship.pivot_table, self.relationship.foreign_key)

    def _parent_key(self):
        return self._key_of(self.parent, self.relationship.local_key)

    def add_constraints(self):
        self._constrain(self._pivot_key, self._parent_key())

    def add_eager_constraints(self, models):
        keys = unique(self._key_of(model, self.relationship.local_key) for model in models)
        self._constrain_in(self._pivot_key, keys)
        return keys

    def match(self, models, results):
        grouped = _group(results, lambda r: r.pivot.get(self.relationship.foreign_key))
        for model in models:
            key = self._key_of(model, self.relationship.local_key)
            model.set_relation(self.name, grouped.get(key, []))

    async def fetch(self):
        results = await self.query.get()
        for result in results:
            pivot = {}
            for column in self.pivot_columns:
                alias = "pivot_{}".format(column)
                pivot[column] = result._attributes.pop(alias, None)
                result._original.pop(alias, None)

            result._pivot = pivot

        return results

    async def get_results(self):
        return await self.get()

    def with_pivot(self, *columns: str) -> 'BelongsToMany':
        """
        Selects extra pivot columns.
        """
        for column in columns:
            if column not in self.pivot_columns:
                self.pivot_columns.append(column)
                self._select_pivot(column)

        return self

    def pivot_query(self) -> 'md_query.QueryBuilder':
        """
        Gets a query for the pivot rows of the parent.
        """
        query = md_query.QueryBuilder(self.query.bind, self.relationship.pivot_table)
        return query.where(self.relationship.foreign_key, self._parent_key())

    def _pivot_rows(self, ids, pivot_data: typing.Mapping[str, typing.Any] = None) -> list:
        if isinstance(ids, dict):
            items = [(key, dict(pivot_data or {}, **(data or {}))) for key, data in ids.items()]
        else:
            items = [(key, dict(pivot_data or {})) for key in model_keys(ids)]

        rows = []
        for key, data in items:
            row = {
                self.relationship.foreign_key: self._parent_key(),
                self.relationship.related_pivot_key: key,
            }
            row.update(data)
            rows.append(row)

        return rows

    async def attach(self, ids, pivot_data: typing.Mapping[str, typing.Any] = None):
        """
        Attaches related rows, by inserting pivot rows.

        Rows that are already attached are attached again.

        :param ids: A key, a model, or a list of either. A mapping of key to pivot data can be \
            passed to set different pivot data per row.
        :param pivot_data: Extra columns to set on every pivot row.
        """
        rows = self._pivot_rows(ids, pivot_data)
        if not rows:
            return

        await md_query.QueryBuilder(self.query.bind, self.relationship.pivot_table) \
            .insert_batch(rows)

    async def detach(self, ids=None) -> typing.Optional[int]:
        """
        Detaches related rows, by deleting pivot rows.

        :param ids: The keys or models to detach. If None, every related row is detached.
        :return: The number of detached rows on dialects with RETURNING, otherwise None.
        """
        query = self.pivot_query()
        if ids is not None:
            keys = model_keys(ids)
            if not keys:
                return 0

            query.where_in(self.relationship.related_pivot_key, keys)

        return await query.delete()

    async def sync(self, ids, detaching: bool = True):
        """
        Makes the given rows the only attached rows. Every pivot row is deleted, then every
        given row is attached.

        .. warning::
            This runs as two separate statements, so other queries on the same connection can
            see the intermediate state.

        :param detaching: If False, existing pivot rows are kept.
        """
        if detaching:
            await self.detach()

        await self.attach(ids)

    async def toggle(self, ids) -> typing.Dict[str, list]:
        """
        Attaches the given rows that are not attached, and detaches the ones that are.

        :return: A dict of ``attached`` and ``detached`` keys.
        """
        current = await self.pivot_query().pluck(self.relationship.related_pivot_key)
        keys = model_keys(ids)

        to_attach = [key for key in keys if key not in current]
        to_detach = [key for key in keys if key in current]

        coros = []
        if to_attach:
            coros.append(self.attach(to_attach))
        if to_detach:
            coros.append(self.detach(to_detach))

        await asyncio.gather(*coros)
        return {"attached": to_attach, "detached": to_detach}

    async def update_existing_pivot(self, key, data: typing.Mapping[str, typing.Any]):
        """
        Updates the pivot row of one related row.
        """
        key = model_keys(key)[0]
        return await self.pivot_query() \
            .where(self.relationship.related_pivot_key, key) \
            .update(data)

    async def create(self, data: typing.Mapping[str, typing.Any] = None,
                     pivot_data: typing.Mapping[str, typing.Any] = None) -> 'md_model.Model':
        """
        Creates a related row, and attaches it.
        """
        instance = self.related(data)
        await instance.save(bind=self.query.bind)
        await self.attach(instance, pivot_data)
        return instance


#: The relation class for each kind of relationship.
RELATION_TYPES = {
    "has_one": HasOne,
    "has_many": HasMany,
    "belongs_to": BelongsTo,
    "belongs_to_many": BelongsToMany,
}
