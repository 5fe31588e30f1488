"""
Model objects.
"""
import datetime
import json
import logging
import typing
from collections import OrderedDict

from asyncrecord.exc import ConfigurationError, UnsupportedOperationException
from asyncrecord.orm import builder as md_builder, casts as md_casts, hooks as md_hooks, \
    query as md_query, relationship as md_relationship, scopes as md_scopes

logger = logging.getLogger(__name__)


class ModelMetadata(object):
    """
    The root class for model metadata.

    This stores a registry of models, the executors they are bound to, and the hooks registered on
    them.

    .. code-block:: python3

        meta = ModelMetadata()
        Model = model_base(metadata=meta)

    """

    def __init__(self):
        #: A registry of table name -> model class for this metadata.
        self.models = OrderedDict()

        #: The default executor for every model in this metadata.
        self.bind = None

        #: Per-model executor overrides.
        self.binds = {}

        #: The :class:`.HookRunner` holding the hooks of every model in this metadata.
        self.hooks = md_hooks.HookRunner()

    def __repr__(self):
        return "<ModelMetadata models={}>".format(list(self.models))

    def register_model(self, model: 'ModelMeta') -> 'ModelMeta':
        """
        Registers a new model class.
        """
        model.metadata = self
        self.models[model.__tablename__] = model
        logger.debug("Registered new model {}".format(model.__name__))
        return model

    def get_model(self, name: str) -> 'typing.Union[ModelMeta, None]':
        """
        Gets a model from the current metadata.

        :param name: The table name, or the class name, of the model.
        :return: The model class, or None if no model was found.
        """
        try:
            return self.models[name]
        except KeyError:
            for model in self.models.values():
                if model.__name__ == name:
                    return model

        return None

    def bind_model(self, model: 'ModelMeta', bind):
        """
        Binds a single model to an executor, overriding the default.
        """
        self.binds[model] = bind

    def get_bind(self, model: 'ModelMeta', preferred=None):
        """
        Gets the executor for a model.

        The lookup order is: a per-model binding of the model (or a model it inherits from), then
        ``preferred``, then the default of this metadata.

        :raises ConfigurationError: If no executor could be found.
        """
        for klass in model.__mro__:
            if klass in self.binds:
                return self.binds[klass]

        if preferred is not None:
            return preferred

        if self.bind is None:
            raise ConfigurationError("Model {} has no database bound - did you forget to call "
                                     "bind_models()?".format(model.__name__))

        return self.bind


class ModelMeta(type):
    """
    The metaclass for a model object. This represents the "type" of a model class.
    """

    def __new__(mcs, name: str, bases: tuple, class_body: dict,
                register: bool = True, **kwargs):
        # usually a cloned base
        if register is False:
            return type.__new__(mcs, name, bases, class_body)

        relationships = OrderedDict()
        for base in reversed(bases):
            relationships.update(getattr(base, "_relationships", {}))

        for attr_name, value in class_body.items():
            if isinstance(value, md_relationship.Relationship):
                relationships[attr_name] = value

        class_body["_relationships"] = relationships
        class_body["__is_base__"] = False

        try:
            class_body["__tablename__"] = kwargs["table_name"]
        except KeyError:
            class_body.setdefault("__tablename__", name.lower())

        return type.__new__(mcs, name, bases, class_body)

    def __init__(cls, name: str, bases: tuple, class_body: dict, register: bool = True,
                 **kwargs):
        """
        Creates a new model class.

        :param register: Should this model be registered in the :class:`.ModelMetadata`?
        :param table_name: The name of the table for this model.
        """
        super().__init__(name, bases, class_body)

        if register is False:
            return
        elif not hasattr(cls, "metadata"):
            raise TypeError("Model {} has been created but has no metadata - did you subclass Model"
                            " directly instead of a base from model_base()?".format(name))

        #: The casts of this model's attributes.
        cls._casts = md_casts.CastRegistry(cls.casts)

        parent = next((base._scopes for base in bases if "_scopes" in vars(base)), None)

        #: The global scopes of this model.
        cls._scopes = md_scopes.ScopeRegistry(parent)
        if cls.soft_deletes:
            column = "{}.{}".format(cls.__tablename__, cls.deleted_at_column)
            cls._scopes.add(md_scopes.SOFT_DELETE_SCOPE, md_scopes.SoftDeleteScope(column))
        else:
            cls._scopes.remove(md_scopes.SOFT_DELETE_SCOPE)

        cls.metadata.register_model(cls)

    def __repr__(cls):
        try:
            return "<Model object='{}' table='{}'>".format(cls.__name__, cls.__tablename__)
        except AttributeError:
            return super().__repr__()


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _json_default(value):
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()

    return str(value)


class Model(metaclass=ModelMeta, register=False):
    """
    The "base" class for all models. This class is not actually directly used; instead
    :func:`.model_base` should be called to get a fresh clone.

    A model maps to one table; each instance is one row. Columns are not declared, every column
    of a loaded row becomes an attribute.

    .. code-block:: python3

        class User(Model):
            __tablename__ = "users"
            fillable = ("name", "email")
            casts = {"is_admin": "boolean"}

            posts = has_many("Post", foreign_key="user_id")

        user = await User.create({"name": "Laura", "email": "laura@example.com"})
        user.name = "Lars"
        await user.save()

    The following class attributes configure a model:

        - ``primary_key`` - The primary key column. Defaults to ``id``.
        - ``timestamps`` - If ``created_at``/``updated_at`` should be set automatically.
        - ``created_at_column``/``updated_at_column`` - The names of the timestamp columns.
        - ``soft_deletes`` - If deleting should only set a delete marker.
        - ``deleted_at_column`` - The name of the delete marker column.
        - ``fillable`` - The attributes :meth:`.fill` may set. Empty means all of them.
        - ``guarded`` - The attributes :meth:`.fill` may not set. ``"*"`` guards everything.
        - ``casts`` - A mapping of attribute name to cast. See :mod:`asyncrecord.orm.casts`.
    """
    __is_base__ = True

    primary_key = "id"
    timestamps = True
    created_at_column = "created_at"
    updated_at_column = "updated_at"
    soft_deletes = False
    deleted_at_column = "deleted_at"
    fillable = ()
    guarded = ()
    casts = {}

    def __init__(self, attributes: typing.Mapping[str, typing.Any] = None, **kwargs):
        #: The current values of this row, in their stored form.
        self._attributes = {}

        #: The values of this row when it was last loaded or saved.
        self._original = {}

        #: The loaded relations of this row.
        self._relations = {}

        #: If this row exists in the database.
        self._exists = False

        #: If this row was deleted. Deleted rows cannot be saved again.
        self._deleted = False

        #: The executor this row was loaded or saved through.
        self._bind = None

        #: The pivot columns, if this row was loaded through a many to many relationship.
        self._pivot = None

        data = dict(attributes or {}, **kwargs)
        if data:
            self.fill(data)

    def __repr__(self):
        gen = ("{}={!r}".format(key, value) for key, value in self._attributes.items())
        return "<{} {}>".format(type(self).__name__, " ".join(gen))

    def __getattr__(self, item: str):
        if item.startswith("_"):
            raise AttributeError(item)

        if item in self._attributes:
            return self.get_attribute(item)

        raise AttributeError("'{}' object has no attribute '{}'".format(type(self).__name__, item))

    def __setattr__(self, key: str, value: typing.Any):
        if key.startswith("_"):
            return super().__setattr__(key, value)

        if key in type(self)._relationships:
            raise AttributeError("Cannot assign to relationship {}; use set_relation() "
                                 "instead".format(key))

        if hasattr(type(self), key):
            return super().__setattr__(key, value)

        self.set_attribute(key, value)

    # Class methods
    @classmethod
    def get_bind(cls, preferred=None):
        """
        Gets the executor this model runs queries on.

        :raises ConfigurationError: If the model, and its base, have no executor bound.
        """
        return cls.metadata.get_bind(cls, preferred)

    @classmethod
    def get_relationship(cls, name: str) -> 'typing.Union[md_relationship.Relationship, None]':
        """
        Gets a relationship by name.

        :return: The :class:`.Relationship` associated with that name, or None if it doesn't exist.
        """
        return cls._relationships.get(name)

    @classmethod
    def iter_relationships(cls) -> 'typing.Iterator[md_relationship.Relationship]':
        return iter(cls._relationships.values())

    @classmethod
    def query(cls, bind=None) -> 'md_builder.ModelQueryBuilder':
        """
        Creates a new query for this model.

        :param bind: The executor to run on. Defaults to the executor bound to this model.
        """
        if bind is None:
            bind = cls.get_bind()

        return md_builder.ModelQueryBuilder(cls, bind)

    @classmethod
    def hydrate(cls, rows: typing.Iterable[typing.Mapping[str, typing.Any]],
                bind=None) -> 'typing.List[Model]':
        """
        Creates existing, clean instances from database rows.

        :param rows: The rows to create instances from.
        :param bind: The executor the rows came from.
        """
        models = []
        for row in rows:
            instance = cls()
            instance._attributes = dict(row)
            instance._original = dict(row)
            instance._exists = True
            instance._bind = bind
            models.append(instance)

        return models

    @classmethod
    async def find(cls, key: typing.Any, bind=None) -> 'typing.Union[Model, None]':
        """
        Gets a row by primary key, or None if it doesn't exist.
        """
        return await cls.query(bind).find(key)

    @classmethod
    async def find_or_fail(cls, key: typing.Any, bind=None) -> 'Model':
        """
        Gets a row by primary key.

        :raises ModelNotFoundError: If the row doesn't exist.
        """
        return await cls.query(bind).find_or_fail(key)

    @classmethod
    async def all(cls, bind=None) -> 'typing.List[Model]':
        return await cls.query(bind).get()

    @classmethod
    def where(cls, *args, **kwargs) -> 'md_builder.ModelQueryBuilder':
        """
        Shortcut for ``Model.query().where(...)``.
        """
        return cls.query().where(*args, **kwargs)

    @classmethod
    def with_(cls, *relations) -> 'md_builder.ModelQueryBuilder':
        """
        Shortcut for ``Model.query().with_(...)``.
        """
        return cls.query().with_(*relations)

    @classmethod
    async def create(cls, data: typing.Mapping[str, typing.Any] = None, bind=None,
                     **kwargs) -> 'Model':
        """
        Creates and saves a new row. The data is passed through :meth:`.fill`.
        """
        instance = cls(data, **kwargs)
        await instance.save(bind=bind)
        return instance

    @classmethod
    async def first_or_create(cls, conditions: typing.Mapping[str, typing.Any],
                              values: typing.Mapping[str, typing.Any] = None,
                              bind=None) -> 'Model':
        """
        Gets the first row matching the conditions, or creates it with the conditions and values.
        """
        return await cls.query(bind).first_or_create(conditions, values)

    @classmethod
    async def update_or_create(cls, conditions: typing.Mapping[str, typing.Any],
                               values: typing.Mapping[str, typing.Any] = None,
                               bind=None) -> 'Model':
        """
        Updates the first row matching the conditions with the values, or creates it.
        """
        return await cls.query(bind).update_or_create(conditions, values)

    @classmethod
    def on(cls, hook: str, callback: typing.Callable = None):
        """
        Registers a lifecycle hook for this model.

        .. code-block:: python3

            @User.on("creating")
            async def hash_password(user):
                user.password = await hash(user.password)

            # returning False aborts the save
            User.on("saving", lambda user: user.name != "root")

        :param hook: The name of the hook. See :data:`.HOOK_NAMES`.
        :param callback: The callback. If omitted, this works as a decorator.
        """
        if callback is None:
            def decorator(func):
                cls.metadata.hooks.on(cls, hook, func)
                return func

            return decorator

        return cls.metadata.hooks.on(cls, hook, callback)

    @classmethod
    def add_global_scope(cls, name: str, scope: typing.Callable):
        """
        Adds a scope applied to every query for this model.

        :param name: The name of the scope, used to remove or skip it.
        :param scope: A callable that receives the query builder and mutates it.
        """
        cls._scopes.add(name, scope)

    @classmethod
    def remove_global_scope(cls, name: str):
        cls._scopes.remove(name)

    # attributes
    @property
    def exists(self) -> bool:
        """
        If this row exists in the database.
        """
        return self._exists

    @property
    def pivot(self) -> 'typing.Union[typing.Dict[str, typing.Any], None]':
        """
        The pivot table columns, if this row was loaded through a many to many relationship.
        """
        return self._pivot

    def get_key(self) -> typing.Any:
        """
        Gets the primary key value of this row.
        """
        return self._attributes.get(self.primary_key)

    def get_attribute(self, key: str) -> typing.Any:
        """
        Gets an attribute, converted by its cast. Missing attributes are None.
        """
        return self._casts.deserialize(key, self._attributes.get(key))

    def set_attribute(self, key: str, value: typing.Any) -> 'Model':
        """
        Sets an attribute, converting it by its cast. This ignores ``fillable`` and ``guarded``.
        """
        self._attributes[key] = self._casts.serialize(key, value)
        return self

    def is_fillable(self, key: str) -> bool:
        """
        Checks if an attribute can be set by :meth:`.fill`.
        """
        if "*" in self.guarded or key in self.guarded:
            return False

        if self.fillable and key not in self.fillable:
            return False

        return True

    def fill(self, data: typing.Mapping[str, typing.Any]) -> 'Model':
        """
        Sets many attributes. Attributes that are not fillable are skipped.
        """
        for key, value in data.items():
            if not self.is_fillable(key):
                logger.debug("Skipping guarded attribute {} on {}".format(key,
                                                                         type(self).__name__))
                continue

            self.set_attribute(key, value)

        return self

    def force_fill(self, data: typing.Mapping[str, typing.Any]) -> 'Model':
        """
        Sets many attributes, ignoring ``fillable`` and ``guarded``.
        """
        for key, value in data.items():
            self.set_attribute(key, value)

        return self

    # history
    def get_dirty(self) -> typing.Dict[str, typing.Any]:
        """
        Gets the attributes that changed since this row was last loaded or saved.

        :return: A dict of attribute name to the new, stored value.
        """
        dirty = {}
        for key, value in self._attributes.items():
            if key not in self._original or self._original[key] != value:
                dirty[key] = value

        return dirty

    def is_dirty(self, key: str = None) -> bool:
        """
        Checks if this row, or a single attribute, changed since it was last loaded or saved.
        """
        dirty = self.get_dirty()
        if key is None:
            return bool(dirty)

        return key in dirty

    def is_clean(self, key: str = None) -> bool:
        return not self.is_dirty(key)

    def get_original(self, key: str = None) -> typing.Any:
        """
        Gets the stored values of this row when it was last loaded or saved.

        :param key: If passed, only the value of this attribute is returned.
        """
        if key is None:
            return dict(self._original)

        return self._original.get(key)

    def sync_original(self) -> 'Model':
        self._original = dict(self._attributes)
        return self

    # relations
    def get_relation(self, name: str) -> typing.Any:
        """
        Gets a loaded relation.

        :raises KeyError: If the relation is not loaded.
        """
        return self._relations[name]

    def set_relation(self, name: str, value: typing.Any) -> 'Model':
        """
        Sets the loaded value of a relation.
        """
        self._relations[name] = value
        return self

    def relation_loaded(self, name: str) -> bool:
        return name in self._relations

    async def load(self, *relations) -> 'Model':
        """
        Eager loads relations onto this row.

        .. code-block:: python3

            await user.load("posts.comments", "roles")

        Takes the same arguments as :meth:`.ModelQueryBuilder.with_`.
        """
        query = type(self).query(self._resolve_bind()).with_(*relations)
        await query.eager_load([self])
        return self

    # serialization
    def to_dict(self, relations: bool = True) -> typing.Dict[str, typing.Any]:
        """
        Converts this row into a dict of attribute name to (cast) value.

        :param relations: If loaded relations should be included.
        """
        data = {key: self.get_attribute(key) for key in self._attributes}
        if not relations:
            return data

        for name, value in self._relations.items():
            if isinstance(value, list):
                data[name] = [item.to_dict() for item in value]
            elif value is not None:
                data[name] = value.to_dict()
            else:
                data[name] = None

        return data

    def to_json(self, **kwargs) -> str:
        """
        Converts this row into a JSON string. Keyword arguments are passed to :func:`json.dumps`.
        """
        return json.dumps(self.to_dict(), default=_json_default, **kwargs)

    # persistence
    def _resolve_bind(self, bind=None):
        if bind is not None:
            return bind

        if self._bind is not None:
            return self._bind

        return type(self).get_bind()

    def _base_query(self, bind) -> 'md_query.QueryBuilder':
        # no scopes, so that trashed rows can still be written
        return md_query.QueryBuilder(bind, self.__tablename__, self.primary_key)

    def _key_query(self, bind) -> 'md_query.QueryBuilder':
        key = self._original.get(self.primary_key, self.get_key())
        return self._base_query(bind).where(self.primary_key, key)

    def _stamp(self, column: str, bind, now: datetime.datetime = None):
        now = now or _utcnow()
        if column in self._casts:
            self.set_attribute(column, now)
        else:
            self._attributes[column] = bind.dialect.timestamp_value(now)

    async def save(self, bind=None) -> bool:
        """
        Saves this row, inserting it if it doesn't exist, or updating the changed attributes if it
        does. An existing row that has not changed is not written.

        :param bind: The executor to save on. Defaults to the one this row was loaded from.
        :return: False if a hook aborted the save, True otherwise.
        """
        if self._deleted:
            raise RuntimeError("This row is marked as deleted")

        if self._exists and self.is_clean():
            return True

        bind = self._resolve_bind(bind)
        hooks = self.metadata.hooks
        if not await hooks.run("saving", self):
            return False

        if self._exists:
            saved = await self._perform_update(bind)
        else:
            saved = await self._perform_insert(bind)

        if not saved:
            return False

        await hooks.run("saved", self)
        return True

    async def _perform_insert(self, bind) -> bool:
        hooks = self.metadata.hooks
        if not await hooks.run("creating", self):
            return False

        if self.timestamps:
            now = _utcnow()
            for column in (self.created_at_column, self.updated_at_column):
                if column not in self._attributes:
                    self._stamp(column, bind, now)

        row = await self._base_query(bind).insert(dict(self._attributes))
        if row is not None:
            self._attributes.update(row)

        self._exists = True
        self._bind = bind
        self.sync_original()

        await hooks.run("created", self)
        return True

    async def _perform_update(self, bind) -> bool:
        hooks = self.metadata.hooks
        if not await hooks.run("updating", self):
            return False

        if self.timestamps and not self.is_dirty(self.updated_at_column):
            self._stamp(self.updated_at_column, bind)

        dirty = self.get_dirty()
        await self._key_query(bind).update(dirty)
        self._bind = bind
        self.sync_original()

        await hooks.run("updated", self)
        return True

    async def delete(self, bind=None) -> bool:
        """
        Deletes this row.

        On models with ``soft_deletes``, this sets the delete marker instead, and the row is
        hidden from queries until it is restored.

        :return: False if a hook aborted the delete, or the row doesn't exist. True otherwise.
        """
        return await self._perform_delete(bind, force=not self.soft_deletes)

    async def force_delete(self, bind=None) -> bool:
        """
        Deletes this row from the database, even on models with ``soft_deletes``.
        """
        return await self._perform_delete(bind, force=True)

    async def _perform_delete(self, bind, force: bool) -> bool:
        if not self._exists:
            return False

        bind = self._resolve_bind(bind)
        hooks = self.metadata.hooks
        if not await hooks.run("deleting", self):
            return False

        if force:
            await self._key_query(bind).delete()
            self._exists = False
            self._deleted = True
        else:
            column = self.deleted_at_column
            self._stamp(column, bind)
            await self._key_query(bind).update({column: self._attributes[column]})
            self._original[column] = self._attributes[column]

        await hooks.run("deleted", self)
        return True

    def trashed(self) -> bool:
        """
        Checks if this row has been soft deleted.
        """
        return self.soft_deletes and self._attributes.get(self.deleted_at_column) is not None

    async def restore(self, bind=None) -> bool:
        """
        Restores a soft deleted row.

        :raises UnsupportedOperationException: If this model does not use soft deletes.
        :return: False if a hook aborted the restore, True otherwise.
        """
        if not self.soft_deletes:
            raise UnsupportedOperationException("Model {} does not use soft deletes".format(
                type(self).__name__))

        bind = self._resolve_bind(bind)
        hooks = self.metadata.hooks
        if not await hooks.run("restoring", self):
            return False

        column = self.deleted_at_column
        self._attributes[column] = None
        await self._key_query(bind).update({column: None})
        self._original[column] = None

        await hooks.run("restored", self)
        return True

    async def fresh(self, bind=None) -> 'typing.Union[Model, None]':
        """
        Gets a new instance of this row from the database. Global scopes are not applied.
        """
        bind = self._resolve_bind(bind)
        return await type(self).query(bind).without_global_scopes().find(self.get_key())

    async def refresh(self, bind=None) -> 'Model':
        """
        Reloads the attributes of this row, and its loaded relations, from the database.
        """
        fresh = await self.fresh(bind)
        if fresh is None:
            return self

        self._attributes = dict(fresh._attributes)
        self.sync_original()
        if self._relations:
            await self.load(*self._relations)

        return self


def model_base(name: str = "Model", metadata: ModelMetadata = None) -> ModelMeta:
    """
    Gets a new base object to use for models.

    .. code-block:: python3

        Model = model_base()

        class User(Model):
            ...

    Binding the base object to the database object is essential for querying:

    .. code-block:: python3

        db.bind_models(Model)
        user = await User.find(1)

    :param name: The name of the new class to produce. By default, it is ``Model``.
    :param metadata: The :class:`.ModelMetadata` to use as metadata.
    :return: A new Model class that can be used as a base for models.
    """
    if metadata is None:
        metadata = ModelMetadata()

    clone = ModelMeta.__new__(ModelMeta, name, (Model,), {"metadata": metadata,
                                                           "__is_base__": True},
                              register=False)
    return clone
