"""
Attribute casts.

A cast converts an attribute between the form stored in the database and the form used in Python.
Models declare them in their ``casts`` mapping:

.. code-block:: python3

    class User(Model):
        casts = {
            "is_admin": "boolean",
            "settings": "json",
            "birthday": "date",
            "ip": Cast(serialize=str, deserialize=ipaddress.ip_address),
        }

"""
import datetime
import json
import typing

from asyncrecord.exc import CastError


class Cast(object):
    """
    A pair of conversion functions.

    Any object with ``serialize`` and ``deserialize`` methods can be used as a cast; this class
    builds one out of two plain callables.
    """

    def __init__(self, serialize: typing.Callable[[typing.Any], typing.Any],
                 deserialize: typing.Callable[[typing.Any], typing.Any], name: str = None):
        """
        :param serialize: Converts a Python value into the stored value.
        :param deserialize: Converts a stored value into the Python value.
        :param name: The name of this cast, used in error messages.
        """
        self._serialize = serialize
        self._deserialize = deserialize
        self.name = name or "custom"

    def __repr__(self):
        return "<Cast {}>".format(self.name)

    def serialize(self, value: typing.Any) -> typing.Any:
        return self._serialize(value)

    def deserialize(self, value: typing.Any) -> typing.Any:
        return self._deserialize(value)


def _to_bool(value):
    if isinstance(value, str):
        return value.strip().lower() not in ("", "0", "false", "f", "no")

    return bool(value)


def _json_serialize(value):
    return json.dumps(value)


def _json_deserialize(value):
    if isinstance(value, (str, bytes)):
        return json.loads(value)

    return value


def _date_serialize(value):
    if isinstance(value, datetime.datetime):
        return value.date().isoformat()

    if isinstance(value, datetime.date):
        return value.isoformat()

    return _date_deserialize(value).isoformat()


def _date_deserialize(value):
    if isinstance(value, datetime.datetime):
        return value.date()

    if isinstance(value, datetime.date):
        return value

    # accept full datetime text too
    return datetime.date.fromisoformat(str(value)[:10])


def _datetime_serialize(value):
    if isinstance(value, datetime.datetime):
        return value.isoformat()

    return _datetime_deserialize(value).isoformat()


def _datetime_deserialize(value):
    if isinstance(value, datetime.datetime):
        return value

    if isinstance(value, datetime.date):
        return datetime.datetime(value.year, value.month, value.day)

    return datetime.datetime.fromisoformat(str(value))


def _timestamp_serialize(value):
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        return int(value.timestamp() * 1000)

    return int(value)


def _timestamp_deserialize(value):
    if isinstance(value, datetime.datetime):
        return value

    millis = float(value)
    return datetime.datetime.fromtimestamp(millis / 1000, tz=datetime.timezone.utc)


#: The built-in casts, by name.
BUILTIN_CASTS = {
    "boolean": Cast(lambda value: 1 if _to_bool(value) else 0, _to_bool, name="boolean"),
    "integer": Cast(int, int, name="integer"),
    "float": Cast(float, float, name="float"),
    "json": Cast(_json_serialize, _json_deserialize, name="json"),
    "date": Cast(_date_serialize, _date_deserialize, name="date"),
    "datetime": Cast(_datetime_serialize, _datetime_deserialize, name="datetime"),
    "timestamp": Cast(_timestamp_serialize, _timestamp_deserialize, name="timestamp"),
}


class CastRegistry(object):
    """
    The casts of a single model, keyed by attribute name.

    ``None`` is never passed to a cast; it is stored and read back as ``None``.
    """

    def __init__(self, casts: typing.Mapping[str, typing.Any] = None):
        self._casts = {}
        for key, definition in (casts or {}).items():
            self._casts[key] = self.resolve(definition)

    def __contains__(self, key: str):
        return key in self._casts

    def __repr__(self):
        return "<CastRegistry {}>".format(sorted(self._casts))

    @staticmethod
    def resolve(definition: typing.Any):
        """
        Gets the cast object for a cast definition.

        :param definition: The name of a built-in cast, or an object with ``serialize`` and \
            ``deserialize`` methods.
        :raises CastError: If the name is not a built-in cast.
        """
        if isinstance(definition, str):
            try:
                return BUILTIN_CASTS[definition]
            except KeyError:
                raise CastError("Unknown cast: {}".format(definition)) from None

        if not (hasattr(definition, "serialize") and hasattr(definition, "deserialize")):
            raise CastError("Cast {!r} has no serialize/deserialize methods".format(definition))

        return definition

    def _convert(self, key: str, value: typing.Any, method: str):
        cast = self._casts.get(key)
        if cast is None or value is None:
            return value

        try:
            return getattr(cast, method)(value)
        except (TypeError, ValueError) as e:
            raise CastError("Cannot {} {!r} for {} with the {} cast".format(
                method, value, key, getattr(cast, "name", type(cast).__name__))) from e

    def serialize(self, key: str, value: typing.Any) -> typing.Any:
        """
        Converts a Python value into its stored form.
        """
        return self._convert(key, value, "serialize")

    def deserialize(self, key: str, value: typing.Any) -> typing.Any:
        """
        Converts a stored value into its Python form.
        """
        return self._convert(key, value, "deserialize")
