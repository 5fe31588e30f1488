"""
Miscellaneous utilities used throughout the library.
"""
import typing


def as_list(value: typing.Any) -> list:
    """
    Wraps a single value in a list. Lists, tuples, sets and other non-string iterables are copied
    into a new list as-is.
    """
    if value is None:
        return []

    if isinstance(value, (str, bytes, dict)) or not isinstance(value, typing.Iterable):
        return [value]

    return list(value)


def unique(values: typing.Iterable[typing.Any]) -> list:
    """
    De-duplicates a list of values, keeping the first-seen order and dropping ``None``.
    """
    return list(dict.fromkeys(value for value in values if value is not None))


def model_keys(values: typing.Iterable[typing.Any]) -> list:
    """
    Turns a mix of model instances and raw keys into a list of raw keys.
    """
    keys = []
    for value in as_list(values):
        get_key = getattr(value, "get_key", None)
        keys.append(get_key() if callable(get_key) else value)

    return keys
