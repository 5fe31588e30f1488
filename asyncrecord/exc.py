"""
Exceptions for asyncrecord.
"""


class DatabaseException(Exception):
    """
    The base class for ALL exceptions.

    Catch this if you wish to catch any custom exception raised inside the lib.
    """


class IntegrityError(DatabaseException):
    """
    Raised when a column's integrity is not preserved (e.g. null or unique violations).
    """


class OperationalError(DatabaseException):
    """
    Raised when an operational error has occurred.
    """


class ConfigurationError(DatabaseException):
    """
    Raised when a model is used without a database bound to it, or to its base.
    """


class UnsupportedOperationException(DatabaseException):
    """
    Raised when an operation is requested that the current dialect (or model) cannot perform.
    """


class ModelNotFoundError(DatabaseException):
    """
    Raised by the ``*_or_fail`` methods when no row matched.
    """


class NoSuchRelationshipError(DatabaseException):
    """
    Raised when a non-existing relationship is requested.
    """


class CastError(DatabaseException):
    """
    Raised when a value cannot be converted by a cast, or the cast does not exist.
    """
