"""
Main package for asyncrecord - an asyncio active record ORM for Python 3.

.. currentmodule:: asyncrecord

.. autosummary::
    :toctree:

    db
    orm
    backends

    exc
    meta
    utils
"""

__author__ = "asyncrecord contributors"
__copyright__ = "Copyright (C) 2026 asyncrecord contributors"

__licence__ = "MIT"
__status__ = "Development"

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version(__name__)
except PackageNotFoundError:
    # package is not installed
    pass

from asyncrecord.backends.base import BaseConnector, BaseDialect, BaseTransaction, DictRow
from asyncrecord.db import DatabaseInterface
from asyncrecord.exc import *
# orm
from asyncrecord.orm.builder import ModelQueryBuilder
from asyncrecord.orm.casts import Cast, CastRegistry
from asyncrecord.orm.compiler import QueryCompiler, QueryState
from asyncrecord.orm.hooks import HookRunner
from asyncrecord.orm.inspection import get_bind, get_pk, get_row_history, is_loaded
from asyncrecord.orm.model import Model, ModelMetadata, model_base
from asyncrecord.orm.query import Page, QueryBuilder
from asyncrecord.orm.relationship import Relationship, belongs_to, belongs_to_many, has_many, \
    has_one
from asyncrecord.orm.scopes import ScopeRegistry, SoftDeleteScope
