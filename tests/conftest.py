"""
py.test configuration
"""
import sqlite3

import pytest
import pytest_asyncio

from asyncrecord import DatabaseInterface
from asyncrecord.backends.sqlite3 import Sqlite3Dialect

from blog import SCHEMA, CountingExecutor, Model


class ReturningSqlite3Dialect(Sqlite3Dialect):
    """
    SQLite 3.35+ understands RETURNING; this lets the RETURNING code paths run without a server.
    """

    @property
    def has_returns(self):
        return True


@pytest_asyncio.fixture
async def db() -> DatabaseInterface:
    iface = DatabaseInterface("sqlite3:///:memory:")
    await iface.connect()
    for statement in SCHEMA:
        await iface.raw(statement)

    iface.bind_models(Model)
    yield iface

    Model.metadata.hooks.clear()
    Model.metadata.binds.clear()
    Model.metadata.bind = None
    await iface.close()


@pytest_asyncio.fixture
async def returning_db(db: DatabaseInterface) -> DatabaseInterface:
    if sqlite3.sqlite_version_info < (3, 35, 0):
        pytest.skip("SQLite {} has no RETURNING".format(sqlite3.sqlite_version))

    db.dialect = db.connector.dialect = ReturningSqlite3Dialect()
    return db


@pytest.fixture
def counter(db: DatabaseInterface) -> CountingExecutor:
    return CountingExecutor(db)
