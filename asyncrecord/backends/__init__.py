"""
Backends for asyncrecord. Each sub-package holds the :class:`.BaseDialect` for a database server
and one or more connector modules that talk to it.

.. autosummary::
    :toctree:

    base
    sqlite3
    postgresql
    mysql
"""
