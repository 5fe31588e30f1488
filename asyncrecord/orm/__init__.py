"""
The core code for the ORM.

.. currentmodule:: asyncrecord.orm

.. autosummary::
    :toctree:

    operators
    compiler
    query

    model
    builder
    relationship

    casts
    scopes
    hooks
    inspection

"""
