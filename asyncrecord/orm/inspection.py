"""
Inspection module - contains utilities for inspecting Model classes and instances.
"""
import typing

from asyncrecord.orm import model as md_model


def get_pk(instance: 'md_model.Model') -> typing.Any:
    """
    Gets the primary key value of a model instance.

    :param instance: The :class:`.Model` instance to extract the PK from.
    """
    return instance.get_key()


def get_bind(instance: 'typing.Union[md_model.Model, md_model.ModelMeta]'):
    """
    Gets the executor a model class or instance runs its queries on.

    For instances, this is the executor the row was loaded or saved through, if any.

    :raises ConfigurationError: If no executor could be found.
    """
    if isinstance(instance, md_model.Model) and instance._bind is not None:
        return instance._bind

    model = instance if isinstance(instance, type) else type(instance)
    return model.get_bind()


def get_row_history(instance: 'md_model.Model') -> 'typing.Dict[str, typing.Dict[str, typing.Any]]':
    """
    Gets the changes of a model instance since it was last loaded or saved.

    .. code-block:: python3

        user.name = "Laura"
        get_row_history(user)  # {"name": {"old": "Lars", "new": "Laura"}}

    Values are in their stored (serialized) form.
    """
    original = instance.get_original()
    return {
        key: {"old": original.get(key), "new": value}
        for key, value in instance.get_dirty().items()
    }


def is_loaded(instance: 'md_model.Model', relation: str) -> bool:
    """
    Checks if a relation has been loaded onto a model instance.
    """
    return instance.relation_loaded(relation)
