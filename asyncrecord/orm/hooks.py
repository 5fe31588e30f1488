"""
Model lifecycle hooks.
"""
import collections
import inspect
import logging
import typing

logger = logging.getLogger(__name__)

#: The names of every hook a model fires.
HOOK_NAMES = (
    "saving", "saved",
    "creating", "created",
    "updating", "updated",
    "deleting", "deleted",
    "restoring", "restored",
)


class HookRunner(object):
    """
    A registry of hook callbacks, keyed by model class and hook name.

    Callbacks receive the model instance, and may be plain functions or coroutine functions. A
    callback that returns ``False`` (exactly ``False``, not just something falsey) aborts the
    operation the hook wraps.
    """

    def __init__(self):
        self._callbacks = collections.defaultdict(list)

    def __repr__(self):
        return "<HookRunner callbacks={}>".format(sum(len(c) for c in self._callbacks.values()))

    @staticmethod
    def _check_name(name: str):
        if name not in HOOK_NAMES:
            raise ValueError("Unknown hook {}, expected one of {}".format(name,
                                                                         ", ".join(HOOK_NAMES)))

    def on(self, model: type, name: str, callback: typing.Callable):
        """
        Registers a callback.

        :param model: The model class the callback is for.
        :param name: The name of the hook.
        :param callback: The callback to run.
        """
        self._check_name(name)
        self._callbacks[model, name].append(callback)
        return callback

    def callbacks(self, model: type, name: str) -> typing.List[typing.Callable]:
        """
        Gets the callbacks for a hook, in registration order.
        """
        self._check_name(name)
        return list(self._callbacks.get((model, name), ()))

    def clear(self, model: type = None):
        """
        Removes every callback, or every callback of one model class.
        """
        if model is None:
            self._callbacks.clear()
            return

        for key in [key for key in self._callbacks if key[0] is model]:
            del self._callbacks[key]

    async def run(self, name: str, instance) -> bool:
        """
        Runs the callbacks of a hook for a model instance.

        :return: False if a callback aborted the operation, True otherwise.
        """
        for callback in self.callbacks(type(instance), name):
            result = callback(instance)
            if inspect.isawaitable(result):
                result = await result

            if result is False:
                logger.debug("Hook {} aborted for {!r}".format(name, instance))
                return False

        return True
