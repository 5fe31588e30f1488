"""
Sentinel values.
"""


class _Sentinel(object):
    __slots__ = ("name",)

    def __init__(self, name: str):
        self.name = name

    def __repr__(self):
        return "<{}>".format(self.name)

    def __bool__(self):
        return False


#: Marks an argument that was not passed at all, as opposed to ``None``.
NO_VALUE = _Sentinel("NO_VALUE")
