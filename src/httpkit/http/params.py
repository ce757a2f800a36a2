"""
Path parameters captured by the router.

A route pattern like ``/users/:id/files/*path`` yields an ordered list of
(key, value) pairs. Order follows the pattern, left to right.
"""

from typing import NamedTuple


class Param(NamedTuple):
    """A single matched path parameter."""
    key: str
    value: str


class Params(list):
    """
    Ordered list of matched path parameters.

        params = Params([Param("id", "42")])
        params.by_name("id")       # "42"
        params.by_name("missing")  # ""
    """

    def by_name(self, name: str) -> str:
        """Value of the first parameter called `name`, or empty string."""
        for param in self:
            if param.key == name:
                return param.value
        return ""

    def to_dict(self) -> dict:
        return {param.key: param.value for param in self}
