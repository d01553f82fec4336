"""
Jakson — Results and DTOs
===========================

What:  The terminal output of request handling and the plain-DTO check applied
       to every handler output.
"""

from dataclasses import dataclass
from typing import Any


@dataclass
class Result:
    """Status code and JSON-serializable body of a response."""

    status: int
    body: Any


def is_plain_dto(obj: Any) -> bool:
    """
    Return True if `obj` can go on the wire as-is.

    Plain DTOs are None, str, int, float, bool, and lists/tuples/dicts made of
    plain DTOs (dict keys must be strings). Anything else, like pydantic models,
    dataclasses, datetimes or ORM objects, must be converted by the handler.

    >>> is_plain_dto({"id": 1, "roles": ["admin"]})
    True
    >>> is_plain_dto([{"id": 1}, object()])
    False
    """
    if obj is None or isinstance(obj, (str, bool, int, float)):
        return True
    if isinstance(obj, (list, tuple)):
        return all(is_plain_dto(item) for item in obj)
    if type(obj) is dict:
        return all(isinstance(key, str) and is_plain_dto(value) for key, value in obj.items())
    return False
