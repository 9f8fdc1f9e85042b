# underwriter/utils.py
"""Small helpers shared by guarantors and directories."""

import inspect
from typing import Any, Awaitable, Callable, Dict, TypeVar, Union

T = TypeVar("T")


def format_name(value: Any) -> str:
    """Normalize an identifier or qualifier: coerce to str and lower-case it."""
    return f"{value}".lower()


def is_identifier(value: Any) -> bool:
    """True for a non-empty string."""
    return isinstance(value, str) and len(value) > 0


def initialize_if_needed(mapping: Dict[str, T], name: str, factory: Callable[[], T]) -> T:
    """
    Return mapping[name], creating it with factory() when missing.

    Check and insert happen without yielding to the event loop.
    """
    if name not in mapping:
        mapping[name] = factory()
    return mapping[name]


async def maybe_await(value: Union[T, Awaitable[T]]) -> T:
    """Await value if it is awaitable, otherwise return it as-is."""
    if inspect.isawaitable(value):
        return await value
    return value
