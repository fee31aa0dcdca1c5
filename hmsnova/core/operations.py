"""Top-level guard for lifecycle operations."""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

import structlog

from hmsnova.core.errors import AppError, InternalError

_log = structlog.get_logger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


def lifecycle_operation(
    name: str,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """
    Wrap an async service method so that only AppErrors escape it.

    Anything else is logged with its traceback and re-raised as a generic
    InternalError carrying just the operation name.
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            try:
                return await func(*args, **kwargs)
            except AppError:
                raise
            except Exception as exc:
                _log.exception("lifecycle_operation_failed", operation=name)
                raise InternalError(name) from exc

        return wrapper

    return decorator
