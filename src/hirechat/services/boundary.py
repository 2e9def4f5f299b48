"""Failure isolation for the public chat sync entry points.

Chat synchronization must never break the domain operation that triggered
it. Entry points decorated with :func:`soft_failure` log whatever goes wrong
and return ``None`` instead of raising.
"""

from __future__ import annotations

import functools
import inspect
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from hirechat.services.errors import CredentialIntegrityError, MissingCredentialError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def _entity_id(
    signature: inspect.Signature,
    entity: str | None,
    args: tuple[Any, ...],
    kwargs: dict[str, Any],
) -> Any:
    if entity is None:
        return None
    try:
        bound = signature.bind_partial(*args, **kwargs)
    except TypeError:
        return None
    value = bound.arguments.get(entity)
    return getattr(value, "id", value)


def _report(operation: str, entity_id: Any, exc: BaseException) -> None:
    if isinstance(exc, MissingCredentialError):
        logger.debug("Skipped %s for entity %s: %s", operation, entity_id, exc)
    elif isinstance(exc, CredentialIntegrityError):
        logger.error(
            "Credential integrity violation during %s for entity %s: %s",
            operation,
            entity_id,
            exc,
        )
    else:
        logger.warning(
            "Chat sync %s failed for entity %s: %s: %s",
            operation,
            entity_id,
            type(exc).__name__,
            exc,
            exc_info=logger.isEnabledFor(logging.DEBUG),
        )


def soft_failure(operation: str, entity: str | None = None) -> Callable[[F], F]:
    """Turn any failure of the decorated entry point into a logged no-op.

    Args:
        operation: Operation kind used in log messages
        entity: Name of the argument identifying the owning entity; its
            ``id`` attribute (or the value itself) is logged

    Works for both coroutine functions and plain functions.
    """

    def decorator(func: F) -> F:
        signature = inspect.signature(func)

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                try:
                    return await func(*args, **kwargs)
                except Exception as exc:
                    _report(operation, _entity_id(signature, entity, args, kwargs), exc)
                    return None

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                _report(operation, _entity_id(signature, entity, args, kwargs), exc)
                return None

        return wrapper  # type: ignore[return-value]

    return decorator
