"""
Declined-operation handling for the lifecycle controllers.

Controllers raise ``OperationDeclined`` for validation, not-found,
authorization and state-conflict failures. The ``returns_result`` decorator
turns those into ``{"success": False, "error": ..., "reason": ...}`` payloads
so callers never see them as exceptions. Anything else (database or
transport errors) propagates.
"""

import enum
import functools
import logging
from typing import Any, Awaitable, Callable, Dict

from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class DeclineReason(str, enum.Enum):
    """Category of a declined operation."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"


class OperationDeclined(ValueError):
    """An operation was refused; carries a human-readable message."""

    def __init__(self, message: str, reason: DeclineReason = DeclineReason.VALIDATION):
        super().__init__(message)
        self.message = message
        self.reason = reason

    def to_result(self) -> Dict[str, Any]:
        return {"success": False, "error": self.message, "reason": self.reason.value}


class InvalidMatchSize(OperationDeclined):
    """Match size is odd, out of range, or does not match the player count."""

    def __init__(self, message: str):
        super().__init__(message, DeclineReason.VALIDATION)


class InsufficientPlayers(OperationDeclined):
    """Fewer eligible players than the requested match size."""

    def __init__(self, message: str):
        super().__init__(message, DeclineReason.CONFLICT)


def not_found(message: str) -> OperationDeclined:
    return OperationDeclined(message, DeclineReason.NOT_FOUND)


def forbidden(message: str) -> OperationDeclined:
    return OperationDeclined(message, DeclineReason.FORBIDDEN)


def conflict(message: str) -> OperationDeclined:
    return OperationDeclined(message, DeclineReason.CONFLICT)


def returns_result(
    func: Callable[..., Awaitable[Dict[str, Any]]]
) -> Callable[..., Awaitable[Dict[str, Any]]]:
    """
    Wrap a controller coroutine so declines become result payloads.

    The wrapped coroutine must take the database session as its first
    argument; it is rolled back before the declined payload is returned.
    """

    @functools.wraps(func)
    async def wrapper(session: AsyncSession, *args, **kwargs) -> Dict[str, Any]:
        try:
            payload = await func(session, *args, **kwargs)
        except OperationDeclined as e:
            await session.rollback()
            logger.debug(f"{func.__name__} declined ({e.reason.value}): {e.message}")
            return e.to_result()
        return {"success": True, **(payload or {})}

    return wrapper
