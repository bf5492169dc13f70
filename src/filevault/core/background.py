"""Helpers for side effects that must never fail the caller."""

import logging
from typing import Any, Awaitable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def best_effort(operation: Awaitable[T], action: str, **context: Any) -> Optional[T]:
    """Await ``operation``, logging and swallowing any exception it raises.

    Args:
        operation: Awaitable to run
        action: Short description used in the log message
        **context: Extra fields attached to the log record

    Returns:
        The operation's result, or None if it failed
    """
    try:
        return await operation
    except Exception as e:
        logger.warning(
            f"Best-effort {action} failed: {e}",
            extra={"action": action, "error_type": type(e).__name__, **context},
            exc_info=True,
        )
        return None
