"""Fire-and-forget side effects run after the response is sent."""

import inspect
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


async def run_side_effect(name: str, func: Callable[..., Any], *args, **kwargs) -> None:
    """
    Run a side effect, logging and swallowing any failure.

    Used for spreadsheet sync and notifications, whose failure must never
    affect the workflow state that has already been committed.
    """
    try:
        result = func(*args, **kwargs)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception(f"Side effect '{name}' failed")
