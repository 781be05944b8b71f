"""Condition-based waits shared by the session pool and the strategies."""

import asyncio
import inspect
import logging
from typing import Any, Callable

from playwright.async_api import Error as PlaywrightError

logger = logging.getLogger(__name__)


async def wait_for_condition(
    predicate: Callable[[], Any],
    timeout: float,
    interval: float = 0.5,
) -> bool:
    """
    Poll ``predicate`` (sync or async) until it is truthy or ``timeout`` elapses.

    Returns True as soon as the condition holds, False on timeout. Exceptions raised
    by the predicate propagate.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        result = predicate()
        if inspect.isawaitable(result):
            result = await result
        if result:
            return True
        remaining = deadline - loop.time()
        if remaining <= 0:
            return False
        await asyncio.sleep(min(interval, remaining))


async def close_quietly(resource) -> None:
    """Close a page/context, ignoring a browser that is already gone."""
    if resource is None:
        return
    try:
        await resource.close()
    except PlaywrightError as e:
        logger.debug(f"Ignoring close error: {e}")
