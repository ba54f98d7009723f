"""
Concurrency Helpers

settle_all joins independent side effects without failing fast: every
coroutine runs to completion and its result or exception is handed back,
keyed by name.
"""

import asyncio
import logging
from typing import Any, Awaitable, Dict

logger = logging.getLogger(__name__)


async def settle_all(**awaitables: Awaitable[Any]) -> Dict[str, Any]:
    """
    Run awaitables concurrently and collect every outcome.

    One failing awaitable never cancels or blocks the others. Exceptions are
    returned in place of results; cancellation of the caller still propagates.

    Usage:
        outcomes = await settle_all(
            early_termination=service.process(...),
            subscription_cancel=orchestrator.cancel_all(...),
        )
        if isinstance(outcomes['subscription_cancel'], Exception):
            ...

    Returns:
        Dict mapping each keyword to its result or raised Exception
    """
    if not awaitables:
        return {}

    names = list(awaitables)
    results = await asyncio.gather(*awaitables.values(), return_exceptions=True)

    settled: Dict[str, Any] = {}
    for name, result in zip(names, results):
        if isinstance(result, BaseException) and not isinstance(result, Exception):
            raise result
        if isinstance(result, Exception):
            logger.debug(f"[SETTLE] {name} failed: {type(result).__name__}: {result}")
        settled[name] = result
    return settled
