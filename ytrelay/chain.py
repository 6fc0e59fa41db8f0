"""
Fallback-chain driver.

Strategies are tried in order. An attempt either returns a payload or raises
StrategyFailed; recoverable failures move on to the next strategy, fatal ones
end the chain straight away. Whatever happened last is what gets reported.
"""

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Iterable, Tuple, TypeVar

from .errors import ChainFailed, StrategyFailed

logger = logging.getLogger(__name__)

S = TypeVar("S")

FATAL_MARKERS = re.compile(
    r"video unavailable|private video|this video has been removed|"
    r"this video is no longer available|unsupported url|is not a valid url|"
    r"incomplete youtube id",
    re.IGNORECASE,
)


def strategy_name(strategy) -> str:
    return getattr(strategy, "name", str(strategy))


def classify(stderr: str) -> bool:
    """True if the diagnostic output means no other strategy can help."""
    return bool(FATAL_MARKERS.search(stderr or ""))


def last_lines(text: str, count: int = 6) -> str:
    lines = [line for line in (text or "").strip().splitlines() if line.strip()]
    return "\n".join(lines[-count:])


async def run_chain(
    strategies: Iterable[S],
    attempt: Callable[[S], Awaitable[Any]],
    delay: float = 0.0,
) -> Tuple[S, Any]:
    tried = []
    reason = "No strategies available"
    strategies = list(strategies)

    for index, strategy in enumerate(strategies):
        name = strategy_name(strategy)
        tried.append(name)
        logger.info(f"Trying method: {name}")
        try:
            payload = await attempt(strategy)
        except StrategyFailed as e:
            reason = e.reason
            if e.fatal:
                logger.error(f"Method {name} failed fatally: {reason}")
                raise ChainFailed(reason, tried, fatal=True) from e
            logger.warning(f"Method {name} failed: {reason}")
            if delay and index < len(strategies) - 1:
                await asyncio.sleep(delay)
            continue
        logger.info(f"Method {name} succeeded")
        return strategy, payload

    raise ChainFailed(reason, tried)
