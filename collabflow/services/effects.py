"""Non-critical side effects that must never fail the request that queued them."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_best_effort(name: str, func: Callable[[], Awaitable[T]]) -> T | None:
    """Await ``func()``; on failure log and return None."""
    try:
        return await func()
    except Exception:
        logger.exception("Best-effort step %r failed", name)
        return None


class NonCriticalEffects:
    """Ordered queue of named async callables run after the primary write commits.

    Each effect is guarded independently, so one failure does not stop the rest.
    """

    def __init__(self) -> None:
        self._effects: list[tuple[str, Callable[[], Awaitable[object]]]] = []

    def add(self, name: str, func: Callable[[], Awaitable[object]]) -> None:
        self._effects.append((name, func))

    def __len__(self) -> int:
        return len(self._effects)

    async def run(self) -> list[str]:
        """Run and clear the queue; returns the names of effects that failed."""
        effects, self._effects = self._effects, []
        failed: list[str] = []
        for name, func in effects:
            try:
                await func()
            except Exception:
                logger.exception("Non-critical effect %r failed", name)
                failed.append(name)
        return failed
