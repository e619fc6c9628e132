"""Bounded retry policy for polling chain state.

Replaces ad-hoc "try 20 times" loops: callers inject a RetryPolicy so the
attempt ceiling and backoff are tunable and testable on their own.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from loguru import logger

from src.bundler.errors import ResourceUnavailable, TransportError

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 20
    backoff: float = 1.0  # seconds before the 2nd attempt
    multiplier: float = 1.0  # 1.0 = fixed interval
    max_backoff: float = 10.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff < 0:
            raise ValueError("backoff must be >= 0")

    def delay(self, attempt: int) -> float:
        """Sleep before attempt ``attempt + 1`` (attempt is 0-based)."""
        return min(self.backoff * (self.multiplier**attempt), self.max_backoff)

    async def poll(
        self,
        fetch: Callable[[], Awaitable[T | None]],
        *,
        label: str,
        hint: str = "",
    ) -> T:
        """Call ``fetch`` until it returns a non-None value.

        Absence (None) and transport errors both count as a failed attempt.
        Raises ResourceUnavailable once max_attempts is exhausted.
        """
        last_error: str = "not found"
        for attempt in range(self.max_attempts):
            try:
                value = await fetch()
            except TransportError as e:
                value = None
                last_error = str(e)
            if value is not None:
                if attempt:
                    logger.debug(f"[RETRY] {label} visible after {attempt + 1} attempts")
                return value

            if attempt < self.max_attempts - 1:
                await asyncio.sleep(self.delay(attempt))

        msg = f"{label} unavailable after {self.max_attempts} attempts ({last_error})"
        if hint:
            msg = f"{msg}. {hint}"
        logger.warning(f"[RETRY] {msg}")
        raise ResourceUnavailable(msg)
