"""Per-account pacing of mailbox actions."""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0


class RateLimiter:
    """
    Enforces a minimum delay between actions and a sliding one-minute cap.

    One instance belongs to one account processor; it is not shared.
    """

    def __init__(
        self,
        max_actions_per_minute: int,
        inter_action_delay: float = 0.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Args:
            max_actions_per_minute: Actions allowed in any trailing 60 seconds.
            inter_action_delay: Minimum seconds between consecutive actions.
            clock: Monotonic time source.
            sleep: Coroutine used to wait.
        """
        if max_actions_per_minute < 1:
            raise ValueError("max_actions_per_minute must be at least 1")
        self.max_actions_per_minute = max_actions_per_minute
        self.inter_action_delay = max(inter_action_delay, 0.0)
        self._clock = clock
        self._sleep = sleep
        self._window: deque[float] = deque()
        self._last: float | None = None

    def _delay_remaining(self, now: float) -> float:
        if self._last is None:
            return 0.0
        return max(self._last + self.inter_action_delay - now, 0.0)

    def _window_remaining(self, now: float) -> float:
        while self._window and self._window[0] <= now - WINDOW_SECONDS:
            self._window.popleft()
        if len(self._window) < self.max_actions_per_minute:
            return 0.0
        return self._window[0] + WINDOW_SECONDS - now

    async def wait_interval(self) -> None:
        """Wait out the inter-action delay without consuming window capacity."""
        wait = self._delay_remaining(self._clock())
        if wait > 0:
            await self._sleep(wait)
        self._last = self._clock()

    async def acquire(self) -> None:
        """Block until another action is allowed, then record it."""
        while True:
            now = self._clock()
            wait = max(self._delay_remaining(now), self._window_remaining(now))
            if wait <= 0:
                break
            logger.debug("Rate limit reached, waiting %.2fs", wait)
            await self._sleep(wait)

        now = self._clock()
        self._window.append(now)
        self._last = now

    @property
    def actions_in_window(self) -> int:
        self._window_remaining(self._clock())
        return len(self._window)
