"""Bounded fixed-delay retry for transport operations."""

import asyncio
import imaplib
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TypeVar

from mailwarden.mail.errors import TransientMailboxError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorClass(str, Enum):
    """Whether an error is worth another attempt."""

    RETRYABLE = "retryable"
    PERMANENT = "permanent"


def classify_error(error: BaseException) -> ErrorClass:
    """Classify an exception raised by a transport operation."""
    match error:
        case TransientMailboxError() | TimeoutError() | ConnectionError():
            return ErrorClass.RETRYABLE
        case imaplib.IMAP4.abort():
            return ErrorClass.RETRYABLE
        case _:
            return ErrorClass.PERMANENT


class RetryPolicy:
    """Retries retryable failures a fixed number of times with a fixed delay."""

    def __init__(
        self,
        max_attempts: int = 3,
        delay: float = 2.0,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.delay = delay
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: int | None = None,
        delay: float | None = None,
        *,
        description: str = "operation",
    ) -> T:
        """
        Run an operation, retrying retryable errors.

        Up to ``max_attempts - 1`` guarded attempts are made; the last attempt
        is unguarded, so its error propagates as-is. Permanent errors
        propagate immediately.

        Args:
            operation: Zero-argument coroutine factory.
            max_attempts: Overrides the policy's attempt count.
            delay: Overrides the policy's delay in seconds.
            description: Label used in log messages.

        Returns:
            The operation's result.
        """
        attempts = max_attempts if max_attempts is not None else self.max_attempts
        wait = delay if delay is not None else self.delay

        attempt = 1
        while attempt < attempts:
            try:
                return await operation()
            except Exception as e:
                if classify_error(e) is ErrorClass.PERMANENT:
                    raise
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                    description,
                    attempt,
                    attempts,
                    e,
                    wait,
                )
            await self._sleep(wait)
            attempt += 1

        return await operation()
