"""Message processing: action execution, pacing, retries and orchestration."""

from mailwarden.processing.context import MAX_CHAIN_DEPTH, ActionResult, ProcessingContext
from mailwarden.processing.executor import ActionExecutor, parse_flag
from mailwarden.processing.processor import (
    AccountProcessor,
    AccountRunResult,
    MessageOutcome,
    open_session,
    process_accounts,
)
from mailwarden.processing.ratelimit import RateLimiter
from mailwarden.processing.retry import ErrorClass, RetryPolicy, classify_error

__all__ = [
    "MAX_CHAIN_DEPTH",
    "AccountProcessor",
    "AccountRunResult",
    "ActionExecutor",
    "ActionResult",
    "ErrorClass",
    "MessageOutcome",
    "ProcessingContext",
    "RateLimiter",
    "RetryPolicy",
    "classify_error",
    "open_session",
    "process_accounts",
    "parse_flag",
]
