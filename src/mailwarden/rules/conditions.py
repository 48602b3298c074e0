"""Condition definitions for rule matching."""

import re
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from mailwarden.mail.messages import Message


class MatchType(str, Enum):
    """How top-level sub-conditions are combined."""

    ALL = "all"
    ANY = "any"


class TextCondition(BaseModel):
    """
    A text test applied to a header or body.

    Only one operator is honored: the first populated of contains,
    starts_with, ends_with, equals, regex.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    contains: str | None = None
    starts_with: str | None = None
    ends_with: str | None = None
    equals: str | None = None
    regex: str | None = None
    case_sensitive: bool = Field(default=False, description="Case-sensitive matching")

    @model_validator(mode="before")
    @classmethod
    def _accept_case_insensitive(cls, data: Any) -> Any:
        if isinstance(data, dict):
            for key in ("case_insensitive", "caseInsensitive"):
                if key in data:
                    data = dict(data)
                    data.setdefault("case_sensitive", not data.pop(key))
        return data

    @model_validator(mode="after")
    def _check_operator(self) -> "TextCondition":
        if all(
            v is None
            for v in (self.contains, self.starts_with, self.ends_with, self.equals, self.regex)
        ):
            raise ValueError(
                "Text condition needs one of contains, starts_with, ends_with, equals, regex"
            )
        if self.regex is not None:
            try:
                re.compile(self.regex)
            except re.error as e:
                raise ValueError(f"Invalid regex {self.regex!r}: {e}") from e
        return self

    def matches(self, text: str) -> bool:
        """Check a single string against the condition."""
        if self.contains is not None:
            return self._fold(self.contains) in self._fold(text)
        if self.starts_with is not None:
            return self._fold(text).startswith(self._fold(self.starts_with))
        if self.ends_with is not None:
            return self._fold(text).endswith(self._fold(self.ends_with))
        if self.equals is not None:
            return self._fold(text) == self._fold(self.equals)
        flags = 0 if self.case_sensitive else re.IGNORECASE
        return re.search(str(self.regex), text, flags) is not None

    def matches_any(self, values: tuple[str, ...] | list[str]) -> bool:
        return any(self.matches(v) for v in values)

    def _fold(self, value: str) -> str:
        return value if self.case_sensitive else value.lower()


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DateCondition(BaseModel):
    """Received-date test; every populated check must hold."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    before: datetime | None = None
    after: datetime | None = None
    within_last_days: int | None = Field(default=None, ge=0)
    older_than_days: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_populated(self) -> "DateCondition":
        if all(
            v is None
            for v in (self.before, self.after, self.within_last_days, self.older_than_days)
        ):
            raise ValueError(
                "Date condition needs one of before, after, within_last_days, older_than_days"
            )
        return self

    def matches(self, received: datetime | None, now: datetime | None = None) -> bool:
        if received is None:
            return False
        received = _as_utc(received)
        now = _as_utc(now) if now else datetime.now(timezone.utc)

        if self.before is not None and not received < _as_utc(self.before):
            return False
        if self.after is not None and not received > _as_utc(self.after):
            return False
        if self.within_last_days is not None:
            if not received > now - timedelta(days=self.within_last_days):
                return False
        if self.older_than_days is not None:
            if not received < now - timedelta(days=self.older_than_days):
                return False
        return True


class Condition(BaseModel):
    """
    Top-level condition of a rule.

    Each populated field yields one result; results are AND-ed for
    ``match_type: all`` and OR-ed for ``match_type: any``. A condition with
    nothing populated matches every message.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    match_type: MatchType = MatchType.ALL
    from_: TextCondition | None = Field(default=None, alias="from")
    to: TextCondition | None = None
    subject: TextCondition | None = None
    body: TextCondition | None = None
    has_attachment: bool | None = None
    is_flagged: bool | None = None
    is_unread: bool | None = None
    received: DateCondition | None = None
    size_greater_than_kb: float | None = Field(default=None, ge=0)
    size_less_than_kb: float | None = Field(default=None, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _accept_camel_match_type(cls, data: Any) -> Any:
        if isinstance(data, dict) and "matchType" in data:
            data = dict(data)
            data.setdefault("match_type", data.pop("matchType"))
        return data

    def matches(self, message: Message, now: datetime | None = None) -> bool:
        """
        Check if the message matches this condition.

        Args:
            message: The message to check.
            now: Reference time for relative date checks (default: current time).

        Returns:
            True if the condition matches.
        """
        results = self._results(message, now)
        if not results:
            return True
        if self.match_type is MatchType.ALL:
            return all(results)
        return any(results)

    def _results(self, message: Message, now: datetime | None) -> list[bool]:
        results: list[bool] = []
        if self.from_ is not None:
            results.append(self.from_.matches_any(message.originator_addresses))
        if self.to is not None:
            results.append(self.to.matches_any(message.recipient_addresses))
        if self.subject is not None:
            results.append(self.subject.matches(message.subject))
        if self.body is not None:
            results.append(self.body.matches(message.body))
        if self.has_attachment is not None:
            results.append(message.has_attachment == self.has_attachment)
        if self.is_flagged is not None:
            results.append(message.is_flagged == self.is_flagged)
        if self.is_unread is not None:
            results.append(message.is_unread == self.is_unread)
        if self.received is not None:
            results.append(self.received.matches(message.received, now))
        if self.size_greater_than_kb is not None:
            results.append(message.size / 1024 > self.size_greater_than_kb)
        if self.size_less_than_kb is not None:
            results.append(message.size / 1024 < self.size_less_than_kb)
        return results


def evaluate(message: Message, condition: Condition, now: datetime | None = None) -> bool:
    """Evaluate a condition against a message. Pure; performs no I/O."""
    return condition.matches(message, now)
