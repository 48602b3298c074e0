"""Rule model and priority-ordered rule selection."""

from collections.abc import Iterator
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from mailwarden.mail.messages import Message
from mailwarden.rules.actions import Action
from mailwarden.rules.conditions import Condition

ALL_ACCOUNTS = "ALL"


class Rule(BaseModel):
    """A single rule for processing messages."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1, description="Unique, human-readable rule name")
    description: str | None = Field(default=None, description="Rule description")
    enabled: bool = Field(default=True, description="Whether the rule is active")
    accounts: list[str] = Field(
        default_factory=lambda: [ALL_ACCOUNTS],
        description='Account names the rule applies to, or "ALL"',
    )
    priority: int = Field(default=100, description="Lower number = evaluated first")
    conditions: Condition = Field(default_factory=Condition)
    actions: list[Action] = Field(min_length=1)
    stop_processing: bool = Field(
        default=False, description="Stop evaluating lower-priority rules if this matches"
    )

    def applies_to(self, account: str) -> bool:
        """Check if the rule is enabled for an account (exact name match)."""
        return self.enabled and (ALL_ACCOUNTS in self.accounts or account in self.accounts)

    def matches(self, message: Message, now: datetime | None = None) -> bool:
        return self.conditions.matches(message, now)


def select_ordered(account: str, rules: list[Rule]) -> list[Rule]:
    """
    Select the rules that apply to an account, in evaluation order.

    Disabled rules are dropped. Ties in priority keep declaration order.
    """
    return sorted((r for r in rules if r.applies_to(account)), key=lambda r: r.priority)


class RuleEngine:
    """Evaluates an account's rules against messages."""

    def __init__(self, rules: list[Rule] | None = None) -> None:
        self.rules = list(rules or [])

    def rules_for(self, account: str) -> list[Rule]:
        return select_ordered(account, self.rules)

    def iter_matches(
        self,
        account: str,
        message: Message,
        now: datetime | None = None,
    ) -> Iterator[Rule]:
        """
        Yield matching rules in priority order.

        Evaluation is lazy: once a matching rule with ``stop_processing`` has
        been yielded, no further rule is evaluated.
        """
        for rule in self.rules_for(account):
            if not rule.matches(message, now):
                continue
            yield rule
            if rule.stop_processing:
                return
