"""Rule engine for message processing."""

from mailwarden.rules.actions import (
    Action,
    AddFlag,
    Delete,
    MarkRead,
    MarkUnread,
    MoveToAccount,
    MoveToFolder,
    RemoveFlag,
)
from mailwarden.rules.conditions import (
    Condition,
    DateCondition,
    MatchType,
    TextCondition,
    evaluate,
)
from mailwarden.rules.engine import ALL_ACCOUNTS, Rule, RuleEngine, select_ordered

__all__ = [
    "ALL_ACCOUNTS",
    "Action",
    "AddFlag",
    "Condition",
    "DateCondition",
    "Delete",
    "MarkRead",
    "MarkUnread",
    "MatchType",
    "MoveToAccount",
    "MoveToFolder",
    "RemoveFlag",
    "Rule",
    "RuleEngine",
    "TextCondition",
    "evaluate",
    "select_ordered",
]
