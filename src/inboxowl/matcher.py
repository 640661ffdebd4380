"""Rule matching: a rule fires when all of its conditions hold."""

from __future__ import annotations

from typing import Iterable

from .conditions import evaluate
from .log import get_logger
from .models import Email, Rule

logger = get_logger(__name__)


def matches(rule: Rule, email: Email, unknown_field_policy: str = "match") -> bool:
    """Return True if every condition of ``rule`` holds for ``email``.

    Conditions are tested left to right and evaluation stops at the first
    one that fails. A rule whose stored conditions could not be parsed never
    matches.
    """
    if rule.parse_error is not None:
        logger.warning("rule_conditions_unparseable", rule_id=rule.id, error=rule.parse_error)
        return False

    for condition in rule.conditions:
        if not evaluate(condition, email, unknown_field_policy):
            return False
    return True


def matching_email_ids(rule: Rule, emails: Iterable[Email], unknown_field_policy: str = "match") -> list[int]:
    """Ids of the emails ``rule`` matches, in input order."""
    return [e.id for e in emails if e.id is not None and matches(rule, e, unknown_field_policy)]
