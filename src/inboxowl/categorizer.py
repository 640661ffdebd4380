"""Categorization: first matching rule wins, then a keyword taxonomy, then "Other"."""

from __future__ import annotations

import re
import sqlite3
from typing import Iterable

from .constants import DEFAULT_CATEGORY, FALLBACK_TAXONOMY
from .errors import InboxOwlError
from .log import get_logger
from .matcher import matches
from .models import Categorization, Category, Email, Rule

logger = get_logger(__name__)

_TAXONOMY_PATTERNS = [
    (name, re.compile("|".join(re.escape(w) for w in words), re.IGNORECASE))
    for name, words in FALLBACK_TAXONOMY
]


def keyword_category(text: str) -> str:
    """Pick a category from the fixed keyword taxonomy, or the default."""
    for name, pattern in _TAXONOMY_PATTERNS:
        if pattern.search(text or ""):
            return name
    return DEFAULT_CATEGORY


def first_matching_rule(
    email: Email,
    rules: Iterable[Rule],
    categories: dict[int, Category],
    unknown_field_policy: str = "match",
) -> Rule | None:
    """Return the first active rule, in storage order, that matches ``email``.

    Rules whose target category no longer exists are skipped. A rule that
    raises while being evaluated is logged and treated as not matching.
    """
    for rule in rules:
        if not rule.is_active or rule.category_id not in categories:
            continue
        try:
            if matches(rule, email, unknown_field_policy):
                return rule
        except (InboxOwlError, ValueError, TypeError) as e:
            logger.warning("rule_evaluation_failed", rule_id=rule.id, email_id=email.id, error=str(e))
    return None


def categorize(
    email: Email,
    rules: Iterable[Rule],
    categories: Iterable[Category],
    unknown_field_policy: str = "match",
) -> Categorization:
    """Categorize one email against a user's rules."""
    by_id = {c.id: c for c in categories if c.id is not None}
    rule = first_matching_rule(email, rules, by_id, unknown_field_policy)
    if rule is not None:
        category = by_id[rule.category_id]
        logger.debug("rule_matched", email_id=email.id, rule_id=rule.id, category=category.name)
        return Categorization(category=category.name, category_id=category.id, matched_rule=rule.name)

    return Categorization(category=keyword_category(f"{email.subject} {email.text}"))


class Categorizer:
    """Loads an owner's rules from the store and categorizes emails with them."""

    def __init__(self, store, unknown_field_policy: str = "match") -> None:
        self.store = store
        self.unknown_field_policy = unknown_field_policy

    def categorize(self, email: Email) -> Categorization:
        """Categorize an email; never raises."""
        try:
            rules = self.store.list_rules(email.user_id, active_only=True)
            categories = self.store.list_categories(email.user_id)
        except sqlite3.Error as e:
            logger.error("rule_loading_failed", user_id=email.user_id, error=str(e))
            rules, categories = [], []
        return categorize(email, rules, categories, self.unknown_field_policy)
