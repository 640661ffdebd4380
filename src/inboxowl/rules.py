"""Rule management: validation, storage and applying rules to stored emails."""

from __future__ import annotations

from .categorizer import categorize
from .conditions import parse_conditions, serialize_conditions
from .errors import NotFoundError, ValidationError
from .log import get_logger
from .matcher import matching_email_ids
from .models import Categorization, Email, Rule

logger = get_logger(__name__)


def build_rule(user_id: int, name: str, conditions: str | list, category_id: int, is_active: bool = True) -> Rule:
    """Validate rule input and return an unsaved :class:`Rule`.

    Raises :class:`ValidationError` for a missing name or malformed conditions.
    """
    if not name or not name.strip():
        raise ValidationError("Rule name is required")
    parsed = parse_conditions(conditions, strict=True)
    return Rule(
        user_id=user_id,
        name=name.strip(),
        category_id=category_id,
        conditions=parsed,
        is_active=is_active,
        raw_conditions=serialize_conditions(parsed),
    )


class RuleService:
    """Creates, updates and deletes rules and keeps category membership in step."""

    def __init__(self, store, unknown_field_policy: str = "match") -> None:
        self.store = store
        self.unknown_field_policy = unknown_field_policy

    def _require_category(self, user_id: int, category_id: int) -> None:
        if self.store.get_category(user_id, category_id) is None:
            raise NotFoundError("Category")

    def list_rules(self, user_id: int) -> list[Rule]:
        return self.store.list_rules(user_id)

    def create_rule(
        self,
        user_id: int,
        name: str,
        conditions: str | list,
        category_id: int,
        is_active: bool = True,
    ) -> Rule:
        """Store a new rule and add every existing email it matches to its category."""
        rule = build_rule(user_id, name, conditions, category_id, is_active)
        self._require_category(user_id, category_id)
        rule = self.store.create_rule(rule)

        if rule.is_active:
            emails = self.store.list_emails(user_id)
            matched = matching_email_ids(rule, emails, self.unknown_field_policy)
            if matched:
                self.store.connect_emails(category_id, matched)
            logger.info("rule_created", rule_id=rule.id, matched=len(matched))
        return rule

    def update_rule(
        self,
        user_id: int,
        rule_id: int,
        name: str,
        conditions: str | list,
        category_id: int,
        is_active: bool = True,
    ) -> Rule:
        """Rewrite a rule and make its category's members exactly the emails it now matches.

        Membership is left untouched when the updated rule matches nothing.
        """
        if self.store.get_rule(user_id, rule_id) is None:
            raise NotFoundError("Rule")
        rule = build_rule(user_id, name, conditions, category_id, is_active)
        rule.id = rule_id
        self._require_category(user_id, category_id)
        rule = self.store.update_rule(rule)

        if rule.is_active:
            emails = self.store.list_emails(user_id)
            matched = matching_email_ids(rule, emails, self.unknown_field_policy)
            if matched:
                self.store.set_emails(category_id, matched)
            logger.info("rule_updated", rule_id=rule.id, matched=len(matched))
        return rule

    def delete_rule(self, user_id: int, rule_id: int) -> None:
        """Delete a rule. Emails already filed by it stay in their categories."""
        self.store.delete_rule(user_id, rule_id)
        logger.info("rule_deleted", rule_id=rule_id)

    def apply_rules_to_email(self, email: Email) -> Categorization:
        """Categorize a stored email and file it under the winning rule's category."""
        rules = self.store.list_rules(email.user_id, active_only=True)
        categories = self.store.list_categories(email.user_id)
        result = categorize(email, rules, categories, self.unknown_field_policy)
        if result.category_id is not None and email.id is not None:
            self.store.connect_emails(result.category_id, [email.id])
            email.category_ids.add(result.category_id)
        return result

    def recompute_memberships(self, user_id: int) -> dict[int, int]:
        """Rebuild rule-driven membership from scratch.

        Every category targeted by an active rule ends up holding exactly the
        emails whose first matching rule targets it. Categories no active rule
        targets are left alone. Returns member counts per category id.
        """
        rules = self.store.list_rules(user_id, active_only=True)
        categories = self.store.list_categories(user_id)
        members: dict[int, list[int]] = {r.category_id: [] for r in rules}

        for email in self.store.list_emails(user_id):
            result = categorize(email, rules, categories, self.unknown_field_policy)
            if result.category_id is not None and email.id is not None:
                members[result.category_id].append(email.id)

        known = {c.id for c in categories}
        for category_id, email_ids in members.items():
            if category_id in known:
                self.store.set_emails(category_id, email_ids)
        logger.info("memberships_recomputed", user_id=user_id, categories=len(members))
        return {cid: len(ids) for cid, ids in members.items() if cid in known}
