"""Data models for InboxOwl."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .conditions import Condition


@dataclass
class Email:
    """A single fetched message."""

    external_id: str  # Provider message id, unique per user
    user_id: int
    subject: str = ""
    sender: str = ""  # Display name, or the raw address when there is none
    snippet: str = ""
    body: str = ""
    date: str = ""
    labels: list[str] = field(default_factory=list)
    attachments: list[str] = field(default_factory=list)  # Filenames
    id: int | None = None
    category_ids: set[int] = field(default_factory=set)

    @property
    def has_attachment(self) -> bool:
        return bool(self.attachments)

    @property
    def text(self) -> str:
        """Body, or the snippet when no body was fetched."""
        return self.body or self.snippet


@dataclass
class Category:
    """A user-defined label bucket."""

    user_id: int
    name: str
    color: str = ""
    id: int | None = None
    email_count: int = 0


@dataclass
class Rule:
    """A user-authored classification rule: AND of its conditions."""

    user_id: int
    name: str
    category_id: int
    conditions: tuple[Condition, ...] = ()
    is_active: bool = True
    id: int | None = None
    raw_conditions: str = "[]"
    parse_error: str | None = None  # Set when the stored conditions are corrupt


@dataclass
class SpamVerdict:
    is_spam: bool
    spam_score: float
    reasons: list[str] = field(default_factory=list)


@dataclass
class Categorization:
    category: str
    category_id: int | None = None
    matched_rule: str | None = None


@dataclass
class AnalysisResult:
    """Spam verdict, summary and category for one email."""

    is_spam: bool
    spam_score: float
    reasons: list[str] = field(default_factory=list)
    summary: str = ""
    category: str | None = None
    category_id: int | None = None
    matched_rule: str | None = None
    email_id: int | None = None
    source: str = "heuristic"  # ai, heuristic or empty
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "isSpam": self.is_spam,
            "spamScore": self.spam_score,
            "reasons": list(self.reasons),
            "summary": self.summary,
        }
        if self.category is not None:
            data["category"] = self.category
        if self.category_id is not None:
            data["categoryId"] = self.category_id
        if self.matched_rule is not None:
            data["matchedRule"] = self.matched_rule
        if self.email_id is not None:
            data["emailId"] = self.email_id
        return data


@dataclass
class SyncResult:
    """Outcome of one mailbox sync."""

    fetched: int = 0
    created: int = 0
    updated: int = 0
    categorized: int = 0
    failed: int = 0
    skipped: bool = False  # Throttled: a sync ran moments ago
    error: str | None = None
    sync_date: str = field(default_factory=lambda: datetime.now().isoformat())
