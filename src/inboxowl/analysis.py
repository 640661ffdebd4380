"""Email analysis: spam verdict, summary and category, cached per email."""

from __future__ import annotations

import sqlite3
from typing import Callable

from .categorizer import Categorizer, keyword_category
from .constants import EMPTY_EMAIL_SUMMARY, SUMMARY_INPUT_LIMIT
from .errors import AnalysisError, GenerativeError, NotFoundError
from .generative import GenerativeClient, parse_verdict
from .log import get_logger
from .models import AnalysisResult, Categorization, Email
from .spam import score_email
from .summarizer import summarize

logger = get_logger(__name__)


class AnalysisCache:
    """Persistent analysis records keyed by email id. Entries never expire."""

    def __init__(self, store) -> None:
        self.store = store

    def get(self, email_id: int) -> AnalysisResult | None:
        return self.store.get_analysis(email_id)

    def get_or_compute(
        self,
        email_id: int,
        compute: Callable[[], AnalysisResult],
        refresh: bool = False,
    ) -> AnalysisResult:
        """Return the stored analysis, or compute, store and return a new one.

        With ``refresh`` the stored record is ignored and overwritten.
        """
        if not refresh:
            cached = self.store.get_analysis(email_id)
            if cached is not None:
                logger.debug("analysis_cache_hit", email_id=email_id)
                return cached

        result = compute()
        result.email_id = email_id
        self.store.save_analysis(email_id, result)
        return result

    def clear(self, email_id: int | None = None) -> int:
        return self.store.clear_analyses(email_id)


class EmailAnalyzer:
    """Runs the analysis fallback chain: generative verdict, then heuristics."""

    def __init__(
        self,
        store,
        categorizer: Categorizer | None = None,
        generative: GenerativeClient | None = None,
    ) -> None:
        self.store = store
        self.categorizer = categorizer or Categorizer(store)
        self.generative = generative
        self.cache = AnalysisCache(store)

    def analyze(
        self,
        subject: str | None,
        body: str | None,
        email_id: int | None = None,
        refresh: bool = False,
    ) -> AnalysisResult:
        """Analyze an email's text.

        With an ``email_id`` the result is cached in the store and the owner's
        rules take part in categorization. Raises :class:`AnalysisError` only
        when the store itself fails.
        """
        subject = subject or ""
        body = body or ""

        if email_id is None:
            if not subject.strip() and not body.strip():
                return self._empty_result()
            return self._compute(subject, body, None)

        try:
            email = self.store.get_email(email_id)
            if not subject.strip() and not body.strip():
                cached = self.cache.get(email_id)
                return cached if cached is not None else self._empty_result(email_id)
            return self.cache.get_or_compute(
                email_id, lambda: self._compute(subject, body, email), refresh=refresh
            )
        except sqlite3.Error as e:
            logger.error("analysis_storage_failed", email_id=email_id, error=str(e))
            raise AnalysisError(f"Failed to analyze email: {e}") from e

    def analyze_email(self, email_id: int, refresh: bool = False) -> AnalysisResult:
        """Analyze a stored email by id."""
        email = self.store.get_email(email_id)
        if email is None:
            raise NotFoundError("Email")
        return self.analyze(email.subject, email.text, email_id=email_id, refresh=refresh)

    def _categorize(self, subject: str, body: str, email: Email | None) -> Categorization:
        if email is None:
            return Categorization(category=keyword_category(f"{subject} {body}"))
        candidate = Email(
            id=email.id,
            external_id=email.external_id,
            user_id=email.user_id,
            subject=subject,
            sender=email.sender,
            snippet=email.snippet,
            body=body,
            attachments=email.attachments,
            labels=email.labels,
        )
        return self.categorizer.categorize(candidate)

    def _generative_result(self, subject: str, body: str) -> AnalysisResult | None:
        if self.generative is None:
            return None
        try:
            text = self.generative.analyze(subject, body[:SUMMARY_INPUT_LIMIT])
        except GenerativeError as e:
            logger.warning("generative_analysis_failed", error=str(e))
            return None

        verdict = parse_verdict(text)
        if verdict is None:
            logger.warning("generative_analysis_unparseable")
            return None
        return AnalysisResult(
            is_spam=bool(verdict.is_spam),
            spam_score=verdict.spam_score,
            reasons=verdict.reasons,
            summary=verdict.summary or summarize(subject, body, None),
            source="ai",
        )

    def _compute(self, subject: str, body: str, email: Email | None) -> AnalysisResult:
        result = self._generative_result(subject, body)
        if result is None:
            verdict = score_email(subject, body)
            result = AnalysisResult(
                is_spam=verdict.is_spam,
                spam_score=verdict.spam_score,
                reasons=verdict.reasons,
                summary=summarize(subject, body, self.generative),
                source="heuristic",
            )

        categorization = self._categorize(subject, body, email)
        result.category = categorization.category
        result.category_id = categorization.category_id
        result.matched_rule = categorization.matched_rule
        return result

    @staticmethod
    def _empty_result(email_id: int | None = None) -> AnalysisResult:
        return AnalysisResult(
            is_spam=False,
            spam_score=0.0,
            reasons=[],
            summary=EMPTY_EMAIL_SUMMARY,
            email_id=email_id,
            source="empty",
        )
