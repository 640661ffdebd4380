"""Heuristic spam and phishing scoring."""

from __future__ import annotations

import re
from urllib.parse import urlparse

from .constants import (
    CAPS_RATIO_THRESHOLD,
    LINK_SHORTENERS,
    SPAM_KEYWORDS,
    SPAM_THRESHOLD,
    SUSPICIOUS_URL_TOKENS,
    WEIGHT_EXCESSIVE_CAPS,
    WEIGHT_EXCLAMATIONS,
    WEIGHT_KEYWORD,
)
from .models import SpamVerdict

_URL_RE = re.compile(r"https?://[^\s<>\"']+", re.IGNORECASE)
_IP_HOST_RE = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")
_EXCLAMATIONS_RE = re.compile(r"!{2,}")


def is_spam(score: float) -> bool:
    """Apply the spam threshold. A score exactly at the threshold is not spam."""
    return score > SPAM_THRESHOLD


def keyword_hits(text: str) -> list[str]:
    """Suspicious keywords present in ``text``, in keyword-list order."""
    lowered = text.lower()
    return [kw for kw in SPAM_KEYWORDS if kw in lowered]


def caps_ratio(text: str) -> float:
    """Uppercase letters as a fraction of the whole text length."""
    if not text:
        return 0.0
    return sum(1 for ch in text if ch.isupper()) / len(text)


def is_suspicious_url(url: str) -> bool:
    host = (urlparse(url).hostname or "").lower()
    if any(host == d or host.endswith("." + d) for d in LINK_SHORTENERS):
        return True
    if _IP_HOST_RE.match(host):
        return True
    lowered = url.lower()
    return any(token in lowered for token in SUSPICIOUS_URL_TOKENS)


def suspicious_link_ratio(text: str) -> tuple[int, int]:
    """Return (suspicious, total) URL counts found in ``text``."""
    urls = _URL_RE.findall(text or "")
    return sum(1 for u in urls if is_suspicious_url(u)), len(urls)


def score_email(subject: str | None, body: str | None) -> SpamVerdict:
    """Score subject and body text for spam.

    Returns a verdict whose score is clamped to [0.0, 1.0].
    """
    subject = subject or ""
    body = body or ""
    combined = f"{subject} {body}".strip()
    if not combined:
        return SpamVerdict(is_spam=False, spam_score=0.0, reasons=[])

    total = 0.0
    reasons: list[str] = []

    for kw in keyword_hits(combined):
        total += WEIGHT_KEYWORD
        reasons.append(f'Contains suspicious keyword: "{kw}"')

    if caps_ratio(body) > CAPS_RATIO_THRESHOLD:
        total += WEIGHT_EXCESSIVE_CAPS
        reasons.append("Excessive use of capital letters")

    if _EXCLAMATIONS_RE.search(combined):
        total += WEIGHT_EXCLAMATIONS
        reasons.append("Multiple exclamation marks detected")

    suspicious, urls = suspicious_link_ratio(combined)
    if suspicious:
        total += suspicious / urls
        reasons.append(f"Suspicious links detected ({suspicious} of {urls})")

    score = round(min(max(total, 0.0), 1.0), 4)
    return SpamVerdict(is_spam=is_spam(score), spam_score=score, reasons=reasons)
