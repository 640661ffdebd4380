"""Email summaries: generative first, extractive term-frequency fallback."""

from __future__ import annotations

import re
from collections import Counter

from .constants import EMPTY_BODY_SUMMARY, FAILED_SUMMARY, SUMMARY_INPUT_LIMIT, SUMMARY_SENTENCES
from .errors import GenerativeError
from .generative import GenerativeClient, parse_summary
from .log import get_logger

logger = get_logger(__name__)

_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+")
_WORD_RE = re.compile(r"[a-z0-9']+")

_STOPWORDS = frozenset(
    "a an and are as at be but by for from has have i in is it its of on or our so that the "
    "this to was we were will with you your".split()
)


def split_sentences(text: str) -> list[str]:
    """Split text into sentences ending in ``.``, ``!`` or ``?``."""
    return [s.strip() for s in _SENTENCE_RE.findall(text or "") if s.strip()]


def _tokens(sentence: str) -> list[str]:
    return [w for w in _WORD_RE.findall(sentence.lower()) if w not in _STOPWORDS]


def extractive_summary(text: str, max_sentences: int = SUMMARY_SENTENCES) -> str:
    """Pick the highest scoring sentences and join them in their original order.

    A sentence scores the sum of the document frequencies of its words,
    normalised by the most frequent word. Texts with no more than
    ``max_sentences`` sentences come back unchanged.
    """
    sentences = split_sentences(text)
    if len(sentences) <= max_sentences:
        return (text or "").strip()

    freq = Counter(w for s in sentences for w in _tokens(s))
    if not freq:
        return " ".join(sentences[:max_sentences])
    top = max(freq.values())

    scored = [
        (sum(freq[w] / top for w in _tokens(s)), idx)
        for idx, s in enumerate(sentences)
    ]
    best = sorted(scored, key=lambda pair: (-pair[0], pair[1]))[:max_sentences]
    return " ".join(sentences[idx] for _, idx in sorted(best, key=lambda pair: pair[1]))


def summarize(subject: str | None, body: str | None, generative: GenerativeClient | None = None) -> str:
    """Summarize an email body, degrading to the extractive summary."""
    if not body or not body.strip():
        return EMPTY_BODY_SUMMARY

    if generative is not None:
        try:
            summary = parse_summary(generative.summarize(subject or "", body[:SUMMARY_INPUT_LIMIT]))
            if summary:
                return summary
            logger.warning("generative_summary_empty")
        except GenerativeError as e:
            logger.warning("generative_summary_failed", error=str(e))

    return extractive_summary(body) or FAILED_SUMMARY
