"""Generative-text collaborator: prompts, the OpenAI client and output validation.

Model output is untrusted text. :func:`parse_verdict` and :func:`parse_summary`
turn it into a validated result or ``None``, which callers treat as the signal
to fall back to the heuristic path.
"""

from __future__ import annotations

import json
import re
from typing import Protocol

from openai import OpenAI, OpenAIError
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .constants import DEFAULT_OPENAI_MODEL, DEFAULT_OPENAI_TIMEOUT, SPAM_THRESHOLD, SUMMARY_INPUT_LIMIT
from .errors import GenerativeError

ANALYSIS_PROMPT = """Analyze this email for spam and security concerns:
Subject: {subject}
Body: {body}

Please provide:
1. A spam score between 0 and 1 (where 1 is definitely spam)
2. Whether it's spam (true if score > {threshold}, otherwise false)
3. A list of specific reasons for the classification (mention specific suspicious elements)
4. A brief, informative summary of the email content focused on key points and any action items

Format the response as JSON with these keys:
{{"spamScore": number, "isSpam": boolean, "reasons": string[], "summary": string}}
"""

SUMMARY_PROMPT = """Summarize the following email in 2-3 concise sentences.
Extract the main topic, key points, deadlines and any action items.
Be factual and do not introduce information not found in the email.
Return only the summary text, under 100 words, with no formatting or prefixes.

Subject: {subject}

{body}
"""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class GenerativeClient(Protocol):
    """Anything that can turn an email into raw model text."""

    def analyze(self, subject: str, body: str) -> str: ...

    def summarize(self, subject: str, body: str) -> str: ...


class AiVerdict(BaseModel):
    """Validated spam verdict produced by a model."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    spam_score: float = Field(alias="spamScore", ge=0.0, le=1.0)
    is_spam: bool | None = Field(default=None, alias="isSpam")
    reasons: list[str] = Field(default_factory=list)
    summary: str = ""


def _strip_fences(text: str) -> str:
    return _FENCE_RE.sub("", text.strip())


def _first_json_object(text: str) -> dict | None:
    cleaned = _strip_fences(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            return None
        try:
            data = json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError:
            return None
    return data if isinstance(data, dict) else None


def parse_verdict(text: str | None) -> AiVerdict | None:
    """Validate model output as a spam verdict, or return None.

    ``is_spam`` is recomputed from the score so it always agrees with the
    spam threshold.
    """
    if not text or not text.strip():
        return None
    data = _first_json_object(text)
    if data is None:
        return None
    try:
        verdict = AiVerdict.model_validate(data)
    except PydanticValidationError:
        return None
    verdict.is_spam = verdict.spam_score > SPAM_THRESHOLD
    return verdict


def parse_summary(text: str | None) -> str | None:
    """Extract a summary from model output: a JSON ``summary`` key or the plain text."""
    if not text or not text.strip():
        return None
    data = _first_json_object(text) if text.lstrip().startswith(("{", "`")) else None
    if data is not None:
        summary = data.get("summary")
        return summary.strip() if isinstance(summary, str) and summary.strip() else None
    return _strip_fences(text) or None


class OpenAIClient:
    """Generative collaborator backed by the OpenAI chat completions API."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_OPENAI_MODEL,
        base_url: str | None = None,
        timeout: float = DEFAULT_OPENAI_TIMEOUT,
    ) -> None:
        self.model = model
        self._client = OpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)

    def _complete(self, prompt: str, temperature: float, max_tokens: int) -> str:
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except OpenAIError as e:
            raise GenerativeError(f"OpenAI request failed: {e}") from e

        if not response.choices:
            raise GenerativeError("OpenAI returned no choices")
        content = response.choices[0].message.content
        if not content:
            raise GenerativeError("OpenAI returned an empty message")
        return content

    def analyze(self, subject: str, body: str) -> str:
        prompt = ANALYSIS_PROMPT.format(
            subject=subject or "(No subject)",
            body=(body or "(No content)")[:SUMMARY_INPUT_LIMIT],
            threshold=SPAM_THRESHOLD,
        )
        return self._complete(prompt, temperature=0.0, max_tokens=500)

    def summarize(self, subject: str, body: str) -> str:
        prompt = SUMMARY_PROMPT.format(subject=subject or "(No subject)", body=body[:SUMMARY_INPUT_LIMIT])
        return self._complete(prompt, temperature=0.2, max_tokens=250)
