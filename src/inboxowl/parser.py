"""Parsing of raw Gmail API message resources."""

from __future__ import annotations

import base64
import re
from dataclasses import dataclass, field

from bs4 import BeautifulSoup

_FROM_RE = re.compile(r"^(.*?)\s*<([^>]+)>$")
_WS_RE = re.compile(r"\s+")


@dataclass
class ParsedMessage:
    """Fields extracted from one Gmail message."""

    external_id: str
    subject: str = ""
    sender: str = ""
    snippet: str = ""
    body: str = ""
    date: str = ""
    labels: list[str] = field(default_factory=list)
    attachments: list[str] = field(default_factory=list)


def parse_from_header(from_value: str) -> tuple[str, str]:
    """Parse a From header into (display name, email address).

    Handles formats like:
      "John Doe <john@example.com>" -> ("John Doe", "john@example.com")
      "<john@example.com>"          -> ("", "john@example.com")
      "john@example.com"            -> ("", "john@example.com")
    """
    if not from_value:
        return ("", "")
    m = _FROM_RE.match(from_value.strip())
    if m:
        name = m.group(1).strip().strip('"').strip("'")
        return (name, m.group(2).strip())
    email = from_value.strip().strip("<>")
    return ("", email)


def sender_display(from_value: str) -> str:
    """Display name if the header has one, else the raw address."""
    name, email = parse_from_header(from_value)
    return name or email or "Unknown Sender"


def html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["style", "script", "head"]):
        tag.decompose()
    return _WS_RE.sub(" ", soup.get_text(" ")).strip()


def _decode(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")


def _walk(part: dict, texts: list[str], htmls: list[str], attachments: list[str]) -> None:
    mime = part.get("mimeType", "")
    filename = part.get("filename") or ""
    data = part.get("body", {}).get("data")

    if filename:
        attachments.append(filename)
    elif mime == "text/plain" and data:
        texts.append(_decode(data))
    elif mime == "text/html" and data:
        htmls.append(_decode(data))

    for child in part.get("parts", []) or []:
        _walk(child, texts, htmls, attachments)


def extract_body(payload: dict) -> tuple[str, list[str]]:
    """Return (plain-text body, attachment filenames) from a message payload.

    Plain-text parts win; HTML parts are converted to text when there are none.
    """
    texts: list[str] = []
    htmls: list[str] = []
    attachments: list[str] = []
    _walk(payload, texts, htmls, attachments)

    if texts:
        body = "\n".join(t.strip() for t in texts if t.strip())
    else:
        body = " ".join(html_to_text(h) for h in htmls).strip()
    return body, attachments


def parse_message(raw: dict) -> ParsedMessage:
    """Build a :class:`ParsedMessage` from a ``users.messages.get`` response."""
    payload = raw.get("payload", {}) or {}
    headers = {h["name"].lower(): h["value"] for h in payload.get("headers", [])}
    from_value = headers.get("from", "")
    body, attachments = extract_body(payload)

    return ParsedMessage(
        external_id=raw["id"],
        subject=headers.get("subject", ""),
        sender=sender_display(from_value),
        snippet=raw.get("snippet", ""),
        body=body,
        date=headers.get("date", ""),
        labels=list(raw.get("labelIds", [])),
        attachments=attachments,
    )
