"""Shared fixtures for tests."""

from __future__ import annotations

import base64

import httplib2
import pytest
from googleapiclient.errors import HttpError

from inboxowl.models import Email
from inboxowl.store import MailStore


def http_error(status: int) -> HttpError:
    return HttpError(httplib2.Response({"status": str(status)}), b"")


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def make_raw_message(
    message_id: str,
    subject: str = "Hello",
    sender: str = "Alice Smith <alice@example.com>",
    body: str = "Just checking in.",
    html: str | None = None,
    attachments: list[str] | None = None,
    snippet: str = "",
) -> dict:
    """Build a ``users.messages.get`` style resource."""
    parts = [{"mimeType": "text/plain", "filename": "", "body": {"data": _b64(body)}}] if body else []
    if html is not None:
        parts.append({"mimeType": "text/html", "filename": "", "body": {"data": _b64(html)}})
    for name in attachments or []:
        parts.append({"mimeType": "application/pdf", "filename": name, "body": {"attachmentId": f"att-{name}"}})

    return {
        "id": message_id,
        "snippet": snippet or body[:40],
        "labelIds": ["INBOX"],
        "payload": {
            "mimeType": "multipart/mixed",
            "headers": [
                {"name": "Subject", "value": subject},
                {"name": "From", "value": sender},
                {"name": "Date", "value": "Mon, 15 Jan 2024 10:00:00 +0000"},
            ],
            "parts": parts,
        },
    }


class _Request:
    def __init__(self, fn) -> None:
        self._fn = fn

    def execute(self):
        return self._fn()


class FakeGmailService:
    """Minimal stand-in for the ``gmail v1`` resource used by sync."""

    def __init__(
        self,
        messages: list[dict],
        page_size: int = 100,
        list_error: Exception | None = None,
        get_errors: dict[str, Exception] | None = None,
        address: str = "me@example.com",
    ) -> None:
        self._messages = {m["id"]: m for m in messages}
        self._order = [m["id"] for m in messages]
        self.page_size = page_size
        self.list_error = list_error
        self.get_errors = get_errors or {}
        self.address = address
        self.list_calls: list[dict] = []
        self.get_calls: list[str] = []

    def users(self):
        return self

    def messages(self):
        return self

    def list(self, **kwargs):
        self.list_calls.append(kwargs)

        def run():
            if self.list_error is not None:
                raise self.list_error
            start = int(kwargs.get("pageToken") or 0)
            size = min(kwargs.get("maxResults", self.page_size), self.page_size)
            page = self._order[start : start + size]
            resp = {"messages": [{"id": i} for i in page]}
            if start + size < len(self._order):
                resp["nextPageToken"] = str(start + size)
            return resp

        return _Request(run)

    def get(self, userId: str, id: str, format: str = "full"):  # noqa: A002
        self.get_calls.append(id)

        def run():
            if id in self.get_errors:
                raise self.get_errors[id]
            return self._messages[id]

        return _Request(run)

    def getProfile(self, userId: str):  # noqa: N802
        return _Request(lambda: {"emailAddress": self.address})


class FakeGenerative:
    """Generative collaborator returning canned text or raising."""

    def __init__(self, analysis: str | Exception = "", summary: str | Exception = "") -> None:
        self.analysis = analysis
        self.summary = summary
        self.analyze_calls = 0
        self.summarize_calls = 0

    def analyze(self, subject: str, body: str) -> str:
        self.analyze_calls += 1
        if isinstance(self.analysis, Exception):
            raise self.analysis
        return self.analysis

    def summarize(self, subject: str, body: str) -> str:
        self.summarize_calls += 1
        if isinstance(self.summary, Exception):
            raise self.summary
        return self.summary


@pytest.fixture
def store(tmp_path):
    s = MailStore(db_path=tmp_path / "test.db")
    yield s
    s.close()


@pytest.fixture
def user_id(store) -> int:
    return store.get_or_create_user("me@example.com")


@pytest.fixture
def make_email():
    counter = iter(range(1, 10_000))

    def _make(**kwargs) -> Email:
        kwargs.setdefault("external_id", f"msg_{next(counter):04d}")
        kwargs.setdefault("user_id", 1)
        return Email(**kwargs)

    return _make


@pytest.fixture
def add_email(store, user_id, make_email):
    """Store an email for the default user and return the stored copy."""

    def _add(**kwargs) -> Email:
        kwargs.setdefault("user_id", user_id)
        email, _ = store.upsert_email(make_email(**kwargs))
        return email

    return _add


@pytest.fixture
def invoice_email(make_email) -> Email:
    return make_email(
        id=1,
        subject="Your invoice for March",
        sender="Billing Team",
        snippet="Invoice #123 is attached",
        body="Hi, please find invoice #123 attached. Payment is due in 14 days.",
        attachments=["invoice-123.pdf"],
    )


@pytest.fixture
def personal_email(make_email) -> Email:
    return make_email(
        id=2,
        subject="Re: Lunch tomorrow?",
        sender="alice@example.com",
        snippet="Sounds good, see you at noon",
        body="Sounds good, see you at noon.",
    )
