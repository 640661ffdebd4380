"""Tests for mailbox sync against a fake Gmail service."""

import httplib2
import pytest
from conftest import FakeGmailService, http_error, make_raw_message
from google.auth.exceptions import TransportError

from inboxowl.gmail_client import fetch_message, get_profile_email, list_message_ids
from inboxowl.rules import RuleService
from inboxowl.sync import batched, sync_mailbox
from inboxowl.ttl_cache import SyncThrottle, TTLCache


@pytest.fixture
def messages() -> list[dict]:
    return [
        make_raw_message("m1", subject="Invoice #1", body="Amount due."),
        make_raw_message("m2", subject="Lunch?", body="Noon works."),
        make_raw_message("m3", subject="Invoice #2", body="Overdue.", attachments=["inv.pdf"]),
        make_raw_message("m4", subject="Newsletter", body="This week in news."),
        make_raw_message("m5", subject="Team sync", body="Agenda attached."),
        make_raw_message("m6", subject="Invoice #3", body="Paid, thanks."),
        make_raw_message("m7", subject="Hello", body="Long time no see."),
    ]


class FakeSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _sync(service, store, user_id, **kwargs):
    kwargs.setdefault("sleep", FakeSleep())
    return sync_mailbox(service, store, user_id, RuleService(store), **kwargs)


def test_batched():
    assert batched(["a", "b", "c", "d"], 3) == [["a", "b", "c"], ["d"]]
    assert batched([], 3) == []


class TestGmailClient:
    def test_list_follows_pages(self, messages):
        service = FakeGmailService(messages, page_size=3)
        assert list_message_ids(service) == [m["id"] for m in messages]
        assert len(service.list_calls) == 3
        assert service.list_calls[0]["labelIds"] == ["INBOX"]

    def test_list_respects_max_results(self, messages):
        service = FakeGmailService(messages, page_size=3)
        assert list_message_ids(service, max_results=4) == ["m1", "m2", "m3", "m4"]

    def test_fetch_uses_content_cache(self, messages):
        service = FakeGmailService(messages)
        cache = TTLCache(ttl=60)
        first = fetch_message(service, "m1", cache)
        second = fetch_message(service, "m1", cache)
        assert first == second
        assert service.get_calls == ["m1"]

    def test_profile_email(self):
        assert get_profile_email(FakeGmailService([], address="owl@example.com")) == "owl@example.com"


class TestSyncMailbox:
    def test_stores_all_messages(self, store, user_id, messages):
        result = _sync(FakeGmailService(messages), store, user_id)
        assert result.fetched == 7
        assert result.created == 7
        assert result.failed == 0
        assert len(store.list_emails(user_id)) == 7

    def test_pauses_between_batches(self, store, user_id, messages):
        sleep = FakeSleep()
        _sync(FakeGmailService(messages), store, user_id, batch_size=3, batch_delay=1.0, sleep=sleep)
        assert sleep.calls == [1.0, 1.0]

    def test_second_sync_updates(self, store, user_id, messages):
        service = FakeGmailService(messages)
        _sync(service, store, user_id)
        result = _sync(service, store, user_id)
        assert result.created == 0
        assert result.updated == 7
        assert len(store.list_emails(user_id)) == 7

    def test_applies_rules(self, store, user_id, messages):
        bills = store.create_category(user_id, "Bills")
        RuleService(store).create_rule(
            user_id, "Invoices", [{"field": "subject", "operator": "startsWith", "value": "invoice"}], bills.id
        )

        result = _sync(FakeGmailService(messages), store, user_id)

        assert result.categorized == 3
        subjects = sorted(e.subject for e in store.list_emails(user_id, category_id=bills.id))
        assert subjects == ["Invoice #1", "Invoice #2", "Invoice #3"]

    def test_stores_attachments_and_sender(self, store, user_id, messages):
        _sync(FakeGmailService(messages), store, user_id)
        [email] = [e for e in store.list_emails(user_id) if e.external_id == "m3"]
        assert email.attachments == ["inv.pdf"]
        assert email.sender == "Alice Smith"

    def test_failed_message_is_skipped(self, store, user_id, messages):
        service = FakeGmailService(messages, get_errors={"m2": http_error(404)})
        result = _sync(service, store, user_id)
        assert result.fetched == 6
        assert result.failed == 1
        assert "m2" not in {e.external_id for e in store.list_emails(user_id)}

    def test_list_failure_sets_error(self, store, user_id, messages):
        service = FakeGmailService(messages, list_error=http_error(403))
        result = _sync(service, store, user_id)
        assert result.error is not None
        assert result.fetched == 0
        assert store.list_emails(user_id) == []

    def test_throttle_skips_repeat_sync(self, store, user_id, messages):
        now = [1000.0]
        throttle = SyncThrottle(window=15, clock=lambda: now[0])
        service = FakeGmailService(messages)

        assert not _sync(service, store, user_id, throttle=throttle).skipped
        assert _sync(service, store, user_id, throttle=throttle).skipped

        now[0] += 16
        assert not _sync(service, store, user_id, throttle=throttle).skipped

    def test_force_ignores_throttle(self, store, user_id, messages):
        throttle = SyncThrottle(window=15)
        service = FakeGmailService(messages)
        _sync(service, store, user_id, throttle=throttle)
        assert not _sync(service, store, user_id, throttle=throttle, force=True).skipped

    def test_failed_list_does_not_start_throttle(self, store, user_id, messages):
        throttle = SyncThrottle(window=15)
        _sync(FakeGmailService(messages, list_error=http_error(403)), store, user_id, throttle=throttle)
        assert not throttle.was_recently_synced(user_id)

    def test_max_results(self, store, user_id, messages):
        result = _sync(FakeGmailService(messages), store, user_id, max_results=2)
        assert result.fetched == 2

    def test_progress_callback(self, store, user_id, messages):
        seen = []
        _sync(FakeGmailService(messages), store, user_id, batch_size=3, callback=lambda n, total: seen.append((n, total)))
        assert seen == [(1, 3), (2, 3), (3, 3)]

    def test_unreachable_server_sets_error(self, store, user_id, messages):
        service = FakeGmailService(messages, list_error=httplib2.ServerNotFoundError("Unable to find the server"))
        result = _sync(service, store, user_id)
        assert result.error is not None
        assert "Unable to find the server" in result.error
        assert store.list_emails(user_id) == []

    def test_expired_credentials_while_listing_set_error(self, store, user_id, messages):
        service = FakeGmailService(messages, list_error=TransportError("token refresh failed"))
        result = _sync(service, store, user_id)
        assert result.error is not None
        assert result.fetched == 0

    def test_transport_failure_on_one_message_is_skipped(self, store, user_id, messages):
        service = FakeGmailService(messages, get_errors={"m4": httplib2.ServerNotFoundError("dns")})
        result = _sync(service, store, user_id)
        assert result.fetched == 6
        assert result.failed == 1

    def test_corrupt_message_body_is_skipped(self, store, user_id):
        broken = make_raw_message("bad", subject="Broken")
        broken["payload"]["parts"][0]["body"]["data"] = "abcde"
        good = make_raw_message("good", subject="Fine")

        result = _sync(FakeGmailService([broken, good]), store, user_id)

        assert result.failed == 1
        assert result.fetched == 1
        assert [e.external_id for e in store.list_emails(user_id)] == ["good"]
