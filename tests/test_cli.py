"""Tests for the CLI module."""

import json

import pytest
from click.testing import CliRunner
from conftest import FakeGmailService, make_raw_message

from inboxowl.cli import cli
from inboxowl.models import Email
from inboxowl.store import MailStore


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "inboxowl.db"
    monkeypatch.setenv("INBOXOWL_DB_PATH", str(path))
    monkeypatch.delenv("INBOXOWL_OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("INBOXOWL_USER", raising=False)
    return path


@pytest.fixture
def seeded(db_path) -> dict[str, int]:
    """Store two emails for the default user and return their ids by subject."""
    ids = {}
    with MailStore(db_path=db_path) as store:
        user_id = store.get_or_create_user("me")
        for external_id, subject, body in [
            ("a1", "Invoice 42", "Payment is due Friday."),
            ("a2", "Lunch plans", "Tacos at noon?"),
        ]:
            email, _ = store.upsert_email(
                Email(external_id=external_id, user_id=user_id, subject=subject, sender="Someone", body=body)
            )
            ids[subject] = email.id
    return ids


def invoke(*args):
    return CliRunner().invoke(cli, list(args))


def test_cli_help():
    """CLI --help should work and show commands."""
    result = invoke("--help")
    assert result.exit_code == 0
    for command in ("sync", "emails", "categories", "rules", "analyze", "check", "cache", "auth"):
        assert command in result.output


def test_cli_version():
    result = invoke("--version")
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_sync_no_credentials(tmp_path, monkeypatch, db_path):
    """Sync without credentials should show clear error."""
    import inboxowl.auth as auth_module

    monkeypatch.setattr(auth_module, "CREDENTIALS_PATH", tmp_path / "nonexistent.json")
    monkeypatch.setattr(auth_module, "TOKEN_PATH", tmp_path / "token.json")
    monkeypatch.setattr(auth_module, "CONFIG_DIR", tmp_path)

    result = invoke("sync")
    assert result.exit_code != 0
    assert "Credentials file not found" in result.output


def test_auth_reports_mailbox_address(monkeypatch, db_path):
    import inboxowl.auth as auth_module

    monkeypatch.setattr(auth_module, "get_gmail_service", lambda: FakeGmailService([], address="owl@example.com"))
    result = invoke("auth")
    assert result.exit_code == 0, result.output
    assert "owl@example.com" in result.output


class TestSync:
    @pytest.fixture
    def gmail(self, monkeypatch, db_path):
        import inboxowl.auth as auth_module

        service = FakeGmailService(
            [
                make_raw_message("m1", subject="Invoice 7", body="Amount due."),
                make_raw_message("m2", subject="Hello", body="Long time no see."),
            ]
        )
        monkeypatch.setattr(auth_module, "get_gmail_service", lambda: service)
        monkeypatch.setenv("INBOXOWL_SYNC_BATCH_DELAY", "0")
        return service

    def test_second_sync_is_skipped(self, gmail):
        first = invoke("sync")
        assert first.exit_code == 0, first.output
        assert "Fetched 2 messages" in first.output

        second = invoke("sync")
        assert second.exit_code == 0, second.output
        assert "skipping" in second.output
        assert len(gmail.list_calls) == 1

    def test_force_reuses_cached_bodies(self, gmail):
        invoke("sync")
        result = invoke("sync", "--force")
        assert result.exit_code == 0, result.output
        assert "Fetched 2 messages (0 new, 2 updated)" in result.output
        assert gmail.get_calls == ["m1", "m2"]

    def test_clearing_sync_cache_allows_sync(self, gmail):
        invoke("sync")
        cleared = invoke("cache", "clear", "--sync")
        assert cleared.exit_code == 0, cleared.output
        assert "Sync cache cleared" in cleared.output
        assert "skipping" not in invoke("sync").output
        assert gmail.get_calls == ["m1", "m2", "m1", "m2"]

    def test_synced_emails_are_listed(self, gmail):
        invoke("sync")
        assert "Invoice 7" in invoke("emails").output


class TestCategories:
    def test_add_and_list(self, db_path):
        assert invoke("categories", "add", "Bills", "--color", "#ff0000").exit_code == 0
        result = invoke("categories", "list")
        assert result.exit_code == 0
        assert "Bills" in result.output

    def test_duplicate_is_an_error(self, db_path):
        invoke("categories", "add", "Bills")
        result = invoke("categories", "add", "Bills")
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_update_and_delete(self, db_path):
        invoke("categories", "add", "Bills")
        assert invoke("categories", "update", "1", "--name", "Invoices").exit_code == 0
        assert "Invoices" in invoke("categories", "list").output

        assert invoke("categories", "delete", "1").exit_code == 0
        assert "No categories" in invoke("categories", "list").output

    def test_delete_missing(self, db_path):
        result = invoke("categories", "delete", "99")
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_assign_emails(self, seeded):
        invoke("categories", "add", "Keep")
        result = invoke("categories", "assign", "1", str(seeded["Invoice 42"]), str(seeded["Lunch plans"]))
        assert result.exit_code == 0, result.output
        assert "now has 2 emails" in result.output
        assert "Lunch plans" in invoke("emails", "--category", "Keep").output

    def test_assign_unknown_email(self, seeded):
        invoke("categories", "add", "Keep")
        result = invoke("categories", "assign", "1", "999")
        assert result.exit_code == 1
        assert "Email 999 not found" in result.output

    def test_assign_unknown_category(self, seeded):
        result = invoke("categories", "assign", "42", str(seeded["Invoice 42"]))
        assert result.exit_code == 1
        assert "Category not found" in result.output

    def test_assign_needs_emails(self, db_path):
        invoke("categories", "add", "Keep")
        assert invoke("categories", "assign", "1").exit_code == 2


class TestRules:
    def test_add_files_matching_emails(self, seeded):
        invoke("categories", "add", "Bills")
        result = invoke("rules", "add", "Invoices", "--category", "Bills", "--condition", "subject:contains:invoice")
        assert result.exit_code == 0, result.output

        emails = invoke("emails", "--category", "Bills")
        assert "Invoice 42" in emails.output
        assert "Lunch plans" not in emails.output

    def test_json_help_example(self, db_path):
        result = invoke("rules", "add", "--help")
        assert result.exit_code == 0
        assert '"invoice"' in result.output
        assert "@bank.com" not in result.output

    def test_add_with_json_conditions(self, seeded):
        invoke("categories", "add", "Food")
        conditions = json.dumps([{"field": "body", "operator": "contains", "value": "tacos"}])
        result = invoke("rules", "add", "Food", "-c", "Food", "--conditions-json", conditions)
        assert result.exit_code == 0, result.output
        assert "Lunch plans" in invoke("emails", "--category", "Food").output

    def test_add_needs_conditions(self, db_path):
        invoke("categories", "add", "Bills")
        result = invoke("rules", "add", "Invoices", "--category", "Bills")
        assert result.exit_code == 1

    def test_add_rejects_unknown_operator(self, db_path):
        invoke("categories", "add", "Bills")
        result = invoke("rules", "add", "Invoices", "--category", "Bills", "--condition", "subject:like:invoice")
        assert result.exit_code == 1
        assert "like" in result.output

    def test_add_unknown_category(self, db_path):
        result = invoke("rules", "add", "Invoices", "--category", "Nope", "--condition", "subject:contains:x")
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_list_update_delete(self, seeded):
        invoke("categories", "add", "Bills")
        invoke("rules", "add", "Invoices", "--category", "Bills", "--condition", "subject:contains:invoice")
        assert "Invoices" in invoke("rules", "list").output

        result = invoke("rules", "update", "1", "--condition", "subject:contains:lunch")
        assert result.exit_code == 0, result.output
        emails = invoke("emails", "--category", "Bills").output
        assert "Lunch plans" in emails
        assert "Invoice 42" not in emails

        assert invoke("rules", "delete", "1").exit_code == 0
        assert "No rules" in invoke("rules", "list").output

    def test_recompute(self, seeded):
        invoke("categories", "add", "Bills")
        invoke("rules", "add", "Invoices", "--category", "Bills", "--condition", "subject:contains:invoice")
        result = invoke("rules", "recompute")
        assert result.exit_code == 0
        assert "Bills: 1 emails" in result.output


class TestAnalysis:
    def test_analyze_stored_email(self, seeded):
        result = invoke("analyze", str(seeded["Lunch plans"]))
        assert result.exit_code == 0, result.output
        assert "Not spam" in result.output

    def test_analyze_missing_email(self, db_path):
        result = invoke("analyze", "999")
        assert result.exit_code == 1
        assert "Email not found" in result.output

    def test_check_json(self, db_path):
        result = invoke("check", "--subject", "Win a free prize now!!", "--body", "claim your prize", "--json")
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["isSpam"] is True
        assert data["spamScore"] == pytest.approx(0.7)
        assert "Multiple exclamation marks detected" in data["reasons"]

    def test_check_empty(self, db_path):
        result = invoke("check")
        assert result.exit_code == 0
        assert "No email content to analyze." in result.output


class TestCache:
    def test_info_empty(self, db_path):
        """Cache info on an empty store should not crash."""
        result = invoke("cache", "info")
        assert result.exit_code == 0
        assert "Emails:" in result.output

    def test_clear_after_analysis(self, seeded):
        invoke("analyze", str(seeded["Invoice 42"]))
        result = invoke("cache", "clear")
        assert result.exit_code == 0
        assert "1 removed" in result.output


class TestEmails:
    def test_emails_empty(self, db_path):
        assert "No emails stored" in invoke("emails").output

    def test_show_email_body(self, seeded):
        result = invoke("emails", "show", str(seeded["Lunch plans"]))
        assert result.exit_code == 0, result.output
        assert "Tacos at noon?" in result.output
        assert "Lunch plans" in result.output

    def test_show_missing_email(self, db_path):
        result = invoke("emails", "show", "999")
        assert result.exit_code == 1
        assert "Email not found" in result.output
