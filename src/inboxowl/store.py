"""SQLite store: the single source of truth for emails, categories, rules and analyses."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Iterable

from .conditions import parse_conditions
from .constants import DB_PATH
from .errors import ConditionParseError, NotFoundError, ValidationError
from .models import AnalysisResult, Category, Email, Rule

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT UNIQUE NOT NULL
);

CREATE TABLE IF NOT EXISTS emails (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    external_id TEXT NOT NULL,
    subject TEXT,
    sender TEXT,
    snippet TEXT,
    body TEXT,
    date TEXT,
    labels_json TEXT,
    attachments_json TEXT,
    UNIQUE (user_id, external_id),
    FOREIGN KEY (user_id) REFERENCES users(id)
);

CREATE TABLE IF NOT EXISTS categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    color TEXT,
    UNIQUE (user_id, name),
    FOREIGN KEY (user_id) REFERENCES users(id)
);

CREATE TABLE IF NOT EXISTS rules (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    conditions_json TEXT NOT NULL,
    category_id INTEGER NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    FOREIGN KEY (user_id) REFERENCES users(id),
    FOREIGN KEY (category_id) REFERENCES categories(id)
);

CREATE TABLE IF NOT EXISTS email_categories (
    email_id INTEGER NOT NULL,
    category_id INTEGER NOT NULL,
    PRIMARY KEY (email_id, category_id),
    FOREIGN KEY (email_id) REFERENCES emails(id),
    FOREIGN KEY (category_id) REFERENCES categories(id)
);

CREATE TABLE IF NOT EXISTS email_analyses (
    email_id INTEGER PRIMARY KEY,
    is_spam INTEGER NOT NULL,
    spam_score REAL NOT NULL,
    reasons_json TEXT NOT NULL,
    summary TEXT,
    category TEXT,
    category_id INTEGER,
    matched_rule TEXT,
    source TEXT,
    created_at TEXT,
    FOREIGN KEY (email_id) REFERENCES emails(id)
);

CREATE TABLE IF NOT EXISTS cache_entries (
    namespace TEXT NOT NULL,
    key TEXT NOT NULL,
    value_json TEXT NOT NULL,
    expires_at REAL NOT NULL,
    created_at REAL NOT NULL,
    touched_at REAL NOT NULL,
    PRIMARY KEY (namespace, key)
);
"""


class MailStore:
    """Persistent SQLite store for one mailbox database."""

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = Path(db_path or DB_PATH)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._create_tables()

    def _create_tables(self) -> None:
        self._conn.executescript(_CREATE_TABLES_SQL)

    # --- users ---

    def get_or_create_user(self, email: str) -> int:
        """Return the id of the user with this address, creating it if needed."""
        with self._conn:
            self._conn.execute("INSERT OR IGNORE INTO users (email) VALUES (?)", (email,))
        row = self._conn.execute("SELECT id FROM users WHERE email = ?", (email,)).fetchone()
        return row["id"]

    # --- emails ---

    def upsert_email(self, email: Email) -> tuple[Email, bool]:
        """Insert an email or refresh the stored copy with the same external id.

        Returns the stored email and whether it was newly created.
        """
        existing = self._conn.execute(
            "SELECT id FROM emails WHERE user_id = ? AND external_id = ?",
            (email.user_id, email.external_id),
        ).fetchone()

        with self._conn:
            if existing is None:
                cursor = self._conn.execute(
                    "INSERT INTO emails (user_id, external_id, subject, sender, snippet, body, "
                    "date, labels_json, attachments_json) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        email.user_id,
                        email.external_id,
                        email.subject,
                        email.sender,
                        email.snippet,
                        email.body,
                        email.date,
                        json.dumps(email.labels),
                        json.dumps(email.attachments),
                    ),
                )
                email_id = cursor.lastrowid
            else:
                email_id = existing["id"]
                self._conn.execute(
                    "UPDATE emails SET subject = ?, sender = ?, snippet = ?, "
                    "body = COALESCE(NULLIF(?, ''), body), date = ?, labels_json = ?, "
                    "attachments_json = ? WHERE id = ?",
                    (
                        email.subject,
                        email.sender,
                        email.snippet,
                        email.body,
                        email.date,
                        json.dumps(email.labels),
                        json.dumps(email.attachments),
                        email_id,
                    ),
                )

        stored = self.get_email(email_id)
        if stored is None:
            raise NotFoundError("Email")
        return stored, existing is None

    def get_email(self, email_id: int) -> Email | None:
        row = self._conn.execute("SELECT * FROM emails WHERE id = ?", (email_id,)).fetchone()
        if row is None:
            return None
        return self._email_from_row(row, self._category_ids_for([email_id]))

    def list_emails(self, user_id: int, category_id: int | None = None, limit: int | None = None) -> list[Email]:
        """Return a user's emails, newest id first, optionally within one category."""
        sql = "SELECT e.* FROM emails e"
        params: list = []
        if category_id is not None:
            sql += " JOIN email_categories ec ON ec.email_id = e.id AND ec.category_id = ?"
            params.append(category_id)
        sql += " WHERE e.user_id = ? ORDER BY e.id DESC"
        params.append(user_id)
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        rows = self._conn.execute(sql, params).fetchall()
        memberships = self._category_ids_for([r["id"] for r in rows])
        return [self._email_from_row(r, memberships) for r in rows]

    def _category_ids_for(self, email_ids: list[int]) -> dict[int, set[int]]:
        memberships: dict[int, set[int]] = {}
        if not email_ids:
            return memberships
        placeholders = ",".join("?" * len(email_ids))
        rows = self._conn.execute(
            f"SELECT email_id, category_id FROM email_categories WHERE email_id IN ({placeholders})",
            email_ids,
        ).fetchall()
        for r in rows:
            memberships.setdefault(r["email_id"], set()).add(r["category_id"])
        return memberships

    @staticmethod
    def _email_from_row(row: sqlite3.Row, memberships: dict[int, set[int]]) -> Email:
        return Email(
            id=row["id"],
            external_id=row["external_id"],
            user_id=row["user_id"],
            subject=row["subject"] or "",
            sender=row["sender"] or "",
            snippet=row["snippet"] or "",
            body=row["body"] or "",
            date=row["date"] or "",
            labels=json.loads(row["labels_json"] or "[]"),
            attachments=json.loads(row["attachments_json"] or "[]"),
            category_ids=set(memberships.get(row["id"], set())),
        )

    # --- categories ---

    def create_category(self, user_id: int, name: str, color: str = "") -> Category:
        if not name.strip():
            raise ValidationError("Category name is required")
        try:
            with self._conn:
                cursor = self._conn.execute(
                    "INSERT INTO categories (user_id, name, color) VALUES (?, ?, ?)",
                    (user_id, name, color),
                )
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"Category {name!r} already exists") from e
        return Category(id=cursor.lastrowid, user_id=user_id, name=name, color=color)

    def get_category(self, user_id: int, category_id: int) -> Category | None:
        row = self._conn.execute(
            "SELECT c.*, (SELECT COUNT(*) FROM email_categories ec WHERE ec.category_id = c.id) AS email_count "
            "FROM categories c WHERE c.id = ? AND c.user_id = ?",
            (category_id, user_id),
        ).fetchone()
        return self._category_from_row(row) if row else None

    def get_category_by_name(self, user_id: int, name: str) -> Category | None:
        row = self._conn.execute(
            "SELECT c.*, (SELECT COUNT(*) FROM email_categories ec WHERE ec.category_id = c.id) AS email_count "
            "FROM categories c WHERE c.name = ? AND c.user_id = ?",
            (name, user_id),
        ).fetchone()
        return self._category_from_row(row) if row else None

    def list_categories(self, user_id: int) -> list[Category]:
        rows = self._conn.execute(
            "SELECT c.*, (SELECT COUNT(*) FROM email_categories ec WHERE ec.category_id = c.id) AS email_count "
            "FROM categories c WHERE c.user_id = ? ORDER BY c.id",
            (user_id,),
        ).fetchall()
        return [self._category_from_row(r) for r in rows]

    def update_category(self, user_id: int, category_id: int, name: str | None = None, color: str | None = None) -> Category:
        category = self.get_category(user_id, category_id)
        if category is None:
            raise NotFoundError("Category")
        try:
            with self._conn:
                self._conn.execute(
                    "UPDATE categories SET name = ?, color = ? WHERE id = ? AND user_id = ?",
                    (name or category.name, category.color if color is None else color, category_id, user_id),
                )
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"Category {name!r} already exists") from e
        updated = self.get_category(user_id, category_id)
        if updated is None:
            raise NotFoundError("Category")
        return updated

    def delete_category(self, user_id: int, category_id: int) -> None:
        """Delete a category, its email associations and the rules that target it.

        The emails themselves are kept.
        """
        if self.get_category(user_id, category_id) is None:
            raise NotFoundError("Category")
        with self._conn:
            self._conn.execute("DELETE FROM email_categories WHERE category_id = ?", (category_id,))
            self._conn.execute("DELETE FROM rules WHERE category_id = ? AND user_id = ?", (category_id, user_id))
            self._conn.execute("DELETE FROM categories WHERE id = ? AND user_id = ?", (category_id, user_id))

    @staticmethod
    def _category_from_row(row: sqlite3.Row) -> Category:
        return Category(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            color=row["color"] or "",
            email_count=row["email_count"],
        )

    # --- membership ---

    def connect_emails(self, category_id: int, email_ids: Iterable[int]) -> None:
        """Add emails to a category, keeping existing members."""
        with self._conn:
            self._conn.executemany(
                "INSERT OR IGNORE INTO email_categories (email_id, category_id) VALUES (?, ?)",
                [(email_id, category_id) for email_id in email_ids],
            )

    def assign_emails(self, user_id: int, category_id: int, email_ids: Iterable[int]) -> Category:
        """Add a user's emails to one of the user's categories.

        Nothing is written unless the category and every email belong to the user.
        """
        if self.get_category(user_id, category_id) is None:
            raise NotFoundError("Category")
        email_ids = list(dict.fromkeys(email_ids))
        for email_id in email_ids:
            row = self._conn.execute(
                "SELECT 1 FROM emails WHERE id = ? AND user_id = ?", (email_id, user_id)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Email {email_id}")
        self.connect_emails(category_id, email_ids)
        return self.get_category(user_id, category_id)

    def set_emails(self, category_id: int, email_ids: Iterable[int]) -> None:
        """Make a category's members exactly ``email_ids``."""
        with self._conn:
            self._conn.execute("DELETE FROM email_categories WHERE category_id = ?", (category_id,))
            self._conn.executemany(
                "INSERT OR IGNORE INTO email_categories (email_id, category_id) VALUES (?, ?)",
                [(email_id, category_id) for email_id in email_ids],
            )

    # --- rules ---

    def create_rule(self, rule: Rule) -> Rule:
        with self._conn:
            cursor = self._conn.execute(
                "INSERT INTO rules (user_id, name, conditions_json, category_id, is_active) VALUES (?, ?, ?, ?, ?)",
                (rule.user_id, rule.name, rule.raw_conditions, rule.category_id, int(rule.is_active)),
            )
        rule.id = cursor.lastrowid
        return rule

    def update_rule(self, rule: Rule) -> Rule:
        with self._conn:
            cursor = self._conn.execute(
                "UPDATE rules SET name = ?, conditions_json = ?, category_id = ?, is_active = ? "
                "WHERE id = ? AND user_id = ?",
                (rule.name, rule.raw_conditions, rule.category_id, int(rule.is_active), rule.id, rule.user_id),
            )
        if cursor.rowcount == 0:
            raise NotFoundError("Rule")
        return rule

    def delete_rule(self, user_id: int, rule_id: int) -> None:
        with self._conn:
            cursor = self._conn.execute("DELETE FROM rules WHERE id = ? AND user_id = ?", (rule_id, user_id))
        if cursor.rowcount == 0:
            raise NotFoundError("Rule")

    def get_rule(self, user_id: int, rule_id: int) -> Rule | None:
        row = self._conn.execute(
            "SELECT * FROM rules WHERE id = ? AND user_id = ?", (rule_id, user_id)
        ).fetchone()
        return self._rule_from_row(row) if row else None

    def list_rules(self, user_id: int, active_only: bool = False) -> list[Rule]:
        """Return a user's rules in creation order."""
        sql = "SELECT * FROM rules WHERE user_id = ?"
        if active_only:
            sql += " AND is_active = 1"
        rows = self._conn.execute(sql + " ORDER BY id", (user_id,)).fetchall()
        return [self._rule_from_row(r) for r in rows]

    @staticmethod
    def _rule_from_row(row: sqlite3.Row) -> Rule:
        rule = Rule(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            category_id=row["category_id"],
            is_active=bool(row["is_active"]),
            raw_conditions=row["conditions_json"],
        )
        try:
            rule.conditions = parse_conditions(rule.raw_conditions, strict=False)
        except ConditionParseError as e:
            rule.parse_error = str(e)
        return rule

    # --- analyses ---

    def get_analysis(self, email_id: int) -> AnalysisResult | None:
        row = self._conn.execute(
            "SELECT * FROM email_analyses WHERE email_id = ?", (email_id,)
        ).fetchone()
        if row is None:
            return None
        return AnalysisResult(
            email_id=row["email_id"],
            is_spam=bool(row["is_spam"]),
            spam_score=row["spam_score"],
            reasons=json.loads(row["reasons_json"]),
            summary=row["summary"] or "",
            category=row["category"],
            category_id=row["category_id"],
            matched_rule=row["matched_rule"],
            source=row["source"] or "heuristic",
            created_at=row["created_at"] or "",
        )

    def save_analysis(self, email_id: int, result: AnalysisResult) -> None:
        """Insert or replace the analysis stored for an email."""
        with self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO email_analyses (email_id, is_spam, spam_score, reasons_json, "
                "summary, category, category_id, matched_rule, source, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    email_id,
                    int(result.is_spam),
                    result.spam_score,
                    json.dumps(result.reasons),
                    result.summary,
                    result.category,
                    result.category_id,
                    result.matched_rule,
                    result.source,
                    result.created_at,
                ),
            )

    def clear_analyses(self, email_id: int | None = None) -> int:
        """Delete stored analyses (all, or one email's). Returns rows removed."""
        with self._conn:
            if email_id is None:
                cursor = self._conn.execute("DELETE FROM email_analyses")
            else:
                cursor = self._conn.execute("DELETE FROM email_analyses WHERE email_id = ?", (email_id,))
        return cursor.rowcount

    # --- cache entries ---

    def get_cache_entry(self, namespace: str, key: str, now: float) -> sqlite3.Row | None:
        """Return a live entry, dropping it first if it has expired."""
        row = self._conn.execute(
            "SELECT * FROM cache_entries WHERE namespace = ? AND key = ?", (namespace, key)
        ).fetchone()
        if row is not None and row["expires_at"] <= now:
            self.delete_cache_entries(namespace, key)
            return None
        return row

    def put_cache_entry(self, namespace: str, key: str, value_json: str, expires_at: float, now: float) -> None:
        with self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO cache_entries "
                "(namespace, key, value_json, expires_at, created_at, touched_at) VALUES (?, ?, ?, ?, ?, ?)",
                (namespace, key, value_json, expires_at, now, now),
            )

    def touch_cache_entry(self, namespace: str, key: str, now: float) -> None:
        with self._conn:
            self._conn.execute(
                "UPDATE cache_entries SET touched_at = ? WHERE namespace = ? AND key = ?",
                (now, namespace, key),
            )

    def expire_cache_entry(self, namespace: str, key: str, expires_at: float) -> bool:
        with self._conn:
            cursor = self._conn.execute(
                "UPDATE cache_entries SET expires_at = ? WHERE namespace = ? AND key = ?",
                (expires_at, namespace, key),
            )
        return cursor.rowcount > 0

    def delete_cache_entries(self, namespace: str | None = None, key: str | None = None) -> int:
        """Delete cache entries: all, one namespace, or one key. Returns rows removed."""
        sql = "DELETE FROM cache_entries"
        params: list = []
        if namespace is not None:
            sql += " WHERE namespace = ?"
            params.append(namespace)
            if key is not None:
                sql += " AND key = ?"
                params.append(key)
        with self._conn:
            cursor = self._conn.execute(sql, params)
        return cursor.rowcount

    def purge_cache_entries(self, namespace: str, now: float) -> int:
        with self._conn:
            cursor = self._conn.execute(
                "DELETE FROM cache_entries WHERE namespace = ? AND expires_at <= ?", (namespace, now)
            )
        return cursor.rowcount

    def count_cache_entries(self, namespace: str | None = None) -> int:
        if namespace is None:
            return self._conn.execute("SELECT COUNT(*) AS c FROM cache_entries").fetchone()["c"]
        return self._conn.execute(
            "SELECT COUNT(*) AS c FROM cache_entries WHERE namespace = ?", (namespace,)
        ).fetchone()["c"]

    def evict_oldest_cache_entry(self, namespace: str, by: str = "created_at") -> None:
        """Drop the entry with the smallest ``created_at`` or ``touched_at``."""
        if by not in ("created_at", "touched_at"):
            raise ValueError(f"Cannot evict by {by!r}")
        with self._conn:
            self._conn.execute(
                "DELETE FROM cache_entries WHERE rowid = ("
                f"SELECT rowid FROM cache_entries WHERE namespace = ? ORDER BY {by}, rowid LIMIT 1)",
                (namespace,),
            )

    # --- maintenance ---

    def get_info(self) -> dict:
        """Return store statistics."""
        file_size = self.db_path.stat().st_size if self.db_path.exists() else 0

        def count(table: str) -> int:
            return self._conn.execute(f"SELECT COUNT(*) AS c FROM {table}").fetchone()["c"]

        return {
            "db_file_size": file_size,
            "email_count": count("emails"),
            "category_count": count("categories"),
            "rule_count": count("rules"),
            "analysis_count": count("email_analyses"),
            "cache_entry_count": count("cache_entries"),
        }

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # --- context manager ---

    def __enter__(self) -> MailStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        self.close()
