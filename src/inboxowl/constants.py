"""Constants for InboxOwl."""

from pathlib import Path

# --- Config paths ---
CONFIG_DIR = Path.home() / ".inboxowl"
CREDENTIALS_PATH = CONFIG_DIR / "credentials.json"
TOKEN_PATH = CONFIG_DIR / "token.json"
DB_PATH = CONFIG_DIR / "inboxowl.db"

# --- Gmail API ---
SCOPES = ["https://www.googleapis.com/auth/gmail.readonly"]
PAGE_SIZE = 100  # messages per list page
INBOX_LABEL = "INBOX"
SYNC_BATCH_SIZE = 3  # messages fetched per batch during sync
SYNC_BATCH_DELAY = 1.0  # seconds between sync batches

# --- Caches ---
SYNC_THROTTLE_SECONDS = 15
CONTENT_CACHE_TTL = 24 * 60 * 60
CONTENT_CACHE_MAX_KEYS = 1000
# Namespaces of the store-backed caches
SYNC_CACHE_NAMESPACE = "sync"
MESSAGE_CACHE_NAMESPACE = "message"

# --- Spam scoring weights ---
WEIGHT_KEYWORD = 0.15
WEIGHT_EXCESSIVE_CAPS = 0.20
WEIGHT_EXCLAMATIONS = 0.10
# Suspicious links contribute the suspicious/total URL ratio directly.

# --- Spam thresholds ---
SPAM_THRESHOLD = 0.6
CAPS_RATIO_THRESHOLD = 0.3

SPAM_KEYWORDS = [
    "urgent",
    "action required",
    "account suspended",
    "verify your account",
    "click here",
    "login to verify",
    "unusual activity",
    "suspicious activity",
    "password expired",
    "win",
    "winner",
    "congratulations",
    "claim your prize",
    "prize",
    "limited time",
    "free money",
    "free",
    "exclusive offer",
    "guaranteed",
    "lottery",
    "casino",
]

LINK_SHORTENERS = [
    "bit.ly",
    "tinyurl.com",
    "goo.gl",
    "ow.ly",
    "t.co",
]

SUSPICIOUS_URL_TOKENS = ["@", "login", "verify"]

# --- Categorization ---
DEFAULT_CATEGORY = "Other"

# Tested in order; the first group with a hit wins.
FALLBACK_TAXONOMY = [
    ("Finance", ["invoice", "payment", "receipt", "order", "purchase", "transaction", "credit", "debit"]),
    ("Work", ["meeting", "call", "agenda", "discuss", "presentation", "team", "project"]),
    ("Promotions", ["newsletter", "subscribe", "unsubscribe", "discount", "offer", "sale", "promotion", "deal"]),
    ("Social", ["social", "friend", "family", "birthday", "invitation", "event", "party"]),
]

# --- Summaries ---
SUMMARY_SENTENCES = 3
SUMMARY_INPUT_LIMIT = 5000
EMPTY_BODY_SUMMARY = "No email content to summarize."
EMPTY_EMAIL_SUMMARY = "No email content to analyze."
FAILED_SUMMARY = "Unable to generate summary for this email."

# --- Generative collaborator ---
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_OPENAI_TIMEOUT = 20.0

# --- Display ---
SNIPPET_DISPLAY_LIMIT = 60
