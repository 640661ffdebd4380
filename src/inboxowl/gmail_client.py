"""Gmail API client functions for listing and fetching messages."""

from __future__ import annotations

from dataclasses import asdict

from googleapiclient.errors import HttpError
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from .constants import INBOX_LABEL, PAGE_SIZE
from .log import get_logger
from .parser import ParsedMessage, parse_message
from .ttl_cache import PersistentTTLCache, TTLCache

logger = get_logger(__name__)


def _is_retryable_http_error(exc: BaseException) -> bool:
    return isinstance(exc, HttpError) and exc.resp.status in (429, 500, 503)


_retry_transient = retry(
    retry=retry_if_exception(_is_retryable_http_error),
    wait=wait_exponential(multiplier=1, min=1, max=60),
    stop=stop_after_attempt(5),
    reraise=True,
)


@_retry_transient
def _list_page(service, **kwargs) -> dict:
    return service.users().messages().list(**kwargs).execute()


def list_message_ids(
    service,
    max_results: int | None = None,
    label_ids: list[str] | None = None,
) -> list[str]:
    """List inbox message IDs, handling pagination."""
    ids: list[str] = []
    page_token: str | None = None

    while True:
        kwargs: dict = {
            "userId": "me",
            "maxResults": min(PAGE_SIZE, max_results) if max_results else PAGE_SIZE,
            "labelIds": label_ids or [INBOX_LABEL],
        }
        if page_token:
            kwargs["pageToken"] = page_token

        resp = _list_page(service, **kwargs)
        for msg in resp.get("messages", []):
            ids.append(msg["id"])
            if max_results and len(ids) >= max_results:
                return ids[:max_results]

        page_token = resp.get("nextPageToken")
        if not page_token:
            break

    return ids


@_retry_transient
def _get_message(service, message_id: str) -> dict:
    return service.users().messages().get(userId="me", id=message_id, format="full").execute()


def fetch_message(
    service,
    message_id: str,
    content_cache: TTLCache | PersistentTTLCache | None = None,
) -> ParsedMessage:
    """Fetch and parse one message, consulting the body cache first.

    The cache holds plain dicts so a store-backed cache can persist them.
    """
    if content_cache is not None:
        cached = content_cache.get(message_id)
        if cached is not None:
            logger.debug("message_cache_hit", message_id=message_id)
            return ParsedMessage(**cached)

    message = parse_message(_get_message(service, message_id))
    if content_cache is not None:
        content_cache.set(message_id, asdict(message))
    return message


def get_profile_email(service) -> str:
    """Address of the authenticated mailbox."""
    return service.users().getProfile(userId="me").execute()["emailAddress"]
