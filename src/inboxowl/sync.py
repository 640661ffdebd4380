"""Sync orchestration - fetches inbox messages, stores them, applies rules."""

from __future__ import annotations

import sqlite3
import time
from typing import Callable

import httplib2
from google.auth.exceptions import GoogleAuthError
from googleapiclient.errors import HttpError

from .constants import SYNC_BATCH_DELAY, SYNC_BATCH_SIZE
from .gmail_client import fetch_message, list_message_ids
from .log import get_logger
from .models import Email, SyncResult
from .parser import ParsedMessage
from .rules import RuleService
from .ttl_cache import PersistentTTLCache, SyncThrottle, TTLCache

logger = get_logger(__name__)

# Transport and credential failures raised by the Gmail client stack.
_PROVIDER_ERRORS = (HttpError, httplib2.HttpLib2Error, GoogleAuthError, OSError)


def to_email(message: ParsedMessage, user_id: int) -> Email:
    return Email(
        external_id=message.external_id,
        user_id=user_id,
        subject=message.subject,
        sender=message.sender,
        snippet=message.snippet,
        body=message.body,
        date=message.date,
        labels=message.labels,
        attachments=message.attachments,
    )


def batched(items: list[str], size: int) -> list[list[str]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


def sync_mailbox(
    service,
    store,
    user_id: int,
    rule_service: RuleService,
    throttle: SyncThrottle | None = None,
    content_cache: TTLCache | PersistentTTLCache | None = None,
    max_results: int | None = None,
    batch_size: int = SYNC_BATCH_SIZE,
    batch_delay: float = SYNC_BATCH_DELAY,
    force: bool = False,
    sleep: Callable[[float], None] = time.sleep,
    callback: Callable[[int, int], None] | None = None,
) -> SyncResult:
    """Pull inbox messages into the store and file them by the user's rules.

    Messages are fetched in small batches with a pause between batches. A
    provider failure while listing ends the sync with ``error`` set; what is
    already stored stays available. A message that fails on its own is
    logged and skipped.
    """
    if throttle is not None and not force and throttle.was_recently_synced(user_id):
        logger.info("sync_throttled", user_id=user_id)
        return SyncResult(skipped=True)

    result = SyncResult()
    try:
        ids = list_message_ids(service, max_results=max_results)
    except _PROVIDER_ERRORS as e:
        logger.error("sync_list_failed", user_id=user_id, error=str(e))
        result.error = f"Could not reach Gmail: {e}"
        return result

    batches = batched(ids, batch_size)
    for batch_num, chunk in enumerate(batches, start=1):
        if batch_num > 1 and batch_delay:
            sleep(batch_delay)

        for message_id in chunk:
            try:
                message = fetch_message(service, message_id, content_cache)
                email, created = store.upsert_email(to_email(message, user_id))
            except (*_PROVIDER_ERRORS, sqlite3.Error, KeyError, ValueError) as e:
                logger.warning("sync_message_failed", message_id=message_id, error=str(e))
                result.failed += 1
                continue

            result.fetched += 1
            if created:
                result.created += 1
            else:
                result.updated += 1

            categorization = rule_service.apply_rules_to_email(email)
            if categorization.category_id is not None:
                result.categorized += 1

        logger.debug("sync_batch_done", batch=batch_num, total=len(batches))
        if callback:
            callback(batch_num, len(batches))

    if throttle is not None:
        throttle.record_sync(user_id)
    logger.info(
        "sync_finished",
        user_id=user_id,
        fetched=result.fetched,
        created=result.created,
        updated=result.updated,
        failed=result.failed,
    )
    return result
