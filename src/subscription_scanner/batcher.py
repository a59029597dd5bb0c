"""Build bounded classifier batches from fetched messages."""

from __future__ import annotations

import logging

from subscription_scanner.constants import CLASSIFY_BATCH_SIZE, MAX_CONTENT_LENGTH, TRUNCATION_MARKER
from subscription_scanner.gmail_client import decode_text_content, get_header
from subscription_scanner.models import EmailBatchItem, RawMessage

logger = logging.getLogger(__name__)


def truncate_content(content: str, max_length: int = MAX_CONTENT_LENGTH) -> str:
    """Cut ``content`` to ``max_length`` characters plus TRUNCATION_MARKER."""
    if len(content) <= max_length:
        return content
    return content[:max_length] + TRUNCATION_MARKER


def build_batch_items(
    messages: list[RawMessage],
    account_id: str | None = None,
    max_length: int = MAX_CONTENT_LENGTH,
) -> list[EmailBatchItem]:
    """Turn messages into classifier input, skipping those with no body text."""
    items: list[EmailBatchItem] = []

    for message in messages:
        body = decode_text_content(message).strip()
        if not body:
            logger.debug("Skipping message %s with empty body", message.id)
            continue

        summary = (
            f"Subject: {get_header(message, 'Subject')}\n"
            f"From: {get_header(message, 'From')}\n"
            f"Date: {get_header(message, 'Date')}\n\n"
        )
        items.append(
            EmailBatchItem(
                message_id=message.id,
                content=truncate_content(summary + body, max_length),
                account_id=account_id,
            )
        )

    return items


def chunk_batch_items(
    items: list[EmailBatchItem],
    batch_size: int = CLASSIFY_BATCH_SIZE,
) -> list[list[EmailBatchItem]]:
    """Split items into batches of at most ``batch_size``."""
    batch_size = max(1, batch_size)
    return [items[start:start + batch_size] for start in range(0, len(items), batch_size)]
