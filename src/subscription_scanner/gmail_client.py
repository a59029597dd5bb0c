"""Gmail API client functions for listing, fetching and decoding messages."""

from __future__ import annotations

import base64
import binascii
import html
import logging
import re
from typing import Callable

import httplib2
from googleapiclient.errors import HttpError
from googleapiclient.http import BatchHttpRequest
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from subscription_scanner.constants import BATCH_SIZE, MESSAGE_FORMAT, PAGE_SIZE, RETRYABLE_STATUSES
from subscription_scanner.exceptions import MessageFetchError
from subscription_scanner.models import MessagePage, MessagePart, RawMessage

logger = logging.getLogger(__name__)

# Failures of a Gmail request at the HTTP or network level
GMAIL_ERRORS = (HttpError, OSError, httplib2.HttpLib2Error)

_TAG_RE = re.compile(r"<[^>]+>")
_SCRIPT_STYLE_RE = re.compile(r"<(script|style)\b.*?</\1>", re.IGNORECASE | re.DOTALL)
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")


def _is_retryable_http_error(exc: BaseException) -> bool:
    return isinstance(exc, HttpError) and exc.resp.status in RETRYABLE_STATUSES


_gmail_retry = retry(
    retry=retry_if_exception(_is_retryable_http_error),
    wait=wait_exponential(multiplier=1, min=1, max=60),
    stop=stop_after_attempt(5),
    reraise=True,
)


@_gmail_retry
def _execute(request) -> dict:
    return request.execute()


def list_message_ids_page(
    service,
    query: str | None = None,
    page_size: int = PAGE_SIZE,
    page_token: str | None = None,
) -> MessagePage:
    """Fetch one page of message ids matching the query."""
    kwargs: dict = {"userId": "me", "maxResults": page_size}
    if query:
        kwargs["q"] = query
    if page_token:
        kwargs["pageToken"] = page_token

    resp = _execute(service.users().messages().list(**kwargs))
    return MessagePage(
        ids=[msg["id"] for msg in resp.get("messages", [])],
        next_page_token=resp.get("nextPageToken"),
        estimated_total=resp.get("resultSizeEstimate", 0),
    )


def list_message_ids(
    service,
    query: str | None = None,
    max_results: int | None = None,
) -> tuple[list[str], int]:
    """List message ids matching the query, handling pagination.

    Returns the ids (at most ``max_results``) and the provider's estimate of
    the total number of matches.
    """
    ids: list[str] = []
    page_token: str | None = None
    estimated_total = 0

    while True:
        page_size = PAGE_SIZE
        if max_results:
            page_size = min(PAGE_SIZE, max_results - len(ids))

        page = list_message_ids_page(service, query=query, page_size=page_size, page_token=page_token)
        estimated_total = max(estimated_total, page.estimated_total)
        ids.extend(page.ids)

        if max_results and len(ids) >= max_results:
            return ids[:max_results], max(estimated_total, len(ids))

        page_token = page.next_page_token
        if not page_token:
            break

    return ids, max(estimated_total, len(ids))


def get_message(service, message_id: str) -> RawMessage:
    """Fetch a single full message."""
    try:
        data = _execute(
            service.users().messages().get(userId="me", id=message_id, format=MESSAGE_FORMAT)
        )
    except HttpError as exc:
        raise MessageFetchError(message_id, exc.resp.status, str(exc)) from exc
    return RawMessage.from_api(data)


@_gmail_retry
def _execute_batch(batch: BatchHttpRequest) -> None:
    batch.execute()


def get_messages_bulk(
    service,
    message_ids: list[str],
    callback: Callable[[int, int], None] | None = None,
) -> list[RawMessage]:
    """Fetch full messages in batches using BatchHttpRequest.

    A message that fails to fetch is logged and skipped. The returned list
    keeps the input order of the messages that succeeded.
    """
    fetched: dict[str, RawMessage] = {}
    total_batches = (len(message_ids) + BATCH_SIZE - 1) // BATCH_SIZE

    for batch_num in range(total_batches):
        start = batch_num * BATCH_SIZE
        end = min(start + BATCH_SIZE, len(message_ids))
        chunk = message_ids[start:end]

        batch = service.new_batch_http_request()

        def _make_callback(msg_id: str):
            def _cb(request_id, response, exception):
                if exception is not None:
                    logger.warning("Skipping message %s: %s", msg_id, exception)
                    return
                try:
                    fetched[msg_id] = RawMessage.from_api(response)
                except (KeyError, TypeError, ValueError) as exc:
                    logger.warning("Skipping malformed message %s: %s", msg_id, exc)

            return _cb

        for msg_id in chunk:
            batch.add(
                service.users().messages().get(userId="me", id=msg_id, format=MESSAGE_FORMAT),
                callback=_make_callback(msg_id),
            )

        try:
            _execute_batch(batch)
        except GMAIL_ERRORS as exc:
            logger.warning("Batch %d/%d failed, skipping %d messages: %s",
                           batch_num + 1, total_batches, len(chunk), exc)

        if callback:
            callback(batch_num + 1, total_batches)

    logger.info("Fetched %d/%d messages", len(fetched), len(message_ids))
    return [fetched[msg_id] for msg_id in message_ids if msg_id in fetched]


def get_header(message: RawMessage, name: str) -> str:
    """Return the first header value matching ``name`` (case-insensitive)."""
    wanted = name.lower()
    for header_name, value in message.payload.headers:
        if header_name.lower() == wanted:
            return value
    return ""


def decode_base64url(data: str) -> str:
    """Decode Gmail's unpadded base64url body data to text."""
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError):
        return ""
    return raw.decode("utf-8", errors="replace")


def strip_html(text: str) -> str:
    """Remove tags from an HTML body. Not a full parser."""
    text = _SCRIPT_STYLE_RE.sub(" ", text)
    text = _TAG_RE.sub(" ", text)
    text = html.unescape(text)
    lines = [" ".join(line.split()) for line in text.splitlines()]
    return _BLANK_LINES_RE.sub("\n\n", "\n".join(lines)).strip()


def _find_leaf(part: MessagePart, mime_type: str) -> MessagePart | None:
    """Depth-first search for a leaf of ``mime_type`` that carries body data."""
    if not part.parts:
        if part.mime_type == mime_type and part.body_data:
            return part
        return None
    for child in part.parts:
        found = _find_leaf(child, mime_type)
        if found is not None:
            return found
    return None


def decode_text_content(message: RawMessage) -> str:
    """Extract the plain-text body of a message.

    Prefers a text/plain leaf anywhere in the payload tree and falls back to
    text/html with tags stripped. A single-part payload without a MIME type
    is treated as plain text. Returns an empty string when nothing decodes.
    """
    payload = message.payload

    if not payload.parts and payload.body_data:
        text = decode_base64url(payload.body_data)
        if payload.mime_type == "text/html":
            return strip_html(text)
        return text

    leaf = _find_leaf(payload, "text/plain")
    if leaf is not None:
        return decode_base64url(leaf.body_data)

    leaf = _find_leaf(payload, "text/html")
    if leaf is not None:
        return strip_html(decode_base64url(leaf.body_data))

    return ""
