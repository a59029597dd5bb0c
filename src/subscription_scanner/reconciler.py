"""Reconcile classifier output into subscription and expense records."""

from __future__ import annotations

import logging
from datetime import date, datetime

from subscription_scanner.constants import (
    DEFAULT_CURRENCY,
    DEFAULT_FREQUENCY,
    DEFAULT_STATUS,
    KIND_SUBSCRIPTION,
    MIN_CONFIDENCE,
)
from subscription_scanner.models import (
    ClassificationResult,
    EmailBatchItem,
    ExpenseRecord,
    Record,
    SubscriptionCandidate,
    SubscriptionRecord,
)

logger = logging.getLogger(__name__)


def parse_datetime(value: str | None) -> datetime | None:
    """Parse an ISO-8601 date or datetime; None when missing or invalid."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Ignoring unparseable date %r", value)
        return None


def is_subscription(result: ClassificationResult) -> bool:
    return (result.kind or "").strip().upper() == KIND_SUBSCRIPTION


def assign_message_ids(
    results: list[ClassificationResult],
    items: list[EmailBatchItem],
) -> list[ClassificationResult]:
    """Match classifier results to the emails of the batch they came from.

    Results are matched on message id. A result without an id takes the id
    of the item at the same position, but only when the classifier returned
    exactly one result per item. Results naming an id outside the batch are
    dropped, and of several results for one id the most confident is kept.
    """
    known = {item.message_id for item in items}
    positional = len(results) == len(items)
    by_id: dict[str, ClassificationResult] = {}
    unmatched: list[ClassificationResult] = []

    for index, result in enumerate(results):
        if result.message_id is None and positional:
            result.message_id = items[index].message_id

        if result.message_id is None:
            logger.warning("Classifier result without messageId could not be matched")
            unmatched.append(result)
            continue

        if result.message_id not in known:
            logger.warning("Dropping classifier result for unknown message %s", result.message_id)
            continue

        previous = by_id.get(result.message_id)
        if previous is None or result.confidence > previous.confidence:
            by_id[result.message_id] = result

    ordered = [by_id[item.message_id] for item in items if item.message_id in by_id]
    return ordered + unmatched


def reconcile(
    results: list[ClassificationResult],
    account_id: str,
    now: datetime | None = None,
) -> list[Record]:
    """Convert each result into exactly one SubscriptionRecord or ExpenseRecord.

    A result whose discriminator is "SUBSCRIPTION" (any case) becomes a
    subscription; everything else, including a missing discriminator,
    becomes an expense. All defaults are applied here.
    """
    now = now or datetime.now()
    records: list[Record] = []

    for result in results:
        if is_subscription(result):
            records.append(
                SubscriptionRecord(
                    account_id=account_id,
                    name=result.name or result.merchant or "",
                    amount=result.amount if result.amount is not None else 0.0,
                    currency=(result.currency or DEFAULT_CURRENCY).upper(),
                    frequency=(result.frequency or DEFAULT_FREQUENCY).upper(),
                    category=result.category,
                    last_billed_at=parse_datetime(result.last_billed_at),
                    next_billing_at=parse_datetime(result.next_billing_at),
                    status=(result.status or DEFAULT_STATUS).upper(),
                    confidence=result.confidence,
                    message_id=result.message_id or "",
                )
            )
        else:
            records.append(
                ExpenseRecord(
                    account_id=account_id,
                    merchant=result.merchant or result.name or "",
                    amount=result.amount if result.amount is not None else 0.0,
                    currency=(result.currency or DEFAULT_CURRENCY).upper(),
                    date=parse_datetime(result.date) or now,
                    category=result.category,
                    description=result.description,
                    receipt_id=result.receipt_id,
                    confidence=result.confidence,
                    message_id=result.message_id or "",
                )
            )

    return records


def filter_and_rank(
    records: list[Record],
    min_confidence: float = MIN_CONFIDENCE,
    today: date | None = None,
) -> list[SubscriptionCandidate]:
    """Project confident subscriptions into candidates, most confident first.

    The sort is stable, so candidates with equal confidence keep batch order.
    """
    today = today or date.today()
    candidates = [
        SubscriptionCandidate(
            message_id=record.message_id,
            service_name=record.name,
            amount=record.amount,
            date=(record.next_billing_at.date() if record.next_billing_at else today).isoformat(),
            confidence=record.confidence,
        )
        for record in records
        if isinstance(record, SubscriptionRecord) and record.confidence >= min_confidence
    ]
    candidates.sort(key=lambda c: -c.confidence)
    return candidates


def merge_candidates(
    existing: list[SubscriptionCandidate],
    new: list[SubscriptionCandidate],
) -> list[SubscriptionCandidate]:
    """Combine two candidate lists without duplicates.

    Two candidates are the same subscription when they share a message id or
    the same service name (case-insensitive) and amount. The more confident
    one is kept; on a tie the existing candidate wins.
    """
    combined = sorted(existing + new, key=lambda c: -c.confidence)
    seen_ids: set[str] = set()
    seen_services: set[tuple[str, float]] = set()
    merged: list[SubscriptionCandidate] = []

    for candidate in combined:
        service_key = (candidate.service_name.strip().casefold(), round(candidate.amount, 2))
        if (candidate.message_id and candidate.message_id in seen_ids) or service_key in seen_services:
            continue
        if candidate.message_id:
            seen_ids.add(candidate.message_id)
        seen_services.add(service_key)
        merged.append(candidate)

    return merged
