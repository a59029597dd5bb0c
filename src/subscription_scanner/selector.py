"""Candidate selection - narrow the mailbox to likely payment emails."""

from __future__ import annotations

import logging

from subscription_scanner.constants import MAX_MESSAGES, RECENT_WINDOW, SUBJECT_TERMS
from subscription_scanner.gmail_client import list_message_ids
from subscription_scanner.models import CandidateSelection

logger = logging.getLogger(__name__)


def build_subscription_query(
    terms: list[str] | None = None,
    window: str = RECENT_WINDOW,
) -> str:
    """Build the Gmail search expression for payment-related subjects.

    >>> build_subscription_query(["receipt", "invoice"], "6m")
    'subject:(receipt OR invoice) newer_than:6m'
    """
    terms = terms or SUBJECT_TERMS
    query = f"subject:({' OR '.join(terms)})"
    if window:
        query += f" newer_than:{window}"
    return query


def cap_message_count(ids: list[str], max_count: int = MAX_MESSAGES) -> list[str]:
    """Truncate the candidate ids to ``max_count``."""
    if len(ids) > max_count:
        logger.warning("Capping candidates at %d of %d matching messages", max_count, len(ids))
    return ids[:max_count]


def select_candidates(
    service,
    max_count: int = MAX_MESSAGES,
    query: str | None = None,
) -> CandidateSelection:
    """List candidate message ids for a sync.

    One id beyond the cap is requested so a truncated selection is visible
    through ``CandidateSelection.capped``. The provider's result size
    estimate is only used for ``total_found`` once the cap was actually hit;
    it often overcounts.
    """
    query = query or build_subscription_query()
    ids, estimated_total = list_message_ids(service, query=query, max_results=max_count + 1)
    selected = cap_message_count(ids, max_count)
    total_found = max(len(ids), estimated_total) if len(ids) > max_count else len(ids)
    logger.info("Selected %d candidate messages (query: %s)", len(selected), query)
    return CandidateSelection(ids=selected, total_found=total_found)
