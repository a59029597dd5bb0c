"""Sync orchestration - token, select, fetch, classify, reconcile."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import Callable

from googleapiclient.errors import HttpError

from subscription_scanner.auth import TokenManager, build_gmail_service
from subscription_scanner.batcher import build_batch_items, chunk_batch_items
from subscription_scanner.classifier import CircuitBreaker, SubscriptionClassifier
from subscription_scanner.config import Settings
from subscription_scanner.exceptions import ClassificationUnavailable, NotAuthenticated, TokenExchangeFailed
from subscription_scanner.gmail_client import GMAIL_ERRORS, get_message, get_messages_bulk
from subscription_scanner.models import ClassificationResult, Record, SyncResult, SyncState
from subscription_scanner.reconciler import assign_message_ids, filter_and_rank, merge_candidates, reconcile
from subscription_scanner.selector import select_candidates

logger = logging.getLogger(__name__)


def _classify_batches(
    classifier: SubscriptionClassifier,
    batches,
    breaker: CircuitBreaker,
    result: SyncResult,
) -> list[ClassificationResult]:
    """Classify each batch; a failed batch contributes nothing but a warning."""
    classified: list[ClassificationResult] = []

    for index, batch in enumerate(batches, start=1):
        if not breaker.allow():
            warning = f"Classifier unavailable, skipped batch {index}/{len(batches)} ({len(batch)} emails)"
            logger.warning(warning)
            result.warnings.append(warning)
            continue

        try:
            batch_results = classifier.classify_batch(batch)
        except ClassificationUnavailable as exc:
            breaker.record_failure()
            warning = f"Classification failed for batch {index}/{len(batches)}: {exc}"
            logger.warning(warning)
            result.warnings.append(warning)
            continue

        breaker.record_success()
        classified.extend(assign_message_ids(batch_results, batch))

    return classified


def sync_account(
    token_manager: TokenManager,
    classifier: SubscriptionClassifier,
    settings: Settings | None = None,
    service_factory: Callable = build_gmail_service,
    breaker: CircuitBreaker | None = None,
    today: date | None = None,
    on_state: Callable[[SyncState], None] | None = None,
) -> SyncResult:
    """Run one sync pass for one account.

    Only authentication failures end the sync in the FAILED state. Listing,
    fetch and classification problems reduce the number of candidates and
    are reported in ``SyncResult.warnings``.
    """
    settings = settings or Settings()
    if breaker is None:
        breaker = CircuitBreaker()
    account_id = token_manager.account_id
    result = SyncResult(account_id=account_id)

    def enter(state: SyncState) -> None:
        result.state = state
        logger.debug("Sync %s: %s", account_id, state.value)
        if on_state:
            on_state(state)

    enter(SyncState.AUTHENTICATING)
    try:
        access_token = token_manager.get_valid_token()
    except (NotAuthenticated, TokenExchangeFailed) as exc:
        logger.error("Sync %s failed: %s", account_id, exc)
        result.error = str(exc)
        enter(SyncState.FAILED)
        return result

    service = service_factory(access_token)

    enter(SyncState.SELECTING)
    try:
        selection = select_candidates(service, max_count=settings.max_messages)
    except GMAIL_ERRORS as exc:
        if isinstance(exc, HttpError) and exc.resp.status == 401:
            logger.error("Sync %s failed: access token rejected", account_id)
            result.error = f"Access token rejected: {exc}"
            enter(SyncState.FAILED)
            return result
        warning = f"Listing messages failed: {exc}"
        logger.warning(warning)
        result.warnings.append(warning)
        enter(SyncState.SUCCEEDED)
        return result

    result.total_found = selection.total_found
    result.selected = len(selection.ids)
    if selection.capped:
        result.warnings.append(
            f"Only {result.selected} of {result.total_found} matching messages were scanned"
        )
    if not selection.ids:
        logger.info("Sync %s: no candidate messages", account_id)
        enter(SyncState.SUCCEEDED)
        return result

    enter(SyncState.FETCHING)
    try:
        messages = get_messages_bulk(service, selection.ids)
    except GMAIL_ERRORS as exc:
        warning = f"Fetching messages failed: {exc}"
        logger.warning(warning)
        result.warnings.append(warning)
        messages = []
    result.fetched = len(messages)

    enter(SyncState.BATCHING)
    items = build_batch_items(messages, account_id=account_id, max_length=settings.max_content_length)
    result.skipped_empty = len(messages) - len(items)
    batches = chunk_batch_items(items, settings.batch_size)

    enter(SyncState.CLASSIFYING)
    classified = _classify_batches(classifier, batches, breaker, result)

    enter(SyncState.RECONCILING)
    result.records = reconcile(classified, account_id)
    result.candidates = filter_and_rank(result.records, settings.min_confidence, today=today)

    logger.info(
        "Sync %s: %d records, %d subscription candidates",
        account_id, len(result.records), len(result.candidates),
    )
    enter(SyncState.SUCCEEDED)
    return result


def sync_accounts(
    token_managers: list[TokenManager],
    classifier: SubscriptionClassifier,
    settings: Settings | None = None,
    service_factory: Callable = build_gmail_service,
    max_workers: int = 4,
) -> list[SyncResult]:
    """Sync several accounts concurrently; results follow the input order."""
    if not token_managers:
        return []

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(token_managers)))) as pool:
        futures = [
            pool.submit(sync_account, manager, classifier, settings, service_factory, CircuitBreaker())
            for manager in token_managers
        ]

        results = []
        for manager, future in zip(token_managers, futures):
            try:
                results.append(future.result())
            except Exception as exc:
                # One account crashing must not discard the others
                logger.exception("Sync %s crashed", manager.account_id)
                results.append(
                    SyncResult(account_id=manager.account_id, state=SyncState.FAILED, error=str(exc))
                )
        return results


def merge_with_previous(result: SyncResult, previous: SyncResult | None) -> SyncResult:
    """Fold the candidates of the account's previous sync into ``result``.

    Only a successful sync is merged; a failed one is stored as it is.
    """
    if previous is None or result.state is not SyncState.SUCCEEDED:
        return result
    result.candidates = merge_candidates(previous.candidates, result.candidates)
    return result


def classify_message(
    token_manager: TokenManager,
    classifier: SubscriptionClassifier,
    message_id: str,
    settings: Settings | None = None,
    service_factory: Callable = build_gmail_service,
) -> Record | None:
    """Classify a single message of the account.

    Returns None when the message has no body text to classify. Raises
    NotAuthenticated, MessageFetchError or ClassificationUnavailable.
    """
    settings = settings or Settings()
    service = service_factory(token_manager.get_valid_token())
    message = get_message(service, message_id)

    items = build_batch_items([message], account_id=token_manager.account_id, max_length=settings.max_content_length)
    if not items:
        return None

    result = classifier.classify_one(items[0].content, message_id=message_id)
    return reconcile([result], token_manager.account_id)[0]
