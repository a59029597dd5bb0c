"""Email classification with an OpenAI chat model.

The model is asked to label each email of a batch as a SUBSCRIPTION or an
EXPENSE and extract the matching fields. Its output is not trusted to follow
one layout: a bare JSON array, an object with a ``results`` array, and a
single object for a collapsed one-item batch are all accepted and normalised
into ClassificationResult values. Domain defaults are not applied here; see
``reconciler.reconcile``.
"""

from __future__ import annotations

import json
import logging
import re
import time
from enum import Enum
from typing import Callable

from openai import OpenAI, OpenAIError

from subscription_scanner.constants import (
    BREAKER_FAILURE_THRESHOLD,
    BREAKER_RESET_AFTER,
    CLASSIFIER_MAX_TOKENS,
    CLASSIFIER_MODEL,
    CLASSIFIER_TEMPERATURE,
    CLASSIFIER_TIMEOUT,
    KIND_EXPENSE,
    KIND_SUBSCRIPTION,
)
from subscription_scanner.exceptions import ClassificationUnavailable, UnexpectedResponseShape
from subscription_scanner.models import ClassificationResult, EmailBatchItem

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an assistant that analyzes emails to identify subscriptions and one-time expenses.
You will receive a JSON array of emails, each with a "messageId" and "content".
For each email decide whether it is a recurring SUBSCRIPTION or a one-time EXPENSE.

Return ONLY a JSON object of the form {"results": [...]} with one object per email.

Common fields for every object:
- messageId: the messageId of the email
- type: either "SUBSCRIPTION" or "EXPENSE"
- confidence: an integer from 0 to 100 indicating how confident you are

For subscriptions (type "SUBSCRIPTION"):
- name: the name of the service or company
- amount: the amount charged as a number, without currency symbols
- currency: ISO currency code (use "USD" if not specified)
- frequency: "MONTHLY", "YEARLY", "WEEKLY", etc.
- category: optional category
- lastBilledAt: date of the last charge if mentioned (ISO 8601)
- nextBillingAt: date of the next charge if mentioned (ISO 8601)
- status: "ACTIVE", "CANCELLED", etc.

For expenses (type "EXPENSE"):
- merchant: the name of the merchant
- amount: the amount paid as a number, without currency symbols
- currency: ISO currency code (use "USD" if not specified)
- date: date of the purchase (ISO 8601)
- category: optional category
- description: optional short description of what was purchased
- receiptId: optional order or receipt number

If you are unsure about an email, give it a low confidence and choose the most likely type."""

_JSON_BLOCK_RE = re.compile(r"[\[{][\s\S]*[\]}]")
_AMOUNT_STRIP_RE = re.compile(r"[^\d.\-]")

# Keys that mark a bare object as a classification rather than an error payload.
_RESULT_KEYS = {
    "type", "kind", "messageId", "confidence", "name", "serviceName", "merchant",
    "amount", "isSubscription", "isExpense",
}


class ResponseShape(Enum):
    BARE_ARRAY = "bare_array"
    RESULTS_WRAPPER = "results_wrapper"
    SINGLE_OBJECT = "single_object"


def detect_shape(data) -> ResponseShape:
    """Identify which accepted layout ``data`` follows."""
    if isinstance(data, list):
        return ResponseShape.BARE_ARRAY
    if isinstance(data, dict):
        if isinstance(data.get("results"), list):
            return ResponseShape.RESULTS_WRAPPER
        if _RESULT_KEYS & data.keys():
            return ResponseShape.SINGLE_OBJECT
    raise UnexpectedResponseShape(f"Unexpected classifier response: {str(data)[:200]}")


def _load_json(text: str):
    text = (text or "").strip()
    if not text:
        raise UnexpectedResponseShape("Classifier returned an empty response")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        # Recover JSON wrapped in markdown fences or prose
        match = _JSON_BLOCK_RE.search(text)
        if not match:
            raise UnexpectedResponseShape(f"Classifier response is not JSON: {text[:200]}") from None
        try:
            return json.loads(match.group())
        except json.JSONDecodeError as exc:
            raise UnexpectedResponseShape(f"Failed to parse JSON from response: {exc}") from exc


def coerce_amount(value) -> float | None:
    """Convert a number or numeric-looking string ("$1,299.00") to float."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = _AMOUNT_STRIP_RE.sub("", value)
        if not cleaned:
            return None
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None


def coerce_confidence(value) -> float:
    """Confidence as a float clamped to 0-100; 0 when missing or invalid."""
    if isinstance(value, bool):
        return 0.0
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    return min(max(confidence, 0.0), 100.0)


def _text(value) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def normalize_item(item: dict) -> ClassificationResult:
    """Map one classifier object onto ClassificationResult.

    Also accepts the field names of the single-email prompt
    (isSubscription, serviceName, billingFrequency, nextBillingDate).
    """
    kind = _text(item.get("type") or item.get("kind"))
    if kind is None:
        if item.get("isSubscription"):
            kind = KIND_SUBSCRIPTION
        elif item.get("isExpense"):
            kind = KIND_EXPENSE

    return ClassificationResult(
        kind=kind,
        message_id=_text(item.get("messageId")),
        confidence=coerce_confidence(item.get("confidence")),
        name=_text(item.get("name") or item.get("serviceName")),
        merchant=_text(item.get("merchant")),
        amount=coerce_amount(item.get("amount")),
        currency=_text(item.get("currency")),
        category=_text(item.get("category")),
        frequency=_text(item.get("frequency") or item.get("billingFrequency")),
        last_billed_at=_text(item.get("lastBilledAt")),
        next_billing_at=_text(item.get("nextBillingAt") or item.get("nextBillingDate")),
        status=_text(item.get("status")),
        date=_text(item.get("date")),
        description=_text(item.get("description")),
        receipt_id=_text(item.get("receiptId")),
    )


def parse_classifier_response(text: str) -> list[ClassificationResult]:
    """Parse classifier output into results.

    Raises UnexpectedResponseShape when the text is not JSON or matches none
    of the accepted layouts.
    """
    data = _load_json(text)
    shape = detect_shape(data)

    if shape is ResponseShape.BARE_ARRAY:
        items = data
    elif shape is ResponseShape.RESULTS_WRAPPER:
        items = data["results"]
    else:
        items = [data]

    results = []
    for item in items:
        if not isinstance(item, dict):
            logger.warning("Ignoring non-object classifier result: %r", item)
            continue
        results.append(normalize_item(item))
    return results


class CircuitBreaker:
    """Stops calling the classifier after repeated failures.

    Opens after ``failure_threshold`` consecutive failures. Once
    ``reset_after`` seconds have passed one trial call is allowed; a success
    closes the breaker, a failure opens it again.
    """

    def __init__(
        self,
        failure_threshold: int = BREAKER_FAILURE_THRESHOLD,
        reset_after: float = BREAKER_RESET_AFTER,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.reset_after = reset_after
        self._clock = clock
        self.failures = 0
        self.opened_at: float | None = None

    @property
    def is_open(self) -> bool:
        return self.opened_at is not None

    def allow(self) -> bool:
        if self.opened_at is None:
            return True
        return self._clock() - self.opened_at >= self.reset_after

    def record_success(self) -> None:
        self.failures = 0
        self.opened_at = None

    def record_failure(self) -> None:
        self.failures += 1
        if self.failures >= self.failure_threshold:
            self.opened_at = self._clock()


class SubscriptionClassifier:
    """Sends email batches to the chat completions API."""

    def __init__(
        self,
        client: OpenAI | None = None,
        api_key: str | None = None,
        model: str = CLASSIFIER_MODEL,
        timeout: float = CLASSIFIER_TIMEOUT,
        max_tokens: int = CLASSIFIER_MAX_TOKENS,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self._client = client or OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def _complete(self, payload: str) -> str:
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": payload},
                ],
                temperature=CLASSIFIER_TEMPERATURE,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
            )
        except OpenAIError as exc:
            raise ClassificationUnavailable(f"Classifier request failed: {exc}") from exc

        if not response.choices:
            raise UnexpectedResponseShape("Classifier returned no choices")
        return response.choices[0].message.content or ""

    def classify_batch(self, items: list[EmailBatchItem]) -> list[ClassificationResult]:
        """Classify a batch of emails in a single request.

        Raises ClassificationUnavailable when the request fails and
        UnexpectedResponseShape when the output cannot be used.
        """
        if not items:
            return []

        payload = json.dumps([{"messageId": item.message_id, "content": item.content} for item in items])
        logger.info("Classifying batch of %d emails with %s", len(items), self.model)

        results = parse_classifier_response(self._complete(payload))
        logger.debug("Classifier returned %d results for %d emails", len(results), len(items))
        return results

    def classify_one(self, content: str, message_id: str = "single") -> ClassificationResult:
        """Classify a single email body."""
        results = self.classify_batch([EmailBatchItem(message_id=message_id, content=content)])
        if not results:
            return ClassificationResult(message_id=message_id)
        result = results[0]
        if result.message_id is None:
            result.message_id = message_id
        return result
