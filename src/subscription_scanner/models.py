"""Data models for Subscription Scanner."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from subscription_scanner.constants import (
    DEFAULT_CURRENCY,
    DEFAULT_FREQUENCY,
    DEFAULT_STATUS,
    KIND_EXPENSE,
    KIND_SUBSCRIPTION,
)


@dataclass
class OAuthTokenState:
    """Tokens held for one mailbox account."""

    access_token: str = ""
    refresh_token: str | None = None
    expires_at_ms: int = 0  # epoch millis, 0 when unknown

    @property
    def is_empty(self) -> bool:
        return not self.access_token and not self.refresh_token


@dataclass
class TokenGrant:
    """Response of the token endpoint for a code or refresh grant."""

    access_token: str
    expires_in: int  # seconds
    refresh_token: str | None = None


class ProcessedAuthCodes:
    """Authorization codes already submitted for exchange in this process."""

    def __init__(self) -> None:
        self._codes: set[str] = set()
        self._lock = threading.Lock()

    def claim(self, code: str) -> bool:
        """Mark ``code`` as processed. Returns False if it already was."""
        with self._lock:
            if code in self._codes:
                return False
            self._codes.add(code)
            return True

    def release(self, code: str) -> None:
        with self._lock:
            self._codes.discard(code)

    def __contains__(self, code: str) -> bool:
        with self._lock:
            return code in self._codes


@dataclass
class MessagePart:
    """One node of a Gmail message payload tree."""

    mime_type: str = ""
    headers: list[tuple[str, str]] = field(default_factory=list)
    body_data: str | None = None  # base64url
    parts: list[MessagePart] = field(default_factory=list)

    @classmethod
    def from_api(cls, payload: dict | None) -> MessagePart:
        payload = payload or {}
        return cls(
            mime_type=payload.get("mimeType", ""),
            headers=[(h.get("name", ""), h.get("value", "")) for h in payload.get("headers", [])],
            body_data=(payload.get("body") or {}).get("data"),
            parts=[cls.from_api(p) for p in payload.get("parts") or []],
        )


@dataclass
class RawMessage:
    """A full message as returned by the Gmail API."""

    id: str
    thread_id: str = ""
    label_ids: list[str] = field(default_factory=list)
    snippet: str = ""
    internal_date: int | None = None
    payload: MessagePart = field(default_factory=MessagePart)

    @classmethod
    def from_api(cls, data: dict) -> RawMessage:
        internal_date = data.get("internalDate")
        return cls(
            id=data["id"],
            thread_id=data.get("threadId", ""),
            label_ids=data.get("labelIds", []),
            snippet=data.get("snippet", ""),
            internal_date=int(internal_date) if internal_date else None,
            payload=MessagePart.from_api(data.get("payload")),
        )


@dataclass
class MessagePage:
    """One page of a message id listing."""

    ids: list[str]
    next_page_token: str | None = None
    estimated_total: int = 0


@dataclass
class CandidateSelection:
    """Message ids chosen for a sync and how many matched before capping."""

    ids: list[str]
    total_found: int

    @property
    def capped(self) -> bool:
        return self.total_found > len(self.ids)


@dataclass
class EmailBatchItem:
    """Decoded email content ready to be sent to the classifier."""

    message_id: str
    content: str
    account_id: str | None = None


@dataclass
class ClassificationResult:
    """Normalised classifier output for one email, before reconciliation."""

    kind: str | None = None
    message_id: str | None = None
    confidence: float = 0.0
    name: str | None = None
    merchant: str | None = None
    amount: float | None = None
    currency: str | None = None
    category: str | None = None
    frequency: str | None = None
    last_billed_at: str | None = None
    next_billing_at: str | None = None
    status: str | None = None
    date: str | None = None
    description: str | None = None
    receipt_id: str | None = None


@dataclass
class SubscriptionRecord:
    """A recurring payment detected in the mailbox."""

    account_id: str
    name: str
    amount: float
    currency: str = DEFAULT_CURRENCY
    frequency: str = DEFAULT_FREQUENCY
    category: str | None = None
    last_billed_at: datetime | None = None
    next_billing_at: datetime | None = None
    status: str = DEFAULT_STATUS
    confidence: float = 0.0
    message_id: str = ""
    kind: str = KIND_SUBSCRIPTION


@dataclass
class ExpenseRecord:
    """A one-time purchase detected in the mailbox."""

    account_id: str
    merchant: str
    amount: float
    date: datetime
    currency: str = DEFAULT_CURRENCY
    category: str | None = None
    description: str | None = None
    receipt_id: str | None = None
    confidence: float = 0.0
    message_id: str = ""
    kind: str = KIND_EXPENSE


Record = SubscriptionRecord | ExpenseRecord


@dataclass
class SubscriptionCandidate:
    """A ranked subscription suggestion produced by a sync."""

    message_id: str
    service_name: str
    amount: float
    date: str  # YYYY-MM-DD
    confidence: float


class SyncState(str, Enum):
    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    SELECTING = "selecting"
    FETCHING = "fetching"
    BATCHING = "batching"
    CLASSIFYING = "classifying"
    RECONCILING = "reconciling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class SyncResult:
    """Outcome of one sync pass for one account."""

    account_id: str
    state: SyncState = SyncState.IDLE
    candidates: list[SubscriptionCandidate] = field(default_factory=list)
    records: list[Record] = field(default_factory=list)
    total_found: int = 0
    selected: int = 0
    fetched: int = 0
    skipped_empty: int = 0
    warnings: list[str] = field(default_factory=list)
    error: str | None = None
    sync_date: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def capped(self) -> bool:
        return self.total_found > self.selected

    @property
    def degraded(self) -> bool:
        return self.state is SyncState.SUCCEEDED and bool(self.warnings)
