"""Exceptions raised by the scanning pipeline."""

from __future__ import annotations


class SubscriptionScannerError(Exception):
    """Base exception for subscription scanner errors."""


class NotAuthenticated(SubscriptionScannerError):
    """No valid or refreshable token; the authorization flow must be restarted."""


class TokenExchangeFailed(SubscriptionScannerError):
    """A code exchange or refresh call to the token endpoint failed."""


class MessageFetchError(SubscriptionScannerError):
    """A single message could not be fetched from the mailbox."""

    def __init__(self, message_id: str, status: int | None, message: str) -> None:
        super().__init__(f"Failed to fetch message {message_id} ({status}): {message}")
        self.message_id = message_id
        self.status = status
        self.message = message


class ClassificationUnavailable(SubscriptionScannerError):
    """The classifier call failed or its output could not be used."""


class UnexpectedResponseShape(ClassificationUnavailable):
    """The classifier returned JSON matching none of the accepted shapes."""
