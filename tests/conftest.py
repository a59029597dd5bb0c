"""Shared fixtures for tests."""

from __future__ import annotations

import base64
import json
from types import SimpleNamespace

import httplib2
import pytest
from googleapiclient.errors import HttpError

from subscription_scanner.models import OAuthTokenState, TokenGrant
from subscription_scanner.store import ScannerStore

NOW = 1_760_000_000.0  # fixed epoch seconds


def encode_body(text: str) -> str:
    """Encode text the way Gmail does: base64url without padding."""
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


def make_http_error(status: int) -> HttpError:
    resp = httplib2.Response({"status": str(status)})
    return HttpError(resp, b'{"error": {"message": "failed"}}', uri="https://gmail.googleapis.com")


class FakeRequest:
    def __init__(self, fn):
        self._fn = fn

    def execute(self):
        return self._fn()


class FakeBatch:
    """Stand-in for BatchHttpRequest: runs each request and fires its callback."""

    def __init__(self):
        self._requests = []

    def add(self, request, callback=None, request_id=None):
        self._requests.append((request, callback))

    def execute(self):
        for index, (request, callback) in enumerate(self._requests):
            try:
                response = request.execute()
            except HttpError as exc:
                callback(str(index), None, exc)
            else:
                callback(str(index), response, None)


class FakeGmailService:
    """Minimal Gmail API resource backed by an in-memory mailbox."""

    def __init__(
        self,
        messages: list[dict] | None = None,
        failing_ids=(),
        email="user@example.com",
        estimate: int | None = None,
        list_error: Exception | None = None,
    ):
        self.mailbox = {m["id"]: m for m in messages or []}
        self.order = [m["id"] for m in messages or []]
        self.failing_ids = set(failing_ids)
        self.email = email
        self.estimate = estimate
        self.list_error = list_error
        self.list_calls: list[dict] = []
        self.get_calls: list[str] = []
        self.batches = 0

    def users(self):
        return self

    def messages(self):
        return self

    def getProfile(self, userId):
        return FakeRequest(lambda: {"emailAddress": self.email})

    def list(self, **kwargs):
        self.list_calls.append(kwargs)
        offset = int(kwargs.get("pageToken") or 0)
        size = kwargs["maxResults"]
        page_ids = self.order[offset:offset + size]

        def _run():
            if self.list_error is not None:
                raise self.list_error
            estimate = self.estimate if self.estimate is not None else len(self.order)
            resp = {"resultSizeEstimate": estimate}
            if page_ids:
                resp["messages"] = [{"id": i, "threadId": f"t-{i}"} for i in page_ids]
            if offset + size < len(self.order):
                resp["nextPageToken"] = str(offset + size)
            return resp

        return FakeRequest(_run)

    def get(self, userId, id, format=None):
        def _run():
            self.get_calls.append(id)
            if id in self.failing_ids or id not in self.mailbox:
                raise make_http_error(404)
            return self.mailbox[id]

        return FakeRequest(_run)

    def new_batch_http_request(self):
        self.batches += 1
        return FakeBatch()


class FakeCompletions:
    def __init__(self, responder):
        self._responder = responder
        self.calls: list[dict] = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        content = self._responder(kwargs)
        if isinstance(content, Exception):
            raise content
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class FakeOpenAI:
    """Chat completions client returning whatever ``responder(kwargs)`` gives."""

    def __init__(self, responder):
        self.completions = FakeCompletions(responder)
        self.chat = SimpleNamespace(completions=self.completions)

    @property
    def calls(self) -> list[dict]:
        return self.completions.calls


def batch_payload(kwargs: dict) -> list[dict]:
    """Decode the email batch sent in a chat completions call."""
    return json.loads(kwargs["messages"][1]["content"])


class FakeOAuthClient:
    def __init__(self, grant: TokenGrant | None = None, refresh_grant: TokenGrant | None = None):
        self.grant = grant or TokenGrant(access_token="access-1", expires_in=3600, refresh_token="refresh-1")
        self.refresh_grant = refresh_grant or TokenGrant(access_token="access-2", expires_in=3600)
        self.exchange_error: Exception | None = None
        self.refresh_error: Exception | None = None
        self.exchange_calls: list[str] = []
        self.refresh_calls: list[str] = []

    def exchange_code(self, code: str) -> TokenGrant:
        self.exchange_calls.append(code)
        if self.exchange_error is not None:
            raise self.exchange_error
        return self.grant

    def refresh(self, refresh_token: str) -> TokenGrant:
        self.refresh_calls.append(refresh_token)
        if self.refresh_error is not None:
            raise self.refresh_error
        return self.refresh_grant


class FakeClock:
    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def oauth_client() -> FakeOAuthClient:
    return FakeOAuthClient()


@pytest.fixture
def store(tmp_path):
    with ScannerStore(db_path=tmp_path / "scanner.db") as s:
        yield s


@pytest.fixture
def connected_store(store):
    """Store holding an unexpired token for the default account."""
    store.save_tokens(
        "default",
        OAuthTokenState(
            access_token="valid-token",
            refresh_token="refresh-token",
            expires_at_ms=int((NOW + 3600) * 1000),
        ),
    )
    return store


@pytest.fixture
def make_message():
    """Build a Gmail API message dict."""

    def _make(
        msg_id: str,
        subject: str = "",
        sender: str = "",
        body: str = "",
        mime_type: str = "text/plain",
        multipart: bool = False,
        date: str = "Mon, 13 Oct 2025 09:00:00 +0000",
    ) -> dict:
        headers = [
            {"name": "Subject", "value": subject},
            {"name": "From", "value": sender},
            {"name": "Date", "value": date},
        ]
        if multipart:
            payload = {
                "mimeType": "multipart/alternative",
                "headers": headers,
                "body": {"size": 0},
                "parts": [
                    {"mimeType": mime_type, "body": {"data": encode_body(body)}} if body
                    else {"mimeType": mime_type, "body": {"size": 0}},
                ],
            }
        else:
            payload = {"mimeType": mime_type, "headers": headers, "body": {}}
            if body:
                payload["body"]["data"] = encode_body(body)
        return {
            "id": msg_id,
            "threadId": f"t-{msg_id}",
            "labelIds": ["INBOX"],
            "snippet": body[:50],
            "internalDate": "1760000000000",
            "payload": payload,
        }

    return _make
