"""OAuth token lifecycle for Gmail accounts."""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Protocol

import requests
from google.auth.exceptions import GoogleAuthError, RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import Resource, build
from oauthlib.oauth2.rfc6749.errors import OAuth2Error
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from subscription_scanner.constants import CREDENTIALS_PATH, DEFAULT_REDIRECT_URI, SCOPES, TOKEN_URI
from subscription_scanner.exceptions import NotAuthenticated, TokenExchangeFailed
from subscription_scanner.models import OAuthTokenState, ProcessedAuthCodes, TokenGrant

logger = logging.getLogger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"

_EXCHANGE_ERRORS = (OAuth2Error, requests.RequestException, GoogleAuthError, KeyError, ValueError)


def _is_transient_auth_error(exc: BaseException) -> bool:
    """Transport failures and refresh errors the token endpoint marks as retryable (5xx, 429)."""
    if isinstance(exc, TransportError):
        return True
    return isinstance(exc, RefreshError) and bool(getattr(exc, "retryable", False))


class OAuthClient(Protocol):
    def exchange_code(self, code: str) -> TokenGrant: ...

    def refresh(self, refresh_token: str) -> TokenGrant: ...


class TokenStore(Protocol):
    def load_tokens(self, account_id: str) -> OAuthTokenState | None: ...

    def save_tokens(self, account_id: str, state: OAuthTokenState) -> None: ...

    def delete_tokens(self, account_id: str) -> None: ...


class GoogleOAuthClient:
    """Google's authorization-code and refresh-token grants."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str = DEFAULT_REDIRECT_URI,
        token_uri: str = TOKEN_URI,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.token_uri = token_uri

    @classmethod
    def from_client_secrets_file(
        cls,
        path: Path | None = None,
        redirect_uri: str = DEFAULT_REDIRECT_URI,
    ) -> GoogleOAuthClient:
        """Load client id and secret from a Google Cloud Console download."""
        path = Path(path or CREDENTIALS_PATH)
        if not path.exists():
            raise FileNotFoundError(
                f"Credentials file not found at {path}.\n"
                "Download your OAuth client credentials from the Google Cloud Console "
                "and save them as:\n"
                f"  {path}"
            )
        data = json.loads(path.read_text())
        config = data.get("web") or data.get("installed") or {}
        return cls(
            client_id=config["client_id"],
            client_secret=config["client_secret"],
            redirect_uri=redirect_uri,
            token_uri=config.get("token_uri", TOKEN_URI),
        )

    def _flow(self) -> Flow:
        client_config = {
            "web": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": AUTH_URI,
                "token_uri": self.token_uri,
                "redirect_uris": [self.redirect_uri],
            }
        }
        return Flow.from_client_config(
            client_config,
            scopes=SCOPES,
            redirect_uri=self.redirect_uri,
            autogenerate_code_verifier=False,
        )

    def authorization_url(self) -> str:
        """Return the consent URL; offline access so a refresh token is issued."""
        url, _state = self._flow().authorization_url(access_type="offline", prompt="consent")
        return url

    def exchange_code(self, code: str) -> TokenGrant:
        token = self._flow().fetch_token(code=code)
        return TokenGrant(
            access_token=token["access_token"],
            expires_in=int(token.get("expires_in", 3600)),
            refresh_token=token.get("refresh_token"),
        )

    @retry(
        retry=retry_if_exception(_is_transient_auth_error),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def refresh(self, refresh_token: str) -> TokenGrant:
        creds = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=self.token_uri,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=SCOPES,
        )
        creds.refresh(Request())

        expires_in = 3600
        if creds.expiry is not None:
            now = datetime.now(timezone.utc).replace(tzinfo=None)
            expires_in = max(0, int((creds.expiry - now).total_seconds()))
        return TokenGrant(access_token=creds.token, expires_in=expires_in)


class TokenManager:
    """Holds the tokens of one account and keeps them valid.

    State is loaded from ``store`` on construction and written back on every
    mutation, so a restart does not require re-authorization while the
    refresh token remains valid.
    """

    def __init__(
        self,
        account_id: str,
        oauth_client: OAuthClient | None,
        store: TokenStore,
        processed_codes: ProcessedAuthCodes | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.account_id = account_id
        self.oauth_client = oauth_client
        self.store = store
        self.processed_codes = processed_codes if processed_codes is not None else ProcessedAuthCodes()
        self._clock = clock
        self.state = store.load_tokens(account_id) or OAuthTokenState()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _persist(self) -> None:
        self.store.save_tokens(self.account_id, self.state)

    def _clear(self) -> None:
        self.state = OAuthTokenState()
        self.store.delete_tokens(self.account_id)

    @property
    def is_connected(self) -> bool:
        return bool(self.state.access_token or self.state.refresh_token)

    def is_expired(self) -> bool:
        if not self.state.expires_at_ms:
            return True
        return self._now_ms() >= self.state.expires_at_ms

    def get_valid_token(self) -> str:
        """Return an unexpired access token, refreshing it when needed."""
        if self.state.access_token and not self.is_expired():
            return self.state.access_token
        if not self.state.refresh_token:
            raise NotAuthenticated(f"Account {self.account_id!r} is not connected")
        return self.refresh().access_token

    def exchange_code(self, code: str) -> OAuthTokenState | None:
        """Exchange a one-time authorization code for tokens.

        Returns None without contacting the token endpoint when the code was
        already submitted in this process.
        """
        if not self.processed_codes.claim(code):
            logger.info("Authorization code already processed, ignoring duplicate callback")
            return None

        try:
            grant = self.oauth_client.exchange_code(code)
        except _EXCHANGE_ERRORS as exc:
            self.processed_codes.release(code)
            raise TokenExchangeFailed(f"Failed to exchange code for tokens: {exc}") from exc
        except Exception:
            # The code stays usable whatever the failure
            self.processed_codes.release(code)
            raise

        self.state = OAuthTokenState(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token or self.state.refresh_token,
            expires_at_ms=self._now_ms() + grant.expires_in * 1000,
        )
        self._persist()
        logger.info("Connected account %s", self.account_id)
        return self.state

    def refresh(self) -> OAuthTokenState:
        """Obtain a new access token with the stored refresh token."""
        refresh_token = self.state.refresh_token
        if not refresh_token:
            raise NotAuthenticated(f"Account {self.account_id!r} has no refresh token")

        try:
            grant = self.oauth_client.refresh(refresh_token)
        except RefreshError as exc:
            if getattr(exc, "retryable", False):
                raise TokenExchangeFailed(f"Token endpoint unavailable: {exc}") from exc
            logger.warning("Refresh token for %s was rejected, clearing tokens", self.account_id)
            self._clear()
            raise NotAuthenticated(
                f"Authorization for {self.account_id!r} was revoked; reconnect the account"
            ) from exc
        except _EXCHANGE_ERRORS as exc:
            raise TokenExchangeFailed(f"Failed to refresh token: {exc}") from exc

        self.state.access_token = grant.access_token
        self.state.expires_at_ms = self._now_ms() + grant.expires_in * 1000
        if grant.refresh_token:
            self.state.refresh_token = grant.refresh_token
        self._persist()
        logger.debug("Refreshed access token for %s", self.account_id)
        return self.state

    def disconnect(self) -> None:
        self._clear()
        logger.info("Disconnected account %s", self.account_id)


def build_gmail_service(access_token: str) -> Resource:
    """Return a Gmail API service object authorized with a bearer token."""
    creds = Credentials(token=access_token)
    return build("gmail", "v1", credentials=creds, cache_discovery=False)


def check_auth(token_manager: TokenManager) -> str:
    """Return the email address of the connected account.

    Raises NotAuthenticated when no usable token is available.
    """
    service = build_gmail_service(token_manager.get_valid_token())
    profile = service.users().getProfile(userId="me").execute()
    return profile["emailAddress"]
