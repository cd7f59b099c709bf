from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Any, Protocol

from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

from .google_calendar import SCOPES
from .models import ClientCredentials, CredentialSet

logger = logging.getLogger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"


class OAuthClient(Protocol):
    def authorization_url(self, state: str) -> str: ...

    def exchange_code(self, code: str) -> CredentialSet: ...


OAuthClientFactory = Callable[[ClientCredentials, str], OAuthClient]
RefreshHook = Callable[[CredentialSet], None]


def to_aware_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_google_expiry(value: datetime | None) -> datetime | None:
    # google-auth compares expiry against a naive UTC clock.
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def client_config(client: ClientCredentials, redirect_uri: str) -> dict[str, Any]:
    return {
        "installed": {
            "client_id": client.client_id,
            "client_secret": client.client_secret,
            "auth_uri": AUTH_URI,
            "token_uri": TOKEN_URI,
            "redirect_uris": [redirect_uri],
        }
    }


class GoogleOAuthClient(OAuthClient):
    """Authorization URL builder and code exchanger for one attempt.

    A fresh instance is used per attempt so the PKCE verifier generated for the
    authorization URL is the one sent with the exchange.
    """

    def __init__(
        self,
        client: ClientCredentials,
        redirect_uri: str,
        *,
        scopes: Sequence[str] = SCOPES,
        timeout: float = 30.0,
    ) -> None:
        self._flow = Flow.from_client_config(
            client_config(client, redirect_uri),
            scopes=list(scopes),
            redirect_uri=redirect_uri,
        )
        self._timeout = timeout

    def authorization_url(self, state: str) -> str:
        url, _ = self._flow.authorization_url(
            access_type="offline",
            prompt="consent",
            state=state,
        )
        return url

    def exchange_code(self, code: str) -> CredentialSet:
        self._flow.fetch_token(code=code, timeout=self._timeout)
        creds = self._flow.credentials
        return CredentialSet(
            access_token=creds.token,
            refresh_token=creds.refresh_token,
            expiry=to_aware_utc(creds.expiry),
        )


class PersistingCredentials(Credentials):
    """Google credentials that report every silent refresh to a hook.

    The hook receives the new access token and expiry, plus the refresh token
    only when the provider issued a different one.
    """

    def __init__(self, *args: Any, on_refresh: RefreshHook | None = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._on_refresh = on_refresh

    def refresh(self, request: Any) -> None:
        previous_refresh_token = self.refresh_token
        super().refresh(request)
        logger.info("Access token refreshed", extra={"event": "token_refreshed"})
        if self._on_refresh is None:
            return
        reissued = self.refresh_token if self.refresh_token != previous_refresh_token else None
        self._on_refresh(
            CredentialSet(
                access_token=self.token,
                refresh_token=reissued,
                expiry=to_aware_utc(self.expiry),
            )
        )
