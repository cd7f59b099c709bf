from __future__ import annotations

from datetime import datetime, timezone
from urllib.parse import parse_qs, urlsplit

from notecal.models import ClientCredentials, CredentialSet
from notecal.oauth_client import GoogleOAuthClient

CLIENT = ClientCredentials(client_id="client-123", client_secret="shh")
REDIRECT_URI = "http://localhost:8080/callback"


def test_authorization_url_requests_offline_readonly_consent() -> None:
    client = GoogleOAuthClient(CLIENT, REDIRECT_URI)
    url = client.authorization_url("a" * 64)

    parts = urlsplit(url)
    query = parse_qs(parts.query)
    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == "https://accounts.google.com/o/oauth2/auth"
    assert query["response_type"] == ["code"]
    assert query["client_id"] == ["client-123"]
    assert query["redirect_uri"] == [REDIRECT_URI]
    assert query["scope"] == ["https://www.googleapis.com/auth/calendar.readonly"]
    assert query["access_type"] == ["offline"]
    assert query["prompt"] == ["consent"]
    assert query["state"] == ["a" * 64]


def test_exchange_code_maps_google_credentials(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    client = GoogleOAuthClient(CLIENT, REDIRECT_URI, timeout=5.0)
    client.authorization_url("s")
    expires_at = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc).timestamp()
    calls: list[dict] = []

    def fake_fetch_token(**kwargs):  # type: ignore[no-untyped-def]
        calls.append(kwargs)
        client._flow.oauth2session.token = {
            "access_token": "a1",
            "refresh_token": "r1",
            "token_type": "Bearer",
            "expires_at": expires_at,
        }
        return client._flow.oauth2session.token

    monkeypatch.setattr(client._flow, "fetch_token", fake_fetch_token)
    result = client.exchange_code("auth-code")

    assert calls == [{"code": "auth-code", "timeout": 5.0}]
    assert result == CredentialSet(
        access_token="a1",
        refresh_token="r1",
        expiry=datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc),
    )
