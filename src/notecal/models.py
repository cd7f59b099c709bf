from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel

from .errors import ConfigurationError


class AttemptState(str, Enum):
    IDLE = "idle"
    AWAITING_REDIRECT = "awaiting_redirect"
    EXCHANGING = "exchanging"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ClientCredentials(BaseModel):
    client_id: str = ""
    client_secret: str = ""

    def require(self) -> None:
        if not self.client_id.strip() or not self.client_secret.strip():
            raise ConfigurationError("Client ID and client secret must be set first")


class CredentialSet(BaseModel):
    """Tokens produced by a code exchange, or the partial result of a silent refresh.

    On a refresh update ``refresh_token`` is ``None`` unless the provider reissued it.
    """

    access_token: str
    refresh_token: str | None = None
    expiry: datetime | None = None


class CalendarEvent(BaseModel):
    id: str
    title: str
    start: datetime
    end: datetime
    location: str | None = None
    description: str | None = None
    is_all_day: bool = False


TimeFormat = Literal["12h", "24h"]
