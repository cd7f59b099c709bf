from __future__ import annotations

import asyncio
import logging
import secrets
import webbrowser
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from functools import partial

from .errors import (
    AttemptAbandonedError,
    AuthError,
    AuthTimeoutError,
    CsrfMismatchError,
    ExchangeError,
    FlowInProgressError,
    MissingCodeError,
    ProviderError,
)
from .google_calendar import SCOPES
from .loopback import CALLBACK_PATH, CallbackParams, LoopbackListener
from .models import AttemptState, ClientCredentials, CredentialSet
from .oauth_client import (
    TOKEN_URI,
    GoogleOAuthClient,
    OAuthClientFactory,
    PersistingCredentials,
    RefreshHook,
    to_google_expiry,
)

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8080
CORRELATOR_BYTES = 32

_TRANSITIONS: dict[AttemptState, frozenset[AttemptState]] = {
    AttemptState.IDLE: frozenset({AttemptState.AWAITING_REDIRECT, AttemptState.FAILED}),
    AttemptState.AWAITING_REDIRECT: frozenset({AttemptState.EXCHANGING, AttemptState.FAILED}),
    AttemptState.EXCHANGING: frozenset({AttemptState.SUCCEEDED, AttemptState.FAILED}),
    AttemptState.SUCCEEDED: frozenset(),
    AttemptState.FAILED: frozenset(),
}


def new_correlator() -> str:
    return secrets.token_hex(CORRELATOR_BYTES)


@dataclass(eq=False)
class AuthorizationAttempt:
    correlator: str = field(default_factory=new_correlator)
    state: AttemptState = AttemptState.IDLE
    listener: LoopbackListener | None = None

    @property
    def terminal(self) -> bool:
        return self.state in (AttemptState.SUCCEEDED, AttemptState.FAILED)

    def advance(self, state: AttemptState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid attempt transition {self.state.value} -> {state.value}")
        self.state = state


class FlowCoordinator:
    """Runs the loopback authorization-code flow and relays silent token refreshes.

    Only one attempt may be in flight at a time. A second ``start_flow`` call while
    one is active fails immediately with ``FlowInProgressError``. The attempt's
    listener is closed before ``start_flow`` returns or raises.
    """

    def __init__(
        self,
        *,
        port: int = DEFAULT_PORT,
        bind_addr: str = "127.0.0.1",
        redirect_host: str = "localhost",
        callback_path: str = CALLBACK_PATH,
        oauth_client_factory: OAuthClientFactory = GoogleOAuthClient,
        launch_url: Callable[[str], object] | None = webbrowser.open,
    ) -> None:
        self._port = port
        self._bind_addr = bind_addr
        self._redirect_host = redirect_host
        self._callback_path = callback_path
        self._oauth_client_factory = oauth_client_factory
        self._launch_url = launch_url
        self._attempt: AuthorizationAttempt | None = None
        self._refresh_listeners: list[RefreshHook] = []

    @property
    def redirect_uri(self) -> str:
        return f"http://{self._redirect_host}:{self._port}{self._callback_path}"

    @property
    def attempt(self) -> AuthorizationAttempt | None:
        return self._attempt

    async def start_flow(
        self, client: ClientCredentials, *, timeout: float | None = None
    ) -> CredentialSet:
        client.require()
        if self._attempt is not None:
            raise FlowInProgressError()

        attempt = AuthorizationAttempt()
        self._attempt = attempt
        succeeded = False
        try:
            credential_set = await self._run(attempt, client, timeout)
            succeeded = True
            return credential_set
        finally:
            await self._finish(
                attempt, AttemptState.SUCCEEDED if succeeded else AttemptState.FAILED
            )

    async def shutdown(self) -> None:
        """Close any listener still open; the pending attempt fails."""
        attempt = self._attempt
        if attempt is not None:
            await self._finish(attempt, AttemptState.FAILED)

    def add_refresh_listener(self, listener: RefreshHook) -> None:
        self._refresh_listeners.append(listener)

    def build_credentials(
        self,
        client: ClientCredentials,
        credential_set: CredentialSet,
        *,
        scopes: Sequence[str] = SCOPES,
    ) -> PersistingCredentials:
        return PersistingCredentials(
            credential_set.access_token,
            refresh_token=credential_set.refresh_token,
            token_uri=TOKEN_URI,
            client_id=client.client_id,
            client_secret=client.client_secret,
            scopes=list(scopes),
            expiry=to_google_expiry(credential_set.expiry),
            on_refresh=self._dispatch_refresh,
        )

    def _dispatch_refresh(self, update: CredentialSet) -> None:
        for listener in list(self._refresh_listeners):
            listener(update)

    async def _run(
        self,
        attempt: AuthorizationAttempt,
        client: ClientCredentials,
        timeout: float | None,
    ) -> CredentialSet:
        oauth = self._oauth_client_factory(client, self.redirect_uri)
        auth_url = oauth.authorization_url(attempt.correlator)

        listener = LoopbackListener(
            validate=partial(self._check_callback, attempt),
            host=self._bind_addr,
            port=self._port,
            path=self._callback_path,
        )
        attempt.listener = listener
        await listener.start()
        attempt.advance(AttemptState.AWAITING_REDIRECT)
        self._open_browser(auth_url)

        try:
            params = await asyncio.wait_for(listener.wait_for_callback(), timeout)
        except asyncio.TimeoutError:
            raise AuthTimeoutError(timeout or 0) from None

        if attempt is not self._attempt or attempt.state is not AttemptState.AWAITING_REDIRECT:
            raise AttemptAbandonedError()
        attempt.advance(AttemptState.EXCHANGING)
        await listener.close()
        logger.info(
            "Exchanging authorization code",
            extra={"event": "code_exchange", "attempt_state": attempt.state.value},
        )
        try:
            credential_set = await asyncio.to_thread(oauth.exchange_code, params.code or "")
        except Exception as exc:
            raise ExchangeError(f"Token exchange failed: {exc}") from exc

        if attempt is not self._attempt or attempt.state is not AttemptState.EXCHANGING:
            logger.warning(
                "Discarding token exchange result for an abandoned attempt",
                extra={"event": "stale_exchange_discarded"},
            )
            raise AttemptAbandonedError()
        return credential_set

    def _check_callback(
        self, attempt: AuthorizationAttempt, params: CallbackParams
    ) -> AuthError | None:
        state = (params.state or "").encode()
        if not params.state or not secrets.compare_digest(state, attempt.correlator.encode()):
            logger.warning(
                "Callback state did not match the active attempt",
                extra={"event": "csrf_mismatch"},
            )
            return CsrfMismatchError()
        if params.error:
            return ProviderError(params.error)
        if not params.code:
            return MissingCodeError()
        return None

    def _open_browser(self, url: str) -> None:
        if self._launch_url is None:
            logger.info("Browser launch disabled", extra={"event": "browser_disabled"})
            return
        try:
            self._launch_url(url)
        except Exception:
            logger.warning(
                "Could not open a browser; open the authorization URL manually",
                exc_info=True,
                extra={"event": "browser_open_failed"},
            )

    async def _finish(self, attempt: AuthorizationAttempt, state: AttemptState) -> None:
        if not attempt.terminal:
            attempt.advance(state)
        if self._attempt is attempt:
            self._attempt = None
        listener, attempt.listener = attempt.listener, None
        if listener is not None:
            await listener.close()
        logger.info(
            "Authorization attempt finished",
            extra={"event": "attempt_finished", "attempt_state": attempt.state.value},
        )
