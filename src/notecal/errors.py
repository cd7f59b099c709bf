from __future__ import annotations


class AuthError(Exception):
    """Terminal failure of an authorization attempt."""


class ConfigurationError(AuthError):
    pass


class FlowInProgressError(AuthError):
    def __init__(self) -> None:
        super().__init__("An authorization attempt is already in progress")


class BindError(AuthError):
    def __init__(self, port: int, reason: str = "") -> None:
        self.port = port
        message = f"Could not listen on local port {port}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class CsrfMismatchError(AuthError):
    def __init__(self) -> None:
        super().__init__("state validation failed")


class ProviderError(AuthError):
    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Authorization failed: {reason}")


class MissingCodeError(AuthError):
    def __init__(self) -> None:
        super().__init__("No authorization code received")


class ExchangeError(AuthError):
    pass


class AuthTimeoutError(AuthError):
    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Authorization was not completed within {timeout:g} seconds")


class AttemptAbandonedError(AuthError):
    def __init__(self) -> None:
        super().__init__("Authorization attempt was abandoned")


class CalendarError(RuntimeError):
    pass
