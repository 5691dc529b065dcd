"""Custom exception hierarchy for pystategrid."""

from __future__ import annotations


class StateGridError(Exception):
    """Base exception for all pystategrid errors."""


class StateGridConfigError(StateGridError):
    """Invalid or missing configuration."""


class CredentialsMissingError(StateGridConfigError):
    """No account username/password configured."""


class StateGridTransportError(StateGridError):
    """HTTP-level failure (network, timeout, non-2xx).

    For non-2xx replies ``body`` holds the decoded response text unchanged.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
        body: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        self.body = body
        super().__init__(message)


class StateGridApiError(StateGridError):
    """Provider or relay returned a non-success code.

    Business errors are never retried; the provider message is surfaced
    unchanged in ``str(exc)``.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str = "",
        endpoint: str = "",
    ) -> None:
        self.code = code
        self.endpoint = endpoint
        super().__init__(message)


class StateGridAuthenticationError(StateGridApiError):
    """Session, token or key code rejected by the provider.

    The cached session must be discarded and the auth flow restarted;
    retrying the same call as-is will fail again.
    """


class CaptchaVerificationError(StateGridAuthenticationError):
    """The slider captcha solution was rejected at login.

    This is the only error the login step retries automatically.
    """
