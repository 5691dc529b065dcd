"""Authentication state machine.

``NO_SESSION -> KEY_ACQUIRED -> AUTH_VALIDATED -> AUTH_CODE_OBTAINED ->
ACCESS_TOKEN_OBTAINED``.  A cached session that is still within its lifetime
skips the captcha login and goes straight to ``AUTH_CODE_OBTAINED``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from pystategrid._api.login import (
    build_authorize_request,
    build_key_code_request,
    build_login_request,
    build_verify_code_request,
    build_web_token_request,
    parse_authorize_response,
    parse_key_code_response,
    parse_login_response,
    parse_verify_code_response,
    parse_web_token_response,
)
from pystategrid._constants import API_PATHS
from pystategrid._credentials import CredentialStore
from pystategrid._relay import RelayClient
from pystategrid.config import StateGridConfig
from pystategrid.context import AuthState, RunContext
from pystategrid.exceptions import (
    CaptchaVerificationError,
    StateGridApiError,
    StateGridAuthenticationError,
    StateGridError,
)
from pystategrid.session import Session, SessionCache, now_ms

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginRetryPolicy:
    """How often the captcha login is repeated after a rejected solution."""

    max_attempts: int = 1
    retry_on: tuple[type[StateGridError], ...] = (CaptchaVerificationError,)


class SessionManager:
    """Owns the session lifecycle for one run.

    Any :class:`StateGridAuthenticationError` raised after the key exchange
    clears the persisted session before it propagates, so the next run starts
    with a clean login.
    """

    def __init__(
        self,
        config: StateGridConfig,
        relay: RelayClient,
        store: CredentialStore,
        ctx: RunContext,
        *,
        retry_policy: LoginRetryPolicy | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._config = config
        self._relay = relay
        self._cache = SessionCache(store)
        self._ctx = ctx
        self._retry_policy = retry_policy or LoginRetryPolicy()
        self._clock = clock

    @property
    def context(self) -> RunContext:
        return self._ctx

    async def authenticate(self) -> RunContext:
        """Drive the state machine to ``ACCESS_TOKEN_OBTAINED``."""
        ctx = self._ctx
        try:
            if ctx.state < AuthState.KEY_ACQUIRED:
                await self.acquire_key()
            if not await self.validate_cached_session():
                await self.login()
                await self.obtain_authorize_code()
            await self.obtain_access_token()
        except StateGridAuthenticationError:
            self.invalidate()
            ctx.state = AuthState.FAILED
            raise
        except StateGridError:
            ctx.state = AuthState.FAILED
            raise
        return ctx

    def invalidate(self) -> None:
        """Clear the persisted session and all in-memory auth state."""
        self._cache.clear()
        self._ctx.reset_auth()
        _logger.info("Cached session cleared")

    async def acquire_key(self) -> None:
        """Obtain the key code / public key pair required by every later call."""
        _logger.info("Requesting key code and public key")
        data = await self._relay.request(build_key_code_request())
        self._ctx.request_key = parse_key_code_response(data)
        self._ctx.state = AuthState.KEY_ACQUIRED
        _logger.info("Key code acquired")

    async def validate_cached_session(self) -> bool:
        """Try to reuse the persisted session.

        Returns ``True`` with an authorization code in the context when the
        cached token is still accepted.  Expired or rejected sessions are
        cleared.
        """
        session = self._cache.load()
        if session is None:
            _logger.info("No cached session, login required")
            return False

        max_age_ms = self._config.token_cache_ms
        if session.is_expired(max_age_ms, self._clock()):
            _logger.info(
                "Cached session older than %s hours, login required",
                self._config.token_cache_hours,
            )
            self._cache.clear()
            return False

        _logger.info("Trying cached session")
        try:
            authorize_code = await self._authorize(session)
        except StateGridError as exc:
            _logger.warning("Cached session rejected: %s", exc)
            self._cache.clear()
            return False

        self._ctx.session = session
        self._ctx.session_from_cache = True
        self._ctx.authorize_code = authorize_code
        self._ctx.state = AuthState.AUTH_CODE_OBTAINED
        _logger.info("Cached session is valid")
        return True

    async def login(self) -> Session:
        """Captcha login, repeated per the retry policy on a rejected solution."""
        self._ctx.require(AuthState.KEY_ACQUIRED)
        retries = 0
        while True:
            try:
                return await self._login_once()
            except self._retry_policy.retry_on as exc:
                if retries >= self._retry_policy.max_attempts:
                    raise
                retries += 1
                _logger.error("Slider captcha rejected, logging in again: %s", exc)

    async def _login_once(self) -> Session:
        key_headers = self._ctx.key_headers()

        challenge = await self._relay.request(build_verify_code_request(self._config, key_headers))
        canvas_src, ticket = parse_verify_code_response(challenge)
        solved = await self._relay.recognize(canvas_src)
        code = solved.get("data")
        if not code:
            raise StateGridApiError(
                "Captcha recognition returned no code",
                code="missing_captcha_code",
                endpoint=API_PATHS["verify_code"],
            )
        _logger.info("Captcha recognized")

        data = await self._relay.request(build_login_request(self._config, key_headers, ticket, str(code)))
        session = parse_login_response(data, self._clock())
        self._cache.save(session)

        self._ctx.session = session
        self._ctx.session_from_cache = False
        self._ctx.state = AuthState.AUTH_VALIDATED
        _logger.info("Login succeeded accounts=%d", len(session.user_info))
        return session

    async def _authorize(self, session: Session) -> str:
        data = await self._relay.request(build_authorize_request(self._ctx.key_headers(), session.token))
        return parse_authorize_response(data)

    async def obtain_authorize_code(self) -> None:
        self._ctx.require(AuthState.AUTH_VALIDATED)
        session = self._ctx.session
        assert session is not None  # noqa: S101
        self._ctx.authorize_code = await self._authorize(session)
        self._ctx.state = AuthState.AUTH_CODE_OBTAINED
        _logger.info("Authorization code obtained")

    async def obtain_access_token(self) -> None:
        self._ctx.require(AuthState.AUTH_CODE_OBTAINED)
        session = self._ctx.session
        assert session is not None and self._ctx.authorize_code is not None  # noqa: S101
        data = await self._relay.request(
            build_web_token_request(self._ctx.key_headers(), session.token, self._ctx.authorize_code)
        )
        self._ctx.access_token = parse_web_token_response(data)
        self._ctx.state = AuthState.ACCESS_TOKEN_OBTAINED
        _logger.info("Access token obtained")
