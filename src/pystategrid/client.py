"""High-level async client for the State Grid consumer API."""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import aiohttp

from pystategrid._api import meters as _meters_api
from pystategrid._credentials import CredentialStore, create_credential_store
from pystategrid._relay import RelayClient
from pystategrid._runtime import HostRuntime, detect_runtime
from pystategrid._transport import Transport, create_transport
from pystategrid.auth import LoginRetryPolicy, SessionManager
from pystategrid.config import StateGridConfig
from pystategrid.context import AuthState, RunContext
from pystategrid.exceptions import StateGridAuthenticationError, StateGridError
from pystategrid.models.meter import Balance, MeterBinding
from pystategrid.models.usage import DailyUsage, MonthlyUsage

_logger = logging.getLogger(__name__)

T = TypeVar("T")


class StateGridClient:
    """Async client for the State Grid consumer API.

    Usage::

        async with StateGridClient(config) as client:
            await client.login()
            bindings = await client.get_bindings()
            balance = await client.get_balance(0)
    """

    def __init__(
        self,
        config: StateGridConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
        credential_store: CredentialStore | None = None,
        runtime: HostRuntime | None = None,
        retry_policy: LoginRetryPolicy | None = None,
    ) -> None:
        self._config = config
        self._runtime = runtime or detect_runtime()
        self._external_session = session is not None
        self._http_session = session
        self._transport = transport
        self._external_transport = transport is not None
        self._store = credential_store or create_credential_store(self._runtime, config.data_store_dir)
        self._retry_policy = retry_policy
        self._ctx = RunContext()
        self._relay: RelayClient | None = None
        self._auth: SessionManager | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> StateGridClient:
        if self._transport is None:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._transport = create_transport(
                self._runtime,
                self._http_session,
                timeout=self._config.request_timeout,
            )
        self._relay = RelayClient(
            self._transport,
            relay_url=self._config.relay_url,
            base_url=self._config.base_url,
        )
        self._auth = SessionManager(
            self._config,
            self._relay,
            self._store,
            self._ctx,
            retry_policy=self._retry_policy,
        )
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        if not self._external_transport:
            self._transport = None
        self._relay = None
        self._auth = None

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    @property
    def context(self) -> RunContext:
        return self._ctx

    @property
    def credential_store(self) -> CredentialStore:
        return self._store

    async def login(self) -> RunContext:
        """Authenticate (cached session or captcha login) and obtain an access token."""
        return await self._require_auth().authenticate()

    async def ensure_session(self) -> RunContext:
        """Return the context, authenticating first when needed."""
        if self._ctx.state is AuthState.ACCESS_TOKEN_OBTAINED:
            return self._ctx
        return await self.login()

    def invalidate_session(self) -> None:
        """Clear the persisted session (next call will re-authenticate)."""
        self._require_auth().invalidate()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_relay(self) -> RelayClient:
        if self._relay is None:
            raise StateGridError("Client not initialized. Use 'async with StateGridClient(...) as client:'")
        return self._relay

    def _require_auth(self) -> SessionManager:
        if self._auth is None:
            raise StateGridError("Client not initialized. Use 'async with StateGridClient(...) as client:'")
        return self._auth

    async def _call_with_reauth(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run an API call, re-authenticating and retrying on session expiry.

        Only one re-authentication is allowed per client lifetime; a second
        session rejection clears the persisted session and propagates.
        """
        await self.ensure_session()
        try:
            return await fn()
        except StateGridAuthenticationError as exc:
            if self._ctx.reauth_attempted:
                _logger.warning("Session rejected again (%s), giving up", exc)
                self.invalidate_session()
                raise
            self._ctx.reauth_attempted = True
            _logger.warning("Session rejected (%s), logging in again", exc)
            self.invalidate_session()
            await self.login()
            try:
                return await fn()
            except StateGridAuthenticationError:
                self.invalidate_session()
                raise

    # ------------------------------------------------------------------
    # Meter data
    # ------------------------------------------------------------------

    async def get_bindings(self) -> list[MeterBinding]:
        """Return the meters bound to the account (fetched once per run)."""
        if self._ctx.bindings is not None and self._ctx.state is AuthState.ACCESS_TOKEN_OBTAINED:
            return self._ctx.bindings

        async def _fetch() -> list[MeterBinding]:
            bindings = await _meters_api.fetch_bindings(self._require_relay(), self._ctx)
            self._ctx.bindings = bindings
            return bindings

        bindings = await self._call_with_reauth(_fetch)
        _logger.info("Found %d bound meter(s)", len(bindings))
        return bindings

    async def get_balance(self, index: int) -> Balance:
        """Return balance, current-period usage and as-of date for meter *index*."""
        return await self._call_with_reauth(
            lambda: _meters_api.fetch_balance(self._require_relay(), self._ctx, index),
        )

    async def get_daily(
        self,
        index: int,
        *,
        start: dt.date | None = None,
        end: dt.date | None = None,
        days: int | None = None,
        today: dt.date | None = None,
    ) -> DailyUsage:
        """Return daily usage; see :func:`resolve_daily_window` for the window rules."""
        return await self._call_with_reauth(
            lambda: _meters_api.fetch_daily(
                self._require_relay(),
                self._ctx,
                index,
                today=today,
                start=start,
                end=end,
                days=days,
            ),
        )

    async def get_monthly(self, index: int, *, today: dt.date | None = None) -> MonthlyUsage:
        """Return up to 24 months of usage, oldest first."""
        return await self._call_with_reauth(
            lambda: _meters_api.fetch_monthly(self._require_relay(), self._ctx, index, today=today),
        )
