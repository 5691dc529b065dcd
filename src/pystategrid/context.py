"""Per-run authentication state shared between pipeline stages."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from pystategrid.exceptions import StateGridError
from pystategrid.models.meter import MeterBinding
from pystategrid.session import AccountIdentity, Session


class AuthState(enum.IntEnum):
    """Authentication progress; later states imply the earlier ones."""

    FAILED = -1
    NO_SESSION = 0
    KEY_ACQUIRED = 1
    AUTH_VALIDATED = 2
    AUTH_CODE_OBTAINED = 3
    ACCESS_TOKEN_OBTAINED = 4


@dataclass
class RunContext:
    """State produced by one run.

    Each field is written only by the stage that produces it: the session
    manager owns the key pair, session, authorization code and access token;
    the meter fetcher owns ``bindings``.
    """

    state: AuthState = AuthState.NO_SESSION
    request_key: dict[str, str] = field(default_factory=dict)
    session: Session | None = None
    session_from_cache: bool = False
    authorize_code: str | None = None
    access_token: str | None = None
    bindings: list[MeterBinding] | None = None
    # Survives reset_auth: a run re-authenticates at most once.
    reauth_attempted: bool = False

    def require(self, state: AuthState) -> None:
        if self.state is AuthState.FAILED or self.state < state:
            raise StateGridError(f"Operation requires {state.name}, current state is {self.state.name}")

    @property
    def primary(self) -> AccountIdentity:
        if self.session is None or not self.session.user_info:
            raise StateGridError("No authenticated account")
        return self.session.primary

    def key_headers(self) -> dict[str, str]:
        return dict(self.request_key)

    def token_headers(self) -> dict[str, str]:
        if self.session is None:
            raise StateGridError("No session token")
        return {**self.request_key, "token": self.session.token}

    def data_headers(self) -> dict[str, str]:
        self.require(AuthState.ACCESS_TOKEN_OBTAINED)
        assert self.access_token is not None  # noqa: S101
        return {**self.token_headers(), "acctoken": self.access_token}

    def binding(self, index: int) -> MeterBinding:
        if self.bindings is None:
            raise StateGridError("Meter bindings not fetched")
        return self.bindings[index]

    def reset_auth(self) -> None:
        """Forget all authentication state, including the key pair."""
        self.request_key = {}
        self.session = None
        self.session_from_cache = False
        self.authorize_code = None
        self.access_token = None
        self.state = AuthState.NO_SESSION
