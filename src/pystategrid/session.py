"""Session state and its persistence in the credential store."""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from pystategrid._constants import SESSION_BLOB_KEY, SESSION_TIME_KEY
from pystategrid._credentials import CredentialStore
from pystategrid._normalize import text

_logger = logging.getLogger(__name__)


def now_ms() -> int:
    """Current epoch timestamp in milliseconds."""
    return int(time.time() * 1000)


class AccountIdentity(BaseModel):
    """One account identity from the login response's ``userInfo`` list."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    user_id: str = Field(default="", validation_alias=AliasChoices("userId", "user_id"))
    login_account: str = Field(default="", validation_alias=AliasChoices("loginAccount", "login_account"))
    nickname: str = Field(default="", validation_alias=AliasChoices("nickname"))

    @field_validator("user_id", "login_account", "nickname", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return text(value)

    @property
    def display_name(self) -> str:
        """Name sent with usage queries."""
        return self.nickname or self.login_account

    @property
    def account_name(self) -> str:
        """Name sent with balance queries."""
        return self.login_account or self.nickname


class Session(BaseModel):
    """Authenticated session returned by login.

    Parameters
    ----------
    token : str
        Provider token attached to every post-login call.
    user_info : list[AccountIdentity]
        Account identities; the first one is used for data queries.
    saved_at_ms : int
        Epoch milliseconds when the session was persisted.
    raw : dict
        The provider's ``bizrt`` object as received, persisted verbatim.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    token: str
    user_info: list[AccountIdentity]
    saved_at_ms: int = Field(default_factory=now_ms)
    raw: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_bizrt(cls, bizrt: dict[str, Any], saved_at_ms: int | None = None) -> Session:
        return cls(
            token=text(bizrt.get("token")),
            user_info=bizrt.get("userInfo") or [],
            saved_at_ms=now_ms() if saved_at_ms is None else saved_at_ms,
            raw=bizrt,
        )

    @property
    def primary(self) -> AccountIdentity:
        return self.user_info[0]

    def age_ms(self, at_ms: int | None = None) -> int:
        return (now_ms() if at_ms is None else at_ms) - self.saved_at_ms

    def is_expired(self, max_age_ms: int, at_ms: int | None = None) -> bool:
        """Whether the session is older than *max_age_ms*."""
        return self.age_ms(at_ms) > max_age_ms


class SessionCache:
    """Reads and writes the two session keys of the credential store."""

    def __init__(self, store: CredentialStore) -> None:
        self._store = store

    def load(self) -> Session | None:
        """Return the persisted session, or ``None`` when absent or unusable."""
        blob = self._store.get(SESSION_BLOB_KEY)
        if not blob:
            return None
        try:
            bizrt = json.loads(blob)
        except json.JSONDecodeError:
            _logger.warning("Discarding unreadable cached session")
            return None
        if not isinstance(bizrt, dict) or not bizrt.get("token") or not bizrt.get("userInfo"):
            return None

        saved_raw = self._store.get(SESSION_TIME_KEY)
        try:
            # A missing timestamp counts as fresh; the token is then validated online.
            saved_at = int(saved_raw) if saved_raw else now_ms()
        except ValueError:
            saved_at = 0
        try:
            return Session.from_bizrt(bizrt, saved_at)
        except ValidationError:
            _logger.warning("Discarding malformed cached session", exc_info=True)
            return None

    def save(self, session: Session) -> None:
        self._store.set(SESSION_BLOB_KEY, json.dumps(session.raw, ensure_ascii=False))
        self._store.set(SESSION_TIME_KEY, str(session.saved_at_ms))

    def clear(self) -> None:
        self._store.clear(SESSION_BLOB_KEY)
        self._store.clear(SESSION_TIME_KEY)
