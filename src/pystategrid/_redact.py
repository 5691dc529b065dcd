"""Helpers for safe debug logging.

Relay payloads carry the account password, provider tokens and key
material.  Secrets are replaced outright; account identifiers (phone numbers,
login names) keep their last four characters so log lines stay traceable.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

_REDACTED = "<redacted>"
_MAX_DEPTH = 20

_SECRET_KEYS: frozenset[str] = frozenset(
    {
        "password",
        "token",
        "acctoken",
        "access_token",
        "authorizecode",
        "keycode",
        "publickey",
        "encryptkey",
        "logincode",
        "loginkey",
        "ticket",
        "authorization",
        "cookie",
        # captcha image
        "canvassrc",
    }
)

_ACCOUNT_KEYS: frozenset[str] = frozenset({"account", "loginaccount", "username"})


def mask_account(value: str, *, keep: int = 4) -> str:
    """``13800001234`` -> ``*******1234``."""
    if len(value) <= keep:
        return "*" * len(value)
    return "*" * (len(value) - keep) + value[-keep:]


def _redact_entry(key: str, value: Any, max_string: int, depth: int) -> Any:
    lowered = key.lower()
    if lowered in _SECRET_KEYS:
        return _REDACTED
    if lowered in _ACCOUNT_KEYS and isinstance(value, str):
        return mask_account(value)
    return redact_for_log(value, max_string=max_string, _depth=depth + 1)


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a redacted copy of *value* suitable for debug logs."""
    if _depth > _MAX_DEPTH:
        return "<max-depth>"
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return value if len(value) <= max_string else f"{value[:max_string]}…<truncated>"
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes:{len(value)}b>"
    if isinstance(value, Mapping):
        return {str(k): _redact_entry(str(k), v, max_string, _depth) for k, v in value.items()}
    if isinstance(value, Sequence):
        return [redact_for_log(item, max_string=max_string, _depth=_depth + 1) for item in value]
    return repr(value)
