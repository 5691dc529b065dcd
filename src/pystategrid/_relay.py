"""Relay protocol client.

The provider only accepts payloads produced by its own app, so every call is
encrypted by a third-party relay, sent to the provider, and decrypted by the
relay again:

1. POST the logical request to ``/wsgw/encrypt``
2. send the relay-built request to the provider
3. screen the raw provider reply for session-invalidation codes
4. POST request config + raw reply to ``/wsgw/decrypt``
5. unwrap ``{code, message, data}``; ``code == "1"`` is success
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pystategrid._constants import (
    API_PATHS,
    AUTH_INVALID_CODES,
    AUTHORIZE_REAUTH_CODES,
    BASE_URL,
    CAPTCHA_ERROR_MARKER,
    KEY_CODE_EXPIRED_MESSAGE,
    MESSAGE_QUALIFIED_CODE,
    RELAY_BODY_KEY,
    RELAY_DECRYPT_PATH,
    RELAY_ENCRYPT_PATH,
    RELAY_RECOGNIZE_PATH,
    RELAY_URL,
    TOKEN_EMPTY_MESSAGE,
)
from pystategrid._redact import redact_for_log
from pystategrid._transport import RequestEnvelope, Transport, json_envelope
from pystategrid.exceptions import (
    CaptchaVerificationError,
    StateGridApiError,
    StateGridAuthenticationError,
)

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderRequest:
    """Logical provider call as handed to the relay for encryption."""

    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    data: Any = None
    method: str = "post"

    @property
    def token_expected(self) -> bool:
        return bool(self.headers.get("token"))

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"url": self.url, "method": self.method, "headers": dict(self.headers)}
        if self.data is not None:
            payload["data"] = self.data
        return payload


def _is_code(code: Any, table: frozenset[Any]) -> bool:
    return isinstance(code, (int, str)) and not isinstance(code, bool) and code in table


def _is_message_qualified(code: Any, message: str, token_expected: bool) -> bool:
    if code != MESSAGE_QUALIFIED_CODE or isinstance(code, bool):
        return False
    return message == KEY_CODE_EXPIRED_MESSAGE or (token_expected and message == TOKEN_EMPTY_MESSAGE)


def is_session_invalid(code: Any, message: str, *, token_expected: bool) -> bool:
    """Raw provider reply codes that invalidate the session on any endpoint."""
    return _is_code(code, AUTH_INVALID_CODES) or _is_message_qualified(code, message, token_expected)


def is_authorize_reauth(code: Any, message: str, *, token_expected: bool) -> bool:
    """Decrypted authorize-endpoint codes that require a fresh login."""
    return _is_code(code, AUTHORIZE_REAUTH_CODES) or _is_message_qualified(code, message, token_expected)


class RelayClient:
    """Wraps provider calls in the relay's encrypt/decrypt round trip."""

    def __init__(
        self,
        transport: Transport,
        *,
        relay_url: str = RELAY_URL,
        base_url: str = BASE_URL,
    ) -> None:
        self._transport = transport
        self._relay_url = relay_url.rstrip("/")
        self._base_url = base_url.rstrip("/")

    async def _relay_call(self, path: str, payload: Any, *, endpoint: str) -> dict[str, Any]:
        response = await self._transport.send(json_envelope(f"{self._relay_url}{path}", {RELAY_BODY_KEY: payload}))
        parsed = response.json()
        if not isinstance(parsed, dict):
            raise StateGridApiError(
                f"Relay {path} returned non-JSON for {endpoint}: {response.body[:200]}",
                code="relay_invalid_json",
                endpoint=endpoint,
            )
        return parsed

    def _provider_envelope(self, request: ProviderRequest, outgoing: dict[str, Any]) -> RequestEnvelope:
        body: str | None = None
        if "data" in outgoing:
            body = json.dumps(outgoing["data"], ensure_ascii=False, separators=(",", ":"))
            if request.url == API_PATHS["authorize"]:
                body = body.strip('"')
        headers = outgoing.get("headers")
        return RequestEnvelope(
            url=f"{self._base_url}{outgoing.get('url', '')}",
            method=str(outgoing["method"]).upper() if outgoing.get("method") else None,
            headers=headers if isinstance(headers, dict) else {},
            body=body,
        )

    async def request(self, request: ProviderRequest) -> Any:
        """Run one provider call through the relay and return its ``data``.

        Raises
        ------
        StateGridAuthenticationError
            The session, token or key code is no longer valid.
        StateGridApiError
            Any other non-success code.
        StateGridTransportError
            Network failure talking to the relay or the provider.
        """
        endpoint = request.url
        logical = request.to_payload()
        _logger.debug("Relay request endpoint=%s payload=%s", endpoint, redact_for_log(logical))

        encrypted = await self._relay_call(RELAY_ENCRYPT_PATH, logical, endpoint=endpoint)
        outgoing = encrypted.get("data")
        if not isinstance(outgoing, dict) or not outgoing.get("url"):
            raise StateGridApiError(
                f"Relay encrypt returned no request for {endpoint}",
                code="relay_missing_request",
                endpoint=endpoint,
            )

        provider_response = await self._transport.send(self._provider_envelope(request, outgoing))
        raw = provider_response.json()
        if isinstance(raw, dict) and raw.get("code"):
            code = raw.get("code")
            message = str(raw.get("message") or "")
            if is_session_invalid(code, message, token_expected=request.token_expected):
                raise StateGridAuthenticationError(message, code=str(code), endpoint=endpoint)

        config = dict(logical)
        if endpoint == API_PATHS["key_code"]:
            config["headers"] = {"encryptKey": outgoing.get("encryptKey")}
        decrypted = await self._relay_call(RELAY_DECRYPT_PATH, {"config": config, "data": raw}, endpoint=endpoint)
        return self._unwrap(request, decrypted)

    def _unwrap(self, request: ProviderRequest, decrypted: dict[str, Any]) -> Any:
        endpoint = request.url
        result = decrypted.get("data")
        if not isinstance(result, dict):
            raise StateGridApiError(
                f"Relay decrypt returned no result for {endpoint}",
                code="relay_missing_result",
                endpoint=endpoint,
            )

        code = result.get("code")
        message = str(result.get("message") or "")
        data = result.get("data")
        if str(code) == "1":
            _logger.debug("Relay response endpoint=%s data=%s", endpoint, redact_for_log(data))
            return data

        if endpoint == API_PATHS["login"] and CAPTCHA_ERROR_MARKER in message:
            raise CaptchaVerificationError(message, code=str(code), endpoint=endpoint)
        if (
            endpoint == API_PATHS["authorize"]
            and data
            and code not in (None, "")
            and is_authorize_reauth(code, message, token_expected=request.token_expected)
        ):
            raise StateGridAuthenticationError(f"must re-obtain: {message}", code=str(code), endpoint=endpoint)
        raise StateGridApiError(message or f"{endpoint} failed: code={code}", code=str(code), endpoint=endpoint)

    async def recognize(self, canvas_src: str) -> dict[str, Any]:
        """Solve a slider captcha; returns the relay reply (``data`` is the solved code)."""
        result = await self._relay_call(RELAY_RECOGNIZE_PATH, canvas_src, endpoint=RELAY_RECOGNIZE_PATH)
        _logger.debug("Captcha recognized keys=%s", list(result.keys()))
        return result
