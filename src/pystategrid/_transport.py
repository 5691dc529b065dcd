"""HTTP transport normalized across host runtimes."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import aiohttp

from pystategrid._runtime import HostRuntime
from pystategrid.exceptions import StateGridTransportError

_logger = logging.getLogger(__name__)

#: Timeout used when the host accepts a native client timeout.
DEFAULT_TIMEOUT: float = 15.0
#: Timeout raced against the request on hosts without a native one.
DEFAULT_RACE_TIMEOUT: float = 5.0


@dataclass(frozen=True)
class RequestEnvelope:
    """A single outgoing HTTP request.

    ``method`` defaults to GET, or POST when a body is present.
    """

    url: str
    method: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    body: str | bytes | None = None
    encoding: str = "utf-8"
    timeout: float | None = None


@dataclass(frozen=True)
class TransportResponse:
    """Raw HTTP response with the body decoded using the request encoding."""

    status_code: int
    ok: bool
    body: str
    body_bytes: bytes

    def json(self) -> Any:
        """Parse the body as JSON, returning the text unchanged when it is not JSON."""
        try:
            return json.loads(self.body)
        except (json.JSONDecodeError, ValueError):
            return self.body


class Transport(Protocol):
    """Structural transport interface used by the relay client.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`AiohttpTransport`) concrete.
    """

    async def send(self, envelope: RequestEnvelope) -> TransportResponse:
        ...


def json_envelope(url: str, payload: Any, headers: Mapping[str, str] | None = None) -> RequestEnvelope:
    """Build a JSON POST envelope."""
    merged = {"content-type": "application/json", **(headers or {})}
    return RequestEnvelope(
        url=url,
        method="POST",
        headers=merged,
        body=json.dumps(payload, ensure_ascii=False, separators=(",", ":")),
    )


def prepare_request(envelope: RequestEnvelope) -> tuple[str, dict[str, str]]:
    """Resolve the HTTP method and drop any caller-supplied Content-Length."""
    method = envelope.method or ("POST" if envelope.body is not None else "GET")
    headers = {key: str(value) for key, value in envelope.headers.items() if key.lower() != "content-length"}
    return method.upper(), headers


class AiohttpTransport:
    """aiohttp-backed transport.

    With ``race_timeout`` the request is raced against a timer instead of
    relying on aiohttp's own ``ClientTimeout``.
    """

    def __init__(
        self,
        http_session: aiohttp.ClientSession,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        race_timeout: bool = False,
    ) -> None:
        self._http = http_session
        self._timeout = timeout
        self._race_timeout = race_timeout

    async def send(self, envelope: RequestEnvelope) -> TransportResponse:
        method, headers = prepare_request(envelope)
        timeout = envelope.timeout or self._timeout

        _logger.debug("%s %s", method, envelope.url)

        try:
            if self._race_timeout:
                return await asyncio.wait_for(self._send(envelope, method, headers, None), timeout)
            return await self._send(envelope, method, headers, aiohttp.ClientTimeout(total=timeout))
        except StateGridTransportError:
            raise
        except TimeoutError as exc:
            raise StateGridTransportError(
                f"Request to {envelope.url} timed out after {timeout}s",
                endpoint=envelope.url,
            ) from exc
        except aiohttp.ClientError as exc:
            raise StateGridTransportError(
                f"Request to {envelope.url} failed: {exc}",
                endpoint=envelope.url,
            ) from exc

    async def _send(
        self,
        envelope: RequestEnvelope,
        method: str,
        headers: dict[str, str],
        client_timeout: aiohttp.ClientTimeout | None,
    ) -> TransportResponse:
        kwargs: dict[str, Any] = {"headers": headers}
        if envelope.body is not None:
            kwargs["data"] = envelope.body
        if client_timeout is not None:
            kwargs["timeout"] = client_timeout

        async with self._http.request(method, envelope.url, **kwargs) as resp:
            raw = await resp.read()
            status = resp.status

        text = raw.decode(envelope.encoding, errors="replace")
        ok = 200 <= status < 300
        if not ok:
            raise StateGridTransportError(
                f"HTTP {status} from {envelope.url}: {text[:200]}",
                status_code=status,
                endpoint=envelope.url,
                body=text,
            )
        return TransportResponse(status_code=status, ok=ok, body=text, body_bytes=raw)


def create_transport(
    runtime: HostRuntime,
    http_session: aiohttp.ClientSession,
    *,
    timeout: float | None = None,
) -> Transport:
    """Select the send mechanism for *runtime*."""
    if runtime is HostRuntime.QINGLONG:
        return AiohttpTransport(http_session, timeout=timeout or DEFAULT_RACE_TIMEOUT, race_timeout=True)
    return AiohttpTransport(http_session, timeout=timeout or DEFAULT_TIMEOUT)
