"""Authentication endpoints.

Endpoints:
  - /api/oauth2/outer/c02/f02 (key code + public key)
  - /api/osg-web0004/open/c44/f05 (slider captcha challenge)
  - /api/osg-web0004/open/c44/f06 (captcha login)
  - /api/oauth2/oauth/authorize (authorization code)
  - /api/oauth2/outer/getWebToken (access token)
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from pystategrid._constants import API_PATHS, CAPTCHA_CANVAS_HEIGHT, CAPTCHA_CANVAS_WIDTH, USC_INFO
from pystategrid._normalize import text
from pystategrid._relay import ProviderRequest
from pystategrid.config import StateGridConfig
from pystategrid.exceptions import StateGridApiError
from pystategrid.session import Session


def build_key_code_request() -> ProviderRequest:
    return ProviderRequest(url=API_PATHS["key_code"])


def parse_key_code_response(data: Any) -> dict[str, str]:
    """Return the key pair attached as headers to every later call."""
    if not isinstance(data, dict) or not data:
        raise StateGridApiError(
            "Key code response is empty",
            code="missing_key_code",
            endpoint=API_PATHS["key_code"],
        )
    return {str(key): text(value) for key, value in data.items()}


def build_verify_code_request(config: StateGridConfig, key_headers: dict[str, str]) -> ProviderRequest:
    return ProviderRequest(
        url=API_PATHS["verify_code"],
        headers=key_headers,
        data={
            "password": config.password,
            "account": config.username,
            "canvasHeight": CAPTCHA_CANVAS_HEIGHT,
            "canvasWidth": CAPTCHA_CANVAS_WIDTH,
        },
    )


def parse_verify_code_response(data: Any) -> tuple[str, str]:
    """Return ``(canvas_src, ticket)`` of the captcha challenge."""
    if not isinstance(data, dict) or not data.get("canvasSrc") or not data.get("ticket"):
        raise StateGridApiError(
            "Captcha challenge missing canvasSrc/ticket",
            code="missing_captcha",
            endpoint=API_PATHS["verify_code"],
        )
    return str(data["canvasSrc"]), str(data["ticket"])


def build_login_request(
    config: StateGridConfig,
    key_headers: dict[str, str],
    ticket: str,
    code: str,
) -> ProviderRequest:
    """Build the captcha login request.

    Parameters
    ----------
    config : StateGridConfig
        Supplies account and password.
    key_headers : dict
        Key pair from the key-code exchange.
    ticket : str
        Captcha ticket from the challenge.
    code : str
        Solved captcha code from the relay.
    """
    return ProviderRequest(
        url=API_PATHS["login"],
        headers=key_headers,
        data={
            "loginKey": ticket,
            "code": code,
            "params": {
                "uscInfo": dict(USC_INFO),
                "quInfo": {
                    "optSys": "android",
                    "pushId": "000000",
                    "addressProvince": "110100",
                    "password": config.password,
                    "addressRegion": "110101",
                    "account": config.username,
                    "addressCity": "330100",
                },
            },
            "Channels": "web",
        },
    )


def parse_login_response(data: Any, saved_at_ms: int) -> Session:
    """Extract the session from a login response.

    Raises
    ------
    StateGridApiError
        If the response has no account identities; this means the
        credentials were rejected and is not retried, or if the identities
        cannot be parsed.
    """
    bizrt = data.get("bizrt") if isinstance(data, dict) else None
    if not isinstance(bizrt, dict) or not bizrt.get("userInfo") or not bizrt.get("token"):
        raise StateGridApiError(
            "Login failed: check that the account and password are correct",
            code="missing_user_info",
            endpoint=API_PATHS["login"],
        )
    try:
        return Session.from_bizrt(bizrt, saved_at_ms)
    except ValidationError as exc:
        raise StateGridApiError(
            f"Unexpected login data: {exc.error_count()} invalid field(s)",
            code="invalid_response",
            endpoint=API_PATHS["login"],
        ) from exc


def build_authorize_request(key_headers: dict[str, str], token: str) -> ProviderRequest:
    return ProviderRequest(url=API_PATHS["authorize"], headers={**key_headers, "token": token})


def parse_authorize_response(data: Any) -> str:
    """Extract the authorization code from ``redirect_url`` (``...?code=<code>``)."""
    redirect_url = data.get("redirect_url") if isinstance(data, dict) else None
    if not isinstance(redirect_url, str) or "?code=" not in redirect_url:
        raise StateGridApiError(
            "Authorize response missing redirect_url code",
            code="missing_authorize_code",
            endpoint=API_PATHS["authorize"],
        )
    return redirect_url.split("?code=", 1)[1]


def build_web_token_request(key_headers: dict[str, str], token: str, authorize_code: str) -> ProviderRequest:
    return ProviderRequest(
        url=API_PATHS["web_token"],
        headers={**key_headers, "token": token, "authorizecode": authorize_code},
    )


def parse_web_token_response(data: Any) -> str:
    access_token = data.get("access_token") if isinstance(data, dict) else None
    if not access_token:
        raise StateGridApiError(
            "Web token response missing access_token",
            code="missing_access_token",
            endpoint=API_PATHS["web_token"],
        )
    return str(access_token)
