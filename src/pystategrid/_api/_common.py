"""Shared request fragments and response validation for provider endpoints."""

from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from pystategrid._constants import SERVICE_CODE, SOURCE, TARGET, USC_INFO
from pystategrid.exceptions import StateGridApiError
from pystategrid.session import Session

M = TypeVar("M", bound=BaseModel)


def usc_info() -> dict[str, str]:
    return dict(USC_INFO)


def build_member_params(session: Session, *, service_code: str = SERVICE_CODE) -> dict[str, Any]:
    """The ``params1`` block identifying the account on member endpoints."""
    return {
        "serviceCode": service_code,
        "source": SOURCE,
        "target": TARGET,
        "uscInfo": usc_info(),
        "quInfo": {"userId": session.primary.user_id},
        "token": session.token,
    }


def validate_response(model: type[M], data: Any, *, endpoint: str) -> M:
    """Parse one provider record, mapping validation failures to :class:`StateGridApiError`."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise StateGridApiError(
            f"Unexpected {model.__name__} data from {endpoint}: {exc.error_count()} invalid field(s)",
            code="invalid_response",
            endpoint=endpoint,
        ) from exc
