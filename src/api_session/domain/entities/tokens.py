from __future__ import annotations

import math
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt, StrictStr, ValidationError, field_validator

from api_session.errors import MalformedRefreshResponse


class TokenBundle(BaseModel):
    """Token triple as the backend sends it (camelCase on the wire)."""

    model_config = ConfigDict(extra="ignore")

    accessToken: StrictStr = Field(min_length=1)
    refreshToken: StrictStr = Field(min_length=1)
    accessTokenExpiresIn: StrictInt | StrictFloat

    @field_validator("accessTokenExpiresIn")
    @classmethod
    def _finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("expiry must be finite")
        return v


def _nested_tokens(payload: Any) -> Any:
    data = payload.get("data") if isinstance(payload, dict) else None
    return data.get("tokens") if isinstance(data, dict) else None


def _flat_body(payload: Any) -> Any:
    return payload


def _flat_data(payload: Any) -> Any:
    return payload.get("data") if isinstance(payload, dict) else None


# Tried in order; the first shape that validates wins.
TOKEN_SHAPES: tuple[tuple[str, Callable[[Any], Any]], ...] = (
    ("data.tokens", _nested_tokens),
    ("body", _flat_body),
    ("data", _flat_data),
)


def parse_token_payload(payload: Any) -> TokenBundle:
    """
    Accept either `{data: {tokens: {...}}}` or the token fields directly on
    the body or on `data`. Anything partial raises MalformedRefreshResponse.
    """
    for _, extract in TOKEN_SHAPES:
        candidate = extract(payload)
        if not isinstance(candidate, dict):
            continue
        try:
            return TokenBundle.model_validate(candidate)
        except ValidationError:
            continue
    tried = ", ".join(name for name, _ in TOKEN_SHAPES)
    raise MalformedRefreshResponse(f"no complete token set found (tried {tried})")


def try_parse_token_payload(payload: Any) -> Optional[TokenBundle]:
    try:
        return parse_token_payload(payload)
    except MalformedRefreshResponse:
        return None
