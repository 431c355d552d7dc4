from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Mapping


def _without_authorization(headers: Mapping[str, str]) -> dict[str, str]:
    return {k: v for k, v in headers.items() if k.lower() != "authorization"}


@dataclass(frozen=True)
class ApiRequest:
    """
    Replayable description of one HTTP call.

    `retried` is set once the request has been handed to the refresh
    coordinator; a retried request is never refreshed again.
    """

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    params: Any = None
    json: Any = None
    content: Any = None
    data: Any = None
    retried: bool = False

    @property
    def authorization(self) -> str | None:
        for k, v in self.headers.items():
            if k.lower() == "authorization":
                return v
        return None

    def with_bearer(self, token: str) -> "ApiRequest":
        headers = _without_authorization(self.headers)
        headers["Authorization"] = f"Bearer {token}"
        return replace(self, headers=headers)

    def mark_retried(self) -> "ApiRequest":
        return replace(self, retried=True)

    def build_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"headers": dict(self.headers)}
        for name in ("params", "json", "content", "data"):
            value = getattr(self, name)
            if value is not None:
                kwargs[name] = value
        return kwargs
