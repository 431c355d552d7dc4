from __future__ import annotations

from enum import Enum
from typing import Iterable

import httpx

from api_session.configs.logging_config import get_logger
from api_session.domain.entities.request import ApiRequest
from api_session.errors import HttpError
from api_session.webclient.RefreshCoordinator import RefreshCoordinator

log = get_logger(__name__)


class FailureAction(str, Enum):
    PROPAGATE = "propagate"
    REFRESH = "refresh"


def is_excluded(url: str, excluded_endpoints: Iterable[str]) -> bool:
    return any(fragment and fragment in url for fragment in excluded_endpoints)


def classify_failure(request: ApiRequest, status_code: int, excluded_endpoints: Iterable[str]) -> FailureAction:
    """
    Only a 401 on a non-auth endpoint that has not been retried yet may start
    a refresh. Everything else goes back to the caller untouched.
    """
    if status_code != 401:
        return FailureAction.PROPAGATE
    if is_excluded(request.url, excluded_endpoints):
        return FailureAction.PROPAGATE
    if request.retried:
        return FailureAction.PROPAGATE
    return FailureAction.REFRESH


class ResponsePipeline:
    def __init__(self, coordinator: RefreshCoordinator, excluded_endpoints: Iterable[str]):
        self._coordinator = coordinator
        self._excluded = tuple(excluded_endpoints)

    @property
    def excluded_endpoints(self) -> tuple[str, ...]:
        return self._excluded

    async def handle(self, request: ApiRequest, response: httpx.Response) -> httpx.Response:
        if not response.is_error:
            return response

        error = HttpError.from_response(response)
        action = classify_failure(request, response.status_code, self._excluded)
        if action is FailureAction.PROPAGATE:
            log.info(
                "response.error method=%s url=%s status=%s retried=%s",
                request.method,
                request.url,
                response.status_code,
                request.retried,
            )
            raise error

        log.info("response.unauthorized method=%s url=%s refreshing", request.method, request.url)
        return await self._coordinator.refresh_and_retry(request.mark_retried(), error)
