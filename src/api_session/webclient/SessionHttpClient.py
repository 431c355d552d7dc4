from __future__ import annotations

from typing import Any, Mapping

import httpx

from api_session.configs.logging_config import get_logger
from api_session.configs.settings import Settings, get_settings
from api_session.credentials.store import CredentialStore
from api_session.domain.entities.request import ApiRequest
from api_session.webclient.RefreshCoordinator import RefreshCoordinator, SessionExpiredCallback
from api_session.webclient.RequestPipeline import RequestPipeline
from api_session.webclient.ResponsePipeline import ResponsePipeline, is_excluded

log = get_logger(__name__)


def default_headers(settings: Settings) -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if settings.API_KEY:
        headers["x-api-key"] = settings.API_KEY
    return headers


class SessionHttpClient:
    """
    Bearer-authenticated client for the backend API.

    A 401 on a regular endpoint triggers one coordinated token refresh and a
    single transparent replay; callers only ever see the final response or a
    typed ApiError.
    """

    def __init__(
        self,
        store: CredentialStore,
        *,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        on_session_expired: SessionExpiredCallback | None = None,
        owns_store: bool = False,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.owns_store = owns_store
        self.session = client or httpx.AsyncClient(
            base_url=self.settings.API_URL,
            timeout=self.settings.REQUEST_TIMEOUT_SECONDS,
            headers=default_headers(self.settings),
        )
        self.requests = RequestPipeline(store, self.session)
        self.coordinator = RefreshCoordinator(
            store,
            self.session,
            self._send_and_classify,
            refresh_path=self.settings.REFRESH_PATH,
            send_access_token=self.settings.SEND_ACCESS_TOKEN_ON_REFRESH,
            timeout=self.settings.REFRESH_TIMEOUT_SECONDS,
            on_session_expired=on_session_expired,
        )
        self.responses = ResponsePipeline(self.coordinator, self.settings.excluded_endpoints())
        self.proactive_refresh = self.settings.PROACTIVE_REFRESH

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        params: Any = None,
        json: Any = None,
        content: Any = None,
        data: Any = None,
    ) -> httpx.Response:
        api_request = ApiRequest(
            method=method.upper(),
            url=url,
            headers=dict(headers or {}),
            params=params,
            json=json,
            content=content,
            data=data,
        )
        if self.proactive_refresh and not is_excluded(url, self.responses.excluded_endpoints):
            await self.ensure_fresh_token()

        prepared = await self.requests.prepare(api_request)
        return await self._send_and_classify(prepared)

    async def _send_and_classify(self, request: ApiRequest) -> httpx.Response:
        response = await self.requests.send(request)
        return await self.responses.handle(request, response)

    async def ensure_fresh_token(self) -> bool:
        """
        Refresh ahead of time when the access token is about to expire.

        Returns True when a refresh ran (or was joined). Without a stored
        refresh token there is nothing to do and the request goes out as is.
        """
        if not await self.store.should_proactively_refresh():
            return False
        if not await self.store.get_refresh_token():
            return False
        log.info("request.proactive_refresh")
        await self.coordinator.refresh()
        return True

    async def get(self, url: str, **kwargs):
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs):
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs):
        return await self.request("PUT", url, **kwargs)

    async def patch(self, url: str, **kwargs):
        return await self.request("PATCH", url, **kwargs)

    async def delete(self, url: str, **kwargs):
        return await self.request("DELETE", url, **kwargs)

    async def aclose(self) -> None:
        try:
            await self.session.aclose()
        finally:
            if self.owns_store:
                await self.store.close()

    async def __aenter__(self) -> "SessionHttpClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
