from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from api_session.configs.logging_config import get_logger
from api_session.credentials.store import CredentialStore
from api_session.domain.entities.request import ApiRequest
from api_session.domain.entities.tokens import parse_token_payload
from api_session.errors import HttpError, MalformedRefreshResponse, RefreshFailure

log = get_logger(__name__)

Replay = Callable[[ApiRequest], Awaitable[httpx.Response]]
SessionExpiredCallback = Callable[[RefreshFailure], Any]


@dataclass
class PendingRequest:
    """A caller parked until the in-flight refresh settles."""

    request: Optional[ApiRequest]
    future: asyncio.Future

    def resolve(self, token: str) -> None:
        if not self.future.done():
            self.future.set_result(token)

    def reject(self, error: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(error)


class RefreshCoordinator:
    """
    Single-flight token refresh.

    The first refreshable 401 starts a refresh; every 401 that arrives while
    it is running is queued and settled with the same outcome. The
    `_is_refreshing` check and set happen in one synchronous step, so two
    tasks can never both start a refresh.
    """

    def __init__(
        self,
        store: CredentialStore,
        session: httpx.AsyncClient,
        replay: Replay,
        *,
        refresh_path: str = "/token/refresh",
        send_access_token: bool = True,
        timeout: float | None = 10.0,
        on_session_expired: SessionExpiredCallback | None = None,
    ):
        self.store = store
        self.session = session
        self.refresh_path = refresh_path
        self.send_access_token = send_access_token
        self.timeout = timeout
        self.on_session_expired = on_session_expired
        self._replay = replay

        self._is_refreshing = False
        self._queue: list[PendingRequest] = []

    @property
    def is_refreshing(self) -> bool:
        return self._is_refreshing

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    async def refresh_and_retry(self, request: ApiRequest, error: HttpError) -> httpx.Response:
        """Wait for (or run) the refresh, then replay `request` with the new token."""
        if not self._is_refreshing:
            current = await self.store.get_access_token()
            if current and request.authorization != f"Bearer {current}":
                # a refresh finished after this request went out
                log.info("refresh.stale_token_replay method=%s url=%s", request.method, request.url)
                return await self._replay(request.with_bearer(current))
        token = await self._acquire_token(request, error)
        log.info("refresh.replay method=%s url=%s", request.method, request.url)
        return await self._replay(request.with_bearer(token))

    async def refresh(self) -> str:
        """Refresh without a triggering request, sharing any cycle in flight."""
        return await self._acquire_token(None, None)

    async def _acquire_token(self, request: ApiRequest | None, error: HttpError | None) -> str:
        if self._is_refreshing:
            pending = PendingRequest(request=request, future=asyncio.get_running_loop().create_future())
            self._queue.append(pending)
            log.info(
                "refresh.queued pending=%s method=%s url=%s",
                len(self._queue),
                request.method if request is not None else None,
                request.url if request is not None else None,
            )
            return await pending.future

        self._is_refreshing = True
        log.info("refresh.start")
        try:
            token = await self._perform_refresh(error)
        except RefreshFailure as failure:
            try:
                await self.store.clear_tokens()
            finally:
                self._settle(failure=failure)
            await self._notify_session_expired(failure)
            raise
        except BaseException as exc:
            # cancelled (or crashed) while refreshing; nobody may be left waiting
            self._settle(
                failure=RefreshFailure(
                    "token refresh interrupted",
                    reason=RefreshFailure.CANCELLED
                    if isinstance(exc, asyncio.CancelledError)
                    else RefreshFailure.UNEXPECTED,
                    original_error=error,
                )
            )
            raise
        self._settle(token=token)
        return token

    def _settle(self, *, token: str | None = None, failure: RefreshFailure | None = None) -> None:
        queue, self._queue = self._queue, []
        self._is_refreshing = False
        for pending in queue:
            if failure is not None:
                pending.reject(failure)
            else:
                pending.resolve(token)
        log.info(
            "refresh.settled outcome=%s drained=%s",
            failure.reason if failure is not None else "ok",
            len(queue),
        )

    async def _perform_refresh(self, error: HttpError | None) -> str:
        refresh_token = await self.store.get_refresh_token()
        if not refresh_token:
            log.warning("refresh.no_refresh_token")
            raise RefreshFailure(
                "no refresh token stored",
                reason=RefreshFailure.MISSING_REFRESH_TOKEN,
                original_error=error,
            )

        headers = {}
        if self.send_access_token:
            access_token = await self.store.get_access_token()
            if access_token:
                headers["Authorization"] = f"Bearer {access_token}"

        try:
            response = await asyncio.wait_for(
                self.session.post(self.refresh_path, json={"refreshToken": refresh_token}, headers=headers),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            log.warning("refresh.timeout timeout=%s", self.timeout)
            raise RefreshFailure(
                "token refresh timed out", reason=RefreshFailure.TIMEOUT, original_error=error
            ) from exc
        except httpx.HTTPError as exc:
            log.warning("refresh.network_error error=%s", exc)
            raise RefreshFailure(
                f"token refresh failed: {exc}", reason=RefreshFailure.NETWORK, original_error=error
            ) from exc

        if response.is_error:
            log.warning("refresh.rejected status=%s", response.status_code)
            raise RefreshFailure(
                f"token refresh rejected with HTTP {response.status_code}",
                reason=RefreshFailure.REJECTED,
                original_error=error,
                status_code=response.status_code,
            )

        try:
            bundle = parse_token_payload(response.json())
        except (ValueError, MalformedRefreshResponse) as exc:
            log.warning("refresh.malformed_response error=%s", exc)
            raise RefreshFailure(
                "token refresh returned an unusable body",
                reason=RefreshFailure.MALFORMED,
                original_error=error,
            ) from exc

        # a failed write still leaves us with a usable token for this cycle
        await self.store.store_tokens(bundle.accessToken, bundle.refreshToken, bundle.accessTokenExpiresIn)
        log.info("refresh.ok expires_in=%s", bundle.accessTokenExpiresIn)
        return bundle.accessToken

    async def _notify_session_expired(self, failure: RefreshFailure) -> None:
        if self.on_session_expired is None:
            return
        try:
            result = self.on_session_expired(failure)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            log.error("refresh.session_expired_callback_failed error=%s", exc, exc_info=True)
