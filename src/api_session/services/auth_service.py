from __future__ import annotations

from typing import Any

import httpx

from api_session.configs.logging_config import get_logger
from api_session.domain.entities.tokens import TokenBundle, try_parse_token_payload
from api_session.errors import ApiError, AuthError
from api_session.webclient.SessionHttpClient import SessionHttpClient

log = get_logger(__name__)


def _body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _session_tokens(body: Any) -> TokenBundle | None:
    """
    Login/signup answer with `data.tokens`; the expiry is optional there and
    counts as already expired when missing.
    """
    bundle = try_parse_token_payload(body)
    if bundle is not None:
        return bundle
    data = body.get("data") if isinstance(body, dict) else None
    tokens = data.get("tokens") if isinstance(data, dict) else None
    if not isinstance(tokens, dict):
        return None
    access_token = tokens.get("accessToken")
    refresh_token = tokens.get("refreshToken")
    if not (isinstance(access_token, str) and access_token and isinstance(refresh_token, str) and refresh_token):
        return None
    return TokenBundle(accessToken=access_token, refreshToken=refresh_token, accessTokenExpiresIn=0)


class AuthService:
    """Login, signup, logout and profile bootstrap on top of SessionHttpClient."""

    def __init__(self, client: SessionHttpClient):
        self._client = client
        self._store = client.store
        self._settings = client.settings

    async def login(self, email: str, password: str) -> dict[str, Any] | None:
        log.info("auth.login.start")
        response = await self._client.post(
            self._settings.login_path, json={"email": email, "password": password}
        )
        return await self._start_session(response, "login")

    async def signup(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        log.info("auth.signup.start")
        response = await self._client.post(self._settings.signup_path, json=payload)
        return await self._start_session(response, "signup")

    async def _start_session(self, response: httpx.Response, action: str) -> dict[str, Any] | None:
        body = _body(response)
        bundle = _session_tokens(body)
        if bundle is None:
            message = body.get("message") if isinstance(body, dict) else None
            log.info("auth.%s.no_tokens", action)
            raise AuthError(message or f"Invalid {action} response")

        await self._store.store_tokens(bundle.accessToken, bundle.refreshToken, bundle.accessTokenExpiresIn)
        data = body.get("data") if isinstance(body, dict) else None
        user = data.get("user") if isinstance(data, dict) else None
        await self._store.set_user(user)
        log.info("auth.%s.ok has_user=%s", action, user is not None)
        return user

    async def logout(self) -> None:
        """The server call is best-effort; local state is always cleared."""
        try:
            if await self._store.get_access_token():
                await self._client.post(self._settings.logout_path)
        except ApiError as exc:
            log.warning("auth.logout.remote_failed error=%s", exc.message)
        finally:
            await self._store.clear_session()
        log.info("auth.logout.done")

    async def forgot_password(self, email: str) -> bool:
        await self._client.post(self._settings.forgot_password_path, json={"email": email})
        return True

    async def reset_password(self, token: str, password: str) -> bool:
        await self._client.post(
            self._settings.reset_password_path, json={"token": token, "password": password}
        )
        return True

    async def refresh_profile(self) -> dict[str, Any] | None:
        response = await self._client.get(self._settings.profile_path)
        body = _body(response)
        user = body.get("data") if isinstance(body, dict) else None
        await self._store.set_user(user)
        return user

    async def bootstrap(self) -> dict[str, Any] | None:
        """
        Restore the session on startup. Any failure to load the profile
        (including an unrecoverable refresh) drops the stored session.
        """
        if not await self._store.get_access_token():
            return None
        try:
            return await self.refresh_profile()
        except ApiError as exc:
            log.info("auth.bootstrap.failed error_code=%s", exc.error_code)
            await self._store.clear_session()
            return None

    async def is_authenticated(self) -> bool:
        return bool(await self._store.get_access_token())

    async def current_user(self) -> dict[str, Any] | None:
        return await self._store.get_user()
