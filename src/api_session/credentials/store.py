from __future__ import annotations

import json
from typing import Any

from api_session.configs.logging_config import get_logger
from api_session.credentials.backends import KeyValueBackend
from api_session.utils.time_utils import Clock, now_ms

log = get_logger(__name__)

DEFAULT_REFRESH_MARGIN_MS = 60_000


class CredentialStore:
    """
    Access token, refresh token and absolute access-token expiry.

    Reads never raise: a failing backend reads as "no credential". Writes
    go through one backend call so the triple is stored or cleared together.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        *,
        key_prefix: str = "@pms_",
        clock: Clock = now_ms,
        refresh_margin_ms: int = DEFAULT_REFRESH_MARGIN_MS,
    ):
        self._backend = backend
        self._clock = clock
        self._refresh_margin_ms = refresh_margin_ms
        self.access_token_key = f"{key_prefix}access_token"
        self.refresh_token_key = f"{key_prefix}refresh_token"
        self.expires_at_key = f"{key_prefix}access_expires_at"
        self.user_key = f"{key_prefix}user"

    @property
    def token_keys(self) -> tuple[str, str, str]:
        return (self.access_token_key, self.refresh_token_key, self.expires_at_key)

    async def _read(self, key: str) -> str | None:
        try:
            value = await self._backend.get(key)
        except Exception as exc:
            log.error("credentials.read_failed key=%s error=%s", key, exc)
            return None
        return value or None

    async def get_access_token(self) -> str | None:
        return await self._read(self.access_token_key)

    async def get_refresh_token(self) -> str | None:
        return await self._read(self.refresh_token_key)

    async def get_expires_at(self) -> int | None:
        raw = await self._read(self.expires_at_key)
        if raw is None:
            return None
        try:
            return int(float(raw))
        except ValueError:
            log.warning("credentials.bad_expiry value=%r", raw)
            return None

    async def store_tokens(
        self,
        access_token: str,
        refresh_token: str,
        expires_in_seconds: float | None,
    ) -> bool:
        expires_at = self._clock() + int(max(0, expires_in_seconds or 0) * 1000)
        try:
            await self._backend.set_many(
                {
                    self.access_token_key: access_token or "",
                    self.refresh_token_key: refresh_token or "",
                    self.expires_at_key: str(expires_at),
                }
            )
        except Exception as exc:
            log.error("credentials.store_failed error=%s", exc)
            return False
        log.info("credentials.stored expires_at=%s", expires_at)
        return True

    async def clear_tokens(self) -> None:
        try:
            await self._backend.remove_many(self.token_keys)
        except Exception as exc:
            log.error("credentials.clear_failed error=%s", exc)
            return
        log.info("credentials.cleared")

    async def is_expired(self) -> bool:
        """True if no expiry is stored or it has passed."""
        expires_at = await self.get_expires_at()
        if not expires_at:
            return True
        return self._clock() >= expires_at

    async def should_proactively_refresh(self) -> bool:
        """True once the access token is within the refresh margin of expiry."""
        try:
            raw = await self._backend.get(self.expires_at_key)
        except Exception as exc:
            log.error("credentials.read_failed key=%s error=%s", self.expires_at_key, exc)
            return False
        if not raw:
            return True
        try:
            expires_at = int(float(raw))
        except ValueError:
            return True
        return self._clock() >= expires_at - self._refresh_margin_ms

    # ----------------------------
    # Cached user profile
    # ----------------------------

    async def set_user(self, user: dict[str, Any] | None) -> None:
        try:
            await self._backend.set(self.user_key, json.dumps(user))
        except Exception as exc:
            log.error("credentials.set_user_failed error=%s", exc)

    async def get_user(self) -> dict[str, Any] | None:
        raw = await self._read(self.user_key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            log.error("credentials.bad_user_payload error=%s", exc)
            return None

    async def get_user_id(self) -> str | None:
        user = await self.get_user()
        if not user:
            return None
        user_id = user.get("_id") or user.get("id")
        return str(user_id) if user_id is not None else None

    async def clear_session(self) -> None:
        """Tokens and cached user, as on logout."""
        try:
            await self._backend.remove_many([*self.token_keys, self.user_key])
        except Exception as exc:
            log.error("credentials.clear_failed error=%s", exc)
            return
        log.info("credentials.session_cleared")

    async def close(self) -> None:
        await self._backend.close()
