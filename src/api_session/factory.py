from __future__ import annotations

from api_session.configs.logging_config import get_logger
from api_session.configs.settings import Settings, get_settings
from api_session.credentials.backends import InMemoryBackend, JsonFileBackend, KeyValueBackend, connect_redis
from api_session.credentials.store import CredentialStore
from api_session.webclient.RefreshCoordinator import SessionExpiredCallback
from api_session.webclient.SessionHttpClient import SessionHttpClient

log = get_logger(__name__)


async def build_credential_backend(settings: Settings) -> KeyValueBackend:
    kind = settings.credential_backend.lower()
    log.info("credentials.backend kind=%s", kind)
    if kind == "memory":
        return InMemoryBackend()
    if kind == "file":
        return JsonFileBackend(settings.credential_file)
    if kind == "redis":
        return await connect_redis(settings.redis_url)
    raise ValueError(f"Unknown credential backend: {settings.credential_backend}")


async def create_client(
    settings: Settings | None = None,
    *,
    on_session_expired: SessionExpiredCallback | None = None,
) -> SessionHttpClient:
    settings = settings or get_settings()
    backend = await build_credential_backend(settings)
    store = CredentialStore(
        backend,
        key_prefix=settings.credential_key_prefix,
        refresh_margin_ms=settings.PROACTIVE_REFRESH_MARGIN_SECONDS * 1000,
    )
    log.info("client.create api_url=%s backend=%s", settings.API_URL, settings.credential_backend)
    return SessionHttpClient(
        store,
        settings=settings,
        on_session_expired=on_session_expired,
        owns_store=True,
    )
