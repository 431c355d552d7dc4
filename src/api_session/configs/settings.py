from __future__ import annotations

from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_EXCLUDED_ENDPOINTS = (
    "/login",
    "/signup",
    "/token/refresh",
    "/reset-password",
    "/forgot-password",
)


class Settings(BaseSettings):
    """
    Central configuration.

    - Values loaded from `.env` / environment
    - Comma-separated lists for multi-value settings like EXCLUDED_ENDPOINTS
    """

    # ----------------------------
    # Service
    # ----------------------------
    SERVICE_NAME: str = "api-session"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # ----------------------------
    # Backend API
    # ----------------------------
    API_URL: str = "http://localhost:3000/api"
    API_KEY: str | None = None
    REQUEST_TIMEOUT_SECONDS: float = 30.0

    # ----------------------------
    # Token refresh
    # ----------------------------
    REFRESH_PATH: str = "/token/refresh"
    REFRESH_TIMEOUT_SECONDS: float = 10.0
    SEND_ACCESS_TOKEN_ON_REFRESH: bool = True
    # raw string or list from env; normalized by excluded_endpoints()
    EXCLUDED_ENDPOINTS: Any = Field(default_factory=lambda: list(DEFAULT_EXCLUDED_ENDPOINTS))
    PROACTIVE_REFRESH: bool = False
    PROACTIVE_REFRESH_MARGIN_SECONDS: int = 60

    # ----------------------------
    # Credential storage
    # ----------------------------
    credential_backend: str = "memory"  # memory | file | redis
    credential_file: str = ".api_session/credentials.json"
    credential_key_prefix: str = "@pms_"
    redis_url: str = "redis://localhost:6379/0"

    # ----------------------------
    # Auth endpoints
    # ----------------------------
    login_path: str = "/login/basic"
    signup_path: str = "/signup/basic"
    logout_path: str = "/logout"
    profile_path: str = "/profile/my"
    forgot_password_path: str = "/auth/forgot-password"
    reset_password_path: str = "/auth/reset-password"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def excluded_endpoints(self) -> list[str]:
        raw = self.EXCLUDED_ENDPOINTS
        if isinstance(raw, str):
            return [e.strip() for e in raw.split(",") if e.strip()]
        if isinstance(raw, (list, tuple, set)):
            return [str(e) for e in raw]
        return []


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
