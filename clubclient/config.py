from __future__ import annotations

import os
from enum import Enum
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from clubclient.logging import get_logger

logger = get_logger(__name__)


class TokenStoreBackend(str, Enum):
    """Where credentials and the profile snapshot are persisted."""

    MEMORY = "memory"
    FILE = "file"
    REDIS = "redis"


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the club API client."""

    api_base_url: str = env_field("http://localhost:4000", "CLUB_API_URL")
    api_prefix: str = env_field(
        "/api/",
        "CLUB_API_PREFIX",
        description="Path prefix of requests routed through the auth pipeline",
    )
    request_timeout_seconds: float = env_field(
        30.0,
        "CLUB_REQUEST_TIMEOUT",
        description="Deadline applied to every outbound request",
    )
    connect_timeout_seconds: float = env_field(10.0, "CLUB_CONNECT_TIMEOUT")
    token_store_backend: TokenStoreBackend = env_field(
        TokenStoreBackend.MEMORY, "CLUB_TOKEN_STORE"
    )
    token_store_path: str = env_field(
        os.path.join(os.path.expanduser("~"), ".clubclient", "credentials.json"),
        "CLUB_TOKEN_STORE_PATH",
    )
    redis_url: str = env_field("redis://localhost:6379/0", "REDIS_URL")
    redis_key_prefix: str = env_field("clubclient:", "CLUB_REDIS_KEY_PREFIX")
    expiry_codes: str = env_field(
        "TOKEN_EXPIRED",
        "CLUB_EXPIRY_CODES",
        description="Comma separated 401 error codes that trigger a token refresh",
    )

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("api_base_url")
    @classmethod
    def _normalize_base_url(cls, value: str) -> str:
        value = (value or "").strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("api_base_url must be an absolute http(s) URL")
        return value.rstrip("/")

    @field_validator("api_prefix")
    @classmethod
    def _normalize_prefix(cls, value: str) -> str:
        value = (value or "/").strip()
        if not value.startswith("/"):
            value = "/" + value
        if not value.endswith("/"):
            value = value + "/"
        return value

    @field_validator("request_timeout_seconds", "connect_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts must be positive")
        return value

    @field_validator("token_store_backend")
    @classmethod
    def _validate_backend(cls, value: TokenStoreBackend) -> TokenStoreBackend:
        return TokenStoreBackend(value)

    @property
    def expiry_code_set(self) -> frozenset[str]:
        return frozenset(
            code.strip() for code in self.expiry_codes.split(",") if code.strip()
        )


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
        logger.debug(
            "settings_loaded",
            api_base_url=_settings_cache.api_base_url,
            store_type=_settings_cache.token_store_backend.value,
        )
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
