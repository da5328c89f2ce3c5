"""Process-wide configuration, read once from the environment."""
from __future__ import annotations

from enum import Enum
from functools import lru_cache
from typing import Any

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from gemini_relay.common.schema import CallShape


class TransientPolicy(str, Enum):
    """What to do when a candidate fails with a transient upstream error."""
    CHAIN = "chain"
    CONTINUE = "continue"
    STOP = "stop"


class ServerSettings(BaseSettings):
    """Server-level options that must be known before the app starts."""
    log_level: str = "INFO"
    cors_allow_origins: str = "*"
    host: str = "0.0.0.0"
    port: int = 3000

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @property
    def cors_allow_origins_list(self) -> list[str]:
        return split_csv(self.cors_allow_origins) or ["*"]


class Settings(ServerSettings):
    gemini_api_key: SecretStr
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"

    fallback_models: str = "gemini-1.5-pro,gemini-1.5-flash,gemini-pro"
    honor_model_hint: bool = True
    default_call_shape: CallShape = CallShape.CONTENT
    message_shape_models: str = "chat-bison-001"
    shape_fallback_enabled: bool = True
    transient_policy: TransientPolicy = TransientPolicy.CHAIN

    generate_timeout_seconds: float = 30.0
    list_timeout_seconds: float = 20.0

    default_temperature: float = 0.4
    default_max_output_tokens: int = 300
    top_p: float | None = 0.8
    top_k: int | None = 40
    safety_settings: list[dict[str, Any]] = []

    refusal_locale: str = "en"

    @property
    def fallback_models_list(self) -> list[str]:
        return split_csv(self.fallback_models)

    @property
    def message_shape_models_list(self) -> list[str]:
        return split_csv(self.message_shape_models)

    @property
    def api_base(self) -> str:
        return self.gemini_base_url.rstrip("/")


def split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()


@lru_cache
def get_server_settings() -> ServerSettings:
    return ServerSettings()
