# adminguard/config.py
from __future__ import annotations

import os
from typing import Any, List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings
from pydantic_settings.sources.base import PydanticBaseSettingsSource
from pydantic_settings.sources.providers.env import EnvSettingsSource

APP_VERSION = os.getenv("APP_VERSION", "1.0.0")

DEFAULT_FALLBACK_THEMES: List[str] = [
    "twentytwentyfour",
    "twentytwentythree",
    "twentytwentyfive",
]


def _csv_to_list(value: str) -> List[str]:
    items = [part.strip() for part in value.split(",")]
    return [item for item in items if item]


class _CsvFriendlyEnvSettingsSource(EnvSettingsSource):
    def decode_complex_value(self, field_name: str, field: Any, value: Any) -> Any:
        try:
            return super().decode_complex_value(field_name, field, value)
        except ValueError:
            return value


class Settings(BaseSettings):
    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        if isinstance(env_settings, EnvSettingsSource):
            env_settings = _CsvFriendlyEnvSettingsSource(
                settings_cls,
                case_sensitive=env_settings.case_sensitive,
                env_prefix=env_settings.env_prefix,
                env_nested_delimiter=env_settings.env_nested_delimiter,
                env_ignore_empty=env_settings.env_ignore_empty,
                env_parse_none_str=env_settings.env_parse_none_str,
                env_parse_enums=env_settings.env_parse_enums,
            )
        return init_settings, env_settings, dotenv_settings, file_secret_settings

    # --- Identity / Build ---
    APP_NAME: str = Field(default="Admin Guard")
    ENV: str = Field(default=os.environ.get("ENV", "dev"))
    VERSION: str = Field(default=APP_VERSION)

    # --- Remote policy ---
    POLICY_API_URL: str = Field(default="")
    POLICY_FETCH_TIMEOUT_S: float = Field(default=10.0, gt=0, le=120)
    # Path to a private CA bundle; verification itself cannot be switched off.
    POLICY_CA_BUNDLE: Optional[str] = None
    POLICY_CACHE_TTL_S: int = Field(default=3600, ge=1)
    POLICY_FAIL_MODE: Literal["open", "closed"] = Field(
        default="open",
        description="Behavior when no remote or fallback policy is available",
    )

    # --- Timers ---
    POLICY_REFRESH_INTERVAL_S: int = Field(default=60, ge=0)
    ENFORCEMENT_INTERVAL_S: int = Field(default=60, ge=0)
    ENFORCEMENT_DEDUP_TTL_S: int = Field(default=60, ge=1)

    # --- Request identity ---
    TRUST_PROXY_HEADERS: bool = Field(default=True)
    TRUST_IDENTITY_HEADERS: bool = Field(default=False)
    REQUIRED_CAPABILITY: str = Field(default="manage_options")

    # --- Persistence ---
    KV_BACKEND: Literal["memory", "redis"] = Field(default="memory")
    KV_PREFIX: str = Field(default="adminguard:")
    REDIS_URL: str = Field(default="redis://localhost:6379/0")

    # --- Installed artifacts ---
    PLUGINS_DIR: str = Field(default="wp-content/plugins")
    THEMES_DIR: str = Field(default="wp-content/themes")
    FALLBACK_THEMES: List[str] = Field(default_factory=lambda: list(DEFAULT_FALLBACK_THEMES))
    BLOCK_BLOCKED_INSTALLS: bool = Field(default=True)
    PLUGIN_DOWNLOAD_URL_TEMPLATE: str = Field(
        default="https://downloads.wordpress.org/plugin/{slug}.latest-stable.zip"
    )

    # --- Audit log ---
    AUDIT_BACKEND: Literal["none", "memory", "file", "redis"] = Field(default="memory")
    AUDIT_LOG_FILE: str = Field(default="adminguard-block-log.txt")
    AUDIT_REDIS_KEY: str = Field(default="adminguard:audit:v1")
    AUDIT_REDIS_MAXLEN: int = Field(default=50000, ge=1)

    # --- Logging / metrics ---
    LOG_JSON: bool = Field(default=True)
    LOG_LEVEL: str = Field(default="INFO")
    METRICS_ENABLED: bool = Field(default=True)

    model_config = {
        "extra": "ignore",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    @field_validator("FALLBACK_THEMES", mode="before")
    @classmethod
    def _parse_themes_csv(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip().startswith("["):
            return _csv_to_list(value)
        return value

    @field_validator("PLUGIN_DOWNLOAD_URL_TEMPLATE")
    @classmethod
    def _require_slug_placeholder(cls, value: str) -> str:
        if "{slug}" not in value:
            raise ValueError("PLUGIN_DOWNLOAD_URL_TEMPLATE must contain '{slug}'")
        return value


def get_settings() -> Settings:
    return Settings()
