"""YAML + env var config loading with pydantic-settings."""

from __future__ import annotations

import os
import signal
from pathlib import Path

import structlog
from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from retrocsp.retrofit.plans import RetrofitterKind

logger = structlog.get_logger()

ENV_PREFIX = "RETROCSP_"

_DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


# YAML layer path, resolved before the settings object is built
CONFIG_FILE_ENV = f"{ENV_PREFIX}CONFIG_FILE"


def _config_file_path() -> Path:
    return Path(os.environ.get(CONFIG_FILE_ENV, str(_DEFAULTS_PATH)))


class RetrofitSettings(BaseSettings):
    """Proxy configuration: YAML file first, overridden by env vars."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    upstream_url: str = "http://localhost:3000"
    listen_port: int = 8080
    log_level: str = "info"
    log_json: bool = True

    # Proxy settings
    proxy_timeout: float = 30.0
    max_body_bytes: int = 10 * 1024 * 1024
    upstream_follow_redirects: bool = False
    upstream_max_connections: int = 100
    upstream_max_keepalive: int = 20

    # Origin used to resolve 'self'; empty means "derive from the request"
    public_origin: str = ""

    # Retrofitting
    enabled_retrofitters: list[RetrofitterKind] = Field(default_factory=lambda: list(RetrofitterKind))
    nonce_length: int = Field(default=16, ge=8, le=64)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=_config_file_path()),
            file_secret_settings,
        )


_settings: RetrofitSettings | None = None


def get_settings() -> RetrofitSettings:
    """Get or create the singleton settings instance."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def load_settings() -> RetrofitSettings:
    """(Re)load settings from the YAML file and env vars."""
    global _settings
    _settings = RetrofitSettings()
    logger.info(
        "config_loaded",
        upstream_url=_settings.upstream_url,
        port=_settings.listen_port,
        retrofitters=[kind.value for kind in _settings.enabled_retrofitters],
    )
    return _settings


def register_reload_handler() -> None:
    """Register SIGHUP handler for hot-reload of configuration."""
    import threading

    if threading.current_thread() is not threading.main_thread():
        logger.debug("skipping_sighup_handler", reason="not main thread")
        return

    def _reload(signum, frame):
        logger.info("config_reload_triggered")
        load_settings()

    try:
        signal.signal(signal.SIGHUP, _reload)
    except (ValueError, AttributeError):
        logger.debug("skipping_sighup_handler", reason="signal not supported")
