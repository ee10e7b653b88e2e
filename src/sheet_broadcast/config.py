"""Application configuration."""

import logging
import os
import re
from pathlib import Path

import yaml
from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from sheet_broadcast.domain.errors import ConfigError
from sheet_broadcast.domain.schedules import (
    AppConfig,
    BrowserSettings,
    GeneralSettings,
    ScheduleConfig,
)

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")
_ENV_VAR_RE = re.compile(r"\$\{(\w+)\}")

_logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    admin_token: str
    config_path: str = "./config/config.yaml"
    messaging_provider: str = "uazapi"
    uazapi_base_url: str = ""
    uazapi_token: str = ""
    uazapi_instance_id: str = ""
    evolution_base_url: str = ""
    evolution_api_key: str = ""
    evolution_instance_name: str = ""
    capture_max_parallel: int = 5
    capture_idle_timeout_seconds: float = 300.0
    capture_reap_interval_seconds: float = 60.0
    capture_load_timeout_seconds: float = 30.0
    capture_max_retries: int = 3
    capture_retry_base_delay_seconds: float = 2.0
    capture_reload_on_view_switch: bool = False
    scheduler_autostart: bool = True
    chrome_path: str | None = None
    log_level: str = "INFO"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def substitute_env_vars(value: object) -> object:
    """Replace ``${VAR}`` placeholders recursively with environment values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda match: os.getenv(match.group(1), ""), value)
    if isinstance(value, list):
        return [substitute_env_vars(item) for item in value]
    if isinstance(value, dict):
        return {key: substitute_env_vars(item) for key, item in value.items()}
    return value


def read_raw_config(path: str | Path) -> dict[str, object]:
    """Read the schedule file without validation."""
    config_file = Path(path).resolve()
    if not config_file.exists():
        raise ConfigError(f"Config file not found: {config_file}")
    raw = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file must contain a mapping: {config_file}")
    return raw


def load_app_config(path: str | Path) -> AppConfig:
    """Load, validate and normalize the schedule file.

    Invalid schedules are logged and skipped. Valid ones inherit the browser
    default viewport and the global settle delay when they do not set their
    own.
    """
    _logger.info("Loading configuration from %s", Path(path).resolve())
    raw = substitute_env_vars(read_raw_config(path))
    try:
        settings = GeneralSettings.model_validate(raw.get("settings") or {})
        browser = BrowserSettings.model_validate(raw.get("browser") or {})
    except ValidationError as exc:
        raise ConfigError(f"Invalid settings: {exc}") from exc

    raw_schedules = raw.get("schedules") or []
    if not raw_schedules:
        raise ConfigError("No schedules configured")

    schedules: list[ScheduleConfig] = []
    for index, raw_schedule in enumerate(raw_schedules):
        try:
            schedule = ScheduleConfig.model_validate(raw_schedule)
        except ValidationError as exc:
            _logger.error("Schedule %s is invalid: %s", index, exc)
            continue
        schedules.append(
            schedule.model_copy(
                update={
                    "viewport": schedule.viewport or browser.default_viewport,
                    "wait_after_load": (
                        schedule.wait_after_load
                        if schedule.wait_after_load is not None
                        else settings.wait_after_load
                    ),
                }
            )
        )

    if not schedules:
        raise ConfigError("No valid schedules found")

    _logger.info("Configuration loaded: %s valid schedules", len(schedules))
    return AppConfig(settings=settings, browser=browser, schedules=schedules)
