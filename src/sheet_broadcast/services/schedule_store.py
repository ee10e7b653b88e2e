"""Schedule file editing for the admin API."""

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import ValidationError

from sheet_broadcast.config import load_app_config, read_raw_config, substitute_env_vars
from sheet_broadcast.domain.errors import ConfigError, ScheduleNotFound
from sheet_broadcast.domain.schedules import (
    AppConfig,
    BrowserSettings,
    GeneralSettings,
    ScheduleConfig,
    ScheduleCreate,
    ScheduleUpdate,
    SettingsUpdate,
    format_cron,
    parse_cron,
)

_ID_PREFIX = "schedule-"
_DEFAULT_HOURS = "9"
_DEFAULT_MINUTES = "0"
_DEFAULT_DAYS = [1, 2, 3, 4, 5]

_logger = logging.getLogger(__name__)


def schedule_id(index: int) -> str:
    return f"{_ID_PREFIX}{index}"


@dataclass
class ScheduleStore:
    """Reads and rewrites the YAML schedule file.

    Entries are edited in their raw form so ``${VAR}`` placeholders survive a
    round trip; validation runs on the substituted copy.
    """

    path: Path

    def load(self) -> AppConfig:
        """Return the validated configuration."""
        return load_app_config(self.path)

    def list_schedules(self) -> list[dict[str, object]]:
        return [
            _with_id(index, entry)
            for index, entry in enumerate(self._raw_schedules(self._read()))
        ]

    def get_schedule(self, schedule_ref: str) -> dict[str, object]:
        raw = self._read()
        index = self._index(schedule_ref, raw)
        entry = _with_id(index, self._raw_schedules(raw)[index])
        cron = entry.get("cron")
        if isinstance(cron, str) and len(cron.split()) == 5:  # noqa: PLR2004
            entry["cron_parsed"] = parse_cron(cron)
        return entry

    def resolve(self, schedule_ref: str) -> ScheduleConfig:
        """Return one validated schedule by id."""
        raw = self._read()
        index = self._index(schedule_ref, raw)
        return _validate(self._raw_schedules(raw)[index])

    def create_schedule(self, payload: ScheduleCreate) -> dict[str, object]:
        """Append a schedule and persist the file."""
        raw = self._read()
        entry: dict[str, object] = {
            "name": payload.name,
            "sheet_url": payload.sheet_url,
            "groups": payload.groups,
            "cron": format_cron(payload.hours, payload.minutes, payload.days),
            "message_template": payload.message_template,
            "sheet_tabs": [tab.model_dump() for tab in payload.sheet_tabs],
            "cell_mappings": [
                mapping.model_dump() for mapping in payload.cell_mappings
            ],
        }
        if payload.clip is not None:
            entry["clip"] = payload.clip.model_dump()
        if payload.selector:
            entry["selector"] = payload.selector
        _validate(entry)

        schedules = self._raw_schedules(raw)
        schedules.append(entry)
        raw["schedules"] = schedules
        self._write(raw)
        _logger.info("Schedule created: %s", payload.name)
        return _with_id(len(schedules) - 1, entry)

    def update_schedule(
        self, schedule_ref: str, payload: ScheduleUpdate
    ) -> dict[str, object]:
        """Merge the provided fields into an existing schedule."""
        raw = self._read()
        index = self._index(schedule_ref, raw)
        schedules = self._raw_schedules(raw)
        entry = dict(schedules[index])

        for field_name in ("name", "sheet_url", "groups", "message_template"):
            value = getattr(payload, field_name)
            if value:
                entry[field_name] = value
        if {"hours", "minutes", "days"} & payload.model_fields_set:
            current = parse_cron(str(entry["cron"])) if entry.get("cron") else {}
            entry["cron"] = format_cron(
                payload.hours or str(current.get("hours", _DEFAULT_HOURS)),
                payload.minutes or str(current.get("minutes", _DEFAULT_MINUTES)),
                payload.days
                if payload.days is not None
                else list(current.get("days", _DEFAULT_DAYS)),
            )
        if payload.sheet_tabs is not None:
            entry["sheet_tabs"] = [tab.model_dump() for tab in payload.sheet_tabs]
        if payload.cell_mappings is not None:
            entry["cell_mappings"] = [
                mapping.model_dump() for mapping in payload.cell_mappings
            ]
        for field_name in ("clip", "selector"):
            if field_name not in payload.model_fields_set:
                continue
            value = getattr(payload, field_name)
            if value is None:
                entry.pop(field_name, None)
            elif field_name == "clip":
                entry["clip"] = value.model_dump()
            else:
                entry["selector"] = value
        _validate(entry)

        schedules[index] = entry
        raw["schedules"] = schedules
        self._write(raw)
        _logger.info("Schedule updated: %s", entry["name"])
        return _with_id(index, entry)

    def delete_schedule(self, schedule_ref: str) -> None:
        raw = self._read()
        index = self._index(schedule_ref, raw)
        schedules = self._raw_schedules(raw)
        removed = schedules.pop(index)
        raw["schedules"] = schedules
        self._write(raw)
        _logger.info("Schedule removed: %s", removed.get("name"))

    def settings(self) -> dict[str, object]:
        """Return the settings and browser sections with defaults applied."""
        raw = substitute_env_vars(self._read())
        try:
            settings = GeneralSettings.model_validate(raw.get("settings") or {})
            browser = BrowserSettings.model_validate(raw.get("browser") or {})
        except ValidationError as exc:
            raise ConfigError(f"Invalid settings: {exc}") from exc
        return {"settings": settings.model_dump(), "browser": browser.model_dump()}

    def update_settings(self, update: SettingsUpdate) -> dict[str, object]:
        """Shallow-merge new values into the settings and browser sections."""
        raw = self._read()
        for section, values in (
            ("settings", update.settings),
            ("browser", update.browser),
        ):
            if values:
                current = raw.get(section)
                merged = dict(current) if isinstance(current, dict) else {}
                merged.update(values)
                raw[section] = merged
        try:
            GeneralSettings.model_validate(
                substitute_env_vars(raw.get("settings") or {})
            )
            BrowserSettings.model_validate(
                substitute_env_vars(raw.get("browser") or {})
            )
        except ValidationError as exc:
            raise ConfigError(f"Invalid settings: {exc}") from exc
        self._write(raw)
        _logger.info("Settings updated")
        return self.settings()

    def _read(self) -> dict[str, object]:
        return read_raw_config(self.path)

    def _write(self, raw: dict[str, object]) -> None:
        self.path.write_text(
            yaml.safe_dump(raw, allow_unicode=True, sort_keys=False),
            encoding="utf-8",
        )
        _logger.info("Configuration saved to %s", self.path.resolve())

    @staticmethod
    def _raw_schedules(raw: dict[str, object]) -> list[dict[str, object]]:
        schedules = raw.get("schedules") or []
        if not isinstance(schedules, list):
            raise ConfigError("'schedules' must be a list")
        return schedules

    def _index(self, schedule_ref: str, raw: dict[str, object]) -> int:
        suffix = schedule_ref.removeprefix(_ID_PREFIX)
        if not suffix.isdigit():
            raise ScheduleNotFound(schedule_ref)
        index = int(suffix)
        if index >= len(self._raw_schedules(raw)):
            raise ScheduleNotFound(schedule_ref)
        return index


def _with_id(index: int, entry: dict[str, object]) -> dict[str, object]:
    return {**entry, "id": schedule_id(index), "enabled": True}


def _validate(entry: dict[str, object]) -> ScheduleConfig:
    try:
        return ScheduleConfig.model_validate(substitute_env_vars(entry))
    except ValidationError as exc:
        raise ConfigError(f"Invalid schedule: {exc}") from exc
