"""Models for the schedule configuration file."""

from collections import Counter

from pydantic import BaseModel, Field, field_validator

from sheet_broadcast.domain.capture import ClipRegion, Viewport

_CRON_RANGES = [(0, 59), (0, 23), (1, 31), (1, 12), (0, 7)]
_WEEKDAY_NUMBERS = range(7)


class ViewportModel(BaseModel):
    """Viewport section of the schedule file."""

    width: int = Field(default=1920, gt=0)
    height: int = Field(default=1080, gt=0)

    def to_viewport(self) -> Viewport:
        return Viewport(width=self.width, height=self.height)


class ClipModel(BaseModel):
    """Clip rectangle for partial captures."""

    x: float = Field(ge=0)
    y: float = Field(ge=0)
    width: float = Field(gt=0)
    height: float = Field(gt=0)

    def to_clip(self) -> ClipRegion:
        return ClipRegion(x=self.x, y=self.y, width=self.width, height=self.height)


class SheetTab(BaseModel):
    """Per-group tab override."""

    group: str
    tab: str

    @field_validator("tab", mode="before")
    @classmethod
    def _require_gid(cls, value: object) -> str:
        value = str(value).strip()
        if not value.isdigit():
            raise ValueError(f"tab must be a numeric gid, got {value!r}")
        return value


class CellMapping(BaseModel):
    """Maps a template variable to a spreadsheet cell."""

    variable: str
    cell: str


class GeneralSettings(BaseModel):
    """Global delivery settings."""

    timezone: str = "America/Sao_Paulo"
    delay_between_groups: float = Field(default=5.0, ge=0)
    delay_between_schedules: float = Field(default=3.0, ge=0)
    page_timeout: float = Field(default=30.0, gt=0)
    wait_after_load: float = Field(default=2.0, ge=0)


class BrowserSettings(BaseModel):
    """Browser launch settings."""

    headless: bool = True
    default_viewport: ViewportModel = Field(default_factory=ViewportModel)


class ScheduleConfig(BaseModel):
    """One scheduled broadcast."""

    name: str = Field(min_length=1)
    sheet_url: str
    groups: list[str] = Field(min_length=1)
    cron: str
    message_template: str = Field(min_length=1)
    viewport: ViewportModel | None = None
    selector: str | None = None
    clip: ClipModel | None = None
    wait_after_load: float | None = Field(default=None, ge=0)
    sheet_tabs: list[SheetTab] = Field(default_factory=list)
    cell_mappings: list[CellMapping] = Field(default_factory=list)

    @field_validator("sheet_url")
    @classmethod
    def _require_sheets_url(cls, value: str) -> str:
        if "docs.google.com/spreadsheets" not in value:
            raise ValueError("sheet_url must be a Google Sheets URL")
        return value

    @field_validator("cron")
    @classmethod
    def _require_cron(cls, value: str) -> str:
        if not is_valid_cron(value):
            raise ValueError(f"invalid cron expression: {value}")
        return value

    @field_validator("groups")
    @classmethod
    def _reject_duplicate_groups(cls, value: list[str]) -> list[str]:
        counts = Counter(value)
        duplicates = sorted(group for group, count in counts.items() if count > 1)
        if duplicates:
            raise ValueError(f"duplicate groups: {', '.join(duplicates)}")
        return value

    def tab_for(self, group: str) -> str | None:
        """Return the tab override configured for a group."""
        for sheet_tab in self.sheet_tabs:
            if sheet_tab.group == group:
                return sheet_tab.tab
        return None


class AppConfig(BaseModel):
    """Parsed schedule file."""

    settings: GeneralSettings = Field(default_factory=GeneralSettings)
    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    schedules: list[ScheduleConfig] = Field(default_factory=list)

    def find_schedule(self, name: str) -> ScheduleConfig | None:
        for schedule in self.schedules:
            if schedule.name == name:
                return schedule
        return None


def is_valid_cron(expression: str) -> bool:
    """Check a five-field cron expression with numeric bounds where possible."""
    parts = expression.split()
    if len(parts) != 5:  # noqa: PLR2004
        return False
    for part, (low, high) in zip(parts, _CRON_RANGES, strict=True):
        for chunk in part.split(","):
            base, _, step = chunk.partition("/")
            if step and not step.isdigit():
                return False
            if base == "*":
                continue
            bounds = base.split("-")
            if not all(bound.isdigit() for bound in bounds):
                # Named values such as MON-FRI are accepted as-is.
                continue
            if any(not low <= int(bound) <= high for bound in bounds):
                return False
    return True


DEFAULT_MESSAGE_TEMPLATE = "📊 *{scheduleName}* - {date}\n\nAtualização das {time}"


class ScheduleCreate(BaseModel):
    """Admin payload for a new schedule; time is given as hours/minutes/days."""

    name: str = Field(min_length=1)
    sheet_url: str = Field(min_length=1)
    groups: list[str] = Field(min_length=1)
    hours: str = "9"
    minutes: str = "0"
    days: list[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])
    message_template: str = DEFAULT_MESSAGE_TEMPLATE
    sheet_tabs: list[SheetTab] = Field(default_factory=list)
    cell_mappings: list[CellMapping] = Field(default_factory=list)
    clip: ClipModel | None = None
    selector: str | None = None


class ScheduleUpdate(BaseModel):
    """Admin payload for editing a schedule; omitted fields are kept."""

    name: str | None = None
    sheet_url: str | None = None
    groups: list[str] | None = None
    hours: str | None = None
    minutes: str | None = None
    days: list[int] | None = None
    message_template: str | None = None
    sheet_tabs: list[SheetTab] | None = None
    cell_mappings: list[CellMapping] | None = None
    clip: ClipModel | None = None
    selector: str | None = None


class SettingsUpdate(BaseModel):
    """Partial update of the settings and browser sections."""

    settings: dict[str, object] | None = None
    browser: dict[str, object] | None = None


def format_cron(hours: str, minutes: str, days: list[int]) -> str:
    """Build ``"{minutes} {hours} * * {days}"``; all seven days become ``*``."""
    unique_days = sorted(set(days))
    if len(unique_days) == len(_WEEKDAY_NUMBERS):
        day_part = "*"
    else:
        day_part = ",".join(str(day) for day in unique_days)
    return f"{minutes} {hours} * * {day_part}"


def parse_cron(expression: str) -> dict[str, object]:
    """Split a cron expression back into minutes, hours and weekday numbers."""
    parts = expression.split()
    day_field = parts[4]
    days: list[int] = []
    for chunk in day_field.split(","):
        if chunk == "*":
            days = list(_WEEKDAY_NUMBERS)
            break
        if "-" in chunk:
            first, last = chunk.split("-", 1)
            if first.isdigit() and last.isdigit():
                days.extend(day % 7 for day in range(int(first), int(last) + 1))
        elif chunk.isdigit():
            days.append(int(chunk) % 7)
    return {
        "minutes": parts[0],
        "hours": parts[1],
        "days": sorted(set(days)) or list(_WEEKDAY_NUMBERS),
    }
