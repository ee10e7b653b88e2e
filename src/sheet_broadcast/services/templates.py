"""Message template rendering."""

import logging
import math
import re
from collections.abc import Callable
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

_PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")

_WEEKDAYS_PT = [
    "segunda-feira",
    "terça-feira",
    "quarta-feira",
    "quinta-feira",
    "sexta-feira",
    "sábado",
    "domingo",
]

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def week_number(day: datetime) -> int:
    """Week of the year counting weeks that start on Sunday."""
    start_of_year = day.replace(month=1, day=1)
    days = (day.date() - start_of_year.date()).days
    # Sunday-based index of January 1st.
    first_weekday = (start_of_year.weekday() + 1) % 7
    return math.ceil((days + first_weekday + 1) / 7)


def template_variables(
    schedule_name: str,
    timezone: str = "America/Sao_Paulo",
    sheet_data: dict[str, str] | None = None,
    now: Callable[[], datetime] = _utcnow,
) -> dict[str, str]:
    """Build the variables available to a message template."""
    local = now().astimezone(ZoneInfo(timezone))
    date = local.strftime("%d/%m/%Y")
    time = local.strftime("%H:%M")
    variables = {
        "date": date,
        "time": time,
        "datetime": f"{date} {time}",
        "week": f"Semana {week_number(local)}",
        "weekday": _WEEKDAYS_PT[local.weekday()],
        "scheduleName": schedule_name,
    }
    if sheet_data:
        variables.update(sheet_data)
    return variables


def render_template(template: str, variables: dict[str, str]) -> str:
    """Replace ``{name}`` placeholders; unknown ones are left in place."""

    def _replace(match: re.Match[str]) -> str:
        return variables.get(match.group(1), match.group(0))

    result = _PLACEHOLDER_RE.sub(_replace, template)
    remaining = [
        match.group(0)
        for match in _PLACEHOLDER_RE.finditer(result)
        if match.group(1) not in variables
    ]
    if remaining:
        _logger.warning("Unresolved template variables: %s", remaining)
    return result


def create_message(
    template: str,
    schedule_name: str,
    timezone: str = "America/Sao_Paulo",
    sheet_data: dict[str, str] | None = None,
    now: Callable[[], datetime] = _utcnow,
) -> str:
    """Render a schedule's caption."""
    variables = template_variables(schedule_name, timezone, sheet_data, now)
    message = render_template(template, variables)
    _logger.debug(
        "Message created for %s (%s chars)", schedule_name, len(message)
    )
    return message
