"""Cron-driven spreadsheet broadcasts."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from sheet_broadcast.domain.capture import CaptureRequest, CaptureResult
from sheet_broadcast.domain.documents import with_tab
from sheet_broadcast.domain.errors import CaptureError, MessagingUnavailable
from sheet_broadcast.domain.messaging import SendResult
from sheet_broadcast.domain.schedules import AppConfig, ScheduleConfig
from sheet_broadcast.services.capture import CaptureOrchestrator
from sheet_broadcast.services.messaging import (
    MessagingClient,
    broadcast_image,
    log_delivery_summary,
    send_safely,
)
from sheet_broadcast.services.sheets import SheetDataService
from sheet_broadcast.services.templates import create_message

# Standard cron numbering: 0 and 7 are Sunday.
_CRON_WEEKDAYS = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]

_logger = logging.getLogger(__name__)


@dataclass
class BroadcastReport:
    """Outcome of one schedule execution."""

    schedule: str
    results: dict[str, SendResult]
    duration_seconds: float
    error: str | None = None

    @property
    def successful(self) -> int:
        return sum(1 for result in self.results.values() if result.success)

    @property
    def failed(self) -> int:
        return len(self.results) - self.successful


@dataclass
class SchedulerStatus:
    running: bool
    tasks: list[str]
    next_runs: dict[str, datetime | None]


@dataclass
class BroadcastScheduler:
    """Runs each configured schedule on its cron expression."""

    config: AppConfig
    messaging: MessagingClient
    orchestrator: CaptureOrchestrator
    sheet_data: SheetDataService
    max_retries: int = 3
    _scheduler: AsyncIOScheduler | None = field(default=None, init=False)

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    async def start(self) -> None:
        """Register one cron job per schedule and start firing them."""
        if self.is_running:
            _logger.warning("Scheduler is already running")
            return

        timezone = self.config.settings.timezone
        _logger.info(
            "Starting scheduler (timezone=%s, schedules=%s)",
            timezone,
            len(self.config.schedules),
        )
        if await self.messaging.is_connected():
            _logger.info("Messaging account connected")
        else:
            _logger.warning(
                "Messaging account not connected; each run checks again"
            )

        scheduler = AsyncIOScheduler(
            timezone=ZoneInfo(timezone), event_loop=asyncio.get_running_loop()
        )
        for schedule in self.config.schedules:
            scheduler.add_job(
                self.execute,
                trigger="cron",
                args=[schedule],
                id=schedule.name,
                name=schedule.name,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=60,
                **cron_fields(schedule.cron),
            )
            _logger.info(
                "Scheduled %s: %s (%s groups)",
                schedule.name,
                schedule.cron,
                len(schedule.groups),
            )
        scheduler.start()
        self._scheduler = scheduler

    def stop(self) -> None:
        """Remove every job; running executions finish on their own."""
        if self._scheduler is None:
            return
        _logger.info("Stopping scheduler")
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None

    async def reload(self, config: AppConfig) -> None:
        """Swap the configuration, re-registering jobs when running."""
        was_running = self.is_running
        self.stop()
        self.config = config
        if was_running:
            await self.start()

    def status(self) -> SchedulerStatus:
        if self._scheduler is None:
            return SchedulerStatus(running=False, tasks=[], next_runs={})
        jobs = self._scheduler.get_jobs()
        return SchedulerStatus(
            running=self._scheduler.running,
            tasks=[job.id for job in jobs],
            next_runs={job.id: job.next_run_time for job in jobs},
        )

    async def run_now(self, name: str | None = None) -> list[BroadcastReport]:
        """Execute one schedule by name, or all of them, immediately."""
        schedules = [
            schedule
            for schedule in self.config.schedules
            if name is None or schedule.name == name
        ]
        if not schedules:
            _logger.error("No schedule found for %r", name)
            return []

        _logger.info("Running %s schedules manually", len(schedules))
        reports: list[BroadcastReport] = []
        for index, schedule in enumerate(schedules):
            reports.append(await self.execute(schedule))
            if index < len(schedules) - 1:
                await asyncio.sleep(self.config.settings.delay_between_schedules)
        return reports

    async def execute(self, schedule: ScheduleConfig) -> BroadcastReport:
        """Capture, caption and deliver one schedule. Never raises."""
        started = time.monotonic()
        _logger.info("Starting schedule %s", schedule.name)
        try:
            if not await self.messaging.is_connected():
                raise MessagingUnavailable("Messaging account is not connected")
            caption = await self.build_message(schedule)
            if schedule.sheet_tabs:
                results = await self._deliver_per_tab(schedule, caption)
            else:
                results = await self._deliver_single(schedule, caption)
        except Exception as exc:
            duration = time.monotonic() - started
            _logger.error(
                "Schedule %s failed after %.1fs: %s", schedule.name, duration, exc
            )
            return BroadcastReport(schedule.name, {}, duration, error=str(exc))

        report = BroadcastReport(schedule.name, results, time.monotonic() - started)
        _logger.info(
            "Schedule %s finished in %.1fs: groups=%s successful=%s failed=%s",
            schedule.name,
            report.duration_seconds,
            len(schedule.groups),
            report.successful,
            report.failed,
        )
        return report

    async def preview(self, schedule: ScheduleConfig) -> tuple[CaptureResult, str]:
        """Capture and caption a schedule without sending anything."""
        _logger.info("Generating preview for %s", schedule.name)
        result = await self.orchestrator.capture_with_retry(
            self.capture_request(schedule, schedule.sheet_url, schedule.name),
            self.max_retries,
        )
        return result, await self.build_message(schedule)

    async def build_message(self, schedule: ScheduleConfig) -> str:
        sheet_data = await self.sheet_data.fetch_cells(
            schedule.sheet_url, schedule.cell_mappings
        )
        return create_message(
            schedule.message_template,
            schedule.name,
            self.config.settings.timezone,
            sheet_data,
        )

    def capture_request(
        self, schedule: ScheduleConfig, url: str, correlation_id: str
    ) -> CaptureRequest:
        viewport = schedule.viewport or self.config.browser.default_viewport
        settle = (
            schedule.wait_after_load
            if schedule.wait_after_load is not None
            else self.config.settings.wait_after_load
        )
        return CaptureRequest(
            correlation_id=correlation_id,
            url=url,
            viewport=viewport.to_viewport(),
            settle_seconds=settle,
            selector=schedule.selector,
            clip=schedule.clip.to_clip() if schedule.clip else None,
        )

    async def _deliver_single(
        self, schedule: ScheduleConfig, caption: str
    ) -> dict[str, SendResult]:
        result = await self.orchestrator.capture_with_retry(
            self.capture_request(schedule, schedule.sheet_url, schedule.name),
            self.max_retries,
        )
        if not result.success or result.image is None:
            raise CaptureError(result.error or "Capture failed")
        return await broadcast_image(
            self.messaging,
            schedule.groups,
            result.image,
            caption,
            self.config.settings.delay_between_groups,
        )

    async def _deliver_per_tab(
        self, schedule: ScheduleConfig, caption: str
    ) -> dict[str, SendResult]:
        requests = [
            self.capture_request(schedule, self._tab_url(schedule, group), group)
            for group in schedule.groups
        ]
        captures = await self.orchestrator.capture_all(requests)

        results: dict[str, SendResult] = {}
        for index, capture in enumerate(captures):
            group = capture.correlation_id
            if capture.success and capture.image is not None:
                results[group] = await send_safely(
                    self.messaging, group, capture.image, caption
                )
            else:
                results[group] = SendResult(recipient=group, error=capture.error)
            if index < len(captures) - 1:
                await asyncio.sleep(self.config.settings.delay_between_groups)
        log_delivery_summary(results)
        return results

    def _tab_url(self, schedule: ScheduleConfig, group: str) -> str:
        return with_tab(schedule.sheet_url, schedule.tab_for(group))


def cron_fields(expression: str) -> dict[str, str]:
    """Split a five-field cron expression into APScheduler keyword fields."""
    minute, hour, day, month, day_of_week = expression.split()
    return {
        "minute": minute,
        "hour": hour,
        "day": day,
        "month": month,
        "day_of_week": _day_of_week(day_of_week),
    }


def _day_of_week(value: str) -> str:
    # APScheduler numbers weekdays from Monday; translate to names.
    names: list[str] = []
    for chunk in value.split(","):
        base, _, step = chunk.partition("/")
        if base == "*" and not step:
            return "*"
        if base == "*":
            start, end = 0, 6
        elif base.isdigit():
            start = end = int(base)
        elif "-" in base and all(part.isdigit() for part in base.split("-", 1)):
            first, last = base.split("-", 1)
            start, end = int(first), int(last)
        else:
            names.append(chunk.lower())
            continue
        names.extend(
            _CRON_WEEKDAYS[number % 7]
            for number in range(start, end + 1, int(step or 1))
        )
    return ",".join(dict.fromkeys(names))
