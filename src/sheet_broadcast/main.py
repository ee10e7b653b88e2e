"""Command line entrypoint."""

import argparse
import asyncio
import logging

import uvicorn

from sheet_broadcast.api.app import create_app
from sheet_broadcast.app_logging import configure_logging
from sheet_broadcast.config import Settings
from sheet_broadcast.containers import AppContainer, build_container
from sheet_broadcast.domain.errors import ConfigError

_logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="sheet-broadcast",
        description="Send spreadsheet snapshots to chat groups on a schedule",
    )
    parser.add_argument("--host", default="0.0.0.0", help="Bind address")  # noqa: S104
    parser.add_argument("--port", type=int, default=3333, help="Bind port")
    parser.add_argument(
        "--run-once",
        action="store_true",
        help="Execute schedules immediately and exit",
    )
    parser.add_argument("--schedule", help="Only run the schedule with this name")
    return parser.parse_args(argv)


async def run_once(container: AppContainer, schedule_name: str | None) -> int:
    """Execute schedules once, returning a process exit code."""
    try:
        config = container.schedule_store.load()
    except ConfigError as exc:
        _logger.error("Cannot run: %s", exc)
        await container.close_resources()
        return 1

    await container.scheduler.reload(config)
    await container.engine.start()
    container.session_pool.start()
    try:
        reports = await container.scheduler.run_now(schedule_name)
    finally:
        await container.session_pool.close_all()
        await container.engine.stop()
        await container.close_resources()

    if not reports or any(report.error for report in reports):
        return 1
    _logger.info("Single run finished: %s schedules", len(reports))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = Settings()
    configure_logging(settings.log_level)
    container = build_container(settings)

    if args.run_once:
        return asyncio.run(run_once(container, args.schedule))

    uvicorn.run(create_app(container), host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
