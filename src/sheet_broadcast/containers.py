"""Dependency container wiring for the application."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from sheet_broadcast.adapters.evolution_client import HttpxEvolutionClient
from sheet_broadcast.adapters.playwright_engine import PlaywrightEngine
from sheet_broadcast.adapters.sheets_export_client import HttpxSheetExportClient
from sheet_broadcast.adapters.uazapi_client import HttpxUazapiClient
from sheet_broadcast.config import Settings
from sheet_broadcast.domain.errors import ConfigError
from sheet_broadcast.domain.schedules import AppConfig
from sheet_broadcast.services.cache import InMemoryCache
from sheet_broadcast.services.capture import CaptureOrchestrator
from sheet_broadcast.services.messaging import GroupDirectory, MessagingClient
from sheet_broadcast.services.render import RenderEngine
from sheet_broadcast.services.schedule_store import ScheduleStore
from sheet_broadcast.services.scheduler import BroadcastScheduler
from sheet_broadcast.services.session_pool import SessionPool
from sheet_broadcast.services.sheets import SheetDataService

_logger = logging.getLogger(__name__)


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    schedule_store: ScheduleStore
    engine: RenderEngine
    session_pool: SessionPool
    orchestrator: CaptureOrchestrator
    messaging_client: MessagingClient
    group_directory: GroupDirectory
    sheet_data_service: SheetDataService
    scheduler: BroadcastScheduler
    close_resources: Callable[[], Awaitable[None]]


def build_messaging_client(settings: Settings) -> MessagingClient:
    """Create the client for the configured messaging provider."""
    provider = settings.messaging_provider.lower()
    if provider == "uazapi":
        return HttpxUazapiClient.create(
            base_url=settings.uazapi_base_url,
            token=settings.uazapi_token,
            instance_id=settings.uazapi_instance_id,
        )
    if provider == "evolution":
        return HttpxEvolutionClient.create(
            base_url=settings.evolution_base_url,
            api_key=settings.evolution_api_key,
            instance_name=settings.evolution_instance_name,
        )
    raise ConfigError(f"Unknown messaging provider: {settings.messaging_provider}")


def load_initial_config(store: ScheduleStore) -> AppConfig:
    """Load the schedule file, falling back to an empty configuration."""
    try:
        return store.load()
    except ConfigError as exc:
        _logger.warning("Starting without schedules: %s", exc)
        return AppConfig()


def build_container(
    settings: Settings | None = None, engine: RenderEngine | None = None
) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    schedule_store = ScheduleStore(Path(resolved_settings.config_path))
    app_config = load_initial_config(schedule_store)

    render_engine = engine or PlaywrightEngine(
        headless=app_config.browser.headless,
        chrome_path=resolved_settings.chrome_path,
    )
    session_pool = SessionPool(
        engine=render_engine,
        idle_timeout=resolved_settings.capture_idle_timeout_seconds,
        reap_interval=resolved_settings.capture_reap_interval_seconds,
        load_timeout=resolved_settings.capture_load_timeout_seconds,
        reload_on_view_switch=resolved_settings.capture_reload_on_view_switch,
    )
    orchestrator = CaptureOrchestrator(
        pool=session_pool,
        engine=render_engine,
        max_parallel=resolved_settings.capture_max_parallel,
        retry_base_delay=resolved_settings.capture_retry_base_delay_seconds,
        load_timeout=resolved_settings.capture_load_timeout_seconds,
    )
    messaging_client = build_messaging_client(resolved_settings)
    export_client = HttpxSheetExportClient.create()
    sheet_data_service = SheetDataService(
        export_client=export_client, cache=InMemoryCache()
    )
    scheduler = BroadcastScheduler(
        config=app_config,
        messaging=messaging_client,
        orchestrator=orchestrator,
        sheet_data=sheet_data_service,
        max_retries=resolved_settings.capture_max_retries,
    )

    async def close_resources() -> None:
        await messaging_client.close()
        await export_client.close()

    return AppContainer(
        settings=resolved_settings,
        schedule_store=schedule_store,
        engine=render_engine,
        session_pool=session_pool,
        orchestrator=orchestrator,
        messaging_client=messaging_client,
        group_directory=GroupDirectory(messaging_client, InMemoryCache()),
        sheet_data_service=sheet_data_service,
        scheduler=scheduler,
        close_resources=close_resources,
    )
