"""Shared test fixtures."""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

import pytest
import yaml

from sheet_broadcast.adapters.sheets_export_client import SheetExportClient
from sheet_broadcast.config import Settings
from sheet_broadcast.containers import AppContainer
from sheet_broadcast.domain.capture import ClipRegion, Viewport
from sheet_broadcast.domain.errors import SelectorNotFound, TransientNetworkError
from sheet_broadcast.domain.messaging import (
    ConnectionStatus,
    MessagingGroup,
    PairingCode,
    SendResult,
)
from sheet_broadcast.services.cache import InMemoryCache
from sheet_broadcast.services.capture import CaptureOrchestrator
from sheet_broadcast.services.messaging import GroupDirectory, MessagingClient
from sheet_broadcast.services.render import RenderEngine, RenderPage
from sheet_broadcast.services.schedule_store import ScheduleStore
from sheet_broadcast.services.scheduler import BroadcastScheduler
from sheet_broadcast.services.session_pool import SessionPool
from sheet_broadcast.services.sheets import SheetDataService

SHEET_URL = "https://docs.google.com/spreadsheets/d/sheet-abc/edit"
OTHER_SHEET_URL = "https://docs.google.com/spreadsheets/d/sheet-xyz/edit"


@dataclass
class FakePage(RenderPage):
    """Fake browser page that records navigation."""

    engine: "FakeRenderEngine"
    viewport: Viewport | None = None
    url: str | None = None
    loads: list[str] = field(default_factory=list)
    switches: list[str] = field(default_factory=list)
    reloads: int = 0
    closed: bool = False
    close_error: Exception | None = None
    close_delay: float = 0.0

    async def set_viewport(self, viewport: Viewport) -> None:
        self.viewport = viewport

    async def load(self, url: str, timeout_seconds: float) -> None:
        await self.engine.navigate(url)
        self.loads.append(url)
        self.url = url

    async def switch_view(self, url: str, timeout_seconds: float) -> None:
        await self.engine.navigate(url)
        self.switches.append(url)
        self.url = url

    async def reload(self, timeout_seconds: float) -> None:
        await self.engine.navigate(self.url or "")
        self.reloads += 1

    async def screenshot(
        self, *, selector: str | None = None, clip: ClipRegion | None = None
    ) -> bytes:
        if selector and selector in self.engine.missing_selectors:
            raise SelectorNotFound(selector)
        self.engine.active_snapshots += 1
        self.engine.max_active_snapshots = max(
            self.engine.max_active_snapshots, self.engine.active_snapshots
        )
        try:
            await asyncio.sleep(self.engine.snapshot_delay)
        finally:
            self.engine.active_snapshots -= 1
        return f"png:{self.url}".encode()

    async def close(self) -> None:
        if self.close_delay:
            await asyncio.sleep(self.close_delay)
        if self.close_error is not None:
            raise self.close_error
        self.closed = True


@dataclass
class FakeRenderEngine(RenderEngine):
    """Fake rendering engine with failure and latency injection."""

    running: bool = True
    load_delay: float = 0.0
    snapshot_delay: float = 0.0
    load_failures: int = 0
    failing_urls: set[str] = field(default_factory=set)
    missing_selectors: set[str] = field(default_factory=set)
    pages: list[FakePage] = field(default_factory=list)
    active_snapshots: int = 0
    max_active_snapshots: int = 0
    starts: int = 0
    stops: int = 0

    @property
    def is_running(self) -> bool:
        return self.running

    async def start(self) -> None:
        self.starts += 1
        self.running = True

    async def new_page(self) -> FakePage:
        page = FakePage(engine=self)
        self.pages.append(page)
        return page

    async def stop(self) -> None:
        self.stops += 1
        self.running = False

    async def navigate(self, url: str) -> None:
        if url in self.failing_urls:
            raise TransientNetworkError(f"Cannot reach {url}")
        if self.load_failures > 0:
            self.load_failures -= 1
            raise TransientNetworkError("net down")
        await asyncio.sleep(self.load_delay)


@dataclass
class FakeMessagingClient(MessagingClient):
    """Fake messaging client that records sent images."""

    connected: bool = True
    sent: list[tuple[str, str, bytes]] = field(default_factory=list)
    failing_recipients: set[str] = field(default_factory=set)
    groups: list[MessagingGroup] = field(
        default_factory=lambda: [
            MessagingGroup(id="111@g.us", name="Vendas", size=12),
            MessagingGroup(id="222@g.us", name="Gerência", size=4),
        ]
    )
    fetch_calls: list[bool] = field(default_factory=list)
    fetch_error: Exception | None = None
    logged_out: bool = False
    restarts: int = 0
    closed: bool = False

    async def connection_status(self) -> ConnectionStatus:
        state = "connected" if self.connected else "disconnected"
        return ConnectionStatus(connected=self.connected, state=state, logged_in=True)

    async def is_connected(self) -> bool:
        return self.connected

    async def pairing_code(self) -> PairingCode:
        return PairingCode(qr_code="data:image/png;base64,UVI=", pairing_code="ABCD")

    async def send_image(
        self, recipient: str, image: bytes, caption: str
    ) -> SendResult:
        if recipient in self.failing_recipients:
            raise RuntimeError(f"Messaging API error: 500 - {recipient}")
        self.sent.append((recipient, caption, image))
        return SendResult(recipient=recipient, message_id=f"msg-{len(self.sent)}")

    async def fetch_groups(self, force: bool = False) -> list[MessagingGroup]:
        self.fetch_calls.append(force)
        if self.fetch_error is not None:
            raise self.fetch_error
        return list(self.groups)

    async def logout(self) -> None:
        self.logged_out = True

    async def restart(self) -> None:
        self.restarts += 1

    async def close(self) -> None:
        self.closed = True


@dataclass
class FakeSheetExportClient(SheetExportClient):
    """Fake CSV export returning a fixed sheet."""

    csv_text: str = "Loja,Meta\nCentro,150\nNorte,90\n"
    requests: list[tuple[str, str]] = field(default_factory=list)

    async def export_csv(self, sheet_id: str, gid: str) -> str:
        self.requests.append((sheet_id, gid))
        return self.csv_text


def write_config(path: Path, schedules: list[dict[str, object]]) -> Path:
    path.write_text(
        yaml.safe_dump(
            {
                "settings": {
                    "timezone": "America/Sao_Paulo",
                    "delay_between_groups": 0,
                    "delay_between_schedules": 0,
                    "wait_after_load": 0,
                },
                "browser": {
                    "headless": True,
                    "default_viewport": {"width": 800, "height": 600},
                },
                "schedules": schedules,
            },
            allow_unicode=True,
        ),
        encoding="utf-8",
    )
    return path


def schedule_entry(name: str = "Metas", **overrides: object) -> dict[str, object]:
    entry: dict[str, object] = {
        "name": name,
        "sheet_url": SHEET_URL,
        "groups": ["111@g.us", "222@g.us"],
        "cron": "0 9 * * 1-5",
        "message_template": "{scheduleName} - {date} - meta {meta}",
        "cell_mappings": [{"variable": "meta", "cell": "B2"}],
    }
    entry.update(overrides)
    return entry


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    return write_config(tmp_path / "config.yaml", [schedule_entry()])


@pytest.fixture
def settings(config_path: Path) -> Settings:
    return Settings(
        admin_token="admin-token",
        config_path=str(config_path),
        uazapi_base_url="https://uazapi.example",
        uazapi_token="uazapi-token",
        uazapi_instance_id="instance-1",
        capture_retry_base_delay_seconds=0,
        scheduler_autostart=False,
    )


@pytest.fixture
def engine() -> FakeRenderEngine:
    return FakeRenderEngine()


@pytest.fixture
def messaging_client() -> FakeMessagingClient:
    return FakeMessagingClient()


@pytest.fixture
def container(
    settings: Settings,
    engine: FakeRenderEngine,
    messaging_client: FakeMessagingClient,
) -> AppContainer:
    schedule_store = ScheduleStore(Path(settings.config_path))
    session_pool = SessionPool(engine=engine)
    orchestrator = CaptureOrchestrator(
        pool=session_pool, engine=engine, retry_base_delay=0
    )
    sheet_data_service = SheetDataService(
        export_client=FakeSheetExportClient(), cache=InMemoryCache()
    )
    scheduler = BroadcastScheduler(
        config=schedule_store.load(),
        messaging=messaging_client,
        orchestrator=orchestrator,
        sheet_data=sheet_data_service,
    )

    async def close_resources() -> None:
        await messaging_client.close()

    return AppContainer(
        settings=settings,
        schedule_store=schedule_store,
        engine=engine,
        session_pool=session_pool,
        orchestrator=orchestrator,
        messaging_client=messaging_client,
        group_directory=GroupDirectory(messaging_client, InMemoryCache()),
        sheet_data_service=sheet_data_service,
        scheduler=scheduler,
        close_resources=close_resources,
    )
