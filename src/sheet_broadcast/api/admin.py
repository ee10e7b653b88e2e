"""Admin API endpoints with simple token auth."""

from __future__ import annotations

import base64
import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict
from typing import TYPE_CHECKING, TypeVar

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    Header,
    HTTPException,
    Request,
    status,
)
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, Field

from sheet_broadcast.containers import load_initial_config
from sheet_broadcast.domain.errors import (
    CaptureError,
    ConfigError,
    MessagingError,
    ScheduleNotFound,
)
from sheet_broadcast.domain.schedules import (
    ScheduleConfig,
    ScheduleCreate,
    ScheduleUpdate,
    SettingsUpdate,
    ViewportModel,
)

if TYPE_CHECKING:
    from sheet_broadcast.containers import AppContainer

router = APIRouter(prefix="/admin", tags=["admin"])

T = TypeVar("T")

_logger = logging.getLogger(__name__)


class PoolRefreshRequest(BaseModel):
    """Document to reload in the capture pool."""

    url: str = Field(min_length=1)
    viewport: ViewportModel = Field(default_factory=ViewportModel)


def _get_admin_token(request: Request) -> str:
    container: AppContainer = request.app.state.container
    return container.settings.admin_token


async def require_admin(
    x_admin_token: str | None = Header(default=None),
    admin_token: str = Depends(_get_admin_token),
) -> None:
    """Ensure requests include a valid admin token."""
    if not x_admin_token or x_admin_token != admin_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


def _container(request: Request) -> AppContainer:
    return request.app.state.container


@router.get("/schedules", dependencies=[Depends(require_admin)])
async def list_schedules(request: Request) -> dict[str, object]:
    """Return every schedule in the configuration file."""
    container = _container(request)
    return {"schedules": _store_call(container.schedule_store.list_schedules)}


@router.get("/schedules/{schedule_id}", dependencies=[Depends(require_admin)])
async def get_schedule(schedule_id: str, request: Request) -> dict[str, object]:
    """Return one schedule with its cron split into hours, minutes and days."""
    container = _container(request)
    return _store_call(lambda: container.schedule_store.get_schedule(schedule_id))


@router.post("/schedules", dependencies=[Depends(require_admin)])
async def create_schedule(
    payload: ScheduleCreate, request: Request
) -> dict[str, object]:
    """Append a schedule and re-register the cron jobs."""
    container = _container(request)
    created = _store_call(lambda: container.schedule_store.create_schedule(payload))
    await _reload_scheduler(container)
    return created


@router.put("/schedules/{schedule_id}", dependencies=[Depends(require_admin)])
async def update_schedule(
    schedule_id: str, payload: ScheduleUpdate, request: Request
) -> dict[str, object]:
    """Edit a schedule and re-register the cron jobs."""
    container = _container(request)
    updated = _store_call(
        lambda: container.schedule_store.update_schedule(schedule_id, payload)
    )
    await _reload_scheduler(container)
    return updated


@router.delete("/schedules/{schedule_id}", dependencies=[Depends(require_admin)])
async def delete_schedule(schedule_id: str, request: Request) -> dict[str, str]:
    """Remove a schedule and re-register the cron jobs."""
    container = _container(request)
    _store_call(lambda: container.schedule_store.delete_schedule(schedule_id))
    await _reload_scheduler(container)
    return {"status": "deleted"}


@router.post("/schedules/{schedule_id}/run", dependencies=[Depends(require_admin)])
async def run_schedule(
    schedule_id: str, request: Request, background_tasks: BackgroundTasks
) -> dict[str, str]:
    """Execute a schedule in the background."""
    container = _container(request)
    schedule = _resolve(container, schedule_id)
    background_tasks.add_task(container.scheduler.execute, schedule)
    return {"status": "started", "schedule": schedule.name}


@router.post(
    "/schedules/{schedule_id}/preview", dependencies=[Depends(require_admin)]
)
async def preview_schedule(schedule_id: str, request: Request) -> dict[str, object]:
    """Capture and caption a schedule without sending it."""
    container = _container(request)
    schedule = _resolve(container, schedule_id)
    result, message = await container.scheduler.preview(schedule)
    if not result.success or result.image is None:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=result.error or "Capture failed",
        )
    encoded = base64.b64encode(result.image).decode("ascii")
    return {
        "screenshot": f"data:image/png;base64,{encoded}",
        "message": message,
        "schedule": {
            "name": schedule.name,
            "sheet_url": schedule.sheet_url,
            "groups": schedule.groups,
        },
    }


@router.get("/settings", dependencies=[Depends(require_admin)])
async def get_settings(request: Request) -> dict[str, object]:
    """Return the settings and browser sections."""
    container = _container(request)
    return _store_call(container.schedule_store.settings)


@router.put("/settings", dependencies=[Depends(require_admin)])
async def update_settings(
    payload: SettingsUpdate, request: Request
) -> dict[str, object]:
    """Merge new settings into the configuration file."""
    container = _container(request)
    updated = _store_call(lambda: container.schedule_store.update_settings(payload))
    await _reload_scheduler(container)
    return updated


@router.get("/messaging/status", dependencies=[Depends(require_admin)])
async def messaging_status(request: Request) -> dict[str, object]:
    """Report the messaging connection; provider failures read as offline."""
    container = _container(request)
    try:
        connection = await container.messaging_client.connection_status()
    except Exception as exc:
        _logger.error("Messaging status check failed: %s", exc)
        return {"connected": False, "state": "disconnected", "error": str(exc)}
    return asdict(connection)


@router.get("/messaging/qrcode", dependencies=[Depends(require_admin)])
async def messaging_qrcode(request: Request) -> dict[str, object]:
    """Return a QR code for linking the account, unless already connected."""
    container = _container(request)
    if await container.messaging_client.is_connected():
        return {"connected": True}
    pairing = await _provider_call(container.messaging_client.pairing_code())
    return {
        "connected": False,
        "qr_code": pairing.qr_code,
        "pairing_code": pairing.pairing_code,
    }


@router.post("/messaging/logout", dependencies=[Depends(require_admin)])
async def messaging_logout(request: Request) -> dict[str, str]:
    container = _container(request)
    await _provider_call(container.messaging_client.logout())
    container.group_directory.invalidate()
    return {"status": "logged_out"}


@router.post("/messaging/restart", dependencies=[Depends(require_admin)])
async def messaging_restart(request: Request) -> dict[str, str]:
    container = _container(request)
    await _provider_call(container.messaging_client.restart())
    return {"status": "restarted"}


@router.get("/groups", dependencies=[Depends(require_admin)])
async def list_groups(request: Request) -> dict[str, object]:
    """Return the group list, served from cache while fresh."""
    container = _container(request)
    await _require_connected(container)
    groups, from_cache = await _provider_call(
        container.group_directory.list_groups()
    )
    return {
        "groups": [asdict(group) for group in groups],
        "cache": {
            "from_cache": from_cache,
            "last_sync": container.group_directory.last_sync(),
            "count": len(groups),
        },
    }


@router.post("/groups/refresh", dependencies=[Depends(require_admin)])
async def refresh_groups(request: Request) -> dict[str, object]:
    """Force a resync of the group list."""
    container = _container(request)
    await _require_connected(container)
    groups = await _provider_call(container.group_directory.refresh())
    return {
        "groups": [asdict(group) for group in groups],
        "last_sync": container.group_directory.last_sync(),
    }


@router.get("/capture/pool", dependencies=[Depends(require_admin)])
async def capture_pool(request: Request) -> dict[str, object]:
    """Return the documents currently held by the capture pool."""
    container = _container(request)
    return asdict(container.session_pool.stats())


@router.post("/capture/pool/refresh", dependencies=[Depends(require_admin)])
async def refresh_pool_document(
    payload: PoolRefreshRequest, request: Request
) -> dict[str, object]:
    """Reload one document in the pool, opening it if needed."""
    container = _container(request)
    try:
        session = await container.session_pool.acquire_session(
            payload.url, payload.viewport.to_viewport(), force_refresh=True
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
        ) from exc
    except CaptureError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc
    return {"refreshed": session.base_key, **asdict(container.session_pool.stats())}


@router.get("/scheduler/status", dependencies=[Depends(require_admin)])
async def scheduler_status(request: Request) -> dict[str, object]:
    container = _container(request)
    return asdict(container.scheduler.status())


@router.post("/scheduler/start", dependencies=[Depends(require_admin)])
async def scheduler_start(request: Request) -> dict[str, object]:
    """Reload the configuration and start firing cron jobs."""
    container = _container(request)
    if not container.scheduler.is_running:
        await container.scheduler.reload(
            load_initial_config(container.schedule_store)
        )
        await container.scheduler.start()
    return asdict(container.scheduler.status())


@router.post("/scheduler/stop", dependencies=[Depends(require_admin)])
async def scheduler_stop(request: Request) -> dict[str, object]:
    container = _container(request)
    container.scheduler.stop()
    return asdict(container.scheduler.status())


@router.get("/ui", response_class=HTMLResponse)
async def admin_ui() -> HTMLResponse:
    """Minimal admin UI that consumes the admin API."""
    return HTMLResponse(_ADMIN_UI_HTML)


def _store_call(operation: Callable[[], T]) -> T:
    try:
        return operation()
    except ScheduleNotFound as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)
        ) from exc
    except ConfigError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
        ) from exc


def _resolve(container: AppContainer, schedule_id: str) -> ScheduleConfig:
    return _store_call(lambda: container.schedule_store.resolve(schedule_id))


async def _provider_call(operation: Awaitable[T]) -> T:
    try:
        return await operation
    except MessagingError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)
        ) from exc


async def _require_connected(container: AppContainer) -> None:
    if not await container.messaging_client.is_connected():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Messaging account is not connected; scan the QR code first",
        )


async def _reload_scheduler(container: AppContainer) -> None:
    await container.scheduler.reload(load_initial_config(container.schedule_store))


_ADMIN_UI_HTML = """<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1" />
    <title>Sheet Broadcast Admin</title>
    <style>
      body { font-family: ui-sans-serif, system-ui, sans-serif; margin: 2rem; }
      h1 { margin-bottom: 0.5rem; }
      .row { margin-bottom: 1rem; }
      input { padding: 0.4rem 0.6rem; width: 320px; }
      button { padding: 0.4rem 0.8rem; margin-right: 0.5rem; }
      pre { background: #f6f6f6; padding: 1rem; overflow: auto; }
    </style>
  </head>
  <body>
    <h1>Sheet Broadcast Admin</h1>
    <div class="row">
      <label>Admin token</label><br />
      <input id="token" type="password" placeholder="X-Admin-Token" />
    </div>
    <div class="row">
      <button onclick="callEndpoint('GET', '/admin/schedules')">Schedules</button>
      <button onclick="callEndpoint('GET', '/admin/scheduler/status')">Jobs</button>
      <button onclick="callEndpoint('GET', '/admin/messaging/status')">Chat</button>
      <button onclick="callEndpoint('GET', '/admin/groups')">Groups</button>
      <button onclick="callEndpoint('GET', '/admin/capture/pool')">Capture pool</button>
    </div>
    <pre id="output">Ready.</pre>
    <script>
      async function callEndpoint(method, path) {
        const token = document.getElementById('token').value;
        const output = document.getElementById('output');
        output.textContent = 'Loading...';
        const res = await fetch(path, {
          method,
          headers: { 'X-Admin-Token': token }
        });
        if (!res.ok) {
          output.textContent = 'Error: ' + res.status;
          return;
        }
        const data = await res.json();
        output.textContent = JSON.stringify(data, null, 2);
      }
    </script>
  </body>
</html>
"""
