"""ASGI entrypoint for the sheet broadcast service."""

from sheet_broadcast.api.app import create_app
from sheet_broadcast.containers import build_container

app = create_app(build_container())
