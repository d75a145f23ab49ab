from __future__ import annotations

import argparse
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from stompdeck.app.api import poll_mode, shadow, surface, ws
from stompdeck.app.core.config import Settings, get_settings
from stompdeck.app.core.container import AppContainer
from stompdeck.app.core.logging import configure_logging
from stompdeck.app.engine.gateway_client import HttpGatewayClient
from stompdeck.app.services.app_state_service import AppStateService
from stompdeck.app.services.event_bus import SurfaceEventBus
from stompdeck.app.services.surface_service import SurfaceService
from stompdeck.app.storage.db import Database
from stompdeck.app.storage.repositories.app_state_repository import AppStateRepository

logger = logging.getLogger(__name__)


def _build_container(settings: Settings, gateway_transport: httpx.AsyncBaseTransport | None = None) -> AppContainer:
    if settings.database_url.startswith("sqlite:///"):
        db_path = Path(settings.database_url.replace("sqlite:///", "", 1))
        db_path.parent.mkdir(parents=True, exist_ok=True)

    database = Database(settings.database_url)
    database.create_all()

    app_state_repository = AppStateRepository(database.session)
    app_state_service = AppStateService(repository=app_state_repository)
    gateway = HttpGatewayClient(
        settings.gateway_url,
        timeout_seconds=settings.gateway_timeout_seconds,
        transport=gateway_transport,
    )
    event_bus = SurfaceEventBus()
    surface_service = SurfaceService(
        settings=settings,
        gateway=gateway,
        event_bus=event_bus,
        app_state_service=app_state_service,
    )

    return AppContainer(
        settings=settings,
        database=database,
        app_state_repository=app_state_repository,
        app_state_service=app_state_service,
        gateway=gateway,
        event_bus=event_bus,
        surface_service=surface_service,
        poll_supervisor=surface_service.supervisor,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.debug)

    container = _build_container(settings, app.state.gateway_transport)
    app.state.container = container

    if settings.autostart_polling:
        mode = container.app_state_service.load_poll_mode(settings.default_poll_mode)
        logger.info("Connecting to engine gateway at %s (poll mode: %s)", settings.gateway_url, mode.value)
        await container.surface_service.startup(mode)

    try:
        yield
    finally:
        await container.surface_service.shutdown()
        await container.gateway.aclose()
        container.database.dispose()


def create_app(gateway_transport: httpx.AsyncBaseTransport | None = None) -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.state.gateway_transport = gateway_transport

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(surface.router, prefix=settings.api_prefix)
    app.include_router(poll_mode.router, prefix=settings.api_prefix)
    app.include_router(shadow.router, prefix=settings.api_prefix)
    app.include_router(ws.router)

    @app.get(f"{settings.api_prefix}/health")
    async def health() -> dict[str, str | bool]:
        container: AppContainer = app.state.container
        return {
            "status": "ok",
            "gateway_url": settings.gateway_url,
            "poll_mode": container.poll_supervisor.mode.value,
            "live_polling": container.poll_supervisor.status_task_active,
        }

    return app


app = create_app()


def run() -> None:
    parser = argparse.ArgumentParser(description="Run the stompdeck surface API")
    parser.add_argument("--gateway-url", default=None, help="Base URL of the engine gateway.")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--log-level", default="info")
    parser.add_argument("--reload", action=argparse.BooleanOptionalAction, default=False)
    parser.add_argument("--access-log", action=argparse.BooleanOptionalAction, default=True)
    parser.add_argument("--debug", action=argparse.BooleanOptionalAction, default=None)
    args = parser.parse_args()

    if args.gateway_url is not None:
        os.environ["STOMPDECK_GATEWAY_URL"] = args.gateway_url
    if args.debug is True:
        os.environ["STOMPDECK_DEBUG"] = "1"
    elif args.debug is False:
        os.environ["STOMPDECK_DEBUG"] = "0"

    get_settings.cache_clear()
    globals()["app"] = create_app()

    uvicorn.run(
        "stompdeck.app.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
        access_log=args.access_log,
    )


if __name__ == "__main__":
    run()
