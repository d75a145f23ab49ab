from __future__ import annotations

from dataclasses import dataclass

from stompdeck.app.core.config import Settings
from stompdeck.app.engine.gateway_client import GatewayTransport
from stompdeck.app.services.app_state_service import AppStateService
from stompdeck.app.services.event_bus import SurfaceEventBus
from stompdeck.app.services.poll_supervisor import LivePollSupervisor
from stompdeck.app.services.surface_service import SurfaceService
from stompdeck.app.storage.db import Database
from stompdeck.app.storage.repositories.app_state_repository import AppStateRepository


@dataclass(slots=True)
class AppContainer:
    settings: Settings
    database: Database
    app_state_repository: AppStateRepository
    app_state_service: AppStateService
    gateway: GatewayTransport
    event_bus: SurfaceEventBus
    surface_service: SurfaceService
    poll_supervisor: LivePollSupervisor
