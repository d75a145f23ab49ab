from __future__ import annotations

import logging

from stompdeck.app.models.surface import PollMode
from stompdeck.app.storage.repositories.app_state_repository import AppStateRepository

logger = logging.getLogger(__name__)

POLL_MODE_KEY = "poll_mode"


class AppStateService:
    """Client-side settings that survive restarts."""

    def __init__(self, repository: AppStateRepository):
        self._repository = repository

    def load_poll_mode(self, default: PollMode) -> PollMode:
        stored = self._repository.get_value(POLL_MODE_KEY)
        if stored is None:
            return default
        try:
            return PollMode(stored)
        except ValueError:
            logger.warning("Ignoring unknown persisted poll mode %r", stored)
            return default

    def save_poll_mode(self, mode: PollMode) -> None:
        self._repository.set_value(POLL_MODE_KEY, mode.value)
