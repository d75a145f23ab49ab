from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Protocol

from stompdeck.app.engine.gateway_client import GatewayError
from stompdeck.app.models.gateway import SystemSnapshot
from stompdeck.app.models.surface import PollMode

logger = logging.getLogger(__name__)


class PollModeStore(Protocol):
    def save_poll_mode(self, mode: PollMode) -> None: ...


class ScheduledTask:
    """A periodic coroutine with an explicit cancel handle.

    The first tick runs one interval after creation. A failing tick is logged and
    the schedule continues.
    """

    def __init__(self, name: str, interval_seconds: float, tick: Callable[[], Awaitable[None]]) -> None:
        self.name = name
        self.interval_seconds = interval_seconds
        self._tick = tick
        self._cancelled = False
        self._task: asyncio.Task[None] = asyncio.create_task(self._run(), name=name)

    @property
    def active(self) -> bool:
        return not self._cancelled and not self._task.done()

    def cancel(self) -> None:
        self._cancelled = True
        self._task.cancel()

    async def wait_cancelled(self) -> None:
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self._tick()
            except asyncio.CancelledError:
                raise
            except GatewayError as exc:
                logger.warning("Scheduled task '%s' tick failed: %s", self.name, exc)
            except Exception:
                logger.exception("Scheduled task '%s' tick failed", self.name)


class LivePollSupervisor:
    """Live/Research mode state machine driving the background polls.

    In Live mode a status-strip poll and a preset-change watch run on their own
    schedules. A preset name different from the last observed one triggers a
    full refresh through ``on_preset_change``, never the user preset-load flow.
    In Research mode nothing runs in the background.
    """

    def __init__(
        self,
        *,
        fetch_status: Callable[[], Awaitable[SystemSnapshot]],
        fetch_current_preset: Callable[[], Awaitable[str | None]],
        on_status: Callable[[SystemSnapshot], Awaitable[None]],
        on_preset_change: Callable[[str | None], Awaitable[None]],
        status_interval_seconds: float = 0.75,
        preset_watch_interval_seconds: float = 0.3,
        mode_store: PollModeStore | None = None,
        on_mode_change: Callable[[PollMode], Awaitable[None]] | None = None,
    ) -> None:
        self._fetch_status = fetch_status
        self._fetch_current_preset = fetch_current_preset
        self._on_status = on_status
        self._on_preset_change = on_preset_change
        self._status_interval_seconds = status_interval_seconds
        self._preset_watch_interval_seconds = preset_watch_interval_seconds
        self._mode_store = mode_store
        self._on_mode_change = on_mode_change

        self._mode = PollMode.RESEARCH
        self._status_task: ScheduledTask | None = None
        self._watch_task: ScheduledTask | None = None
        self._last_preset: str | None = None
        self._watch_in_progress = False
        self._baseline_primed = False
        self._transition = 0

    @property
    def mode(self) -> PollMode:
        return self._mode

    @property
    def last_preset(self) -> str | None:
        return self._last_preset

    @property
    def status_task_active(self) -> bool:
        return self._status_task is not None and self._status_task.active

    @property
    def preset_watch_active(self) -> bool:
        return self._watch_task is not None and self._watch_task.active

    def observe_preset(self, name: str | None) -> None:
        """Move the watch baseline to a preset the client already knows about."""
        self._last_preset = name
        self._baseline_primed = True

    async def set_mode(self, mode: PollMode, *, persist: bool = True) -> PollMode:
        if mode is PollMode.LIVE:
            await self.enter_live()
        else:
            await self.enter_research()

        if persist and self._mode_store is not None:
            self._mode_store.save_poll_mode(self._mode)
        if self._on_mode_change is not None:
            await self._on_mode_change(self._mode)
        return self._mode

    async def enter_live(self) -> None:
        self._transition += 1
        transition = self._transition
        self._mode = PollMode.LIVE

        # Prime the baseline before the watch starts so the switch itself is not reported as a change.
        try:
            baseline = await self._fetch_current_preset()
        except GatewayError as exc:
            logger.warning("Could not prime preset watch baseline: %s", exc)
            self._last_preset = None
            self._baseline_primed = False
        else:
            self.observe_preset(baseline)

        if transition != self._transition:
            return

        self._cancel_tasks()
        self._status_task = ScheduledTask("surface-status-poll", self._status_interval_seconds, self.poll_status)
        self._watch_task = ScheduledTask(
            "surface-preset-watch", self._preset_watch_interval_seconds, self.check_preset_change
        )
        logger.info("Poll mode set to live (baseline preset: %s)", self._last_preset)

    async def enter_research(self) -> None:
        self._transition += 1
        self._mode = PollMode.RESEARCH
        self._cancel_tasks()
        logger.info("Poll mode set to research")

    async def shutdown(self) -> None:
        self._transition += 1
        tasks = [task for task in (self._status_task, self._watch_task) if task is not None]
        self._cancel_tasks()
        for task in tasks:
            await task.wait_cancelled()

    async def poll_status(self) -> None:
        snapshot = await self._fetch_status()
        await self._on_status(snapshot)

    async def check_preset_change(self) -> bool:
        if self._watch_in_progress:
            return False
        self._watch_in_progress = True
        try:
            current = await self._fetch_current_preset()
            if not self._baseline_primed:
                # No baseline yet (the live-mode prime failed); adopt this one.
                self.observe_preset(current)
                return False
            if current == self._last_preset:
                return False
            logger.info("Preset changed outside the client: %s -> %s", self._last_preset, current)
            self._last_preset = current
            await self._on_preset_change(current)
            return True
        finally:
            self._watch_in_progress = False

    def _cancel_tasks(self) -> None:
        if self._status_task is not None:
            self._status_task.cancel()
            self._status_task = None
        if self._watch_task is not None:
            self._watch_task.cancel()
            self._watch_task = None
