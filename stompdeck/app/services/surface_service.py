from __future__ import annotations

import logging
from typing import Awaitable, Callable

from fastapi import HTTPException

from stompdeck.app.core.config import Settings
from stompdeck.app.engine.gateway_client import GatewayError, GatewayTransport
from stompdeck.app.models.gateway import SystemSnapshot
from stompdeck.app.models.program import EngineConfig, Program
from stompdeck.app.models.surface import (
    PollMode,
    PollModeResponse,
    ShadowChannelState,
    SurfaceEvent,
    SurfaceSnapshot,
    UpdateOrigin,
)
from stompdeck.app.protocol.dump_decoder import decode_config, decode_program
from stompdeck.app.protocol.presets import decode_presets, sort_presets
from stompdeck.app.services.app_state_service import AppStateService
from stompdeck.app.services.confirmation_poller import confirm_until, param_equals, preset_is
from stompdeck.app.services.event_bus import SurfaceEventBus
from stompdeck.app.services.param_values import InvalidParamValueError, format_param_value, is_on, parse_user_number
from stompdeck.app.services.poll_supervisor import LivePollSupervisor
from stompdeck.app.services.shadow_store import SessionShadowStore, ShadowChannel, ShadowChannelNotFoundError
from stompdeck.app.services.write_coalescer import CoalescerPool

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_ERROR = "error"
STATUS_LOADING = "loading..."
STATUS_PRESET_UNCONFIRMED = "loaded (unconfirmed)"
STATUS_PARAM_UNCONFIRMED = "unconfirmed"


class SurfaceService:
    """Client-side view of the engine.

    The decoded :class:`Program` is replaced wholesale on every refresh. User
    actions apply an optimistic change, write through the gateway, roll the
    change back on transport failure, and otherwise reconfirm by re-polling.
    """

    def __init__(
        self,
        settings: Settings,
        gateway: GatewayTransport,
        event_bus: SurfaceEventBus,
        app_state_service: AppStateService | None = None,
    ) -> None:
        self._settings = settings
        self._gateway = gateway
        self._event_bus = event_bus

        self._program = Program()
        self._config = EngineConfig()
        self._presets: list[str] = []
        self._selected_preset: str | None = None
        self._system: SystemSnapshot | None = None
        self._status = "idle"
        self._error: str | None = None
        self._origin = UpdateOrigin.REFRESH
        self._fetched_at: str | None = None
        self._durations: dict[str, str | None] = {}
        self._revision = 0
        self._refreshing = False

        self._shadow = SessionShadowStore(settings.shadow_channels, mute_floor=settings.shadow_mute_floor)
        self._param_writes: CoalescerPool[tuple[str, str], float] = CoalescerPool(self._send_param)
        self._latest_param_requests: dict[tuple[str, str], float] = {}

        self.supervisor = LivePollSupervisor(
            fetch_status=gateway.fetch_system,
            fetch_current_preset=gateway.fetch_current_preset,
            on_status=self.apply_system_status,
            on_preset_change=self.handle_external_preset_change,
            status_interval_seconds=settings.status_poll_interval_seconds,
            preset_watch_interval_seconds=settings.preset_watch_interval_seconds,
            mode_store=app_state_service,
            on_mode_change=self._on_mode_change,
        )

    @property
    def shadow(self) -> SessionShadowStore:
        return self._shadow

    def snapshot(self) -> SurfaceSnapshot:
        return SurfaceSnapshot(
            program=self._program,
            config=self._config,
            presets=list(self._presets),
            selected_preset=self._selected_preset,
            status=self._status,
            error=self._error,
            origin=self._origin,
            poll_mode=self.supervisor.mode,
            system=self._system,
            shadow=self._shadow.states(),
            fetched_at=self._fetched_at,
            durations=dict(self._durations),
            revision=self._revision,
        )

    def poll_mode_status(self) -> PollModeResponse:
        return PollModeResponse(
            mode=self.supervisor.mode,
            status_task_active=self.supervisor.status_task_active,
            preset_watch_active=self.supervisor.preset_watch_active,
            last_preset=self.supervisor.last_preset,
        )

    async def startup(self, mode: PollMode) -> None:
        try:
            await self._refresh(UpdateOrigin.REFRESH)
        except GatewayError as exc:
            logger.warning("Initial refresh failed: %s", exc)
            await self._fail(exc)
        await self.supervisor.set_mode(mode, persist=False)

    async def shutdown(self) -> None:
        await self.supervisor.shutdown()

    async def set_poll_mode(self, mode: PollMode) -> PollModeResponse:
        if mode is PollMode.LIVE and self.supervisor.mode is not PollMode.LIVE:
            # Catch up on anything that changed while nothing was polling.
            try:
                await self._refresh(UpdateOrigin.MODE_SWITCH)
            except GatewayError as exc:
                logger.warning("Refresh on switch to live mode failed: %s", exc)
        await self.supervisor.set_mode(mode)
        return self.poll_mode_status()

    # -- refresh -------------------------------------------------------------

    async def refresh(self, origin: UpdateOrigin = UpdateOrigin.USER) -> SurfaceSnapshot:
        await self._resync(origin)
        return self.snapshot()

    async def _refresh(self, origin: UpdateOrigin) -> Program | None:
        """Fetch and decode the full engine state. Returns ``None`` if a refresh is already running."""
        if self._refreshing:
            logger.debug("Refresh already in progress; dropping %s refresh", origin.value)
            return None

        self._refreshing = True
        try:
            state = await self._gateway.fetch_state()

            program = decode_program(state.program.raw) if state.program.ok else Program()
            config = decode_config(state.dump_config.raw) if state.dump_config.ok else EngineConfig()
            presets = decode_presets(state.presets.raw) if state.presets.ok else []

            self._config = config
            self._presets = sort_presets(presets)
            self._replace_program(program, origin)
            self._select_preset(program.preset, origin)
            self.supervisor.observe_preset(program.preset)
            self._fetched_at = state.meta.now
            self._durations = {
                "dumpConfig": state.dump_config.duration,
                "program": state.program.duration,
                "presets": state.presets.duration,
            }

            if state.dump_config.ok and self._shadow.initialize(config):
                await self._publish("shadow", {"initialized": True})

            section_errors = [
                f"{name}: {section.error}"
                for name, section in (
                    ("dumpConfig", state.dump_config),
                    ("program", state.program),
                    ("presets", state.presets),
                )
                if section.error
            ]
            self._status = STATUS_OK
            self._error = "; ".join(section_errors) or None
        finally:
            self._refreshing = False

        await self._publish(
            "refreshed",
            {"origin": origin.value, "preset": program.preset, "revision": self._revision},
        )
        return program

    async def _refresh_for_confirmation(self) -> Program | None:
        return await self._refresh(UpdateOrigin.REFRESH)

    async def _resync(self, origin: UpdateOrigin) -> None:
        try:
            await self._refresh(origin)
        except GatewayError as exc:
            await self._fail(exc)
            raise self._gateway_http_error(exc) from exc

    def _replace_program(self, program: Program, origin: UpdateOrigin) -> None:
        self._program = program
        self._origin = origin
        self._revision += 1

    def _select_preset(self, name: str | None, origin: UpdateOrigin) -> None:
        self._selected_preset = name
        self._origin = origin

    # -- background callbacks ------------------------------------------------

    async def apply_system_status(self, snapshot: SystemSnapshot) -> None:
        self._system = snapshot
        await self._publish(
            "status",
            {
                "engine_running": snapshot.jack.running,
                "xruns": snapshot.jack.xruns,
                "routing_ok": snapshot.routing.ok,
                "midi_connected": snapshot.midi.connected,
            },
        )

    async def handle_external_preset_change(self, name: str | None) -> None:
        await self._refresh(UpdateOrigin.PRESET_WATCH)

    async def _on_mode_change(self, mode: PollMode) -> None:
        await self._publish("poll_mode", {"mode": mode.value})

    # -- presets -------------------------------------------------------------

    async def load_preset(self, name: str, origin: UpdateOrigin = UpdateOrigin.USER) -> SurfaceSnapshot:
        """Select a preset. Only a user-originated selection loads it on the engine."""
        name = name.strip()
        if origin is not UpdateOrigin.USER:
            self._select_preset(name or None, origin)
            return self.snapshot()
        if not name or name == "---":
            raise HTTPException(status_code=422, detail="Missing preset name")

        previous = self._selected_preset
        self._select_preset(name, UpdateOrigin.USER)
        await self._set_status(STATUS_LOADING)

        try:
            await self._gateway.load_preset(name)
        except GatewayError as exc:
            self._select_preset(previous, UpdateOrigin.USER)
            await self._fail(exc)
            raise self._gateway_http_error(exc) from exc

        self.supervisor.observe_preset(name)
        result = await confirm_until(
            self._refresh_for_confirmation,
            preset_is(name),
            max_attempts=self._settings.preset_confirm_attempts,
            interval_seconds=self._settings.preset_confirm_interval_seconds,
        )
        if not result.confirmed:
            logger.info("Preset '%s' load not confirmed after %d polls", name, result.attempts)
            await self._set_status(STATUS_PRESET_UNCONFIRMED)
        return self.snapshot()

    async def save_preset(self, name: str | None = None) -> SurfaceSnapshot:
        target = (name or "").strip() or self._program.preset
        if not target:
            raise HTTPException(status_code=422, detail="No preset name given and no preset is active")
        await self._write(self._gateway.save_preset(target))
        await self._resync(UpdateOrigin.USER)
        return self.snapshot()

    async def save_preset_as(self, name: str) -> SurfaceSnapshot:
        target = name.strip()
        if not target:
            raise HTTPException(status_code=422, detail="Missing preset name")
        await self._write(self._gateway.save_preset_as(target))
        await self._resync(UpdateOrigin.USER)
        return self.snapshot()

    async def delete_preset(self, name: str) -> SurfaceSnapshot:
        target = name.strip()
        if not target:
            raise HTTPException(status_code=422, detail="Missing preset name")
        await self._write(self._gateway.delete_preset(target))
        await self._resync(UpdateOrigin.USER)
        return self.snapshot()

    # -- parameters ----------------------------------------------------------

    async def set_param(self, plugin: str, param: str, raw_value: str | float) -> SurfaceSnapshot:
        try:
            value = parse_user_number(raw_value)
        except InvalidParamValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc

        meta = self._config.param_meta(plugin, param)
        if self._config.file_options(plugin, param) or (meta is not None and meta.is_file):
            raise HTTPException(status_code=422, detail=f"'{plugin}.{param}' takes a file value")
        if meta is not None:
            value = (1.0 if is_on(value) else 0.0) if meta.is_bool else meta.clamp(value)

        key = (plugin, param)
        self._latest_param_requests[key] = value
        previous = self._program.param(plugin, param)
        optimistic = format_param_value(value)
        self._replace_program(self._program.with_param(plugin, param, optimistic), UpdateOrigin.USER)

        try:
            sent = await self._param_writes.enqueue(key, value)
        except GatewayError as exc:
            self._rollback_param(plugin, param, optimistic, previous)
            await self._fail(exc)
            raise self._gateway_http_error(exc) from exc

        if not sent or self._latest_param_requests.get(key) != value:
            # A newer write on the same channel owns confirmation.
            return self.snapshot()

        await self._confirm_param(plugin, param, value)
        return self.snapshot()

    async def set_file_param(self, plugin: str, param: str, value: str) -> SurfaceSnapshot:
        options = self._config.file_options(plugin, param)
        if options and value not in options:
            raise HTTPException(status_code=422, detail=f"'{value}' is not an option for '{plugin}.{param}'")

        previous = self._program.param(plugin, param)
        self._replace_program(self._program.with_param(plugin, param, value), UpdateOrigin.USER)

        try:
            await self._gateway.set_file_param(plugin, param, value)
        except GatewayError as exc:
            self._rollback_param(plugin, param, value, previous)
            await self._fail(exc)
            raise self._gateway_http_error(exc) from exc

        await self._confirm_param(plugin, param, value)
        return self.snapshot()

    async def set_plugin_enabled(self, plugin: str, enabled: bool) -> SurfaceSnapshot:
        previous = self._program.param(plugin, "Enabled")
        optimistic = "1" if enabled else "0"
        self._replace_program(self._program.with_param(plugin, "Enabled", optimistic), UpdateOrigin.USER)

        try:
            await self._gateway.set_plugin_enabled(plugin, enabled)
        except GatewayError as exc:
            self._rollback_param(plugin, "Enabled", optimistic, previous)
            await self._fail(exc)
            raise self._gateway_http_error(exc) from exc

        await self._resync(UpdateOrigin.USER)
        return self.snapshot()

    async def _send_param(self, key: tuple[str, str], value: float) -> None:
        plugin, param = key
        await self._gateway.set_param(plugin, param, value)

    async def _confirm_param(self, plugin: str, param: str, expected: str | float) -> None:
        result = await confirm_until(
            self._refresh_for_confirmation,
            param_equals(plugin, param, expected),
            max_attempts=self._settings.param_confirm_attempts,
            interval_seconds=self._settings.param_confirm_interval_seconds,
        )
        if not result.confirmed:
            await self._set_status(STATUS_PARAM_UNCONFIRMED)

    def _rollback_param(self, plugin: str, param: str, optimistic: str, previous: str | None) -> None:
        if self._program.param(plugin, param) != optimistic:
            return
        if previous is None:
            program = self._program.without_param(plugin, param)
        else:
            program = self._program.with_param(plugin, param, previous)
        self._replace_program(program, UpdateOrigin.USER)

    # -- chains --------------------------------------------------------------

    async def add_plugin(self, chain: str, plugin: str) -> SurfaceSnapshot:
        meta = self._config.plugin_meta(plugin)
        if self._config.plugins and (meta is None or not meta.selectable):
            raise HTTPException(status_code=422, detail=f"Plugin type '{plugin}' is not user-selectable")
        items = self._chain_items(chain)
        items.append(plugin)
        return await self._apply_chain(chain, items)

    async def remove_plugin(self, chain: str, index: int) -> SurfaceSnapshot:
        items = self._chain_items(chain)
        if index >= len(items):
            raise HTTPException(status_code=404, detail=f"Chain '{chain}' has no plugin at index {index}")
        del items[index]
        return await self._apply_chain(chain, items)

    async def move_plugin(self, chain: str, index: int, offset: int) -> SurfaceSnapshot:
        items = self._chain_items(chain)
        if index >= len(items):
            raise HTTPException(status_code=404, detail=f"Chain '{chain}' has no plugin at index {index}")
        target = index + offset
        if not 0 <= target < len(items):
            raise HTTPException(status_code=409, detail=f"Cannot move '{items[index]}' past the end of '{chain}'")
        items[index], items[target] = items[target], items[index]
        return await self._apply_chain(chain, items)

    def _chain_items(self, chain: str) -> list[str]:
        return list(self._program.chains.get(chain, []))

    async def _apply_chain(self, chain: str, items: list[str]) -> SurfaceSnapshot:
        await self._write(self._gateway.set_chain(chain, items))
        await self._resync(UpdateOrigin.USER)
        return self.snapshot()

    # -- shadow channels -----------------------------------------------------

    async def set_shadow_value(self, key: str, raw_value: str | float) -> ShadowChannelState:
        try:
            value = parse_user_number(raw_value)
        except InvalidParamValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return await self._apply_shadow(key, lambda: self._shadow.set_value(key, value))

    async def mute_shadow(self, key: str) -> ShadowChannelState:
        return await self._apply_shadow(key, lambda: self._shadow.mute(key))

    async def unmute_shadow(self, key: str) -> ShadowChannelState:
        return await self._apply_shadow(key, lambda: self._shadow.unmute(key))

    async def _apply_shadow(self, key: str, change: Callable[[], ShadowChannel]) -> ShadowChannelState:
        try:
            saved = self._shadow.checkpoint(key)
        except ShadowChannelNotFoundError as exc:
            raise HTTPException(status_code=404, detail=f"Unknown shadow channel '{key}'") from exc

        channel = change()
        try:
            await self._param_writes.enqueue((channel.plugin, channel.param), channel.value)
        except GatewayError as exc:
            self._shadow.restore(saved)
            await self._fail(exc)
            raise self._gateway_http_error(exc) from exc

        await self._publish("shadow", {"key": key, "value": channel.value, "muted": channel.muted})
        return channel.to_state()

    # -- helpers -------------------------------------------------------------

    async def _write(self, action: Awaitable[None]) -> None:
        try:
            await action
        except GatewayError as exc:
            await self._fail(exc)
            raise self._gateway_http_error(exc) from exc

    async def _set_status(self, status: str) -> None:
        self._status = status
        self._error = None
        await self._publish("status_message", {"status": status})

    async def _fail(self, exc: GatewayError) -> None:
        self._status = STATUS_ERROR
        self._error = exc.message
        await self._publish("status_message", {"status": STATUS_ERROR, "error": exc.message})

    @staticmethod
    def _gateway_http_error(exc: GatewayError) -> HTTPException:
        return HTTPException(status_code=502, detail=exc.message)

    async def _publish(self, event_type: str, payload: dict[str, str | int | float | bool | None]) -> None:
        await self._event_bus.publish(SurfaceEvent(type=event_type, payload=payload))
