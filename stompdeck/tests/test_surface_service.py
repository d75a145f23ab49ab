from __future__ import annotations

import asyncio

import httpx
import pytest
from fastapi import HTTPException

from stompdeck.app.core.config import Settings
from stompdeck.app.engine.gateway_client import HttpGatewayClient
from stompdeck.app.models.surface import PollMode, SurfaceEvent, UpdateOrigin
from stompdeck.app.services.event_bus import SurfaceEventBus
from stompdeck.app.services.surface_service import SurfaceService


def _settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        param_confirm_attempts=3,
        param_confirm_interval_seconds=0,
        preset_confirm_attempts=3,
        preset_confirm_interval_seconds=0,
    )


def _run(engine, action, transport: httpx.AsyncBaseTransport | None = None):
    async def scenario():
        gateway = HttpGatewayClient("http://engine.test", transport=transport or engine.transport())
        service = SurfaceService(settings=_settings(), gateway=gateway, event_bus=SurfaceEventBus())
        try:
            return await action(service)
        finally:
            await service.shutdown()
            await gateway.aclose()

    return asyncio.run(scenario())


def test_refresh_builds_snapshot_from_state(fake_engine) -> None:
    async def action(service: SurfaceService):
        return await service.refresh(UpdateOrigin.REFRESH)

    snapshot = _run(fake_engine, action)

    assert snapshot.status == "ok"
    assert snapshot.error is None
    assert snapshot.origin is UpdateOrigin.REFRESH
    assert snapshot.program.preset == "01-Clean"
    assert snapshot.selected_preset == "01-Clean"
    assert snapshot.program.chains == {"InputChain": ["Boost"], "FxChain": ["Delay_1"]}
    assert snapshot.presets == ["01-Clean", "02-Crunch", "10-Lead", "Ambient"]
    assert snapshot.config.param_meta("Delay_1", "Time").max == 2000
    assert snapshot.fetched_at == "2026-10-19T12:00:00Z"
    assert snapshot.durations == {"dumpConfig": "4ms", "program": "3ms", "presets": "1ms"}
    assert {channel.key: channel.value for channel in snapshot.shadow} == {
        "InputGain.Gain": 0.0,
        "MasterVolume.Volume": -6.0,
    }


def test_refresh_treats_section_error_as_empty_section(fake_engine) -> None:
    engine_handle = fake_engine.handle

    def handle(request: httpx.Request) -> httpx.Response:
        response = engine_handle(request)
        if request.url.path != "/api/state":
            return response
        payload = response.json()
        payload["presets"] = {"raw": "", "error": "presets command timed out"}
        return httpx.Response(200, json=payload)

    snapshot = _run(fake_engine, lambda service: service.refresh(), transport=httpx.MockTransport(handle))

    assert snapshot.status == "ok"
    assert snapshot.presets == []
    assert snapshot.program.preset == "01-Clean"
    assert snapshot.error == "presets: presets command timed out"


def test_refresh_failure_is_reported_as_bad_gateway(fake_engine) -> None:
    fake_engine.failures["/api/state"] = 502

    async def action(service: SurfaceService):
        with pytest.raises(HTTPException) as exc_info:
            await service.refresh()
        return exc_info.value, service.snapshot()

    error, snapshot = _run(fake_engine, action)

    assert error.status_code == 502
    assert error.detail == "/api/state unavailable"
    assert snapshot.status == "error"


def test_overlapping_refresh_is_dropped(fake_engine) -> None:
    gate = asyncio.Event()

    async def handle(request: httpx.Request) -> httpx.Response:
        await gate.wait()
        return fake_engine.handle(request)

    async def action(service: SurfaceService):
        first = asyncio.create_task(service._refresh(UpdateOrigin.REFRESH))
        await asyncio.sleep(0.01)
        second = await service._refresh(UpdateOrigin.USER)
        gate.set()
        return await first, second

    first, second = _run(fake_engine, action, transport=httpx.MockTransport(handle))

    assert first is not None and first.preset == "01-Clean"
    assert second is None
    assert fake_engine.count("/api/state") == 1


def test_set_param_clamps_writes_and_confirms(fake_engine) -> None:
    async def action(service: SurfaceService):
        await service.refresh()
        return await service.set_param("Boost", "Gain", "20")

    snapshot = _run(fake_engine, action)

    assert fake_engine.writes("/api/param/set") == [{"plugin": "Boost", "param": "Gain", "value": 12.0}]
    assert snapshot.program.param("Boost", "Gain") == "12.000000"
    assert snapshot.status == "ok"


def test_set_param_rejects_malformed_value_without_network(fake_engine) -> None:
    async def action(service: SurfaceService):
        await service.refresh()
        with pytest.raises(HTTPException) as exc_info:
            await service.set_param("Boost", "Gain", "loud")
        return exc_info.value, service.snapshot()

    error, snapshot = _run(fake_engine, action)

    assert error.status_code == 422
    assert fake_engine.writes("/api/param/set") == []
    assert snapshot.program.param("Boost", "Gain") == "3.000000"


def test_set_param_rolls_back_on_transport_failure(fake_engine) -> None:
    fake_engine.failures["/api/param/set"] = 500

    async def action(service: SurfaceService):
        await service.refresh()
        with pytest.raises(HTTPException) as exc_info:
            await service.set_param("Boost", "Gain", 6)
        return exc_info.value, service.snapshot()

    error, snapshot = _run(fake_engine, action)

    assert error.status_code == 502
    assert snapshot.program.param("Boost", "Gain") == "3.000000"
    assert snapshot.status == "error"
    assert snapshot.error == "/api/param/set unavailable"


def test_set_param_marks_unconfirmed_when_engine_ignores_write(fake_engine) -> None:
    fake_engine.apply_writes = False

    async def action(service: SurfaceService):
        await service.refresh()
        return await service.set_param("Delay_1", "Mix", 0.75)

    snapshot = _run(fake_engine, action)

    assert snapshot.status == "unconfirmed"
    assert snapshot.program.param("Delay_1", "Mix") == "0.300000"
    assert fake_engine.count("/api/state") == 1 + 3


def test_rapid_param_writes_coalesce_to_latest_value(fake_engine) -> None:
    gate = asyncio.Event()

    async def handle(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/param/set":
            await gate.wait()
        return fake_engine.handle(request)

    async def action(service: SurfaceService):
        await service.refresh()
        first = asyncio.create_task(service.set_param("Boost", "Gain", 1))
        await asyncio.sleep(0.01)
        others = [asyncio.create_task(service.set_param("Boost", "Gain", value)) for value in (2, 4)]
        await asyncio.sleep(0.01)
        gate.set()
        await asyncio.gather(first, *others)
        return await service.refresh()

    snapshot = _run(fake_engine, action, transport=httpx.MockTransport(handle))

    assert [body["value"] for body in fake_engine.writes("/api/param/set")] == [1.0, 4.0]
    assert snapshot.program.param("Boost", "Gain") == "4.000000"


def test_superseding_write_confirms_only_after_its_own_send(fake_engine) -> None:
    gate = asyncio.Event()

    async def handle(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/param/set":
            await gate.wait()
        return fake_engine.handle(request)

    async def action(service: SurfaceService):
        await service.refresh()
        first = asyncio.create_task(service.set_param("Boost", "Gain", 1))
        await asyncio.sleep(0.01)
        latest = asyncio.create_task(service.set_param("Boost", "Gain", 4))
        await asyncio.sleep(0.01)
        in_flight = service.snapshot(), fake_engine.count("/api/state")
        gate.set()
        await asyncio.gather(first, latest)
        return in_flight, latest.result()

    (in_flight, state_fetches), snapshot = _run(fake_engine, action, transport=httpx.MockTransport(handle))

    assert state_fetches == 1
    assert in_flight.program.param("Boost", "Gain") == "4.000000"
    assert snapshot.status == "ok"
    assert snapshot.program.param("Boost", "Gain") == "4.000000"
    assert fake_engine.params["Boost"]["Gain"] == "4.000000"
    assert [body["value"] for body in fake_engine.writes("/api/param/set")] == [1.0, 4.0]


def test_set_param_snaps_bool_params(fake_engine) -> None:
    async def action(service: SurfaceService):
        await service.refresh()
        return await service.set_param("Boost", "Enabled", 0.7)

    snapshot = _run(fake_engine, action)

    assert fake_engine.writes("/api/param/set") == [{"plugin": "Boost", "param": "Enabled", "value": 1.0}]
    assert snapshot.status == "ok"


def test_set_param_rejects_numeric_value_for_file_param(fake_engine) -> None:
    async def action(service: SurfaceService):
        await service.refresh()
        with pytest.raises(HTTPException) as exc_info:
            await service.set_param("Delay_1", "Impulse", 2)
        return exc_info.value

    error = _run(fake_engine, action)

    assert error.status_code == 422
    assert fake_engine.writes("/api/param/set") == []


def test_set_file_param_uses_dedicated_endpoint(fake_engine) -> None:
    async def action(service: SurfaceService):
        await service.refresh()
        return await service.set_file_param("Delay_1", "Impulse", "Hall.wav")

    snapshot = _run(fake_engine, action)

    assert fake_engine.writes("/api/param/file") == [{"plugin": "Delay_1", "param": "Impulse", "value": "Hall.wav"}]
    assert fake_engine.writes("/api/param/set") == []
    assert snapshot.program.param("Delay_1", "Impulse") == "Hall.wav"


def test_set_file_param_rejects_unknown_option(fake_engine) -> None:
    async def action(service: SurfaceService):
        await service.refresh()
        with pytest.raises(HTTPException) as exc_info:
            await service.set_file_param("Delay_1", "Impulse", "Cathedral.wav")
        return exc_info.value, service.snapshot()

    error, snapshot = _run(fake_engine, action)

    assert error.status_code == 422
    assert fake_engine.writes("/api/param/file") == []
    assert snapshot.program.param("Delay_1", "Impulse") == "Room.wav"


def test_set_plugin_enabled_refreshes_authoritative_state(fake_engine) -> None:
    async def action(service: SurfaceService):
        await service.refresh()
        return await service.set_plugin_enabled("Boost", False)

    snapshot = _run(fake_engine, action)

    assert fake_engine.writes("/api/plugins/Boost/enabled") == [{"enabled": False}]
    assert snapshot.program.param("Boost", "Enabled") == "0"


def test_set_plugin_enabled_rolls_back_on_failure(fake_engine) -> None:
    fake_engine.failures["/api/plugins/Boost/enabled"] = 500

    async def action(service: SurfaceService):
        await service.refresh()
        with pytest.raises(HTTPException):
            await service.set_plugin_enabled("Boost", False)
        return service.snapshot()

    assert _run(fake_engine, action).program.param("Boost", "Enabled") == "1"


def test_load_preset_confirms_new_preset(fake_engine) -> None:
    async def action(service: SurfaceService):
        await service.refresh()
        snapshot = await service.load_preset("02-Crunch")
        return snapshot, service.supervisor.last_preset

    snapshot, watched = _run(fake_engine, action)

    assert fake_engine.writes("/api/preset/load") == [{"name": "02-Crunch"}]
    assert snapshot.program.preset == "02-Crunch"
    assert snapshot.selected_preset == "02-Crunch"
    assert snapshot.status == "ok"
    assert watched == "02-Crunch"


def test_load_preset_reports_unconfirmed_load(fake_engine) -> None:
    fake_engine.apply_writes = False

    async def action(service: SurfaceService):
        await service.refresh()
        return await service.load_preset("02-Crunch")

    snapshot = _run(fake_engine, action)

    assert snapshot.status == "loaded (unconfirmed)"
    assert snapshot.program.preset == "01-Clean"
    assert fake_engine.count("/api/state") == 1 + 3


def test_load_preset_failure_restores_selection(fake_engine) -> None:
    fake_engine.failures["/api/preset/load"] = 500

    async def action(service: SurfaceService):
        await service.refresh()
        with pytest.raises(HTTPException) as exc_info:
            await service.load_preset("02-Crunch")
        return exc_info.value, service.snapshot()

    error, snapshot = _run(fake_engine, action)

    assert error.status_code == 502
    assert snapshot.selected_preset == "01-Clean"
    assert snapshot.status == "error"


def test_programmatic_preset_selection_never_loads(fake_engine) -> None:
    async def action(service: SurfaceService):
        await service.refresh()
        return await service.load_preset("10-Lead", UpdateOrigin.PRESET_WATCH)

    snapshot = _run(fake_engine, action)

    assert fake_engine.writes("/api/preset/load") == []
    assert snapshot.selected_preset == "10-Lead"
    assert snapshot.origin is UpdateOrigin.PRESET_WATCH


def test_load_preset_rejects_placeholder_name(fake_engine) -> None:
    async def action(service: SurfaceService):
        with pytest.raises(HTTPException) as exc_info:
            await service.load_preset("---")
        return exc_info.value

    assert _run(fake_engine, action).status_code == 422
    assert fake_engine.writes("/api/preset/load") == []


def test_save_variants_write_then_refresh(fake_engine) -> None:
    async def action(service: SurfaceService):
        await service.refresh()
        await service.save_preset()
        saved_as = await service.save_preset_as("11-Solo")
        deleted = await service.delete_preset("Ambient")
        return saved_as, deleted

    saved_as, deleted = _run(fake_engine, action)

    assert fake_engine.writes("/api/preset/save") == [{"name": "01-Clean"}]
    assert "11-Solo" in saved_as.presets
    assert saved_as.program.preset == "11-Solo"
    assert "Ambient" not in deleted.presets


def test_chain_edits_post_full_membership(fake_engine) -> None:
    async def action(service: SurfaceService):
        await service.refresh()
        await service.add_plugin("FxChain", "Boost")
        await service.move_plugin("FxChain", 1, -1)
        return await service.remove_plugin("FxChain", 1)

    snapshot = _run(fake_engine, action)

    assert fake_engine.writes("/api/chains/FxChain/set") == [
        {"plugins": ["Delay_1", "Boost"]},
        {"plugins": ["Boost", "Delay_1"]},
        {"plugins": ["Boost"]},
    ]
    assert snapshot.program.chains["FxChain"] == ["Boost"]


def test_chain_edit_validation(fake_engine) -> None:
    async def action(service: SurfaceService):
        await service.refresh()
        errors = []
        for call in (
            service.add_plugin("FxChain", "InputGain"),
            service.remove_plugin("FxChain", 3),
            service.move_plugin("FxChain", 0, -1),
        ):
            with pytest.raises(HTTPException) as exc_info:
                await call
            errors.append(exc_info.value.status_code)
        return errors

    assert _run(fake_engine, action) == [422, 404, 409]
    assert fake_engine.writes("/api/chains/FxChain/set") == []


def test_shadow_mute_writes_floor_and_unmute_restores(fake_engine) -> None:
    async def action(service: SurfaceService):
        await service.refresh()
        muted = await service.mute_shadow("MasterVolume.Volume")
        unmuted = await service.unmute_shadow("MasterVolume.Volume")
        return muted, unmuted

    muted, unmuted = _run(fake_engine, action)

    assert muted.muted is True
    assert muted.value == -60
    assert unmuted.value == -6
    assert fake_engine.writes("/api/param/set") == [
        {"plugin": "MasterVolume", "param": "Volume", "value": -60.0},
        {"plugin": "MasterVolume", "param": "Volume", "value": -6.0},
    ]


def test_shadow_write_failure_restores_channel(fake_engine) -> None:
    fake_engine.failures["/api/param/set"] = 500

    async def action(service: SurfaceService):
        await service.refresh()
        with pytest.raises(HTTPException) as exc_info:
            await service.set_shadow_value("InputGain.Gain", "5")
        return exc_info.value, service.shadow.get("InputGain.Gain")

    error, channel = _run(fake_engine, action)

    assert error.status_code == 502
    assert channel.value == 0.0


def test_unknown_shadow_channel_is_not_found(fake_engine) -> None:
    async def action(service: SurfaceService):
        with pytest.raises(HTTPException) as exc_info:
            await service.mute_shadow("Reverb.Mix")
        return exc_info.value

    assert _run(fake_engine, action).status_code == 404


def test_external_preset_change_refreshes_with_watch_origin(fake_engine) -> None:
    async def action(service: SurfaceService):
        queue = await service._event_bus.subscribe()
        await service.refresh()
        fake_engine.preset = "10-Lead"
        await service.handle_external_preset_change("10-Lead")
        events: list[SurfaceEvent] = []
        while not queue.empty():
            events.append(queue.get_nowait())
        return service.snapshot(), events

    snapshot, events = _run(fake_engine, action)

    assert snapshot.selected_preset == "10-Lead"
    assert snapshot.origin is UpdateOrigin.PRESET_WATCH
    assert fake_engine.writes("/api/preset/load") == []
    refreshed = [event.payload for event in events if event.type == "refreshed"]
    assert refreshed[-1]["origin"] == "preset_watch"
    assert refreshed[-1]["preset"] == "10-Lead"


def test_switch_to_live_refreshes_with_mode_switch_origin(fake_engine) -> None:
    async def action(service: SurfaceService):
        status = await service.set_poll_mode(PollMode.LIVE)
        snapshot = service.snapshot()
        await service.set_poll_mode(PollMode.RESEARCH)
        return status, snapshot

    status, snapshot = _run(fake_engine, action)

    assert status.mode is PollMode.LIVE
    assert status.status_task_active is True
    assert snapshot.origin is UpdateOrigin.MODE_SWITCH
    assert snapshot.program.preset == "01-Clean"
    assert snapshot.poll_mode is PollMode.LIVE
