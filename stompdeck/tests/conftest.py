from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

CONFIG_DUMP = "\n".join(
    [
        'PluginConfig Boost BackgroundColor #aa3300 ForegroundColor #ffffff IsUserSelectable 1 Description "Clean boost"',
        "ParameterConfig Boost Gain Type float MinValue -12 MaxValue 12 DefaultValue 0",
        "ParameterConfig Boost Enabled Type bool MinValue 0 MaxValue 1 DefaultValue 1",
        'PluginConfig Delay BackgroundColor #003366 IsUserSelectable 1 Description "Tape delay"',
        "ParameterConfig Delay Time Type float MinValue 20 MaxValue 2000 DefaultValue 350",
        "ParameterConfig Delay Mix Type float MinValue 0 MaxValue 1 DefaultValue 0.3",
        'ParameterFileTree Delay Impulse IRs "Room.wav" "Hall.wav"',
        "PluginConfig InputGain IsUserSelectable 0",
        "ParameterConfig InputGain Gain Type float MinValue -20 MaxValue 20 DefaultValue 0",
        "PluginConfig MasterVolume IsUserSelectable 0",
        "ParameterConfig MasterVolume Volume Type float MinValue -60 MaxValue 6 DefaultValue -6",
        "Ok",
    ]
)


class FakeEngine:
    """In-memory engine gateway served through ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.preset = "01-Clean"
        self.presets = ["10-Lead", "01-Clean", "Ambient", "02-Crunch"]
        self.chains: dict[str, list[str]] = {"InputChain": ["Boost"], "FxChain": ["Delay_1"]}
        self.params: dict[str, dict[str, str]] = {
            "Boost": {"Enabled": "1", "Gain": "3.000000"},
            "Delay_1": {"Enabled": "1", "Time": "350.000000", "Mix": "0.300000", "Impulse": "Room.wav"},
        }
        self.config_dump = CONFIG_DUMP
        self.apply_writes = True
        self.current_preset_supported = True
        self.failures: dict[str, int] = {}
        self.requests: list[tuple[str, str, Any]] = []

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def writes(self, path: str) -> list[Any]:
        return [body for method, request_path, body in self.requests if method == "POST" and request_path == path]

    def count(self, path: str) -> int:
        return len([request_path for _, request_path, _ in self.requests if request_path == path])

    def program_dump(self) -> str:
        lines = [f"SetPreset {self.preset}"]
        for chain, plugins in self.chains.items():
            lines.append(" ".join(["SetChain", chain, *plugins]))
        for plugin, values in self.params.items():
            for name, value in values.items():
                lines.append(f'SetParam {plugin} {name} "{value}"')
        lines.extend(["EndProgram", "Ok"])
        return "\n".join(lines)

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, path, body))

        if path in self.failures:
            return httpx.Response(self.failures[path], json={"error": f"{path} unavailable"})

        if path == "/api/state":
            return httpx.Response(
                200,
                json={
                    "meta": {"now": "2026-10-19T12:00:00Z"},
                    "dumpConfig": {"raw": self.config_dump, "duration": "4ms"},
                    "program": {"raw": self.program_dump(), "duration": "3ms"},
                    "presets": {"raw": "Presets " + " ".join(self.presets) + " Ok", "duration": "1ms"},
                },
            )
        if path == "/api/system":
            return httpx.Response(
                200,
                json={
                    "ts": 1760875200,
                    "jack": {"running": True, "sr": 48000, "buf": 128, "xruns": 2, "xruns_delta": 0},
                    "routing": {"ok": True, "missing": []},
                    "midi": {"connected": True, "details": "FCB1010"},
                    "audioif": {"asound_cards": ["0 [USB]: Interface"]},
                    "errors": [],
                },
            )
        if path == "/api/preset/current":
            if not self.current_preset_supported:
                return httpx.Response(404, text="404 page not found")
            return httpx.Response(200, json={"currentPreset": self.preset})

        if request.method != "POST":
            return httpx.Response(404, text="404 page not found")

        if path == "/api/param/set":
            if self.apply_writes:
                self.params.setdefault(body["plugin"], {})[body["param"]] = f"{body['value']:.6f}"
        elif path == "/api/param/file":
            if self.apply_writes:
                self.params.setdefault(body["plugin"], {})[body["param"]] = body["value"]
        elif path.startswith("/api/plugins/") and path.endswith("/enabled"):
            plugin = path.split("/")[3]
            if self.apply_writes:
                self.params.setdefault(plugin, {})["Enabled"] = "1" if body["enabled"] else "0"
        elif path == "/api/preset/load":
            if self.apply_writes:
                self.preset = body["name"]
        elif path == "/api/preset/save":
            pass
        elif path == "/api/preset/save-as":
            self.presets.append(body["name"])
            self.preset = body["name"]
        elif path == "/api/preset/delete":
            self.presets.remove(body["name"])
        elif path.startswith("/api/chains/") and path.endswith("/set"):
            self.chains[path.split("/")[3]] = list(body["plugins"])
        else:
            return httpx.Response(404, text="404 page not found")
        return httpx.Response(200, json={"ok": True})


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()
