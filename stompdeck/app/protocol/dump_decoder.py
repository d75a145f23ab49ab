from __future__ import annotations

import math
import re

from stompdeck.app.models.program import EngineConfig, FileOptionTree, ParameterMeta, PluginTypeMeta, Program

_TOKEN = re.compile(r'"([^"]*)"|(\S+)')
_QUOTED = re.compile(r'"([^"]*)"')

_SET_PRESET = re.compile(r"^SetPreset(?:\s+(.*))?$")
_SET_PARAM = re.compile(r"^SetParam\s+(\S+)\s+(\S+)\s+(.+)$")

_BACKGROUND_COLOR = re.compile(r"\bBackgroundColor\s+(#[0-9a-fA-F]{6})\b")
_FOREGROUND_COLOR = re.compile(r"\bForegroundColor\s+(#[0-9a-fA-F]{6})\b")
_DESCRIPTION = re.compile(r'\bDescription\s+"([^"]*)"')
_USER_SELECTABLE = re.compile(r"\bIsUserSelectable\s+([01])\b")

_PARAMETER_KEYWORDS = frozenset(
    {
        "Type",
        "MinValue",
        "MaxValue",
        "DefaultValue",
        "RangePower",
        "ValueFormat",
        "CanSyncToHostBPM",
        "IsAdvanced",
        "IsOutput",
        "Description",
    }
)
_IGNORED_LINES = frozenset({"Ok", "EndProgram"})


def split_tokens(line: str) -> list[str]:
    """Whitespace tokenizer that keeps quoted literals (without their quotes) as one token."""
    tokens: list[str] = []
    for match in _TOKEN.finditer(line):
        quoted, bare = match.groups()
        tokens.append(quoted if quoted is not None else bare)
    return tokens


def quoted_tokens(line: str) -> list[str]:
    return _QUOTED.findall(line)


def _lines(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [line.strip() for line in raw.splitlines()]


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value


def _to_float(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        number = float(value)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _keyword_value(tokens: list[str], keyword: str) -> str | None:
    try:
        index = tokens.index(keyword)
    except ValueError:
        return None
    return tokens[index + 1] if index + 1 < len(tokens) else None


def step_for_range(minimum: float | None, maximum: float | None) -> float:
    if minimum is None or maximum is None:
        return 0.01
    span = abs(maximum - minimum)
    if span <= 1:
        return 0.001
    if span <= 10:
        return 0.01
    return 0.1


def decode_program(raw: str | None) -> Program:
    """Decode a program dump into a :class:`Program`.

    Unknown or malformed lines are skipped. ``SetChain`` with inline plugin ids
    is authoritative for that chain; ``SetPluginSlot`` only contributes to the
    most recently declared chain when that chain has no inline list.
    """
    preset: str | None = None
    chains: dict[str, list[str]] = {}
    inline_chains: set[str] = set()
    slots: dict[str, str] = {}
    params: dict[str, dict[str, str]] = {}
    current_chain: str | None = None

    for line in _lines(raw):
        if not line or line in _IGNORED_LINES:
            continue

        match = _SET_PRESET.match(line)
        if match:
            name = (match.group(1) or "").strip()
            if name:
                preset = name
            continue

        match = _SET_PARAM.match(line)
        if match:
            plugin, param, value = match.groups()
            params.setdefault(plugin, {})[param] = _strip_quotes(value.strip())
            continue

        tokens = line.split()
        directive = tokens[0]

        if directive == "SetChain":
            if len(tokens) < 2:
                continue
            current_chain = tokens[1]
            if len(tokens) > 2:
                chains[current_chain] = tokens[2:]
                inline_chains.add(current_chain)
            else:
                chains.setdefault(current_chain, [])
            continue

        if directive == "SetPluginSlot":
            if len(tokens) < 3:
                continue
            slot, plugin = tokens[1], tokens[2]
            slots[slot] = plugin
            if current_chain is not None and current_chain not in inline_chains:
                chains[current_chain].append(plugin)
            continue

    for members in chains.values():
        for plugin in members:
            params.setdefault(plugin, {})

    return Program(preset=preset, chains=chains, slots=slots, params=params)


def decode_current_preset(raw: str | None) -> str | None:
    for line in _lines(raw):
        match = _SET_PRESET.match(line)
        if match:
            return (match.group(1) or "").strip() or None
    return None


def decode_plugin_configs(raw: str | None) -> dict[str, PluginTypeMeta]:
    plugins: dict[str, PluginTypeMeta] = {}
    for line in _lines(raw):
        if not line.startswith("PluginConfig "):
            continue
        tokens = line.split()
        if len(tokens) < 2:
            continue

        background = _BACKGROUND_COLOR.search(line)
        foreground = _FOREGROUND_COLOR.search(line)
        description = _DESCRIPTION.search(line)
        selectable = _USER_SELECTABLE.search(line)

        plugins[tokens[1]] = PluginTypeMeta(
            background_color=background.group(1) if background else None,
            foreground_color=foreground.group(1) if foreground else None,
            description=description.group(1) if description else "",
            selectable=selectable is not None and selectable.group(1) == "1",
        )
    return plugins


def decode_parameter_configs(raw: str | None) -> dict[str, dict[str, ParameterMeta]]:
    """Decode ``ParameterConfig`` lines keyed by plugin base type, then parameter name.

    Some engine builds omit the plugin name (``ParameterConfig Gain Type Knob ...``);
    those lines are attached to the plugin of the preceding ``PluginConfig`` line.
    """
    meta: dict[str, dict[str, ParameterMeta]] = {}
    current_plugin: str | None = None

    for line in _lines(raw):
        if line.startswith("PluginConfig "):
            tokens = line.split()
            current_plugin = tokens[1] if len(tokens) > 1 else current_plugin
            continue
        if not line.startswith("ParameterConfig "):
            continue

        tokens = split_tokens(line)
        if len(tokens) < 3:
            continue

        if tokens[2] in _PARAMETER_KEYWORDS:
            if current_plugin is None:
                continue
            plugin, param, fields = current_plugin, tokens[1], tokens[2:]
        else:
            plugin, param, fields = tokens[1], tokens[2], tokens[3:]

        minimum = _to_float(_keyword_value(fields, "MinValue"))
        maximum = _to_float(_keyword_value(fields, "MaxValue"))
        is_output = _keyword_value(fields, "IsOutput")

        meta.setdefault(plugin, {})[param] = ParameterMeta(
            type=_keyword_value(fields, "Type"),
            min=minimum,
            max=maximum,
            default=_to_float(_keyword_value(fields, "DefaultValue")),
            step=step_for_range(minimum, maximum),
            is_output=_to_float(is_output) == 1,
            value_format=_keyword_value(fields, "ValueFormat"),
        )
    return meta


def decode_file_trees(raw: str | None) -> FileOptionTree:
    trees: FileOptionTree = {}
    for line in _lines(raw):
        if not line.startswith("ParameterFileTree "):
            continue
        parts = line.split()
        if len(parts) < 4:
            continue
        options = quoted_tokens(line)
        if not options:
            continue
        trees[f"{parts[1]}.{parts[2]}"] = options
    return trees


def decode_config(raw: str | None) -> EngineConfig:
    return EngineConfig(
        plugins=decode_plugin_configs(raw),
        params=decode_parameter_configs(raw),
        file_trees=decode_file_trees(raw),
    )
