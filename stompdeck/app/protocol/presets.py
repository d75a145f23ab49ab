from __future__ import annotations

import re

_NUMERIC_PREFIX = re.compile(r"^(\d+)")
_PRESET_LIST_MARKERS = frozenset({"Presets", "Ok"})


def decode_presets(raw: str | None) -> list[str]:
    return [token for token in (raw or "").split() if token not in _PRESET_LIST_MARKERS]


def _preset_sort_key(name: str) -> tuple[int, int, str, str]:
    match = _NUMERIC_PREFIX.match(name)
    if match:
        return (0, int(match.group(1)), name.lower(), name)
    # Names without a numeric prefix always sort after numbered ones.
    return (1, 0, name.lower(), name)


def sort_presets(names: list[str]) -> list[str]:
    """Order presets for display: numbered presets by number, then the rest alphabetically."""
    return sorted(dict.fromkeys(names), key=_preset_sort_key)
