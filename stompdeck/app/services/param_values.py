from __future__ import annotations

import math
import re

_LEADING_NUMBER = re.compile(r"^[-+]?(?:\d+\.?\d*|\.\d+)(?:e[-+]?\d+)?", re.IGNORECASE)


class InvalidParamValueError(ValueError):
    pass


def to_number_loose(raw: str | float | int | None) -> float | None:
    """Read the leading number of a raw dump value (``"-3.5"``, ``"0 dB"``, ``"12.0ms"``)."""
    if isinstance(raw, bool):
        return float(raw)
    if isinstance(raw, (int, float)):
        return float(raw) if math.isfinite(raw) else None
    if not isinstance(raw, str):
        return None
    match = _LEADING_NUMBER.match(raw.strip())
    if not match:
        return None
    return float(match.group(0))


def parse_user_number(raw: str | float | int) -> float:
    if isinstance(raw, bool):
        raise InvalidParamValueError(f"'{raw}' is not a number")
    if isinstance(raw, (int, float)):
        number = float(raw)
    else:
        text = str(raw).strip().replace(",", ".")
        try:
            number = float(text)
        except ValueError:
            raise InvalidParamValueError(f"'{raw}' is not a number") from None
    if not math.isfinite(number):
        raise InvalidParamValueError(f"'{raw}' is not a finite number")
    return number


def is_on(raw: str | float | None) -> bool:
    number = to_number_loose(raw)
    return number is not None and number >= 0.5


def format_param_value(value: float) -> str:
    # Same fixed precision the engine uses when it dumps numeric params.
    return f"{value:.6f}"


def values_match(actual: str | None, expected: str | float) -> bool:
    if isinstance(expected, str):
        return actual == expected
    number = to_number_loose(actual)
    if number is None:
        return False
    return math.isclose(number, expected, rel_tol=1e-6, abs_tol=1e-6)
