from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from stompdeck.app.engine.gateway_client import GatewayError
from stompdeck.app.models.program import Program
from stompdeck.app.services.param_values import values_match

logger = logging.getLogger(__name__)

FetchAndDecode = Callable[[], Awaitable[Program | None]]
ProgramPredicate = Callable[[Program], bool]


@dataclass(slots=True)
class ConfirmationResult:
    confirmed: bool
    attempts: int
    program: Program | None = None


def preset_is(name: str) -> ProgramPredicate:
    return lambda program: program.preset == name


def param_equals(plugin: str, param: str, expected: str | float) -> ProgramPredicate:
    """String expectations compare exactly; numeric ones tolerate the engine's fixed-precision echo."""
    return lambda program: values_match(program.param(plugin, param), expected)


async def confirm_until(
    fetch_and_decode: FetchAndDecode,
    predicate: ProgramPredicate,
    *,
    max_attempts: int,
    interval_seconds: float,
) -> ConfirmationResult:
    """Re-fetch until ``predicate`` holds or ``max_attempts`` polls are spent.

    Never raises on non-convergence or on a failed fetch; a fetch that fails or
    yields nothing counts as an unsuccessful attempt.
    """
    latest: Program | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            program = await fetch_and_decode()
        except GatewayError as exc:
            logger.debug("Confirmation fetch %d/%d failed: %s", attempt, max_attempts, exc)
            program = None

        if program is not None:
            latest = program
            if predicate(program):
                return ConfirmationResult(confirmed=True, attempts=attempt, program=program)

        if attempt < max_attempts:
            await asyncio.sleep(interval_seconds)

    logger.info("State not confirmed after %d attempts", max_attempts)
    return ConfirmationResult(confirmed=False, attempts=max(max_attempts, 0), program=latest)
