# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Ordered fallback stages.

A stage is a named async callable returning :class:`Ok` or :class:`Err`.
:func:`run_fallback_chain` tries stages in order and stops at the first
``Ok``; an exception escaping a stage counts as ``Err`` for that stage.
The last stage of a synthesis chain is deterministic and never fails.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from ..errors import ScrapePlanError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True, slots=True)
class Err:
    error: str
    exception: BaseException | None = None


Result = Ok[T] | Err


@dataclass(frozen=True, slots=True)
class FallbackStage(Generic[T]):
    name: str
    run: Callable[[], Awaitable[Ok[T] | Err]]


@dataclass(frozen=True, slots=True)
class StageFailure:
    stage: str
    error: str
    exception: BaseException | None = None


@dataclass(frozen=True, slots=True)
class FallbackOutcome(Generic[T]):
    value: T
    stage: str
    failures: tuple[StageFailure, ...] = field(default_factory=tuple)


class FallbackExhaustedError(ScrapePlanError):
    def __init__(self, failures: Sequence[StageFailure]) -> None:
        detail = "; ".join(f"{f.stage}: {f.error}" for f in failures) or "no stages"
        super().__init__(f"All fallback stages failed ({detail})")
        self.failures = tuple(failures)


async def run_fallback_chain(stages: Sequence[FallbackStage[T]]) -> FallbackOutcome[T]:
    failures: list[StageFailure] = []
    for stage in stages:
        try:
            result = await stage.run()
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - a failing stage hands over to the next one
            result = Err(str(exc) or type(exc).__name__, exc)

        if isinstance(result, Ok):
            if failures:
                logger.info(
                    "Fallback stage %r satisfied the request after %d failed stage(s)", stage.name, len(failures)
                )
            else:
                logger.info("Fallback stage %r satisfied the request", stage.name)
            return FallbackOutcome(value=result.value, stage=stage.name, failures=tuple(failures))

        failures.append(StageFailure(stage.name, result.error, result.exception))
        logger.warning("Fallback stage %r failed: %s", stage.name, result.error)

    raise FallbackExhaustedError(failures)
