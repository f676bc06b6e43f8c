# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Sandbox stage timer for performance metrics and timeout diagnostics.

Created outside the ``asyncio.timeout`` block so it survives cancellation
and can still say which stage was running when the wall-clock timer won.
"""

from __future__ import annotations

import time
from dataclasses import dataclass


@dataclass(slots=True)
class StageRecord:
    name: str
    start_ns: int
    end_ns: int = 0


_HINTS = {
    "navigation": "Entry page is slow to load; raise navigation_timeout_ms or check the URL.",
    "extraction": "Selectors match very many elements; narrow the list selector.",
    "diagnostics": "Highlighting is slow on this page; disable enable_highlighting.",
    "screenshot": "Full-page screenshot is slow; disable enable_screenshots.",
    "cross_validation": "Example pages are slow; pass fewer example URLs.",
}


class PipelineTimer:
    """Track stage transitions of one validation run."""

    __slots__ = ("_stages", "_current", "_start_ns")

    def __init__(self) -> None:
        self._stages: list[StageRecord] = []
        self._current: StageRecord | None = None
        self._start_ns: int = time.monotonic_ns()

    def stage(self, name: str) -> None:
        """End previous stage + start new stage."""
        now = time.monotonic_ns()
        if self._current is not None:
            self._current.end_ns = now
            self._stages.append(self._current)
        self._current = StageRecord(name=name, start_ns=now)

    def finalize(self) -> None:
        if self._current is not None:
            self._current.end_ns = time.monotonic_ns()
            self._stages.append(self._current)
            self._current = None

    @property
    def current_stage(self) -> str | None:
        return self._current.name if self._current else None

    @property
    def total_ms(self) -> float:
        return round((time.monotonic_ns() - self._start_ns) / 1e6, 1)

    def elapsed_per_stage(self) -> dict[str, float]:
        """{stage_name: elapsed_ms}, repeated stages summed, current stage included."""
        now = time.monotonic_ns()
        result: dict[str, float] = {}
        records = list(self._stages)
        if self._current is not None:
            records.append(StageRecord(self._current.name, self._current.start_ns, now))
        for s in records:
            result[s.name] = round(result.get(s.name, 0.0) + (s.end_ns - s.start_ns) / 1e6, 1)
        return result

    def timeout_report(self) -> dict:
        now = time.monotonic_ns()
        completed = [{"stage": s.name, "ms": round((s.end_ns - s.start_ns) / 1e6, 1)} for s in self._stages]
        current = self.current_stage or "unknown"
        current_ms = round((now - self._current.start_ns) / 1e6, 1) if self._current else 0
        return {
            "error": "timeout",
            "completed_stages": completed,
            "timed_out_at": current,
            "timed_out_stage_ms": current_ms,
            "total_ms": round((now - self._start_ns) / 1e6, 1),
            "hint": self.hint_for_stage(current),
        }

    @staticmethod
    def hint_for_stage(stage: str) -> str:
        return _HINTS.get(stage, f"Timed out during '{stage}' stage.")
