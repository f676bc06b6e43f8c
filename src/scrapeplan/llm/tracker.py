# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Per-session LLM usage tracking.

One :class:`LLMUsageTracker` per synthesis session, created and owned by the
caller and handed to the synthesizer.  There is no module-level instance:
two concurrent sessions never see each other's interactions.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

from . import LLMProvider, LLMRequest, LLMResponse

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(slots=True)
class TrackedRequest:
    id: str
    service: str
    method: str
    provider: str
    model: str
    prompt: str
    system_message: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    format: str | None = None
    timestamp: str = field(default_factory=_now_iso)


@dataclass(slots=True)
class TrackedResponse:
    content: str = ""
    tokens_used: int | None = None
    finish_reason: str | None = None
    duration_ms: int = 0
    success: bool = False
    error: str | None = None
    timestamp: str = field(default_factory=_now_iso)


@dataclass(slots=True)
class Interaction:
    request: TrackedRequest
    response: TrackedResponse = field(default_factory=TrackedResponse)
    context: dict[str, Any] = field(default_factory=dict)


class LLMUsageTracker:
    def __init__(self, session_id: str | None = None) -> None:
        self.reset(session_id)

    def reset(self, session_id: str | None = None) -> None:
        """Start a new session, dropping all recorded interactions."""
        self.session_id = session_id or f"session-{time.time_ns() // 1_000_000}"
        self.started_at = _now_iso()
        self._interactions: list[Interaction] = []
        self._by_id: dict[str, Interaction] = {}

    @property
    def interactions(self) -> list[Interaction]:
        return list(self._interactions)

    def track_request(self, request: LLMRequest, *, provider: str, model: str) -> str:
        request_id = f"req-{uuid.uuid4().hex[:12]}"
        interaction = Interaction(
            request=TrackedRequest(
                id=request_id,
                service=request.service,
                method=request.method,
                provider=provider,
                model=model,
                prompt=request.prompt,
                system_message=request.system_message,
                max_tokens=request.max_tokens,
                temperature=request.temperature,
                format=str(request.format),
            ),
            context=dict(request.context),
        )
        self._interactions.append(interaction)
        self._by_id[request_id] = interaction
        return request_id

    def track_response(
        self,
        request_id: str,
        *,
        success: bool,
        duration_ms: int,
        response: LLMResponse | None = None,
        error: str | None = None,
    ) -> None:
        interaction = self._by_id.get(request_id)
        if interaction is None:
            logger.debug("track_response for unknown request id %s", request_id)
            return
        interaction.response = TrackedResponse(
            content=response.content if response else "",
            tokens_used=response.tokens_used if response else None,
            finish_reason=response.finish_reason if response else None,
            duration_ms=duration_ms,
            success=success,
            error=error,
        )

    def add_context(self, request_id: str, **context: Any) -> None:
        interaction = self._by_id.get(request_id)
        if interaction is not None:
            interaction.context.update(context)

    # -- reporting ------------------------------------------------------

    def summary(self) -> dict[str, Any]:
        total = len(self._interactions)
        ok = sum(1 for i in self._interactions if i.response.success)
        return {
            "session_id": self.session_id,
            "total_requests": total,
            "total_tokens": sum(i.response.tokens_used or 0 for i in self._interactions),
            "total_duration_ms": sum(i.response.duration_ms for i in self._interactions),
            "success_rate": (ok / total * 100) if total else 0.0,
            "provider_breakdown": dict(Counter(i.request.provider for i in self._interactions)),
            "service_breakdown": dict(Counter(i.request.service for i in self._interactions)),
        }

    def to_json(self, indent: int | None = 2) -> str:
        data = {
            "session_id": self.session_id,
            "start_time": self.started_at,
            "end_time": _now_iso(),
            "interactions": [asdict(i) for i in self._interactions],
            "summary": self.summary(),
        }
        return json.dumps(data, indent=indent, ensure_ascii=False)

    def markdown_report(self) -> str:
        s = self.summary()
        lines = [
            "# LLM Interaction Report",
            "",
            f"**Session ID:** {self.session_id}",
            f"**Start Time:** {self.started_at}",
            f"**Total Duration:** {s['total_duration_ms']}ms",
            "",
            "## Summary",
            "",
            f"- **Total Requests:** {s['total_requests']}",
            f"- **Total Tokens:** {s['total_tokens']}",
            f"- **Success Rate:** {s['success_rate']:.2f}%",
            "",
            "### Provider Breakdown",
            "",
        ]
        lines += [f"- **{name}:** {count} requests" for name, count in s["provider_breakdown"].items()]
        lines += ["", "### Service Breakdown", ""]
        lines += [f"- **{name}:** {count} requests" for name, count in s["service_breakdown"].items()]
        lines += ["", "## Detailed Interactions", ""]
        for n, i in enumerate(self._interactions, 1):
            lines += [
                f"### Interaction {n}: {i.request.service}.{i.request.method}",
                "",
                f"**Request ID:** {i.request.id}",
                f"**Provider:** {i.request.provider}",
                f"**Model:** {i.request.model}",
                f"**Duration:** {i.response.duration_ms}ms",
                f"**Success:** {'yes' if i.response.success else 'no'}",
                f"**Tokens Used:** {i.response.tokens_used if i.response.tokens_used is not None else 'N/A'}",
            ]
            for key in ("url", "domain", "step"):
                if key in i.context:
                    lines.append(f"**{key.capitalize()}:** {i.context[key]}")
            lines += [
                "",
                "#### System Message",
                "```",
                i.request.system_message or "None",
                "```",
                "",
                "#### Prompt",
                "```",
                i.request.prompt,
                "```",
                "",
                "#### Response",
                "```",
                i.response.content,
                "```",
                "",
            ]
            if i.response.error:
                lines += ["#### Error", "```", i.response.error, "```", ""]
            lines += ["---", ""]
        return "\n".join(lines)


async def tracked_generate(tracker: LLMUsageTracker, provider: LLMProvider, request: LLMRequest) -> LLMResponse:
    """Call *provider* and record the interaction; errors are recorded and re-raised."""
    request_id = tracker.track_request(request, provider=provider.name, model=getattr(provider, "model", ""))
    t0 = time.monotonic()
    try:
        response = await provider.generate(request)
    except Exception as exc:
        tracker.track_response(
            request_id, success=False, duration_ms=int((time.monotonic() - t0) * 1000), error=str(exc)
        )
        raise
    tracker.track_response(
        request_id, success=True, duration_ms=int((time.monotonic() - t0) * 1000), response=response
    )
    return response
