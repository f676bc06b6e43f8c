# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""structlog + stdlib bridge. Humans: ConsoleRenderer, machines: JSONRenderer.

Leaf module, no scrapeplan imports. Safe to call early in startup.
Library modules only ever do ``logging.getLogger(__name__)``; this module
decides how those records are rendered.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog


def configure(*, json_output: bool | None = None, level: str | None = None) -> None:
    """Configure structlog with stdlib bridge.

    Args:
        json_output: True for JSON lines, False for human-readable output.
            Defaults to ``SCRAPEPLAN_LOG_JSON``.
        level: Root logger level. Defaults to ``SCRAPEPLAN_LOG_LEVEL`` or INFO.
    """
    if json_output is None:
        json_output = os.environ.get("SCRAPEPLAN_LOG_JSON", "").strip().lower() in ("1", "true", "yes")
    if level is None:
        level = os.environ.get("SCRAPEPLAN_LOG_LEVEL", "INFO").strip() or "INFO"

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def bind_run_context(**values: object) -> None:
    """Attach key/values (plan_id, url, stage, ...) to every following log line."""
    structlog.contextvars.bind_contextvars(**values)


def clear_run_context(*keys: str) -> None:
    """Drop the given context keys, or everything when called without keys."""
    if keys:
        structlog.contextvars.unbind_contextvars(*keys)
    else:
        structlog.contextvars.clear_contextvars()
