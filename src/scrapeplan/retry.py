# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Bounded retry driven by a plan's RetryPolicy.

An exception is retried only when :func:`error_kind_for` maps it to a kind
listed in ``policy.retryable_error_kinds``; everything else propagates on
the first failure.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from .errors import NavigationError, error_kind_for
from .models import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    label: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            kind = error_kind_for(exc)
            if attempt >= policy.max_attempts or not policy.is_retryable(kind):
                if isinstance(exc, NavigationError):
                    exc.attempts = attempt
                raise
            delay_ms = policy.delay_ms(attempt)
            logger.warning(
                "%s failed (attempt %d/%d, kind=%s), retrying in %dms: %s",
                label,
                attempt,
                policy.max_attempts,
                kind,
                delay_ms,
                exc,
            )
            await sleep(delay_ms / 1000)
