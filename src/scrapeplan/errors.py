# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""scrapeplan exception hierarchy.

All scrapeplan-specific errors inherit from ScrapePlanError, allowing callers
to catch the base class for any failure or specific subclasses for targeted
handling.  Most of these never reach the caller of the public API: synthesis
recovers MalformedResponseError / ProviderUnavailableError through the
fallback chain, and the sandbox turns the rest into validation issues.
"""

from __future__ import annotations


class ScrapePlanError(Exception):
    """Base exception for all scrapeplan errors."""


class ConfigError(ScrapePlanError):
    """Invalid configuration value or unknown configuration key."""


class MalformedResponseError(ScrapePlanError):
    """LLM output could not be parsed or is missing required fields."""

    def __init__(self, message: str, *, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class ProviderUnavailableError(ScrapePlanError):
    """LLM provider call failed (network, timeout, quota, token limit)."""

    def __init__(self, message: str, *, provider: str = "", token_limit: bool = False) -> None:
        super().__init__(message)
        self.provider = provider
        self.token_limit = token_limit


class SelectorMissError(ScrapePlanError):
    """A selector matched zero elements."""

    def __init__(self, message: str, *, selector: str = "") -> None:
        super().__init__(message)
        self.selector = selector


class DomainNotAllowedError(ScrapePlanError):
    """Entry URL host is outside the sandbox allow-list."""

    def __init__(self, message: str, *, host: str = "") -> None:
        super().__init__(message)
        self.host = host


class PlanPreconditionError(ScrapePlanError):
    """Plan is not runnable (no entry URLs, empty list selector)."""


class NavigationError(ScrapePlanError):
    """Page navigation failed after the plan's retry budget was spent."""

    def __init__(self, message: str, *, url: str = "", attempts: int = 0) -> None:
        super().__init__(message)
        self.url = url
        self.attempts = attempts


class SandboxTimeoutError(ScrapePlanError):
    """Sandbox extraction lost the race against the wall-clock timer."""

    def __init__(self, message: str, *, timeout_ms: int = 0) -> None:
        super().__init__(message)
        self.timeout_ms = timeout_ms


class FieldNormalizationError(ScrapePlanError):
    """A single extracted field could not be normalized."""

    def __init__(self, message: str, *, field: str = "", value: object = None) -> None:
        super().__init__(message)
        self.field = field
        self.value = value


def error_kind_for(exc: BaseException) -> str | None:
    """Map an exception to its symbolic retryable-error tag, if any.

    Tags match ``RetryableErrorKind`` values in :mod:`scrapeplan.models`.
    """
    if isinstance(exc, SandboxTimeoutError | TimeoutError):
        return "TIMEOUT"
    if isinstance(exc, SelectorMissError):
        return "SELECTOR_NOT_FOUND"
    if isinstance(exc, ProviderUnavailableError):
        msg = str(exc).lower()
        if "429" in msg or "rate limit" in msg:
            return "RATE_LIMITED"
        return "NETWORK_ERROR"
    if isinstance(exc, NavigationError | ConnectionError | OSError):
        return "NETWORK_ERROR"
    msg = str(exc).lower()
    if "timeout" in msg:
        return "TIMEOUT"
    if "net::" in msg or "connection" in msg:
        return "NETWORK_ERROR"
    return None
