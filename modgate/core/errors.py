"""Project error hierarchy."""

from __future__ import annotations

from typing import Any


class ModGateError(Exception):
    """Base error."""

    status_code = 500
    code = "modgate_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class InvalidConfiguration(ModGateError):
    """Raised when a session or rule configuration cannot be used."""

    status_code = 400
    code = "invalid_configuration"


class InvalidContent(ModGateError):
    """Raised when submitted content or request fields are malformed."""

    status_code = 400
    code = "invalid_content"


class SessionNotFound(ModGateError):
    status_code = 404
    code = "session_not_found"


class SessionInactive(ModGateError):
    """Raised for operations on a stopped session.

    Carries the last statistics snapshot so callers can still display it.
    """

    status_code = 409
    code = "session_inactive"

    def __init__(self, message: str = "", statistics: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.statistics = statistics


class AdapterError(ModGateError):
    """Adapter-level failure; recovered locally, never surfaced over HTTP."""

    kind = "adapter_unavailable"


class AdapterTimeout(AdapterError):
    code = "adapter_timeout"
    kind = "timeout"


class AdapterUnavailable(AdapterError):
    code = "adapter_unavailable"
    kind = "adapter_unavailable"


class AdapterInvalidInput(AdapterError):
    code = "adapter_invalid_input"
    kind = "invalid_input"


class AggregationDegraded(ModGateError):
    """Marker for results produced without any successful adapter."""

    status_code = 200
    code = "aggregation_degraded"


class InternalError(ModGateError):
    status_code = 500
    code = "internal_error"


class RuleNotFound(ModGateError):
    status_code = 404
    code = "rule_not_found"
