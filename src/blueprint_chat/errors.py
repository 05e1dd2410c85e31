"""Exception taxonomy for the chat service."""

from __future__ import annotations

from datetime import datetime, timezone


class BlueprintChatError(Exception):
    """Base class for all service errors."""


class InputValidationError(BlueprintChatError):
    """Request is missing required fields; rejected before any model call."""

    status_code = 400


class GatewayError(BlueprintChatError):
    """The model gateway call failed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GatewayTimeoutError(GatewayError):
    def __init__(self, timeout: float) -> None:
        super().__init__(f"Request timed out after {timeout:g}s")
        self.timeout = timeout


class CircuitOpenError(GatewayError):
    """Raised without invoking the operation while a circuit is open."""

    def __init__(
        self,
        circuit_name: str,
        next_retry_at: datetime,
        *,
        retry_in: float | None = None,
    ) -> None:
        if retry_in is None:
            retry_in = (next_retry_at - datetime.now(timezone.utc)).total_seconds()
        self.retry_in = max(0, round(retry_in))
        super().__init__(f"Circuit breaker '{circuit_name}' is open. Retry in {self.retry_in}s")
        self.circuit_name = circuit_name
        self.next_retry_at = next_retry_at


class ExtractionError(BlueprintChatError):
    """A structured block in model output could not be parsed."""


class ClassificationError(BlueprintChatError):
    """Intent classifier output was malformed."""
