"""Custom exception hierarchy for MISP MCP.

Security: Exception messages are designed to be safe for client exposure
where appropriate. Internal details should only be logged, never returned.
"""

from __future__ import annotations


class MISPMCPError(Exception):
    """Base exception for MISP MCP.

    All custom exceptions inherit from this class, allowing callers to
    catch all MISP-specific errors with a single except clause.
    """

    def __init__(self, message: str, *, safe_message: str | None = None) -> None:
        """Initialize exception.

        Args:
            message: Full error message (for logging)
            safe_message: Client-safe message (no internal details)
        """
        super().__init__(message)
        self._safe_message = safe_message or message

    @property
    def safe_message(self) -> str:
        """Return client-safe error message."""
        return self._safe_message


class ConfigurationError(MISPMCPError):
    """Configuration or credential error.

    Raised when:
    - MISP API key is missing
    - Key file has insecure permissions
    - MISP URL or numeric settings are invalid
    """

    pass


class TransportError(MISPMCPError):
    """MISP connection failure.

    Raised when:
    - Cannot connect to MISP
    - Connection timeout
    - TLS or other network errors
    """

    def __init__(self, message: str) -> None:
        # Never expose connection details to clients
        super().__init__(
            message,
            safe_message="Unable to connect to MISP. Check server status."
        )


class RequestConstructionError(TransportError):
    """The outgoing request could not be built (malformed URL or payload)."""

    pass


class StatusError(MISPMCPError):
    """MISP answered with an HTTP status outside 200-299.

    The response body is not inspected.
    """

    def __init__(self, status_code: int, path: str = "") -> None:
        message = f"http status {status_code}"
        if path:
            message = f"{message} for {path}"
        super().__init__(
            message,
            safe_message=f"MISP returned HTTP status {status_code}."
        )
        self.status_code = status_code
        self.path = path


class DecodeError(MISPMCPError):
    """Response body is not valid JSON or does not match the expected shape."""

    def __init__(self, message: str) -> None:
        super().__init__(
            message,
            safe_message="Unexpected response from MISP. Check server logs for details."
        )


class ValidationError(MISPMCPError):
    """Input validation failure.

    These errors are generally safe to return to clients as they
    describe input problems, not internal state.
    """

    pass
