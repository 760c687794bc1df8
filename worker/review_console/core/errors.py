"""Error taxonomy shared by the runner, the vendor client and the HTTP layer."""

from typing import Any, Dict, Optional


class ConsoleError(RuntimeError):
    """Base class for failures that are reported to callers as JSON."""

    http_status = 500

    def __init__(self, message: str, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class InvalidRequest(ConsoleError):
    """Raised when caller input cannot be turned into a search request."""

    http_status = 400


class ConfigurationError(ConsoleError):
    """Raised when mandatory configuration is missing."""

    http_status = 500


class UpstreamUnavailable(ConsoleError):
    """Raised on network failures or malformed vendor responses."""

    http_status = 502


class UpstreamRunFailed(ConsoleError):
    """Raised when the vendor reports that a run did not succeed."""

    http_status = 502


class RunTimedOut(ConsoleError):
    """Raised when a run does not finish within the local poll budget."""

    http_status = 504
