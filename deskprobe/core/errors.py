from __future__ import annotations

from typing import Optional


class DeskProbeError(Exception):
    """Base class for all deskprobe errors."""


class NotConnectedError(DeskProbeError):
    def __init__(self, message: str = "Not connected. Call connect() first.") -> None:
        super().__init__(message)


class ElementNotFoundError(DeskProbeError):
    def __init__(self, description: str, timeout_ms: Optional[int] = None) -> None:
        self.description = description
        self.timeout_ms = timeout_ms
        if timeout_ms is None:
            message = f"Element not found: {description}"
        else:
            message = f"Timeout waiting for element: {description} ({timeout_ms}ms)"
        super().__init__(message)


class BackendUnavailableError(DeskProbeError):
    pass


class BridgeError(DeskProbeError):
    """The helper process reported an error or went away."""


class BridgeTimeoutError(BridgeError):
    def __init__(self, method: str, timeout_s: float) -> None:
        self.method = method
        self.timeout_s = timeout_s
        super().__init__(f"Bridge call '{method}' timed out after {timeout_s:g}s")


class ProviderError(DeskProbeError):
    def __init__(self, provider: str, message: str, status_code: Optional[int] = None) -> None:
        self.provider = provider
        self.status_code = status_code
        prefix = f"{provider} API error"
        if status_code is not None:
            prefix = f"{prefix} ({status_code})"
        super().__init__(f"{prefix}: {message}")


class ParseFailureError(DeskProbeError):
    def __init__(self, raw: str) -> None:
        self.raw = raw
        preview = raw[:200]
        super().__init__(f"Could not parse JSON from model response: {preview}")
