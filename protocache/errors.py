"""Exception types raised by the cache, its store and the fetch collaborator."""

from __future__ import annotations

from typing import Literal, Optional

DataState = Literal["unchanged", "unknown"]


class StoreError(RuntimeError):
    """Base error for snapshot store operations."""

    def __init__(self, message: str, data_state: DataState = "unknown") -> None:
        super().__init__(message)
        self.data_state: DataState = data_state


class ConfigurationError(StoreError):
    """Raised when the store is constructed with invalid settings."""

    def __init__(self, message: str) -> None:
        super().__init__(message, "unknown")


class DataSizeExceededError(StoreError):
    """Raised when a snapshot is larger than the configured ceiling."""

    def __init__(
        self,
        data_size_bytes: int,
        max_data_size_bytes: int,
        data_state: DataState = "unchanged",
    ) -> None:
        super().__init__(
            f"Snapshot data size ({data_size_bytes} bytes) exceeds maximum limit "
            f"({max_data_size_bytes} bytes)",
            data_state,
        )
        self.data_size_bytes = data_size_bytes
        self.max_data_size_bytes = max_data_size_bytes


class SizeEstimationError(StoreError):
    """Raised when the snapshot size cannot be measured."""

    def __init__(self, data_state: DataState = "unknown") -> None:
        super().__init__("Failed to estimate data size for snapshot", data_state)


class ValidationError(ValueError):
    """Raised when a repository method receives an out-of-contract argument."""

    def __init__(self, message: str, field: str) -> None:
        super().__init__(message)
        self.field = field


class UpstreamApiError(RuntimeError):
    """HTTP-level failure reported by the ProtoPedia API."""

    def __init__(
        self,
        message: str,
        *,
        status: int,
        status_text: str = "",
        method: str = "GET",
        url: str = "",
        payload: Optional[object] = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.status_text = status_text
        self.method = method
        self.url = url
        self.payload = payload


class FetchTimeoutError(TimeoutError):
    """Raised when the fetcher's own deadline expires."""

    def __init__(self, timeout_ms: int, message: str | None = None) -> None:
        super().__init__(message or f"Upstream request timed out after {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class FetchAbortedError(RuntimeError):
    """Raised when the caller aborts an upstream request."""

    def __init__(self, message: str = "Upstream request aborted") -> None:
        super().__init__(message)


__all__ = [
    "ConfigurationError",
    "DataSizeExceededError",
    "DataState",
    "FetchAbortedError",
    "FetchTimeoutError",
    "SizeEstimationError",
    "StoreError",
    "UpstreamApiError",
    "ValidationError",
]
