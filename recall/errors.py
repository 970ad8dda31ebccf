"""
Shared error types for recall services.
"""

from typing import Optional


class ValidationIssue(ValueError):
    def __init__(
        self,
        message: str,
        field: str = "unknown",
        error_type: str = "invalid",
        error_code: str | None = None,
        data: dict | None = None,
    ):
        super().__init__(message)
        self.field = field
        self.error_type = error_type
        self.error_code = error_code
        self.data = data


class StoreUnavailableError(RuntimeError):
    """Raised when the durable document store cannot be reached."""


class EmbeddingProviderError(RuntimeError):
    """Raised when the embedding provider is unavailable."""


class ForgettingCycleError(RuntimeError):
    """Raised when a single record cannot be evaluated during a sweep."""

    def __init__(self, record_id: Optional[str], detail: str):
        super().__init__(f"record {record_id}: {detail}")
        self.record_id = record_id
        self.detail = detail
