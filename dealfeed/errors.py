"""Error types raised by the ingestion pipeline."""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Missing or invalid settings. Fatal, never retried."""


class PipelineError(Exception):
    """Base for errors that are contained at the batch or item level."""


class UpstreamApiError(PipelineError):
    def __init__(self, status_code: int, body: str, *, operation: str | None = None) -> None:
        self.status_code = status_code
        self.body = body
        self.operation = operation
        super().__init__(f"Upstream API error {status_code} ({operation or 'request'}): {body[:500]}")


class UpstreamTimeoutError(PipelineError, TimeoutError):
    def __init__(self, operation: str, timeout: float) -> None:
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} timed out after {timeout:g}s")


class NormalizationError(PipelineError):
    """Upstream item is structurally malformed."""


class StorageError(PipelineError):
    """A query or execute call against the store failed."""
