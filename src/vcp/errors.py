"""Error types shared across extraction, cache and evaluation."""

from __future__ import annotations


class VCPError(Exception):
    """Base class for all vcp errors."""


class ExtractionError(VCPError):
    """Model output was still malformed after the corrective retry.

    Carried inside a failed ``ExtractionOutcome``; the pipeline degrades to
    deterministic spans instead of raising it.
    """

    def __init__(self, message: str, *, reason: str = "invalid_response",
                 validation_errors: list[str] | None = None,
                 raw_response: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.validation_errors = validation_errors or []
        self.raw_response = raw_response


class RateLimitError(VCPError):
    """Provider kept answering 429 after its own retries."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class CacheCorruptionError(VCPError):
    """Persisted cache payload could not be parsed."""


class GoldenSetIntegrityError(VCPError):
    """Ground-truth span could not be resolved to exact offsets."""

    def __init__(self, message: str, *, prompt_id: str | None = None,
                 source_file: str | None = None) -> None:
        location = " / ".join(p for p in (source_file, prompt_id) if p)
        super().__init__(f"{location}: {message}" if location else message)
        self.prompt_id = prompt_id
        self.source_file = source_file


class UnknownCategoryError(VCPError, ValueError):
    """Category id is not part of the taxonomy (strict lookups only)."""
