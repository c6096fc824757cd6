"""Custom exception hierarchy for storyrag.

All application exceptions inherit from :class:`StoryRagError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "deepseek", "jina", "chromadb") caused the failure.
Each class also carries a short ``kind`` tag used in structured logs.

    StoryRagError  (base -- catch-all for any storyrag error)
    +-- ConfigurationError     (missing / invalid configuration, fatal)
    +-- ValidationError        (bad rows, unsafe URLs, schema mismatch)
    +-- ProviderError          (external API failure, maybe retryable)
    |   +-- RateLimitError     (HTTP 429, always retryable)
    +-- SourceIOError          (local file read / decode failure)
    +-- RAGError               (embedding or vector-store backend failure)
    +-- PipelineError          (orchestration failure)
        +-- IngestionAbortedError (a stage failed; carries partial stats)

Only :class:`ProviderError` instances with ``retryable=True`` are retried by
:func:`storyrag.utils.retry.with_retry`; everything else propagates at once.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from storyrag.models.rag import IngestStats


class StoryRagError(Exception):
    """Base exception for all storyrag errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name``.  The ``__str__`` method prefixes the provider name in
    brackets for log output, e.g. ``[jina] Rerank request failed``.
    """

    kind = "unknown"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


class ConfigurationError(StoryRagError):
    """Raised when required configuration is missing or invalid."""

    kind = "config"

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ValidationError(StoryRagError):
    """Raised when input data fails validation.

    Covers malformed chunk rows, refused URLs, bad filters, and LLM output
    that still does not match its schema after repair attempts.
    """

    kind = "validation"

    def __init__(
        self,
        message: str = "Validation failed",
        provider_name: str | None = None,
        details: Any = None,
    ) -> None:
        self._details = details
        super().__init__(message=message, provider_name=provider_name)

    @property
    def details(self) -> Any:
        return self._details


class ProviderError(StoryRagError):
    """Raised when an external provider call fails.

    ``retryable`` tells the retry helper whether another attempt may
    succeed (timeouts, 429, 5xx) or not (auth failures, other 4xx).
    """

    kind = "provider"

    def __init__(
        self,
        message: str = "Provider request failed",
        provider_name: str | None = None,
        status_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        self._status_code = status_code
        self._retryable = retryable
        super().__init__(message=message, provider_name=provider_name)

    @property
    def status_code(self) -> int | None:
        return self._status_code

    @property
    def retryable(self) -> bool:
        return self._retryable


class RateLimitError(ProviderError):
    """Raised when a provider's rate limit is exceeded (HTTP 429)."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(
            message=message,
            provider_name=provider_name,
            status_code=429,
            retryable=True,
        )


class SourceIOError(StoryRagError):
    """Raised when a local source cannot be read or decoded."""

    kind = "io"

    def __init__(
        self,
        message: str = "Failed to read source",
        path: str | None = None,
        provider_name: str | None = None,
    ) -> None:
        self._path = path
        super().__init__(message=message, provider_name=provider_name)

    @property
    def path(self) -> str | None:
        return self._path


class RAGError(StoryRagError):
    """Raised when the embedding backend or the chunk store fails."""

    kind = "store"

    def __init__(
        self,
        message: str = "RAG operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class PipelineError(StoryRagError):
    """Raised for ingestion orchestration failures."""

    kind = "pipeline"

    def __init__(
        self,
        message: str = "Pipeline execution failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class IngestionAbortedError(PipelineError):
    """Raised when an ingestion stage fails and the run is aborted.

    ``stats`` holds the statistics accumulated up to the failure point so
    callers can report partial progress.
    """

    def __init__(
        self,
        stage: str,
        stats: IngestStats,
        message: str | None = None,
    ) -> None:
        self._stage = stage
        self._stats = stats
        super().__init__(message=message or f"Ingestion aborted in stage '{stage}'")

    @property
    def stage(self) -> str:
        return self._stage

    @property
    def stats(self) -> IngestStats:
        return self._stats
