"""Exceptions for the ingestion and retrieval pipeline.

Every error carries the pipeline stage it came from and the HTTP status the
API layer renders it with.
"""


class RagError(Exception):
    """Base exception for pipeline errors."""

    def __init__(self, message: str, stage: str, http_status: int = 500):
        self.message = message
        self.stage = stage
        self.http_status = http_status
        super().__init__(message)


class InvalidConfiguration(RagError):
    """Bad chunk/overlap/metric/limit parameters, rejected before any side effect."""

    def __init__(self, message: str):
        super().__init__(message, "configuration", 422)


class UnsupportedMetric(InvalidConfiguration):
    """Unknown distance metric name."""

    def __init__(self, metric: str):
        self.metric = metric
        super().__init__(f"Unsupported metric: {metric!r}")


class ProviderContractViolation(RagError):
    """Embedding/rerank/chat response had the wrong shape or count. Not retried."""

    def __init__(self, message: str):
        super().__init__(message, "provider", 502)


class TransientProviderError(RagError):
    """Network failure, timeout or overloaded provider. Retryable by the caller."""

    def __init__(self, message: str):
        super().__init__(message, "provider", 503)


class NotFound(RagError):
    """A referenced record (model, document) does not exist."""

    def __init__(self, message: str):
        super().__init__(message, "lookup", 404)


class DataIntegrityViolation(RagError):
    """Stored data broke an invariant the pipeline relies on."""

    def __init__(self, message: str):
        super().__init__(message, "retrieval", 500)
