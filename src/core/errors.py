"""Exception hierarchy for classification and scanning."""


class ClassificationError(Exception):
    """Base class for problems raised while turning transactions into rows."""


class MalformedTransactionError(ClassificationError):
    """A raw transaction payload could not be decoded. The transaction is skipped."""


class EnrichmentUnavailableError(ClassificationError):
    """An optional enrichment lookup failed. Callers degrade instead of aborting."""


class ScanError(Exception):
    """Base class for provider-side scan failures."""


class ProviderError(ScanError):
    """Non-retryable provider failure (bad key, malformed response, exhausted retries)."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(ProviderError):
    """Provider quota or rate limit hit. ``retry_after`` is in seconds when known."""

    def __init__(self, message, retry_after=None, status_code=429):
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class ScanCancelled(ScanError):
    """The caller signalled cancellation between pages."""
