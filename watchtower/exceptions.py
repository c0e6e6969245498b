"""
Custom exception hierarchy for the analytics engine.

Exception Hierarchy:
    WatchtowerError (base)
    ├── BackendQueryError      - Row/column store query failed (propagated)
    │   └── QueryTimeoutError  - Query exceeded its timeout
    ├── CacheUnavailableError  - Cache store unreachable (never surfaced)
    └── ConfigurationError     - Invalid or missing configuration

    ValidationError            - Caller passed an invalid argument
"""


class WatchtowerError(Exception):
    """Base exception for all engine errors."""

    def __init__(self, message: str, details: str = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class BackendQueryError(WatchtowerError):
    """
    A row-store or column-store query failed.

    Bad SQL, connection loss and timeouts all end up here. Not retried by
    the engine; retry policy belongs to the backend client.
    """

    def __init__(self, message: str, details: str = None, backend: str = None):
        super().__init__(message, details)
        self.backend = backend


class QueryTimeoutError(BackendQueryError):
    """
    Database query exceeded timeout.

    Indicates a long-running query that should be investigated:
    - Missing index
    - Too much data being scanned
    - Complex join/aggregation
    """

    def __init__(self, query: str, timeout: float, details: str = None, backend: str = None):
        self.query = query[:200] + "..." if len(query) > 200 else query
        self.timeout = timeout
        super().__init__(f"Query timed out after {timeout}s", details, backend)

    def __str__(self) -> str:
        return f"QueryTimeoutError: Query timed out after {self.timeout}s - {self.query}"


class CacheUnavailableError(WatchtowerError):
    """
    The cache store cannot be reached.

    Raised inside the cache adapter only; callers always see a miss instead.
    """


class ConfigurationError(WatchtowerError):
    """Raised when required configuration is missing or invalid."""


class ValidationError(Exception):
    """
    Input validation failed.

    Used for arguments that are not filters (drill level, limits). Filter
    values themselves are never rejected, only dropped.
    """

    def __init__(self, field: str, message: str, value: any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")

    def __str__(self) -> str:
        if self.value is not None:
            return f"{self.field}: {self.message} (got: {self.value!r})"
        return f"{self.field}: {self.message}"
