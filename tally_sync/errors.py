"""Exception types raised by tally-sync."""


class TallySyncError(Exception):
    """Base class for all sync errors."""
    pass


class ConfigError(TallySyncError):
    """Raised when configuration is invalid."""
    pass


class TallyConnectionError(TallySyncError):
    """Raised when connection to Tally fails."""
    pass


class TallyResponseError(TallySyncError):
    """Raised when Tally returns an error response."""
    pass


class RailwayError(TallySyncError):
    """Raised when the Railway proxy rejects a request."""
    pass


class RetryableHTTPError(TallySyncError):
    """An HTTP failure worth retrying (429 or 5xx)."""

    def __init__(self, status: int, body: str = ""):
        super().__init__(f"HTTP {status}: {body[:200]}")
        self.status = status
        self.body = body


class BulkImportError(TallySyncError):
    """Raised when a table's import cannot be completed."""

    def __init__(self, table_name: str, message: str):
        super().__init__(message)
        self.table_name = table_name
