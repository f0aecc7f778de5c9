"""Error taxonomy shared by the ingestion, query and export paths."""


class AnalyticsError(Exception):
    """Base class for UsageMet errors."""


class ValidationError(AnalyticsError, ValueError):
    """Malformed caller input (event kind, date window, limit, export kind)."""


class StoreUnavailable(AnalyticsError):
    """The event store could not be reached or rejected an operation."""

    retryable = True
