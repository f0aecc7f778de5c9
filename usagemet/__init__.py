"""UsageMet - usage analytics for interactive assistants."""

from .analytics import (
    compute_command_stats,
    compute_daily_metrics,
    compute_error_patterns,
    compute_summary,
    compute_user_activity_summary,
    rank_popular_commands,
)
from .errors import AnalyticsError, StoreUnavailable, ValidationError
from .export import ExportKind, format_result
from .ingestion import IngestionService
from .models import EventInput, EventType
from .ports import Dimension, EventStore
from .service import AnalyticsService

__all__ = [
    "AnalyticsService",
    "IngestionService",
    "EventInput",
    "EventType",
    "EventStore",
    "Dimension",
    "ExportKind",
    "format_result",
    "AnalyticsError",
    "ValidationError",
    "StoreUnavailable",
    "compute_summary",
    "compute_command_stats",
    "rank_popular_commands",
    "compute_error_patterns",
    "compute_user_activity_summary",
    "compute_daily_metrics",
]

__version__ = "0.1.0"
