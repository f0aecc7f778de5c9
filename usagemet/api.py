"""FastAPI routes exposing the analytics queries over HTTP."""

import logging
from datetime import date, datetime, timezone
from typing import Any, Optional, Tuple

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from . import __version__
from .adapters import build_store
from .config import Settings, get_settings
from .errors import StoreUnavailable, ValidationError
from .export import ExportKind, content_type, format_result, parse_export_kind
from .logger import configure_logging
from .models import CommandStat, DailyMetrics, ErrorPattern, Event
from .service import DEFAULT_COMMAND_LIMIT, DEFAULT_ERROR_LIMIT, AnalyticsService

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 5
_DAY_MS = 24 * 60 * 60 * 1000


def parse_timestamp(value: Optional[str], end_of_day: bool = False) -> Optional[int]:
    """
    Parse a ``startDate``/``endDate`` parameter into epoch milliseconds.

    Accepts epoch milliseconds, an ISO date (``YYYY-MM-DD``) or an ISO datetime.
    A bare date used as an end bound covers the whole UTC day.
    """
    if value is None or value == "":
        return None
    text = value.strip()
    if text.isdigit():
        return int(text)

    try:
        if len(text) == 10:
            day = date.fromisoformat(text)
            start_ms = int(datetime(day.year, day.month, day.day, tzinfo=timezone.utc).timestamp() * 1000)
            return start_ms + _DAY_MS - 1 if end_of_day else start_ms
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"invalid date: {value!r}") from None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def create_router(service: AnalyticsService) -> APIRouter:
    router = APIRouter(prefix="/analytics", tags=["analytics"])

    @router.get("/dashboard")
    def dashboard(
        start_date: Optional[str] = Query(None, alias="startDate"),
        end_date: Optional[str] = Query(None, alias="endDate"),
        export_format: str = Query("json", alias="format"),
    ) -> Response:
        start, end = _window(start_date, end_date)
        return _respond(service.dashboard(start, end), export_format, "analytics-dashboard")

    @router.get("/summary")
    def summary(
        start_date: Optional[str] = Query(None, alias="startDate"),
        end_date: Optional[str] = Query(None, alias="endDate"),
        export_format: str = Query("json", alias="format"),
    ) -> Response:
        start, end = _window(start_date, end_date)
        return _respond(service.summary(start, end), export_format, "analytics-summary")

    @router.get("/commands/popular")
    def popular_commands(
        start_date: Optional[str] = Query(None, alias="startDate"),
        end_date: Optional[str] = Query(None, alias="endDate"),
        limit: int = Query(DEFAULT_COMMAND_LIMIT),
        export_format: str = Query("json", alias="format"),
    ) -> Response:
        start, end = _window(start_date, end_date)
        commands = service.popular_commands(start, end, limit)
        return _respond(commands, export_format, "popular-commands", CommandStat)

    @router.get("/commands/{command}")
    def command_stats(
        command: str,
        start_date: Optional[str] = Query(None, alias="startDate"),
        end_date: Optional[str] = Query(None, alias="endDate"),
        export_format: str = Query("json", alias="format"),
    ) -> Response:
        start, end = _window(start_date, end_date)
        return _respond(service.command_stats(command, start, end), export_format, f"command-{command}")

    @router.get("/errors")
    def error_patterns(
        error_type: Optional[str] = Query(None, alias="errorType"),
        start_date: Optional[str] = Query(None, alias="startDate"),
        end_date: Optional[str] = Query(None, alias="endDate"),
        limit: int = Query(DEFAULT_ERROR_LIMIT),
        export_format: str = Query("json", alias="format"),
    ) -> Response:
        start, end = _window(start_date, end_date)
        patterns = service.error_patterns(error_type, start, end, limit)
        return _respond(patterns, export_format, "error-patterns", ErrorPattern)

    @router.get("/users/{user_id}")
    def user_activity(
        user_id: str,
        start_date: Optional[str] = Query(None, alias="startDate"),
        end_date: Optional[str] = Query(None, alias="endDate"),
        export_format: str = Query("json", alias="format"),
    ) -> Response:
        start, end = _window(start_date, end_date)
        events = service.user_activity(user_id, start, end)
        return _respond(events, export_format, f"user-{user_id}", Event)

    @router.get("/users/{user_id}/summary")
    def user_activity_summary(
        user_id: str,
        start_date: Optional[str] = Query(None, alias="startDate"),
        end_date: Optional[str] = Query(None, alias="endDate"),
        export_format: str = Query("json", alias="format"),
    ) -> Response:
        start, end = _window(start_date, end_date)
        rollup = service.user_activity_summary(user_id, start, end)
        return _respond(rollup, export_format, f"user-{user_id}-summary")

    @router.get("/daily")
    def daily_metrics(
        start_date: Optional[str] = Query(None, alias="startDate"),
        end_date: Optional[str] = Query(None, alias="endDate"),
        export_format: str = Query("json", alias="format"),
    ) -> Response:
        start, end = _window(start_date, end_date)
        return _respond(service.daily_metrics(start, end), export_format, "daily-metrics", DailyMetrics)

    @router.get("/export")
    def export(
        start_date: Optional[str] = Query(None, alias="startDate"),
        end_date: Optional[str] = Query(None, alias="endDate"),
        export_format: str = Query("json", alias="format"),
    ) -> Response:
        start, end = _window(start_date, end_date)
        report = service.export_report(start, end)
        return _respond(report, export_format, f"analytics-{report.period.start}-{report.period.end}")

    return router


def install_error_handlers(app: FastAPI) -> None:
    """Map read-path failures to responses distinct from a valid empty result."""

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def _malformed_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'][1:])}: {error['msg']}" for error in exc.errors()
        )
        return JSONResponse(status_code=400, content={"error": f"invalid request: {problems}"})

    @app.exception_handler(StoreUnavailable)
    async def _store_unavailable(request: Request, exc: StoreUnavailable) -> JSONResponse:
        logger.error("Analytics store unavailable for %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=503,
            content={"error": "analytics store unavailable, retry later"},
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        )


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[AnalyticsService] = None,
) -> FastAPI:
    """Build the analytics API, wiring a store from ``settings`` unless a service is given."""
    if settings is None:
        settings = get_settings()
    configure_logging(settings.log_level)
    if service is None:
        service = AnalyticsService(build_store(settings))

    app = FastAPI(title="UsageMet Analytics", version=__version__)
    install_error_handlers(app)
    app.include_router(create_router(service))

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    return app


def _window(start_date: Optional[str], end_date: Optional[str]) -> Tuple[Optional[int], Optional[int]]:
    return parse_timestamp(start_date), parse_timestamp(end_date, end_of_day=True)


def _respond(result: Any, export_format: str, filename: str, record_type: Optional[type] = None) -> Response:
    kind = parse_export_kind(export_format)
    headers = {}
    if kind is ExportKind.CSV:
        headers["Content-Disposition"] = f'attachment; filename="{filename}.csv"'
    return Response(
        content=format_result(result, kind, record_type),
        media_type=content_type(kind),
        headers=headers,
    )
