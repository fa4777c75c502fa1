"""
Tracking and reporting routes.

The track endpoint is anonymous. Report endpoints forward the caller's
bearer token to the datastore, where row-level security decides which pages
the caller may read.

The track endpoint checks the rate limit before reading the body, so
malformed and invalid requests count against the caller's budget too. That
costs one counter round-trip per request, including rejected ones.

Every error leaves as ``{"error": message}`` with a stable status code;
nothing propagates to the ASGI server.
"""

import logging

from fastapi import APIRouter, Header, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse

from ..aggregate import build_report, day_bounds, parse_date_range, report_to_csv, summarize
from ..config import AnalyticsConfig
from ..core.models import AnalyticsEvent
from ..core.store import SupabaseStore
from ..errors import AnalyticsError, AuthorizationError, RateLimitedError, ValidationError
from ..geo import GeoResolver, build_geo_resolver
from ..ingest import EventIngestor, extract_client_ip
from ..ratelimit import RateLimiter

logger = logging.getLogger(__name__)

TRACK_RATE_LIMIT_SCOPE = "track"


def _error_response(error: AnalyticsError, operation: str) -> JSONResponse:
    """Render an error as ``{"error": message}``.

    Server errors are logged where they are raised; client errors are
    logged here.
    """
    if error.status_code < 500:
        logger.debug(f"{operation} rejected: {error.status_code} {error.message}")
    return JSONResponse({"error": error.message}, status_code=error.status_code)


def _bearer_token(authorization: str | None) -> str:
    """Extract the token from an ``Authorization: Bearer ...`` header."""
    if not authorization:
        raise AuthorizationError()
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthorizationError()
    return token.strip()


def create_tracking_router(
    config: AnalyticsConfig,
    store: SupabaseStore | None = None,
    geo_resolver: GeoResolver | None = None,
    rate_limiter: RateLimiter | None = None,
) -> APIRouter:
    """Create the analytics router.

    Args:
        config: Analytics configuration
        store: Datastore client (built from config if omitted)
        geo_resolver: Geo lookup (MaxMind if a database path is configured)
        rate_limiter: Track endpoint limiter (built from config if omitted)
    """
    if store is None:
        store = SupabaseStore(config.supabase_url, config.supabase_key)
    if geo_resolver is None:
        geo_resolver = build_geo_resolver(config.geoip_database_path)
    if rate_limiter is None:
        rate_limiter = RateLimiter(
            store,
            max_requests=config.rate_limit_max_requests,
            window_seconds=config.rate_limit_window_seconds,
            salt=config.rate_limit_salt,
        )

    ingestor = EventIngestor(store, geo_resolver)
    router = APIRouter()

    async def _load_events(
        page_id: str,
        authorization: str | None,
        start_date: str | None,
        end_date: str | None,
    ) -> list[AnalyticsEvent]:
        token = _bearer_token(authorization)
        start, end = parse_date_range(start_date, end_date)
        lower, upper = day_bounds(start, end, config.timezone)
        return await store.fetch_events(page_id, lower, upper, access_token=token)

    # =========================================================================
    # INGESTION
    # =========================================================================

    @router.post(config.track_path)
    async def track_event(request: Request):
        """Record a page view, link click or form submit."""
        try:
            ip = extract_client_ip(request.headers)
            if await rate_limiter.is_rate_limited(TRACK_RATE_LIMIT_SCOPE, ip):
                raise RateLimitedError()

            try:
                payload = await request.json()
            except ValueError:
                raise ValidationError("Invalid JSON body") from None

            result = await ingestor.ingest(payload, request.headers)
            return JSONResponse(result.to_json_dict())
        except AnalyticsError as e:
            return _error_response(e, "track_event")
        except Exception:
            logger.exception("track_event failed")
            return _error_response(AnalyticsError(), "track_event")

    # =========================================================================
    # REPORTING
    # =========================================================================

    @router.get("/api/analytics/pages/{page_id}/summary")
    async def page_summary(
        page_id: str,
        start_date: str | None = Query(None, alias="startDate"),
        end_date: str | None = Query(None, alias="endDate"),
        authorization: str | None = Header(None),
    ):
        """Views, clicks, unique visitors, CTR and top links for a page."""
        try:
            events = await _load_events(page_id, authorization, start_date, end_date)
            summary = summarize(events, config.top_links_limit)
            return JSONResponse(summary.to_json_dict())
        except AnalyticsError as e:
            return _error_response(e, "page_summary")
        except Exception:
            logger.exception("page_summary failed")
            return _error_response(AnalyticsError(), "page_summary")

    @router.get("/api/analytics/pages/{page_id}/report")
    async def page_report(
        page_id: str,
        start_date: str | None = Query(None, alias="startDate"),
        end_date: str | None = Query(None, alias="endDate"),
        authorization: str | None = Header(None),
    ):
        """Summary plus device, country and recent-activity breakdowns."""
        try:
            events = await _load_events(page_id, authorization, start_date, end_date)
            report = build_report(events, config.top_links_limit)
            return JSONResponse(report.to_json_dict())
        except AnalyticsError as e:
            return _error_response(e, "page_report")
        except Exception:
            logger.exception("page_report failed")
            return _error_response(AnalyticsError(), "page_report")

    @router.get("/api/analytics/pages/{page_id}/export.csv")
    async def export_report_csv(
        page_id: str,
        start_date: str | None = Query(None, alias="startDate"),
        end_date: str | None = Query(None, alias="endDate"),
        authorization: str | None = Header(None),
    ):
        """Export the page report as CSV."""
        try:
            events = await _load_events(page_id, authorization, start_date, end_date)
            report = build_report(events, config.top_links_limit)
        except AnalyticsError as e:
            return _error_response(e, "export_report_csv")
        except Exception:
            logger.exception("export_report_csv failed")
            return _error_response(AnalyticsError(), "export_report_csv")

        filename = f"analytics-{page_id}"
        if start_date and end_date:
            filename += f"-{start_date}-to-{end_date}"

        return StreamingResponse(
            iter([report_to_csv(report)]),
            media_type="text/csv",
            headers={"Content-Disposition": f"attachment; filename={filename}.csv"},
        )

    return router
