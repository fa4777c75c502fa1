"""
HTTP client for the managed Postgres backend (Supabase PostgREST).

Reads go through table endpoints, writes through RPC procedures so that each
write is a single server-side transaction.
"""
import logging
from datetime import datetime
from typing import Any

import httpx
from pydantic import ValidationError as ModelValidationError

from ..errors import AuthorizationError, PersistenceError
from .models import AnalyticsEvent, DeviceInfo, EventType, GeoInfo

logger = logging.getLogger(__name__)

# PostgREST error code for a value that can't be cast to the column type
# (e.g. a malformed uuid). Such an id can't match any row.
INVALID_TEXT_REPRESENTATION = "22P02"

WRITE_FAILED = "Failed to create analytics event"
READ_FAILED = "Failed to load analytics"


class SupabaseStore:
    """Client for the pages, links and analytics_events tables."""

    def __init__(
        self,
        supabase_url: str,
        supabase_key: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = f"{supabase_url.rstrip('/')}/rest/v1"
        self.api_key = supabase_key
        self.timeout = timeout
        self.transport = transport

    def _headers(self, access_token: str | None) -> dict:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {access_token or self.api_key}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        failure_message: str,
        params: Any = None,
        json: Any = None,
        access_token: str | None = None,
    ) -> httpx.Response:
        """Send one request, mapping transport failures to PersistenceError."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(
                    method,
                    f"{self.base_url}/{path}",
                    params=params,
                    json=json,
                    headers=self._headers(access_token),
                )
        except httpx.HTTPError as e:
            logger.error(f"{operation} failed: {type(e).__name__}: {e}")
            raise PersistenceError(failure_message) from e

        if response.status_code in (401, 403) and access_token:
            logger.info(f"{operation} rejected by datastore: HTTP {response.status_code}")
            raise AuthorizationError()

        return response

    def _raise_for_status(self, response: httpx.Response, operation: str, failure_message: str) -> None:
        if response.status_code >= 400:
            logger.error(f"{operation} failed: HTTP {response.status_code}: {response.text[:200]}")
            raise PersistenceError(failure_message)

    async def _select(
        self,
        table: str,
        params: list[tuple[str, str]],
        *,
        operation: str,
        access_token: str | None = None,
    ) -> list[dict]:
        """Read rows from a table. Uncastable filter values yield no rows."""
        response = await self._request(
            "GET", table,
            operation=operation,
            failure_message=READ_FAILED,
            params=params,
            access_token=access_token,
        )
        if response.status_code == 400 and _error_code(response) == INVALID_TEXT_REPRESENTATION:
            return []
        self._raise_for_status(response, operation, READ_FAILED)
        return response.json() or []

    async def _rpc(self, procedure: str, args: dict, *, operation: str) -> Any:
        """Call a server-side procedure. Each call is one transaction."""
        response = await self._request(
            "POST", f"rpc/{procedure}",
            operation=operation,
            failure_message=WRITE_FAILED,
            json=args,
        )
        self._raise_for_status(response, operation, WRITE_FAILED)
        if not response.content:
            return None
        return response.json()

    # =========================================================================
    # PAGES & LINKS
    # =========================================================================

    async def get_published_page(self, page_id: str) -> dict | None:
        """Return the page if it exists, is public and is published."""
        rows = await self._select(
            "pages",
            [
                ("select", "id,user_id,slug"),
                ("id", f"eq.{page_id}"),
                ("is_public", "eq.true"),
                ("status", "eq.published"),
                ("limit", "1"),
            ],
            operation="get_published_page",
        )
        return rows[0] if rows else None

    async def get_page_link(self, page_id: str, link_id: str) -> dict | None:
        """Return the link if it exists and belongs to ``page_id``."""
        rows = await self._select(
            "links",
            [
                ("select", "id,page_id"),
                ("id", f"eq.{link_id}"),
                ("page_id", f"eq.{page_id}"),
                ("limit", "1"),
            ],
            operation="get_page_link",
        )
        return rows[0] if rows else None

    # =========================================================================
    # ANALYTICS EVENTS
    # =========================================================================

    async def create_analytics_event(
        self,
        page_id: str,
        event_type: EventType,
        link_id: str | None,
        user_agent: str,
        ip_address: str,
        referrer: str | None,
        device: DeviceInfo,
        geo: GeoInfo,
    ) -> str:
        """Insert an event and, for link clicks, bump the link's click count.

        Both writes happen inside the ``create_analytics_event`` procedure, so
        either both are committed or neither is.

        Returns:
            The new event id
        """
        event_id = await self._rpc(
            "create_analytics_event",
            {
                "page_uuid": page_id,
                "event_type": event_type.value,
                "link_uuid": link_id,
                "user_agent": user_agent,
                "ip_address": ip_address,
                "referrer": referrer,
                "device_data": device.model_dump(),
                "geo_data": geo.model_dump(),
            },
            operation="create_analytics_event",
        )
        if not event_id:
            logger.error("create_analytics_event failed: procedure returned no id")
            raise PersistenceError(WRITE_FAILED)
        return str(event_id)

    async def fetch_events(
        self,
        page_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        access_token: str | None = None,
    ) -> list[AnalyticsEvent]:
        """Fetch a page's events, newest first.

        Args:
            page_id: Page to read
            start: Inclusive lower bound (aware datetime)
            end: Exclusive upper bound (aware datetime)
            access_token: Caller's session token; row-level security in the
                datastore decides what it may read
        """
        params = [
            ("select", "*,links(title)"),
            ("page_id", f"eq.{page_id}"),
            ("order", "timestamp.desc"),
        ]
        if start is not None:
            params.append(("timestamp", f"gte.{start.isoformat()}"))
        if end is not None:
            params.append(("timestamp", f"lt.{end.isoformat()}"))

        rows = await self._select(
            "analytics_events", params,
            operation="fetch_events",
            access_token=access_token,
        )
        try:
            return [AnalyticsEvent.from_row(row) for row in rows]
        except (ModelValidationError, KeyError) as e:
            logger.error(f"fetch_events failed: malformed row: {e}")
            raise PersistenceError(READ_FAILED) from e

    # =========================================================================
    # RATE LIMITING
    # =========================================================================

    async def hit_rate_limit(self, key: str, window_seconds: int) -> int:
        """Increment the keyed counter for the current window and return its value."""
        count = await self._rpc(
            "hit_rate_limit",
            {"counter_key": key, "window_seconds": window_seconds},
            operation="hit_rate_limit",
        )
        return int(count or 0)


def _error_code(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    return body.get("code") if isinstance(body, dict) else None
