"""
Event ingestion for the public tracking endpoint.

An event goes through a fixed pipeline:

1. Validate the body (required fields, closed set of event types)
2. Read client context from proxy headers (IP, User-Agent)
3. Classify the device and resolve geo (best-effort)
4. Check the page is public and published
5. For link clicks, check the link belongs to the page
6. Persist through one transactional procedure

Every check runs before any write, and a failed check means nothing is
written. Ingestion is not idempotent: each accepted call creates a new event.
"""

import logging
from collections.abc import Mapping
from typing import Any, Protocol

from pydantic import ValidationError as ModelValidationError

from .core.models import DeviceInfo, EventType, GeoInfo, TrackRequest, TrackResponse
from .errors import NotFoundError, ValidationError
from .geo import GeoResolver, resolve_geo
from .user_agent import classify_device

logger = logging.getLogger(__name__)

LOOPBACK_IP = "127.0.0.1"

# Checked in order; the first header present wins
CLIENT_IP_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")

VALID_EVENT_TYPES = frozenset(t.value for t in EventType)


class EventStore(Protocol):
    """Datastore operations the ingestor needs."""

    async def get_published_page(self, page_id: str) -> dict | None: ...

    async def get_page_link(self, page_id: str, link_id: str) -> dict | None: ...

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
    ) -> str: ...


def validate_track_payload(payload: Any) -> TrackRequest:
    """
    Validate a decoded JSON body into a TrackRequest.

    Raises:
        ValidationError: If the body is not an object, ``pageId`` or
            ``eventType`` is missing, the event type is unknown, or an
            optional field has the wrong type
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid request body")

    if not payload.get("pageId") or not payload.get("eventType"):
        raise ValidationError("Missing required fields: pageId, eventType")

    event_type = payload["eventType"]
    if not isinstance(event_type, str) or event_type not in VALID_EVENT_TYPES:
        raise ValidationError("Invalid event type")

    try:
        return TrackRequest.model_validate(payload)
    except ModelValidationError as e:
        fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
        logger.debug(f"Rejected track payload, bad fields: {fields}")
        raise ValidationError("Invalid request body") from None


def extract_client_ip(headers: Mapping[str, str]) -> str:
    """
    Get the client IP from proxy headers.

    Order: first entry of x-forwarded-for, x-real-ip, cf-connecting-ip,
    then the loopback address. The request body is never consulted.
    """
    lowered = {k.lower(): v for k, v in headers.items()}

    forwarded_for = lowered.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    for header in CLIENT_IP_HEADERS[1:]:
        value = (lowered.get(header) or "").strip()
        if value:
            return value

    return LOOPBACK_IP


class EventIngestor:
    """Validates, enriches and persists tracking events."""

    def __init__(self, store: EventStore, geo_resolver: GeoResolver | None = None):
        self.store = store
        self.geo_resolver = geo_resolver

    async def ingest(self, payload: Any, headers: Mapping[str, str]) -> TrackResponse:
        """
        Run the ingestion pipeline for one request.

        Args:
            payload: Decoded JSON body
            headers: Request headers (case-insensitive lookups are done here)

        Returns:
            TrackResponse with the new event id

        Raises:
            ValidationError: Bad body, or link does not belong to the page
            NotFoundError: Page missing, private or unpublished
            PersistenceError: Datastore read or write failed
        """
        request = validate_track_payload(payload)

        user_agent = _header(headers, "user-agent")
        ip = extract_client_ip(headers)

        device = classify_device(user_agent, request.screen_size)
        geo = resolve_geo(self.geo_resolver, ip)

        page = await self.store.get_published_page(request.page_id)
        if not page:
            logger.info(f"Track rejected: page {request.page_id} not found or not public")
            raise NotFoundError("Page not found or not public")

        link_id = None
        if request.event_type == EventType.LINK_CLICK and request.link_id:
            link = await self.store.get_page_link(request.page_id, request.link_id)
            if not link:
                logger.info(f"Track rejected: link {request.link_id} not on page {request.page_id}")
                raise ValidationError("Link not found or does not belong to page")
            link_id = request.link_id

        event_id = await self.store.create_analytics_event(
            page_id=request.page_id,
            event_type=request.event_type,
            link_id=link_id,
            user_agent=user_agent,
            ip_address=ip,
            referrer=request.referrer or None,
            device=device,
            geo=geo,
        )

        logger.debug(f"Tracked {request.event_type.value} on page {request.page_id}: {event_id}")
        return TrackResponse(event_id=event_id)


def _header(headers: Mapping[str, str], name: str) -> str:
    for key, value in headers.items():
        if key.lower() == name:
            return value or ""
    return ""
