"""
Pydantic models for analytics data.

Wire shapes (request bodies, summaries) use camelCase aliases; stored rows
keep the snake_case column names of the managed datastore.
"""
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class EventType(str, Enum):
    """Closed set of event kinds accepted at ingestion."""
    PAGE_VIEW = "page_view"
    LINK_CLICK = "link_click"
    FORM_SUBMIT = "form_submit"


class WireModel(BaseModel):
    """Base for JSON bodies exchanged with browsers and dashboards."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# Derived context (computed once at ingestion, never recomputed)
# =============================================================================

class DeviceInfo(BaseModel):
    """Device classification stored with each event."""
    model_config = ConfigDict(frozen=True)

    type: str = "desktop"  # mobile, tablet, desktop
    os: str = "unknown"
    browser: str = "unknown"
    screen_size: str = "unknown"  # "WxH", reported by the browser


class GeoInfo(BaseModel):
    """Best-effort location of the client IP."""
    model_config = ConfigDict(frozen=True)

    country: str = "Unknown"
    region: str = "Unknown"
    city: str = "Unknown"
    lat: float | None = None
    lng: float | None = None

    @classmethod
    def unknown(cls) -> "GeoInfo":
        return cls()


# =============================================================================
# Raw Data Models
# =============================================================================

class AnalyticsEvent(BaseModel):
    """One immutable visitor action against a page."""
    model_config = ConfigDict(frozen=True)

    id: str
    page_id: str
    event_type: EventType
    timestamp: datetime
    link_id: str | None = None

    user_agent: str | None = None
    referrer: str | None = None
    ip_address: str | None = None

    device: DeviceInfo | None = None
    geo: GeoInfo | None = None

    # Joined from links.title on the read path
    link_title: str | None = None

    @classmethod
    def from_row(cls, row: dict) -> "AnalyticsEvent":
        """Build an event from an ``analytics_events`` row with ``links(title)``."""
        link = row.get("links") or {}
        return cls(
            id=str(row["id"]),
            page_id=str(row["page_id"]),
            event_type=row["event_type"],
            timestamp=row["timestamp"],
            link_id=str(row["link_id"]) if row.get("link_id") else None,
            user_agent=row.get("user_agent"),
            referrer=row.get("referrer"),
            ip_address=row.get("ip_address"),
            device=row.get("device"),
            geo=row.get("geo"),
            link_title=link.get("title"),
        )


# =============================================================================
# Ingestion request/response
# =============================================================================

class TrackRequest(WireModel):
    """Incoming event from the tracking snippet.

    There is deliberately no IP field; the client address comes from proxy
    headers only.
    """
    model_config = ConfigDict(extra="ignore")

    page_id: str
    event_type: EventType
    link_id: str | None = None
    referrer: str | None = None
    screen_size: str | None = None


class TrackResponse(WireModel):
    success: bool = True
    event_id: str


# =============================================================================
# Aggregated Stats Models
# =============================================================================

class TopLink(WireModel):
    """Click ranking entry.

    ``views`` is the page's total view count, not a per-link figure: the
    datastore has no per-link view tracking.
    """
    id: str
    title: str
    clicks: int
    views: int


class AnalyticsSummary(WireModel):
    """Summary of one page's events. Derived, never persisted."""
    total_views: int = 0
    total_clicks: int = 0
    unique_visitors: int = 0
    ctr: float = 0.0  # percentage, unrounded
    top_links: list[TopLink] = Field(default_factory=list)


class DeviceBreakdown(WireModel):
    mobile: int = 0
    desktop: int = 0
    tablet: int = 0


class CountryStats(WireModel):
    country: str
    views: int


class RecentEvent(WireModel):
    timestamp: datetime
    event_type: EventType
    link_title: str | None = None
    device_type: str = "desktop"


class AnalyticsReport(AnalyticsSummary):
    """Summary plus the breakdowns shown on the page dashboard."""
    device_breakdown: DeviceBreakdown = Field(default_factory=DeviceBreakdown)
    geo_breakdown: list[CountryStats] = Field(default_factory=list)
    recent_events: list[RecentEvent] = Field(default_factory=list)
