"""
Summaries of a page's analytics events.

Everything here is a pure function of its input: no I/O, no mutation of the
events passed in, and the same list always produces the same output.

Two figures are heuristics kept on purpose, because dashboards read them as-is:

- ``uniqueVisitors`` counts distinct (User-Agent, country) pairs. It is a
  fingerprint, not an identity, and will both under- and over-count.
- ``TopLink.views`` is the page's total view count. There is no per-link
  view tracking, so per-link CTR computed from it understates real CTR.
"""

import csv
from collections.abc import Sequence
from datetime import date, datetime, time, timedelta, timezone
from io import StringIO
from zoneinfo import ZoneInfo

from .core.models import AnalyticsEvent, AnalyticsReport, AnalyticsSummary, EventType, RecentEvent, TopLink
from .errors import ValidationError
from .geo import geo_breakdown
from .user_agent import device_breakdown

TOP_LINKS_LIMIT = 10
TOP_COUNTRIES_LIMIT = 10
RECENT_EVENTS_LIMIT = 20

UNKNOWN_LINK_TITLE = "Unknown Link"


def count_unique_visitors(events: Sequence[AnalyticsEvent]) -> int:
    """Distinct (user_agent, country) pairs. Events without a UA are ignored."""
    fingerprints = {
        (event.user_agent, (event.geo.country if event.geo else "") or "")
        for event in events
        if event.user_agent
    }
    return len(fingerprints)


def rank_links(
    link_clicks: Sequence[AnalyticsEvent],
    total_views: int,
    limit: int = TOP_LINKS_LIMIT,
) -> list[TopLink]:
    """
    Rank clicked links by click count.

    Clicks are grouped by ``link_id`` (clicks without one are skipped). The
    title comes from the first click in each group. Equal click counts keep
    the order in which the links first appear in ``link_clicks``.
    """
    groups: dict[str, list[AnalyticsEvent]] = {}
    for event in link_clicks:
        if event.link_id:
            groups.setdefault(event.link_id, []).append(event)

    ranked = [
        TopLink(
            id=link_id,
            title=clicks[0].link_title or UNKNOWN_LINK_TITLE,
            clicks=len(clicks),
            views=total_views,
        )
        for link_id, clicks in groups.items()
    ]
    # sorted() is stable, reverse=True included
    ranked = sorted(ranked, key=lambda link: link.clicks, reverse=True)
    return ranked[:limit]


def summarize(events: Sequence[AnalyticsEvent], top_n: int = TOP_LINKS_LIMIT) -> AnalyticsSummary:
    """
    Summarize one page's events.

    Args:
        events: Events for a single page, already filtered to the date range
        top_n: How many links to keep in ``top_links``

    Returns:
        AnalyticsSummary. ``ctr`` is a percentage and is not rounded.
    """
    total_views = sum(1 for event in events if event.event_type == EventType.PAGE_VIEW)
    link_clicks = [event for event in events if event.event_type == EventType.LINK_CLICK]

    ctr = (len(link_clicks) / total_views) * 100 if total_views > 0 else 0.0

    return AnalyticsSummary(
        total_views=total_views,
        total_clicks=len(link_clicks),
        unique_visitors=count_unique_visitors(events),
        ctr=ctr,
        top_links=rank_links(link_clicks, total_views, top_n),
    )


def recent_events(events: Sequence[AnalyticsEvent], limit: int = RECENT_EVENTS_LIMIT) -> list[RecentEvent]:
    """Newest events first, as shown in the dashboard activity feed."""
    newest = sorted(events, key=lambda event: event.timestamp, reverse=True)[:limit]
    return [
        RecentEvent(
            timestamp=event.timestamp,
            event_type=event.event_type,
            link_title=event.link_title,
            device_type=event.device.type if event.device else "desktop",
        )
        for event in newest
    ]


def build_report(events: Sequence[AnalyticsEvent], top_n: int = TOP_LINKS_LIMIT) -> AnalyticsReport:
    """Summary plus device, country and recent-activity breakdowns."""
    summary = summarize(events, top_n)
    return AnalyticsReport(
        **summary.model_dump(),
        device_breakdown=device_breakdown(events),
        geo_breakdown=geo_breakdown(events, TOP_COUNTRIES_LIMIT),
        recent_events=recent_events(events),
    )


def report_to_csv(report: AnalyticsReport) -> str:
    """Render the dashboard export: metrics, top links, device breakdown."""
    output = StringIO()
    writer = csv.writer(output, lineterminator="\n")

    writer.writerow(["Metric", "Value"])
    writer.writerow(["Total Views", report.total_views])
    writer.writerow(["Total Clicks", report.total_clicks])
    writer.writerow(["Unique Visitors", report.unique_visitors])
    writer.writerow(["Click-through Rate", f"{report.ctr:.2f}%"])
    writer.writerow([])

    writer.writerow(["Top Links", "Clicks"])
    for link in report.top_links:
        writer.writerow([link.title, link.clicks])
    writer.writerow([])

    writer.writerow(["Device Breakdown", "Count"])
    writer.writerow(["Mobile", report.device_breakdown.mobile])
    writer.writerow(["Desktop", report.device_breakdown.desktop])
    writer.writerow(["Tablet", report.device_breakdown.tablet])

    return output.getvalue()


# =============================================================================
# DATE RANGES
# =============================================================================

def parse_date_range(
    start_date: str | None = None,
    end_date: str | None = None,
) -> tuple[date | None, date | None]:
    """Parse optional YYYY-MM-DD bounds.

    Raises:
        ValidationError: If a date is malformed or end is before start
    """
    try:
        start = date.fromisoformat(start_date) if start_date else None
        end = date.fromisoformat(end_date) if end_date else None
    except ValueError:
        raise ValidationError("Invalid date format. Use YYYY-MM-DD (e.g., 2024-01-15)") from None

    if start and end and end < start:
        raise ValidationError("End date must be on or after start date")

    return start, end


def day_bounds(
    start: date | None,
    end: date | None,
    tz: str = "UTC",
) -> tuple[datetime | None, datetime | None]:
    """
    Convert whole local days into UTC query bounds.

    The lower bound is local midnight at the start of ``start``; the upper
    bound is local midnight after ``end`` and is exclusive, so both days are
    covered in full.
    """
    zone = ZoneInfo(tz)

    lower = None
    if start is not None:
        lower = datetime.combine(start, time.min, tzinfo=zone).astimezone(timezone.utc)

    upper = None
    if end is not None:
        upper = datetime.combine(end + timedelta(days=1), time.min, tzinfo=zone).astimezone(timezone.utc)

    return lower, upper
