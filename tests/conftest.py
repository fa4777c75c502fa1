"""Shared fixtures: an in-memory datastore with transactional event writes."""

import itertools
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from faeri_analytics.core.models import AnalyticsEvent, DeviceInfo, EventType, GeoInfo
from faeri_analytics.errors import PersistenceError

BASE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

IPHONE_UA = "Mozilla/5.0 (iPhone; CPU iPhone OS 14_0) AppleWebKit/605.1.15 (KHTML, like Gecko) Safari/604.1"
EDGE_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36 Edg/119.0.0.0"
)


class FakeStore:
    """In-memory stand-in for SupabaseStore.

    ``create_analytics_event`` stages the event insert and the click
    increment and commits both only if both succeed, like the SQL procedure.
    ``fail_insert`` / ``fail_increment`` force a failure in either half.
    """

    def __init__(self):
        self.pages: dict[str, dict] = {}
        self.links: dict[str, dict] = {}
        self.events: list[dict] = []
        self.rate_counts: dict[str, int] = {}
        self.fail_insert = False
        self.fail_increment = False
        self.last_access_token = None
        self._clock = itertools.count()

    def add_page(self, page_id, is_public=True, status="published"):
        self.pages[page_id] = {"id": page_id, "is_public": is_public, "status": status}

    def add_link(self, link_id, page_id, title="Link"):
        self.links[link_id] = {"id": link_id, "page_id": page_id, "title": title, "click_count": 0}

    def click_count(self, link_id):
        return self.links[link_id]["click_count"]

    async def get_published_page(self, page_id):
        page = self.pages.get(page_id)
        if page and page["is_public"] and page["status"] == "published":
            return {"id": page_id}
        return None

    async def get_page_link(self, page_id, link_id):
        link = self.links.get(link_id)
        if link and link["page_id"] == page_id:
            return {"id": link_id, "page_id": page_id}
        return None

    async def create_analytics_event(
        self, page_id, event_type, link_id, user_agent, ip_address, referrer, device, geo,
    ):
        if self.fail_insert:
            raise PersistenceError("Failed to create analytics event")

        row = {
            "id": str(uuid.uuid4()),
            "page_id": page_id,
            "link_id": link_id,
            "event_type": event_type.value,
            "timestamp": (BASE_TIME + timedelta(seconds=next(self._clock))).isoformat(),
            "user_agent": user_agent,
            "ip_address": ip_address,
            "referrer": referrer,
            "device": device.model_dump(),
            "geo": geo.model_dump(),
        }
        staged_events = self.events + [row]

        new_count = None
        if event_type == EventType.LINK_CLICK and link_id:
            if self.fail_increment:
                raise PersistenceError("Failed to create analytics event")
            new_count = self.links[link_id]["click_count"] + 1

        # commit
        self.events = staged_events
        if new_count is not None:
            self.links[link_id]["click_count"] = new_count
        return row["id"]

    async def fetch_events(self, page_id, start=None, end=None, access_token=None):
        self.last_access_token = access_token
        rows = []
        for row in self.events:
            ts = datetime.fromisoformat(row["timestamp"])
            if row["page_id"] != page_id:
                continue
            if start is not None and ts < start:
                continue
            if end is not None and ts >= end:
                continue
            link = self.links.get(row["link_id"]) if row["link_id"] else None
            rows.append({**row, "links": {"title": link["title"]} if link else None})
        rows.sort(key=lambda r: r["timestamp"], reverse=True)
        return [AnalyticsEvent.from_row(r) for r in rows]

    async def hit_rate_limit(self, key, window_seconds):
        self.rate_counts[key] = self.rate_counts.get(key, 0) + 1
        return self.rate_counts[key]


@pytest.fixture
def store():
    fake = FakeStore()
    fake.add_page("page-1")
    fake.add_link("link-a", "page-1", title="Portfolio")
    fake.add_link("link-b", "page-1", title="Shop")
    fake.add_page("page-2")
    fake.add_link("link-other", "page-2", title="Elsewhere")
    fake.add_page("draft-page", status="draft")
    fake.add_page("private-page", is_public=False)
    return fake


def make_event(
    event_type="page_view",
    link_id=None,
    link_title=None,
    user_agent="ua-1",
    country="US",
    device_type="desktop",
    seconds=0,
    event_id=None,
):
    """Build an AnalyticsEvent for aggregation tests."""
    return AnalyticsEvent(
        id=event_id or str(uuid.uuid4()),
        page_id="page-1",
        event_type=EventType(event_type),
        timestamp=BASE_TIME + timedelta(seconds=seconds),
        link_id=link_id,
        link_title=link_title,
        user_agent=user_agent,
        device=DeviceInfo(type=device_type),
        geo=GeoInfo(country=country) if country is not None else None,
    )
