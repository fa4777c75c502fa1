"""
Core analytics module.

Contains the data models and the datastore client.
"""

from .models import (
    AnalyticsEvent,
    AnalyticsReport,
    AnalyticsSummary,
    CountryStats,
    DeviceBreakdown,
    DeviceInfo,
    EventType,
    GeoInfo,
    RecentEvent,
    TopLink,
    TrackRequest,
    TrackResponse,
)
from .store import SupabaseStore

__all__ = [
    "AnalyticsEvent", "EventType", "DeviceInfo", "GeoInfo",
    "TrackRequest", "TrackResponse",
    "AnalyticsSummary", "AnalyticsReport", "TopLink",
    "DeviceBreakdown", "CountryStats", "RecentEvent",
    "SupabaseStore",
]
