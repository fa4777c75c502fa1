"""
Best-effort geo lookup for client IPs.

Resolvers are pluggable. Whatever a resolver does, ``resolve_geo`` never
raises and never blocks ingestion: any failure degrades to an all-"Unknown"
record.
"""

import ipaddress
import logging
from collections import Counter
from collections.abc import Iterable

import geoip2.database
import geoip2.errors

from .core.models import AnalyticsEvent, CountryStats, GeoInfo
from .errors import GeoLookupError

logger = logging.getLogger(__name__)


class GeoResolver:
    """Resolve an IP address to a location."""

    def lookup(self, ip: str) -> GeoInfo:
        raise NotImplementedError

    def close(self) -> None:
        """Release any resources held by the resolver."""


class UnknownGeoResolver(GeoResolver):
    """Resolver used when no geo database is configured."""

    def lookup(self, ip: str) -> GeoInfo:
        return GeoInfo.unknown()


class MaxMindGeoResolver(GeoResolver):
    """Resolver backed by a local MaxMind GeoLite2/GeoIP2 City database.

    The database is opened on first use so a missing file only degrades
    lookups instead of failing startup.
    """

    def __init__(self, database_path: str):
        self.database_path = database_path
        self._reader: geoip2.database.Reader | None = None

    def _get_reader(self) -> geoip2.database.Reader:
        if self._reader is None:
            try:
                self._reader = geoip2.database.Reader(self.database_path)
            except (OSError, ValueError) as e:
                raise GeoLookupError(f"Cannot open geo database {self.database_path}: {e}") from e
        return self._reader

    def lookup(self, ip: str) -> GeoInfo:
        reader = self._get_reader()
        try:
            resp = reader.city(ip)
        except geoip2.errors.AddressNotFoundError:
            return GeoInfo.unknown()
        except (geoip2.errors.GeoIP2Error, ValueError) as e:
            raise GeoLookupError(str(e)) from e

        subdivision = resp.subdivisions.most_specific
        return GeoInfo(
            country=resp.country.iso_code or resp.registered_country.iso_code or "Unknown",
            region=subdivision.iso_code or subdivision.name or "Unknown",
            city=resp.city.name or "Unknown",
            lat=resp.location.latitude,
            lng=resp.location.longitude,
        )

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()
            self._reader = None


def build_geo_resolver(database_path: str | None) -> GeoResolver:
    """MaxMind resolver when a database path is configured, otherwise "Unknown"."""
    if database_path:
        return MaxMindGeoResolver(database_path)
    return UnknownGeoResolver()


def is_public_ip(ip: str) -> bool:
    """Check whether ``ip`` is a globally routable address worth looking up."""
    try:
        return ipaddress.ip_address(ip).is_global
    except ValueError:
        return False


def resolve_geo(resolver: GeoResolver | None, ip: str | None) -> GeoInfo:
    """Look up ``ip`` with ``resolver``, degrading to unknown on any failure."""
    if resolver is None or not ip or not is_public_ip(ip):
        return GeoInfo.unknown()

    try:
        return resolver.lookup(ip)
    except Exception as e:
        logger.warning(f"Geo lookup degraded to unknown: {type(e).__name__}: {e}")
        return GeoInfo.unknown()


def geo_breakdown(events: Iterable[AnalyticsEvent], limit: int = 10) -> list[CountryStats]:
    """Top countries by event count. Ties keep first-seen order."""
    counts: Counter[str] = Counter()
    for event in events:
        country = event.geo.country if event.geo and event.geo.country else "Unknown"
        counts[country] += 1
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [CountryStats(country=country, views=views) for country, views in ranked[:limit]]
