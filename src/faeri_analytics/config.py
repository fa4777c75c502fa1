"""
Configuration for Faeri analytics.
"""
import logging
import os
from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

# Salt length below which visitor hashes become guessable
MIN_SALT_LENGTH = 16

ENV_PREFIX = "FAERI_"


class ConfigError(ValueError):
    """Raised when the analytics configuration is unusable."""
    pass


@dataclass
class AnalyticsConfig:
    """Configuration for a single analytics deployment."""

    # Required
    supabase_url: str  # e.g. "https://abc.supabase.co"
    supabase_key: str  # service-role key; the write procedures reject anon

    # Reporting
    timezone: str = "UTC"  # Day boundaries for startDate/endDate filters
    top_links_limit: int = 10

    # Geo-IP (MaxMind City database). None means geo stays "Unknown".
    geoip_database_path: str | None = None

    # Rate limiting of the public track endpoint (shared counter in the datastore)
    rate_limit_max_requests: int = 60
    rate_limit_window_seconds: int = 60
    rate_limit_salt: str = ""

    # Tracking snippet
    track_path: str = "/api/analytics/track"
    dedup_window_ms: int = 5000

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.supabase_url or not self.supabase_key:
            raise ConfigError("supabase_url and supabase_key are required")

        self.supabase_url = self.supabase_url.rstrip("/")

        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigError(f"Unknown timezone: {self.timezone}") from None

        if self.top_links_limit < 1:
            raise ConfigError("top_links_limit must be at least 1")
        if self.rate_limit_window_seconds < 1:
            raise ConfigError("rate_limit_window_seconds must be at least 1")

        self._validate_salt()

    def _validate_salt(self) -> None:
        """Warn about a weak rate-limit salt when limiting is enabled."""
        if not self.rate_limiting_enabled:
            logger.debug("Rate limiting disabled for track endpoint")
            return

        if len(self.rate_limit_salt) < MIN_SALT_LENGTH:
            logger.warning(
                f"rate_limit_salt is shorter than recommended {MIN_SALT_LENGTH} "
                f"characters; client IP hashes are easier to reverse"
            )

    @property
    def rate_limiting_enabled(self) -> bool:
        return self.rate_limit_max_requests > 0

    @classmethod
    def from_env(cls, environ: dict | None = None) -> "AnalyticsConfig":
        """Build a config from ``FAERI_*`` environment variables.

        Required: FAERI_SUPABASE_URL, FAERI_SUPABASE_KEY.
        """
        env = os.environ if environ is None else environ

        def get(name: str, default=None):
            return env.get(f"{ENV_PREFIX}{name}", default)

        def get_int(name: str, default: int) -> int:
            raw = get(name)
            if raw is None or raw == "":
                return default
            try:
                return int(raw)
            except ValueError:
                raise ConfigError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from None

        return cls(
            supabase_url=get("SUPABASE_URL", ""),
            supabase_key=get("SUPABASE_KEY", ""),
            timezone=get("TIMEZONE", "UTC"),
            top_links_limit=get_int("TOP_LINKS_LIMIT", 10),
            geoip_database_path=get("GEOIP_DATABASE_PATH") or None,
            rate_limit_max_requests=get_int("RATE_LIMIT_MAX_REQUESTS", 60),
            rate_limit_window_seconds=get_int("RATE_LIMIT_WINDOW_SECONDS", 60),
            rate_limit_salt=get("RATE_LIMIT_SALT", ""),
            track_path=get("TRACK_PATH", "/api/analytics/track"),
            dedup_window_ms=get_int("DEDUP_WINDOW_MS", 5000),
        )
