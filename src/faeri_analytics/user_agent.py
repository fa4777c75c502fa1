"""
User-Agent classification for device type, OS and browser.

Classification is a set of ordered ``(predicate, label)`` tables evaluated
against the lower-cased User-Agent. The first matching rule wins, so the
order of each table is part of its contract:

- Device type: mobile, then tablet, else desktop.
- OS: Windows, macOS, Linux, Android, iOS. An Android UA also contains
  "linux" and most iPhone UAs contain "mac os x", so those earlier rules win
  for them. Stored events depend on this, do not reorder.
- Browser: Chrome (unless "edg"), Firefox, Safari (unless "chrome"), Edge,
  Opera. Edge and Opera also send "chrome"; the exclusion on the Chrome rule
  is what lets Edge through.

New rules must be inserted at an explicit position, never appended blindly.
"""

from collections.abc import Callable, Iterable
from enum import Enum

from .core.models import AnalyticsEvent, DeviceBreakdown, DeviceInfo

UNKNOWN = "unknown"


class DeviceType(str, Enum):
    """Device category."""
    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"


Rule = tuple[Callable[[str], bool], str]


def _contains(*tokens: str) -> Callable[[str], bool]:
    """Predicate: UA contains any of the tokens."""
    return lambda ua: any(token in ua for token in tokens)


def _contains_without(token: str, excluded: str) -> Callable[[str], bool]:
    """Predicate: UA contains ``token`` and not ``excluded``."""
    return lambda ua: token in ua and excluded not in ua


# =============================================================================
# RULE TABLES (order matters)
# =============================================================================

DEVICE_TYPE_RULES: list[Rule] = [
    (_contains("mobile", "android", "iphone"), DeviceType.MOBILE.value),
    (_contains("tablet", "ipad"), DeviceType.TABLET.value),
]

OS_RULES: list[Rule] = [
    (_contains("windows"), "Windows"),
    (_contains("mac"), "macOS"),
    (_contains("linux"), "Linux"),
    (_contains("android"), "Android"),
    (_contains("iphone", "ipad"), "iOS"),
]

BROWSER_RULES: list[Rule] = [
    (_contains_without("chrome", "edg"), "Chrome"),
    (_contains("firefox"), "Firefox"),
    (_contains_without("safari", "chrome"), "Safari"),
    (_contains("edg"), "Edge"),
    (_contains("opera"), "Opera"),
]


def first_match(rules: Iterable[Rule], ua: str, default: str) -> str:
    """Return the label of the first rule whose predicate accepts ``ua``."""
    for predicate, label in rules:
        if predicate(ua):
            return label
    return default


def classify_device(user_agent: str | None, screen_size: str | None = None) -> DeviceInfo:
    """
    Classify a User-Agent into device type, OS and browser.

    Args:
        user_agent: The User-Agent header value (may be empty)
        screen_size: "WxH" as reported by the browser; the server cannot
            observe it, so it defaults to "unknown"

    Examples:
        >>> classify_device("Mozilla/5.0 (iPhone; CPU iPhone OS 14_0) Safari")
        DeviceInfo(type='mobile', os='iOS', browser='Safari', screen_size='unknown')
    """
    ua = (user_agent or "").lower()

    return DeviceInfo(
        type=first_match(DEVICE_TYPE_RULES, ua, DeviceType.DESKTOP.value),
        os=first_match(OS_RULES, ua, UNKNOWN),
        browser=first_match(BROWSER_RULES, ua, UNKNOWN),
        screen_size=screen_size or UNKNOWN,
    )


def device_breakdown(events: Iterable[AnalyticsEvent]) -> DeviceBreakdown:
    """Count events per device type. Events without device info count as desktop."""
    counts = {t.value: 0 for t in DeviceType}
    for event in events:
        device_type = event.device.type if event.device else DeviceType.DESKTOP.value
        if device_type in counts:
            counts[device_type] += 1
    return DeviceBreakdown(**counts)
