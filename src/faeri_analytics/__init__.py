"""
Analytics for Faeri link-in-bio pages.

Usage:
    from faeri_analytics import AnalyticsConfig, setup_analytics

    analytics = setup_analytics(AnalyticsConfig.from_env())

    # Track endpoint plus per-page summary/report routes
    app.include_router(analytics.router)

    # In the public page template: {{ analytics.tracking_script(page.id) }}

    # On shutdown (e.g. at the end of the app lifespan)
    analytics.close()
"""

import json

from .aggregate import build_report, summarize
from .config import AnalyticsConfig
from .core.models import AnalyticsEvent, AnalyticsReport, AnalyticsSummary, EventType
from .core.store import SupabaseStore
from .geo import GeoResolver, build_geo_resolver
from .routes import create_tracking_router

__version__ = "0.1.0"
__all__ = [
    "setup_analytics", "AnalyticsConfig", "SupabaseStore",
    "AnalyticsEvent", "AnalyticsSummary", "AnalyticsReport", "EventType",
    "summarize", "build_report",
]


class Analytics:
    """Main analytics interface for a deployment."""

    def __init__(
        self,
        config: AnalyticsConfig,
        store: SupabaseStore | None = None,
        geo_resolver: GeoResolver | None = None,
    ):
        self.config = config
        self.store = store or SupabaseStore(config.supabase_url, config.supabase_key)
        self.geo_resolver = geo_resolver or build_geo_resolver(config.geoip_database_path)
        self.router = create_tracking_router(config, store=self.store, geo_resolver=self.geo_resolver)

    def close(self) -> None:
        """Release the geo database. Call on application shutdown."""
        self.geo_resolver.close()

    def tracking_script(self, page_id: str, base_url: str = "") -> str:
        """Generate the tracking script HTML for a public page.

        Features:
        - Page view on load and when the tab becomes visible again
        - ``faeriAnalytics.linkClick(linkId)`` and ``faeriAnalytics.formSubmit()``
        - Sends referrer and screen size (the server can't observe either)
        - Drops events fired within the dedup window of the previous one
        """
        url = _js_string(f"{base_url.rstrip('/')}{self.config.track_path}")
        page = _js_string(page_id)
        return f'''<script>
(function(){{
  var d=document,w=window;
  var url={url},pageId={page},dedupMs={self.config.dedup_window_ms};
  var last=0;

  function send(type,extra){{
    var now=Date.now();
    if(now-last<dedupMs)return;
    last=now;
    var body={{
      pageId:pageId,
      eventType:type,
      referrer:d.referrer||undefined,
      screenSize:w.screen?w.screen.width+"x"+w.screen.height:"unknown"
    }};
    if(extra)Object.keys(extra).forEach(function(k){{body[k]=extra[k]}});
    fetch(url,{{
      method:"POST",
      headers:{{"Content-Type":"application/json"}},
      body:JSON.stringify(body),
      keepalive:true
    }}).catch(function(){{}});
  }}

  w.faeriAnalytics={{
    linkClick:function(linkId){{send("link_click",{{linkId:linkId}})}},
    formSubmit:function(){{send("form_submit")}}
  }};

  send("page_view");
  d.addEventListener("visibilitychange",function(){{
    if(d.visibilityState==="visible")send("page_view");
  }});
}})();
</script>'''


def _js_string(value: str) -> str:
    """Quote a value for inline <script> use."""
    return json.dumps(value).replace("</", "<\\/")


def setup_analytics(
    config: AnalyticsConfig,
    store: SupabaseStore | None = None,
    geo_resolver: GeoResolver | None = None,
) -> Analytics:
    """
    Set up analytics for a deployment.

    Args:
        config: AnalyticsConfig (see ``AnalyticsConfig.from_env``)
        store: Optional datastore client, e.g. with a custom httpx transport
        geo_resolver: Optional geo lookup; defaults to MaxMind when
            ``config.geoip_database_path`` is set, otherwise "Unknown"

    Returns:
        Analytics instance with ``router`` and ``tracking_script()``
    """
    return Analytics(config, store=store, geo_resolver=geo_resolver)
