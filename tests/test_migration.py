"""Tests for the Supabase migration that backs the datastore client."""

import asyncio
import json
import re
from pathlib import Path

import httpx

from faeri_analytics.core.models import DeviceInfo, EventType, GeoInfo
from faeri_analytics.core.store import SupabaseStore

MIGRATION = Path(__file__).resolve().parent.parent / "supabase" / "migrations" / "0001_analytics.sql"


def run_async(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _sql():
    return MIGRATION.read_text()


def _table_columns(sql, table):
    match = re.search(rf"create table if not exists {table} \((.*?)\n\);", sql, re.S)
    assert match, f"table {table} not found"
    columns = set()
    for line in match.group(1).splitlines():
        name = line.strip().split(" ", 1)[0]
        if name and name != "primary":
            columns.add(name)
    return columns


def _function(sql, name):
    """Return (parameter names, body) of a plpgsql function."""
    match = re.search(
        rf"create or replace function {name}\((.*?)\)\s*returns.*?as \$\$(.*?)\$\$;",
        sql, re.S,
    )
    assert match, f"function {name} not found"
    params = [p.strip().split()[0] for p in match.group(1).split(",") if p.strip()]
    return params, match.group(2)


def _recording_store(calls, result):
    def handler(request):
        calls.append(json.loads(request.content))
        return httpx.Response(200, json=result)

    return SupabaseStore("https://test.supabase.co", "test-key", transport=httpx.MockTransport(handler))


class TestRateLimitProcedure:
    """Test hit_rate_limit()."""

    def test_parameters_do_not_shadow_columns(self):
        sql = _sql()
        params, _ = _function(sql, "hit_rate_limit")
        assert not set(params) & _table_columns(sql, "rate_limits")

    def test_conflict_target_has_no_bare_parameter(self):
        params, body = _function(_sql(), "hit_rate_limit")
        for target in re.findall(r"on conflict \(([^)]*)\)", body):
            names = {c.strip() for c in target.split(",")}
            assert not names & set(params)

    def test_client_sends_declared_parameters(self):
        params, _ = _function(_sql(), "hit_rate_limit")
        calls = []
        run_async(_recording_store(calls, 1).hit_rate_limit("track:abc", 60))
        assert set(calls[0]) == set(params)


class TestEventProcedure:
    """Test create_analytics_event()."""

    def test_requires_published_public_page(self):
        _, body = _function(_sql(), "create_analytics_event")
        check = body.index("p.is_public and p.status = 'published'")
        assert check < body.index("insert into analytics_events")
        assert "raise exception 'page % not found or not public'" in body

    def test_client_sends_declared_parameters(self):
        params, _ = _function(_sql(), "create_analytics_event")
        calls = []
        run_async(_recording_store(calls, "evt-1").create_analytics_event(
            page_id="p1",
            event_type=EventType.PAGE_VIEW,
            link_id=None,
            user_agent="ua",
            ip_address="203.0.113.7",
            referrer=None,
            device=DeviceInfo(),
            geo=GeoInfo.unknown(),
        ))
        assert set(calls[0]) == set(params)


class TestGrants:
    """Write procedures are callable by the service role only."""

    def test_revoked_from_client_roles(self):
        sql = _sql()
        for signature in (
            "create_analytics_event(uuid, text, uuid, text, text, text, jsonb, jsonb)",
            "hit_rate_limit(text, integer)",
        ):
            assert re.search(
                rf"revoke execute on function {re.escape(signature)}\s+from public, anon, authenticated;", sql,
            )
            assert re.search(rf"grant execute on function {re.escape(signature)}\s+to service_role;", sql)
