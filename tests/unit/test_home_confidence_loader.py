"""Unit tests for loading home records and scoring them."""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    from config.settings import Settings
    return Settings(retry_delay_ms=0)


@pytest.mark.asyncio
async def test_load_scores_fetched_records(settings):
    from habitta.core.records import SystemTimelineEntry
    from habitta.services.home_confidence import load_home_confidence
    client = AsyncMock()
    client.get_home_assets.return_value = [{
        "id": "a1",
        "kind": "hvac",
        "serial": "SN-9",
        "metadata": {"has_photo": True},
        "status": "active",
        "updated_at": (NOW - timedelta(days=10)).isoformat(),
    }]
    client.get_home_events.return_value = [{
        "id": "e1",
        "event_type": "maintenance",
        "title": "Furnace tune-up",
        "asset_id": "a1",
        "home_id": "home-1",
        "created_at": (NOW - timedelta(days=2)).isoformat(),
    }]
    systems = [SystemTimelineEntry(systemId="hvac", installYear=2016)]

    report = await load_home_confidence(client, "home-1", systems, now=NOW, settings=settings)
    result, touched = report.confidence, report.last_touch_at

    client.get_home_events.assert_awaited_once_with("home-1", limit=100)
    assert touched == NOW - timedelta(days=2)
    # hvac: install 6 + serial 1 + photo 4 + maintenance 2 = 13 of 100
    assert result.score == 13
    assert result.breakdown.freshness == 0
    assert result.evidence_chips == ["1 service confirmed"]
    assert [r.id for r in report.recommendations] == [
        "documentation:roof:has_install_year",
        "documentation:electrical:has_install_year",
        "documentation:water_heater:has_install_year",
    ]
    assert report.to_dict()["last_touch_at"] == (NOW - timedelta(days=2)).isoformat()


@pytest.mark.asyncio
async def test_dismissed_ids_are_passed_through(settings):
    from habitta.services.home_confidence import load_home_confidence
    client = AsyncMock()
    client.get_home_assets.return_value = []
    client.get_home_events.return_value = []
    report = await load_home_confidence(
        client, "home-1", [], dismissed_ids={"documentation:hvac:has_install_year"}, now=NOW, settings=settings
    )
    assert report.recommendations[0].id == "documentation:roof:has_install_year"


@pytest.mark.asyncio
async def test_dismissal_store_round_trip():
    import fakeredis.aioredis
    from habitta.services.home_confidence import dismiss_recommendation, get_dismissed_ids
    redis_client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    await dismiss_recommendation(redis_client, "home-1", "maintenance:roof:has_maintenance_record")
    assert await get_dismissed_ids(redis_client, "home-1") == {"maintenance:roof:has_maintenance_record"}
    assert await get_dismissed_ids(redis_client, "home-2") == set()


@pytest.mark.asyncio
async def test_dismissal_store_failure_reads_as_empty():
    from habitta.services.home_confidence import get_dismissed_ids
    redis_client = AsyncMock()
    redis_client.smembers.side_effect = ConnectionError("redis down")
    assert await get_dismissed_ids(redis_client, "home-1") == set()


@pytest.mark.asyncio
async def test_bad_rows_are_skipped(settings):
    from habitta.services.home_confidence import load_home_confidence
    client = AsyncMock()
    client.get_home_assets.return_value = [{"id": "broken"}]
    client.get_home_events.return_value = []
    report = await load_home_confidence(client, "home-1", [], now=NOW, settings=settings)
    result, touched = report.confidence, report.last_touch_at
    assert touched is None
    assert result.score == 0


@pytest.mark.asyncio
async def test_fetch_failure_scores_empty_home(settings):
    from habitta.services.backend import BackendError
    from habitta.services.home_confidence import load_home_confidence
    client = AsyncMock()
    client.get_home_assets.side_effect = BackendError(401, "bad key")
    client.get_home_events.return_value = []
    report = await load_home_confidence(client, "home-1", [], now=NOW, settings=settings)
    result, touched = report.confidence, report.last_touch_at
    assert touched is None
    assert result.state == "at-risk"
    assert result.breakdown.freshness == -10


def test_last_touch_prefers_newest_record():
    from habitta.core.records import HomeAsset, HomeEvent
    from habitta.services.home_confidence import last_touch
    asset = HomeAsset(id="a", kind="roof", updated_at=NOW)
    event = HomeEvent(id="e", event_type="note", home_id="h", created_at=(NOW - timedelta(days=1)).replace(tzinfo=None))
    assert last_touch([asset], [event]) == NOW
    assert last_touch([], []) is None
