"""Unit tests for RiskDeltaCapture (backend mocked)."""
import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest


@pytest.fixture
def settings():
    from config.settings import Settings
    return Settings(prediction_poll_interval_ms=0, prediction_poll_max_attempts=3, retry_delay_ms=0)


def _predictions(score=72, prob=0.18, months=52, status="healthy", system="hvac"):
    return {"systems": [{
        "system": system,
        "score": score,
        "status": status,
        "survival": {"failureProbability12mo": prob, "monthsRemaining": {"p50": months}},
    }]}


def _client(predictions=None, refreshed=True):
    client = AsyncMock()
    stamp = datetime.now(timezone.utc) + timedelta(minutes=5) if refreshed else None
    client.get_latest_prediction_timestamp.return_value = stamp
    client.get_predictions.return_value = predictions if predictions is not None else _predictions()
    return client


def _before():
    from habitta.core.risk_delta import RiskSnapshot
    return RiskSnapshot(score=60, failure_probability_12mo=0.30, months_remaining=40, status="attention")


@pytest.mark.asyncio
async def test_capture_persists_bundle(settings):
    from habitta.services.risk_delta import RiskDeltaCapture
    client = _client()
    outcome = await RiskDeltaCapture(client, settings=settings).capture("home-1", "hvac", _before(), "task-1")

    assert outcome is not None
    assert outcome.refresh_completed is True
    assert outcome.delta.score_change == 12
    assert outcome.calculation_status == "success"

    client.trigger_refresh.assert_awaited_once_with(
        "home-1", force_refresh=True, trigger_source="task_completion", task_id="task-1"
    )
    home_id, system_type, bundle = client.append_event_metadata.await_args.args
    assert (home_id, system_type) == ("home-1", "hvac")
    assert bundle["task_id"] == "task-1"
    assert bundle["risk_delta"]["scoreChange"] == 12
    assert bundle["before_snapshot"]["score"] == 60
    assert bundle["after_snapshot"]["monthsRemaining"] == 52
    assert bundle["validation"]["is_valid"] is True
    assert bundle["calculation_status"] == "success"
    assert "delta_calculated_at" in bundle
    assert isinstance(bundle["prediction_refresh_duration_ms"], int)


@pytest.mark.asyncio
async def test_refresh_failure_does_not_stop_capture(settings):
    from habitta.services.risk_delta import RiskDeltaCapture
    client = _client()
    client.trigger_refresh.side_effect = RuntimeError("function crashed")
    outcome = await RiskDeltaCapture(client, settings=settings).capture("home-1", "hvac", _before(), "task-1")
    assert outcome is not None
    client.append_event_metadata.assert_awaited_once()


@pytest.mark.asyncio
async def test_poll_timeout_proceeds_with_current_data(settings):
    from habitta.services.risk_delta import RiskDeltaCapture
    client = _client(refreshed=False)
    outcome = await RiskDeltaCapture(client, settings=settings).capture("home-1", "hvac", _before(), "task-1")
    assert outcome is not None
    assert outcome.refresh_completed is False
    assert client.get_latest_prediction_timestamp.await_count == 3


@pytest.mark.asyncio
async def test_poll_ignores_stale_timestamp_then_succeeds(settings):
    from habitta.services.risk_delta import RiskDeltaCapture
    client = AsyncMock()
    start = datetime.now(timezone.utc)
    client.get_latest_prediction_timestamp.side_effect = [
        start - timedelta(hours=1),
        RuntimeError("flaky"),
        start + timedelta(seconds=2),
    ]
    capture = RiskDeltaCapture(client, settings=settings)
    assert await capture.wait_for_prediction_refresh("home-1", start) is True
    assert client.get_latest_prediction_timestamp.await_count == 3


@pytest.mark.asyncio
async def test_cancel_aborts_polling():
    from config.settings import Settings
    from habitta.services.risk_delta import RiskDeltaCapture
    settings = Settings(prediction_poll_interval_ms=5000, prediction_poll_max_attempts=20)
    client = _client(refreshed=False)
    cancel = asyncio.Event()
    capture = RiskDeltaCapture(client, settings=settings)

    task = asyncio.create_task(capture.capture("home-1", "hvac", _before(), "task-1", cancel=cancel))
    await asyncio.sleep(0.01)
    cancel.set()
    outcome = await asyncio.wait_for(task, timeout=1)

    assert outcome is None
    assert client.get_latest_prediction_timestamp.await_count == 1
    client.get_predictions.assert_not_awaited()
    client.append_event_metadata.assert_not_awaited()


@pytest.mark.asyncio
async def test_system_not_found_returns_none(settings):
    from habitta.services.risk_delta import RiskDeltaCapture
    client = _client(predictions=_predictions(system="roof"))
    outcome = await RiskDeltaCapture(client, settings=settings).capture("home-1", "hvac", _before(), "task-1")
    assert outcome is None
    client.append_event_metadata.assert_not_awaited()


@pytest.mark.asyncio
async def test_empty_systems_list_returns_none(settings):
    from habitta.services.risk_delta import RiskDeltaCapture
    client = _client(predictions={"systems": []})
    assert await RiskDeltaCapture(client, settings=settings).capture("home-1", "hvac", _before(), "t") is None


@pytest.mark.asyncio
async def test_missing_systems_is_swallowed(settings):
    from habitta.services.risk_delta import RiskDeltaCapture
    client = _client(predictions={})
    assert await RiskDeltaCapture(client, settings=settings).capture("home-1", "hvac", _before(), "t") is None
    client.append_event_metadata.assert_not_awaited()


@pytest.mark.asyncio
async def test_persistence_failure_is_swallowed(settings):
    from habitta.services.risk_delta import RiskDeltaCapture
    client = _client()
    client.append_event_metadata.side_effect = RuntimeError("rpc failed")
    assert await RiskDeltaCapture(client, settings=settings).capture("home-1", "hvac", _before(), "t") is None


@pytest.mark.asyncio
async def test_transient_prediction_error_is_retried(settings):
    import httpx
    from habitta.services.risk_delta import RiskDeltaCapture
    client = _client()
    client.get_predictions.side_effect = [httpx.ConnectError("reset"), _predictions()]
    outcome = await RiskDeltaCapture(client, settings=settings).capture("home-1", "hvac", _before(), "t")
    assert outcome is not None
    assert client.get_predictions.await_count == 2


@pytest.mark.asyncio
async def test_implausible_delta_is_persisted_as_estimate(settings):
    from habitta.services.risk_delta import RiskDeltaCapture
    client = _client(predictions=_predictions(score=95, prob=0.25, months=45))
    outcome = await RiskDeltaCapture(client, settings=settings).capture("home-1", "hvac", _before(), "t")
    assert outcome.validation.reason == "Unusually large score improvement"
    bundle = client.append_event_metadata.await_args.args[2]
    assert bundle["calculation_status"] == "estimate"


@pytest.mark.asyncio
async def test_fetch_risk_deltas_maps_rows(settings):
    from habitta.services.risk_delta import RiskDeltaCapture
    client = AsyncMock()
    client.get_system_events.return_value = [
        {
            "id": "evt-1",
            "system_type": "hvac",
            "home_id": "home-1",
            "created_at": "2026-05-01T10:00:00+00:00",
            "metadata": {
                "task_id": "task-9",
                "risk_delta": {"scoreChange": 8, "monthsAdded": 6, "statusChange": None},
                "before_snapshot": {"score": 60, "status": "attention"},
                "after_snapshot": {"score": 68, "status": "healthy"},
                "calculation_status": "suspicious",
                "prediction_refresh_duration_ms": 2400,
            },
        },
        {"id": "evt-2", "system_type": "roof", "created_at": None, "metadata": None},
    ]
    impacts = await RiskDeltaCapture(client, settings=settings).fetch_risk_deltas("home-1", limit=5)

    client.get_system_events.assert_awaited_once_with("home-1", system_type=None, limit=5, since=None)
    first, second = impacts
    assert first.task_id == "task-9"
    assert first.delta.score_change == 8
    assert first.after.score == 68
    assert first.calculation_status == "suspicious"
    assert first.calculation_duration_ms == 2400

    assert second.task_id == "evt-2"
    assert second.home_id == "home-1"
    assert second.before.score == 0
    assert second.delta.score_change == 0
    assert second.calculation_status == "success"
    assert second.completed_at


@pytest.mark.asyncio
async def test_latest_risk_delta(settings):
    from habitta.services.risk_delta import RiskDeltaCapture
    client = AsyncMock()
    client.get_system_events.return_value = [{
        "metadata": {
            "risk_delta": {"scoreChange": 4},
            "before_snapshot": {"score": 50, "status": "attention"},
            "after_snapshot": {"score": 54, "status": "attention"},
        },
    }]
    latest = await RiskDeltaCapture(client, settings=settings).get_latest_risk_delta("home-1", "roof")
    assert latest["delta"].score_change == 4
    assert latest["after"].score == 54

    client.get_system_events.return_value = []
    assert await RiskDeltaCapture(client, settings=settings).get_latest_risk_delta("home-1", "roof") is None
