"""Load a home's records from the backend, score them, and build recommendations.

Dismissed recommendation ids are kept per home in a Redis set
(``recommendations:dismissed:<home_id>``). Dismissal carries no penalty,
it only hides the item.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

import structlog
from pydantic import ValidationError

from habitta.core.confidence import HomeConfidenceResult, compute_home_confidence
from habitta.core.recommendations import Recommendation, generate_recommendations
from habitta.core.records import HomeAsset, HomeEvent, SystemTimelineEntry, as_utc
from habitta.core.retry import fetch_with_retry

log = structlog.get_logger()

EVENT_FETCH_LIMIT = 100
DISMISSED_KEY_PREFIX = "recommendations:dismissed"


@dataclass
class HomeConfidenceReport:
    confidence: HomeConfidenceResult
    recommendations: list[Recommendation] = field(default_factory=list)
    last_touch_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.confidence.to_dict(),
            "recommendations": [r.to_dict() for r in self.recommendations],
            "last_touch_at": self.last_touch_at.isoformat() if self.last_touch_at else None,
        }


def last_touch(assets: list[HomeAsset], events: list[HomeEvent]) -> datetime | None:
    """Most recent user interaction: newest event creation or asset update."""
    stamps = [as_utc(e.created_at) for e in events] + [as_utc(a.updated_at) for a in assets]
    return max(stamps) if stamps else None


def _parse(model, rows: list[dict]) -> list:
    parsed = []
    for row in rows:
        try:
            parsed.append(model.model_validate(row))
        except ValidationError as exc:
            log.warning("home_confidence.bad_record", model=model.__name__, id=row.get("id"), error=str(exc))
    return parsed


async def load_home_confidence(
    client,
    home_id: str,
    systems: list[SystemTimelineEntry],
    year_built: int | None = None,
    dismissed_ids: Iterable[str] = (),
    now: datetime | None = None,
    settings=None,
) -> HomeConfidenceReport:
    """Fetch active assets and recent events, then score and recommend.

    Fetch failures are logged and scored as an empty record set.
    """
    from config.settings import get_settings
    settings = settings or get_settings()

    assets: list[HomeAsset] = []
    events: list[HomeEvent] = []
    try:
        asset_rows, event_rows = await asyncio.gather(
            fetch_with_retry(
                lambda: client.get_home_assets(home_id),
                max_retries=settings.retry_max_retries,
                delay_ms=settings.retry_delay_ms,
            ),
            fetch_with_retry(
                lambda: client.get_home_events(home_id, limit=EVENT_FETCH_LIMIT),
                max_retries=settings.retry_max_retries,
                delay_ms=settings.retry_delay_ms,
            ),
        )
        assets = _parse(HomeAsset, asset_rows)
        events = _parse(HomeEvent, event_rows)
    except Exception as exc:
        log.error("home_confidence.fetch_failed", home_id=home_id, error=str(exc))

    touched = last_touch(assets, events)
    return HomeConfidenceReport(
        confidence=compute_home_confidence(systems, assets, events, touched, year_built, now=now),
        recommendations=generate_recommendations(
            systems, assets, events, dismissed_ids, touched, year_built, now=now
        ),
        last_touch_at=touched,
    )


# ─────────────────────────── Dismissals ──────────────────────────────


def _dismissed_key(home_id: str) -> str:
    return f"{DISMISSED_KEY_PREFIX}:{home_id}"


async def get_dismissed_ids(redis_client, home_id: str) -> set[str]:
    try:
        return set(await redis_client.smembers(_dismissed_key(home_id)))
    except Exception as exc:
        log.warning("home_confidence.dismissed_load_failed", home_id=home_id, error=str(exc))
        return set()


async def dismiss_recommendation(redis_client, home_id: str, recommendation_id: str) -> None:
    await redis_client.sadd(_dismissed_key(home_id), recommendation_id)
    log.info("home_confidence.recommendation_dismissed", home_id=home_id, id=recommendation_id)
