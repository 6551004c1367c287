"""FastAPI server: REST interface for the advisor, confidence, and risk delta core.

Run: PYTHONPATH=. python -m habitta.api.server
"""
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime
from typing import Any, Literal, Optional

import redis
import redis.asyncio as aioredis
import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from config.settings import get_settings
from habitta.api.sessions import SessionStore
from habitta.core.advisor import AdvisorSession
from habitta.core.cadence import CadencePolicy, CadenceRules, RedisTriggerHistory
from habitta.core.confidence import compute_home_confidence
from habitta.core.records import HomeAsset, HomeEvent, SystemTimelineEntry
from habitta.core.risk_delta import DeltaBounds, RiskSnapshot, compute_risk_delta, validate_delta
from habitta.core.state import (
    AdvisorTrigger,
    ConfidenceImproved,
    DecisionFocus,
    PlanningWindowEntered,
    RiskLevel,
    RiskThresholdCrossed,
    SystemFocus,
    SystemSelected,
    UserCommitted,
    UserDismissedChat,
    UserReplied,
    UserSwitchedSystem,
)
from habitta.services.backend import BackendClient
from habitta.services.home_confidence import (
    dismiss_recommendation,
    get_dismissed_ids,
    load_home_confidence,
)
from habitta.services.risk_delta import RiskDeltaCapture
from habitta.workers.risk_delta import enqueue_capture

log = structlog.get_logger()

settings = get_settings()

_sessions = SessionStore(
    max_sessions=settings.advisor_max_sessions,
    idle_ttl_sec=settings.advisor_session_idle_ttl_sec,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # One client of each kind per process, shared by all requests
    app.state.queue_redis = aioredis.from_url(settings.redis_url, decode_responses=True)
    app.state.sync_redis = redis.from_url(settings.redis_url, decode_responses=True)
    log.info("habitta.api_startup")
    try:
        yield
    finally:
        _sessions.clear()
        await app.state.queue_redis.aclose()
        app.state.sync_redis.close()
        log.info("habitta.api_shutdown")


app = FastAPI(
    title="Habitta Advisor API",
    description="Advisor state machine, home confidence, and risk delta capture",
    version=settings.app_version,
    lifespan=lifespan,
)


# ─────────────────────────── Dependencies ────────────────────────────


async def get_backend():
    client = BackendClient()
    try:
        yield client
    finally:
        await client.aclose()


def get_sync_redis(request: Request):
    return request.app.state.sync_redis


def get_queue_redis(request: Request):
    return request.app.state.queue_redis


# ─────────────────────────── Request models ──────────────────────────


class ConfidenceComputeRequest(BaseModel):
    systems: list[SystemTimelineEntry] = []
    assets: list[HomeAsset] = []
    events: list[HomeEvent] = []
    last_touch_at: Optional[datetime] = None
    year_built: Optional[int] = None


class HomeConfidenceRequest(BaseModel):
    systems: list[SystemTimelineEntry] = []
    year_built: Optional[int] = None
    dismissed_ids: list[str] = []


class SessionCreateRequest(BaseModel):
    home_id: Optional[str] = None
    initial_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    initial_risk: RiskLevel = RiskLevel.LOW


class TriggerRequest(BaseModel):
    type: Literal[
        "SYSTEM_SELECTED",
        "RISK_THRESHOLD_CROSSED",
        "CONFIDENCE_IMPROVED",
        "PLANNING_WINDOW_ENTERED",
        "USER_REPLIED",
        "USER_COMMITTED",
        "USER_DISMISSED_CHAT",
        "USER_SWITCHED_SYSTEM",
    ]
    system_key: Optional[str] = None
    new_level: Optional[RiskLevel] = None
    old_confidence: Optional[float] = None
    new_confidence: Optional[float] = None
    months_remaining: Optional[float] = None
    decision_id: Optional[str] = None
    new_system_key: Optional[str] = None


class SnapshotModel(BaseModel):
    score: float
    failureProbability12mo: Optional[float] = None
    monthsRemaining: Optional[float] = None
    status: str = ""

    def to_snapshot(self) -> RiskSnapshot:
        return RiskSnapshot(
            score=self.score,
            failure_probability_12mo=self.failureProbability12mo,
            months_remaining=self.monthsRemaining,
            status=self.status,
        )


class DeltaValidateRequest(BaseModel):
    before: SnapshotModel
    after: SnapshotModel


class TaskCompleteRequest(BaseModel):
    home_id: str
    task_id: str
    system_type: Optional[str] = None
    before: Optional[SnapshotModel] = None


# ─────────────────────────── Helpers ─────────────────────────────────


def _require(value: Any, name: str, trigger_type: str) -> Any:
    if value is None:
        raise HTTPException(status_code=422, detail=f"{trigger_type} requires '{name}'")
    return value


def _to_trigger(req: TriggerRequest) -> AdvisorTrigger:
    t = req.type
    if t == "SYSTEM_SELECTED":
        return SystemSelected(_require(req.system_key, "system_key", t))
    if t == "RISK_THRESHOLD_CROSSED":
        return RiskThresholdCrossed(
            _require(req.system_key, "system_key", t),
            _require(req.new_level, "new_level", t),
        )
    if t == "CONFIDENCE_IMPROVED":
        return ConfidenceImproved(
            _require(req.system_key, "system_key", t),
            _require(req.old_confidence, "old_confidence", t),
            _require(req.new_confidence, "new_confidence", t),
        )
    if t == "PLANNING_WINDOW_ENTERED":
        return PlanningWindowEntered(
            _require(req.system_key, "system_key", t),
            _require(req.months_remaining, "months_remaining", t),
        )
    if t == "USER_REPLIED":
        return UserReplied()
    if t == "USER_COMMITTED":
        return UserCommitted(_require(req.decision_id, "decision_id", t))
    if t == "USER_DISMISSED_CHAT":
        return UserDismissedChat()
    return UserSwitchedSystem(_require(req.new_system_key, "new_system_key", t))


def _focus_dict(session: AdvisorSession) -> dict:
    focus = session.focus
    if isinstance(focus, SystemFocus):
        return {"type": "SYSTEM", "system_key": focus.system_key}
    if isinstance(focus, DecisionFocus):
        return {"type": "DECISION", "decision_id": focus.decision_id}
    return {"type": "NONE"}


def _session_dict(session_id: str, session: AdvisorSession) -> dict:
    snap = session.snapshot()
    return {
        "session_id": session_id,
        "state": snap.state.value,
        "focus": _focus_dict(session),
        "confidence": snap.confidence,
        "risk": snap.risk.value,
        "should_chat_be_open": snap.should_chat_be_open,
        "has_agent_message": snap.has_agent_message,
        "opening_message": asdict(snap.opening_message) if snap.opening_message else None,
        "expanded_triggers": snap.expanded_triggers,
    }


def _get_session(session_id: str) -> AdvisorSession:
    session = _sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Unknown advisor session {session_id}")
    return session


# ─────────────────────────── Routes ──────────────────────────────────


@app.get("/health")
async def health() -> dict:
    return {"status": "ok", "service": settings.app_name, "version": settings.app_version}


@app.post("/confidence/compute")
async def compute_confidence(request: ConfidenceComputeRequest) -> dict:
    result = compute_home_confidence(
        request.systems,
        request.assets,
        request.events,
        request.last_touch_at,
        request.year_built,
    )
    return result.to_dict()


@app.post("/homes/{home_id}/confidence")
async def home_confidence(
    home_id: str,
    request: HomeConfidenceRequest,
    client: BackendClient = Depends(get_backend),
    redis_client=Depends(get_queue_redis),
) -> dict:
    """Score the home and recommend next actions.

    Ids dismissed earlier for this home are merged with ``dismissed_ids``.
    """
    dismissed = await get_dismissed_ids(redis_client, home_id) | set(request.dismissed_ids)
    report = await load_home_confidence(
        client,
        home_id,
        request.systems,
        request.year_built,
        dismissed_ids=dismissed,
    )
    return report.to_dict()


@app.post("/homes/{home_id}/recommendations/{recommendation_id}/dismiss")
async def dismiss(
    home_id: str,
    recommendation_id: str,
    redis_client=Depends(get_queue_redis),
) -> dict:
    try:
        await dismiss_recommendation(redis_client, home_id, recommendation_id)
    except Exception as exc:
        log.error("api.dismiss_failed", home_id=home_id, error=str(exc))
        raise HTTPException(status_code=503, detail="Dismissal store unavailable")
    return {"dismissed": recommendation_id}


@app.post("/advisor/sessions")
async def create_session(
    request: SessionCreateRequest,
    redis_client=Depends(get_sync_redis),
) -> dict:
    history = None
    rules = CadenceRules.from_settings(get_settings())
    if request.home_id:
        history = RedisTriggerHistory(
            redis_client,
            scope=request.home_id,
            ttl_sec=rules.min_time_between_same_trigger_sec,
        )
    session = AdvisorSession(
        initial_confidence=request.initial_confidence,
        initial_risk=request.initial_risk,
        cadence=CadencePolicy(rules, history),
    )
    session_id = _sessions.add(session)
    log.info("advisor.session_created", session_id=session_id, home_id=request.home_id)
    return _session_dict(session_id, session)


@app.get("/advisor/sessions/{session_id}")
async def get_session(session_id: str) -> dict:
    return _session_dict(session_id, _get_session(session_id))


@app.post("/advisor/sessions/{session_id}/triggers")
async def post_trigger(session_id: str, request: TriggerRequest) -> dict:
    session = _get_session(session_id)
    trigger = _to_trigger(request)
    if isinstance(trigger, RiskThresholdCrossed):
        session.risk = trigger.new_level
    elif isinstance(trigger, ConfidenceImproved):
        session.confidence = trigger.new_confidence
    expanded = session.process(trigger)
    return {"expanded": expanded, **_session_dict(session_id, session)}


@app.post("/advisor/sessions/{session_id}/expand")
async def expand_session(session_id: str) -> dict:
    session = _get_session(session_id)
    session.expand_chat()
    return _session_dict(session_id, session)


@app.post("/advisor/sessions/{session_id}/reset")
async def reset_session(session_id: str) -> dict:
    session = _get_session(session_id)
    session.reset()
    return _session_dict(session_id, session)


@app.delete("/advisor/sessions/{session_id}")
async def delete_session(session_id: str) -> dict:
    _get_session(session_id)
    _sessions.delete(session_id)
    return {"deleted": session_id}


@app.post("/risk-delta/validate")
async def validate_risk_delta(request: DeltaValidateRequest) -> dict:
    before = request.before.to_snapshot()
    after = request.after.to_snapshot()
    delta = compute_risk_delta(before, after)
    result = validate_delta(delta, before, after, DeltaBounds.from_settings(get_settings()))
    return {"delta": delta.to_metadata(), "validation": result.to_dict()}


@app.post("/tasks/complete")
async def complete_task(
    request: TaskCompleteRequest,
    queue=Depends(get_queue_redis),
) -> dict:
    """Mark a task complete and queue the risk delta capture.

    Queueing is best-effort: completion succeeds even if Redis is down.
    """
    capture = "skipped"
    if request.system_type and request.before is not None:
        try:
            await enqueue_capture(queue, {
                "home_id": request.home_id,
                "task_id": request.task_id,
                "system_type": request.system_type,
                "before": request.before.to_snapshot().to_metadata(),
            })
            capture = "queued"
        except Exception as exc:
            log.error("api.delta_enqueue_failed", task_id=request.task_id, error=str(exc))
            capture = "failed"
    return {"status": "completed", "task_id": request.task_id, "delta_capture": capture}


@app.get("/homes/{home_id}/risk-deltas")
async def list_risk_deltas(
    home_id: str,
    system_type: Optional[str] = None,
    limit: int = 20,
    since: Optional[datetime] = None,
    client: BackendClient = Depends(get_backend),
) -> dict:
    capture = RiskDeltaCapture(client)
    try:
        impacts = await capture.fetch_risk_deltas(home_id, system_type, limit, since)
    except Exception as exc:
        log.error("api.risk_deltas_failed", home_id=home_id, error=str(exc))
        raise HTTPException(status_code=502, detail="Backend unavailable")
    return {
        "impacts": [asdict(i) for i in impacts],
        "total": len(impacts),
        "oldest_date": impacts[-1].completed_at if impacts else None,
    }


@app.get("/homes/{home_id}/risk-deltas/latest")
async def latest_risk_delta(
    home_id: str,
    system_type: str,
    client: BackendClient = Depends(get_backend),
) -> dict:
    latest = await RiskDeltaCapture(client).get_latest_risk_delta(home_id, system_type)
    if latest is None:
        raise HTTPException(status_code=404, detail="No risk delta recorded")
    return {key: asdict(value) for key, value in latest.items()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.api_port)
