"""Pydantic models for backend records consumed by the scoring and delta code.

Field names match the backend's JSON columns. Unknown fields are ignored so
the models tolerate schema additions.
"""
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Record(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ReplacementWindow(_Record):
    """Probabilistic replacement window (p10 / p50 / p90 years)."""
    early_year: int = Field(alias="earlyYear")
    likely_year: int = Field(alias="likelyYear")
    late_year: int = Field(alias="lateYear")
    rationale: str = ""


class SystemTimelineEntry(_Record):
    """Per-system entry from the capital timeline."""
    system_id: str = Field(alias="systemId")
    install_year: Optional[int] = Field(default=None, alias="installYear")
    install_source: Optional[str] = Field(default=None, alias="installSource")
    material_type: Optional[str] = Field(default=None, alias="materialType")
    replacement_window: Optional[ReplacementWindow] = Field(default=None, alias="replacementWindow")


class HomeAsset(_Record):
    id: str
    kind: str
    serial: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: str = "active"  # active | removed
    updated_at: datetime


class HomeEvent(_Record):
    id: str
    event_type: str
    title: str = ""
    description: Optional[str] = None
    source: str = ""
    status: str = "open"  # open | in_progress | resolved
    severity: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    asset_id: Optional[str] = None
    home_id: str
    created_at: datetime


class SurvivalEstimate(_Record):
    failure_probability_12mo: Optional[float] = Field(default=None, alias="failureProbability12mo")
    months_remaining_p50: Optional[float] = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> "SurvivalEstimate":
        payload = payload or {}
        months = payload.get("monthsRemaining") or {}
        return cls(
            failure_probability_12mo=payload.get("failureProbability12mo"),
            months_remaining_p50=months.get("p50") if isinstance(months, dict) else None,
        )


class SystemPrediction(_Record):
    """One entry of the ``systems`` list returned by the predictions function."""
    system: str
    score: float
    status: str = ""
    survival: SurvivalEstimate = Field(default_factory=SurvivalEstimate)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "SystemPrediction":
        return cls(
            system=payload["system"],
            score=payload.get("score", 0),
            status=payload.get("status") or "",
            survival=SurvivalEstimate.from_payload(payload.get("survival")),
        )


def as_utc(ts: datetime) -> datetime:
    """Treat naive timestamps as UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts
