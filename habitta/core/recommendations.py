"""Recommendation engine: the few highest-leverage actions to raise Home Confidence.

Deterministic, four passes over the same signals the scorer uses:
  documentation  missing install year, permit/invoice, material, photo, serial
  maintenance    no maintenance record
  planning       late-life system (<= 2 years left) without owner confirmation
  freshness      no touch at all, or none in the last 18 months

Each candidate is weighted by system tier and by how little is known about
the system (uncertainty multiplier), dismissed ids are skipped, and at most
MAX_RECOMMENDATIONS are returned. Every item maps to an app route.
"""
import math
from dataclasses import asdict, astuple, dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from habitta.core.confidence import (
    KEY_SYSTEMS,
    MATERIAL_APPLICABLE_SYSTEMS,
    SIGNAL_POINTS,
    STALE_MONTHS,
    TIER_1_SYSTEMS,
    TIER_2_WEIGHT,
    SystemSignals,
    derive_system_signals,
    get_system_display_name,
)
from habitta.core.records import HomeAsset, HomeEvent, SystemTimelineEntry, as_utc

MAX_RECOMMENDATIONS = 3

# Only systems this close to their replacement window get a planning nudge
PLANNING_HORIZON_YEARS = 2

FRESHNESS_ID = "freshness:home:dataFreshness"
FRESHNESS_DELTA = 5
FRESHNESS_PRIORITY = 3.5

# (signal, action) in pass order
DOCUMENTATION_CHECKS: list[tuple[str, str]] = [
    ("has_install_year", "add_year"),
    ("has_permit_or_invoice", "upload_doc"),
    ("has_material", "confirm_material"),
    ("has_photo", "upload_photo"),
    ("has_serial", "add_serial"),
]

TITLES: dict[str, str] = {
    "add_year": "Add {name} install year",
    "upload_doc": "Upload a {name} permit or invoice",
    "confirm_material": "Confirm {name} material",
    "upload_photo": "Add a {name} photo",
    "add_serial": "Add {name} serial number",
    "log_maintenance": "Log recent {name} service",
    "acknowledge": "Confirm {name} details",
}

RATIONALES: dict[str, str] = {
    "add_year": "Knowing the {name} installation year improves replacement planning accuracy",
    "upload_doc": "A permit or invoice for your {name} strengthens data confidence",
    "upload_photo": "A photo helps verify {name} condition and age",
    "add_serial": "Adding the {name} serial number enables warranty and recall tracking",
    "confirm_material": "Confirming {name} material improves lifespan estimates",
    "log_maintenance": "Logging {name} service confirms active maintenance",
    "acknowledge": "Acknowledging {name} replacement window reduces surprise risk",
}


@dataclass
class Recommendation:
    id: str
    type: str  # documentation | maintenance | planning | freshness
    title: str
    rationale: str
    confidence_delta: int
    priority_score: float
    action_type: str
    route: str
    system_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def get_route(action_type: str, system_key: str | None = None) -> str:
    if system_key is None:
        return "/home-profile"
    if action_type in ("log_maintenance", "acknowledge"):
        return f"/systems/{system_key}/plan"
    if action_type in TITLES:
        return f"/systems/{system_key}"
    return "/home-profile"


def uncertainty_multiplier(signals: SystemSignals) -> float:
    """1.0 for a fully known system, up to 1.5 when every signal is missing."""
    values = astuple(signals)
    missing = sum(1 for v in values if not v)
    return 1 + missing / len(values) * 0.5


def remaining_years(entry: SystemTimelineEntry, current_year: int) -> int | None:
    """Years left until the middle of the replacement window, floored at 0."""
    window = entry.replacement_window
    if entry.install_year is None or window is None:
        return None
    age = current_year - entry.install_year
    lifespan_mid = ((window.early_year - entry.install_year) + (window.late_year - entry.install_year)) / 2
    return max(0, math.floor(lifespan_mid - age + 0.5))


def _system_rec(
    rec_type: str,
    kind: str,
    signal: str,
    action_type: str,
    signals: SystemSignals,
) -> Recommendation:
    name = get_system_display_name(kind)
    weight = 1.0 if kind in TIER_1_SYSTEMS else TIER_2_WEIGHT
    delta = SIGNAL_POINTS[signal]
    return Recommendation(
        id=f"{rec_type}:{kind}:{signal}",
        type=rec_type,
        title=TITLES[action_type].format(name=name),
        rationale=RATIONALES[action_type].format(name=name.lower()),
        confidence_delta=delta,
        priority_score=delta * weight * uncertainty_multiplier(signals),
        action_type=action_type,
        route=get_route(action_type, kind),
        system_id=kind,
    )


# ─────────────────────────── Passes ──────────────────────────────────────


def _documentation_pass(signals_by_system: dict[str, SystemSignals]) -> list[Recommendation]:
    recs = []
    for kind in KEY_SYSTEMS:
        signals = signals_by_system[kind]
        for signal, action_type in DOCUMENTATION_CHECKS:
            if signal == "has_material" and kind not in MATERIAL_APPLICABLE_SYSTEMS:
                continue
            if getattr(signals, signal):
                continue
            recs.append(_system_rec("documentation", kind, signal, action_type, signals))
    return recs


def _maintenance_pass(signals_by_system: dict[str, SystemSignals]) -> list[Recommendation]:
    return [
        _system_rec("maintenance", kind, "has_maintenance_record", "log_maintenance", signals_by_system[kind])
        for kind in KEY_SYSTEMS
        if not signals_by_system[kind].has_maintenance_record
    ]


def _planning_pass(
    by_id: dict[str, SystemTimelineEntry],
    signals_by_system: dict[str, SystemSignals],
    current_year: int,
) -> list[Recommendation]:
    recs = []
    for kind in KEY_SYSTEMS:
        entry = by_id.get(kind)
        if entry is None:
            continue
        remaining = remaining_years(entry, current_year)
        if remaining is None or remaining > PLANNING_HORIZON_YEARS:
            continue
        signals = signals_by_system[kind]
        if signals.has_owner_confirmation:
            continue
        recs.append(_system_rec("planning", kind, "has_owner_confirmation", "acknowledge", signals))
    return recs


def _freshness_pass(last_touch_at: datetime | None, now: datetime) -> list[Recommendation]:
    if last_touch_at is None:
        rationale = "Confirming your home profile keeps planning data current"
    else:
        months = (now - as_utc(last_touch_at)).total_seconds() / (60 * 60 * 24 * 30)
        if months < STALE_MONTHS:
            return []
        rationale = "Your home record may be drifting from reality; a quick review keeps confidence accurate"
    return [Recommendation(
        id=FRESHNESS_ID,
        type="freshness",
        title="Review and confirm home details",
        rationale=rationale,
        confidence_delta=FRESHNESS_DELTA,
        priority_score=FRESHNESS_PRIORITY,
        action_type="review_freshness",
        route=get_route("review_freshness"),
    )]


# ─────────────────────────── Generator ───────────────────────────────────


def generate_recommendations(
    systems: list[SystemTimelineEntry],
    assets: list[HomeAsset],
    events: list[HomeEvent],
    dismissed_ids: Iterable[str],
    last_touch_at: datetime | None,
    year_built: int | None = None,
    now: datetime | None = None,
) -> list[Recommendation]:
    """Top recommendations, highest priority first. Ties keep pass order."""
    now = as_utc(now or datetime.now(timezone.utc))
    dismissed = set(dismissed_ids)
    by_id = {s.system_id: s for s in systems if s.system_id in KEY_SYSTEMS}
    signals_by_system = {
        kind: derive_system_signals(kind, by_id.get(kind), assets, events, year_built)
        for kind in KEY_SYSTEMS
    }

    candidates = (
        _documentation_pass(signals_by_system)
        + _maintenance_pass(signals_by_system)
        + _planning_pass(by_id, signals_by_system, now.year)
        + _freshness_pass(last_touch_at, now)
    )
    ranked = sorted(
        (rec for rec in candidates if rec.id not in dismissed),
        key=lambda rec: -rec.priority_score,
    )
    return ranked[:MAX_RECOMMENDATIONS]
