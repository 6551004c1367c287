"""Home Confidence — deterministic documentation/maintenance scoring.

Measures: "How well-understood, documented, and actively managed is this home?"
Does NOT measure: home value, quality, age, cost, or condition.

Scoring contract:
  - KEY_SYSTEMS only (hvac, roof, electrical, water_heater, plumbing)
  - Each system contributes up to MAX_POINTS_PER_SYSTEM via boolean signals
  - Each signal counts exactly once (no stacking)
  - Freshness decay applied after normalization, final score floored at 0
  - State label is primary, number is secondary

State thresholds (first match wins):
  >= 80  solid
  >= 55  developing
  >= 30  unclear
  <  30  at-risk
"""
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import structlog

from habitta.core.records import HomeAsset, HomeEvent, SystemTimelineEntry, as_utc

log = structlog.get_logger()

KEY_SYSTEMS: tuple[str, ...] = ("hvac", "roof", "electrical", "water_heater", "plumbing")

MAX_POINTS_PER_SYSTEM = 20
MAX_BASE_POINTS = len(KEY_SYSTEMS) * MAX_POINTS_PER_SYSTEM

# Systems where material is a meaningful distinguishing signal
MATERIAL_APPLICABLE_SYSTEMS: frozenset[str] = frozenset({"roof", "plumbing"})

# Systems assumed original to the home (install year = year built)
ORIGINAL_TO_HOME_SYSTEMS: frozenset[str] = frozenset({"electrical", "plumbing"})

# Tier-1 systems weigh fully in next-gain ranking, the rest at TIER_2_WEIGHT
TIER_1_SYSTEMS: frozenset[str] = frozenset({"hvac", "roof", "electrical"})
TIER_2_WEIGHT = 0.7
PHOTO_PRIORITY_BOOST = 1.2

# Freshness decay (months are 30-day months)
STALE_MONTHS = 18
VERY_STALE_MONTHS = 36
DECAY_STALE = -5
DECAY_VERY_STALE = -10
DECAY_NO_TOUCH = -10

MAX_EVIDENCE_CHIPS = 3

SIGNAL_POINTS: dict[str, int] = {
    "has_install_year": 6,
    "has_material": 3,
    "has_serial": 1,
    "has_photo": 4,
    "has_permit_or_invoice": 2,
    "has_owner_confirmation": 3,
    "has_maintenance_record": 2,
    "has_professional_service": 1,
    "has_maintenance_notes": 1,
}

STATE_MAP: list[tuple[int, str, str]] = [
    (80, "solid", "Most systems are understood and tracked"),
    (55, "developing", "Key gaps exist, but nothing critical is hidden"),
    (30, "unclear", "Too many unknowns to plan confidently"),
    (0, "at-risk", "Major systems lack basic information"),
]

SYSTEM_DISPLAY_NAMES: dict[str, str] = {
    "hvac": "HVAC System",
    "roof": "Roof",
    "water_heater": "Water Heater",
    "electrical": "Electrical",
    "plumbing": "Plumbing",
}


def get_system_display_name(system_key: str) -> str:
    return SYSTEM_DISPLAY_NAMES.get(system_key, system_key)


@dataclass
class SystemSignals:
    has_install_year: bool = False
    has_material: bool = False
    has_serial: bool = False
    has_photo: bool = False
    has_permit_or_invoice: bool = False
    has_owner_confirmation: bool = False
    has_maintenance_record: bool = False
    has_professional_service: bool = False
    has_maintenance_notes: bool = False


@dataclass
class SystemScore:
    total: int
    documentation: int
    maintenance: int
    planning: int


@dataclass
class NextGain:
    action: str
    delta: int
    system_key: str


@dataclass
class ConfidenceBreakdown:
    documentation: int = 0
    maintenance: int = 0
    planning: int = 0
    freshness: int = 0


@dataclass
class HomeConfidenceResult:
    """Complete result of a home confidence computation."""
    score: int
    state: str  # "solid" | "developing" | "unclear" | "at-risk"
    state_meaning: str
    evidence_chips: list[str] = field(default_factory=list)
    next_gain: Optional[NextGain] = None
    breakdown: ConfidenceBreakdown = field(default_factory=ConfidenceBreakdown)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ─────────────────────────── Signal derivation ───────────────────────────


def _system_events(
    system_kind: str,
    system_assets: list[HomeAsset],
    events: Iterable[HomeEvent],
) -> list[HomeEvent]:
    asset_ids = {a.id for a in system_assets}
    kind = system_kind.lower()
    spaced = kind.replace("_", " ")
    matched = []
    for event in events:
        if event.asset_id and event.asset_id in asset_ids:
            matched.append(event)
            continue
        title = (event.title or "").lower()
        if kind in title or spaced in title:
            matched.append(event)
    return matched


def derive_system_signals(
    system_kind: str,
    entry: SystemTimelineEntry | None,
    assets: list[HomeAsset],
    events: list[HomeEvent],
    year_built: int | None = None,
) -> SystemSignals:
    """Derive the nine boolean signals for one system. Pure, no side effects."""
    system_assets = [a for a in assets if a.kind == system_kind and a.status == "active"]
    maintenance = [
        e for e in _system_events(system_kind, system_assets, events)
        if e.event_type == "maintenance"
    ]
    install_source = entry.install_source if entry else None

    has_material = False
    if system_kind in MATERIAL_APPLICABLE_SYSTEMS and entry is not None:
        has_material = entry.material_type is not None and entry.material_type != "unknown"

    return SystemSignals(
        has_install_year=(
            (entry is not None and entry.install_year is not None)
            or (system_kind in ORIGINAL_TO_HOME_SYSTEMS and year_built is not None)
        ),
        has_material=has_material,
        has_serial=any(a.serial for a in system_assets),
        has_photo=any(
            a.metadata.get("photo_url") is not None or a.metadata.get("has_photo") is True
            for a in system_assets
        ),
        has_permit_or_invoice=install_source == "permit",
        has_owner_confirmation=(
            install_source is not None and install_source not in ("inferred", "unknown")
        ),
        has_maintenance_record=len(maintenance) > 0,
        has_professional_service=any(
            e.source == "professional" or e.metadata.get("professional") is True
            for e in maintenance
        ),
        has_maintenance_notes=any(e.description for e in maintenance),
    )


# ─────────────────────────── Scoring ─────────────────────────────────────


def score_system(system_kind: str, signals: SystemSignals) -> SystemScore:
    """Points for one system from its signals, total clamped to MAX_POINTS_PER_SYSTEM."""
    documentation = 0
    maintenance = 0
    planning = 0

    if signals.has_install_year:
        documentation += SIGNAL_POINTS["has_install_year"]
    if system_kind in MATERIAL_APPLICABLE_SYSTEMS and signals.has_material:
        documentation += SIGNAL_POINTS["has_material"]
    if signals.has_serial:
        documentation += SIGNAL_POINTS["has_serial"]
    if signals.has_photo:
        documentation += SIGNAL_POINTS["has_photo"]
    if signals.has_permit_or_invoice:
        documentation += SIGNAL_POINTS["has_permit_or_invoice"]
    if signals.has_owner_confirmation:
        documentation += SIGNAL_POINTS["has_owner_confirmation"]

    if signals.has_maintenance_record:
        maintenance += SIGNAL_POINTS["has_maintenance_record"]
    if signals.has_professional_service:
        maintenance += SIGNAL_POINTS["has_professional_service"]
    if signals.has_maintenance_notes:
        maintenance += SIGNAL_POINTS["has_maintenance_notes"]

    total = min(MAX_POINTS_PER_SYSTEM, documentation + maintenance + planning)
    return SystemScore(total, documentation, maintenance, planning)


def compute_freshness_decay(last_touch_at: datetime | None, now: datetime | None = None) -> int:
    if last_touch_at is None:
        return DECAY_NO_TOUCH

    now = as_utc(now or datetime.now(timezone.utc))
    months = (now - as_utc(last_touch_at)).total_seconds() / (60 * 60 * 24 * 30)

    if months >= VERY_STALE_MONTHS:
        return DECAY_VERY_STALE
    if months >= STALE_MONTHS:
        return DECAY_STALE
    return 0


def get_state(score: int) -> tuple[str, str]:
    for minimum, state, meaning in STATE_MAP:
        if score >= minimum:
            return state, meaning
    _, state, meaning = STATE_MAP[-1]
    return state, meaning


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"


def build_evidence_chips(signals_by_system: dict[str, SystemSignals]) -> list[str]:
    """Short count-only summaries. Never exposes raw scores."""
    fully_documented = 0
    service_confirmed = 0
    owner_confirmed = 0

    for kind, signals in signals_by_system.items():
        doc = [signals.has_install_year, signals.has_owner_confirmation]
        if kind in MATERIAL_APPLICABLE_SYSTEMS:
            doc.append(signals.has_material)
        if all(doc):
            fully_documented += 1
        if signals.has_professional_service or signals.has_maintenance_record:
            service_confirmed += 1
        if signals.has_owner_confirmation:
            owner_confirmed += 1

    chips = []
    if fully_documented:
        chips.append(f"{_plural(fully_documented, 'system')} documented")
    if service_confirmed:
        chips.append(f"{_plural(service_confirmed, 'service')} confirmed")
    if owner_confirmed:
        chips.append(f"{_plural(owner_confirmed, 'system')} confirmed")
    return chips[:MAX_EVIDENCE_CHIPS]


def find_next_gain(signals_by_system: dict[str, SystemSignals]) -> NextGain | None:
    """Single most impactful missing signal, or None when every system is covered.

    Ties on priority go to the alphabetically first system key, then to the
    candidate order photo → install year → material → maintenance.
    """
    candidates: list[tuple[float, str, NextGain]] = []

    for kind, signals in signals_by_system.items():
        weight = 1.0 if kind in TIER_1_SYSTEMS else TIER_2_WEIGHT
        name = get_system_display_name(kind)

        if not signals.has_photo:
            points = SIGNAL_POINTS["has_photo"]
            candidates.append((
                points * weight * PHOTO_PRIORITY_BOOST,
                kind,
                NextGain(f"Upload a photo of your {name}", points, kind),
            ))
        if not signals.has_install_year:
            points = SIGNAL_POINTS["has_install_year"]
            candidates.append((
                points * weight,
                kind,
                NextGain(f"Confirm when your {name} was installed", points, kind),
            ))
        if kind in MATERIAL_APPLICABLE_SYSTEMS and not signals.has_material:
            points = SIGNAL_POINTS["has_material"]
            candidates.append((
                points * weight,
                kind,
                NextGain(f"Confirm your {name} material type", points, kind),
            ))
        if not signals.has_maintenance_record:
            points = SIGNAL_POINTS["has_maintenance_record"]
            candidates.append((
                points * weight,
                kind,
                NextGain(f"Log a {name} service visit", points, kind),
            ))

    if not candidates:
        return None

    # sorted() is stable, so candidate order survives within a system
    ranked = sorted(candidates, key=lambda c: (-round(c[0], 6), c[1]))
    return ranked[0][2]


# ─────────────────────────── Main computation ───────────────────────────


def compute_home_confidence(
    systems: list[SystemTimelineEntry],
    assets: list[HomeAsset],
    events: list[HomeEvent],
    last_touch_at: datetime | None,
    year_built: int | None = None,
    now: datetime | None = None,
) -> HomeConfidenceResult:
    """Score the home from raw timeline, asset and event records.

    Every key system is evaluated, even when the timeline has no entry for it.
    """
    by_id = {s.system_id: s for s in systems if s.system_id in KEY_SYSTEMS}

    signals_by_system: dict[str, SystemSignals] = {}
    breakdown = ConfidenceBreakdown()
    earned = 0

    for kind in KEY_SYSTEMS:
        signals = derive_system_signals(kind, by_id.get(kind), assets, events, year_built)
        signals_by_system[kind] = signals

        result = score_system(kind, signals)
        earned += result.total
        breakdown.documentation += result.documentation
        breakdown.maintenance += result.maintenance
        breakdown.planning += result.planning

    normalized = min(100, math.floor(earned / MAX_BASE_POINTS * 100 + 0.5))
    normalized = max(0, normalized)

    breakdown.freshness = compute_freshness_decay(last_touch_at, now)
    score = max(0, normalized + breakdown.freshness)
    state, meaning = get_state(score)

    result = HomeConfidenceResult(
        score=score,
        state=state,
        state_meaning=meaning,
        evidence_chips=build_evidence_chips(signals_by_system),
        next_gain=find_next_gain(signals_by_system),
        breakdown=breakdown,
    )
    log.debug(
        "confidence.computed",
        score=score,
        state=state,
        earned=earned,
        freshness=breakdown.freshness,
    )
    return result

