"""Unit tests for the recommendation engine."""
from datetime import datetime, timedelta, timezone

import pytest

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def _documented_home(**roof_overrides):
    from habitta.core.confidence import KEY_SYSTEMS
    from habitta.core.records import HomeAsset, HomeEvent, SystemTimelineEntry
    systems = []
    for kind in KEY_SYSTEMS:
        fields = {"systemId": kind, "installYear": 2012, "installSource": "permit", "materialType": "asphalt"}
        if kind == "roof":
            fields.update(roof_overrides)
        systems.append(SystemTimelineEntry(**fields))
    assets = [
        HomeAsset(
            id=f"asset-{kind}",
            kind=kind,
            serial="SN-1",
            metadata={"photo_url": "https://img/x.jpg"},
            updated_at=NOW - timedelta(days=3),
        )
        for kind in KEY_SYSTEMS
    ]
    events = [
        HomeEvent(
            id=f"event-{kind}",
            event_type="maintenance",
            title="Annual service",
            description="Checked connections",
            source="professional",
            asset_id=f"asset-{kind}",
            home_id="home-1",
            created_at=NOW - timedelta(days=1),
        )
        for kind in KEY_SYSTEMS
    ]
    return systems, assets, events


def _generate(systems=(), assets=(), events=(), dismissed=(), last_touch_at=None, year_built=None):
    from habitta.core.recommendations import generate_recommendations
    return generate_recommendations(
        list(systems), list(assets), list(events), dismissed, last_touch_at, year_built, now=NOW
    )


# ─────────────────────── Ordering & cap ───────────────────────────────────────


def test_empty_home_ranks_tier_one_install_years_first():
    recs = _generate()
    assert [r.id for r in recs] == [
        "documentation:hvac:has_install_year",
        "documentation:roof:has_install_year",
        "documentation:electrical:has_install_year",
    ]
    top = recs[0]
    # 6 points, tier 1, nothing known (x1.5)
    assert top.priority_score == pytest.approx(9.0)
    assert top.confidence_delta == 6
    assert top.title == "Add HVAC System install year"
    assert top.rationale == "Knowing the hvac system installation year improves replacement planning accuracy"
    assert top.route == "/systems/hvac"
    assert top.system_id == "hvac"


def test_results_are_sorted_and_capped():
    from habitta.core.recommendations import MAX_RECOMMENDATIONS
    recs = _generate()
    assert len(recs) == MAX_RECOMMENDATIONS
    scores = [r.priority_score for r in recs]
    assert scores == sorted(scores, reverse=True)


def test_tier_two_systems_are_discounted():
    recs = _generate(dismissed={
        "documentation:hvac:has_install_year",
        "documentation:roof:has_install_year",
        "documentation:electrical:has_install_year",
    })
    # water heater and plumbing install years: 6 * 0.7 * 1.5
    assert [r.id for r in recs[:2]] == [
        "documentation:water_heater:has_install_year",
        "documentation:plumbing:has_install_year",
    ]
    assert recs[0].priority_score == pytest.approx(6.3)


def test_year_built_fills_original_systems():
    recs = _generate(year_built=1995)
    ids = [r.id for r in recs]
    assert "documentation:electrical:has_install_year" not in ids
    assert ids[:2] == ["documentation:hvac:has_install_year", "documentation:roof:has_install_year"]


def test_fully_documented_recent_home_has_nothing_to_do():
    systems, assets, events = _documented_home()
    assert _generate(systems, assets, events, last_touch_at=NOW - timedelta(days=1)) == []


# ─────────────────────── Dismissal ────────────────────────────────────────────


def test_dismissed_items_are_skipped_and_backfilled():
    recs = _generate(dismissed=["documentation:roof:has_install_year"])
    assert [r.id for r in recs] == [
        "documentation:hvac:has_install_year",
        "documentation:electrical:has_install_year",
        "documentation:water_heater:has_install_year",
    ]


def test_unknown_dismissed_ids_are_ignored():
    assert len(_generate(dismissed=["nothing:here"])) == 3


# ─────────────────────── Passes ───────────────────────────────────────────────


def test_material_only_suggested_where_it_applies():
    systems, assets, events = _documented_home(materialType="unknown")
    recs = _generate(systems, assets, events, last_touch_at=NOW)
    assert [r.id for r in recs] == ["documentation:roof:has_material"]
    assert recs[0].action_type == "confirm_material"
    assert recs[0].title == "Confirm Roof material"


def test_missing_maintenance_routes_to_plan():
    systems, assets, _ = _documented_home()
    recs = _generate(systems, assets, [], last_touch_at=NOW)
    maintenance = [r for r in recs if r.type == "maintenance"]
    assert maintenance[0].id == "maintenance:hvac:has_maintenance_record"
    assert maintenance[0].route == "/systems/hvac/plan"
    assert maintenance[0].title == "Log recent HVAC System service"


def test_late_life_system_gets_planning_nudge():
    systems, assets, events = _documented_home(
        installYear=2006,
        installSource="inferred",
        replacementWindow={"earlyYear": 2024, "likelyYear": 2027, "lateYear": 2030},
    )
    recs = _generate(systems, assets, events, last_touch_at=NOW)
    assert [r.id for r in recs] == [
        "planning:roof:has_owner_confirmation",
        "documentation:roof:has_permit_or_invoice",
    ]
    planning = recs[0]
    assert planning.action_type == "acknowledge"
    assert planning.route == "/systems/roof/plan"
    assert planning.rationale == "Acknowledging roof replacement window reduces surprise risk"


def test_no_planning_nudge_when_owner_confirmed_or_far_off():
    confirmed = _documented_home(
        installYear=2006,
        replacementWindow={"earlyYear": 2024, "likelyYear": 2027, "lateYear": 2030},
    )
    assert _generate(*confirmed, last_touch_at=NOW) == []

    far_off = _documented_home(
        installYear=2020,
        installSource="inferred",
        replacementWindow={"earlyYear": 2040, "likelyYear": 2045, "lateYear": 2050},
    )
    assert [r.type for r in _generate(*far_off, last_touch_at=NOW)] == ["documentation"]


def test_remaining_years():
    from habitta.core.records import SystemTimelineEntry
    from habitta.core.recommendations import remaining_years
    window = {"earlyYear": 2024, "likelyYear": 2027, "lateYear": 2030}
    assert remaining_years(SystemTimelineEntry(systemId="roof", installYear=2006, replacementWindow=window), 2026) == 1
    assert remaining_years(SystemTimelineEntry(systemId="roof", installYear=2006, replacementWindow=window), 2040) == 0
    assert remaining_years(SystemTimelineEntry(systemId="roof", replacementWindow=window), 2026) is None
    assert remaining_years(SystemTimelineEntry(systemId="roof", installYear=2006), 2026) is None


def test_freshness_when_never_touched():
    from habitta.core.recommendations import FRESHNESS_ID
    systems, assets, events = _documented_home()
    recs = _generate(systems, assets, events, last_touch_at=None)
    assert [r.id for r in recs] == [FRESHNESS_ID]
    assert recs[0].route == "/home-profile"
    assert recs[0].system_id is None
    assert recs[0].rationale == "Confirming your home profile keeps planning data current"


def test_freshness_when_stale():
    systems, assets, events = _documented_home()
    recs = _generate(systems, assets, events, last_touch_at=NOW - timedelta(days=30 * 19))
    assert len(recs) == 1
    assert recs[0].type == "freshness"
    assert recs[0].rationale.startswith("Your home record may be drifting from reality")

    assert _generate(systems, assets, events, last_touch_at=NOW - timedelta(days=30 * 17)) == []


# ─────────────────────── Helpers ──────────────────────────────────────────────


def test_uncertainty_multiplier_bounds():
    from habitta.core.confidence import SystemSignals
    from habitta.core.recommendations import uncertainty_multiplier
    assert uncertainty_multiplier(SystemSignals()) == pytest.approx(1.5)
    everything = SystemSignals(**{name: True for name in SystemSignals.__dataclass_fields__})
    assert uncertainty_multiplier(everything) == pytest.approx(1.0)


@pytest.mark.parametrize("action_type,system_key,route", [
    ("add_year", "hvac", "/systems/hvac"),
    ("upload_photo", "roof", "/systems/roof"),
    ("log_maintenance", "plumbing", "/systems/plumbing/plan"),
    ("acknowledge", "roof", "/systems/roof/plan"),
    ("review_freshness", None, "/home-profile"),
    ("something_else", "hvac", "/home-profile"),
])
def test_routes(action_type, system_key, route):
    from habitta.core.recommendations import get_route
    assert get_route(action_type, system_key) == route


def test_to_dict_is_flat():
    body = _generate()[0].to_dict()
    assert body["id"] == "documentation:hvac:has_install_year"
    assert body["type"] == "documentation"
    assert body["action_type"] == "add_year"
