"""Advisor copy — opening messages for the ENGAGED state.

Every message follows the same structure: what changed (observation),
why it matters now (implication), and what decisions exist (options preview).
Copy adapts to the confidence bucket and risk level, never to raw scores.
"""
import math

from habitta.core.state import (
    AdvisorOpeningMessage,
    AdvisorTrigger,
    ConfidenceBucket,
    ConfidenceImproved,
    PlanningWindowEntered,
    RiskLevel,
    RiskThresholdCrossed,
    SystemSelected,
)

# Bucket upper bounds (exclusive)
CONFIDENCE_LOW_BELOW = 0.5
CONFIDENCE_MEDIUM_BELOW = 0.8

SYSTEM_NAMES: dict[str, str] = {
    "hvac": "HVAC system",
    "roof": "roof",
    "water_heater": "water heater",
    "electrical": "electrical system",
    "plumbing": "plumbing",
}


def get_confidence_bucket(confidence: float) -> ConfidenceBucket:
    if confidence < CONFIDENCE_LOW_BELOW:
        return ConfidenceBucket.LOW
    if confidence < CONFIDENCE_MEDIUM_BELOW:
        return ConfidenceBucket.MEDIUM
    return ConfidenceBucket.HIGH


def format_system_name(system_key: str) -> str:
    return SYSTEM_NAMES.get(system_key, system_key)


def generate_opening_message(
    trigger: AdvisorTrigger,
    confidence: ConfidenceBucket,
    risk: RiskLevel,
    system_name: str = "system",
) -> AdvisorOpeningMessage:
    """Build the opening message for the trigger that engaged the advisor."""
    if isinstance(trigger, SystemSelected):
        return _system_focus_message(system_name, confidence, risk)
    if isinstance(trigger, RiskThresholdCrossed):
        return _risk_threshold_message(system_name, trigger.new_level, confidence)
    if isinstance(trigger, ConfidenceImproved):
        return _confidence_improved_message(system_name, confidence)
    if isinstance(trigger, PlanningWindowEntered):
        return _lifecycle_stage_message(system_name, trigger.months_remaining, confidence)
    return AdvisorOpeningMessage(
        observation=f"I'm focusing on your {system_name}.",
        implication="Based on current data, there may be some considerations worth reviewing.",
        options_preview="There are a few reasonable paths depending on your priorities.",
    )


def _system_focus_message(
    system_name: str,
    confidence: ConfidenceBucket,
    risk: RiskLevel,
) -> AdvisorOpeningMessage:
    observation = f"I'm focusing on your {system_name}."

    if confidence == ConfidenceBucket.LOW:
        implication = "Based on limited records, it may be approaching a higher-risk window."
        options_preview = "There are a few reasonable paths once we clarify a bit more."
    elif confidence == ConfidenceBucket.MEDIUM:
        if risk == RiskLevel.HIGH:
            implication = "It's entering a higher-risk window over the next couple of years."
        else:
            implication = "Current indicators suggest moderate attention may be warranted."
        options_preview = "You've got a few smart options depending on how proactive you want to be."
    else:
        if risk == RiskLevel.HIGH:
            implication = (
                "It's likely to need attention within the next 12–24 months "
                "based on verified records."
            )
        else:
            implication = "Verified records show this system is tracking well within expected parameters."
        options_preview = "There are clear paths you can take to stay ahead of this."

    return AdvisorOpeningMessage(observation, implication, options_preview)


def _risk_threshold_message(
    system_name: str,
    new_level: RiskLevel,
    confidence: ConfidenceBucket,
) -> AdvisorOpeningMessage:
    observation = (
        f"Quick heads-up, your {system_name} just entered a "
        f"{new_level.value.lower()}-risk window."
    )
    if new_level == RiskLevel.HIGH:
        implication = (
            "This doesn't mean immediate action is required, but planning now "
            "could save you money later."
        )
    else:
        implication = "This is worth monitoring more closely going forward."

    if confidence == ConfidenceBucket.LOW:
        options_preview = "We can firm up the picture with more data, or I can outline general options."
    else:
        options_preview = "I can walk you through your options whenever you're ready."

    return AdvisorOpeningMessage(observation, implication, options_preview)


def _confidence_improved_message(
    system_name: str,
    confidence: ConfidenceBucket,
) -> AdvisorOpeningMessage:
    if confidence == ConfidenceBucket.HIGH:
        implication = "This means predictions are now based on verified data rather than estimates."
    else:
        implication = "The picture is clearer, though some uncertainty remains."
    return AdvisorOpeningMessage(
        observation=(
            f"I've got higher confidence in your {system_name} forecast now "
            "after reviewing new records."
        ),
        implication=implication,
        options_preview="Want to see what changed?",
    )


def _lifecycle_stage_message(
    system_name: str,
    months_remaining: float,
    confidence: ConfidenceBucket,
) -> AdvisorOpeningMessage:
    years = math.floor(months_remaining / 12 + 0.5)
    if confidence == ConfidenceBucket.HIGH:
        plural = "" if years == 1 else "s"
        implication = (
            f"Based on verified records, this may warrant consideration in "
            f"roughly {years} year{plural}."
        )
    else:
        implication = (
            f"Current estimates suggest this may be worth reviewing within "
            f"{years}–{years + 2} years."
        )
    return AdvisorOpeningMessage(
        observation=f"Your {system_name} is in a later lifecycle stage.",
        implication=implication,
        options_preview="Understanding this early provides more flexibility.",
    )
