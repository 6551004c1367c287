"""Advisor state models — states, focus context, and triggers.

Every trigger and focus is a frozen dataclass so a session can match on
the concrete type. Triggers carry their ``kind`` as a class-level constant.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Union


class AdvisorState(str, Enum):
    PASSIVE = "PASSIVE"        # idle, chat closed, monitoring
    OBSERVING = "OBSERVING"    # browsing, no intent yet
    ENGAGED = "ENGAGED"        # system in focus or the agent has something to say
    DECISION = "DECISION"      # active reasoning, comparing tradeoffs
    EXECUTION = "EXECUTION"    # commitment made, action handoff


class RiskLevel(str, Enum):
    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"


class ConfidenceBucket(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class TriggerKind(str, Enum):
    SYSTEM_SELECTED = "SYSTEM_SELECTED"
    RISK_THRESHOLD_CROSSED = "RISK_THRESHOLD_CROSSED"
    CONFIDENCE_IMPROVED = "CONFIDENCE_IMPROVED"
    PLANNING_WINDOW_ENTERED = "PLANNING_WINDOW_ENTERED"
    USER_REPLIED = "USER_REPLIED"
    USER_COMMITTED = "USER_COMMITTED"
    USER_DISMISSED_CHAT = "USER_DISMISSED_CHAT"
    USER_SWITCHED_SYSTEM = "USER_SWITCHED_SYSTEM"


# ─────────────────────────── Focus context ────────────────────────────


@dataclass(frozen=True)
class NoFocus:
    pass


@dataclass(frozen=True)
class SystemFocus:
    system_key: str


@dataclass(frozen=True)
class DecisionFocus:
    decision_id: str


FocusContext = Union[NoFocus, SystemFocus, DecisionFocus]


# ─────────────────────────── Triggers ─────────────────────────────────


@dataclass(frozen=True)
class SystemSelected:
    kind: ClassVar[TriggerKind] = TriggerKind.SYSTEM_SELECTED
    system_key: str


@dataclass(frozen=True)
class RiskThresholdCrossed:
    kind: ClassVar[TriggerKind] = TriggerKind.RISK_THRESHOLD_CROSSED
    system_key: str
    new_level: RiskLevel


@dataclass(frozen=True)
class ConfidenceImproved:
    kind: ClassVar[TriggerKind] = TriggerKind.CONFIDENCE_IMPROVED
    system_key: str
    old_confidence: float
    new_confidence: float


@dataclass(frozen=True)
class PlanningWindowEntered:
    kind: ClassVar[TriggerKind] = TriggerKind.PLANNING_WINDOW_ENTERED
    system_key: str
    months_remaining: float


@dataclass(frozen=True)
class UserReplied:
    kind: ClassVar[TriggerKind] = TriggerKind.USER_REPLIED


@dataclass(frozen=True)
class UserCommitted:
    kind: ClassVar[TriggerKind] = TriggerKind.USER_COMMITTED
    decision_id: str


@dataclass(frozen=True)
class UserDismissedChat:
    kind: ClassVar[TriggerKind] = TriggerKind.USER_DISMISSED_CHAT


@dataclass(frozen=True)
class UserSwitchedSystem:
    kind: ClassVar[TriggerKind] = TriggerKind.USER_SWITCHED_SYSTEM
    new_system_key: str


AdvisorTrigger = Union[
    SystemSelected,
    RiskThresholdCrossed,
    ConfidenceImproved,
    PlanningWindowEntered,
    UserReplied,
    UserCommitted,
    UserDismissedChat,
    UserSwitchedSystem,
]


@dataclass(frozen=True)
class AdvisorOpeningMessage:
    """Auto-open message: observation → implication → options preview."""
    observation: str
    implication: str
    options_preview: str


@dataclass
class AdvisorSnapshot:
    """Read-only view of a session, suitable for serialization."""
    state: AdvisorState
    focus: FocusContext
    confidence: float
    risk: RiskLevel
    should_chat_be_open: bool
    has_agent_message: bool
    opening_message: AdvisorOpeningMessage | None = None
    expanded_triggers: list[str] = field(default_factory=list)
