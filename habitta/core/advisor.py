"""AdvisorSession — state machine governing when the advisor chat auto-opens.

States: PASSIVE → OBSERVING → ENGAGED → DECISION → EXECUTION

Auto-open triggers (each unique trigger key fires at most once per session):
  SYSTEM_SELECTED          — once per system
  RISK_THRESHOLD_CROSSED   — once per system and risk level
  CONFIDENCE_IMPROVED      — once per system, only for a jump above 0.15
  PLANNING_WINDOW_ENTERED  — once per system

The chat never auto-closes. Only a user dismissal (or reset) closes it,
and nothing but reset() leaves EXECUTION.

Usage::

    session = AdvisorSession()
    session.select_system("hvac")
    if session.should_chat_be_open:
        render(session.opening_message)
"""
import structlog

from habitta.core.advisor_copy import (
    format_system_name,
    generate_opening_message,
    get_confidence_bucket,
)
from habitta.core.cadence import CadencePolicy
from habitta.core.state import (
    AdvisorOpeningMessage,
    AdvisorSnapshot,
    AdvisorState,
    AdvisorTrigger,
    ConfidenceImproved,
    DecisionFocus,
    FocusContext,
    NoFocus,
    PlanningWindowEntered,
    RiskLevel,
    RiskThresholdCrossed,
    SystemFocus,
    SystemSelected,
    TriggerKind,
    UserCommitted,
    UserDismissedChat,
    UserReplied,
    UserSwitchedSystem,
)

log = structlog.get_logger()

# Minimum confidence jump that counts as a material improvement
CONFIDENCE_JUMP_THRESHOLD = 0.15

# States from which a trigger may auto-expand the chat
EXPANDABLE_STATES: frozenset[AdvisorState] = frozenset(
    {AdvisorState.PASSIVE, AdvisorState.OBSERVING}
)

# States in which the chat is shown without a manual open
OPEN_STATES: frozenset[AdvisorState] = frozenset(
    {AdvisorState.ENGAGED, AdvisorState.DECISION, AdvisorState.EXECUTION}
)


def trigger_key(trigger: AdvisorTrigger) -> str:
    """Unique key identifying the semantic trigger, used for once-only expansion."""
    if isinstance(trigger, SystemSelected):
        return f"system-selected-{trigger.system_key}"
    if isinstance(trigger, RiskThresholdCrossed):
        return f"risk-crossed-{trigger.system_key}-{trigger.new_level.value}"
    if isinstance(trigger, ConfidenceImproved):
        return f"confidence-improved-{trigger.system_key}"
    if isinstance(trigger, PlanningWindowEntered):
        return f"planning-window-{trigger.system_key}"
    if isinstance(trigger, UserSwitchedSystem):
        return f"switched-to-{trigger.new_system_key}"
    return trigger.kind.value


def should_auto_expand(
    trigger: AdvisorTrigger,
    current_state: AdvisorState,
    expanded_triggers: set[str],
) -> bool:
    """True if the trigger should move the advisor to ENGAGED."""
    if current_state not in EXPANDABLE_STATES:
        return False
    if trigger_key(trigger) in expanded_triggers:
        return False

    if trigger.kind in (
        TriggerKind.SYSTEM_SELECTED,
        TriggerKind.RISK_THRESHOLD_CROSSED,
        TriggerKind.PLANNING_WINDOW_ENTERED,
    ):
        return True
    if isinstance(trigger, ConfidenceImproved):
        return (trigger.new_confidence - trigger.old_confidence) > CONFIDENCE_JUMP_THRESHOLD
    return False


class AdvisorSession:
    """One advisor instance. Dedup state is owned here, never shared between sessions."""

    def __init__(
        self,
        initial_confidence: float = 0.5,
        initial_risk: RiskLevel = RiskLevel.LOW,
        cadence: CadencePolicy | None = None,
    ):
        """
        Args:
            initial_confidence: Starting confidence (0.0 – 1.0) for copy bucketing.
            initial_risk: Starting risk level for copy adaptation.
            cadence: Optional auto-open governor. Without one, only the
                once-per-trigger rule limits expansion.
        """
        self.state = AdvisorState.PASSIVE
        self.focus: FocusContext = NoFocus()
        self.confidence = initial_confidence
        self.risk = initial_risk
        self.cadence = cadence
        self.last_trigger: AdvisorTrigger | None = None
        self.chat_manually_opened = False
        self.expanded_triggers: set[str] = set()
        if cadence is not None:
            self.expanded_triggers |= cadence.recent_keys()

    # ------------------------------------------------------------------
    # Trigger processing
    # ------------------------------------------------------------------

    def process(self, trigger: AdvisorTrigger) -> bool:
        """Apply a trigger. Returns True if it caused an auto-expansion."""
        prior = self.state
        expand = should_auto_expand(trigger, self.state, self.expanded_triggers)
        if expand and self.cadence is not None and not self.cadence.can_auto_open():
            log.info("advisor.auto_open_suppressed", trigger=trigger.kind.value)
            expand = False

        if expand:
            key = trigger_key(trigger)
            self.expanded_triggers.add(key)
            if self.cadence is not None:
                self.cadence.record_auto_open(key)
            self.last_trigger = trigger
            self.state = AdvisorState.ENGAGED

        if isinstance(trigger, SystemSelected):
            self.focus = SystemFocus(trigger.system_key)
            if prior == AdvisorState.PASSIVE:
                self.state = AdvisorState.ENGAGED if expand else AdvisorState.OBSERVING
        elif isinstance(trigger, UserReplied):
            if prior == AdvisorState.ENGAGED:
                self.state = AdvisorState.DECISION
        elif isinstance(trigger, UserCommitted):
            self.focus = DecisionFocus(trigger.decision_id)
            self.state = AdvisorState.EXECUTION
        elif isinstance(trigger, UserDismissedChat):
            if prior in (AdvisorState.ENGAGED, AdvisorState.DECISION):
                self.state = AdvisorState.OBSERVING
            self.chat_manually_opened = False
        elif isinstance(trigger, UserSwitchedSystem):
            self.focus = SystemFocus(trigger.new_system_key)

        if self.state != prior:
            log.info(
                "advisor.transition",
                trigger=trigger.kind.value,
                from_state=prior.value,
                to_state=self.state.value,
                expanded=expand,
            )
        return expand

    # ------------------------------------------------------------------
    # Public actions
    # ------------------------------------------------------------------

    def select_system(self, system_key: str) -> bool:
        return self.process(SystemSelected(system_key))

    def risk_threshold_crossed(self, system_key: str, new_level: RiskLevel) -> bool:
        self.risk = new_level
        return self.process(RiskThresholdCrossed(system_key, new_level))

    def confidence_improved(self, system_key: str, old_confidence: float, new_confidence: float) -> bool:
        self.confidence = new_confidence
        return self.process(ConfidenceImproved(system_key, old_confidence, new_confidence))

    def planning_window_entered(self, system_key: str, months_remaining: float) -> bool:
        return self.process(PlanningWindowEntered(system_key, months_remaining))

    def user_replied(self) -> None:
        self.process(UserReplied())

    def user_committed(self, decision_id: str) -> None:
        self.process(UserCommitted(decision_id))

    def dismiss_chat(self) -> None:
        self.process(UserDismissedChat())

    def switch_system(self, new_system_key: str) -> None:
        self.process(UserSwitchedSystem(new_system_key))

    def expand_chat(self) -> None:
        """Manual open by the user. Sticky until dismiss or reset."""
        self.chat_manually_opened = True
        if self.state in EXPANDABLE_STATES:
            self.state = AdvisorState.ENGAGED

    def reset(self) -> None:
        self.state = AdvisorState.PASSIVE
        self.focus = NoFocus()
        self.expanded_triggers = set()
        self.last_trigger = None
        self.chat_manually_opened = False

    # ------------------------------------------------------------------
    # Derived
    # ------------------------------------------------------------------

    @property
    def should_chat_be_open(self) -> bool:
        return self.chat_manually_opened or self.state in OPEN_STATES

    @property
    def has_agent_message(self) -> bool:
        return self.state == AdvisorState.ENGAGED and self.last_trigger is not None

    @property
    def opening_message(self) -> AdvisorOpeningMessage | None:
        if not self.has_agent_message:
            return None
        if isinstance(self.focus, SystemFocus):
            system_name = format_system_name(self.focus.system_key)
        else:
            system_name = "system"
        return generate_opening_message(
            self.last_trigger,
            get_confidence_bucket(self.confidence),
            self.risk,
            system_name,
        )

    def snapshot(self) -> AdvisorSnapshot:
        return AdvisorSnapshot(
            state=self.state,
            focus=self.focus,
            confidence=self.confidence,
            risk=self.risk,
            should_chat_be_open=self.should_chat_be_open,
            has_agent_message=self.has_agent_message,
            opening_message=self.opening_message,
            expanded_triggers=sorted(self.expanded_triggers),
        )
