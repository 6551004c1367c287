"""Risk delta — before/after snapshots, delta computation, and sanity validation.

Validation rules (evaluated in order, first hit wins):
  zero score (before or after)       → invalid, use estimate (corrupt data)
  score change  > max_score_change   → invalid, use estimate
  score change  < min_score_change   → valid, flagged (maintenance revealed issues)
  months added  > max_months_added   → invalid, use estimate
  months added  < min_months_added   → valid, flagged
  failure reduction > max            → invalid, use estimate
  direction mismatch (score / prob)  → invalid, use estimate (computation bug)

Bounds are exclusive: a value exactly on a bound passes.
"""
from dataclasses import asdict, dataclass
from typing import Any, Optional

from habitta.core.records import SystemPrediction


@dataclass(frozen=True)
class DeltaBounds:
    max_score_change: float = 30.0
    min_score_change: float = -20.0
    max_months_added: float = 60.0
    min_months_added: float = -24.0
    max_failure_reduction: float = 0.5

    @classmethod
    def from_settings(cls, settings) -> "DeltaBounds":
        return cls(
            max_score_change=settings.delta_max_score_change,
            min_score_change=settings.delta_min_score_change,
            max_months_added=settings.delta_max_months_added,
            min_months_added=settings.delta_min_months_added,
            max_failure_reduction=settings.delta_max_failure_reduction,
        )


DEFAULT_BOUNDS = DeltaBounds()


@dataclass(frozen=True)
class RiskSnapshot:
    score: float
    failure_probability_12mo: Optional[float] = None
    months_remaining: Optional[float] = None
    status: str = ""

    @classmethod
    def from_prediction(cls, prediction: SystemPrediction) -> "RiskSnapshot":
        return cls(
            score=prediction.score,
            failure_probability_12mo=prediction.survival.failure_probability_12mo,
            months_remaining=prediction.survival.months_remaining_p50,
            status=prediction.status,
        )

    @classmethod
    def from_metadata(cls, payload: dict[str, Any] | None) -> "RiskSnapshot":
        """Parse a persisted snapshot. Missing snapshots read as a zero-score placeholder."""
        if not payload:
            return cls(score=0, status="attention")
        return cls(
            score=payload.get("score") or 0,
            failure_probability_12mo=payload.get("failureProbability12mo"),
            months_remaining=payload.get("monthsRemaining"),
            status=payload.get("status") or "attention",
        )

    def to_metadata(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "failureProbability12mo": self.failure_probability_12mo,
            "monthsRemaining": self.months_remaining,
            "status": self.status,
        }


@dataclass(frozen=True)
class StatusChange:
    from_status: str
    to_status: str


@dataclass(frozen=True)
class RiskDelta:
    score_change: float
    failure_prob_reduction: Optional[float] = None
    months_added: Optional[float] = None
    status_change: Optional[StatusChange] = None

    @classmethod
    def from_metadata(cls, payload: dict[str, Any] | None) -> "RiskDelta":
        if not payload:
            return cls(score_change=0)
        status = payload.get("statusChange")
        return cls(
            score_change=payload.get("scoreChange") or 0,
            failure_prob_reduction=payload.get("failureProbReduction"),
            months_added=payload.get("monthsAdded"),
            status_change=StatusChange(status["from"], status["to"]) if status else None,
        )

    def to_metadata(self) -> dict[str, Any]:
        return {
            "scoreChange": self.score_change,
            "failureProbReduction": self.failure_prob_reduction,
            "monthsAdded": self.months_added,
            "statusChange": (
                {"from": self.status_change.from_status, "to": self.status_change.to_status}
                if self.status_change else None
            ),
        }


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    is_suspicious: bool
    reason: Optional[str] = None
    should_use_estimate: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def compute_risk_delta(before: RiskSnapshot, after: RiskSnapshot) -> RiskDelta:
    failure_reduction = None
    if before.failure_probability_12mo is not None and after.failure_probability_12mo is not None:
        failure_reduction = before.failure_probability_12mo - after.failure_probability_12mo

    months_added = None
    if before.months_remaining is not None and after.months_remaining is not None:
        months_added = after.months_remaining - before.months_remaining

    status_change = None
    if before.status != after.status:
        status_change = StatusChange(before.status, after.status)

    return RiskDelta(
        score_change=after.score - before.score,
        failure_prob_reduction=failure_reduction,
        months_added=months_added,
        status_change=status_change,
    )


def _rejected(reason: str) -> ValidationResult:
    return ValidationResult(is_valid=False, is_suspicious=True, reason=reason, should_use_estimate=True)


def _flagged(reason: str) -> ValidationResult:
    return ValidationResult(is_valid=True, is_suspicious=True, reason=reason)


def validate_delta(
    delta: RiskDelta,
    before: RiskSnapshot,
    after: RiskSnapshot,
    bounds: DeltaBounds = DEFAULT_BOUNDS,
) -> ValidationResult:
    """Sanity-check a computed delta. Data problems are reported, never raised."""
    if before.score == 0 or after.score == 0:
        return _rejected("Invalid zero score detected")

    if delta.score_change > bounds.max_score_change:
        return _rejected("Unusually large score improvement")
    if delta.score_change < bounds.min_score_change:
        return _flagged("Maintenance may have revealed hidden issues")

    if delta.months_added is not None:
        if delta.months_added > bounds.max_months_added:
            return _rejected("Unusually large lifespan extension")
        if delta.months_added < bounds.min_months_added:
            return _flagged("Maintenance reduced expected system life")

    if (
        delta.failure_prob_reduction is not None
        and delta.failure_prob_reduction > bounds.max_failure_reduction
    ):
        return _rejected("Unusually large risk reduction")

    if delta.score_change > 0 and after.score <= before.score:
        return _rejected("Score delta direction mismatch")

    if (
        delta.failure_prob_reduction is not None
        and delta.failure_prob_reduction > 0
        and after.failure_probability_12mo is not None
        and before.failure_probability_12mo is not None
        and after.failure_probability_12mo >= before.failure_probability_12mo
    ):
        return _rejected("Failure probability mismatch")

    return ValidationResult(is_valid=True, is_suspicious=False)


def calculation_status(result: ValidationResult) -> str:
    """Persisted status label: success | suspicious | estimate."""
    if result.should_use_estimate:
        return "estimate"
    if result.is_suspicious:
        return "suspicious"
    return "success"
