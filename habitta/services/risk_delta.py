"""RiskDeltaCapture — measure the impact of a completed maintenance task.

Flow after a task is marked complete:
  1. trigger a forced prediction refresh (errors logged, flow continues)
  2. poll the latest prediction timestamp until it is newer than the start
     (soft timeout — proceeds with current data when attempts run out)
  3. fetch refreshed predictions, locate the system by exact match
  4. compute and validate the before/after delta
  5. persist the delta bundle as metadata on the originating event

Capture is a non-critical side effect: every failure is logged and swallowed
so the task completion that triggered it always succeeds. Pass an
``asyncio.Event`` as ``cancel`` to abort polling on teardown.
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from habitta.core.records import SystemPrediction, as_utc
from habitta.core.retry import fetch_with_retry
from habitta.core.risk_delta import (
    DeltaBounds,
    RiskDelta,
    RiskSnapshot,
    ValidationResult,
    calculation_status,
    compute_risk_delta,
    validate_delta,
)

log = structlog.get_logger()


@dataclass
class CaptureOutcome:
    before: RiskSnapshot
    after: RiskSnapshot
    delta: RiskDelta
    validation: ValidationResult
    refresh_completed: bool
    duration_ms: int

    @property
    def calculation_status(self) -> str:
        return calculation_status(self.validation)


@dataclass
class MaintenanceImpact:
    task_id: str
    home_id: str
    system_type: str
    completed_at: str
    before: RiskSnapshot
    after: RiskSnapshot
    delta: RiskDelta
    calculation_duration_ms: int = 0
    calculation_status: str = "success"


def _elapsed_ms(start: datetime) -> int:
    return int((datetime.now(timezone.utc) - start).total_seconds() * 1000)


class RiskDeltaCapture:
    """Before/after risk capture around a maintenance task completion."""

    def __init__(self, client, settings=None, bounds: DeltaBounds | None = None):
        """
        Args:
            client: BackendClient (or any object with the same coroutines).
            settings: Settings instance. Loaded from config if None.
            bounds: Validation bounds. Built from settings if None.
        """
        from config.settings import get_settings
        self.client = client
        self.settings = settings or get_settings()
        self.bounds = bounds or DeltaBounds.from_settings(self.settings)
        self.poll_interval_sec = self.settings.prediction_poll_interval_ms / 1000
        self.max_poll_attempts = self.settings.prediction_poll_max_attempts

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def _pause(self, cancel: asyncio.Event | None) -> bool:
        """Sleep one poll interval. Returns True if cancelled meanwhile."""
        if cancel is None:
            await asyncio.sleep(self.poll_interval_sec)
            return False
        try:
            await asyncio.wait_for(cancel.wait(), timeout=self.poll_interval_sec)
        except asyncio.TimeoutError:
            pass
        return cancel.is_set()

    async def wait_for_prediction_refresh(
        self,
        home_id: str,
        start_time: datetime,
        cancel: asyncio.Event | None = None,
    ) -> bool:
        """Poll until a prediction newer than ``start_time`` lands.

        Returns False on soft timeout or cancellation.
        """
        for attempt in range(1, self.max_poll_attempts + 1):
            if cancel is not None and cancel.is_set():
                return False
            try:
                latest = await self.client.get_latest_prediction_timestamp(home_id)
                if latest is not None and as_utc(latest) > as_utc(start_time):
                    log.info("risk_delta.predictions_refreshed", home_id=home_id, attempts=attempt)
                    return True
            except Exception as exc:
                log.warning(
                    "risk_delta.poll_attempt_failed",
                    home_id=home_id,
                    attempt=attempt,
                    error=str(exc),
                )
            if await self._pause(cancel):
                log.info("risk_delta.poll_cancelled", home_id=home_id, attempt=attempt)
                return False

        log.error("risk_delta.refresh_timeout", home_id=home_id, attempts=self.max_poll_attempts)
        return False

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    async def capture(
        self,
        home_id: str,
        system_type: str,
        before: RiskSnapshot,
        task_id: str,
        cancel: asyncio.Event | None = None,
    ) -> Optional[CaptureOutcome]:
        """Run the full capture. Never raises (except task cancellation)."""
        start_time = datetime.now(timezone.utc)
        try:
            return await self._capture(home_id, system_type, before, task_id, start_time, cancel)
        except Exception as exc:
            log.error(
                "risk_delta.capture_failed",
                home_id=home_id,
                system=system_type,
                task_id=task_id,
                error=str(exc),
            )
            return None

    async def _capture(
        self,
        home_id: str,
        system_type: str,
        before: RiskSnapshot,
        task_id: str,
        start_time: datetime,
        cancel: asyncio.Event | None,
    ) -> Optional[CaptureOutcome]:
        log.info("risk_delta.refresh_triggered", home_id=home_id, task_id=task_id)
        try:
            await self.client.trigger_refresh(
                home_id,
                force_refresh=True,
                trigger_source="task_completion",
                task_id=task_id,
            )
        except Exception as exc:
            # Continue with current predictions
            log.error("risk_delta.refresh_failed", home_id=home_id, error=str(exc))

        refreshed = await self.wait_for_prediction_refresh(home_id, start_time, cancel)
        if cancel is not None and cancel.is_set():
            log.info("risk_delta.capture_cancelled", home_id=home_id, task_id=task_id)
            return None
        if not refreshed:
            log.warning("risk_delta.using_current_data", home_id=home_id)

        payload = await fetch_with_retry(
            lambda: self.client.get_predictions(home_id),
            max_retries=self.settings.retry_max_retries,
            delay_ms=self.settings.retry_delay_ms,
        )
        systems = payload.get("systems")
        if systems is None:
            raise ValueError("No systems data in after predictions")

        match = next((s for s in systems if s.get("system") == system_type), None)
        if match is None:
            log.warning("risk_delta.system_not_found", home_id=home_id, system=system_type)
            return None

        after = RiskSnapshot.from_prediction(SystemPrediction.from_payload(match))
        delta = compute_risk_delta(before, after)
        validation = validate_delta(delta, before, after, self.bounds)
        if validation.is_suspicious:
            log.warning(
                "risk_delta.suspicious",
                home_id=home_id,
                system=system_type,
                reason=validation.reason,
                valid=validation.is_valid,
            )

        outcome = CaptureOutcome(
            before=before,
            after=after,
            delta=delta,
            validation=validation,
            refresh_completed=refreshed,
            duration_ms=_elapsed_ms(start_time),
        )
        await self.client.append_event_metadata(
            home_id,
            system_type,
            self._metadata_bundle(outcome, task_id),
        )
        log.info(
            "risk_delta.captured",
            home_id=home_id,
            system=system_type,
            task_id=task_id,
            score_change=delta.score_change,
            status=outcome.calculation_status,
        )
        return outcome

    @staticmethod
    def _metadata_bundle(outcome: CaptureOutcome, task_id: str) -> dict[str, Any]:
        return {
            "task_id": task_id,
            "risk_delta": outcome.delta.to_metadata(),
            "before_snapshot": outcome.before.to_metadata(),
            "after_snapshot": outcome.after.to_metadata(),
            "validation": outcome.validation.to_dict(),
            "calculation_status": outcome.calculation_status,
            "delta_calculated_at": datetime.now(timezone.utc).isoformat(),
            "prediction_refresh_duration_ms": outcome.duration_ms,
        }

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_latest_risk_delta(self, home_id: str, system_type: str) -> Optional[dict[str, Any]]:
        """Most recent persisted delta for a system, or None."""
        try:
            rows = await self.client.get_system_events(home_id, system_type=system_type, limit=1)
        except Exception as exc:
            log.error("risk_delta.latest_fetch_failed", home_id=home_id, error=str(exc))
            return None
        if not rows:
            return None
        metadata = rows[0].get("metadata") or {}
        if not metadata.get("risk_delta"):
            return None
        return {
            "before": RiskSnapshot.from_metadata(metadata.get("before_snapshot")),
            "after": RiskSnapshot.from_metadata(metadata.get("after_snapshot")),
            "delta": RiskDelta.from_metadata(metadata["risk_delta"]),
        }

    async def fetch_risk_deltas(
        self,
        home_id: str,
        system_type: str | None = None,
        limit: int = 20,
        since: datetime | None = None,
    ) -> list[MaintenanceImpact]:
        """Recent maintenance impacts for a home, newest first. Errors propagate."""
        rows = await fetch_with_retry(
            lambda: self.client.get_system_events(
                home_id, system_type=system_type, limit=limit, since=since
            ),
            max_retries=self.settings.retry_max_retries,
            delay_ms=self.settings.retry_delay_ms,
        )
        impacts = []
        for row in rows:
            metadata = row.get("metadata") or {}
            impacts.append(MaintenanceImpact(
                task_id=metadata.get("task_id") or row["id"],
                home_id=row.get("home_id") or home_id,
                system_type=row.get("system_type", ""),
                completed_at=row.get("created_at") or datetime.now(timezone.utc).isoformat(),
                before=RiskSnapshot.from_metadata(metadata.get("before_snapshot")),
                after=RiskSnapshot.from_metadata(metadata.get("after_snapshot")),
                delta=RiskDelta.from_metadata(metadata.get("risk_delta")),
                calculation_duration_ms=metadata.get("prediction_refresh_duration_ms") or 0,
                calculation_status=metadata.get("calculation_status") or "success",
            ))
        return impacts
