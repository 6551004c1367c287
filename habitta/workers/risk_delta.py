"""RiskDeltaWorker — drains task-completion events and captures risk deltas.

Queue:  risk_delta_capture
Task:   {"home_id", "system_type", "task_id", "before": {score, failureProbability12mo,
         monthsRemaining, status}}
Output: delta bundle appended to the originating event's metadata

Run: PYTHONPATH=. python -m habitta.workers.risk_delta
"""
import asyncio
import json

import structlog

from habitta.core.risk_delta import RiskSnapshot
from habitta.services.backend import BackendClient
from habitta.services.risk_delta import RiskDeltaCapture
from habitta.workers.base import ContinuousWorker

log = structlog.get_logger()

RISK_DELTA_QUEUE = "risk_delta_capture"

REQUIRED_FIELDS = ("home_id", "system_type", "task_id", "before")


class RiskDeltaWorker(ContinuousWorker):
    queue_name = RISK_DELTA_QUEUE
    worker_name = "risk_delta_worker"

    def __init__(self, settings=None, redis_client=None, client=None):
        super().__init__(settings=settings, redis_client=redis_client)
        self._client = client
        self._owns_client = client is None
        self._cancel = asyncio.Event()

    @property
    def client(self):
        if self._client is None:
            self._client = BackendClient(settings=self.settings)
        return self._client

    async def process_task(self, task: dict) -> None:
        missing = [f for f in REQUIRED_FIELDS if not task.get(f)]
        if missing:
            log.warning("risk_delta_worker.invalid_task", missing=missing, task=task)
            return

        capture = RiskDeltaCapture(self.client, settings=self.settings)
        outcome = await capture.capture(
            home_id=task["home_id"],
            system_type=task["system_type"],
            before=RiskSnapshot.from_metadata(task["before"]),
            task_id=task["task_id"],
            cancel=self._cancel,
        )
        log.info(
            "risk_delta_worker.task_done",
            task_id=task["task_id"],
            captured=outcome is not None,
            status=outcome.calculation_status if outcome else None,
        )

    def stop(self) -> None:
        super().stop()
        self._cancel.set()

    async def shutdown(self) -> None:
        self._cancel.set()
        if self._owns_client and self._client is not None:
            await self._client.aclose()


async def enqueue_capture(redis_client, task: dict) -> None:
    """Push a capture task. Used by the API on task completion."""
    await redis_client.rpush(RISK_DELTA_QUEUE, json.dumps(task))


if __name__ == "__main__":
    asyncio.run(RiskDeltaWorker().run())
