"""ContinuousWorker — base class for queue-draining background workers.

Contract:
- Tasks are JSON objects popped from a Redis list (``queue_name``)
- A task that raises is logged and dropped; the loop keeps running
- SIGTERM/SIGINT call stop(); the loop exits after the current task
- A heartbeat key with a TTL marks the worker as alive
"""
import asyncio
import json
import signal
import structlog
from abc import ABC, abstractmethod
from datetime import datetime, timezone

import redis.asyncio as aioredis

log = structlog.get_logger()

EMPTY_QUEUE_SLEEP_SEC = 1
HEARTBEAT_TTL_SEC = 120
HEARTBEAT_INTERVAL_SEC = 60


class ContinuousWorker(ABC):
    """Pops tasks from one Redis queue and hands them to process_task()."""

    queue_name: str = "default_queue"
    worker_name: str = "base_worker"

    def __init__(self, settings=None, redis_client: aioredis.Redis | None = None):
        from config.settings import get_settings
        self.settings = settings or get_settings()
        self._running = False
        self._redis = redis_client

    # ==================== Redis ====================

    async def _get_async_redis(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(
                self.settings.redis_url,
                decode_responses=True,
                max_connections=10,
            )
        return self._redis

    async def heartbeat(self) -> None:
        r = await self._get_async_redis()
        await r.setex(
            f"heartbeat:{self.worker_name}",
            HEARTBEAT_TTL_SEC,
            datetime.now(timezone.utc).isoformat(),
        )

    async def _heartbeat_loop(self) -> None:
        while self._running:
            try:
                await self.heartbeat()
            except Exception as exc:
                log.warning("worker.heartbeat_error", name=self.worker_name, error=str(exc))
            await asyncio.sleep(HEARTBEAT_INTERVAL_SEC)

    async def _pop_task(self) -> dict | None:
        try:
            r = await self._get_async_redis()
            raw = await r.lpop(self.queue_name)
        except Exception as exc:
            log.warning("worker.redis_pop_error", name=self.worker_name, error=str(exc))
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            log.error("worker.bad_payload", name=self.worker_name, raw=raw[:200])
            return None

    # ==================== Run loop ====================

    @abstractmethod
    async def process_task(self, task: dict) -> None:
        """Handle one task popped from the queue."""

    async def run_once(self) -> bool:
        """Pop and process one task. Returns False if the queue was empty."""
        task = await self._pop_task()
        if not task:
            return False
        try:
            await self.process_task(task)
        except Exception as exc:
            log.error("worker.task_error", name=self.worker_name, error=str(exc), task=task)
        return True

    async def run(self) -> None:
        self._running = True
        self._register_signals()
        log.info("worker.started", name=self.worker_name, queue=self.queue_name)
        heartbeat = asyncio.create_task(self._heartbeat_loop())
        try:
            while self._running:
                if not await self.run_once():
                    await asyncio.sleep(EMPTY_QUEUE_SLEEP_SEC)
        finally:
            self._running = False
            heartbeat.cancel()
            try:
                await heartbeat
            except asyncio.CancelledError:
                pass
            await self.shutdown()
            if self._redis:
                await self._redis.aclose()
            log.info("worker.stopped", name=self.worker_name)

    async def shutdown(self) -> None:
        """Release subclass resources after the loop exits."""

    def stop(self) -> None:
        self._running = False

    def _register_signals(self) -> None:
        def _on_signal(signum, frame):
            log.info("worker.stopping", name=self.worker_name, signal=signum)
            self.stop()

        signal.signal(signal.SIGTERM, _on_signal)
        signal.signal(signal.SIGINT, _on_signal)
