"""Advisor cadence — limits on how often the advisor may auto-open.

Rules:
  max_auto_opens_per_session      — fatigue cap per advisor session
  min_time_between_same_trigger   — a trigger key fired within this window
                                    (in any session for the same home) stays silent

Trigger history is pluggable: in-memory for tests and single-process use,
Redis (TTL keys) when several processes serve the same home.
"""
import time
from dataclasses import dataclass
from typing import Callable, Protocol

import structlog

log = structlog.get_logger()

DEFAULT_TRIGGER_COOLDOWN_SEC = 24 * 60 * 60
DEFAULT_MAX_AUTO_OPENS = 2


@dataclass(frozen=True)
class CadenceRules:
    min_time_between_same_trigger_sec: int = DEFAULT_TRIGGER_COOLDOWN_SEC
    max_auto_opens_per_session: int = DEFAULT_MAX_AUTO_OPENS

    @classmethod
    def from_settings(cls, settings) -> "CadenceRules":
        return cls(
            min_time_between_same_trigger_sec=settings.advisor_trigger_cooldown_sec,
            max_auto_opens_per_session=settings.advisor_max_auto_opens_per_session,
        )


class TriggerHistory(Protocol):
    def recent_keys(self) -> set[str]: ...

    def record(self, trigger_key: str) -> None: ...


class InMemoryTriggerHistory:
    """Trigger history held in process memory. Entries expire after ``ttl_sec``."""

    def __init__(
        self,
        ttl_sec: int = DEFAULT_TRIGGER_COOLDOWN_SEC,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_sec = ttl_sec
        self._clock = clock
        self._entries: dict[str, float] = {}

    def recent_keys(self) -> set[str]:
        now = self._clock()
        return {k for k, ts in self._entries.items() if now - ts < self.ttl_sec}

    def record(self, trigger_key: str) -> None:
        self._entries[trigger_key] = self._clock()


class RedisTriggerHistory:
    """Trigger history stored as Redis keys with a TTL, scoped per home.

    Key layout: ``advisor:trigger:<scope>:<trigger_key>``. Redis errors are
    logged and treated as an empty history.
    """

    KEY_PREFIX = "advisor:trigger"

    def __init__(self, redis_client, scope: str, ttl_sec: int = DEFAULT_TRIGGER_COOLDOWN_SEC):
        self._redis = redis_client
        self.scope = scope
        self.ttl_sec = ttl_sec

    def _key(self, trigger_key: str) -> str:
        return f"{self.KEY_PREFIX}:{self.scope}:{trigger_key}"

    def recent_keys(self) -> set[str]:
        prefix = f"{self.KEY_PREFIX}:{self.scope}:"
        try:
            return {
                key[len(prefix):]
                for key in self._redis.scan_iter(match=f"{prefix}*")
            }
        except Exception as exc:
            log.warning("cadence.history_load_failed", scope=self.scope, error=str(exc))
            return set()

    def record(self, trigger_key: str) -> None:
        try:
            self._redis.setex(self._key(trigger_key), self.ttl_sec, str(time.time()))
        except Exception as exc:
            log.warning(
                "cadence.history_save_failed",
                scope=self.scope,
                trigger_key=trigger_key,
                error=str(exc),
            )


class CadencePolicy:
    """Session-level auto-open governor consulted by AdvisorSession."""

    def __init__(self, rules: CadenceRules | None = None, history: TriggerHistory | None = None):
        self.rules = rules or CadenceRules()
        self.history = history
        self.auto_opens = 0

    def can_auto_open(self) -> bool:
        return self.auto_opens < self.rules.max_auto_opens_per_session

    def record_auto_open(self, trigger_key: str) -> None:
        self.auto_opens += 1
        if self.history is not None:
            self.history.record(trigger_key)
        log.debug(
            "cadence.auto_open",
            trigger_key=trigger_key,
            count=self.auto_opens,
            limit=self.rules.max_auto_opens_per_session,
        )

    def recent_keys(self) -> set[str]:
        if self.history is None:
            return set()
        return self.history.recent_keys()
