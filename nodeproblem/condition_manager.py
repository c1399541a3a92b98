"""Keeps node conditions in sync with the API server without flooding it."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Protocol

from .problem_client import ProblemClient, convert_to_api_condition
from .rules import Condition

__all__ = ["RealClock", "ConditionManager", "UPDATE_PERIOD", "RESYNC_PERIOD"]

log = logging.getLogger(__name__)

# Period at which pending updates are checked.
UPDATE_PERIOD = timedelta(seconds=1)
# Period after a failed sync at which it is retried.
RESYNC_PERIOD = timedelta(seconds=10)


class _Clock(Protocol):
    def now(self) -> datetime: ...


class RealClock:
    """Clock reading the system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ConditionManager:
    """Synchronizes node conditions with the API server through a problem client.

    Updates are pushed as soon as they are seen on the update period, a failed
    sync is retried after the resync period, and a full sync is forced every
    heartbeat period regardless of changes.
    """

    def __init__(
        self,
        client: ProblemClient,
        clock: _Clock,
        heartbeat_period: timedelta,
        *,
        update_period: timedelta = UPDATE_PERIOD,
    ) -> None:
        self._client = client
        self._clock = clock
        self._heartbeat_period = heartbeat_period
        self._update_period = update_period
        self._lock = threading.Lock()
        self._updates: dict[str, Condition] = {}
        self._conditions: dict[str, Condition] = {}
        self._latest_try: datetime | None = None
        self._resync_needed = False
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start the background sync loop."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stopping.clear()
        self._thread = threading.Thread(target=self._sync_loop, name="condition-sync", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the background sync loop and wait for it to finish."""
        self._stopping.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def update_condition(self, condition: Condition) -> None:
        """Queue a condition; a newer condition of the same type replaces it."""
        with self._lock:
            self._updates[condition.type] = condition

    def get_conditions(self) -> list[Condition]:
        with self._lock:
            return list(self._conditions.values())

    def _sync_loop(self) -> None:
        while not self._stopping.wait(self._update_period.total_seconds()):
            if self.need_updates() or self.need_resync() or self.need_heartbeat():
                self.sync()

    def need_updates(self) -> bool:
        """Apply queued updates and report whether any of them changed something."""
        with self._lock:
            changed = False
            for condition_type, update in self._updates.items():
                if self._conditions.get(condition_type) != update:
                    changed = True
                    self._conditions[condition_type] = update
            self._updates.clear()
            return changed

    def _since_latest_try(self) -> timedelta | None:
        if self._latest_try is None:
            return None
        return self._clock.now() - self._latest_try

    def need_resync(self) -> bool:
        elapsed = self._since_latest_try()
        return self._resync_needed and (elapsed is None or elapsed >= RESYNC_PERIOD)

    def need_heartbeat(self) -> bool:
        elapsed = self._since_latest_try()
        return elapsed is None or elapsed >= self._heartbeat_period

    def sync(self) -> None:
        """Push all known conditions to the API server."""
        self._latest_try = self._clock.now()
        self._resync_needed = False
        with self._lock:
            conditions = [convert_to_api_condition(c) for c in self._conditions.values()]
        try:
            self._client.set_conditions(conditions)
        except Exception as exc:  # retried on the next resync
            log.error("failed to update node conditions: %s", exc)
            self._resync_needed = True