"""
Replay protection for webhook events.

Event ids are remembered for the signature tolerance window: a captured
request older than that fails signature verification anyway, so nothing
needs to be kept longer.

The guard owns the lock; stores only hold data. Swap the store for a
shared one (PostgresReplayStore) when running more than one instance.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from .signature import SIGNATURE_TOLERANCE_SECONDS


logger = logging.getLogger(__name__)


class ReplayStore(ABC):
    """Storage for first-seen timestamps keyed by event id."""

    @abstractmethod
    def contains(self, event_id: str) -> bool:
        ...

    @abstractmethod
    def add(self, event_id: str, seen_at: float) -> bool:
        """Insert if absent. Returns False when the id was already stored."""

    @abstractmethod
    def discard(self, event_id: str) -> None:
        ...

    @abstractmethod
    def evict_before(self, cutoff: float) -> None:
        ...


class InMemoryReplayStore(ReplayStore):
    """Process-local store. Default for single-instance deployments and tests."""

    def __init__(self):
        self._seen: Dict[str, float] = {}

    def contains(self, event_id: str) -> bool:
        return event_id in self._seen

    def add(self, event_id: str, seen_at: float) -> bool:
        if event_id in self._seen:
            return False
        self._seen[event_id] = seen_at
        return True

    def discard(self, event_id: str) -> None:
        self._seen.pop(event_id, None)

    def evict_before(self, cutoff: float) -> None:
        expired = [event_id for event_id, seen_at in self._seen.items() if seen_at < cutoff]
        for event_id in expired:
            del self._seen[event_id]

    def __len__(self) -> int:
        return len(self._seen)


class PostgresReplayStore(ReplayStore):
    """
    Shared store backed by the processed_webhook_events table.

    The primary key on event_id makes add() atomic across instances.
    """

    def __init__(self, connection_factory: Callable):
        self._connection_factory = connection_factory
        self._conn = None

    def _connection(self):
        if self._conn is None or self._conn.closed:
            self._conn = self._connection_factory()
            self._conn.autocommit = True
        return self._conn

    def contains(self, event_id: str) -> bool:
        with self._connection().cursor() as cur:
            cur.execute(
                "SELECT 1 FROM processed_webhook_events WHERE event_id = %s",
                (event_id,),
            )
            return cur.fetchone() is not None

    def add(self, event_id: str, seen_at: float) -> bool:
        with self._connection().cursor() as cur:
            cur.execute(
                """
                INSERT INTO processed_webhook_events (event_id, seen_at)
                VALUES (%s, %s)
                ON CONFLICT (event_id) DO NOTHING
                """,
                (event_id, datetime.fromtimestamp(seen_at, tz=timezone.utc)),
            )
            return cur.rowcount == 1

    def discard(self, event_id: str) -> None:
        with self._connection().cursor() as cur:
            cur.execute("DELETE FROM processed_webhook_events WHERE event_id = %s", (event_id,))

    def evict_before(self, cutoff: float) -> None:
        with self._connection().cursor() as cur:
            cur.execute(
                "DELETE FROM processed_webhook_events WHERE seen_at < %s",
                (datetime.fromtimestamp(cutoff, tz=timezone.utc),),
            )


class ReplayGuard:
    """
    Rejects event ids already accepted within the replay window.

    Check strictly after signature verification, and mark before any
    handler side effect. check_and_mark() does both under one lock.
    """

    def __init__(
        self,
        store: Optional[ReplayStore] = None,
        window_seconds: int = SIGNATURE_TOLERANCE_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store if store is not None else InMemoryReplayStore()
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()

    def _sweep(self, now: float) -> None:
        self.store.evict_before(now - self.window_seconds)

    def is_replay(self, event_id: str) -> bool:
        with self._lock:
            self._sweep(self._clock())
            return self.store.contains(event_id)

    def mark_processed(self, event_id: str) -> None:
        with self._lock:
            self.store.add(event_id, self._clock())

    def check_and_mark(self, event_id: str) -> bool:
        """Returns True if the event was already seen; otherwise marks it."""
        with self._lock:
            now = self._clock()
            self._sweep(now)
            first_delivery = self.store.add(event_id, now)

        if not first_delivery:
            logger.warning(f"Replay detected: event {event_id} already processed")
        return not first_delivery

    def release(self, event_id: str) -> None:
        """Forget an event whose processing failed so a retry is accepted."""
        with self._lock:
            self.store.discard(event_id)
