from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable

from app.custody.core.config import settings
from app.custody.core.logging import log_event
from app.custody.core.metrics import metrics

logger = logging.getLogger(__name__)

CHANGE_TOPICS = ("ledger", "requests", "orders", "remittances")


@dataclass(frozen=True)
class ChangeBatch:
    topics: dict[str, frozenset[str]]

    def keys(self, topic: str) -> frozenset[str]:
        return self.topics.get(topic, frozenset())


Subscriber = Callable[[ChangeBatch], None]


class ChangeBus:
    """Coalesces change events and delivers them to subscribers after a debounce window.

    Delivery is best effort: a failing subscriber is logged and the others still run.
    """

    def __init__(self, *, debounce_ms: int | None = None, timer_factory=threading.Timer):
        self.debounce_ms = settings.NOTIFY_DEBOUNCE_MS if debounce_ms is None else debounce_ms
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._pending: dict[str, set[str]] = {}
        self._subscribers: list[Subscriber] = []
        self._timer = None

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            with self._lock:
                if subscriber in self._subscribers:
                    self._subscribers.remove(subscriber)

        return unsubscribe

    def publish(self, topic: str, key=None) -> None:
        if topic not in CHANGE_TOPICS:
            raise ValueError(f"unknown change topic: {topic}")
        timer = None
        with self._lock:
            keys = self._pending.setdefault(topic, set())
            if key is not None:
                keys.add(str(key))
            if self.debounce_ms > 0 and self._timer is None:
                timer = self._timer_factory(self.debounce_ms / 1000, self.flush)
                timer.daemon = True
                self._timer = timer
        if self.debounce_ms <= 0:
            self.flush()
        elif timer is not None:
            timer.start()

    def pending(self) -> dict[str, set[str]]:
        with self._lock:
            return {topic: set(keys) for topic, keys in self._pending.items()}

    def flush(self) -> ChangeBatch | None:
        with self._lock:
            timer, self._timer = self._timer, None
            pending, self._pending = self._pending, {}
            subscribers = list(self._subscribers)
        if timer is not None and timer is not threading.current_thread():
            timer.cancel()
        if not pending:
            return None
        batch = ChangeBatch(topics={topic: frozenset(keys) for topic, keys in pending.items()})
        for subscriber in subscribers:
            try:
                subscriber(batch)
            except Exception:
                logger.exception("Change subscriber failed", extra={"topics": sorted(batch.topics)})
        metrics.increment_notifications_flushed()
        log_event(
            logger,
            "changes_flushed",
            topics={topic: len(keys) for topic, keys in batch.topics.items()},
            subscribers=len(subscribers),
        )
        return batch

    def close(self) -> None:
        with self._lock:
            timer, self._timer = self._timer, None
            self._pending = {}
        if timer is not None:
            timer.cancel()


change_bus = ChangeBus()
