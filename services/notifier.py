"""
Change notifier: fan-out of committed slot/reservation transitions.

Observers subscribe under a key:
- ("provider", <user id>): changes to that faculty member's slots
- ("student", <user id>) : changes to that student's reservations
- "*"                    : every change (admin screens, counters)

Events are published only after the database commit. publish() only queues
the event: delivery happens on the notifier's worker threads, each inside its
own app context, so a slow or failing observer never holds up the caller.
With a single worker (the default) events reach an observer in publish order.

Delivery is at-least-once per observer and unordered across observers. An
event only names what changed; observers re-read current state before acting
on it. Observer failures are logged and never reach the booking caller.
"""

import logging
import threading
from collections import defaultdict
from concurrent import futures
from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app

logger = logging.getLogger(__name__)

SLOT_CREATED = "slot.created"
SLOT_DELETED = "slot.deleted"
RESERVATION_CONFIRMED = "reservation.confirmed"
RESERVATION_CANCELLED = "reservation.cancelled"

WILDCARD = "*"


@dataclass(frozen=True)
class ChangeEvent:
    kind: str
    slot_id: int
    provider_id: int
    reservation_id: int | None = None
    student_id: int | None = None
    occurred_at: datetime = field(default_factory=datetime.utcnow)

    def keys(self):
        keys = [("provider", self.provider_id)]
        if self.student_id is not None:
            keys.append(("student", self.student_id))
        keys.append(WILDCARD)
        return keys


class ChangeNotifier:
    def __init__(self, max_attempts: int = 3, max_workers: int = 1, app=None):
        self.max_attempts = max(1, max_attempts)
        self.app = app
        self._observers = defaultdict(list)
        self._lock = threading.Lock()
        self._pending = set()
        self._executor = futures.ThreadPoolExecutor(
            max_workers=max(1, max_workers),
            thread_name_prefix="change-notifier",
        )

    def subscribe(self, key, observer):
        """
        Register `observer(event)` under `key`. Returns a callable that
        removes the registration again.
        """
        with self._lock:
            self._observers[key].append(observer)
        return lambda: self.unsubscribe(key, observer)

    def unsubscribe(self, key, observer) -> bool:
        with self._lock:
            observers = self._observers.get(key, [])
            if observer not in observers:
                return False
            observers.remove(observer)
            return True

    def observers_for(self, event: ChangeEvent) -> list:
        # an observer registered under several matching keys is called once
        seen = []
        with self._lock:
            for key in event.keys():
                for observer in self._observers.get(key, []):
                    if observer not in seen:
                        seen.append(observer)
        return seen

    def publish(self, event: ChangeEvent) -> futures.Future:
        """
        Queue `event` for the observers subscribed right now and return
        immediately. The returned future resolves to how many observers
        accepted the event.
        """
        future = self._executor.submit(self._run, event, self.observers_for(event))
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def dispatch(self, event: ChangeEvent, observers=None) -> int:
        """Deliver `event` in the calling thread. Never raises."""
        if observers is None:
            observers = self.observers_for(event)
        delivered = 0
        for observer in observers:
            if self._deliver(observer, event):
                delivered += 1
        return delivered

    def wait(self, timeout: float = None) -> bool:
        """Block until every queued event has been delivered. False on timeout."""
        with self._lock:
            pending = list(self._pending)
        _, not_done = futures.wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)

    def _forget(self, future):
        with self._lock:
            self._pending.discard(future)

    def _run(self, event: ChangeEvent, observers: list) -> int:
        if self.app is None:
            return self.dispatch(event, observers)
        with self.app.app_context():
            return self.dispatch(event, observers)

    def _deliver(self, observer, event: ChangeEvent) -> bool:
        name = getattr(observer, "__name__", repr(observer))
        for attempt in range(1, self.max_attempts + 1):
            try:
                observer(event)
                return True
            except Exception:
                logger.exception(
                    "Observer %s failed on %s (slot=%s reservation=%s), attempt %d/%d",
                    name, event.kind, event.slot_id, event.reservation_id,
                    attempt, self.max_attempts,
                )
        logger.error("Dropping %s for observer %s after %d attempts", event.kind, name, self.max_attempts)
        return False


def init_notifier(app) -> ChangeNotifier:
    notifier = ChangeNotifier(
        max_attempts=app.config.get("NOTIFY_MAX_ATTEMPTS", 3),
        max_workers=app.config.get("NOTIFY_WORKERS", 1),
        app=app,
    )
    app.extensions["change_notifier"] = notifier
    return notifier


def get_notifier() -> ChangeNotifier:
    return current_app.extensions["change_notifier"]


def publish(event: ChangeEvent) -> futures.Future:
    return get_notifier().publish(event)
