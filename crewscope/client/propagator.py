from __future__ import annotations

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[int], None]


class ChangePropagator:
    """
    Fan-out of "sites or assignments of organization X changed" signals.

    Signals carry only the organization id; subscribers re-fetch whatever they
    need. `publish` may be called from any thread and invokes callbacks on
    the publishing thread.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[int, list[ChangeCallback]] = {}

    def subscribe(self, organization_id: int, callback: ChangeCallback) -> Callable[[], None]:
        with self._lock:
            self._subscribers.setdefault(organization_id, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(organization_id, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._subscribers.pop(organization_id, None)

        return unsubscribe

    def subscriber_count(self, organization_id: int) -> int:
        with self._lock:
            return len(self._subscribers.get(organization_id, []))

    def publish(self, organization_id: int) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(organization_id, []))

        for callback in callbacks:
            try:
                callback(organization_id)
            except Exception:
                # Remaining subscribers still run.
                logger.exception("Change subscriber failed org_id=%s", organization_id)
