"""
Local event pipeline.

Plays the part of the Cloud Functions runtime for a ``MemoryStore``: every
committed change is queued, matched against the trigger registry, and
handed to each matching handler in FIFO order. Handlers that raise are
logged and the pipeline moves on, as the platform does without retries.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import replace
from typing import Deque, List, Optional, Sequence

from firebase_functions import logger

from .memory_store import MemoryStore
from .store import DocumentEvent
from .triggers import TRIGGERS, Trigger, TriggerContext


class Dispatcher:
    def __init__(
        self,
        store: MemoryStore,
        context: TriggerContext,
        triggers: Optional[Sequence[Trigger]] = None,
    ):
        self._context = context
        self._triggers: List[Trigger] = list(TRIGGERS if triggers is None else triggers)
        self._queue: Deque[DocumentEvent] = deque()
        self._lock = threading.Lock()
        self._unsubscribe = store.subscribe(self._enqueue)

    def _enqueue(self, event: DocumentEvent) -> None:
        with self._lock:
            self._queue.append(event)

    def _next(self) -> Optional[DocumentEvent]:
        with self._lock:
            return self._queue.popleft() if self._queue else None

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._queue)

    def dispatch(self, event: DocumentEvent) -> int:
        """Run every trigger matching ``event``. Returns how many ran."""
        ran = 0
        for trig in self._triggers:
            params = trig.matches(event)
            if params is None:
                continue
            ran += 1
            try:
                trig.handler(self._context, replace(event, params=params))
            except Exception as exc:
                logger.error(f"[DISPATCH] Trigger {trig.name} failed for {event.path}: {exc!r}",
                             trigger=trig.name, path=event.path)
        return ran

    def run_until_idle(self, max_events: int = 10_000) -> int:
        """Drain the queue, including events raised by the handlers themselves."""
        processed = 0
        while True:
            event = self._next()
            if event is None:
                return processed
            processed += 1
            if processed > max_events:
                raise RuntimeError(f"Trigger cascade did not settle after {max_events} events.")
            self.dispatch(event)

    def close(self) -> None:
        self._unsubscribe()
