from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set

from core.exceptions import CloudError
from core.models import Aggregate
from storage.pocketbase import PocketBaseClient, RealtimeSubscription

log = logging.getLogger(__name__)


class SyncStatus(str, Enum):
    OFFLINE = "offline"
    CONNECTED = "connected"
    ERROR = "error"


class CloudMirror:
    """Best-effort mirror of the aggregate into one remote document.

    Pushes are fire-and-forget on a single worker, so they reach the server in
    the order they were made. Whatever the server holds last is broadcast back
    to every subscriber: there is no merge and no conflict detection.

    Each ``close()`` bumps a generation counter. Pushes queued and realtime
    events received under an older generation are dropped.
    """

    def __init__(self, client: PocketBaseClient, executor: Optional[Executor] = None):
        self.client = client
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="protrack-push")
        self._generation = 0
        self._subscription: Optional[RealtimeSubscription] = None
        self._pending: Set[Future] = set()
        self._pending_lock = threading.Lock()
        self.status = SyncStatus.OFFLINE
        self.last_error: Optional[str] = None

    @property
    def generation(self) -> int:
        return self._generation

    # ---------- push ----------
    def push(self, aggregate: Aggregate) -> Future:
        payload = aggregate.to_dict()  # snapshot now, the caller may replace state before the worker runs
        generation = self._generation
        fut = self._executor.submit(self._push, payload, generation)
        with self._pending_lock:
            self._pending.add(fut)
        fut.add_done_callback(self._forget)
        return fut

    def _forget(self, fut: Future):
        with self._pending_lock:
            self._pending.discard(fut)

    def _push(self, payload: Dict[str, Any], generation: int) -> bool:
        if generation != self._generation:
            log.debug("[sync] dropping push from generation %s", generation)
            return False
        try:
            self.client.save_document(payload)
        except CloudError as e:
            log.warning("[sync] push failed, remote falls behind: %s", e)
            self.status = SyncStatus.ERROR
            self.last_error = str(e)
            return False
        if generation == self._generation:
            self.status = SyncStatus.CONNECTED
            self.last_error = None
        return True

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued pushes. Returns False if some are still running."""
        with self._pending_lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    # ---------- subscribe ----------
    def subscribe(self, on_change: Callable[[Dict[str, Any]], None]) -> None:
        """Start listening. ``on_change`` receives every remote payload, including the current one.

        Raises CloudError when the listener cannot be set up.
        """
        if self._subscription is not None:
            self.close()
        generation = self._generation

        def deliver(payload: Dict[str, Any]):
            if generation != self._generation:
                log.debug("[realtime] dropping event from generation %s", generation)
                return
            on_change(payload)

        def listener_error(error):
            if generation == self._generation:
                self.status = SyncStatus.ERROR
                self.last_error = str(error)

        try:
            self.client.login()
            initial = self.client.fetch_document()
            self._subscription = self.client.subscribe(deliver, on_error=listener_error)
        except CloudError as e:
            self.status = SyncStatus.ERROR
            self.last_error = str(e)
            raise
        self.status = SyncStatus.CONNECTED
        self.last_error = None
        if initial is not None:
            deliver(initial)

    def close(self) -> None:
        self._generation += 1
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        self.status = SyncStatus.OFFLINE

    def shutdown(self) -> None:
        self.close()
        self._executor.shutdown(wait=False)
