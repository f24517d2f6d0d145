"""
Best-effort replication of local mutations to the remote document store.

The repository calls push() after every successful local write. push()
only appends a task to a bounded in-memory outbox and returns; a single
background worker sends tasks in outbox order.

Delivery:
    - At-least-once while the process lives: a failed send is retried with
      exponential backoff up to max_attempts
    - Exhausted tasks are logged as ReplicationError and counted, never raised
    - When the outbox is full the oldest pending task is dropped
    - Nothing is persisted; pending tasks are lost on process exit
    - There is no reconciliation of local and remote state

Invariants:
    - push() never raises and never blocks on the network
    - The namespace is captured when the task is enqueued, so a later
      namespace switch cannot redirect it
    - A send that has started is never cancelled; stop() waits for it
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Optional

from ..context import StorageContext
from ..errors import ReplicationError
from ..schema.kinds import EntityKind
from .base import RemoteDocumentStore, ReplicationAction
from .cleaning import clean_for_remote

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class ReplicationTask:
    """A pending remote mutation.

    Attributes:
        kind: Entity kind (selects the remote collection)
        action: add, update or delete
        doc_id: Document id, identical to the local id
        payload: Cleaned document or patch (None for delete)
        namespace: Namespace active when the task was enqueued
        attempts: Failed sends so far
        not_before: Monotonic time before which the task is not retried
    """

    kind: EntityKind
    action: ReplicationAction
    doc_id: str
    payload: Optional[Dict[str, Any]]
    namespace: str
    attempts: int = 0
    not_before: float = 0.0
    last_error: Optional[str] = field(default=None, repr=False)


class Replicator:
    """Outbox-backed replicator.

    Example:
        >>> replicator = Replicator(InMemoryDocumentStore(), context)
        >>> await replicator.start()
        >>> replicator.push(EntityKind.OWNER, ReplicationAction.ADD, "o1", {"id": "o1"})
        >>> await replicator.stop()
    """

    def __init__(
        self,
        remote: Optional[RemoteDocumentStore],
        context: StorageContext,
        outbox_capacity: int = 1000,
        max_attempts: int = 5,
        backoff_base_ms: int = 500,
        backoff_max_ms: int = 60_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.remote = remote
        self.context = context
        self.outbox_capacity = outbox_capacity
        self.max_attempts = max_attempts
        self.backoff_base_ms = backoff_base_ms
        self.backoff_max_ms = backoff_max_ms
        self.clock = clock

        self._outbox: Deque[ReplicationTask] = deque()
        self._running = False
        self._worker: Optional[asyncio.Task[None]] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._send_lock: Optional[asyncio.Lock] = None

        self._sent_count = 0
        self._retry_count = 0
        self._failed_count = 0
        self._dropped_count = 0
        self.dead_letters: Deque[ReplicationError] = deque(maxlen=100)

    @property
    def enabled(self) -> bool:
        return self.remote is not None

    @property
    def pending(self) -> int:
        return len(self._outbox)

    def push(
        self,
        kind: EntityKind,
        action: ReplicationAction,
        doc_id: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Enqueue a remote mutation.

        Does nothing when replication is disabled or no namespace is active.
        """
        if self.remote is None:
            return
        namespace = self.context.namespace
        if not namespace:
            logger.debug(
                "No active namespace, skipping replication",
                extra={"kind": kind.label, "doc_id": doc_id},
            )
            return

        body = None
        if action is not ReplicationAction.DELETE:
            body = clean_for_remote(dict(payload or {}))
            if action is ReplicationAction.ADD:
                body["id"] = doc_id

        self._enqueue(
            ReplicationTask(
                kind=kind,
                action=action,
                doc_id=doc_id,
                payload=body,
                namespace=namespace,
            )
        )

    def _enqueue(self, task: ReplicationTask) -> None:
        if len(self._outbox) >= self.outbox_capacity:
            dropped = self._outbox.popleft()
            self._dropped_count += 1
            logger.warning(
                "Replication outbox full, dropping oldest task",
                extra={
                    "collection": dropped.kind.collection,
                    "doc_id": dropped.doc_id,
                    "action": dropped.action.value,
                    "capacity": self.outbox_capacity,
                },
            )
        self._outbox.append(task)
        if self._wakeup is not None:
            self._wakeup.set()

    async def start(self) -> None:
        """Start the background worker."""
        if self._running:
            logger.warning("Replicator already running")
            return
        if self.remote is None:
            logger.info("Remote replication disabled")
            return

        self._wakeup = asyncio.Event()
        self._send_lock = asyncio.Lock()
        self._running = True
        self._worker = asyncio.create_task(self._run())
        if self._outbox:
            self._wakeup.set()
        logger.info(
            "Replicator started",
            extra={"outbox_capacity": self.outbox_capacity, "max_attempts": self.max_attempts},
        )

    async def stop(self, drain: bool = True) -> None:
        """Stop the worker, optionally flushing the outbox first.

        Waits for an in-flight send to finish instead of cancelling it.
        """
        if self._running:
            self._running = False
            if self._wakeup is not None:
                self._wakeup.set()
            if self._worker is not None:
                await self._worker
                self._worker = None
        if drain:
            await self.drain()
        if self._outbox:
            logger.warning("Replicator stopped with pending tasks", extra={"pending": len(self._outbox)})
        logger.info("Replicator stopped", extra=self.stats())

    async def drain(self) -> int:
        """Send every pending task now, ignoring backoff delays.

        Failed tasks are retried immediately until they succeed or run out
        of attempts, so the outbox is empty on return.

        Returns:
            Number of tasks delivered
        """
        if self.remote is None:
            return 0
        if self._send_lock is None:
            self._send_lock = asyncio.Lock()

        delivered = 0
        while self._outbox:
            task = self._outbox.popleft()
            if await self._process(task):
                delivered += 1
        return delivered

    async def _run(self) -> None:
        assert self._wakeup is not None
        try:
            while self._running:
                task = self._next_ready()
                if task is None:
                    self._wakeup.clear()
                    try:
                        await asyncio.wait_for(self._wakeup.wait(), timeout=self._next_delay())
                    except asyncio.TimeoutError:
                        pass
                    continue
                await self._process(task)
        except asyncio.CancelledError:
            logger.info("Replicator worker cancelled")
            raise
        except Exception as e:
            logger.error(f"Replicator worker error: {e}", exc_info=True)
            self._running = False

    def _next_ready(self) -> Optional[ReplicationTask]:
        now = self.clock()
        for task in self._outbox:
            if task.not_before <= now:
                self._outbox.remove(task)
                return task
        return None

    def _next_delay(self) -> Optional[float]:
        if not self._outbox:
            return None
        soonest = min(task.not_before for task in self._outbox)
        return max(0.0, soonest - self.clock())

    def _backoff_seconds(self, attempts: int) -> float:
        delay_ms = min(self.backoff_base_ms * (2 ** (attempts - 1)), self.backoff_max_ms)
        return delay_ms / 1000.0

    async def _process(self, task: ReplicationTask) -> bool:
        """Send one task, scheduling a retry or dead-lettering it on failure.

        Returns:
            True if the task was delivered
        """
        assert self._send_lock is not None
        async with self._send_lock:
            try:
                await self._send(task)
            except Exception as e:
                task.attempts += 1
                task.last_error = str(e)
            else:
                self._sent_count += 1
                logger.debug(
                    "Replicated document",
                    extra={
                        "collection": task.kind.collection,
                        "doc_id": task.doc_id,
                        "action": task.action.value,
                    },
                )
                return True

        if task.attempts >= self.max_attempts:
            error = ReplicationError(
                f"Giving up on {task.action.value} {task.kind.collection}/{task.doc_id}: {task.last_error}",
                collection=task.kind.collection,
                doc_id=task.doc_id,
                attempts=task.attempts,
            )
            self._failed_count += 1
            self.dead_letters.append(error)
            logger.error(error.message, extra=error.details)
            return False

        delay = self._backoff_seconds(task.attempts)
        task.not_before = self.clock() + delay
        self._retry_count += 1
        logger.warning(
            "Replication attempt failed, will retry",
            extra={
                "collection": task.kind.collection,
                "doc_id": task.doc_id,
                "attempt": task.attempts,
                "retry_in_seconds": delay,
                "error": task.last_error,
            },
        )
        self._enqueue(task)
        return False

    async def _send(self, task: ReplicationTask) -> None:
        assert self.remote is not None
        collection = task.kind.collection
        if task.action is ReplicationAction.ADD:
            await self.remote.add_document(task.namespace, collection, task.payload or {})
        elif task.action is ReplicationAction.UPDATE:
            await self.remote.update_document(task.namespace, collection, task.doc_id, task.payload or {})
        elif task.action is ReplicationAction.DELETE:
            await self.remote.delete_document(task.namespace, collection, task.doc_id)
        else:
            raise ValueError(f"Unknown replication action: {task.action}")

    def stats(self) -> Dict[str, Any]:
        """Replicator statistics."""
        return {
            "running": self._running,
            "pending": len(self._outbox),
            "sent": self._sent_count,
            "retries": self._retry_count,
            "failed": self._failed_count,
            "dropped": self._dropped_count,
        }
