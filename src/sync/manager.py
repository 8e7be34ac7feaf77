"""Sync Manager: drains the outbound queue and merges inbound remote changes."""

import asyncio
from datetime import datetime
from typing import Callable

import structlog

from learning.errors import NetworkUnavailableError, SyncConflictUnresolvable
from learning.models import SyncStatus, utcnow
from learning.state import (
    LAST_SUCCESSFUL_SYNC,
    SYNC_CONFLICT,
    SYNC_CURSOR,
    SYNC_ERROR,
    SYNC_OFFLINE,
    EngineState,
)
from learning.store import PatternStore
from observability import metrics
from shared_types import SyncState

from .queue import DEFAULT_INITIAL_BACKOFF, DEFAULT_MAX_BACKOFF, SyncQueue
from .remote import SCHEMA_VERSION, RemoteStore

logger = structlog.get_logger().bind(source="sync_manager")

DEFAULT_MAX_RETRIES = 8
MIN_LOOP_SLEEP = 0.05


class SyncManager:
    """Keeps the local pattern store and an optional remote in step.

    Network work runs in background asyncio tasks; no learning or application
    call ever waits on it. Queue items are deleted only after the remote
    confirmed them, so cancelling a loop mid-push loses nothing.
    """

    def __init__(
        self,
        queue: SyncQueue,
        store: PatternStore,
        state: EngineState,
        remote: RemoteStore | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
        max_backoff: float = DEFAULT_MAX_BACKOFF,
        drain_interval: float = 30.0,
        pull_interval: float = 300.0,
        batch_size: int = 50,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.queue = queue
        self.store = store
        self.state = state
        self.remote = remote
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.drain_interval = drain_interval
        self.pull_interval = pull_interval
        self.batch_size = batch_size
        self.clock = clock
        self._tasks: list[asyncio.Task] = []

    @property
    def enabled(self) -> bool:
        return self.remote is not None

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    # --- outbound ---

    async def drain_once(self) -> dict:
        """Push every due item once, in enqueue order.

        Stops at the first network failure (the remote is unreachable, so the
        rest would fail too); other failures only affect their own item.
        """
        result = {"pushed": 0, "failed": 0, "abandoned": 0}
        if self.remote is None:
            return result

        for item in self.queue.due_items(self.clock(), limit=self.batch_size):
            try:
                await self.remote.push(item)
            except NetworkUnavailableError as e:
                self._record_failure(item, e, result)
                self.state.set(SYNC_OFFLINE, True)
                logger.info("sync.offline", pending=self.queue.pending_count())
                break
            except Exception as e:
                self._record_failure(item, e, result)
                continue

            self.queue.ack(item)
            result["pushed"] += 1
            self.state.set(SYNC_OFFLINE, False)

        metrics.counter("sync.pushed", result["pushed"])
        if result["pushed"] and not result["failed"]:
            self.state.set_time(LAST_SUCCESSFUL_SYNC, self.clock())
        if result["pushed"] or result["failed"]:
            logger.info("sync.drain_complete", **result)
        return result

    def _record_failure(self, item, error: Exception, result: dict) -> None:
        result["failed"] += 1
        abandoned = self.queue.record_failure(
            item,
            str(error),
            self.max_retries,
            self.initial_backoff,
            self.max_backoff,
            now=self.clock(),
        )
        if abandoned:
            result["abandoned"] += 1
        self.state.set(SYNC_ERROR, str(error))
        logger.warning(
            "sync.push_failed",
            item_id=item.id,
            retry_count=item.retry_count + 1,
            abandoned=abandoned,
            error=str(error),
        )

    # --- inbound ---

    async def pull_once(self) -> dict:
        """Fetch and merge remote changes since the stored cursor.

        Raises:
            NetworkUnavailableError: remote unreachable.
            SyncConflictUnresolvable: remote speaks another schema version.
        """
        if self.remote is None:
            return {"created": 0, "updated": 0, "deleted": 0, "unchanged": 0}

        changes = await self.remote.pull(self.state.get(SYNC_CURSOR))
        if changes.schema_version != SCHEMA_VERSION:
            raise SyncConflictUnresolvable(SCHEMA_VERSION, changes.schema_version)

        stats = self.store.merge_remote(changes.records)
        if changes.cursor is not None:
            self.state.set(SYNC_CURSOR, changes.cursor)
        now = self.clock()
        self.state.set_time(LAST_SUCCESSFUL_SYNC, now)
        self.state.set(SYNC_OFFLINE, False)
        self.state.delete(SYNC_CONFLICT)
        metrics.counter("sync.pulled", len(changes.records))
        return stats

    async def sync_now(self) -> dict:
        """One full exchange: drain, then pull. Errors land in the status."""
        if self.remote is None:
            return {"enabled": False}

        drained = await self.drain_once()
        summary = {"enabled": True, "drain": drained, "pull": None}
        try:
            summary["pull"] = await self.pull_once()
        except NetworkUnavailableError as e:
            self.state.set(SYNC_OFFLINE, True)
            self.state.set(SYNC_ERROR, str(e))
            logger.info("sync.pull_offline", error=str(e))
        except SyncConflictUnresolvable as e:
            self.state.set(SYNC_CONFLICT, True)
            self.state.set(SYNC_ERROR, str(e))
            logger.error("sync.schema_conflict", error=str(e))
        except Exception as e:
            self.state.set(SYNC_ERROR, str(e))
            logger.warning("sync.pull_failed", error=str(e))
        return summary

    def retry_abandoned(self) -> int:
        """Give abandoned items a fresh retry budget (status UI action)."""
        count = self.queue.rearm_abandoned(self.clock())
        if count:
            logger.info("sync.abandoned_rearmed", count=count)
        return count

    def status(self) -> SyncStatus:
        abandoned = self.queue.abandoned_count()
        conflict = bool(self.state.get(SYNC_CONFLICT, False))
        if abandoned or conflict:
            state = SyncState.DEGRADED
        elif self.remote is None or self.state.get(SYNC_OFFLINE, False):
            state = SyncState.OFFLINE
        else:
            state = SyncState.ONLINE
        return SyncStatus(
            last_successful_sync=self.state.get_time(LAST_SUCCESSFUL_SYNC),
            pending_count=self.queue.pending_count(),
            state=state,
            needs_attention=state == SyncState.DEGRADED,
            last_error=self.state.get(SYNC_ERROR) or self.queue.last_error(),
        )

    # --- background loops ---

    async def start(self) -> None:
        """Start drain and pull loops; pending items become due immediately."""
        if self.remote is None:
            logger.info("sync.disabled")
            return
        if self.running:
            return
        self.queue.reset_schedule(self.clock())
        self._tasks = [
            asyncio.create_task(self._drain_loop(), name="sync-drain"),
            asyncio.create_task(self._pull_loop(), name="sync-pull"),
        ]
        logger.info("sync.started", pending=self.queue.pending_count())

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("sync.stopped", pending=self.queue.pending_count())

    async def _drain_loop(self) -> None:
        while True:
            try:
                await self.drain_once()
            except Exception as e:
                logger.warning("sync.drain_loop_error", error=str(e))
            await asyncio.sleep(self._next_drain_delay())

    async def _pull_loop(self) -> None:
        while True:
            try:
                await self.pull_once()
            except SyncConflictUnresolvable as e:
                self.state.set(SYNC_CONFLICT, True)
                self.state.set(SYNC_ERROR, str(e))
                logger.error("sync.schema_conflict", error=str(e))
            except NetworkUnavailableError:
                self.state.set(SYNC_OFFLINE, True)
            except Exception as e:
                logger.warning("sync.pull_loop_error", error=str(e))
            await asyncio.sleep(self.pull_interval)

    def _next_drain_delay(self) -> float:
        next_at = self.queue.next_attempt_at()
        if next_at is None:
            return self.drain_interval
        wait = (next_at - self.clock()).total_seconds()
        return max(MIN_LOOP_SLEEP, min(self.drain_interval, wait))
