"""Offline queue of session mutations and the pass that drains it.

Ops are replayed strictly in FIFO order. A ``StartSession`` that succeeds
rebases every later op that still references its provisional id, so the
``RecordSet`` ops recorded offline reach the server under the canonical id.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from liftsync.api.client import WorkoutApi
from liftsync.api.errors import SessionGoneError
from liftsync.core.timers import PeriodicTask
from liftsync.session.model import CanonicalId, ProvisionalId
from liftsync.storage.keys import StorageKey
from liftsync.storage.store import KeyValueStore
from liftsync.sync.ops import (
    EndSession,
    PendingSyncOp,
    RecordSet,
    StartSession,
    op_from_dict,
    op_session_id,
    op_to_dict,
    rebase_op,
)

logger = logging.getLogger(__name__)

SYNC_INTERVAL_SEC = 30.0

PromotionCallback = Callable[[ProvisionalId, CanonicalId], Awaitable[None]]
DrainedCallback = Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class SyncReport:
    synced: int = 0
    dropped: int = 0
    failed: int = 0
    skipped: bool = False


def _has_start_for(ops: list[PendingSyncOp], local_id: ProvisionalId) -> bool:
    return any(isinstance(op, StartSession) and op.local_session_id == local_id for op in ops)


class SyncManager:
    def __init__(
        self,
        store: KeyValueStore,
        api: WorkoutApi,
        user_id: str | None = None,
        *,
        on_session_promoted: PromotionCallback | None = None,
        on_queue_drained: DrainedCallback | None = None,
        is_online: Callable[[], bool] | None = None,
        interval_sec: float = SYNC_INTERVAL_SEC,
    ) -> None:
        self._store = store
        self._api = api
        self._user_id = user_id
        self._on_session_promoted = on_session_promoted
        self._on_queue_drained = on_queue_drained
        self._is_online = is_online
        self._queue: list[PendingSyncOp] = []
        self._is_syncing = False
        # bumped by clear(); a pass that started under an older generation discards its result
        self._generation = 0
        self._eager_task: Optional[asyncio.Task[SyncReport]] = None
        self._timer = PeriodicTask("pending-sync", interval_sec, self.tick)

    @property
    def pending(self) -> tuple[PendingSyncOp, ...]:
        return tuple(self._queue)

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    async def load(self) -> None:
        raw = await self._store.load(StorageKey.PENDING_SYNCS, self._user_id, default=[])
        queue: list[PendingSyncOp] = []
        for entry in raw if isinstance(raw, list) else []:
            try:
                queue.append(op_from_dict(entry))
            except (TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable pending sync %r: %s", entry, exc)
        self._queue = queue

    def start(self) -> None:
        self._timer.start()

    async def stop(self) -> None:
        await self._timer.stop()
        if self._eager_task is not None and not self._eager_task.done():
            await self._eager_task
        self._eager_task = None

    async def add_pending_sync(self, op: PendingSyncOp) -> None:
        self._queue.append(op)
        await self._persist()
        logger.info("Queued %s for sync (%d pending)", type(op).__name__, len(self._queue))
        if self._is_online is not None and self._is_online():
            self._schedule_pass()

    async def clear(self) -> None:
        self._generation += 1
        self._queue = []
        await self._store.remove(StorageKey.PENDING_SYNCS, self._user_id)

    async def tick(self) -> None:
        if self._queue and not self._is_syncing:
            await self.sync_pending_data()

    async def sync_pending_data(self) -> SyncReport:
        if self._is_syncing or not self._queue:
            return SyncReport(skipped=True)

        self._is_syncing = True
        try:
            return await self._run_pass()
        finally:
            self._is_syncing = False

    async def cleanup_invalid_syncs(self) -> int:
        """Drop set/end ops whose provisional session has no queued start."""
        if self._is_syncing:
            return 0

        kept: list[PendingSyncOp] = []
        for op in self._queue:
            session_id = op_session_id(op)
            if (
                not isinstance(op, StartSession)
                and isinstance(session_id, ProvisionalId)
                and not _has_start_for(self._queue, session_id)
            ):
                logger.info("Removing orphaned %s for local session %s", type(op).__name__, session_id)
                continue
            kept.append(op)

        removed = len(self._queue) - len(kept)
        if removed:
            self._queue = kept
            await self._persist()
            logger.info("Cleaned up %d invalid syncs", removed)
        return removed

    def _schedule_pass(self) -> None:
        if self._eager_task is not None and not self._eager_task.done():
            return
        self._eager_task = asyncio.create_task(self.sync_pending_data())

    async def _run_pass(self) -> SyncReport:
        generation = self._generation
        ops = list(self._queue)
        batch_size = len(ops)
        logger.info("Attempting to sync %d pending operations", batch_size)

        failed: list[PendingSyncOp] = []
        promotions: dict[ProvisionalId, CanonicalId] = {}
        synced = dropped = 0

        for i, op in enumerate(ops):
            try:
                if isinstance(op, StartSession):
                    canonical = CanonicalId(
                        await self._api.start_session(
                            op.person,
                            op.day_number,
                            op.day_title,
                            list(op.muscle_groups),
                            op.is_demo,
                            op.timestamp or None,
                        )
                    )
                    promotions[op.local_session_id] = canonical
                    for j in range(i + 1, len(ops)):
                        ops[j] = rebase_op(ops[j], op.local_session_id, canonical)
                    synced += 1
                    logger.info("Synced session start %s -> %s", op.local_session_id, canonical)
                    await self._notify_promoted(op.local_session_id, canonical)

                elif isinstance(op, RecordSet):
                    if not op.is_valid:
                        logger.info("Dropping invalid queued set (weight=%s reps=%s)", op.weight, op.reps)
                        dropped += 1
                        continue
                    if isinstance(op.session_id, ProvisionalId):
                        logger.debug("Set for local session %s waits for its start", op.session_id)
                        failed.append(op)
                        continue
                    await self._api.record_set(
                        str(op.session_id),
                        op.exercise_name,
                        op.set_index,
                        op.start_time,
                        op.end_time,
                        op.weight,
                        op.reps,
                        op.note,
                        op.is_warmup,
                        op.muscle_group,
                    )
                    synced += 1

                elif isinstance(op, EndSession):
                    if isinstance(op.session_id, ProvisionalId):
                        if _has_start_for(failed, op.session_id):
                            failed.append(op)
                        else:
                            logger.info("Skipping end for session %s that never reached the server", op.session_id)
                            dropped += 1
                        continue
                    # an expired token (SessionExpiredError) is not a verdict on the session;
                    # the end stays queued and goes out after the next sign-in
                    try:
                        await self._api.end_session(str(op.session_id), op.timestamp or None)
                        synced += 1
                    except SessionGoneError as exc:
                        logger.warning("Session %s gone on server, dropping end: %s", op.session_id, exc)
                        dropped += 1

                else:
                    raise TypeError(f"Unknown pending sync op: {op!r}")

            except Exception as exc:
                logger.warning("Failed to sync %s: %s", type(op).__name__, exc)
                failed.append(op)

        if generation != self._generation:
            logger.info("Pending queue was cleared during the sync pass, discarding its leftovers")
            return SyncReport(synced=synced, dropped=dropped, failed=len(failed))

        appended = self._queue[batch_size:]
        for local_id, canonical in promotions.items():
            appended = [rebase_op(op, local_id, canonical) for op in appended]
        self._queue = failed + appended
        await self._persist()

        if not self._queue:
            logger.info("All pending syncs completed")
            if self._on_queue_drained is not None:
                await self._on_queue_drained()
        else:
            logger.info("%d syncs still pending", len(self._queue))

        return SyncReport(synced=synced, dropped=dropped, failed=len(failed))

    async def _notify_promoted(self, local_id: ProvisionalId, canonical: CanonicalId) -> None:
        if self._on_session_promoted is None:
            return
        try:
            await self._on_session_promoted(local_id, canonical)
        except Exception:
            logger.exception("Session promotion callback failed for %s", local_id)

    async def _persist(self) -> None:
        await self._store.save(
            StorageKey.PENDING_SYNCS,
            [op_to_dict(op) for op in self._queue],
            self._user_id,
        )
