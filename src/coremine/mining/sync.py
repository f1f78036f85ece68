"""Background sync of the offline ledger to the server.

Runs on reconnect and on a periodic timer. Each buffered session is pushed
with the idempotent session upsert and deleted locally only after the server
accepted it; failures stay buffered for the next run.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass

from coremine.config import get_settings
from coremine.errors import CoreMineError, StorageError
from coremine.mining.accumulator import Connectivity
from coremine.mining.client import RemoteSessionStore
from coremine.mining.ledger import OfflineLedger

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    synced: int = 0
    failed: int = 0
    discarded: int = 0


class BackgroundSync:
    """Replays the offline ledger against a RemoteSessionStore."""

    def __init__(
        self,
        ledger: OfflineLedger,
        remote: RemoteSessionStore,
        connectivity: Connectivity,
        *,
        interval_seconds: float | None = None,
    ) -> None:
        self.ledger = ledger
        self.remote = remote
        self.connectivity = connectivity
        self.interval = get_settings().sync_interval_seconds if interval_seconds is None else interval_seconds
        self._lock = asyncio.Lock()
        self._wake = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    async def sync_once(self) -> SyncReport:
        """Push every buffered session once. Skipped while offline."""
        report = SyncReport()
        if not self.connectivity.is_online:
            return report

        async with self._lock:
            async for entry in self.ledger.entries():
                session = entry.session
                try:
                    await self.remote.push_session(session)
                except StorageError:
                    report.failed += 1
                    logger.warning("Sync of session %s failed; keeping it buffered", session.id)
                    continue
                except CoreMineError as exc:
                    # Rejected for good (e.g. owned by another user); retrying cannot help.
                    report.discarded += 1
                    logger.error("Server rejected buffered session %s: %s", session.id, exc)
                    await self.ledger.delete(session.id)
                    continue
                await self.ledger.delete(session.id, revision=entry.revision)
                report.synced += 1

        if report.synced or report.failed or report.discarded:
            logger.info(
                "Offline sync: %d synced, %d failed, %d discarded",
                report.synced, report.failed, report.discarded,
            )
        return report

    def _on_connectivity(self, online: bool) -> None:
        if online:
            self._wake.set()

    def start(self) -> None:
        """Run on reconnect and every ``interval`` seconds until stopped."""
        if self._task is not None:
            return
        self.connectivity.add_listener(self._on_connectivity)
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        self.connectivity.remove_listener(self._on_connectivity)
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        while True:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval)
            self._wake.clear()
            try:
                await self.sync_once()
            except Exception:
                logger.exception("Offline sync run failed")
