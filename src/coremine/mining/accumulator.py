"""Client-side mining accumulator.

Turns elapsed wall-clock time into tokens for one active session and writes
each new state either to the server (online) or to the offline ledger
(offline, or when the online write fails). The in-memory state only advances
after a write succeeds, so a dropped tick loses no time: the next tick
covers the whole gap since ``last_update``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime

from coremine.config import get_settings
from coremine.errors import AlreadyMiningError, CoreMineError, SessionInactiveError, StorageError
from coremine.mining.client import RemoteSessionStore
from coremine.mining.ledger import OfflineLedger
from coremine.mining.rates import crossed_milestone, effective_rate, mined_amount
from coremine.mining.state import LocalSession
from coremine.timeutil import utcnow

logger = logging.getLogger(__name__)


class Connectivity:
    """Online/offline flag with change listeners."""

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._listeners: list[Callable[[bool], None]] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def add_listener(self, listener: Callable[[bool], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[bool], None]) -> None:
        with contextlib.suppress(ValueError):
            self._listeners.remove(listener)

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for listener in list(self._listeners):
            listener(online)


class MiningAccumulator:
    """Accrues tokens for one user's active session at a fixed cadence."""

    def __init__(
        self,
        user_id: str,
        remote: RemoteSessionStore,
        ledger: OfflineLedger,
        connectivity: Connectivity,
        *,
        base_rate: float | None = None,
        boost_percent: float = 0.0,
        streak_days: int = 0,
        tick_seconds: float | None = None,
        on_milestone: Callable[[int], None] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        settings = get_settings()
        self.user_id = user_id
        self.remote = remote
        self.ledger = ledger
        self.connectivity = connectivity
        self.base_rate = settings.base_mining_rate if base_rate is None else base_rate
        self.boost_percent = boost_percent
        self.streak_days = streak_days
        self.tick_seconds = settings.mining_tick_seconds if tick_seconds is None else tick_seconds
        self.stop_timeout = settings.mining_stop_flush_timeout_seconds
        self.on_milestone = on_milestone
        self._per_day = settings.streak_rate_bonus_per_day
        self._cap = settings.streak_rate_bonus_cap
        self._clock = clock
        self._session: LocalSession | None = None
        self._task: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()

    @property
    def session(self) -> LocalSession | None:
        return self._session

    @property
    def is_mining(self) -> bool:
        return self._session is not None and self._session.active

    @property
    def rate(self) -> float:
        """Tokens per minute."""
        return effective_rate(self.base_rate, self.boost_percent, self.streak_days, self._per_day, self._cap)

    # -- lifecycle ---------------------------------------------------------

    async def start(self, now: datetime | None = None, *, run: bool = True) -> LocalSession:
        """Open a session and (by default) start the tick loop.

        Online, the server assigns the id and epoch; offline, a local uuid is
        used and the session is buffered right away.
        """
        if self.is_mining:
            raise AlreadyMiningError
        now = now or self._clock()

        session = await self._open(now)
        self._session = session
        logger.info("Mining session %s started (%.4f tokens/min)", session.id, self.rate)
        if run:
            self._task = asyncio.create_task(self._run())
        return session

    async def tick(self, now: datetime | None = None) -> float:
        """Accrue tokens since the last successful write. Returns the amount accrued.

        Returns 0.0 when both destinations fail; the tick is dropped and the
        next one covers the gap.
        """
        async with self._lock:
            return await self._tick(now or self._clock())

    async def _tick(self, now: datetime) -> float:
        current = self._session
        if current is None or not current.active:
            raise SessionInactiveError

        elapsed = (now - current.last_update).total_seconds()
        mined = mined_amount(elapsed, self.rate)
        candidate = replace(
            current,
            tokens_mined=current.tokens_mined + mined,
            last_update=max(now, current.last_update),
        )
        stored = await self._persist(candidate)
        if stored is None:
            logger.error("Tick dropped for session %s; will retry on next tick", current.id)
            return 0.0

        self._session = await self._reconcile(candidate, stored)
        milestone = crossed_milestone(current.tokens_mined, candidate.tokens_mined)
        if milestone is not None and self.on_milestone is not None:
            try:
                self.on_milestone(milestone)
            except Exception:
                logger.warning("Milestone callback failed", exc_info=True)
        return mined

    async def stop(self, now: datetime | None = None) -> LocalSession | None:
        """Final tick, then close the session. No-op if nothing is mining."""
        if not self.is_mining:
            return self._session
        await self._cancel_loop()
        now = now or self._clock()

        async with self._lock:
            try:
                await asyncio.wait_for(self._tick(now), timeout=self.stop_timeout)
            except (asyncio.TimeoutError, CoreMineError):
                logger.warning(
                    "Final tick for session %s did not complete", self._session.id  # type: ignore[union-attr]
                )

            current: LocalSession = self._session  # type: ignore[assignment]
            final = replace(current, active=False, end_time=current.end_time or now)
            if await self._persist(final) is None:
                logger.error("Could not persist end of session %s", final.id)
            self._session = final

        logger.info("Mining session %s stopped at %.4f tokens", final.id, final.tokens_mined)
        return final

    # -- internals ---------------------------------------------------------

    async def _open(self, now: datetime) -> LocalSession:
        """New session: server-assigned when online, a buffered local one otherwise."""
        if self.connectivity.is_online:
            try:
                return replace(await self.remote.start_session(), last_update=now)
            except StorageError:
                logger.warning("Server unavailable at start; mining offline")
        session = LocalSession(id=str(uuid.uuid4()), user_id=self.user_id, start_time=now, last_update=now)
        await self.ledger.store(session)
        return session

    async def _persist(self, session: LocalSession) -> LocalSession | None:
        """Write to exactly one destination: the server if online, else the ledger.

        Returns what was stored (the server's view when online), or None if
        both writes failed.
        """
        if self.connectivity.is_online:
            try:
                return await self.remote.push_session(session)
            except StorageError:
                logger.warning("Online write failed for session %s; buffering offline", session.id)
        try:
            await self.ledger.store(session)
        except StorageError:
            logger.exception("Offline write failed for session %s", session.id)
            return None
        return session

    async def _reconcile(self, local: LocalSession, stored: LocalSession) -> LocalSession:
        """Follow the server when it moved or closed the session.

        An epoch settlement closes open sessions. The server then returns a
        continuation session in the current epoch, which is adopted; if it
        only reports the session closed, a new one is opened.
        """
        if stored is local or not local.active:
            return local
        if stored.id != local.id:
            logger.info("Session %s continues as %s in epoch %s", local.id, stored.id, stored.epoch_id)
            return replace(stored, last_update=local.last_update)
        if stored.active:
            return replace(local, epoch_id=stored.epoch_id or local.epoch_id)

        logger.info("Session %s was closed by the server; opening a new one", local.id)
        try:
            return await self._open(local.last_update)
        except CoreMineError as exc:
            logger.warning("Could not reopen after session %s closed: %s", local.id, exc)
            return replace(local, active=False, end_time=stored.end_time or local.last_update)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.tick_seconds)
            try:
                await self.tick()
            except SessionInactiveError:
                return
            except Exception:
                logger.exception("Mining tick failed")

    async def _cancel_loop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
