"""Tournament orchestrator - drives every tournament through its lifecycle on a fixed cadence."""
from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import config
from tourney.models.base import async_session_factory, utcnow
from tourney.services.arena import due_arena_ids, finalize_arena
from tourney.services.bot_fill import fill_with_bots, fillable_tournament_ids
from tourney.services.bracket import active_bracket_ids, advance_bracket, finalize_bracket
from tourney.services.game_engine import GameEngine
from tourney.services.matches import (
    active_linked_match_ids,
    check_match_completion,
    dispatch_match,
    pending_match_ids,
)
from tourney.services.pools import cleanup_stale_pools, ensure_pool
from tourney.services.registration import (
    cancel_tournament,
    expired_registration_ids,
    ready_tournament_ids,
    start_tournament,
)
from tourney.services.templates import DEFAULT_TEMPLATES, TournamentTemplate

logger = logging.getLogger("tourney.orchestrator")

SessionWork = Callable[[AsyncSession], Awaitable[object]]


class TournamentOrchestrator:
    """Background loop: provision -> cancel expired -> bot fill -> start -> dispatch -> watch -> advance -> finalize.

    Owned by the host process (API lifespan or the standalone runner). Every
    collaborator is injected so tests can drive tick() against their own
    database, clock and random source.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        engine: Optional[GameEngine] = None,
        templates: Sequence[TournamentTemplate] = DEFAULT_TEMPLATES,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
        tick_interval: float = config.TICK_INTERVAL_SECONDS,
        warmup_delay: float = config.WARMUP_DELAY_SECONDS,
        bot_fill_delay: float = config.BOT_FILL_DELAY_SECONDS,
        isolate_errors: bool = config.ISOLATE_TOURNAMENT_ERRORS,
        error_log_limit: int = config.ERROR_LOG_LIMIT,
        auto_dispatch: bool = config.AUTO_DISPATCH_MATCHES,
    ):
        self.session_factory = session_factory or async_session_factory
        self.engine = engine or GameEngine()
        self.templates = tuple(templates)
        self.clock = clock
        self.rng = rng or random.Random()
        self.tick_interval = tick_interval
        self.warmup_delay = warmup_delay
        self.bot_fill_delay = timedelta(seconds=bot_fill_delay)
        self.isolate_errors = isolate_errors
        self.error_log_limit = error_log_limit
        self.auto_dispatch = auto_dispatch
        self.consecutive_errors = 0
        self._tick_failed = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the loop on the running event loop. No-op if already running."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="tournament-orchestrator")
        logger.info(
            "Tournament orchestrator started (interval %ss, warm-up %ss)",
            self.tick_interval, self.warmup_delay,
        )

    async def stop(self) -> None:
        """Cancel the loop and wait for it to exit."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Tournament orchestrator stopped")

    async def _run(self) -> None:
        await asyncio.sleep(self.warmup_delay)
        while True:
            await self.tick()
            # next run is queued only after this one finished
            await asyncio.sleep(self.tick_interval)

    def _log_failure(self, msg: str, *args) -> None:
        if self.consecutive_errors < self.error_log_limit:
            logger.exception(msg, *args)
        else:
            logger.debug(msg, *args, exc_info=True)

    async def tick(self) -> bool:
        """Run every lifecycle step once. Returns True if nothing failed."""
        now = self.clock()
        self._tick_failed = False
        try:
            await self._provision_pools(now)
            # expired registrations go before bot fill and the start gate
            await self._cancel_expired(now)
            await self._fill_bots(now)
            await self._start_ready(now)
            await self._dispatch_matches(now)
            await self._watch_matches(now)
            await self._advance_brackets(now)
            await self._finalize_brackets(now)
            await self._finalize_arenas(now)
        except Exception:
            self._tick_failed = True
            self._log_failure("Orchestrator tick failed")

        if self._tick_failed:
            self.consecutive_errors += 1
            if self.consecutive_errors == self.error_log_limit:
                logger.warning(
                    "%d consecutive failing ticks; further errors logged at DEBUG",
                    self.consecutive_errors,
                )
            return False
        if self.consecutive_errors:
            logger.info("Orchestrator recovered after %d failing ticks", self.consecutive_errors)
            self.consecutive_errors = 0
        return True

    async def _collect(self, query: Callable[[AsyncSession], Awaitable[List[int]]]) -> List[int]:
        async with self.session_factory() as session:
            return await query(session)

    async def _run_item(self, step: str, item: object, work: SessionWork) -> object:
        """Run one unit of work in its own transaction: commit on success, roll back on failure."""
        async with self.session_factory() as session:
            try:
                result = await work(session)
                await session.commit()
                return result
            except Exception:
                await session.rollback()
                if not self.isolate_errors:
                    raise
                self._tick_failed = True
                self._log_failure("%s failed for %s", step, item)
                return None

    async def _provision_pools(self, now: datetime) -> None:
        templates = self.templates
        await self._run_item("Pool cleanup", "templates", lambda s: cleanup_stale_pools(s, templates))
        for template in templates:
            await self._run_item(
                "Pool provisioning", template.name,
                lambda s, template=template: ensure_pool(s, template, now, self.rng),
            )

    async def _fill_bots(self, now: datetime) -> None:
        ids = await self._collect(lambda s: fillable_tournament_ids(s, now, self.bot_fill_delay))
        for tid in ids:
            await self._run_item(
                "Bot fill", f"tournament {tid}",
                lambda s, tid=tid: fill_with_bots(s, tid, self.rng, now),
            )

    async def _start_ready(self, now: datetime) -> None:
        ids = await self._collect(lambda s: ready_tournament_ids(s, now))
        for tid in ids:
            await self._run_item(
                "Start", f"tournament {tid}",
                lambda s, tid=tid: start_tournament(s, tid, self.rng, now),
            )

    async def _cancel_expired(self, now: datetime) -> None:
        ids = await self._collect(lambda s: expired_registration_ids(s, now))
        for tid in ids:
            await self._run_item(
                "Cancel", f"tournament {tid}",
                lambda s, tid=tid: cancel_tournament(s, tid, now),
            )

    async def _dispatch_matches(self, now: datetime) -> None:
        ids = await self._collect(pending_match_ids)
        for mid in ids:
            await self._run_item(
                "Match dispatch", f"match {mid}",
                lambda s, mid=mid: dispatch_match(
                    s, self.engine, mid, self.rng, now, auto_start=self.auto_dispatch
                ),
            )

    async def _watch_matches(self, now: datetime) -> None:
        ids = await self._collect(active_linked_match_ids)
        for mid in ids:
            await self._run_item(
                "Completion check", f"match {mid}",
                lambda s, mid=mid: check_match_completion(s, self.engine, mid, now),
            )

    async def _advance_brackets(self, now: datetime) -> None:
        async def advance_all(session: AsyncSession, tid: int) -> None:
            # rounds made only of byes resolve on creation, so keep going
            while await advance_bracket(session, tid, now):
                pass

        ids = await self._collect(active_bracket_ids)
        for tid in ids:
            await self._run_item("Advance", f"tournament {tid}", lambda s, tid=tid: advance_all(s, tid))

    async def _finalize_brackets(self, now: datetime) -> None:
        ids = await self._collect(active_bracket_ids)
        for tid in ids:
            await self._run_item(
                "Finalize", f"tournament {tid}",
                lambda s, tid=tid: finalize_bracket(s, tid, now),
            )

    async def _finalize_arenas(self, now: datetime) -> None:
        ids = await self._collect(lambda s: due_arena_ids(s, now))
        for tid in ids:
            await self._run_item(
                "Arena finalize", f"tournament {tid}",
                lambda s, tid=tid: finalize_arena(s, tid, now),
            )
