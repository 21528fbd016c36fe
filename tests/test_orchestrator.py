"""Tests for the orchestrator loop: tick ordering, idempotence, scenarios, error containment."""
import asyncio
import logging
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from conftest import START, add_players, make_pending_match, make_tournament
from tourney.models import BracketMatch, ChessMatch, Participant, Tournament
from tourney.models.bracket import ACTIVE as MATCH_ACTIVE, PENDING
from tourney.models.tournament import ACTIVE, ARENA, CANCELLED, COMPLETED, REGISTERING, WEEKLY
from tourney.services.game_engine import GameEngine
from tourney.services.orchestrator import TournamentOrchestrator
from tourney.services.registration import join_tournament
from tourney.services.templates import DEFAULT_TEMPLATES, get_template


class FlakyEngine(GameEngine):
    """Refuses to create matches for the given players."""

    def __init__(self, *bad_players):
        self.bad_players = set(bad_players)

    async def create_match(self, session, player1_id, player2_id, time_control, now):
        if {player1_id, player2_id} & self.bad_players:
            raise RuntimeError("engine unavailable")
        return await super().create_match(session, player1_id, player2_id, time_control, now)


async def _count(session_factory, model) -> int:
    async with session_factory() as s:
        result = await s.execute(select(func.count()).select_from(model))
        return result.scalar_one()


async def _pool(session_factory, template_name) -> Tournament:
    async with session_factory() as s:
        result = await s.execute(
            select(Tournament).where(
                Tournament.template_name == template_name, Tournament.status == REGISTERING
            )
        )
        return result.scalar_one()


@pytest.mark.asyncio
async def test_first_tick_provisions_one_pool_per_template(orchestrator, session_factory):
    assert await orchestrator.tick() is True
    async with session_factory() as s:
        result = await s.execute(select(Tournament.template_name, Tournament.entry_fee))
        pools = sorted(result.all())
    assert pools == sorted((t.name, t.entry_fee) for t in DEFAULT_TEMPLATES)


@pytest.mark.asyncio
async def test_tick_is_idempotent(orchestrator, session_factory):
    await orchestrator.tick()
    snapshot = (
        await _count(session_factory, Tournament),
        await _count(session_factory, Participant),
        await _count(session_factory, BracketMatch),
    )
    assert await orchestrator.tick() is True
    assert await orchestrator.tick() is True
    assert snapshot == (
        await _count(session_factory, Tournament),
        await _count(session_factory, Participant),
        await _count(session_factory, BracketMatch),
    )


@pytest.mark.asyncio
async def test_scenario_bot_fill_then_start(session_factory, clock, rng):
    """Free 8-seat pool, 2 humans, 11 minutes: 6 bots join and the pool starts with 4 matches."""
    orchestrator = TournamentOrchestrator(
        session_factory, templates=[get_template("Quick 8")], clock=clock, rng=rng,
        bot_fill_delay=600, auto_dispatch=False,
    )
    await orchestrator.tick()
    pool = await _pool(session_factory, "Quick 8")
    async with session_factory() as s:
        await join_tournament(s, pool.id, "alice", clock())
        await join_tournament(s, pool.id, "bob", clock())
        await s.commit()

    clock.advance(minutes=5)
    await orchestrator.tick()
    async with session_factory() as s:
        assert (await s.get(Tournament, pool.id)).current_players == 2

    clock.advance(minutes=6)
    assert await orchestrator.tick() is True
    async with session_factory() as s:
        t = await s.get(Tournament, pool.id)
        assert t.current_players == 8
        assert t.status == ACTIVE
        assert t.total_rounds == 3
        assert t.current_round == 1
        result = await s.execute(select(BracketMatch).where(BracketMatch.tournament_id == pool.id))
        assert len(result.scalars().all()) == 4
        result = await s.execute(
            select(func.count()).select_from(Participant).where(
                Participant.tournament_id == pool.id, Participant.is_bot.is_(True)
            )
        )
        assert result.scalar_one() == 6

    # the started pool no longer counts as open; a fresh one appears next tick
    await orchestrator.tick()
    fresh = await _pool(session_factory, "Quick 8")
    assert fresh.id != pool.id


@pytest.mark.asyncio
async def test_pool_runs_to_completion(session_factory, clock, rng):
    orchestrator = TournamentOrchestrator(
        session_factory, templates=[get_template("Quick 8")], clock=clock, rng=rng,
        bot_fill_delay=600, auto_dispatch=True,
    )
    await orchestrator.tick()
    pool = await _pool(session_factory, "Quick 8")
    async with session_factory() as s:
        await join_tournament(s, pool.id, "alice", clock())
        await s.commit()
    clock.advance(minutes=11)

    for _ in range(15):
        assert await orchestrator.tick() is True
        async with session_factory() as s:
            # alice wins every game she plays
            result = await s.execute(select(ChessMatch).where(ChessMatch.status == "active"))
            for chess_match in result.scalars().all():
                chess_match.status = "completed"
                chess_match.winner_id = "alice"
            await s.commit()
            if (await s.get(Tournament, pool.id)).status == COMPLETED:
                break
        clock.advance(seconds=15)

    async with session_factory() as s:
        t = await s.get(Tournament, pool.id)
        assert t.status == COMPLETED
        assert t.winner_id == "alice"
        result = await s.execute(
            select(Participant).where(
                Participant.tournament_id == pool.id, Participant.final_placement.is_not(None)
            )
        )
        placements = {p.final_placement: p for p in result.scalars().all()}
        assert placements[1].player_id == "alice"
        assert placements[1].wins == 3
        assert placements[2].is_bot


@pytest.mark.asyncio
async def test_empty_tournament_never_starts(orchestrator, session_factory, clock):
    """Scheduled start passes with nobody registered: still registering."""
    async with session_factory() as s:
        t = await make_tournament(s, scheduled_start_at=START - timedelta(minutes=1))
        tid = t.id
        await s.commit()
    orchestrator.templates = ()
    clock.advance(hours=2)
    await orchestrator.tick()
    async with session_factory() as s:
        assert (await s.get(Tournament, tid)).status == REGISTERING


@pytest.mark.asyncio
async def test_registration_past_end_is_cancelled(orchestrator, session_factory, clock):
    async with session_factory() as s:
        t = await make_tournament(
            s, min_players=4, scheduled_start_at=START, scheduled_end_at=START + timedelta(hours=1)
        )
        await add_players(s, t, ["a", "b"])
        tid = t.id
        await s.commit()
    orchestrator.templates = ()
    await orchestrator.tick()
    async with session_factory() as s:
        assert (await s.get(Tournament, tid)).status == REGISTERING
    clock.advance(hours=1)
    await orchestrator.tick()
    async with session_factory() as s:
        assert (await s.get(Tournament, tid)).status == CANCELLED


@pytest.mark.asyncio
async def test_arena_past_end_is_cancelled_without_prizes(orchestrator, session_factory):
    async with session_factory() as s:
        t = await make_tournament(
            s, tournament_format=ARENA, tournament_type=WEEKLY, entry_fee=15, max_players=100,
            scheduled_start_at=START - timedelta(hours=3), scheduled_end_at=START - timedelta(hours=1),
        )
        await add_players(s, t, ["alice", "bob"])
        tid = t.id
        await s.commit()
    orchestrator.templates = ()
    assert await orchestrator.tick() is True
    async with session_factory() as s:
        t = await s.get(Tournament, tid)
        assert t.status == CANCELLED
        assert t.started_at is None
        assert t.winner_id is None
        result = await s.execute(select(Participant).where(Participant.tournament_id == tid))
        assert [(p.final_placement, p.prizes_won) for p in result.scalars().all()] == [(None, 0), (None, 0)]

async def _two_pending(session_factory):
    async with session_factory() as s:
        bad = await make_pending_match(s, "bad", "bob")
        good = await make_pending_match(s, "carol", "dave")
        ids = bad.id, good.id
        await s.commit()
    return ids


@pytest.mark.asyncio
async def test_failure_is_isolated_per_match(session_factory, clock, rng):
    bad_id, good_id = await _two_pending(session_factory)
    orchestrator = TournamentOrchestrator(
        session_factory, engine=FlakyEngine("bad"), templates=(), clock=clock, rng=rng,
        isolate_errors=True,
    )
    assert await orchestrator.tick() is False
    async with session_factory() as s:
        assert (await s.get(BracketMatch, bad_id)).status == PENDING
        assert (await s.get(BracketMatch, good_id)).status == MATCH_ACTIVE


@pytest.mark.asyncio
async def test_failure_aborts_tick_without_isolation(session_factory, clock, rng):
    bad_id, good_id = await _two_pending(session_factory)
    orchestrator = TournamentOrchestrator(
        session_factory, engine=FlakyEngine("bad"), templates=(), clock=clock, rng=rng,
        isolate_errors=False,
    )
    assert await orchestrator.tick() is False
    async with session_factory() as s:
        assert (await s.get(BracketMatch, bad_id)).status == PENDING
        assert (await s.get(BracketMatch, good_id)).status == PENDING


@pytest.mark.asyncio
async def test_repeated_failures_are_logged_then_quieted(session_factory, clock, rng, caplog):
    await _two_pending(session_factory)
    orchestrator = TournamentOrchestrator(
        session_factory, engine=FlakyEngine("bad"), templates=(), clock=clock, rng=rng,
        error_log_limit=2,
    )
    caplog.set_level(logging.DEBUG, logger="tourney")

    for _ in range(4):
        assert await orchestrator.tick() is False
    assert orchestrator.consecutive_errors == 4
    errors = [r for r in caplog.records if r.name == "tourney.orchestrator" and r.levelno == logging.ERROR]
    assert len(errors) == 2

    orchestrator.engine = GameEngine()
    assert await orchestrator.tick() is True
    assert orchestrator.consecutive_errors == 0
    assert "recovered after 4 failing ticks" in caplog.text


@pytest.mark.asyncio
async def test_start_and_stop(orchestrator, session_factory):
    orchestrator.start()
    task = orchestrator._task
    orchestrator.start()
    assert orchestrator._task is task
    assert orchestrator.running

    for _ in range(100):
        if await _count(session_factory, Tournament) == len(DEFAULT_TEMPLATES):
            break
        await asyncio.sleep(0.02)
    await orchestrator.stop()

    assert not orchestrator.running
    assert task.done()
    assert await _count(session_factory, Tournament) == len(DEFAULT_TEMPLATES)
    await orchestrator.stop()
