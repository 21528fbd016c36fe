"""Tests for the arena format: pairing, scoring, leaderboard and finalization."""
from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import START, add_players, make_tournament
from tourney.models import ChessMatch, Participant
from tourney.models.bracket import ACTIVE as MATCH_ACTIVE, WAITING
from tourney.models.tournament import ACTIVE, ARENA, CANCELLED, COMPLETED, REGISTERING, WEEKLY
from tourney.services.arena import (
    arena_leaderboard,
    create_arena_tournament,
    due_arena_ids,
    finalize_arena,
    find_arena_match,
)
from tourney.services.game_engine import GameEngine
from tourney.services.matches import check_match_completion
from tourney.services.payouts import prize_split


async def _active_arena(session, players, **kwargs):
    values = dict(
        tournament_format=ARENA,
        tournament_type=WEEKLY,
        status=ACTIVE,
        max_players=100,
        started_at=START,
        scheduled_end_at=START + timedelta(hours=1),
    )
    values.update(kwargs)
    t = await make_tournament(session, **values)
    await add_players(session, t, players)
    return t


@pytest.mark.asyncio
async def test_create_arena_tournament(session):
    t = await create_arena_tournament(
        session, "Weekend Arena", START, START + timedelta(hours=2), START, time_control="blitz"
    )
    assert t.status == REGISTERING
    assert t.tournament_format == ARENA
    assert t.tournament_type == WEEKLY
    assert t.prize_pool == 0
    assert t.scheduled_end_at == START + timedelta(hours=2)


@pytest.mark.asyncio
async def test_create_arena_rejects_bad_window(session):
    with pytest.raises(ValueError):
        await create_arena_tournament(session, "Backwards", START, START, START)
    with pytest.raises(ValueError):
        await create_arena_tournament(
            session, "Tiny", START, START + timedelta(hours=1), START, min_players=1
        )
    with pytest.raises(ValueError):
        await create_arena_tournament(
            session, "Stale", START - timedelta(hours=3), START - timedelta(hours=1), START
        )


@pytest.mark.asyncio
async def test_find_match_queues_then_pairs(session):
    engine = GameEngine()
    t = await _active_arena(session, ["alice", "bob"])

    entry = await find_arena_match(session, engine, t.id, "alice", START)
    assert entry.status == WAITING
    assert entry.player2_id is None
    again = await find_arena_match(session, engine, t.id, "alice", START)
    assert again.id == entry.id

    paired = await find_arena_match(session, engine, t.id, "bob", START + timedelta(seconds=5))
    assert paired.id == entry.id
    assert paired.status == MATCH_ACTIVE
    assert (paired.player1_id, paired.player2_id) == ("alice", "bob")
    chess_match = await session.get(ChessMatch, paired.engine_match_id)
    assert chess_match.time_control == "blitz"


@pytest.mark.asyncio
async def test_find_match_requires_registration_and_active_arena(session):
    engine = GameEngine()
    t = await _active_arena(session, ["alice"])
    with pytest.raises(ValueError):
        await find_arena_match(session, engine, t.id, "mallory", START)
    bracket = await make_tournament(session, status=ACTIVE)
    with pytest.raises(ValueError):
        await find_arena_match(session, engine, bracket.id, "alice", START)
    with pytest.raises(LookupError):
        await find_arena_match(session, engine, 9999, "alice", START)


async def _play(session, engine, t, p1, p2, status="completed", winner=None):
    await find_arena_match(session, engine, t.id, p1, START)
    m = await find_arena_match(session, engine, t.id, p2, START)
    chess_match = await session.get(ChessMatch, m.engine_match_id)
    chess_match.status = status
    chess_match.winner_id = winner
    await session.flush()
    assert await check_match_completion(session, engine, m.id, START) is True


@pytest.mark.asyncio
async def test_arena_scoring_and_leaderboard(session):
    engine = GameEngine()
    t = await _active_arena(session, ["alice", "bob", "carol"])

    await _play(session, engine, t, "alice", "bob", winner="alice")
    await _play(session, engine, t, "bob", "carol", status="draw")
    await _play(session, engine, t, "carol", "alice", winner="carol")

    board = await arena_leaderboard(session, t.id)
    rows = {r["player_id"]: r for r in board}
    assert rows["alice"]["points"] == 3 and rows["alice"]["games_played"] == 2
    assert rows["carol"]["points"] == 4 and rows["carol"]["draws"] == 1
    assert rows["bob"]["points"] == 1 and rows["bob"]["losses"] == 1
    assert [r["player_id"] for r in board] == ["carol", "alice", "bob"]
    assert [r["rank"] for r in board] == [1, 2, 3]


@pytest.mark.asyncio
async def test_leaderboard_tie_breaks_on_wins_then_games(session):
    t = await _active_arena(session, ["a", "b", "c"])
    result = await session.execute(select(Participant).where(Participant.tournament_id == t.id))
    stats = {"a": (3, 1, 3), "b": (3, 1, 4), "c": (3, 0, 5)}
    for p in result.scalars().all():
        p.points, p.wins, p.games_played = stats[p.player_id]
    await session.flush()

    board = await arena_leaderboard(session, t.id)
    assert [r["player_id"] for r in board] == ["b", "a", "c"]


@pytest.mark.asyncio
async def test_finalize_arena_ranks_and_pays_top_three(session):
    """10 participants, end time passed: placements 1..10, prizes for ranks 1-3 only."""
    players = [f"p{i}" for i in range(10)]
    t = await _active_arena(
        session, players, entry_fee=10, scheduled_end_at=START - timedelta(minutes=1)
    )
    result = await session.execute(select(Participant).where(Participant.tournament_id == t.id))
    for p in result.scalars().all():
        i = int(p.player_id[1:])
        p.points = i * 3
        p.wins = i
        p.games_played = 9
    await session.flush()

    assert await due_arena_ids(session, START) == [t.id]
    assert await finalize_arena(session, t.id, START) is True

    assert t.status == COMPLETED
    assert t.winner_id == "p9"
    assert t.ended_at == START
    assert t.prize_pool == 85
    first, second, third = prize_split(85)
    result = await session.execute(select(Participant).where(Participant.tournament_id == t.id))
    by_rank = {p.final_placement: p for p in result.scalars().all()}
    assert sorted(by_rank) == list(range(1, 11))
    assert [by_rank[r].player_id for r in (1, 2, 3)] == ["p9", "p8", "p7"]
    assert [by_rank[r].prizes_won for r in (1, 2, 3)] == [first, second, third]
    assert all(by_rank[r].prizes_won == 0 for r in range(4, 11))
    assert await due_arena_ids(session, START) == []


@pytest.mark.asyncio
async def test_finalize_arena_keeps_stored_pool(session):
    t = await _active_arena(
        session, ["a", "b"], prize_pool=1000, scheduled_end_at=START - timedelta(minutes=1)
    )
    assert await finalize_arena(session, t.id, START) is True
    assert t.prize_pool == 1000


@pytest.mark.asyncio
async def test_finalize_empty_arena_cancels(session):
    t = await _active_arena(session, [], scheduled_end_at=START - timedelta(minutes=1))
    assert await finalize_arena(session, t.id, START) is True
    assert t.status == CANCELLED
    assert t.winner_id is None


@pytest.mark.asyncio
async def test_arena_not_due_before_end(session):
    t = await _active_arena(session, ["a", "b"])
    assert await due_arena_ids(session, START) == []
    assert await due_arena_ids(session, START + timedelta(hours=1)) == [t.id]
