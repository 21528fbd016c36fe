"""Arena format: time-boxed, ranked by accumulated points instead of elimination."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tourney.models import BracketMatch, Participant, Tournament
from tourney.models.bracket import ACTIVE as MATCH_ACTIVE, COMPLETED as MATCH_COMPLETED, WAITING
from tourney.models.tournament import (
    ACTIVE,
    ARENA,
    CANCELLED,
    COMPLETED,
    REGISTERING,
    WEEKLY,
    calculate_total_rounds,
)
from tourney.services.game_engine import GameEngine
from tourney.services.payouts import prize_split, split_entry_fees

logger = logging.getLogger("tourney.arena")

WIN_POINTS = 3
DRAW_POINTS = 1


async def create_arena_tournament(
    session: AsyncSession,
    name: str,
    scheduled_start_at: datetime,
    scheduled_end_at: datetime,
    now: datetime,
    time_control: str = "rapid",
    entry_fee: int = 15,
    max_players: int = 100,
    min_players: int = 2,
) -> Tournament:
    """Create a registering arena. The prize pool is settled from actual entries at the end."""
    if scheduled_end_at <= scheduled_start_at:
        raise ValueError("End time must be after start time")
    if scheduled_end_at <= now:
        raise ValueError("End time is already past")
    if min_players < 2 or max_players < min_players:
        raise ValueError("Invalid player limits")
    if entry_fee < 0:
        raise ValueError("Entry fee cannot be negative")
    t = Tournament(
        name=name,
        tournament_type=WEEKLY,
        tournament_format=ARENA,
        time_control=time_control,
        entry_fee=entry_fee,
        prize_pool=0,
        rake_amount=0,
        max_players=max_players,
        min_players=min_players,
        total_rounds=calculate_total_rounds(max_players),
        status=REGISTERING,
        scheduled_start_at=scheduled_start_at,
        scheduled_end_at=scheduled_end_at,
        created_at=now,
    )
    session.add(t)
    await session.flush()
    logger.info("Created arena tournament %s: %s", t.id, name)
    return t


def _standing_key(p: Participant) -> tuple[int, int, int]:
    return (-p.points, -p.wins, -p.games_played)


async def arena_standings(session: AsyncSession, tournament_id: int) -> List[Participant]:
    """Participants ordered by points, then wins, then games played (all descending)."""
    result = await session.execute(
        select(Participant)
        .where(Participant.tournament_id == tournament_id)
        .order_by(Participant.id)
    )
    return sorted(result.scalars().all(), key=_standing_key)


async def arena_leaderboard(session: AsyncSession, tournament_id: int) -> List[dict]:
    """Ranked standings rows for display."""
    standings = await arena_standings(session, tournament_id)
    return [
        {
            "rank": rank,
            "player_id": p.player_id,
            "display_name": p.display_name or p.player_id,
            "is_bot": p.is_bot,
            "points": p.points,
            "wins": p.wins,
            "draws": p.draws,
            "losses": p.losses,
            "games_played": p.games_played,
        }
        for rank, p in enumerate(standings, start=1)
    ]


async def find_arena_match(
    session: AsyncSession,
    engine: GameEngine,
    tournament_id: int,
    player_id: str,
    now: datetime,
) -> BracketMatch:
    """Pair the player with the oldest waiting opponent, or queue them.

    Returns the active match when paired, otherwise the player's waiting entry.
    """
    t = await session.get(Tournament, tournament_id)
    if not t:
        raise LookupError("Tournament not found")
    if t.tournament_format != ARENA or t.status != ACTIVE:
        raise ValueError("Tournament is not an active arena")
    registered = await session.execute(
        select(Participant.id).where(
            Participant.tournament_id == tournament_id,
            Participant.player_id == player_id,
        )
    )
    if registered.scalar_one_or_none() is None:
        raise ValueError("Not registered in tournament")

    own = await session.execute(
        select(BracketMatch).where(
            BracketMatch.tournament_id == tournament_id,
            BracketMatch.status == WAITING,
            BracketMatch.player1_id == player_id,
        )
    )
    own_entry = own.scalars().first()
    if own_entry:
        return own_entry

    waiting = await session.execute(
        select(BracketMatch)
        .where(
            BracketMatch.tournament_id == tournament_id,
            BracketMatch.status == WAITING,
            BracketMatch.player1_id != player_id,
        )
        .order_by(BracketMatch.created_at, BracketMatch.id)
        .limit(1)
    )
    match = waiting.scalar_one_or_none()
    if match:
        chess_match = await engine.create_match(session, match.player1_id, player_id, t.time_control, now)
        match.player2_id = player_id
        match.engine_match_id = chess_match.id
        match.status = MATCH_ACTIVE
        match.started_at = now
        await session.flush()
        logger.info("Arena %s paired %s vs %s", tournament_id, match.player1_id, player_id)
        return match

    last = await session.execute(
        select(func.max(BracketMatch.match_num)).where(
            BracketMatch.tournament_id == tournament_id,
            BracketMatch.round_num == 1,
        )
    )
    entry = BracketMatch(
        tournament_id=tournament_id,
        round_num=1,
        match_num=(last.scalar_one() or 0) + 1,
        player1_id=player_id,
        status=WAITING,
        created_at=now,
    )
    session.add(entry)
    await session.flush()
    return entry


async def _score(
    session: AsyncSession, tournament_id: int, player_id: Optional[str], **deltas: int
) -> None:
    if not player_id:
        return
    values = {name: getattr(Participant, name) + delta for name, delta in deltas.items()}
    values["games_played"] = Participant.games_played + 1
    await session.execute(
        update(Participant)
        .where(
            Participant.tournament_id == tournament_id,
            Participant.player_id == player_id,
        )
        .values(**values)
    )


async def record_arena_result(
    session: AsyncSession,
    match: BracketMatch,
    winner_id: Optional[str],
    now: datetime,
) -> None:
    """Complete an arena match. winner_id None is a draw: +1 point each; a win is +3."""
    match.status = MATCH_COMPLETED
    match.winner_id = winner_id
    match.ended_at = now
    tid = match.tournament_id
    if winner_id is None:
        await _score(session, tid, match.player1_id, draws=1, points=DRAW_POINTS)
        await _score(session, tid, match.player2_id, draws=1, points=DRAW_POINTS)
    else:
        loser_id = match.player2_id if winner_id == match.player1_id else match.player1_id
        await _score(session, tid, winner_id, wins=1, points=WIN_POINTS)
        await _score(session, tid, loser_id, losses=1)
    await session.flush()
    logger.info("Arena match %s recorded: %s", match.id, winner_id or "draw")


async def due_arena_ids(session: AsyncSession, now: datetime) -> List[int]:
    result = await session.execute(
        select(Tournament.id)
        .where(
            Tournament.status == ACTIVE,
            Tournament.tournament_format == ARENA,
            Tournament.scheduled_end_at.is_not(None),
            Tournament.scheduled_end_at <= now,
        )
        .order_by(Tournament.id)
    )
    return list(result.scalars().all())


async def finalize_arena(session: AsyncSession, tournament_id: int, now: datetime) -> bool:
    """Rank all participants, pay the top three, complete (or cancel when empty)."""
    t = await session.get(Tournament, tournament_id)
    if not t or t.status != ACTIVE or t.tournament_format != ARENA:
        return False

    standings = await arena_standings(session, tournament_id)
    t.ended_at = now
    if not standings:
        t.status = CANCELLED
        await session.flush()
        logger.info("Arena %s cancelled: no participants", tournament_id)
        return True

    if not t.prize_pool:
        t.prize_pool, t.rake_amount = split_entry_fees(t.entry_fee, len(standings))
    prizes = prize_split(t.prize_pool)
    for rank, p in enumerate(standings, start=1):
        p.final_placement = rank
        p.prizes_won = prizes[rank - 1] if rank <= len(prizes) else 0

    t.status = COMPLETED
    t.winner_id = standings[0].player_id
    await session.flush()
    logger.info(
        "Arena %s completed! Winner: %s (%d points), pool %d",
        tournament_id, t.winner_id, standings[0].points, t.prize_pool,
    )
    return True
