"""Match dispatch and the completion watcher for bracket and arena matches."""
from __future__ import annotations

import logging
import random
from datetime import datetime
from typing import List

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tourney.models import BracketMatch, Participant, Tournament
from tourney.models.bracket import ACTIVE as MATCH_ACTIVE, COMPLETED as MATCH_COMPLETED, PENDING
from tourney.models.tournament import ACTIVE
from tourney.services.arena import record_arena_result
from tourney.services.bot_fill import is_bot_id
from tourney.services.game_engine import MATCH_COMPLETED as ENGINE_COMPLETED, MATCH_DRAW, GameEngine

logger = logging.getLogger("tourney.matches")


async def pending_match_ids(session: AsyncSession) -> List[int]:
    """Two-player pending matches in active tournaments, not yet handed to the engine."""
    result = await session.execute(
        select(BracketMatch.id)
        .join(Tournament, Tournament.id == BracketMatch.tournament_id)
        .where(
            Tournament.status == ACTIVE,
            BracketMatch.status == PENDING,
            BracketMatch.player1_id.is_not(None),
            BracketMatch.player2_id.is_not(None),
            BracketMatch.engine_match_id.is_(None),
        )
        .order_by(BracketMatch.id)
    )
    return list(result.scalars().all())


async def record_bracket_result(
    session: AsyncSession, match: BracketMatch, winner_id: str, now: datetime
) -> None:
    """Complete a bracket match; winner gets a win, loser a loss and elimination."""
    if winner_id not in (match.player1_id, match.player2_id):
        raise ValueError(f"{winner_id} did not play match {match.id}")
    match.status = MATCH_COMPLETED
    match.winner_id = winner_id
    match.ended_at = now
    loser_id = match.loser_id()
    tid = match.tournament_id

    await session.execute(
        update(Participant)
        .where(Participant.tournament_id == tid, Participant.player_id == winner_id)
        .values(wins=Participant.wins + 1, games_played=Participant.games_played + 1)
    )
    if loser_id:
        await session.execute(
            update(Participant)
            .where(Participant.tournament_id == tid, Participant.player_id == loser_id)
            .values(
                losses=Participant.losses + 1,
                games_played=Participant.games_played + 1,
                is_eliminated=True,
            )
        )
    await session.flush()
    logger.info("Match %s completed, winner: %s", match.id, winner_id)


async def start_bracket_match(
    session: AsyncSession, engine: GameEngine, match_id: int, now: datetime
) -> BracketMatch:
    """Hand a pending two-player match to the engine and mark it active."""
    match = await session.get(BracketMatch, match_id)
    if not match:
        raise LookupError("Match not found")
    if match.status != PENDING or match.engine_match_id is not None:
        raise ValueError("Match already started")
    if not match.player1_id or not match.player2_id:
        raise ValueError("Match is waiting for players")

    t = await session.get(Tournament, match.tournament_id)
    if not t or t.status != ACTIVE:
        raise ValueError("Tournament is not active")

    chess_match = await engine.create_match(session, match.player1_id, match.player2_id, t.time_control, now)
    match.engine_match_id = chess_match.id
    match.status = MATCH_ACTIVE
    match.started_at = now
    await session.flush()
    logger.info(
        "Started match %s (round %d) of tournament %s: %s vs %s",
        match.id, match.round_num, t.id, match.player1_id, match.player2_id,
    )
    return match


async def resolve_bot_match(
    session: AsyncSession, match_id: int, rng: random.Random, now: datetime
) -> bool:
    """Bot-vs-bot pairings are decided immediately with a random winner."""
    match = await session.get(BracketMatch, match_id)
    if not match or match.status != PENDING:
        return False
    if not (is_bot_id(match.player1_id) and is_bot_id(match.player2_id)):
        return False
    await record_bracket_result(session, match, rng.choice((match.player1_id, match.player2_id)), now)
    return True


async def dispatch_match(
    session: AsyncSession,
    engine: GameEngine,
    match_id: int,
    rng: random.Random,
    now: datetime,
    auto_start: bool = True,
) -> bool:
    """Resolve a bot-only pairing, or start it on the engine when auto_start is set."""
    if await resolve_bot_match(session, match_id, rng, now):
        return True
    if not auto_start:
        return False
    await start_bracket_match(session, engine, match_id, now)
    return True


async def active_linked_match_ids(session: AsyncSession) -> List[int]:
    """Active matches in active tournaments that have an engine match to watch."""
    result = await session.execute(
        select(BracketMatch.id)
        .join(Tournament, Tournament.id == BracketMatch.tournament_id)
        .where(
            Tournament.status == ACTIVE,
            BracketMatch.status == MATCH_ACTIVE,
            BracketMatch.engine_match_id.is_not(None),
        )
        .order_by(BracketMatch.id)
    )
    return list(result.scalars().all())


async def check_match_completion(
    session: AsyncSession, engine: GameEngine, match_id: int, now: datetime
) -> bool:
    """Copy a finished engine result onto the tournament match. Returns True if recorded."""
    match = await session.get(BracketMatch, match_id)
    if not match or match.status != MATCH_ACTIVE or match.engine_match_id is None:
        return False
    chess_match = await engine.get_match(session, match.engine_match_id)
    if chess_match is None:
        logger.warning("Engine match %s for match %s not found", match.engine_match_id, match_id)
        return False

    t = await session.get(Tournament, match.tournament_id)
    winner_id = chess_match.winner_id or None
    if t.is_arena:
        if chess_match.status == MATCH_DRAW:
            await record_arena_result(session, match, None, now)
            return True
        if chess_match.status == ENGINE_COMPLETED and winner_id:
            await record_arena_result(session, match, winner_id, now)
            return True
        return False

    # bracket matches only advance on a decisive result
    if chess_match.status != ENGINE_COMPLETED or not winner_id:
        return False
    await record_bracket_result(session, match, winner_id, now)
    return True
