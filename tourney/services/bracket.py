"""Single-elimination bracket: seeding, round building, advancement, finalization."""
from __future__ import annotations

import logging
import random
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tourney.models import BracketMatch, Participant, Tournament
from tourney.models.bracket import COMPLETED as MATCH_COMPLETED, PENDING
from tourney.models.tournament import ACTIVE, BRACKET, COMPLETED
from tourney.services.payouts import prize_split

logger = logging.getLogger("tourney.bracket")


def seed_participants(participants: Sequence[Participant], rng: random.Random) -> List[Participant]:
    """Shuffle uniformly and assign seeds 1..N in shuffled order. Seeds are set exactly once."""
    if any(p.seed is not None for p in participants):
        raise ValueError("Participants are already seeded")
    shuffled = list(participants)
    rng.shuffle(shuffled)
    for i, p in enumerate(shuffled):
        p.seed = i + 1
    return shuffled


async def create_round(
    session: AsyncSession,
    tournament_id: int,
    round_num: int,
    player_ids: Sequence[str],
    now: datetime,
) -> List[BracketMatch]:
    """Create one round with compact pairing: 1v2, 3v4, ... and a trailing bye when odd.

    The bye match is created completed with its only player as winner.
    """
    n = len(player_ids)
    matches: List[BracketMatch] = []
    for i in range((n + 1) // 2):
        player1 = player_ids[2 * i]
        player2 = player_ids[2 * i + 1] if 2 * i + 1 < n else None
        m = BracketMatch(
            tournament_id=tournament_id,
            round_num=round_num,
            match_num=i + 1,
            player1_id=player1,
            player2_id=player2,
            status=PENDING if player2 else MATCH_COMPLETED,
            winner_id=None if player2 else player1,
            created_at=now,
            ended_at=None if player2 else now,
        )
        if player2 is None:
            logger.info("Bye given to %s in round %d of tournament %s", player1, round_num, tournament_id)
        session.add(m)
        matches.append(m)
    await session.flush()
    return matches


async def get_round_matches(
    session: AsyncSession, tournament_id: int, round_num: int
) -> List[BracketMatch]:
    result = await session.execute(
        select(BracketMatch)
        .where(
            BracketMatch.tournament_id == tournament_id,
            BracketMatch.round_num == round_num,
        )
        .order_by(BracketMatch.match_num)
    )
    return list(result.scalars().all())


def round_resolved(matches: Sequence[BracketMatch]) -> bool:
    """A round is resolved iff it has matches and every one is completed."""
    return bool(matches) and all(m.status == MATCH_COMPLETED for m in matches)


async def active_bracket_ids(session: AsyncSession) -> List[int]:
    result = await session.execute(
        select(Tournament.id)
        .where(Tournament.status == ACTIVE, Tournament.tournament_format == BRACKET)
        .order_by(Tournament.id)
    )
    return list(result.scalars().all())


async def advance_bracket(session: AsyncSession, tournament_id: int, now: datetime) -> bool:
    """Build the next round from the current round's winners once it is resolved.

    No-op for the final round (the finalizer owns it). Returns True if a round was built.
    """
    t = await session.get(Tournament, tournament_id)
    if not t or t.status != ACTIVE or t.tournament_format != BRACKET:
        return False
    if t.current_round >= t.total_rounds:
        return False

    matches = await get_round_matches(session, tournament_id, t.current_round)
    if not round_resolved(matches):
        return False

    winners = [m.winner_id for m in matches if m.winner_id]
    if not winners:
        logger.warning("Round %d of tournament %s resolved without winners", t.current_round, tournament_id)
        return False

    next_round = t.current_round + 1
    await create_round(session, tournament_id, next_round, winners, now)
    t.current_round = next_round
    await session.flush()
    logger.info("Tournament %s advanced to round %d (%d players)", tournament_id, next_round, len(winners))
    return True


async def _runner_up(session: AsyncSession, tournament_id: int, champion: str) -> Optional[str]:
    """Loser of the latest contested match the champion won.

    That is the final itself unless the champion reached the last round on byes.
    """
    result = await session.execute(
        select(BracketMatch)
        .where(
            BracketMatch.tournament_id == tournament_id,
            BracketMatch.winner_id == champion,
            BracketMatch.player2_id.is_not(None),
        )
        .order_by(BracketMatch.round_num.desc())
        .limit(1)
    )
    match = result.scalar_one_or_none()
    return match.loser_id() if match else None


async def _award(
    session: AsyncSession, tournament_id: int, player_id: str, placement: int, prize: int
) -> None:
    await session.execute(
        update(Participant)
        .where(
            Participant.tournament_id == tournament_id,
            Participant.player_id == player_id,
        )
        .values(final_placement=placement, prizes_won=prize)
    )


async def finalize_bracket(session: AsyncSession, tournament_id: int, now: datetime) -> bool:
    """Close out a bracket whose final round is resolved: placements, prizes, winner.

    Only 1st and 2nd are placed; there is no third-place match. Returns True if completed.
    """
    t = await session.get(Tournament, tournament_id)
    if not t or t.status != ACTIVE or t.tournament_format != BRACKET:
        return False
    if t.current_round < t.total_rounds:
        return False

    final_matches = await get_round_matches(session, tournament_id, t.total_rounds)
    if not round_resolved(final_matches):
        return False
    champion = final_matches[0].winner_id
    if not champion:
        return False

    first_prize, second_prize, _third_prize = prize_split(t.prize_pool)
    await _award(session, tournament_id, champion, 1, first_prize)
    runner_up = await _runner_up(session, tournament_id, champion)
    if runner_up:
        await _award(session, tournament_id, runner_up, 2, second_prize)

    t.status = COMPLETED
    t.winner_id = champion
    t.ended_at = now
    await session.flush()
    logger.info("Tournament %s completed! Winner: %s", tournament_id, champion)
    logger.info(
        "Prizes distributed for tournament %s: 1st=%d, 2nd=%d",
        tournament_id, first_prize, second_prize if runner_up else 0,
    )
    return True
