"""Registration: tournament creation, player joins, the start gate, and abandonment of expired pools."""
from __future__ import annotations

import logging
import random
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tourney.models import Participant, Tournament
from tourney.models.tournament import (
    ACTIVE,
    BRACKET,
    CANCELLED,
    REGISTERING,
    SIT_AND_GO,
    TOURNAMENT_TYPES,
    calculate_total_rounds,
)
from tourney.services.bot_fill import is_bot_id
from tourney.services.bracket import create_round, seed_participants
from tourney.services.game_engine import TIME_CONTROL_SECONDS
from tourney.services.payouts import split_entry_fees

logger = logging.getLogger("tourney.registration")


class RegistrationError(ValueError):
    """Join rejected; state is unchanged."""


async def create_tournament(
    session: AsyncSession,
    name: str,
    now: datetime,
    tournament_type: str = SIT_AND_GO,
    time_control: str = "blitz",
    entry_fee: int = 0,
    max_players: int = 8,
    min_players: int = 2,
    scheduled_start_at: Optional[datetime] = None,
    scheduled_end_at: Optional[datetime] = None,
) -> Tournament:
    """Create an ad-hoc or scheduled bracket tournament, open for registration.

    The prize pool and rake are fixed up front from a full field. Daily, weekly
    and monthly tournaments need a scheduled start; once it passes they start
    at quorum. Raises ValueError on bad input.
    """
    name = (name or "").strip()
    if not name:
        raise ValueError("Tournament name required")
    if tournament_type not in TOURNAMENT_TYPES:
        raise ValueError(f"Unknown tournament type: {tournament_type}")
    if time_control not in TIME_CONTROL_SECONDS:
        raise ValueError(f"Unknown time control: {time_control}")
    if min_players < 2 or max_players < min_players:
        raise ValueError("Invalid player limits")
    if entry_fee < 0:
        raise ValueError("Entry fee cannot be negative")
    if tournament_type != SIT_AND_GO and scheduled_start_at is None:
        raise ValueError("Scheduled tournaments need a start time")
    if scheduled_end_at is not None:
        if scheduled_start_at is not None and scheduled_end_at <= scheduled_start_at:
            raise ValueError("End time must be after start time")
        if scheduled_end_at <= now:
            raise ValueError("End time is already past")

    prize_pool, rake = split_entry_fees(entry_fee, max_players)
    t = Tournament(
        name=name,
        tournament_type=tournament_type,
        tournament_format=BRACKET,
        time_control=time_control,
        entry_fee=entry_fee,
        prize_pool=prize_pool,
        rake_amount=rake,
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
    logger.info("Created %s tournament %s: %s", tournament_type, t.id, name)
    return t


async def join_tournament(
    session: AsyncSession,
    tournament_id: int,
    player_id: str,
    now: datetime,
    display_name: Optional[str] = None,
) -> Participant:
    """Register a human player. Raises LookupError if the tournament is missing, RegistrationError if rejected."""
    player_id = (player_id or "").strip()
    if not player_id:
        raise RegistrationError("Player id required")
    if is_bot_id(player_id):
        raise RegistrationError("Reserved player id")

    t = await session.get(Tournament, tournament_id)
    if not t:
        raise LookupError("Tournament not found")
    if t.status != REGISTERING:
        raise RegistrationError("Tournament not accepting registrations")
    if t.current_players >= t.max_players:
        raise RegistrationError("Tournament is full")

    participant = Participant(
        tournament_id=tournament_id,
        player_id=player_id,
        display_name=(display_name or "").strip() or None,
        joined_at=now,
    )
    session.add(participant)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        raise RegistrationError("Already registered")

    # Atomic increment; the guard keeps a concurrent join from overfilling
    result = await session.execute(
        update(Tournament)
        .where(
            Tournament.id == tournament_id,
            Tournament.current_players < Tournament.max_players,
        )
        .values(current_players=Tournament.current_players + 1)
    )
    if result.rowcount == 0:
        await session.rollback()
        raise RegistrationError("Tournament is full")
    await session.refresh(t)
    logger.info("%s joined tournament %s (%d/%d)", player_id, tournament_id, t.current_players, t.max_players)
    return participant


async def ready_tournament_ids(session: AsyncSession, now: datetime) -> List[int]:
    """Registering tournaments that are full, or at quorum past their scheduled start, and not expired."""
    result = await session.execute(
        select(Tournament.id)
        .where(
            Tournament.status == REGISTERING,
            or_(Tournament.scheduled_end_at.is_(None), Tournament.scheduled_end_at > now),
            or_(
                Tournament.current_players >= Tournament.max_players,
                and_(
                    Tournament.current_players >= Tournament.min_players,
                    Tournament.scheduled_start_at.is_not(None),
                    Tournament.scheduled_start_at <= now,
                ),
            ),
        )
        .order_by(Tournament.id)
    )
    return list(result.scalars().all())


async def start_tournament(
    session: AsyncSession, tournament_id: int, rng: random.Random, now: datetime
) -> bool:
    """Seed participants, build round 1 (bracket format) and activate.

    Fewer than 2 participants is logged and skipped; the tournament stays registering.
    """
    t = await session.get(Tournament, tournament_id)
    if not t or t.status != REGISTERING:
        return False
    logger.info("Starting tournament %s", tournament_id)

    result = await session.execute(
        select(Participant)
        .where(Participant.tournament_id == tournament_id)
        .order_by(Participant.id)
    )
    participants = list(result.scalars().all())
    if len(participants) < 2:
        logger.info("Not enough participants for tournament %s (%d)", tournament_id, len(participants))
        return False

    if not t.is_arena:
        seeded = seed_participants(participants, rng)
        await create_round(session, tournament_id, 1, [p.player_id for p in seeded], now)

    t.status = ACTIVE
    t.current_round = 1
    t.started_at = now
    t.pool_key = None
    await session.flush()
    logger.info("Tournament %s started with %d players", tournament_id, len(participants))
    return True


async def expired_registration_ids(session: AsyncSession, now: datetime) -> List[int]:
    """Registering tournaments whose scheduled end passed before they could start."""
    result = await session.execute(
        select(Tournament.id)
        .where(
            Tournament.status == REGISTERING,
            Tournament.scheduled_end_at.is_not(None),
            Tournament.scheduled_end_at <= now,
        )
        .order_by(Tournament.id)
    )
    return list(result.scalars().all())


async def cancel_tournament(session: AsyncSession, tournament_id: int, now: datetime) -> bool:
    t = await session.get(Tournament, tournament_id)
    if not t or t.status not in (REGISTERING, ACTIVE):
        return False
    t.status = CANCELLED
    t.pool_key = None
    t.ended_at = now
    await session.flush()
    logger.info("Tournament %s cancelled", tournament_id)
    return True
