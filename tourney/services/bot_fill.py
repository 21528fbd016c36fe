"""Bot fill - tops up under-subscribed free sit-and-go pools with synthetic players."""
from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

import config
from tourney.models import Participant, Tournament
from tourney.models.tournament import REGISTERING, SIT_AND_GO

logger = logging.getLogger("tourney.bot_fill")

FIRST_NAMES = (
    "Alex", "Boris", "Carmen", "Dmitri", "Elena", "Felix", "Greta", "Hikaru",
    "Irina", "Jonas", "Kasia", "Leon", "Mara", "Nikolai", "Olga", "Pavel",
    "Quinn", "Rosa", "Sven", "Tanya", "Umar", "Vera", "Wes", "Yuki", "Zoran",
)
LAST_NAMES = (
    "Abrams", "Bauer", "Costa", "Duarte", "Ericsson", "Fischer", "Garcia",
    "Horvat", "Ivanov", "Jensen", "Kowalski", "Lindqvist", "Moreau", "Novak",
    "Okafor", "Petrov", "Rossi", "Sato", "Tal", "Weber",
)


def is_bot_id(player_id: Optional[str]) -> bool:
    """True for synthetic identities (reserved prefix)."""
    return bool(player_id) and player_id.startswith(config.BOT_ID_PREFIX)


def generate_bot_identity(rng: random.Random) -> tuple[str, str]:
    """Return (player_id, display_name), e.g. ("BOT_ElenaNovak_9f3c...", "Elena Novak")."""
    first = rng.choice(FIRST_NAMES)
    last = rng.choice(LAST_NAMES)
    player_id = f"{config.BOT_ID_PREFIX}{first}{last}_{rng.getrandbits(64):016x}"
    return player_id, f"{first} {last}"


async def fillable_tournament_ids(
    session: AsyncSession, now: datetime, fill_delay: timedelta
) -> list[int]:
    """Free sit-and-go pools past the fill delay with at least one human and open seats."""
    result = await session.execute(
        select(Tournament.id)
        .where(
            Tournament.status == REGISTERING,
            Tournament.entry_fee == 0,
            Tournament.tournament_type == SIT_AND_GO,
            Tournament.created_at <= now - fill_delay,
            Tournament.current_players > 0,
            Tournament.current_players < Tournament.max_players,
            or_(Tournament.scheduled_end_at.is_(None), Tournament.scheduled_end_at > now),
        )
        .order_by(Tournament.id)
    )
    return list(result.scalars().all())


async def fill_with_bots(
    session: AsyncSession,
    tournament_id: int,
    rng: random.Random,
    now: datetime,
    max_attempts: int = config.BOT_NAME_ATTEMPTS,
) -> int:
    """Add bots until the pool is full. Returns the number of bots added.

    Identities and display names are unique within the pool; generation gives
    up after max_attempts collisions per seat and leaves the rest for a later tick.
    """
    t = await session.get(Tournament, tournament_id)
    if not t or t.status != REGISTERING or t.entry_fee != 0:
        return 0

    result = await session.execute(
        select(Participant).where(Participant.tournament_id == tournament_id)
    )
    existing = result.scalars().all()
    taken_ids = {p.player_id for p in existing}
    taken_names = {p.display_name for p in existing if p.display_name}
    needed = t.max_players - len(existing)
    if needed <= 0:
        return 0

    added = 0
    for _ in range(needed):
        for _attempt in range(max_attempts):
            player_id, name = generate_bot_identity(rng)
            if player_id not in taken_ids and name not in taken_names:
                break
        else:
            logger.warning(
                "Gave up naming bot after %d attempts in tournament %s", max_attempts, tournament_id
            )
            break
        taken_ids.add(player_id)
        taken_names.add(name)
        session.add(
            Participant(
                tournament_id=tournament_id,
                player_id=player_id,
                display_name=name,
                is_bot=True,
                joined_at=now,
            )
        )
        added += 1

    t.current_players = len(existing) + added
    await session.flush()
    logger.info(
        "Added %d bots to tournament %s (%d/%d)", added, tournament_id, t.current_players, t.max_players
    )
    return added
