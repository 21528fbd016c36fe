"""Pool provisioner - keeps exactly one open registering pool per template."""
from __future__ import annotations

import logging
import random
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tourney.models import Tournament
from tourney.models.tournament import BRACKET, REGISTERING, calculate_total_rounds
from tourney.services.payouts import split_entry_fees
from tourney.services.templates import TournamentTemplate, get_template

logger = logging.getLogger("tourney.pools")


async def cleanup_stale_pools(
    session: AsyncSession, templates: Sequence[TournamentTemplate]
) -> int:
    """Delete empty registering pools that drifted from the template table.

    Removes pools whose template is unknown or whose fee no longer matches,
    and all but one empty pool per template. Returns the number deleted.
    """
    result = await session.execute(
        select(Tournament)
        .where(
            Tournament.status == REGISTERING,
            Tournament.current_players == 0,
            Tournament.template_name.is_not(None),
            Tournament.tournament_format == BRACKET,
        )
        .order_by(Tournament.pool_key.is_(None), Tournament.id)
    )
    removed = 0
    kept: set[str] = set()
    for t in result.scalars().all():
        template = get_template(t.template_name, templates)
        if template is not None and t.entry_fee == template.entry_fee and t.template_name not in kept:
            kept.add(t.template_name)
            continue
        logger.info("Removing stale pool %s (%s, fee %s)", t.id, t.template_name, t.entry_fee)
        await session.delete(t)
        removed += 1
    if removed:
        await session.flush()
    return removed


async def count_open_pools(session: AsyncSession, template: TournamentTemplate) -> int:
    result = await session.execute(
        select(func.count(Tournament.id)).where(
            Tournament.status == REGISTERING,
            Tournament.template_name == template.name,
            Tournament.entry_fee == template.entry_fee,
        )
    )
    return result.scalar_one()


async def ensure_pool(
    session: AsyncSession,
    template: TournamentTemplate,
    now: datetime,
    rng: random.Random,
) -> Optional[Tournament]:
    """Create the template's registering pool if none is open. Returns the new pool or None.

    The unique pool_key makes this insert-or-ignore: a concurrent writer that
    created the pool first wins and this call rolls back.
    """
    if await count_open_pools(session, template) > 0:
        return None

    prize_pool, rake = split_entry_fees(template.entry_fee, template.max_players)
    t = Tournament(
        name=f"{template.name} #{rng.getrandbits(16):04X}",
        template_name=template.name,
        pool_key=template.pool_key,
        tournament_type=template.tournament_type,
        tournament_format=BRACKET,
        time_control=template.time_control,
        entry_fee=template.entry_fee,
        prize_pool=prize_pool,
        rake_amount=rake,
        max_players=template.max_players,
        min_players=template.min_players,
        current_players=0,
        current_round=0,
        total_rounds=calculate_total_rounds(template.max_players),
        status=REGISTERING,
        created_at=now,
    )
    session.add(t)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        logger.info("Pool for %s already provisioned by another writer", template.name)
        return None
    logger.info("Created new %s tournament %s (%s)", template.name, t.id, t.name)
    return t
