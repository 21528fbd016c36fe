"""Game Engine client. Creates chess matches and reports their outcome."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from tourney.models import ChessMatch

logger = logging.getLogger("tourney.engine")

TIME_CONTROL_SECONDS = {
    "bullet": 60,
    "blitz": 300,
    "rapid": 600,
    "classical": 1800,
}
DEFAULT_TIME_LIMIT = 300

# ChessMatch.status values the orchestrator reacts to
MATCH_COMPLETED = "completed"
MATCH_DRAW = "draw"


class GameEngine:
    """Store-backed engine: matches live in the shared chess_matches table.

    Move legality, clocks and bot move selection belong to the engine itself;
    the orchestrator only creates a match and later reads status and winner.
    """

    async def create_match(
        self,
        session: AsyncSession,
        player1_id: str,
        player2_id: str,
        time_control: str,
        now: datetime,
    ) -> ChessMatch:
        """Create an active match between two players. Flushes so the id is available."""
        match = ChessMatch(
            player1_id=player1_id,
            player2_id=player2_id,
            game_mode="tournament",
            time_control=time_control,
            time_limit_seconds=TIME_CONTROL_SECONDS.get(time_control, DEFAULT_TIME_LIMIT),
            status="active",
            created_at=now,
        )
        session.add(match)
        await session.flush()
        logger.debug("Created engine match %s: %s vs %s (%s)", match.id, player1_id, player2_id, time_control)
        return match

    async def get_match(self, session: AsyncSession, match_id: int) -> Optional[ChessMatch]:
        """Match record by id, or None if the engine has no such match."""
        return await session.get(ChessMatch, match_id)
