"""Bracket match model."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tourney.models.base import Base, utcnow

# status
WAITING = "waiting"  # arena queue entry, one player
PENDING = "pending"
ACTIVE = "active"
COMPLETED = "completed"


class BracketMatch(Base):
    """Single match slot in a tournament. player2_id None means a bye."""

    __tablename__ = "bracket_matches"
    __table_args__ = (
        UniqueConstraint("tournament_id", "round_num", "match_num", name="uq_bracket_match_slot"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id: Mapped[int] = mapped_column(ForeignKey("tournaments.id"), nullable=False, index=True)
    round_num: Mapped[int] = mapped_column(Integer, nullable=False)
    match_num: Mapped[int] = mapped_column(Integer, nullable=False)
    player1_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    player2_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default=PENDING, index=True)
    winner_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    # Game Engine match record; null until the match is actually played
    engine_match_id: Mapped[Optional[int]] = mapped_column(ForeignKey("chess_matches.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    tournament = relationship("Tournament", back_populates="matches")

    @property
    def is_bye(self) -> bool:
        return self.player1_id is not None and self.player2_id is None

    def loser_id(self) -> Optional[str]:
        """The other player when a winner is set, else None."""
        if not self.winner_id or self.is_bye:
            return None
        return self.player2_id if self.winner_id == self.player1_id else self.player1_id
