"""Tournament model."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tourney.models.base import Base, utcnow

# status
REGISTERING = "registering"
ACTIVE = "active"
COMPLETED = "completed"
CANCELLED = "cancelled"

# tournament_type
SIT_AND_GO = "sit_and_go"
DAILY = "daily"
WEEKLY = "weekly"
MONTHLY = "monthly"
TOURNAMENT_TYPES = (SIT_AND_GO, DAILY, WEEKLY, MONTHLY)

# tournament_format
BRACKET = "bracket"
ARENA = "arena"


def calculate_total_rounds(player_count: int) -> int:
    """Single-elimination rounds for player_count entrants: ceil(log2(n))."""
    return max(player_count - 1, 0).bit_length()


class Tournament(Base):
    """Competition container: provisioned pool, scheduled bracket, or arena."""

    __tablename__ = "tournaments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    template_name: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)  # null for ad-hoc tournaments
    # "<template>:<fee>" while a provisioned pool is registering; cleared on start/cancel
    pool_key: Mapped[Optional[str]] = mapped_column(String(96), unique=True, nullable=True)
    tournament_type: Mapped[str] = mapped_column(String(16), default=SIT_AND_GO)  # sit_and_go, daily, weekly, monthly
    tournament_format: Mapped[str] = mapped_column(String(16), default=BRACKET)  # bracket, arena
    time_control: Mapped[str] = mapped_column(String(16), default="blitz")
    entry_fee: Mapped[int] = mapped_column(Integer, default=0)
    prize_pool: Mapped[int] = mapped_column(Integer, default=0)
    rake_amount: Mapped[int] = mapped_column(Integer, default=0)
    max_players: Mapped[int] = mapped_column(Integer, default=8)
    min_players: Mapped[int] = mapped_column(Integer, default=2)
    current_players: Mapped[int] = mapped_column(Integer, default=0)
    current_round: Mapped[int] = mapped_column(Integer, default=0)
    total_rounds: Mapped[int] = mapped_column(Integer, default=3)  # fixed at creation from max_players
    status: Mapped[str] = mapped_column(String(16), default=REGISTERING, index=True)
    scheduled_start_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    scheduled_end_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    winner_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    participants = relationship(
        "Participant", back_populates="tournament", cascade="all, delete-orphan"
    )
    matches = relationship(
        "BracketMatch", back_populates="tournament", cascade="all, delete-orphan"
    )

    @property
    def is_arena(self) -> bool:
        return self.tournament_format == ARENA
