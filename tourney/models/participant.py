"""Participant model - one player's entry in a tournament."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tourney.models.base import Base, utcnow


class Participant(Base):
    """Tournament entry. Created on join, only mutated afterwards (kept for leaderboards)."""

    __tablename__ = "participants"
    __table_args__ = (
        UniqueConstraint("tournament_id", "player_id", name="uq_participant_player"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id: Mapped[int] = mapped_column(ForeignKey("tournaments.id"), nullable=False, index=True)
    player_id: Mapped[str] = mapped_column(String(128), nullable=False)  # opaque; bots use the BOT_ prefix
    display_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    is_bot: Mapped[bool] = mapped_column(Boolean, default=False)
    seed: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # set once at start
    wins: Mapped[int] = mapped_column(Integer, default=0)
    draws: Mapped[int] = mapped_column(Integer, default=0)
    losses: Mapped[int] = mapped_column(Integer, default=0)
    points: Mapped[int] = mapped_column(Integer, default=0)  # arena only
    games_played: Mapped[int] = mapped_column(Integer, default=0)
    is_eliminated: Mapped[bool] = mapped_column(Boolean, default=False)
    final_placement: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    prizes_won: Mapped[int] = mapped_column(Integer, default=0)
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    tournament: Mapped["Tournament"] = relationship("Tournament", back_populates="participants")
