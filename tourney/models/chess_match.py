"""Game Engine match record (chess_matches)."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from tourney.models.base import Base, utcnow


class ChessMatch(Base):
    """A played game owned by the Game Engine. The orchestrator only reads status and winner."""

    __tablename__ = "chess_matches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    player1_id: Mapped[str] = mapped_column(String(128), nullable=False)
    player2_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    game_mode: Mapped[str] = mapped_column(String(16), default="tournament")
    time_control: Mapped[str] = mapped_column(String(16), default="blitz")
    time_limit_seconds: Mapped[int] = mapped_column(Integer, default=300)
    status: Mapped[str] = mapped_column(String(16), default="active")  # active, completed, draw, aborted
    winner_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
