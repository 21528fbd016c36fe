"""Database models."""
from tourney.models.base import Base, init_db
from tourney.models.chess_match import ChessMatch
from tourney.models.tournament import Tournament
from tourney.models.participant import Participant
from tourney.models.bracket import BracketMatch
from tourney.models.user import User  # noqa: F401 - for metadata

__all__ = [
    "Base",
    "ChessMatch",
    "Tournament",
    "Participant",
    "BracketMatch",
    "User",
    "init_db",
]
