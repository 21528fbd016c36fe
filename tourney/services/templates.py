"""Static competition templates the pool provisioner keeps open."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from tourney.models.tournament import SIT_AND_GO


@dataclass(frozen=True)
class TournamentTemplate:
    name: str
    tournament_type: str
    time_control: str
    entry_fee: int
    max_players: int
    min_players: int

    @property
    def pool_key(self) -> str:
        """Uniqueness key held by the single open pool of this template."""
        return f"{self.name}:{self.entry_fee}"


DEFAULT_TEMPLATES: tuple[TournamentTemplate, ...] = (
    TournamentTemplate("Quick 8", SIT_AND_GO, "blitz", 0, 8, 2),
    TournamentTemplate("Diamond Rush", SIT_AND_GO, "blitz", 10, 8, 4),
    TournamentTemplate("Rapid Arena", SIT_AND_GO, "rapid", 25, 8, 4),
    TournamentTemplate("Elite 8", SIT_AND_GO, "blitz", 100, 8, 8),
)


def get_template(
    name: Optional[str], templates: Sequence[TournamentTemplate] = DEFAULT_TEMPLATES
) -> Optional[TournamentTemplate]:
    """Template by name, or None."""
    if not name:
        return None
    return next((t for t in templates if t.name == name), None)
