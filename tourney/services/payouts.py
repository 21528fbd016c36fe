"""Entry fee split and prize distribution. Integer arithmetic only."""
from __future__ import annotations

RAKE_PERCENT = 15
PRIZE_PERCENTS = (60, 25, 15)  # 1st, 2nd, 3rd


def split_entry_fees(entry_fee: int, players: int) -> tuple[int, int]:
    """Return (prize_pool, rake) for players paying entry_fee: floor(85%), floor(15%)."""
    total = entry_fee * players
    prize_pool = total * (100 - RAKE_PERCENT) // 100
    rake = total * RAKE_PERCENT // 100
    return prize_pool, rake


def prize_split(prize_pool: int) -> tuple[int, int, int]:
    """Floor shares for 1st/2nd/3rd. The sum never exceeds prize_pool."""
    first, second, third = (prize_pool * pct // 100 for pct in PRIZE_PERCENTS)
    return first, second, third
