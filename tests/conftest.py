"""Pytest configuration and fixtures for service and API tests."""
import os

# Set test env BEFORE any imports that use config
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["INITIAL_ADMIN_PASSWORD"] = "testpass123"
os.environ["INITIAL_ADMIN_USERNAME"] = "admin"
os.environ["ORCHESTRATOR_ENABLED"] = "0"

import random
from datetime import datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tourney.models import Base, BracketMatch, Participant, Tournament
from tourney.models.base import engine as app_engine, init_db
from tourney.models.bracket import PENDING
from tourney.models.tournament import ACTIVE, BRACKET, REGISTERING, SIT_AND_GO, calculate_total_rounds
from tourney.services.orchestrator import TournamentOrchestrator
from web.api.main import app

START = datetime(2026, 1, 1, 12, 0, 0)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
async def _init_db():
    """Fresh API tables before each test (ASGI lifespan doesn't run with httpx)."""
    async with app_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await init_db()


@pytest.fixture
async def session_factory(tmp_path):
    """Session factory on a throwaway SQLite file, separate from the API database."""
    db_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tourney.db'}")
    await init_db(db_engine)
    yield async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    await db_engine.dispose()


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def orchestrator(session_factory, clock, rng):
    return TournamentOrchestrator(
        session_factory,
        clock=clock,
        rng=rng,
        tick_interval=0.01,
        warmup_delay=0,
        bot_fill_delay=600,
        isolate_errors=True,
        error_log_limit=3,
        auto_dispatch=True,
    )


async def make_tournament(session, **kwargs) -> Tournament:
    """Insert a tournament with sensible bracket defaults; kwargs override columns."""
    values = dict(
        name="Test Cup",
        tournament_type=SIT_AND_GO,
        tournament_format=BRACKET,
        time_control="blitz",
        entry_fee=0,
        prize_pool=0,
        rake_amount=0,
        max_players=8,
        min_players=2,
        status=REGISTERING,
        created_at=START,
    )
    values.update(kwargs)
    values.setdefault("total_rounds", calculate_total_rounds(values["max_players"]))
    t = Tournament(**values)
    session.add(t)
    await session.flush()
    return t


async def add_players(session, tournament: Tournament, player_ids, **kwargs) -> list:
    """Insert participants directly and keep current_players in step."""
    players = []
    for pid in player_ids:
        p = Participant(tournament_id=tournament.id, player_id=pid, joined_at=START, **kwargs)
        session.add(p)
        players.append(p)
    tournament.current_players += len(players)
    await session.flush()
    return players


async def make_pending_match(session, player1: str, player2: str, **kwargs) -> BracketMatch:
    """Active tournament holding one pending round-1 match between the two players."""
    t = await make_tournament(
        session, status=ACTIVE, max_players=2, current_round=1, started_at=START, **kwargs
    )
    await add_players(session, t, [player1, player2])
    m = BracketMatch(
        tournament_id=t.id,
        round_num=1,
        match_num=1,
        player1_id=player1,
        player2_id=player2,
        status=PENDING,
        created_at=START,
    )
    session.add(m)
    await session.flush()
    return m


@pytest.fixture
async def client():
    """Async HTTP client for testing the API."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
async def auth_headers(client):
    """Login as admin and return Authorization headers for protected endpoints."""
    r = await client.post(
        "/api/auth/login",
        json={"username": "admin", "password": "testpass123"},
    )
    assert r.status_code == 200, f"Login failed: {r.text}"
    token = r.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}
