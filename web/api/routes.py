"""API routes for tournaments: listing, creation, joins, match starts, arena play."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator
from sqlalchemy import or_, select

from tourney.models import BracketMatch, Participant, Tournament, User
from tourney.models.base import async_session_factory, utcnow
from tourney.models.bracket import ACTIVE as MATCH_ACTIVE, COMPLETED as MATCH_COMPLETED
from tourney.models.tournament import ACTIVE, REGISTERING, SIT_AND_GO, TOURNAMENT_TYPES
from tourney.services.arena import arena_leaderboard, create_arena_tournament, find_arena_match
from tourney.services.game_engine import TIME_CONTROL_SECONDS, GameEngine
from tourney.services.matches import start_bracket_match
from tourney.services.registration import create_tournament, join_tournament
from tourney.services.templates import DEFAULT_TEMPLATES
from web.auth import require_moderator_user

logger = logging.getLogger("tourney.api")

router = APIRouter(prefix="/api", tags=["tournaments"])

engine = GameEngine()


# --- Pydantic schemas ---


class JoinRequest(BaseModel):
    player_id: str
    display_name: Optional[str] = None


class PlayerRequest(BaseModel):
    player_id: str


class TimeControlled(BaseModel):
    time_control: str = "blitz"

    @field_validator("time_control")
    @classmethod
    def known_time_control(cls, v: str) -> str:
        if v not in TIME_CONTROL_SECONDS:
            raise ValueError(f"time_control must be one of {', '.join(TIME_CONTROL_SECONDS)}")
        return v


class TournamentCreate(TimeControlled):
    name: str
    type: str = SIT_AND_GO
    entry_fee: int = 0
    max_players: int = 8
    min_players: int = 2
    scheduled_start_at: Optional[str] = None  # ISO datetime
    scheduled_end_at: Optional[str] = None

    @field_validator("type")
    @classmethod
    def known_type(cls, v: str) -> str:
        if v not in TOURNAMENT_TYPES:
            raise ValueError(f"type must be one of {', '.join(TOURNAMENT_TYPES)}")
        return v


class ArenaCreate(TimeControlled):
    name: str
    time_control: str = "rapid"
    entry_fee: int = 15
    max_players: int = 100
    min_players: int = 2
    scheduled_start_at: str  # ISO datetime
    scheduled_end_at: str


def _parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse ISO datetime string to naive UTC."""
    if not s or not s.strip():
        return None
    try:
        dt = datetime.fromisoformat(s.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def _tournament_dict(t: Tournament) -> dict:
    return {
        "id": t.id,
        "name": t.name,
        "template_name": t.template_name,
        "type": t.tournament_type,
        "format": t.tournament_format,
        "time_control": t.time_control,
        "entry_fee": t.entry_fee,
        "prize_pool": t.prize_pool,
        "rake_amount": t.rake_amount,
        "max_players": t.max_players,
        "min_players": t.min_players,
        "current_players": t.current_players,
        "current_round": t.current_round,
        "total_rounds": t.total_rounds,
        "status": t.status,
        "scheduled_start_at": _iso(t.scheduled_start_at),
        "scheduled_end_at": _iso(t.scheduled_end_at),
        "winner_id": t.winner_id,
        "created_at": _iso(t.created_at),
        "started_at": _iso(t.started_at),
        "ended_at": _iso(t.ended_at),
    }


def _participant_dict(p: Participant) -> dict:
    return {
        "player_id": p.player_id,
        "display_name": p.display_name or p.player_id,
        "is_bot": p.is_bot,
        "seed": p.seed,
        "wins": p.wins,
        "draws": p.draws,
        "losses": p.losses,
        "points": p.points,
        "games_played": p.games_played,
        "is_eliminated": p.is_eliminated,
        "final_placement": p.final_placement,
        "prizes_won": p.prizes_won,
    }


def _match_dict(m: BracketMatch) -> dict:
    return {
        "id": m.id,
        "round_num": m.round_num,
        "match_num": m.match_num,
        "player1_id": m.player1_id,
        "player2_id": m.player2_id,
        "is_bye": m.is_bye and m.status == MATCH_COMPLETED,
        "status": m.status,
        "winner_id": m.winner_id,
        "engine_match_id": m.engine_match_id,
        "started_at": _iso(m.started_at),
        "ended_at": _iso(m.ended_at),
    }


@router.get("/templates")
async def list_templates():
    """Competition templates the orchestrator keeps open."""
    return [
        {
            "name": tpl.name,
            "type": tpl.tournament_type,
            "time_control": tpl.time_control,
            "entry_fee": tpl.entry_fee,
            "max_players": tpl.max_players,
            "min_players": tpl.min_players,
        }
        for tpl in DEFAULT_TEMPLATES
    ]


@router.get("/tournaments")
async def list_tournaments(status: Optional[str] = None, type: Optional[str] = None):
    """List tournaments, newest first. Filter with ?status= and ?type=."""
    if type is not None and type not in TOURNAMENT_TYPES:
        raise HTTPException(400, f"type must be one of {', '.join(TOURNAMENT_TYPES)}")
    async with async_session_factory() as session:
        q = select(Tournament).order_by(Tournament.id.desc()).limit(50)
        if status:
            q = q.where(Tournament.status == status)
        if type:
            q = q.where(Tournament.tournament_type == type)
        result = await session.execute(q)
        return [_tournament_dict(t) for t in result.scalars().all()]


@router.get("/tournaments/active")
async def list_active_tournaments():
    """Registering and running tournaments."""
    async with async_session_factory() as session:
        result = await session.execute(
            select(Tournament)
            .where(Tournament.status.in_((REGISTERING, ACTIVE)))
            .order_by(Tournament.id)
        )
        return [_tournament_dict(t) for t in result.scalars().all()]


@router.get("/tournaments/{tournament_id}")
async def get_tournament(tournament_id: int):
    """Tournament with participants (by seed) and all matches."""
    async with async_session_factory() as session:
        t = await session.get(Tournament, tournament_id)
        if not t:
            raise HTTPException(404, "Tournament not found")
        participants = await session.execute(
            select(Participant)
            .where(Participant.tournament_id == tournament_id)
            .order_by(Participant.seed.is_(None), Participant.seed, Participant.id)
        )
        matches = await session.execute(
            select(BracketMatch)
            .where(BracketMatch.tournament_id == tournament_id)
            .order_by(BracketMatch.round_num, BracketMatch.match_num)
        )
        return {
            "tournament": _tournament_dict(t),
            "participants": [_participant_dict(p) for p in participants.scalars().all()],
            "matches": [_match_dict(m) for m in matches.scalars().all()],
        }


@router.post("/tournaments/{tournament_id}/join")
async def join(tournament_id: int, body: JoinRequest):
    """Register a player in a registering tournament."""
    async with async_session_factory() as session:
        try:
            p = await join_tournament(session, tournament_id, body.player_id, utcnow(), body.display_name)
        except LookupError as e:
            raise HTTPException(404, str(e))
        except ValueError as e:
            raise HTTPException(400, str(e))
        await session.commit()
        return _participant_dict(p)


@router.get("/tournaments/{tournament_id}/my-match")
async def my_match(tournament_id: int, player_id: str):
    """The player's open (unfinished) match in this tournament, or null."""
    async with async_session_factory() as session:
        t = await session.get(Tournament, tournament_id)
        if not t:
            raise HTTPException(404, "Tournament not found")
        result = await session.execute(
            select(BracketMatch)
            .where(
                BracketMatch.tournament_id == tournament_id,
                BracketMatch.status != MATCH_COMPLETED,
                or_(BracketMatch.player1_id == player_id, BracketMatch.player2_id == player_id),
            )
            .order_by(BracketMatch.round_num.desc(), BracketMatch.id.desc())
            .limit(1)
        )
        m = result.scalar_one_or_none()
        return _match_dict(m) if m else None


@router.post("/tournaments/matches/{match_id}/start")
async def start_match(match_id: int):
    """Start a pending bracket match on the game engine."""
    async with async_session_factory() as session:
        try:
            m = await start_bracket_match(session, engine, match_id, utcnow())
        except LookupError as e:
            raise HTTPException(404, str(e))
        except ValueError as e:
            raise HTTPException(400, str(e))
        await session.commit()
        return _match_dict(m)


@router.post("/tournaments/create")
async def create(body: TournamentCreate, user: User = Depends(require_moderator_user)):
    """Create an ad-hoc or scheduled bracket tournament (moderator)."""
    start = _parse_datetime(body.scheduled_start_at)
    end = _parse_datetime(body.scheduled_end_at)
    if body.scheduled_start_at and not start:
        raise HTTPException(400, "scheduled_start_at must be an ISO datetime")
    if body.scheduled_end_at and not end:
        raise HTTPException(400, "scheduled_end_at must be an ISO datetime")
    async with async_session_factory() as session:
        try:
            t = await create_tournament(
                session,
                body.name,
                utcnow(),
                tournament_type=body.type,
                time_control=body.time_control,
                entry_fee=body.entry_fee,
                max_players=body.max_players,
                min_players=body.min_players,
                scheduled_start_at=start,
                scheduled_end_at=end,
            )
        except ValueError as e:
            raise HTTPException(400, str(e))
        await session.commit()
        logger.info("%s created tournament %s", user.username, t.id)
        return _tournament_dict(t)


@router.post("/tournaments/arena")
async def create_arena(body: ArenaCreate, user: User = Depends(require_moderator_user)):
    """Schedule an arena tournament (moderator)."""
    start = _parse_datetime(body.scheduled_start_at)
    end = _parse_datetime(body.scheduled_end_at)
    if not start or not end:
        raise HTTPException(400, "scheduled_start_at and scheduled_end_at must be ISO datetimes")
    async with async_session_factory() as session:
        try:
            t = await create_arena_tournament(
                session,
                body.name,
                start,
                end,
                utcnow(),
                time_control=body.time_control,
                entry_fee=body.entry_fee,
                max_players=body.max_players,
                min_players=body.min_players,
            )
        except ValueError as e:
            raise HTTPException(400, str(e))
        await session.commit()
        logger.info("%s scheduled arena %s", user.username, t.id)
        return _tournament_dict(t)


@router.post("/tournaments/arena/{tournament_id}/find-match")
async def arena_find_match(tournament_id: int, body: PlayerRequest):
    """Pair the player with a waiting opponent or queue them."""
    async with async_session_factory() as session:
        try:
            m = await find_arena_match(session, engine, tournament_id, body.player_id, utcnow())
        except LookupError as e:
            raise HTTPException(404, str(e))
        except ValueError as e:
            raise HTTPException(400, str(e))
        await session.commit()
        return {"matched": m.status == MATCH_ACTIVE, "match": _match_dict(m)}


@router.get("/tournaments/arena/{tournament_id}/leaderboard")
async def arena_leaderboard_route(tournament_id: int):
    async with async_session_factory() as session:
        t = await session.get(Tournament, tournament_id)
        if not t or not t.is_arena:
            raise HTTPException(404, "Arena tournament not found")
        return await arena_leaderboard(session, tournament_id)
