"""FastAPI tournament API. Hosts the tournament orchestrator when ORCHESTRATOR_ENABLED."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import config
from tourney.models.base import init_db
from tourney.services.orchestrator import TournamentOrchestrator

from web.api.auth_routes import router as auth_router
from web.api.routes import engine as game_engine, router as api_router

logger = logging.getLogger("tourney.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    orchestrator = None
    if config.ORCHESTRATOR_ENABLED:
        orchestrator = TournamentOrchestrator(engine=game_engine)
        orchestrator.start()
    app.state.orchestrator = orchestrator
    try:
        yield
    finally:
        if orchestrator:
            await orchestrator.stop()


app = FastAPI(title="Tournament Orchestrator API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_router)
app.include_router(auth_router)


@app.get("/api/health")
async def health():
    orchestrator = getattr(app.state, "orchestrator", None)
    return {"status": "ok", "orchestrator": bool(orchestrator and orchestrator.running)}
