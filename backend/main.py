"""
FastAPI application for the Arena wagering engine
Includes REST API, the settlement sweeper job, and monitoring
"""

from fastapi import FastAPI, Depends, HTTPException, Query, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.orm import Session
from sqlalchemy import text
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List
import logging
import os

from backend.models import get_db, Match, Player
from backend.auth import verify_api_key, verify_admin_api_key, role_for
from backend.core.errors import ConflictError, ValidationError, WagerError
from backend.services import catalog, ledger, settlement
from backend.services.wager_service import get_user_wagers, place_wager
from backend.schemas import (
    MatchCreate,
    MatchFinish,
    MatchListResponse,
    MatchResponse,
    MatchSummaryResponse,
    MeResponse,
    PlayerCreate,
    PlayerRename,
    PlayerResponse,
    RegradeResponse,
    SettlementReportResponse,
    WagerCreate,
    WagerPlacedResponse,
    WagerResponse,
)

# Logging setup
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Scheduler instance
scheduler = BackgroundScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    logger.info("🚀 Starting Arena wagering engine")

    # Sweep finished matches for wagers that are still pending
    regrade_interval = int(os.getenv("REGRADE_INTERVAL_MIN", "10"))
    scheduler.add_job(
        _regrade_job,
        IntervalTrigger(minutes=regrade_interval),
        id="regrade_finished_matches",
        name="Regrade Pending Wagers On Finished Matches",
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Scheduler started: regrade sweep every %dmin", regrade_interval)

    yield

    # Shutdown
    logger.info("👋 Shutting down Arena wagering engine")
    scheduler.shutdown()


app = FastAPI(
    title="Arena Bets",
    description="Single-match parlay wagering on head-to-head player matches",
    version="1.0",
    lifespan=lifespan,
)

# CORS (adjust origins for production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# SCHEDULED JOB
# ============================================================================

def _regrade_job():
    """Grade wagers left pending on finished matches, runs every 10 min by default."""
    try:
        results = settlement.regrade_finished_matches()
        if results.get("bets_graded", 0) > 0 or results.get("errors"):
            logger.info("Regrade sweep: %s", results)
    except Exception as exc:
        logger.error("Regrade job failed: %s", exc, exc_info=True)


# ============================================================================
# PUBLIC ENDPOINTS
# ============================================================================

@app.get("/")
async def root():
    """Health check"""
    return {
        "app": "Arena Bets",
        "version": "1.0",
        "status": "operational",
        "timestamp": datetime.utcnow().isoformat(),
    }


@app.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """Health check endpoint"""
    health = {"status": "healthy", "database": "connected", "scheduler": "running"}

    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Health check database error: %s", e)
        health["status"] = "degraded"
        health["database"] = f"error: {str(e)}"

    if not scheduler.running:
        health["status"] = "degraded"
        health["scheduler"] = "stopped"

    return health


# ============================================================================
# AUTHENTICATED ENDPOINTS - ACCOUNT & MATCHES
# ============================================================================

@app.get("/api/me", response_model=MeResponse)
async def get_me(
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    """Balance and role; the ledger account is opened on first sight."""
    profile = ledger.open_account(db, user, role=role_for(user))
    db.commit()
    return MeResponse(user_id=profile.id, role=profile.role, balance=profile.balance)


@app.get("/api/matches/open", response_model=List[MatchResponse])
async def get_open_matches(
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    """Open matches with every published odd, soonest first."""
    return catalog.get_open_matches_with_odds(db)


# ============================================================================
# AUTHENTICATED ENDPOINTS - WAGERS
# ============================================================================

@app.post("/api/bets", response_model=WagerPlacedResponse, status_code=status.HTTP_201_CREATED)
async def create_wager(
    payload: WagerCreate,
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    """Place a single or parlay wager on one open match."""
    if db.get(Match, payload.match_id) is None:
        raise HTTPException(status_code=404, detail="Match not found")

    ledger.open_account(db, user, role=role_for(user))
    bet = place_wager(
        db,
        user_id=user,
        match_id=payload.match_id,
        amount=payload.amount,
        odd_ids=payload.odd_ids,
        quoted_multiplier=payload.quoted_multiplier,
    )

    return WagerPlacedResponse(
        message="Wager placed",
        bet=WagerResponse.model_validate(bet),
        balance=ledger.get_balance(db, user),
    )


@app.get("/api/bets", response_model=List[WagerResponse])
async def get_wagers(
    limit: int = Query(default=20, ge=1, le=100),
    user: str = Depends(verify_api_key),
    db: Session = Depends(get_db),
):
    """The caller's wagers, newest first."""
    return get_user_wagers(db, user, limit=limit)


# ============================================================================
# ADMIN ENDPOINTS - PLAYERS
# ============================================================================

@app.get("/admin/players", response_model=List[PlayerResponse])
async def get_players(
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    return catalog.list_players(db)


@app.post("/admin/players", response_model=PlayerResponse, status_code=status.HTTP_201_CREATED)
async def add_player(
    payload: PlayerCreate,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    """Register a player (admin only)."""
    player = catalog.create_player(db, payload.name, payload.category)
    logger.info("Player %d added by %s", player.id, user)
    return player


@app.patch("/admin/players/{player_id}", response_model=PlayerResponse)
async def rename_player(
    player_id: int,
    payload: PlayerRename,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    """Rename a player (admin only)."""
    if db.get(Player, player_id) is None:
        raise HTTPException(status_code=404, detail="Player not found")
    return catalog.rename_player(db, player_id, payload.name)


@app.delete("/admin/players/{player_id}")
async def remove_player(
    player_id: int,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    """Delete a player no match references (admin only)."""
    if db.get(Player, player_id) is None:
        raise HTTPException(status_code=404, detail="Player not found")
    catalog.delete_player(db, player_id)
    return {"message": "Player deleted", "player_id": player_id}


# ============================================================================
# ADMIN ENDPOINTS - MATCHES & SETTLEMENT
# ============================================================================

@app.get("/admin/matches", response_model=MatchListResponse)
async def get_matches(
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    """Operator view: open and finished matches, newest first."""
    active, finished = catalog.list_matches(db)
    return MatchListResponse(
        active=[MatchSummaryResponse.model_validate(m) for m in active],
        finished=[MatchSummaryResponse.model_validate(m) for m in finished],
    )


@app.post("/admin/matches", response_model=MatchResponse, status_code=status.HTTP_201_CREATED)
async def add_match(
    payload: MatchCreate,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    """Open a match; odds for all markets are generated in the same transaction."""
    match = catalog.create_match(
        db,
        payload.player_a_id,
        payload.player_b_id,
        game_type=payload.game_type,
        scheduled_at=payload.scheduled_at,
    )
    logger.info("Match %d opened by %s", match.id, user)
    return catalog.get_match(db, match.id)


@app.post("/admin/matches/{match_id}/finish", response_model=SettlementReportResponse)
async def finish_match(
    match_id: int,
    payload: MatchFinish,
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    """Record the result and settle every wager on the match (admin only)."""
    if db.get(Match, match_id) is None:
        raise HTTPException(status_code=404, detail="Match not found")

    logger.info("Match %d finish submitted by %s", match_id, user)
    report = settlement.finish_match(
        db,
        match_id,
        payload.score_a,
        payload.score_b,
        possession_home=payload.possession_home,
        possession_away=payload.possession_away,
    )
    return report.to_dict()


@app.post("/admin/settlement/regrade", response_model=RegradeResponse)
async def force_regrade(
    user: str = Depends(verify_admin_api_key),
    db: Session = Depends(get_db),
):
    """Manually trigger the regrade sweep (admin only)."""
    logger.info("Manual regrade triggered by %s", user)
    results = settlement.regrade_finished_matches(db)
    return {"message": "Regrade complete", **results}


@app.get("/admin/scheduler/status")
async def get_scheduler_status(user: str = Depends(verify_admin_api_key)):
    """Get scheduler job status"""
    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
        })

    return {
        "running": scheduler.running,
        "jobs": jobs,
    }


# ============================================================================
# ERROR HANDLERS
# ============================================================================

def _status_for(exc: WagerError) -> int:
    if isinstance(exc, ValidationError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, ConflictError):
        return status.HTTP_409_CONFLICT
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(WagerError)
async def wager_exception_handler(request, exc: WagerError):
    """Domain failures: input errors → 422, state conflicts → 409"""
    code = _status_for(exc)
    if code >= 500:
        logger.error("Wager engine failure on %s: %s", request.url.path, exc, exc_info=True)
    else:
        logger.info("%s on %s: %s", type(exc).__name__, request.url.path, exc)
    return JSONResponse(status_code=code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc: StarletteHTTPException):
    """Routing and auth errors (404, 401, 403) in the same body shape as WagerError"""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "error_type": "HTTPException",
            "kind": "invalid_input",
            "retryable": False,
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request, exc: RequestValidationError):
    """Malformed request bodies and parameters → 422 with the field errors attached"""
    logger.info("Request validation failed on %s: %s", request.url.path, exc.errors())
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Invalid request",
            "error_type": "RequestValidationError",
            "kind": "invalid_input",
            "retryable": False,
            "errors": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Catch-all exception handler"""
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error_type": type(exc).__name__,
            "kind": "not_completed",
            "retryable": False,
        },
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
