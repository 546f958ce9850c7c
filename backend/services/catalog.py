"""
Player and match catalog.

Owns the Player / Match / Odd lifecycle.  A match is inserted together with
every Odd row of its three markets inside one transaction, so no reader can
ever see an open match without prices.
"""

import logging
import os
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, selectinload

from backend.core.errors import ConflictError, ValidationError
from backend.core.market_config import MarketConfig
from backend.models import MATCH_FINISHED, MATCH_OPEN, Match, Odd, Player
from backend.services.odds_generator import build_market_rows, generate_winner_odds, resolve_config

logger = logging.getLogger(__name__)

PLAYER_CATEGORIES = ("home", "away")


# ---------------------------------------------------------------------------
# Players
# ---------------------------------------------------------------------------

def _clean_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("Player name is required")
    if len(cleaned) > 80:
        raise ValidationError("Player name must be at most 80 characters")
    return cleaned


def create_player(db: Session, name: str, category: str = "home") -> Player:
    """Register a player.  ``category`` is stored as a tag and never read back."""
    if category not in PLAYER_CATEGORIES:
        raise ValidationError(f"category must be one of {PLAYER_CATEGORIES}, got {category!r}")

    player = Player(name=_clean_name(name), category=category)
    db.add(player)
    db.commit()
    db.refresh(player)
    logger.info("Player %d created: %s (%s)", player.id, player.name, player.category)
    return player


def rename_player(db: Session, player_id: int, name: str) -> Player:
    """The only permitted change to a player."""
    player = db.get(Player, player_id)
    if player is None:
        raise ValidationError(f"Player {player_id} not found")

    player.name = _clean_name(name)
    db.commit()
    db.refresh(player)
    return player


def delete_player(db: Session, player_id: int) -> None:
    """Remove a player that no match references."""
    player = db.get(Player, player_id)
    if player is None:
        raise ValidationError(f"Player {player_id} not found")

    referenced = (
        db.query(Match.id)
        .filter(or_(Match.player_a_id == player_id, Match.player_b_id == player_id))
        .first()
    )
    if referenced is not None:
        raise ConflictError(
            f"Player {player_id} is referenced by match {referenced[0]} and cannot be deleted",
            retryable=False,
        )

    db.delete(player)
    db.commit()
    logger.info("Player %d deleted", player_id)


def list_players(db: Session) -> List[Player]:
    return db.query(Player).order_by(Player.name.asc()).all()


# ---------------------------------------------------------------------------
# Matches
# ---------------------------------------------------------------------------

def head_to_head(db: Session, player_a_id: int, player_b_id: int) -> List[Match]:
    """Finished matches between the pair, in either orientation."""
    return (
        db.query(Match)
        .filter(
            Match.status == MATCH_FINISHED,
            or_(
                and_(Match.player_a_id == player_a_id, Match.player_b_id == player_b_id),
                and_(Match.player_a_id == player_b_id, Match.player_b_id == player_a_id),
            ),
        )
        .order_by(Match.scheduled_at.asc())
        .all()
    )


def create_match(
    db: Session,
    player_a_id: int,
    player_b_id: int,
    game_type: Optional[str] = None,
    scheduled_at: Optional[datetime] = None,
    config: Optional[MarketConfig] = None,
) -> Match:
    """
    Open a match and publish its odds.

    The match row and its Odd rows commit together; on any failure the
    session is rolled back and nothing is visible.  Odds generation never
    blocks creation: a bad config or a failed history lookup publishes the
    fallback prices.
    """
    if player_a_id is None or player_b_id is None:
        raise ValidationError("Both players are required")
    if player_a_id == player_b_id:
        raise ValidationError("A match needs two different players")

    found = db.query(Player.id).filter(Player.id.in_([player_a_id, player_b_id])).count()
    if found != 2:
        raise ValidationError("Unknown player in match request")

    game_type = (game_type or os.getenv("GAME_TYPE_DEFAULT", "FIFA")).strip()
    if not game_type:
        raise ValidationError("game_type cannot be blank")

    config = resolve_config(config)
    try:
        history = head_to_head(db, player_a_id, player_b_id)
    except SQLAlchemyError as exc:
        # Nothing written yet; clear the failed statement before inserting.
        db.rollback()
        logger.warning("Head-to-head lookup failed for %d vs %d: %s", player_a_id, player_b_id, exc)
        history = None

    try:
        winner = generate_winner_odds(history, player_a_id, config)

        match = Match(
            player_a_id=player_a_id,
            player_b_id=player_b_id,
            game_type=game_type,
            scheduled_at=scheduled_at or datetime.utcnow(),
            status=MATCH_OPEN,
        )
        db.add(match)
        db.flush()  # get match.id

        for row in build_market_rows(match.id, winner, config):
            db.add(Odd(**row))

        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(match)
    logger.info(
        "Match %d created: %d vs %d (%s) | %s odds %.2f/%.2f/%.2f",
        match.id, player_a_id, player_b_id, game_type,
        "fallback" if winner.is_fallback else "h2h",
        winner.odd_a, winner.odd_draw, winner.odd_b,
    )
    return match


def get_match(db: Session, match_id: int) -> Optional[Match]:
    return (
        db.query(Match)
        .options(
            joinedload(Match.player_a),
            joinedload(Match.player_b),
            selectinload(Match.odds),
        )
        .filter(Match.id == match_id)
        .first()
    )


def get_open_matches_with_odds(db: Session) -> List[Match]:
    """Open matches with players and all odds loaded, soonest first."""
    return (
        db.query(Match)
        .options(
            joinedload(Match.player_a),
            joinedload(Match.player_b),
            selectinload(Match.odds),
        )
        .filter(Match.status == MATCH_OPEN)
        .order_by(Match.scheduled_at.asc(), Match.id.asc())
        .all()
    )


def list_matches(db: Session) -> Tuple[List[Match], List[Match]]:
    """(open, finished) for the operator view, newest scheduled first."""
    matches = (
        db.query(Match)
        .options(joinedload(Match.player_a), joinedload(Match.player_b))
        .order_by(Match.scheduled_at.desc(), Match.id.desc())
        .all()
    )
    active = [m for m in matches if m.status == MATCH_OPEN]
    finished = [m for m in matches if m.status == MATCH_FINISHED]
    return active, finished
