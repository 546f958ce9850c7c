"""
Wager placement and history.

``place_wager`` validates a request against persisted state and commits the
debit, the bet row and its selection rows as one unit:

    1. Validate input (amount, non-empty unique odd ids)     → ValidationError
    2. Lock the match row for share; it must be open          → ConflictError
    3. Load the odds; all must exist and belong to the match  → ConflictError
    4. Re-check market exclusivity                            → ValidationError
    5. Recompute the multiplier from stored prices
    6. Conditional debit (balance >= amount)                  → ConflictError
    7. Insert bet + selections, commit

Any failure rolls the session back, leaving the balance and tables as they
were.  A client-quoted multiplier is never used for the ticket.
"""

import logging
import math
import os
from collections import Counter
from typing import List, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, joinedload, selectinload

from backend.core.errors import ConflictError, ValidationError, WagerError
from backend.core.odds_math import combined_multiplier, is_valid_stake, potential_payout
from backend.models import BET_PENDING, Bet, BetSelection, Match, Odd
from backend.services import ledger

logger = logging.getLogger(__name__)

# Relative tolerance when comparing a quoted multiplier with the stored one.
_MULTIPLIER_TOL = 1e-9


def _validate_request(amount, odd_ids: Sequence[int]) -> List[int]:
    if not is_valid_stake(amount):
        raise ValidationError(f"Stake must be a positive, finite number, got {amount!r}")
    if not odd_ids:
        raise ValidationError("A wager needs at least one selection")

    ids = list(odd_ids)
    if len(set(ids)) != len(ids):
        raise ValidationError("The same odd was selected more than once")
    return ids


def _bound_lock_wait(db: Session) -> None:
    """Cap row-lock waits for this transaction (PostgreSQL only)."""
    if db.get_bind().dialect.name != "postgresql":
        return
    timeout_ms = int(os.getenv("WAGER_LOCK_TIMEOUT_MS", "5000"))
    db.execute(text(f"SET LOCAL lock_timeout = {timeout_ms}"))


def place_wager(
    db: Session,
    user_id: str,
    match_id: int,
    amount: float,
    odd_ids: Sequence[int],
    quoted_multiplier: Optional[float] = None,
) -> Bet:
    """
    Place a single or parlay wager on one open match.

    Returns the committed Bet with its selections.  Raises ValidationError
    for bad input and ConflictError when current state prevents placement;
    in both cases nothing is persisted.
    """
    ids = _validate_request(amount, odd_ids)
    amount = float(amount)

    try:
        _bound_lock_wait(db)

        match = (
            db.query(Match)
            .filter(Match.id == match_id)
            .with_for_update(read=True)
            .populate_existing()
            .first()
        )
        if match is None:
            raise ConflictError(f"Match {match_id} not found", retryable=False)
        if not match.is_open:
            raise ConflictError(f"Match {match_id} is no longer open for betting", retryable=False)

        odds = db.query(Odd).filter(Odd.id.in_(ids)).all()
        by_id = {o.id: o for o in odds}
        missing = [i for i in ids if i not in by_id]
        if missing:
            raise ConflictError(f"Odds no longer available: {missing}", retryable=False)
        foreign = [o.id for o in odds if o.match_id != match_id]
        if foreign:
            raise ConflictError(
                f"Odds {foreign} do not belong to match {match_id}", retryable=False
            )

        ordered = [by_id[i] for i in ids]
        repeated = [m for m, n in Counter(o.market_type for o in ordered).items() if n > 1]
        if repeated:
            raise ValidationError(f"Only one selection per market is allowed: {repeated}")

        multiplier = combined_multiplier([float(o.value) for o in ordered])
        if quoted_multiplier is not None and not math.isclose(
            quoted_multiplier, multiplier, rel_tol=_MULTIPLIER_TOL
        ):
            logger.warning(
                "Quoted multiplier %.6f differs from stored %.6f for user %s on match %d, using stored",
                quoted_multiplier, multiplier, user_id, match_id,
            )

        ledger.debit(db, user_id, amount)

        bet = Bet(
            user_id=user_id,
            match_id=match_id,
            amount=amount,
            total_odds=multiplier,
            potential_payout=potential_payout(amount, multiplier),
            status=BET_PENDING,
        )
        for position, odd in enumerate(ordered):
            bet.selections.append(BetSelection(odd_id=odd.id, position=position))
        db.add(bet)
        db.commit()

    except WagerError:
        db.rollback()
        raise
    except OperationalError as exc:
        db.rollback()
        logger.warning("Wager for user %s on match %d timed out: %s", user_id, match_id, exc)
        raise ConflictError("Could not complete the wager in time, please retry") from exc
    except Exception:
        db.rollback()
        raise

    db.refresh(bet)
    logger.info(
        "Wager %d placed: user %s | match %d | %d leg(s) @ %.4f | stake %.2f → payout %.2f",
        bet.id, user_id, match_id, len(ordered), multiplier, amount, bet.potential_payout,
    )
    return bet


def get_user_wagers(db: Session, user_id: str, limit: int = 20) -> List[Bet]:
    """The user's wagers with selections, odds and players, newest first."""
    return (
        db.query(Bet)
        .options(
            selectinload(Bet.selections).joinedload(BetSelection.odd),
            joinedload(Bet.match).joinedload(Match.player_a),
            joinedload(Bet.match).joinedload(Match.player_b),
        )
        .filter(Bet.user_id == user_id)
        .order_by(Bet.created_at.desc(), Bet.id.desc())
        .limit(limit)
        .all()
    )
