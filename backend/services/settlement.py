"""
Match result recording and wager grading.

Operator entry point:
  finish_match()             - flip a match open → finished, then grade its wagers
Scheduled job:
  regrade_finished_matches() - every 10 min: grade wagers still pending on
                               finished matches (late commits, isolated failures)

Exactly-once guarantees rest on two conditional UPDATEs rather than on
reads:

  matches: SET status='finished', ... WHERE id=:id AND status='open'
  bets:    SET status=:won_or_lost    WHERE id=:id AND status='pending'

Only the caller whose bet UPDATE touched a row pays the credit, so duplicate
or concurrent triggers collapse to a single effective grading pass.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, selectinload

from backend.core.errors import ConflictError, DataIntegrityError, ValidationError, WagerError
from backend.core.market_config import AWAY, DRAW, EQUAL, HOME
from backend.models import (
    BET_LOST,
    BET_PENDING,
    BET_WON,
    MARKET_EXACT_SCORE,
    MARKET_MATCH_WINNER,
    MARKET_POSSESSION,
    MATCH_FINISHED,
    MATCH_OPEN,
    Bet,
    BetSelection,
    Match,
    SessionLocal,
)
from backend.services import ledger

logger = logging.getLogger(__name__)

DEFAULT_POSSESSION = 50


# ---------------------------------------------------------------------------
# Result and outcome evaluation (pure functions, no DB)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MatchResult:
    score_a: int
    score_b: int
    possession_home: int = DEFAULT_POSSESSION
    possession_away: int = DEFAULT_POSSESSION

    @property
    def winner(self) -> str:
        if self.score_a > self.score_b:
            return HOME
        if self.score_b > self.score_a:
            return AWAY
        return DRAW

    @property
    def possession_winner(self) -> str:
        if self.possession_home > self.possession_away:
            return HOME
        if self.possession_away > self.possession_home:
            return AWAY
        return EQUAL

    @property
    def scoreline(self) -> str:
        return f"{self.score_a}-{self.score_b}"

    @classmethod
    def from_match(cls, match: "Match") -> "MatchResult":
        if match.score_a is None or match.score_b is None:
            raise DataIntegrityError(f"Match {match.id} is finished without a score")
        return cls(
            score_a=match.score_a,
            score_b=match.score_b,
            possession_home=match.possession_home if match.possession_home is not None else DEFAULT_POSSESSION,
            possession_away=match.possession_away if match.possession_away is not None else DEFAULT_POSSESSION,
        )


def _is_score(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def build_result(
    score_a: int,
    score_b: int,
    possession_home: Optional[int] = None,
    possession_away: Optional[int] = None,
) -> MatchResult:
    """
    Validate operator input and fill in possession defaults.

    Neither share supplied → 50/50.  Only one supplied → the other is its
    complement to 100.
    """
    if not _is_score(score_a) or not _is_score(score_b):
        raise ValidationError("Scores must be non-negative integers")

    for label, share in (("possession_home", possession_home), ("possession_away", possession_away)):
        if share is not None and (not _is_score(share) or share > 100):
            raise ValidationError(f"{label} must be an integer between 0 and 100")

    if possession_home is None and possession_away is None:
        possession_home = possession_away = DEFAULT_POSSESSION
    elif possession_away is None:
        possession_away = 100 - possession_home
    elif possession_home is None:
        possession_home = 100 - possession_away

    return MatchResult(score_a, score_b, possession_home, possession_away)


def selection_wins(market_type: str, selection: str, result: MatchResult) -> bool:
    """
    Whether one (market_type, selection) pair is correct for ``result``.

    Raises DataIntegrityError for an unknown market or a selection that is
    not a legal outcome of its market.
    """
    if market_type == MARKET_MATCH_WINNER:
        if selection not in (HOME, DRAW, AWAY):
            raise DataIntegrityError(f"Invalid match_winner selection {selection!r}")
        return selection == result.winner

    if market_type == MARKET_POSSESSION:
        if selection not in (HOME, AWAY, EQUAL):
            raise DataIntegrityError(f"Invalid possession selection {selection!r}")
        return selection == result.possession_winner

    if market_type == MARKET_EXACT_SCORE:
        if not isinstance(selection, str) or "-" not in selection:
            raise DataIntegrityError(f"Invalid exact_score selection {selection!r}")
        return selection == result.scoreline

    raise DataIntegrityError(f"Unknown market type {market_type!r}")


def grade_wager(bet: "Bet", result: MatchResult) -> str:
    """
    ``won`` iff every selection is correct, otherwise ``lost``.

    Every leg is evaluated, even after a miss, so malformed data anywhere on
    the ticket is reported instead of being masked by an earlier loss.
    """
    if not bet.selections:
        raise DataIntegrityError(f"Bet {bet.id} has no selections")

    markets = set()
    all_correct = True
    for sel in bet.selections:
        odd = sel.odd
        if odd is None:
            raise DataIntegrityError(f"Bet {bet.id} selection {sel.id} references a missing odd")
        if odd.match_id != bet.match_id:
            raise DataIntegrityError(
                f"Bet {bet.id} selection {sel.id} is priced on match {odd.match_id}"
            )
        if odd.market_type in markets:
            raise DataIntegrityError(f"Bet {bet.id} has two selections in {odd.market_type}")
        markets.add(odd.market_type)

        if not selection_wins(odd.market_type, odd.selection, result):
            all_correct = False

    return BET_WON if all_correct else BET_LOST


# ---------------------------------------------------------------------------
# Settlement report
# ---------------------------------------------------------------------------

@dataclass
class SettlementReport:
    match_id: int
    newly_finished: bool = False
    graded: int = 0
    won: int = 0
    lost: int = 0
    total_paid: float = 0.0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "match_id": self.match_id,
            "newly_finished": self.newly_finished,
            "graded": self.graded,
            "won": self.won,
            "lost": self.lost,
            "total_paid": round(self.total_paid, 2),
            "errors": self.errors,
            "timestamp": datetime.utcnow().isoformat(),
        }


# ---------------------------------------------------------------------------
# Grading pass
# ---------------------------------------------------------------------------

def _grade_pending(db: Session, match: Match, report: SettlementReport) -> None:
    """
    Grade every pending wager on a finished match (caller commits).

    Every wager is evaluated first; status writes and credits then run in
    (user_id, bet id) order so concurrent settlements of different matches
    lock balance rows in the same order.
    """
    result = MatchResult.from_match(match)

    pending = (
        db.query(Bet)
        .options(selectinload(Bet.selections).selectinload(BetSelection.odd))
        .filter(Bet.match_id == match.id, Bet.status == BET_PENDING)
        .order_by(Bet.id.asc())
        .all()
    )

    graded: List[Tuple[Bet, str]] = []
    for bet in pending:
        try:
            graded.append((bet, grade_wager(bet, result)))
        except DataIntegrityError as exc:
            report.errors.append(f"Bet {bet.id}: {exc}")
            logger.error("Bet %d left pending, cannot be graded: %s", bet.id, exc)

    graded.sort(key=lambda pair: (pair[0].user_id, pair[0].id))

    for bet, status in graded:
        claimed = db.execute(
            update(Bet)
            .where(Bet.id == bet.id, Bet.status == BET_PENDING)
            .values(status=status, settled_at=datetime.utcnow())
        ).rowcount
        if claimed != 1:
            # Another grading pass got here first.
            continue

        report.graded += 1
        if status == BET_WON:
            ledger.credit(db, bet.user_id, bet.potential_payout)
            report.won += 1
            report.total_paid += bet.potential_payout
            logger.info(
                "WIN: bet %d (user %s) | paid %.2f", bet.id, bet.user_id, bet.potential_payout
            )
        else:
            report.lost += 1
            logger.info("LOSS: bet %d (user %s) | stake %.2f", bet.id, bet.user_id, bet.amount)


def finish_match(
    db: Session,
    match_id: int,
    score_a: int,
    score_b: int,
    possession_home: Optional[int] = None,
    possession_away: Optional[int] = None,
) -> SettlementReport:
    """
    Record a match result and settle its wagers.

    The first call flips the match to finished and grades every pending
    wager in the same transaction.  A repeat call with the same score only
    grades wagers still pending (normally none); a different score raises
    ConflictError.  A lock failure rolls everything back, leaving the match
    open, and raises a retryable ConflictError.
    """
    result = build_result(score_a, score_b, possession_home, possession_away)
    report = SettlementReport(match_id=match_id)

    try:
        flipped = db.execute(
            update(Match)
            .where(Match.id == match_id, Match.status == MATCH_OPEN)
            .values(
                status=MATCH_FINISHED,
                score_a=result.score_a,
                score_b=result.score_b,
                possession_home=result.possession_home,
                possession_away=result.possession_away,
                possession_winner=result.possession_winner,
                finished_at=datetime.utcnow(),
            )
        ).rowcount

        match = db.get(Match, match_id, populate_existing=True)
        if match is None:
            raise ValidationError(f"Match {match_id} not found")

        if flipped == 1:
            report.newly_finished = True
            logger.info(
                "Match %d finished %s (possession %d-%d, %s)",
                match_id, result.scoreline, result.possession_home,
                result.possession_away, result.possession_winner,
            )
        elif (match.score_a, match.score_b) != (result.score_a, result.score_b):
            raise ConflictError(
                f"Match {match_id} already finished {match.score_a}-{match.score_b}",
                retryable=False,
            )

        _grade_pending(db, match, report)
        db.commit()
    except WagerError:
        db.rollback()
        raise
    except OperationalError as exc:
        db.rollback()
        logger.warning("Settlement of match %d hit a lock conflict: %s", match_id, exc)
        raise ConflictError(
            f"Could not settle match {match_id} right now, please retry"
        ) from exc
    except Exception:
        db.rollback()
        raise

    logger.info("Settlement for match %d: %s", match_id, report.to_dict())
    return report


def regrade_match(db: Session, match_id: int) -> SettlementReport:
    """Grade the remaining pending wagers of one finished match."""
    report = SettlementReport(match_id=match_id)
    try:
        match = db.get(Match, match_id)
        if match is None:
            raise ValidationError(f"Match {match_id} not found")
        if match.status != MATCH_FINISHED:
            raise ConflictError(f"Match {match_id} is not finished", retryable=False)
        _grade_pending(db, match, report)
        db.commit()
    except DataIntegrityError as exc:
        db.rollback()
        report.errors.append(str(exc))
        logger.error("Match %d cannot be regraded: %s", match_id, exc)
    except Exception:
        db.rollback()
        raise
    return report


def _finished_with_pending(db: Session) -> List[int]:
    rows: List[Tuple[int]] = (
        db.query(Match.id)
        .join(Bet, Bet.match_id == Match.id)
        .filter(Match.status == MATCH_FINISHED, Bet.status == BET_PENDING)
        .distinct()
        .order_by(Match.id.asc())
        .all()
    )
    return [r[0] for r in rows]


def regrade_finished_matches(db: Optional[Session] = None) -> Dict:
    """
    Sweep finished matches that still hold pending wagers and grade them.

    Called by the scheduler; also exposed to operators.
    """
    logger.info("Starting regrade_finished_matches")
    owns_session = db is None
    db = db or SessionLocal()

    matches_swept = 0
    graded = 0
    errors: List[str] = []

    try:
        for match_id in _finished_with_pending(db):
            report = regrade_match(db, match_id)
            matches_swept += 1
            graded += report.graded
            errors.extend(f"Match {match_id}: {e}" for e in report.errors)
    except Exception as exc:
        logger.error("Fatal error in regrade_finished_matches: %s", exc, exc_info=True)
        db.rollback()
        errors.append(f"Fatal: {exc}")
    finally:
        if owns_session:
            db.close()

    summary = {
        "matches_swept": matches_swept,
        "bets_graded": graded,
        "errors": errors,
        "timestamp": datetime.utcnow().isoformat(),
    }
    logger.info("regrade_finished_matches done: %s", summary)
    return summary
