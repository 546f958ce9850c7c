"""Tests for match finishing and wager grading."""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from backend.core.errors import ConflictError, DataIntegrityError, ValidationError
from backend.models import Bet, Match, Odd
from backend.services import ledger, settlement
from backend.services.settlement import MatchResult, build_result, grade_wager, selection_wins
from backend.services.wager_service import place_wager

from conftest import fund, odd_for


def _place(db, match, user, amount, picks):
    ids = [odd_for(match, market, sel).id for market, sel in picks]
    return place_wager(db, user, match.id, amount, ids)


# ---------------------------------------------------------------------------
# Pure evaluation
# ---------------------------------------------------------------------------

class TestBuildResult:

    def test_possession_defaults_to_even(self):
        r = build_result(2, 1)
        assert (r.possession_home, r.possession_away) == (50, 50)
        assert r.possession_winner == "equal"

    def test_single_share_implies_complement(self):
        assert build_result(0, 0, possession_home=62).possession_away == 38
        assert build_result(0, 0, possession_away=70).possession_home == 30

    @pytest.mark.parametrize("score_a, score_b", [(-1, 0), (1.5, 0), (True, 0), (None, 1)])
    def test_rejects_bad_scores(self, score_a, score_b):
        with pytest.raises(ValidationError):
            build_result(score_a, score_b)

    @pytest.mark.parametrize("share", [-1, 101, 50.5])
    def test_rejects_bad_possession(self, share):
        with pytest.raises(ValidationError):
            build_result(1, 0, possession_home=share)


@pytest.mark.parametrize("market, selection, result, expected", [
    ("match_winner", "home", MatchResult(2, 1), True),
    ("match_winner", "away", MatchResult(2, 1), False),
    ("match_winner", "draw", MatchResult(1, 1), True),
    ("match_winner", "away", MatchResult(0, 3), True),
    ("possession", "home", MatchResult(0, 0, 60, 40), True),
    ("possession", "away", MatchResult(0, 0, 45, 55), True),
    ("possession", "equal", MatchResult(0, 0), True),
    ("possession", "home", MatchResult(0, 0), False),
    ("exact_score", "2-1", MatchResult(2, 1), True),
    ("exact_score", "1-2", MatchResult(2, 1), False),
    ("exact_score", "3-3", MatchResult(3, 3), True),
])
def test_selection_wins(market, selection, result, expected):
    assert selection_wins(market, selection, result) is expected


@pytest.mark.parametrize("market, selection", [
    ("match_winner", "tie"),
    ("possession", "draw"),
    ("exact_score", "21"),
    ("corners", "over"),
])
def test_selection_wins_rejects_malformed(market, selection):
    with pytest.raises(DataIntegrityError):
        selection_wins(market, selection, MatchResult(2, 1))


def _bet_with(*legs, match_id=1):
    bet = MagicMock()
    bet.id = 5
    bet.match_id = match_id
    bet.selections = []
    for i, (market, sel) in enumerate(legs):
        s = MagicMock()
        s.id = i
        s.odd.match_id = match_id
        s.odd.market_type = market
        s.odd.selection = sel
        bet.selections.append(s)
    return bet


class TestGradeWager:

    def test_all_legs_correct_wins(self):
        bet = _bet_with(("match_winner", "home"), ("exact_score", "2-1"))
        assert grade_wager(bet, MatchResult(2, 1)) == "won"

    def test_one_miss_voids_parlay(self):
        bet = _bet_with(("match_winner", "home"), ("exact_score", "1-0"))
        assert grade_wager(bet, MatchResult(2, 1)) == "lost"

    def test_malformed_leg_after_miss_still_reported(self):
        bet = _bet_with(("match_winner", "away"), ("exact_score", "garbage"))
        with pytest.raises(DataIntegrityError):
            grade_wager(bet, MatchResult(2, 1))

    def test_no_selections(self):
        with pytest.raises(DataIntegrityError):
            grade_wager(_bet_with(), MatchResult(2, 1))

    def test_duplicate_market(self):
        bet = _bet_with(("match_winner", "home"), ("match_winner", "draw"))
        with pytest.raises(DataIntegrityError):
            grade_wager(bet, MatchResult(2, 1))

    def test_leg_from_other_match(self):
        bet = _bet_with(("match_winner", "home"))
        bet.selections[0].odd.match_id = 99
        with pytest.raises(DataIntegrityError):
            grade_wager(bet, MatchResult(2, 1))


# ---------------------------------------------------------------------------
# finish_match
# ---------------------------------------------------------------------------

class TestFinishMatch:

    def test_two_one_scenario(self, db_session, open_match):
        fund(db_session, "alice", 100)
        fund(db_session, "bob", 100)
        winner = _place(db_session, open_match, "alice", 10,
                        [("match_winner", "home"), ("exact_score", "2-1")])
        loser = _place(db_session, open_match, "bob", 10,
                       [("match_winner", "home"), ("exact_score", "1-0")])

        report = settlement.finish_match(db_session, open_match.id, 2, 1)

        assert report.newly_finished
        assert (report.graded, report.won, report.lost) == (2, 1, 1)
        assert report.total_paid == pytest.approx(10 * 1.90 * 8.00)

        db_session.expire_all()
        assert db_session.get(Bet, winner.id).status == "won"
        assert db_session.get(Bet, loser.id).status == "lost"
        assert db_session.get(Bet, winner.id).settled_at is not None
        assert ledger.get_balance(db_session, "alice") == pytest.approx(90 + 152.0)
        assert ledger.get_balance(db_session, "bob") == pytest.approx(90.0)

    def test_records_result(self, db_session, open_match):
        settlement.finish_match(db_session, open_match.id, 0, 0, possession_home=58)
        match = db_session.get(Match, open_match.id)
        assert match.status == "finished"
        assert (match.score_a, match.score_b) == (0, 0)
        assert (match.possession_home, match.possession_away) == (58, 42)
        assert match.possession_winner == "home"
        assert match.finished_at is not None

    def test_default_possession_pays_equal(self, db_session, open_match):
        fund(db_session, "alice", 100)
        bet = _place(db_session, open_match, "alice", 10, [("possession", "equal")])
        settlement.finish_match(db_session, open_match.id, 1, 0)
        db_session.expire_all()
        assert db_session.get(Bet, bet.id).status == "won"
        assert ledger.get_balance(db_session, "alice") == pytest.approx(90 + 80.0)

    def test_idempotent(self, db_session, open_match):
        fund(db_session, "alice", 100)
        _place(db_session, open_match, "alice", 10, [("match_winner", "home")])

        settlement.finish_match(db_session, open_match.id, 2, 1)
        balance_once = ledger.get_balance(db_session, "alice")

        again = settlement.finish_match(db_session, open_match.id, 2, 1)

        assert not again.newly_finished
        assert again.graded == 0
        assert ledger.get_balance(db_session, "alice") == pytest.approx(balance_once)

    def test_different_score_after_finish_conflicts(self, db_session, open_match):
        settlement.finish_match(db_session, open_match.id, 2, 1)
        with pytest.raises(ConflictError):
            settlement.finish_match(db_session, open_match.id, 0, 0)
        assert db_session.get(Match, open_match.id).score_a == 2

    def test_unknown_match(self, db_session):
        with pytest.raises(ValidationError):
            settlement.finish_match(db_session, 999, 1, 0)

    def test_bad_score_changes_nothing(self, db_session, open_match):
        with pytest.raises(ValidationError):
            settlement.finish_match(db_session, open_match.id, -1, 0)
        assert db_session.get(Match, open_match.id).status == "open"

    def test_malformed_wager_isolated(self, db_session, open_match):
        fund(db_session, "alice", 100)
        fund(db_session, "bob", 100)
        broken = _place(db_session, open_match, "alice", 10, [("exact_score", "2-1")])
        healthy = _place(db_session, open_match, "bob", 10, [("match_winner", "home")])

        # Corrupt the odd behind alice's only leg
        odd = odd_for(open_match, "exact_score", "2-1")
        db_session.query(Odd).filter(Odd.id == odd.id).update({"selection": "2:1"})
        db_session.commit()

        report = settlement.finish_match(db_session, open_match.id, 2, 1)

        assert report.graded == 1
        assert len(report.errors) == 1
        db_session.expire_all()
        assert db_session.get(Bet, broken.id).status == "pending"
        assert db_session.get(Bet, healthy.id).status == "won"
        assert ledger.get_balance(db_session, "alice") == pytest.approx(90.0)

    def test_payouts_credited_in_user_order(self, db_session, open_match):
        fund(db_session, "zed", 100)
        fund(db_session, "amy", 100)
        _place(db_session, open_match, "zed", 10, [("match_winner", "home")])
        _place(db_session, open_match, "amy", 10, [("match_winner", "home")])

        with patch.object(ledger, "credit", wraps=ledger.credit) as credit:
            report = settlement.finish_match(db_session, open_match.id, 1, 0)

        assert report.won == 2
        assert [c.args[1] for c in credit.call_args_list] == ["amy", "zed"]

    def test_lock_failure_during_payout_is_retryable(self, db_session, open_match):
        fund(db_session, "alice", 100)
        bet = _place(db_session, open_match, "alice", 10, [("match_winner", "home")])

        deadlock = OperationalError("UPDATE profiles", {}, Exception("deadlock detected"))
        with patch.object(ledger, "credit", side_effect=deadlock):
            with pytest.raises(ConflictError) as exc_info:
                settlement.finish_match(db_session, open_match.id, 2, 1)

        assert exc_info.value.retryable is True
        db_session.expire_all()
        assert db_session.get(Match, open_match.id).status == "open"
        assert db_session.get(Bet, bet.id).status == "pending"
        assert ledger.get_balance(db_session, "alice") == pytest.approx(90.0)

        # A retry settles normally
        report = settlement.finish_match(db_session, open_match.id, 2, 1)
        assert report.newly_finished
        assert report.won == 1
        assert ledger.get_balance(db_session, "alice") == pytest.approx(90 + 19.0)

    def test_stale_session_finish_grades_nothing(self, session_factory, db_session, open_match):
        fund(db_session, "alice", 100)
        _place(db_session, open_match, "alice", 10, [("match_winner", "home")])

        stale = session_factory()
        try:
            assert stale.get(Match, open_match.id).status == "open"

            first = settlement.finish_match(db_session, open_match.id, 2, 1)
            assert first.graded == 1

            second = settlement.finish_match(stale, open_match.id, 2, 1)
            assert not second.newly_finished
            assert second.graded == 0
            assert second.total_paid == 0
        finally:
            stale.close()

        assert ledger.get_balance(db_session, "alice") == pytest.approx(90 + 19.0)


# ---------------------------------------------------------------------------
# regrade sweep
# ---------------------------------------------------------------------------

def test_regrade_picks_up_repaired_wager(db_session, open_match):
    fund(db_session, "alice", 100)
    bet = _place(db_session, open_match, "alice", 10, [("exact_score", "2-1")])
    odd = odd_for(open_match, "exact_score", "2-1")

    db_session.query(Odd).filter(Odd.id == odd.id).update({"selection": "2:1"})
    db_session.commit()
    settlement.finish_match(db_session, open_match.id, 2, 1)

    db_session.query(Odd).filter(Odd.id == odd.id).update({"selection": "2-1"})
    db_session.commit()

    summary = settlement.regrade_finished_matches(db_session)

    assert summary["matches_swept"] == 1
    assert summary["bets_graded"] == 1
    db_session.expire_all()
    assert db_session.get(Bet, bet.id).status == "won"
    assert ledger.get_balance(db_session, "alice") == pytest.approx(90 + 80.0)

    # Nothing left to do
    assert settlement.regrade_finished_matches(db_session)["matches_swept"] == 0


def test_regrade_match_requires_finished(db_session, open_match):
    with pytest.raises(ConflictError):
        settlement.regrade_match(db_session, open_match.id)
