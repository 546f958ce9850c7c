"""Tests for the ParlaySlip value type."""

import pytest

from backend.core.errors import ValidationError
from backend.services.parlay_builder import OddQuote, ParlaySlip

# Match 1
HOME_1 = OddQuote(1, 1, "match_winner", "home", 1.90)
DRAW_1 = OddQuote(2, 1, "match_winner", "draw", 3.00)
POSS_HOME_1 = OddQuote(4, 1, "possession", "home", 1.85)
SCORE_21_1 = OddQuote(7, 1, "exact_score", "2-1", 8.00)
SCORE_10_1 = OddQuote(8, 1, "exact_score", "1-0", 5.00)
# Match 2
HOME_2 = OddQuote(21, 2, "match_winner", "home", 2.10)


# ---------------------------------------------------------------------------
# Toggling
# ---------------------------------------------------------------------------

class TestToggle:

    def test_first_pick_locks_match(self):
        slip = ParlaySlip().toggle(HOME_1)
        assert slip.selected_match_id == 1
        assert slip.odd_ids == (1,)

    def test_distinct_markets_accumulate(self):
        slip = ParlaySlip().toggle(HOME_1).toggle(POSS_HOME_1).toggle(SCORE_21_1)
        assert slip.odd_ids == (1, 4, 7)
        assert slip.markets == ["match_winner", "possession", "exact_score"]

    def test_same_market_replaces(self):
        slip = ParlaySlip().toggle(HOME_1).toggle(SCORE_21_1).toggle(DRAW_1)
        assert slip.odd_ids == (7, 2)
        assert slip.markets.count("match_winner") == 1

    def test_toggle_off(self):
        slip = ParlaySlip().toggle(HOME_1).toggle(SCORE_21_1).toggle(HOME_1)
        assert slip.odd_ids == (7,)
        assert slip.selected_match_id == 1

    def test_toggle_off_last_releases_match(self):
        slip = ParlaySlip().toggle(HOME_1).toggle(HOME_1)
        assert slip.is_empty
        assert slip.selected_match_id is None

    def test_other_match_without_confirmation_is_noop(self):
        slip = ParlaySlip().toggle(HOME_1).toggle(SCORE_21_1)
        assert slip.needs_confirmation(HOME_2)
        assert slip.toggle(HOME_2) is slip

    def test_other_match_with_confirmation_starts_over(self):
        slip = ParlaySlip().toggle(HOME_1).toggle(SCORE_21_1)
        switched = slip.toggle(HOME_2, confirm_switch=True)
        assert switched.selected_match_id == 2
        assert switched.odd_ids == (21,)

    def test_slip_is_immutable(self):
        empty = ParlaySlip()
        empty.toggle(HOME_1)
        assert empty.is_empty

    def test_clear(self):
        assert ParlaySlip().toggle(HOME_1).clear() == ParlaySlip()


@pytest.mark.parametrize("clicks", [
    [HOME_1, DRAW_1, HOME_1],
    [SCORE_21_1, SCORE_10_1, POSS_HOME_1, SCORE_21_1],
    [HOME_1, POSS_HOME_1, DRAW_1, SCORE_10_1, SCORE_21_1, DRAW_1],
])
def test_never_two_selections_in_one_market(clicks):
    slip = ParlaySlip()
    for odd in clicks:
        slip = slip.toggle(odd)
        assert len(slip.markets) == len(set(slip.markets))


# ---------------------------------------------------------------------------
# Multiplier and request
# ---------------------------------------------------------------------------

def test_empty_slip_has_no_multiplier():
    assert ParlaySlip().total_multiplier is None
    assert ParlaySlip().potential_payout(10) is None


def test_multiplier_and_payout():
    slip = ParlaySlip().toggle(HOME_1).toggle(SCORE_21_1)
    assert slip.total_multiplier == pytest.approx(15.2)
    assert slip.potential_payout(10) == pytest.approx(152.0)
    assert slip.potential_payout(-1) is None


def test_to_request():
    slip = ParlaySlip().toggle(HOME_1).toggle(SCORE_21_1)
    req = slip.to_request(10)
    assert req.match_id == 1
    assert req.odd_ids == (1, 7)
    assert req.amount == 10.0
    assert req.quoted_multiplier == pytest.approx(15.2)


def test_to_request_rejects_empty_slip():
    with pytest.raises(ValidationError):
        ParlaySlip().to_request(10)


@pytest.mark.parametrize("amount", [0, -3, float("nan"), "ten"])
def test_to_request_rejects_bad_amount(amount):
    with pytest.raises(ValidationError):
        ParlaySlip().toggle(HOME_1).to_request(amount)
