"""
Odds generation for newly created matches.

Prices the match_winner market from the head-to-head record of the two
players, then appends the two fixed auxiliary markets (possession and exact
score).  The generator never blocks match creation: when history is too
thin, or the statistical step raises, the fallback table from
``MarketConfig`` is published instead and the degradation is logged.
"""

import logging
from typing import Dict, Iterable, List, Optional

from backend.core.errors import DependencyError
from backend.core.market_config import AWAY, DRAW, HOME, MarketConfig, WinnerOdds
from backend.core.odds_math import price_with_margin, smoothed_probabilities
from backend.models import MARKET_EXACT_SCORE, MARKET_MATCH_WINNER, MARKET_POSSESSION

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Head-to-head tally (pure functions, no DB)
# ---------------------------------------------------------------------------

def tally_head_to_head(history: Iterable, player_a_id: int) -> Dict[str, int]:
    """
    Count home/draw/away outcomes from player A's point of view.

    ``history`` holds finished matches between the same two players in
    either orientation; a match where A was recorded as ``player_b`` has its
    score mirrored.  Raises DependencyError on a row without a score.
    """
    counts = {HOME: 0, DRAW: 0, AWAY: 0}
    for match in history:
        if match.score_a is None or match.score_b is None:
            raise DependencyError(f"Finished match {match.id} has no recorded score")

        if match.player_a_id == player_a_id:
            own, other = match.score_a, match.score_b
        else:
            own, other = match.score_b, match.score_a

        if own > other:
            counts[HOME] += 1
        elif own < other:
            counts[AWAY] += 1
        else:
            counts[DRAW] += 1
    return counts


def price_winner_market(counts: Dict[str, int], config: MarketConfig) -> WinnerOdds:
    """Smoothed probabilities and margin-adjusted decimal odds."""
    try:
        probs = smoothed_probabilities(counts, config.prior, config.prior_weight)
        return WinnerOdds(
            odd_a=price_with_margin(probs[HOME], config.overround_margin, config.min_decimal_odds),
            odd_b=price_with_margin(probs[AWAY], config.overround_margin, config.min_decimal_odds),
            odd_draw=price_with_margin(probs[DRAW], config.overround_margin, config.min_decimal_odds),
            prob_a=probs[HOME],
            prob_b=probs[AWAY],
            prob_draw=probs[DRAW],
        )
    except (ValueError, ZeroDivisionError, KeyError) as exc:
        raise DependencyError(f"Winner market pricing failed: {exc}") from exc


def resolve_config(config: Optional[MarketConfig] = None) -> MarketConfig:
    """The given config, else the environment one, else the house defaults."""
    if config is not None:
        return config
    try:
        return MarketConfig.from_env()
    except ValueError as exc:
        logger.warning("Invalid market configuration in environment, using defaults: %s", exc)
        return MarketConfig.default()


def generate_winner_odds(
    history: Optional[List],
    player_a_id: int,
    config: Optional[MarketConfig] = None,
) -> WinnerOdds:
    """
    match_winner prices for player A (home) vs player B (away).

    Returns ``config.fallback`` when the history could not be loaded
    (``None``), when fewer than ``config.min_history`` finished head-to-head
    matches exist, or when pricing fails.
    """
    config = resolve_config(config)

    if history is None:
        logger.warning("No head-to-head history available, publishing fallback odds")
        return config.fallback

    if len(history) < config.min_history:
        logger.warning(
            "Head-to-head history too short (%d < %d), publishing fallback odds",
            len(history), config.min_history,
        )
        return config.fallback

    try:
        counts = tally_head_to_head(history, player_a_id)
        odds = price_winner_market(counts, config)
    except Exception as exc:
        logger.warning("Odds model failed, publishing fallback odds: %s", exc)
        return config.fallback

    logger.info(
        "Priced from %d h2h matches %s: home %.2f / draw %.2f / away %.2f",
        len(history), counts, odds.odd_a, odds.odd_draw, odds.odd_b,
    )
    return odds


def build_market_rows(
    match_id: int,
    winner: WinnerOdds,
    config: Optional[MarketConfig] = None,
) -> List[Dict]:
    """All Odd rows for a new match: match_winner, possession, exact_score."""
    config = resolve_config(config)
    rows: List[Dict] = []

    for market_type, selections in (
        (MARKET_MATCH_WINNER, winner.as_selections()),
        (MARKET_POSSESSION, config.possession),
        (MARKET_EXACT_SCORE, config.exact_score),
    ):
        for sel in selections:
            rows.append({
                "match_id": match_id,
                "market_type": market_type,
                "selection": sel.selection,
                "value": sel.value,
                "probability": sel.probability,
            })
    return rows
