"""Market configuration: every pricing constant in one place.

This module is the **registry** for the numbers the odds generator
publishes.  Nowhere else in the codebase should the fallback prices, the
possession table, or the exact-score table be hard-coded.

Architecture
------------
:class:`MarketConfig` is a frozen dataclass.  :meth:`MarketConfig.default`
returns the house configuration; :meth:`MarketConfig.from_env` applies the
numeric overrides from the environment.  To tweak one constant for a test or
a promotion, use :func:`dataclasses.replace`::

    from dataclasses import replace
    from backend.core.market_config import MarketConfig

    cfg = replace(MarketConfig.default(), overround_margin=0.08)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Final

# ---------------------------------------------------------------------------
# Outcome labels
# ---------------------------------------------------------------------------

#: match_winner selections, from player A's point of view.
HOME: Final[str] = "home"
DRAW: Final[str] = "draw"
AWAY: Final[str] = "away"

#: possession selection for a tied share.
EQUAL: Final[str] = "equal"


@dataclass(frozen=True)
class PricedSelection:
    """A fixed (selection, decimal odds, implied probability) triple."""

    selection: str
    value: float
    probability: float


@dataclass(frozen=True)
class WinnerOdds:
    """match_winner prices and the probabilities behind them.

    ``a`` is player A (home), ``b`` is player B (away).
    """

    odd_a: float
    odd_b: float
    odd_draw: float
    prob_a: float
    prob_b: float
    prob_draw: float
    is_fallback: bool = False

    def as_selections(self) -> list[PricedSelection]:
        return [
            PricedSelection(HOME, self.odd_a, self.prob_a),
            PricedSelection(DRAW, self.odd_draw, self.prob_draw),
            PricedSelection(AWAY, self.odd_b, self.prob_b),
        ]


#: Prices published when the statistical model cannot run or has too little
#: history.  Part of the pricing contract, not an error path.
FALLBACK_WINNER_ODDS: Final[WinnerOdds] = WinnerOdds(
    odd_a=1.90, odd_b=2.50, odd_draw=3.00,
    prob_a=0.5, prob_b=0.2, prob_draw=0.3,
    is_fallback=True,
)

#: Flat possession market.
POSSESSION_TABLE: Final[tuple[PricedSelection, ...]] = (
    PricedSelection(HOME, 1.85, 0.50),
    PricedSelection(AWAY, 1.85, 0.50),
    PricedSelection(EQUAL, 8.00, 0.10),
)

#: Designer-chosen exact-score prices, independent of head-to-head history.
EXACT_SCORE_TABLE: Final[tuple[PricedSelection, ...]] = (
    PricedSelection("1-0", 5.00, 0.15),
    PricedSelection("2-0", 7.50, 0.10),
    PricedSelection("2-1", 8.00, 0.10),
    PricedSelection("0-1", 6.00, 0.12),
    PricedSelection("1-1", 5.50, 0.14),
    PricedSelection("0-0", 9.00, 0.08),
    PricedSelection("0-2", 7.50, 0.10),
    PricedSelection("1-2", 8.00, 0.10),
)


def _uniform_prior() -> dict[str, float]:
    return {HOME: 1.0 / 3.0, DRAW: 1.0 / 3.0, AWAY: 1.0 / 3.0}


@dataclass(frozen=True)
class MarketConfig:
    """Immutable pricing configuration.

    Attributes:
        overround_margin: House margin applied to each fair probability.
            0.05 makes a three-way book sum to ~1.05 implied.
        min_history: Finished head-to-head matches required before the
            statistical model is trusted.  Below this the fallback table is
            published.
        prior_weight: Pseudo-count mass of the uninformative prior blended
            into observed head-to-head frequencies.
        prior: Prior distribution over home/draw/away.
        min_decimal_odds: Lowest price the generator will publish.
        fallback: Prices used when the model is skipped or fails.
        possession: Fixed possession market.
        exact_score: Fixed exact-score market.
    """

    overround_margin: float = 0.05
    min_history: int = 1
    prior_weight: float = 3.0
    prior: dict[str, float] = field(default_factory=_uniform_prior)
    min_decimal_odds: float = 1.01
    fallback: WinnerOdds = FALLBACK_WINNER_ODDS
    possession: tuple[PricedSelection, ...] = POSSESSION_TABLE
    exact_score: tuple[PricedSelection, ...] = EXACT_SCORE_TABLE

    @classmethod
    def default(cls) -> MarketConfig:
        return cls()

    @classmethod
    def from_env(cls) -> MarketConfig:
        """House configuration with numeric overrides from the environment.

        Reads ``OVERROUND_MARGIN``, ``MIN_H2H_HISTORY`` and ``PRIOR_WEIGHT``.
        """
        return cls(
            overround_margin=float(os.getenv("OVERROUND_MARGIN", "0.05")),
            min_history=int(os.getenv("MIN_H2H_HISTORY", "1")),
            prior_weight=float(os.getenv("PRIOR_WEIGHT", "3.0")),
        )
