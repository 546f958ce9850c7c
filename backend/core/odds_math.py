"""Fundamental odds mathematics: the single source of truth.

Every function here is **pure**: no I/O, no logging, no side effects.
Import from this module; never reimplement locally in services or models.

The three pillars exposed are:

1. **Conversion**: decimal odds ↔ implied probability.
2. **Pricing**: smoothed outcome probabilities and margin-adjusted odds.
3. **Parlay arithmetic**: the combined multiplier and potential payout.

Design decisions
----------------
* Odds are always **decimal** (European).  A decimal price is the total
  return per unit staked, stake included, so ``payout = stake × odds``.
* The parlay multiplier is the plain product of leg prices.  Both the
  slip builder and the wager service call :func:`combined_multiplier` so
  that the number a user is shown and the number written to the ticket are
  computed identically.
* Margin is applied multiplicatively to each fair probability
  (``p · (1 + m)``), so implied probabilities of a priced market sum to
  ``1 + m`` before rounding.

Run tests with::

    pytest tests/test_odds_math.py -v
"""

from __future__ import annotations

import math
from typing import Final, Iterable, Mapping, Sequence

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

#: Lowest legal decimal price.  1.0 returns the stake and nothing else.
MIN_DECIMAL_ODDS: Final[float] = 1.0

#: Decimal places used for published prices.
PRICE_DECIMALS: Final[int] = 2

#: Tolerance for "probabilities sum to one" checks.
_PROB_SUM_TOL: Final[float] = 1e-6


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------


def implied_prob(decimal_odds: float) -> float:
    """Implied probability of a decimal price (margin-inclusive).

    Examples::

        implied_prob(2.00) → 0.5000
        implied_prob(1.85) → 0.5405

    Raises:
        ValueError: If ``decimal_odds < 1.0``.
    """
    if decimal_odds < MIN_DECIMAL_ODDS:
        raise ValueError(
            f"Decimal odds {decimal_odds!r} must be ≥ 1.0 (probability ≤ 1)."
        )
    return 1.0 / decimal_odds


def book_overround(prices: Iterable[float]) -> float:
    """Sum of implied probabilities across one market.

    A fair book returns 1.0; anything above is the house margin.
    """
    return sum(implied_prob(p) for p in prices)


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------


def normalize(probs: Mapping[str, float]) -> dict[str, float]:
    """Scale non-negative weights so they sum to exactly 1.0.

    Raises:
        ValueError: On negative weights or a zero total.
    """
    if any(v < 0 for v in probs.values()):
        raise ValueError(f"Probabilities must be non-negative: {dict(probs)!r}")
    total = sum(probs.values())
    if total <= 0:
        raise ValueError("Cannot normalise an all-zero distribution")
    return {k: v / total for k, v in probs.items()}


def smoothed_probabilities(
    counts: Mapping[str, int],
    prior: Mapping[str, float],
    prior_weight: float,
) -> dict[str, float]:
    """Dirichlet-smoothed outcome frequencies.

    Each outcome receives ``prior_weight · prior[k]`` pseudo-observations
    before the observed ``counts`` are added::

        p_k = (c_k + w · π_k) / (n + w)

    With ``n = 0`` this returns the prior unchanged; as ``n`` grows the
    observed frequencies dominate.

    Args:
        counts: Observed outcome counts keyed by outcome label.
        prior: Prior distribution over the same labels (must sum to 1).
        prior_weight: Total pseudo-count mass ``w`` (≥ 0).

    Raises:
        ValueError: If labels differ, the prior does not sum to 1, or
            ``prior_weight`` is negative.
    """
    if set(counts) != set(prior):
        raise ValueError(
            f"Outcome labels differ: counts={sorted(counts)} prior={sorted(prior)}"
        )
    if prior_weight < 0:
        raise ValueError(f"prior_weight must be ≥ 0, got {prior_weight!r}")
    if abs(sum(prior.values()) - 1.0) > _PROB_SUM_TOL:
        raise ValueError(f"Prior must sum to 1.0, got {sum(prior.values())!r}")

    n = sum(counts.values())
    if n + prior_weight <= 0:
        raise ValueError("No observations and no prior mass to price from")

    raw = {k: (counts[k] + prior_weight * prior[k]) / (n + prior_weight) for k in counts}
    # Renormalise to absorb floating-point drift.
    return normalize(raw)


def price_with_margin(
    prob: float,
    margin: float,
    floor: float = MIN_DECIMAL_ODDS,
) -> float:
    """Decimal price for a fair probability after applying the house margin.

    ``odds = 1 / (p · (1 + margin))``, rounded to two decimals and clamped
    to ``floor``.

    Examples::

        price_with_margin(0.50, 0.05)  → 1.90
        price_with_margin(0.25, 0.05)  → 3.81

    Raises:
        ValueError: If ``prob`` is outside ``(0, 1]`` or ``margin < 0``.
    """
    if not (0.0 < prob <= 1.0):
        raise ValueError(f"Probability {prob!r} must be in (0, 1].")
    if margin < 0:
        raise ValueError(f"Margin {margin!r} must be ≥ 0.")
    fair = 1.0 / (prob * (1.0 + margin))
    return max(floor, round(fair, PRICE_DECIMALS))


# ---------------------------------------------------------------------------
# Parlay arithmetic
# ---------------------------------------------------------------------------


def combined_multiplier(values: Sequence[float]) -> float:
    """Product of leg prices for a parlay.

    Raises:
        ValueError: If ``values`` is empty or any price is not a finite
            number ≥ 1.0.  An empty slip has no usable multiplier.
    """
    if not values:
        raise ValueError("A parlay needs at least one selection")
    multiplier = 1.0
    for v in values:
        if v is None or not math.isfinite(v) or v < MIN_DECIMAL_ODDS:
            raise ValueError(f"Invalid leg price {v!r}")
        multiplier *= v
    return multiplier


def potential_payout(amount: float, multiplier: float) -> float:
    """Total return of a winning ticket, stake included."""
    return amount * multiplier


def is_valid_stake(amount) -> bool:
    """True for a positive, finite real number (bools excluded)."""
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        return False
    return math.isfinite(amount) and amount > 0
