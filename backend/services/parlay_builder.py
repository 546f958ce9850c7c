"""
Bet slip builder for single-match parlays.

A ``ParlaySlip`` is an immutable value: every operation returns a new slip,
so a front end can keep one per session and replace it on each click.  The
rules applied on every toggle:

    1. Single match: all selections belong to one match.  Picking an odd
       from another match is a no-op unless the caller confirms the switch,
       which discards the current selections.
    2. Market exclusivity: at most one selection per market_type.  A new
       pick in an occupied market replaces the old one.
    3. Toggle-off: picking a selected odd removes it; an empty slip
       releases the match lock.

The multiplier shown here is advisory.  The wager service recomputes it
from persisted Odd rows with the same ``combined_multiplier`` function.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

from backend.core.errors import ValidationError
from backend.core.odds_math import combined_multiplier, is_valid_stake, potential_payout

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OddQuote:
    """Snapshot of one priced odd as the user saw it."""

    id: int
    match_id: int
    market_type: str
    selection: str
    value: float

    @classmethod
    def from_odd(cls, odd) -> "OddQuote":
        return cls(
            id=odd.id,
            match_id=odd.match_id,
            market_type=odd.market_type,
            selection=odd.selection,
            value=float(odd.value),
        )


@dataclass(frozen=True)
class WagerRequest:
    """Validated payload for the wager service."""

    match_id: int
    amount: float
    odd_ids: Tuple[int, ...]
    quoted_multiplier: float


@dataclass(frozen=True)
class ParlaySlip:
    selected_match_id: Optional[int] = None
    selections: Tuple[OddQuote, ...] = field(default_factory=tuple)

    # ------------------------------------------------------------------ #
    #  Queries                                                             #
    # ------------------------------------------------------------------ #

    @property
    def is_empty(self) -> bool:
        return not self.selections

    @property
    def odd_ids(self) -> Tuple[int, ...]:
        return tuple(s.id for s in self.selections)

    @property
    def markets(self) -> List[str]:
        return [s.market_type for s in self.selections]

    def is_selected(self, odd: OddQuote) -> bool:
        return any(s.id == odd.id for s in self.selections)

    def needs_confirmation(self, odd: OddQuote) -> bool:
        """True when toggling ``odd`` would discard a slip on another match."""
        return self.selected_match_id is not None and self.selected_match_id != odd.match_id

    @property
    def total_multiplier(self) -> Optional[float]:
        """Product of selected prices, or None for an empty slip."""
        if self.is_empty:
            return None
        return combined_multiplier([s.value for s in self.selections])

    def potential_payout(self, amount: float) -> Optional[float]:
        multiplier = self.total_multiplier
        if multiplier is None or not is_valid_stake(amount):
            return None
        return potential_payout(amount, multiplier)

    # ------------------------------------------------------------------ #
    #  Transitions                                                         #
    # ------------------------------------------------------------------ #

    def toggle(self, odd: OddQuote, confirm_switch: bool = False) -> "ParlaySlip":
        """Apply one click on ``odd`` and return the resulting slip."""
        if self.needs_confirmation(odd):
            if not confirm_switch:
                return self
            logger.debug(
                "Slip switched from match %s to match %s", self.selected_match_id, odd.match_id
            )
            return ParlaySlip(selected_match_id=odd.match_id, selections=(odd,))

        if self.is_selected(odd):
            remaining = tuple(s for s in self.selections if s.id != odd.id)
            if not remaining:
                return ParlaySlip()
            return replace(self, selections=remaining)

        kept = tuple(s for s in self.selections if s.market_type != odd.market_type)
        return ParlaySlip(selected_match_id=odd.match_id, selections=kept + (odd,))

    def clear(self) -> "ParlaySlip":
        return ParlaySlip()

    def to_request(self, amount: float) -> WagerRequest:
        """Freeze the slip into a wager request; the slip itself is unchanged."""
        if self.is_empty or self.selected_match_id is None:
            raise ValidationError("Select at least one odd before placing a wager")
        if not is_valid_stake(amount):
            raise ValidationError(f"Stake must be a positive number, got {amount!r}")

        return WagerRequest(
            match_id=self.selected_match_id,
            amount=float(amount),
            odd_ids=self.odd_ids,
            quoted_multiplier=self.total_multiplier,
        )
