"""
User balance ledger.

The ledger is the only code that writes ``profiles.balance``.  Every write
is a single conditional UPDATE evaluated by the database, so two requests
racing on the same account are linearised by the row lock rather than by a
read-then-write in Python:

    debit:  UPDATE profiles SET balance = balance - :amt
            WHERE id = :uid AND balance >= :amt
    credit: UPDATE profiles SET balance = balance + :amt WHERE id = :uid

None of these functions commit.  They join the caller's transaction so a
debit and the wager rows it pays for succeed or fail together.
"""

import logging
import os
from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from backend.core.errors import ConflictError, ValidationError
from backend.core.odds_math import is_valid_stake
from backend.models import Profile

logger = logging.getLogger(__name__)


def _starting_balance() -> float:
    return float(os.getenv("STARTING_BALANCE", "1000"))


def open_account(
    db: Session,
    user_id: str,
    role: str = "user",
    starting_balance: Optional[float] = None,
) -> Profile:
    """
    Return the user's ledger account, creating it on first sight.

    Idempotent: an existing account is returned untouched (its balance and
    role are never reset).  Flushes but does not commit.
    """
    if not user_id:
        raise ValidationError("user_id is required")

    profile = db.get(Profile, user_id)
    if profile is not None:
        return profile

    opening = _starting_balance() if starting_balance is None else float(starting_balance)
    if opening < 0:
        raise ValidationError("Starting balance cannot be negative")

    profile = Profile(id=user_id, role=role, balance=opening)
    db.add(profile)
    db.flush()
    logger.info("Opened ledger account %s (%s) with balance %.2f", user_id, role, opening)
    return profile


def get_balance(db: Session, user_id: str) -> float:
    """Current balance; ValidationError for an unknown account."""
    balance = db.query(Profile.balance).filter(Profile.id == user_id).scalar()
    if balance is None:
        raise ValidationError(f"Unknown user {user_id!r}")
    return float(balance)


def debit(db: Session, user_id: str, amount: float) -> None:
    """
    Atomically subtract ``amount`` if and only if the balance covers it.

    Raises:
        ValidationError: Non-positive amount or unknown account.
        ConflictError: Balance lower than ``amount`` at the moment of the
            write.  The balance is unchanged.
    """
    if not is_valid_stake(amount):
        raise ValidationError(f"Debit amount must be a positive number, got {amount!r}")

    result = db.execute(
        update(Profile)
        .where(Profile.id == user_id, Profile.balance >= amount)
        .values(balance=Profile.balance - amount, updated_at=datetime.utcnow())
    )
    if result.rowcount == 1:
        return

    exists = db.query(Profile.id).filter(Profile.id == user_id).first()
    if exists is None:
        raise ValidationError(f"Unknown user {user_id!r}")
    raise ConflictError("Insufficient balance", retryable=False)


def credit(db: Session, user_id: str, amount: float) -> None:
    """Atomically add ``amount`` to the user's balance."""
    if not is_valid_stake(amount):
        raise ValidationError(f"Credit amount must be a positive number, got {amount!r}")

    result = db.execute(
        update(Profile)
        .where(Profile.id == user_id)
        .values(balance=Profile.balance + amount, updated_at=datetime.utcnow())
    )
    if result.rowcount != 1:
        raise ValidationError(f"Unknown user {user_id!r}")
