"""Shared pytest fixtures for the Arena wagering engine tests."""

import os
import sys
from pathlib import Path
from typing import Generator

# Configure the environment before anything imports backend.*
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["API_KEY_USER1"] = "admin-test-key"
os.environ["API_KEY_USER2"] = "player-test-key"
os.environ["ADMIN_USERS"] = "user1"
os.environ["STARTING_BALANCE"] = "1000"
for _knob in ("OVERROUND_MARGIN", "MIN_H2H_HISTORY", "PRIOR_WEIGHT", "GAME_TYPE_DEFAULT"):
    os.environ.pop(_knob, None)

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Add project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

ADMIN_KEY = "admin-test-key"
PLAYER_KEY = "player-test-key"


@pytest.fixture(scope="function")
def session_factory():
    """Isolated in-memory database shared by every session of one test."""
    from backend.models import Base

    # StaticPool keeps the single in-memory connection alive so sessions
    # opened by TestClient requests see the same data.
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory

    engine.dispose()


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


# ---------------------------------------------------------------------------
# Domain fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def players(db_session):
    """Two registered players (home, away)."""
    from backend.services import catalog

    a = catalog.create_player(db_session, "Carlos", "home")
    b = catalog.create_player(db_session, "Dani", "away")
    return a, b


@pytest.fixture
def open_match(db_session, players):
    """A fresh open match between the two players, odds published."""
    from backend.services import catalog

    a, b = players
    return catalog.create_match(db_session, a.id, b.id)


def fund(db, user_id, balance):
    """Open a ledger account with an explicit balance and commit."""
    from backend.services import ledger

    profile = ledger.open_account(db, user_id, starting_balance=balance)
    db.commit()
    return profile


def odd_for(match, market_type, selection):
    """Look up one published odd on a match."""
    for odd in match.odds:
        if odd.market_type == market_type and odd.selection == selection:
            return odd
    raise LookupError(f"No {market_type}/{selection} odd on match {match.id}")
