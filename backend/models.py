"""
Database models for the Arena wagering engine
SQLAlchemy ORM with PostgreSQL
"""

from sqlalchemy import (
    create_engine,
    CheckConstraint,
    Column,
    Integer,
    String,
    Float,
    DateTime,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker, relationship
from datetime import datetime
import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "postgresql://postgres@127.0.0.1:5432/arena_bets")

# pool_pre_ping keeps long-lived connections healthy between polls
engine = create_engine(DATABASE_URL, pool_pre_ping=True, echo=False)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


# Dependency for FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Match lifecycle
MATCH_OPEN = "open"
MATCH_FINISHED = "finished"

# Wager lifecycle
BET_PENDING = "pending"
BET_WON = "won"
BET_LOST = "lost"

# Markets
MARKET_MATCH_WINNER = "match_winner"
MARKET_POSSESSION = "possession"
MARKET_EXACT_SCORE = "exact_score"
MARKET_TYPES = (MARKET_MATCH_WINNER, MARKET_POSSESSION, MARKET_EXACT_SCORE)


class Profile(Base):
    """Ledger account: one balance per authenticated user"""

    __tablename__ = "profiles"

    id = Column(String, primary_key=True)  # Auth user identifier
    role = Column(String, nullable=False, default="user")  # "user" | "admin"
    balance = Column(Float, nullable=False, default=0.0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    bets = relationship("Bet", back_populates="profile")

    __table_args__ = (CheckConstraint("balance >= 0", name="ck_profiles_balance_non_negative"),)


class Player(Base):
    """A registered competitor"""

    __tablename__ = "players"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    category = Column(String, nullable=False, default="home")  # "home" | "away" (unused tag)

    created_at = Column(DateTime, default=datetime.utcnow)


class Match(Base):
    """Head-to-head match between two players"""

    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, index=True)
    player_a_id = Column(Integer, ForeignKey("players.id"), nullable=False, index=True)
    player_b_id = Column(Integer, ForeignKey("players.id"), nullable=False, index=True)
    game_type = Column(String, nullable=False, default="FIFA")
    scheduled_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    status = Column(String, nullable=False, default=MATCH_OPEN, index=True)  # "open" | "finished"

    # Result (filled when the operator finishes the match)
    score_a = Column(Integer)
    score_b = Column(Integer)
    possession_home = Column(Integer)
    possession_away = Column(Integer)
    possession_winner = Column(String)  # "home" | "away" | "equal"
    finished_at = Column(DateTime)

    # Relationships
    player_a = relationship("Player", foreign_keys=[player_a_id])
    player_b = relationship("Player", foreign_keys=[player_b_id])
    odds = relationship("Odd", back_populates="match", order_by="Odd.id")
    bets = relationship("Bet", back_populates="match")

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("player_a_id <> player_b_id", name="ck_matches_distinct_players"),
    )

    @property
    def is_open(self) -> bool:
        return self.status == MATCH_OPEN


class Odd(Base):
    """A priced selection within one market of one match (immutable once written)"""

    __tablename__ = "odds"

    id = Column(Integer, primary_key=True, index=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False, index=True)
    market_type = Column(String, nullable=False)  # match_winner | possession | exact_score
    selection = Column(String, nullable=False)  # "home", "draw", "equal", "2-1", ...
    value = Column(Float, nullable=False)  # Decimal odds
    probability = Column(Float)  # Implied probability in [0, 1]

    match = relationship("Match", back_populates="odds")

    __table_args__ = (
        UniqueConstraint("match_id", "market_type", "selection", name="_odd_match_market_selection_uc"),
        CheckConstraint("value >= 1.0", name="ck_odds_value_min"),
    )


class Bet(Base):
    """A wager (single or parlay) placed by a user on one match"""

    __tablename__ = "bets"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("profiles.id"), nullable=False, index=True)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False, index=True)

    amount = Column(Float, nullable=False)
    total_odds = Column(Float, nullable=False)  # Combined multiplier at placement
    potential_payout = Column(Float, nullable=False)

    status = Column(String, nullable=False, default=BET_PENDING, index=True)  # pending | won | lost
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    settled_at = Column(DateTime)

    profile = relationship("Profile", back_populates="bets")
    match = relationship("Match", back_populates="bets")
    selections = relationship(
        "BetSelection",
        back_populates="bet",
        order_by="BetSelection.position",
        cascade="all, delete-orphan",
    )

    __table_args__ = (CheckConstraint("amount > 0", name="ck_bets_amount_positive"),)


class BetSelection(Base):
    """One leg of a wager, pointing at the priced odd it was placed on"""

    __tablename__ = "bet_selections"

    id = Column(Integer, primary_key=True, index=True)
    bet_id = Column(Integer, ForeignKey("bets.id", ondelete="CASCADE"), nullable=False, index=True)
    odd_id = Column(Integer, ForeignKey("odds.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)  # Order chosen by the user

    bet = relationship("Bet", back_populates="selections")
    odd = relationship("Odd")

    __table_args__ = (UniqueConstraint("bet_id", "odd_id", name="_bet_selection_odd_uc"),)
