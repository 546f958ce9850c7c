#!/usr/bin/env python3
"""
Database initialization script
Creates all tables and optionally seeds demo players and accounts
"""

import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Load .env file
from dotenv import load_dotenv
load_dotenv()

from backend.models import Base, engine, SessionLocal, Player
from backend.auth import get_valid_api_keys, role_for
from backend.services import catalog, ledger
import logging
from sqlalchemy import text, inspect

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEMO_PLAYERS = [("Carlos", "home"), ("Dani", "away"), ("Mika", "home"), ("Ren", "away")]


def init_database(drop_existing: bool = False):
    """
    Initialize database tables

    Args:
        drop_existing: If True, drops all tables first (DANGER: data loss!)
    """
    logger.info("🔧 Initializing Arena Bets database...")

    if drop_existing:
        logger.warning("⚠️  Dropping all existing tables!")
        response = input("Are you sure? This will delete all data. Type 'yes' to confirm: ")
        if response.lower() != 'yes':
            logger.info("Aborted.")
            return

        Base.metadata.drop_all(bind=engine)
        logger.info("✅ Existing tables dropped")

    # Create all tables
    Base.metadata.create_all(bind=engine)
    logger.info("✅ Database tables created successfully")

    # List created tables
    inspector = inspect(engine)
    tables = inspector.get_table_names()
    logger.info("📋 Tables: %s", ", ".join(tables))

    return True


def seed_demo_data():
    """Add demo players, one open match, and a ledger account per API key"""
    logger.info("🌱 Seeding demo data...")

    db = SessionLocal()

    try:
        for user in sorted(set(get_valid_api_keys().values())):
            ledger.open_account(db, user, role=role_for(user))
        db.commit()

        if db.query(Player).count() == 0:
            players = [catalog.create_player(db, name, category) for name, category in DEMO_PLAYERS]
            catalog.create_match(db, players[0].id, players[1].id)

        logger.info("✅ Demo data seeded")

    except Exception as e:
        logger.error("❌ Error seeding data: %s", e)
        db.rollback()

    finally:
        db.close()


def check_connection():
    """Test database connection"""
    try:
        db = SessionLocal()
        db.execute(text("SELECT 1"))
        db.close()
        logger.info("✅ Database connection successful")
        return True
    except Exception as e:
        logger.error("❌ Database connection failed: %s", e)
        return False


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Initialize Arena Bets database")
    parser.add_argument("--drop", action="store_true", help="Drop existing tables (DANGER!)")
    parser.add_argument("--seed", action="store_true", help="Seed demo data")
    parser.add_argument("--check", action="store_true", help="Only check connection")

    args = parser.parse_args()

    if args.check:
        check_connection()
    else:
        if check_connection():
            init_database(drop_existing=args.drop)

            if args.seed:
                seed_demo_data()

            logger.info("🎉 Database initialization complete!")
        else:
            logger.error("Cannot initialize database - connection failed")
            sys.exit(1)
