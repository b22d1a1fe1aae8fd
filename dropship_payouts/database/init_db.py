"""
Database initialization script.
"""
import logging

from dropship_payouts.database.config import SessionLocal, init_db as create_tables
from dropship_payouts.data_import.db_operations import seed_default_shipping_rates

logger = logging.getLogger(__name__)


def init_db(seed: bool = True):
    """Create all tables and seed the baseline carrier rates."""
    create_tables()
    if not seed:
        return
    session = SessionLocal()
    try:
        seed_default_shipping_rates(session)
    finally:
        session.close()


if __name__ == "__main__":
    print("Initializing database...")
    init_db()
    print("Database initialization complete!")
