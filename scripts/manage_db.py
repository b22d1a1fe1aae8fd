#!/usr/bin/env python3
"""
Database management script for handling migrations and seeding.
"""
import sys
import argparse
import logging
from pathlib import Path
from dotenv import load_dotenv

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.append(str(project_root))

from alembic.config import Config
from alembic import command

logger = logging.getLogger(__name__)


def _alembic_config() -> Config:
    return Config(str(project_root / "alembic.ini"))


def create_migration(message):
    """Create a new database migration."""
    command.revision(_alembic_config(), autogenerate=True, message=message)


def run_migrations():
    """Run all pending migrations."""
    command.upgrade(_alembic_config(), "head")


def rollback_migration(revision):
    """Rollback to a specific migration revision."""
    command.downgrade(_alembic_config(), revision)


def setup_argparse():
    parser = argparse.ArgumentParser(description='Database Management Tool')
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    init_parser = subparsers.add_parser('init', help='Create tables and seed default carrier rates')
    init_parser.add_argument('--no-seed', action='store_true', help='Skip seeding default shipping rates')

    subparsers.add_parser('seed', help='Seed default carrier shipping rates')
    subparsers.add_parser('migrate', help='Run pending migrations')

    revision_parser = subparsers.add_parser('revision', help='Create a new migration')
    revision_parser.add_argument('message', help='Migration message')

    downgrade_parser = subparsers.add_parser('downgrade', help='Rollback to a migration revision')
    downgrade_parser.add_argument('revision', help='Target revision')

    return parser


def main():
    # Load environment variables
    load_dotenv(project_root / '.env')

    parser = setup_argparse()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Imported after .env is loaded so DATABASE_URL is picked up
    from dropship_payouts.database.init_db import init_db
    from dropship_payouts.database.config import SessionLocal
    from dropship_payouts.data_import.db_operations import seed_default_shipping_rates

    try:
        if args.command == 'init':
            init_db(seed=not args.no_seed)
            logger.info("Database initialized")

        elif args.command == 'seed':
            session = SessionLocal()
            try:
                added = seed_default_shipping_rates(session)
            finally:
                session.close()
            logger.info(f"Seeded {added} default shipping rate(s)")

        elif args.command == 'migrate':
            run_migrations()
            logger.info("Migrations applied")

        elif args.command == 'revision':
            create_migration(args.message)

        elif args.command == 'downgrade':
            rollback_migration(args.revision)
            logger.info(f"Rolled back to {args.revision}")

    except Exception as e:
        logger.error(f"Error: {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
