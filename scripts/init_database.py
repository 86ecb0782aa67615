#!/usr/bin/env python3
"""
Initialize the library circulation database.

This script:
1. Creates all database tables and indexes
2. Optionally loads Faker-generated sample data
3. Verifies the expected tables exist

Usage:
    python scripts/init_database.py [--drop-existing] [--sample-data] [--database-url URL]
"""

import argparse
import logging
import sys

from sqlalchemy import inspect

from library_circulation.database import get_db_manager
from library_circulation.database.seed import seed_database

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

EXPECTED_TABLES = {
    "members",
    "authors",
    "publishers",
    "books",
    "book_authors",
    "book_copies",
    "loans",
    "reservations",
    "fines",
    "staff",
    "audit_log",
}


def main():
    """Main entry point for database initialization."""
    parser = argparse.ArgumentParser(description="Initialize the library circulation database")
    parser.add_argument(
        "--drop-existing",
        action="store_true",
        help="Drop existing tables before creating new ones",
    )
    parser.add_argument(
        "--sample-data",
        action="store_true",
        help="Load sample data after creating tables",
    )
    parser.add_argument(
        "--database-url",
        help="Override default database URL",
    )

    args = parser.parse_args()

    logger.info("Initializing database manager...")
    db_manager = get_db_manager(args.database_url)

    if not db_manager.verify_connection():
        logger.error("Failed to connect to database")
        sys.exit(1)

    try:
        db_manager.init_database(drop_existing=args.drop_existing)

        tables = set(inspect(db_manager.engine).get_table_names())
        logger.info("Tables: %s", ", ".join(sorted(tables)))
        missing = EXPECTED_TABLES - tables
        if missing:
            logger.error("Missing expected tables: %s", ", ".join(sorted(missing)))
            sys.exit(1)

        if args.sample_data:
            logger.info("Loading sample data...")
            with db_manager.session_scope() as session:
                summary = seed_database(session)
            if summary.refused:
                logger.info("%d sample operations were refused by the rules", len(summary.refused))

        logger.info("Database initialization complete")

    except Exception:
        logger.exception("Database initialization failed")
        sys.exit(1)
    finally:
        db_manager.close()


if __name__ == "__main__":
    main()
