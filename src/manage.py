"""Orderflow database management CLI.

Provides commands to create and drop the orderflow database schema.

Usage:
    python src/manage.py setup-db   # Create all tables
    python src/manage.py drop-db    # Drop all tables
"""

import argparse
import sys


def setup_database():
    """Create the orderflow database schema."""
    from orderflow.domain import orderflow
    from orderflow.utils.db import setup_db

    print("Initializing orderflow domain...")
    orderflow.init()
    print("Creating orderflow database schema...")
    setup_db(orderflow)
    print("Done.")


def drop_database():
    """Drop the orderflow database schema."""
    from orderflow.domain import orderflow
    from orderflow.utils.db import drop_db

    print("Initializing orderflow domain...")
    orderflow.init()
    print("Dropping orderflow database schema...")
    drop_db(orderflow)
    print("Done.")


def main():
    parser = argparse.ArgumentParser(description="Orderflow database management")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")

    args = parser.parse_args()

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
