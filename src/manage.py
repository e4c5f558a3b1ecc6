"""Bakery payments database management CLI.

Provides commands to create and drop the payments database schema.

Usage:
    python src/manage.py setup-db   # Create all tables
    python src/manage.py drop-db    # Drop all tables
"""

import argparse
import sys


def setup_database():
    """Create the payments database schema."""
    from payments.domain import payments
    from payments.utils.db import setup_db

    print("Initializing payments domain...")
    payments.init()
    print("Creating payments database schema...")
    setup_db(payments)
    print("Done.")


def drop_database():
    """Drop the payments database schema."""
    from payments.domain import payments
    from payments.utils.db import drop_db

    print("Initializing payments domain...")
    payments.init()
    print("Dropping payments database schema...")
    drop_db(payments)
    print("Done.")


def main():
    parser = argparse.ArgumentParser(description="Bakery payments database management")
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
