"""Settlement database management CLI.

Creates and drops the settlement schema using the setup_db/drop_db
utilities, against the database configured for the selected environment.

Usage:
    python src/manage.py setup-db                 # Create all tables
    python src/manage.py drop-db                  # Drop all tables
    python src/manage.py setup-db --env production
"""

import argparse
import os
import sys


def setup_database(env=None):
    """Create the settlement schema."""
    if env:
        os.environ["PROTEAN_ENV"] = env
    from settlement.domain import settlement
    from settlement.utils.db import setup_db

    print("Initializing settlement domain...")
    settlement.init()
    print("Creating settlement database schema...")
    setup_db(settlement)
    print("  settlement schema ready.")
    print("Done.")


def drop_database(env=None):
    """Drop the settlement schema."""
    if env:
        os.environ["PROTEAN_ENV"] = env
    from settlement.domain import settlement
    from settlement.utils.db import drop_db

    print("Initializing settlement domain...")
    settlement.init()
    print("Dropping settlement database schema...")
    drop_db(settlement)
    print("  settlement schema dropped.")
    print("Done.")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Settlement database management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (("setup-db", "Create all database tables"), ("drop-db", "Drop all database tables")):
        command_parser = subparsers.add_parser(name, help=help_text)
        command_parser.add_argument(
            "--env",
            help="Configuration environment (default: PROTEAN_ENV or development)",
        )

    args = parser.parse_args(argv)

    if args.command == "setup-db":
        setup_database(args.env)
    elif args.command == "drop-db":
        drop_database(args.env)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
