"""Script to apply, roll back or create schema migrations."""

import argparse
import sys

from alembic import command
from alembic.config import Config


def _config() -> Config:
    return Config("alembic.ini")


def upgrade(revision: str) -> None:
    """Apply migrations up to ``revision``."""
    print(f"Upgrading schema to {revision}...")
    command.upgrade(_config(), revision)
    print("✓ Migrations completed successfully!")


def downgrade(revision: str) -> None:
    """Roll migrations back to ``revision``."""
    print(f"Downgrading schema to {revision}...")
    command.downgrade(_config(), revision)
    print("✓ Downgrade completed successfully!")


def create_migration(message: str) -> None:
    """Autogenerate a migration from the table metadata."""
    print(f"Creating migration: {message}")
    command.revision(_config(), message=message, autogenerate=True)
    print("✓ Migration created successfully!")


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Manage appointment store migrations")
    subparsers = parser.add_subparsers(dest="action")

    upgrade_parser = subparsers.add_parser("upgrade", help="Apply migrations (default)")
    upgrade_parser.add_argument("revision", nargs="?", default="head")

    downgrade_parser = subparsers.add_parser("downgrade", help="Roll back migrations")
    downgrade_parser.add_argument("revision", nargs="?", default="-1")

    create_parser = subparsers.add_parser("create", help="Autogenerate a migration")
    create_parser.add_argument("message", nargs="+")

    args = parser.parse_args()

    try:
        if args.action == "downgrade":
            downgrade(args.revision)
        elif args.action == "create":
            create_migration(" ".join(args.message))
        else:
            upgrade(getattr(args, "revision", "head"))
    except Exception as e:
        print(f"✗ Migration failed: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
