#!/usr/bin/env python3
"""
Apply or inspect the insights schema migrations.

Usage:
  migrate.py                     # upgrade to head
  migrate.py upgrade [REVISION]  # upgrade to REVISION (default: head)
  migrate.py downgrade REVISION  # e.g. "base" to drop every pipeline table
  migrate.py status              # print the current revision
  migrate.py create "message"    # autogenerate a revision from the models

--url overrides DATABASE_URL for a single invocation.
"""

import argparse
import logging
import os
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from src.core.logging_config import setup_structured_logging

PROJECT_ROOT = Path(__file__).parent.parent.parent

logger = logging.getLogger(__name__)


def _alembic_config(url: str | None = None) -> Config:
    config = Config(str(PROJECT_ROOT / "alembic.ini"))
    if url:
        config.set_main_option("sqlalchemy.url", url)
    return config


def run_migrations(revision: str = "head", url: str | None = None) -> None:
    """Upgrade the schema, retrying once if a concurrent runner created alembic_version first."""
    alembic_cfg = _alembic_config(url)
    logger.info(f"Upgrading insights schema to {revision}")
    try:
        command.upgrade(alembic_cfg, revision)
    except Exception as e:
        if "alembic_version" not in str(e):
            raise
        logger.warning(f"alembic_version race with another runner ({e}); retrying once")
        command.upgrade(alembic_cfg, revision)
    logger.info("Schema is up to date")


def main():
    parser = argparse.ArgumentParser(description="Insights schema migrations")
    parser.add_argument("--url", help="Database URL (default: DATABASE_URL / DB_* variables)")
    subparsers = parser.add_subparsers(dest="command")

    upgrade = subparsers.add_parser("upgrade", help="Apply pending migrations")
    upgrade.add_argument("revision", nargs="?", default="head")

    downgrade = subparsers.add_parser("downgrade", help="Revert to an earlier revision")
    downgrade.add_argument("revision")

    subparsers.add_parser("status", help="Show the current revision")

    create = subparsers.add_parser("create", help="Autogenerate a new revision")
    create.add_argument("message", nargs="+")

    args = parser.parse_args()
    setup_structured_logging()

    try:
        if args.command in (None, "upgrade"):
            run_migrations(getattr(args, "revision", "head"), args.url)
        elif args.command == "downgrade":
            command.downgrade(_alembic_config(args.url), args.revision)
        elif args.command == "status":
            command.current(_alembic_config(args.url), verbose=True)
        elif args.command == "create":
            command.revision(_alembic_config(args.url), message=" ".join(args.message), autogenerate=True)
    except Exception as e:
        logger.error(f"Migration command failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
