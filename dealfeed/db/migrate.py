"""Create the products, price history and deals tables."""

from __future__ import annotations

import logging
import sys

from dotenv import load_dotenv
from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import ArgumentError, SQLAlchemyError

from dealfeed.db.session import create_engine_from_env
from dealfeed.db.tables import metadata
from dealfeed.utils.log import configure_logging

logger = logging.getLogger(__name__)


def run_migrations(engine: Engine) -> list[str]:
    """Create missing tables and indexes; returns the names of tables that were added."""
    existing = set(inspect(engine).get_table_names())
    metadata.create_all(engine)
    created = [table.name for table in metadata.sorted_tables if table.name not in existing]
    if created:
        logger.info("Created tables: %s", ", ".join(created))
    else:
        logger.info("Schema already up to date")
    return created


def main() -> None:
    load_dotenv()
    configure_logging()
    try:
        engine = create_engine_from_env()
    except ArgumentError as exc:
        logger.error("Invalid DATABASE_URL: %s", exc)
        sys.exit(1)
    try:
        run_migrations(engine)
    except SQLAlchemyError as exc:
        logger.error("Migration failed: %s", exc)
        sys.exit(2)


if __name__ == "__main__":
    main()
