import sys
import asyncio
import logging
import argparse

from .core.config import Settings, setup_logging
from .core.db import INDEXES, TABLES, Database

logger = logging.getLogger(__name__)


async def init_db(database_url: str):
    async with Database(database_url) as db:
        await db.init_schema()


def main(argv=None) -> int:
    """Create the chat schema on the configured database"""
    parser = argparse.ArgumentParser(
        prog="gemchat-init-db", description="Initialize the chat database schema."
    )
    parser.add_argument(
        "--database-url",
        help="SQLAlchemy URL (defaults to DATABASE_URL, else the local chat.db file)",
    )
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    setup_logging(settings.environment)
    database_url = args.database_url or settings.database_url

    print("Initializing database...")
    try:
        asyncio.run(init_db(database_url))
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        print(f"Failed to initialize database: {e}", file=sys.stderr)
        return 1

    print("Database initialized successfully!")
    print("\nTables created:")
    for table in TABLES:
        print(f"  - {table}")
    print("\nIndexes created:")
    for index in INDEXES:
        print(f"  - {index}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
