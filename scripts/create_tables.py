#!/usr/bin/env python
"""
Create the schema directly from the models, without Alembic.

Usage:
    python scripts/create_tables.py          # create missing tables
    python scripts/create_tables.py --reset  # drop everything first (never in production)
"""
import argparse
import asyncio
import logging
import os
import sys

# Add the project root to sys.path so the 'app' package imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402

from app.configs.settings import settings  # noqa: E402
from app.database.database import Base  # noqa: E402
from app.models import OtpRecord, User, VerificationState  # noqa: E402,F401

logger = logging.getLogger("create_tables")


async def create_tables(reset: bool = False):
    logger.info("Connecting to %s", settings.DATABASE_URL.split("@")[-1])
    engine = create_async_engine(settings.DATABASE_URL)

    async with engine.begin() as conn:
        if reset:
            if settings.is_production:
                raise SystemExit("Refusing to drop tables in production")
            logger.warning("Dropping all tables")
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Tables ready: %s", ", ".join(sorted(Base.metadata.tables)))
    await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--reset", action="store_true", help="drop all tables before creating them")
    asyncio.run(create_tables(parser.parse_args().reset))
