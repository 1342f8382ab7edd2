"""Schema bootstrap for the decision store."""
from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from .db import get_engine
from .models import Base

logger = logging.getLogger(__name__)

EXTENSIONS = ("vector", "pg_trgm")


async def init_database(engine: AsyncEngine | None = None) -> list[str]:
    """Create extensions (PostgreSQL only) and all tables; existing tables are kept.

    Returns:
        Names of the tables in the metadata
    """
    engine = engine or get_engine()
    async with engine.begin() as conn:
        if conn.dialect.name == "postgresql":
            for extension in EXTENSIONS:
                await conn.execute(text(f"CREATE EXTENSION IF NOT EXISTS {extension}"))
                logger.info(f"Enabled {extension} extension")
        await conn.run_sync(Base.metadata.create_all)

    tables = list(Base.metadata.tables.keys())
    logger.info(f"Tables ready: {', '.join(tables)}")
    return tables
