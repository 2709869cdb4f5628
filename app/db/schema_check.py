import asyncio
import logging
from typing import Dict, List

from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import AsyncEngine

import app.auth.models  # noqa: F401  (registers auth tables on Base.metadata)
import app.core.models  # noqa: F401
from app.core.logging import setup_logging
from app.db.session import Base, engine

logger = logging.getLogger(__name__)


CREATE_SCHEMA_SQL: Dict[str, str] = {
    "core": "CREATE SCHEMA IF NOT EXISTS core;",
    "auth": "CREATE SCHEMA IF NOT EXISTS auth;",
    "school": "CREATE SCHEMA IF NOT EXISTS school;",
}


def _missing_tables(sync_conn) -> List[str]:
    inspector = inspect(sync_conn)
    missing: List[str] = []
    for table in Base.metadata.sorted_tables:
        if not inspector.has_table(table.name, schema=table.schema):
            missing.append(table.fullname)
    return missing


async def ensure_tables(db_engine: AsyncEngine) -> List[str]:
    """
    Ensure that all schemas and tables of the fee models exist in the connected PostgreSQL database.
    Missing tables are created with their constraints; existing tables are left untouched.
    Returns the names of the tables that were created.
    """
    async with db_engine.begin() as conn:
        for ddl in CREATE_SCHEMA_SQL.values():
            await conn.execute(text(ddl))

        missing = await conn.run_sync(_missing_tables)
        # create_all skips tables that already exist
        await conn.run_sync(Base.metadata.create_all)

    if missing:
        logger.info("Created missing tables: %s", ", ".join(missing))
    else:
        logger.info("All required tables already exist in the database.")
    return missing


async def main() -> None:
    setup_logging()
    await ensure_tables(engine)


if __name__ == "__main__":
    asyncio.run(main())
