"""Initialize database schema for the decision store.

Creates the pgvector/pg_trgm extensions, the decisions table, its
indexes and triggers. Existing tables and data are left untouched.
"""

import asyncio
import sys

from juris.config import settings
from juris.logging_config import setup_logging
from juris.schema import init_database


async def main():
    """Main entry point."""
    setup_logging(fmt="text")
    print(f"Initializing database: {settings.db.url.split('@')[-1]}")
    try:
        tables = await init_database()
    except Exception as e:
        print(f"\n❌ Error initializing database: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)

    print("\n✅ Database initialization complete!")
    print(f"Tables: {', '.join(tables)}")


if __name__ == "__main__":
    asyncio.run(main())
