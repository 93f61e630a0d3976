#!/usr/bin/env python3
"""
Seed the PGC chart of accounts.

Inserts the built-in accounts that are missing; existing rows (and any
administrative edits to them) are left untouched.

Usage:
    DATABASE_URL=postgresql://... python scripts/seed_pgc_catalog.py [--create-tables]
"""
import sys
import os
import asyncio

# Add parent directory to path so we can import modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from packages.common.config import settings
from packages.common.database import sessionmanager
from packages.common.log_config import configure_logging
from packages.domain.classification.catalog import catalog_repository


async def main():
    configure_logging()
    await sessionmanager.init(settings.database_url)
    try:
        if "--create-tables" in sys.argv:
            await sessionmanager.create_all()

        async with sessionmanager.session() as db:
            inserted = await catalog_repository.seed(db)

        print(f"Inserted {inserted} PGC accounts")
    finally:
        await sessionmanager.close()


if __name__ == "__main__":
    asyncio.run(main())
