"""Create the scheduling tables.

Usage:
    python scripts/init_db.py [--seed]

``--seed`` also lays out the default hourly time slot catalog.
"""

import asyncio
import sys

from sqlalchemy import inspect

from therapy_booking.database import engine
from therapy_booking.models import metadata


async def init_db(seed: bool = False) -> None:
    """Create missing tables and report what exists afterwards."""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
        tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())

    for name in sorted(tables):
        print(f"  {name}")
    print(f"✓ Database initialized with {len(tables)} tables")

    if seed:
        from seed_time_slots import seed as seed_catalog

        await seed_catalog("08:00", "20:00", 60, 60)

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(init_db(seed="--seed" in sys.argv[1:]))
