"""Seed the standard time slot catalog.

Usage:
    python scripts/seed_time_slots.py [START] [END] [INTERVAL] [DURATION]

Defaults lay out hourly 60-minute slots from 08:00 to 20:00.
"""

import asyncio
import sys

from therapy_booking.database import AsyncSessionLocal, engine
from therapy_booking.services.timeslot_service import TimeSlotService


async def seed(start: str, end: str, interval: int, duration: int) -> None:
    """Create standard slots unless the catalog already has some."""
    async with AsyncSessionLocal() as session:
        service = TimeSlotService(session)
        existing = await service.list_slots()
        if existing:
            print(f"Catalog already has {len(existing)} time slots, nothing to do.")
            return

        created = await service.generate_standard_time_slots(start, end, interval, duration)
        for slot in created:
            print(f"  {slot.start_time}-{slot.end_time}  {slot.display_name}")
        print(f"✓ Created {len(created)} time slots")

    await engine.dispose()


if __name__ == "__main__":
    args = sys.argv[1:]
    asyncio.run(
        seed(
            args[0] if len(args) > 0 else "08:00",
            args[1] if len(args) > 1 else "20:00",
            int(args[2]) if len(args) > 2 else 60,
            int(args[3]) if len(args) > 3 else 60,
        )
    )
