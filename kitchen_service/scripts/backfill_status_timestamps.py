"""
Backfill ``status_timestamps`` for historical orders.

Usage:
    python -m kitchen_service.scripts.backfill_status_timestamps
"""

import asyncio

from kitchen_service.app.core.database import database_manager
from kitchen_service.app.utils.logging import setup_kitchen_logging
from kitchen_service.app.utils.timestamp_backfill import backfill_status_timestamps

logger = setup_kitchen_logging("kitchen_service.scripts.backfill")


async def main() -> int:
    try:
        await database_manager.create_tables()
        async with database_manager.async_session_maker() as session:
            updated = await backfill_status_timestamps(session)
        logger.info("Timestamp backfill completed", extra={"orders_updated": updated})
        return updated
    finally:
        await database_manager.close()


if __name__ == "__main__":
    asyncio.run(main())
