import sys
import asyncio
import logging
import random
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from src.config import Config
from src.database.db import Database
from src.ipo.accelerated import AcceleratedScheduler, TimelineSettings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


async def main(config: Config = None):
    """Resume accelerated timelines of persisted applications after a restart."""
    config = config or Config()
    db = Database(config)
    scheduler = AcceleratedScheduler(db, TimelineSettings.from_config(config), rng=random.Random())

    applications = db.get_active_applications()
    accepted = scheduler.recover(applications)
    logger.info(f"Accepted {accepted} of {len(applications)} applications for recovery")

    await scheduler.wait_idle()
    logger.info("All accelerated timelines closed")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Accelerated scheduler stopped by user")
