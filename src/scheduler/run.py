import sys
import time
import schedule
import logging
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from src.config import Config
from src.ipo.daily import build_service, run_daily

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


def run_rotation(service):
    """Run the daily rotation and handle errors."""
    logger.info("=" * 60)
    logger.info("Starting scheduled IPO rotation...")
    logger.info("=" * 60)
    if run_daily(service):
        logger.info("IPO rotation completed")
    else:
        logger.error("IPO rotation failed, will retry at next scheduled run")


def main():
    """Main scheduler function."""
    config = Config()
    scheduler_config = config.get_scheduler()
    rotation_time = scheduler_config.get("rotation_time", "00:05")
    poll_seconds = scheduler_config.get("poll_seconds", 60)

    service = build_service(config)
    logger.info(f"IPO rotation scheduler started (daily at {rotation_time})")

    # rotate once on start so the catalog is never empty
    run_rotation(service)
    schedule.every().day.at(rotation_time).do(run_rotation, service)

    for job in schedule.jobs:
        logger.info(f"  - next run: {job.next_run}")

    while True:
        schedule.run_pending()
        time.sleep(poll_seconds)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        logger.info("Scheduler stopped by user")
    except Exception as e:
        logger.error(f"Scheduler error: {e}", exc_info=True)
