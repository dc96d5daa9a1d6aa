import sys
from pathlib import Path
import logging

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from src.config import Config
from src.database.db import Database
from src.ipo.feed import CatalogFeed
from src.ipo.rotation import RotationEngine
from src.ipo.service import IPOService

logger = logging.getLogger(__name__)


def build_service(config: Config) -> IPOService:
    engine = RotationEngine(config)
    return IPOService(Database(config), CatalogFeed(engine), config=config)


def run_daily(service: IPOService, today=None) -> bool:
    """Rotate the catalog for today and settle what closed yesterday."""
    try:
        status = service.feed.refresh(today)
        logger.info(
            f"Catalog for {status.date}: {len(status.open)} open, "
            f"{len(status.upcoming)} upcoming, {len(status.closed)} closed"
        )
        for ipo in status.open:
            logger.info(f"  OPEN {ipo.symbol}: {ipo.name} ({ipo.open_date} - {ipo.close_date})")

        result = service.auto_process(status.date)
        logger.info(f"Settled {result['allotted']} allotments and {result['listed']} listings")
        return True
    except Exception as e:
        logger.error(f"Daily IPO rotation failed: {e}", exc_info=True)
        return False


def main(config: Config = None) -> bool:
    return run_daily(build_service(config or Config()))


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    success = main()
    sys.exit(0 if success else 1)
