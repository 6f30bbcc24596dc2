"""Worker that keeps token stats fresh."""

import asyncio
import logging
import traceback
from typing import Optional

from config import settings_conf
from stats import StatsEngine

logger = logging.getLogger(__name__)

async def run_worker(interval: Optional[int] = None, stats_engine: Optional[StatsEngine] = None):
    """Main worker loop: refresh the stalest batch, then replay pending detections."""
    interval = interval or settings_conf['stats_interval']
    stats_engine = stats_engine or StatsEngine()
    logger.info(f"Price fetch worker starting up (every {interval}s)")
    while True:
        try:
            await stats_engine.refresh_stale()
            await stats_engine.registry.process_pending()

        except Exception as e:
            logger.error(f"Error in worker loop: {str(e)}")
            logger.error(traceback.format_exc())

        finally:
            await asyncio.sleep(interval)

if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    from database import init_db

    async def main():
        await init_db()
        await run_worker()

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
