"""Worker that backfills recently created coins from the Zora coins list.

This is the completeness guarantee behind the realtime monitor: any coin the
subscription missed (disconnects, dropped notifications) is picked up here.
Re-running a page is harmless; existing tokens only gain provenance.
"""

import asyncio
import logging
import traceback
from typing import Dict, List, Optional

from config import settings_conf
from detections import Detection, SOURCE_BACKFILL
from stats import StatsEngine
from stats.providers import ProviderError, ZoraCoinsProvider
from tokens import TokenRegistry

logger = logging.getLogger(__name__)

async def run_backfill(registry: Optional[TokenRegistry] = None,
                       stats_engine: Optional[StatsEngine] = None,
                       provider: Optional[ZoraCoinsProvider] = None,
                       count: Optional[int] = None) -> Dict[str, int]:
    """Ingest the newest coins and refresh stats for the new ones.

    Args:
        registry: Token registry
        stats_engine: Engine used to price newly created tokens
        provider: Zora coins provider
        count: Maximum coins to page through

    Returns:
        Counts of coins seen, tokens created and failures
    """
    registry = registry or TokenRegistry()
    provider = provider or ZoraCoinsProvider()
    count = count or settings_conf['backfill_count']
    summary = {'seen': 0, 'created': 0, 'failed': 0}
    created: List[str] = []
    cursor = None

    while summary['seen'] < count:
        try:
            coins, cursor = await asyncio.to_thread(
                provider.list_coins, min(100, count - summary['seen']), cursor
            )
        except ProviderError as e:
            logger.error(f"Backfill page failed: {e}")
            break
        if not coins:
            break

        for coin in coins:
            summary['seen'] += 1
            detection = Detection(
                source=SOURCE_BACKFILL,
                address=coin.address,
                tx_hash=coin.tx_hash,
                block_number=coin.block_number,
                log_index=coin.log_index,
                factory_address=settings_conf['factory_address'],
                raw_data=coin.model_dump(mode='json'),
                metadata=coin.token_fields()
            )
            try:
                await registry.intake.record(detection)
                result = await registry.ingest(detection)
                if result.created:
                    summary['created'] += 1
                    created.append(coin.address)
                if coin.creator_profile:
                    await registry.store.upsert_creator_profile(coin.creator_profile.model_dump())
            except Exception as e:
                summary['failed'] += 1
                logger.error(f"Error backfilling {coin.address}: {str(e)}")
                continue

        if not cursor:
            break

    logger.info(
        f"Backfill: {summary['seen']} coins seen, {summary['created']} new, "
        f"{summary['failed']} failed"
    )

    if created and stats_engine:
        for start in range(0, len(created), stats_engine.batch_size):
            await stats_engine.refresh(created[start:start + stats_engine.batch_size])

    return summary

async def run_worker(interval: Optional[int] = None, registry: Optional[TokenRegistry] = None,
                     stats_engine: Optional[StatsEngine] = None):
    """Main worker loop."""
    interval = interval or settings_conf['backfill_interval']
    registry = registry or TokenRegistry()
    stats_engine = stats_engine or StatsEngine(registry)
    logger.info(f"Backfill worker starting up (every {interval}s)")
    while True:
        try:
            await run_backfill(registry, stats_engine)
            await registry.process_pending()

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
