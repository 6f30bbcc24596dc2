"""Run the indexer: REST API, realtime monitor and the discovery workers.

    python -m api

All services share one database pool, registry and stats engine. The
process exits when SIGINT/SIGTERM arrives or any service dies, after
stopping the rest and closing the pool.
"""
import asyncio
import logging
import signal
from typing import Dict

import uvicorn

from config import settings_conf
from database import init_db, close as close_db, TokenStore
from monitor import TokenMonitor
from stats import StatsEngine
from tokens import TokenRegistry
from tokens.search import TokenQuery
from workers import backfill, bytecode_scan, price_fetch

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

def build_server() -> uvicorn.Server:
    config = uvicorn.Config(
        "api:app",
        host=settings_conf['api_host'],
        port=settings_conf['api_port'],
        log_level="info"
    )
    server = uvicorn.Server(config)
    # Signals are handled here, not by uvicorn
    server.install_signal_handlers = lambda: None
    return server

async def main() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    pool = await init_db()
    registry = TokenRegistry(TokenStore(pool))
    stats_engine = StatsEngine(registry)

    from api.tokens import configure
    from api.websockets import broadcast_update
    configure(TokenQuery(registry), stats_engine)

    monitor = TokenMonitor(registry, stats_engine=stats_engine, broadcast=broadcast_update)
    server = build_server()

    services: Dict[str, asyncio.Task] = {
        name: asyncio.create_task(coro, name=name)
        for name, coro in {
            'api': server.serve(),
            'monitor': monitor.start(),
            'backfill': backfill.run_worker(registry=registry, stats_engine=stats_engine),
            'bytecode_scan': bytecode_scan.run_worker(registry=registry),
            'price_fetch': price_fetch.run_worker(stats_engine=stats_engine),
        }.items()
    }
    logger.info(f"Started {', '.join(services)}")

    stopper = asyncio.create_task(stop.wait())
    done, _ = await asyncio.wait(
        list(services.values()) + [stopper], return_when=asyncio.FIRST_COMPLETED
    )
    for task in done:
        if task is not stopper and not task.cancelled() and task.exception():
            logger.error(f"Service {task.get_name()} died: {task.exception()}")

    logger.info("Shutting down...")
    server.should_exit = True
    await monitor.stop()
    for name, task in services.items():
        if name != 'api':
            task.cancel()
    stopper.cancel()
    await asyncio.gather(*services.values(), return_exceptions=True)
    await close_db()
    logger.info("Shutdown complete")

if __name__ == "__main__":
    asyncio.run(main())
