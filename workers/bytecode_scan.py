"""Worker that scans recent blocks for tokens the other sources missed.

Two passes over the last scan_block_range blocks:
- factory CoinCreated logs, in small eth_getLogs windows
- contracts deployed by external transactions, matched against bytecode
  fingerprints and named from the provider's token metadata
"""

import asyncio
import logging
import traceback
from datetime import datetime, timezone
from typing import Dict, Optional

from config import settings_conf
from detections import (
    Detection, DecodeFailure, FingerprintMatcher, compute_code_hash,
    decode_coin_created, SOURCE_SCAN
)
from rpc import ChainRPC, COIN_CREATED_TOPIC, client as rpc_client
from tokens import TokenRegistry

logger = logging.getLogger(__name__)

async def scan_factory_logs(registry: TokenRegistry, chain: ChainRPC,
                            from_block: int, to_block: int) -> Dict[str, int]:
    """Reconcile factory logs in a block window."""
    summary = {'logs': 0, 'created': 0, 'failed': 0}
    logs = await asyncio.to_thread(
        chain.get_logs, settings_conf['factory_address'], [COIN_CREATED_TOPIC], from_block, to_block
    )
    for log in logs:
        summary['logs'] += 1
        try:
            try:
                event = decode_coin_created(log)
            except DecodeFailure as e:
                logger.warning(f"Undecodable factory log in tx {log.get('transactionHash')}: {e}")
                await registry.intake.record(Detection(
                    source=SOURCE_SCAN,
                    tx_hash=log.get('transactionHash'),
                    factory_address=settings_conf['factory_address'],
                    raw_data=log
                ))
                continue
            detection = Detection.from_event(event, SOURCE_SCAN, raw_data=log)
            await registry.intake.record(detection)
            result = await registry.ingest(detection)
            if result.created:
                summary['created'] += 1
        except Exception as e:
            summary['failed'] += 1
            logger.error(f"Error scanning log in tx {log.get('transactionHash')}: {str(e)}")
    return summary

async def scan_contract_creations(registry: TokenRegistry, chain: ChainRPC,
                                  matcher: FingerprintMatcher, from_block: int,
                                  to_block: int, max_contracts: int) -> Dict[str, int]:
    """Fingerprint newly deployed contracts and ingest the token-shaped ones."""
    summary = {'contracts': 0, 'matched': 0, 'created': 0, 'failed': 0}
    creations = await asyncio.to_thread(chain.get_contract_creations, from_block, to_block, max_contracts)
    for creation in creations:
        summary['contracts'] += 1
        address = creation['address']
        try:
            code = await asyncio.to_thread(chain.get_code, address)
            match = await matcher.match(code)
            if not match:
                continue
            summary['matched'] += 1

            detection = Detection(
                source=SOURCE_SCAN,
                address=address,
                tx_hash=creation.get('tx_hash'),
                block_number=creation.get('block_number'),
                code_hash=compute_code_hash(code),
                matched_fingerprint=match.fingerprint_id,
                raw_data={'confidence': match.confidence, 'matched': match.matched, 'total': match.total}
            )
            try:
                metadata = await asyncio.to_thread(chain.get_token_metadata, address)
            except Exception as e:
                # Leave the detection unprocessed for the next pending pass
                logger.error(f"Token metadata lookup failed for {address}: {str(e)}")
                await registry.intake.record(detection)
                continue

            detection.metadata = {
                'name': metadata.get('name'),
                'symbol': metadata.get('symbol'),
                'decimals': metadata.get('decimals'),
                'logo_url': metadata.get('logo'),
            }
            if creation.get('block_number'):
                timestamp = await asyncio.to_thread(chain.get_block_timestamp, creation['block_number'])
                if timestamp:
                    detection.metadata['launch_timestamp'] = datetime.fromtimestamp(timestamp, tz=timezone.utc)

            await registry.intake.record(detection)
            result = await registry.ingest(detection)
            if result.created:
                summary['created'] += 1
        except Exception as e:
            summary['failed'] += 1
            logger.error(f"Error scanning contract {address}: {str(e)}")
    return summary

async def run_scan(registry: Optional[TokenRegistry] = None, chain: Optional[ChainRPC] = None,
                   matcher: Optional[FingerprintMatcher] = None,
                   block_range: Optional[int] = None,
                   max_contracts: Optional[int] = None) -> Dict[str, int]:
    """Run both scan passes over the most recent blocks.

    Returns:
        Combined counts from both passes
    """
    registry = registry or TokenRegistry()
    chain = chain or rpc_client
    matcher = matcher or FingerprintMatcher(registry.store)
    block_range = block_range or settings_conf['scan_block_range']
    max_contracts = max_contracts or settings_conf['scan_max_contracts']

    latest = await asyncio.to_thread(chain.get_block_number)
    from_block = max(0, latest - block_range + 1)
    logger.info(f"Scanning blocks {from_block}-{latest}")

    summary: Dict[str, int] = {}
    passes = [
        ('Factory log', scan_factory_logs(registry, chain, from_block, latest)),
        ('Contract creation', scan_contract_creations(
            registry, chain, matcher, from_block, latest, max_contracts
        )),
    ]
    for name, scan in passes:
        try:
            for key, count in (await scan).items():
                summary[key] = summary.get(key, 0) + count
        except Exception as e:
            logger.error(f"{name} pass failed: {str(e)}")

    logger.info(f"Scan finished: {summary}")
    return summary

async def run_worker(interval: Optional[int] = None, registry: Optional[TokenRegistry] = None):
    """Main worker loop."""
    interval = interval or settings_conf['scan_interval']
    registry = registry or TokenRegistry()
    logger.info(f"Bytecode scan worker starting up (every {interval}s)")
    while True:
        try:
            await run_scan(registry)

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
