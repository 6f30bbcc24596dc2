"""Stats enrichment module.

This module refreshes market data for known tokens:
- Zora coins API first, in small parallel chunks
- DexScreener for tokens Zora could not price
- An explicit all-zero row for tokens neither provider knows
- History samples, logo/creator backfill and stage feedback afterwards
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from config import settings_conf
from tokens import TokenRegistry, is_address
from tokens.stages import DISCOVERED
from .derive import derive_liquidity, derive_price_change
from .providers import (
    ProviderError, ProviderRateLimited, ProviderUnavailable,
    ZoraCoinsProvider, DexScreenerProvider
)
from .schemas import ZoraCoin, DexPair, CreatorProfile

logger = logging.getLogger(__name__)

SOURCE_ZORA = 'zora'
SOURCE_DEXSCREENER = 'dexscreener'

class StatsEngine:
    """Fetches, derives and persists token stats."""

    def __init__(self, registry: Optional[TokenRegistry] = None,
                 primary: Optional[ZoraCoinsProvider] = None,
                 secondary: Optional[DexScreenerProvider] = None,
                 batch_size: Optional[int] = None,
                 primary_batch_size: Optional[int] = None,
                 primary_batch_delay: Optional[float] = None):
        """Initialize the engine.

        Args:
            registry: Token registry used for stage feedback
            primary: Primary provider, defaults to Zora
            secondary: Secondary provider, defaults to DexScreener
            batch_size: Maximum tokens per refresh
            primary_batch_size: Concurrent primary lookups per chunk
            primary_batch_delay: Seconds between primary chunks
        """
        self.registry = registry or TokenRegistry()
        self.store = self.registry.store
        self.primary = primary or ZoraCoinsProvider()
        self.secondary = secondary or DexScreenerProvider()
        self.batch_size = batch_size or settings_conf['stats_batch_size']
        self.primary_batch_size = primary_batch_size or settings_conf['primary_batch_size']
        self.primary_batch_delay = (
            primary_batch_delay if primary_batch_delay is not None
            else settings_conf['primary_batch_delay']
        )

    async def _fetch_primary(self, addresses: List[str]) -> Dict[str, ZoraCoin]:
        """Primary lookups in chunks; one failed lookup never cancels its siblings."""
        coins: Dict[str, ZoraCoin] = {}
        for start in range(0, len(addresses), self.primary_batch_size):
            if start:
                await asyncio.sleep(self.primary_batch_delay)
            chunk = addresses[start:start + self.primary_batch_size]
            results = await asyncio.gather(
                *(asyncio.to_thread(self.primary.get_coin, address) for address in chunk),
                return_exceptions=True
            )
            for address, result in zip(chunk, results):
                if isinstance(result, ProviderRateLimited):
                    logger.warning(f"Primary provider rate limited for {address}, falling through")
                elif isinstance(result, Exception):
                    logger.error(f"Primary lookup failed for {address}: {result}")
                elif result is not None:
                    coins[address] = result
        return coins

    async def _fetch_secondary(self, addresses: List[str]) -> Dict[str, DexPair]:
        if not addresses:
            return {}
        try:
            return await asyncio.to_thread(self.secondary.get_pairs, addresses)
        except ProviderError as e:
            logger.error(f"Secondary lookup failed for {len(addresses)} tokens: {e}")
            return {}

    async def _baseline(self, address: str) -> Optional[float]:
        since = datetime.now(timezone.utc) - timedelta(hours=24)
        return await self.store.history_baseline(address, since)

    async def stats_from_coin(self, address: str, coin: ZoraCoin) -> Dict[str, Any]:
        liquidity = derive_liquidity(coin.liquidity, coin.market_cap)
        baseline = None
        if coin.price_change_24h is None and coin.price_24h_ago is None:
            baseline = await self._baseline(address)
        return {
            'price': coin.price_usd or 0,
            'price_change_24h': derive_price_change(
                coin.price_change_24h, coin.price_usd, coin.price_24h_ago, baseline
            ),
            'volume_24h': coin.volume_24h or 0,
            'market_cap': coin.market_cap or 0,
            'liquidity': liquidity.value,
            'liquidity_dex': liquidity.dex,
            'liquidity_estimated': liquidity.estimated,
            'liquidity_source': liquidity.source,
            'holders': coin.holders or 0,
            'data_source': SOURCE_ZORA,
        }

    async def stats_from_pair(self, address: str, pair: DexPair,
                              coin: Optional[ZoraCoin] = None) -> Dict[str, Any]:
        market_cap = pair.market_cap or pair.fdv or 0
        liquidity = derive_liquidity(pair.liquidity_usd, market_cap)
        baseline = None
        if pair.price_change_24h is None:
            baseline = await self._baseline(address)
        return {
            'price': pair.price_usd or 0,
            'price_change_24h': derive_price_change(pair.price_change_24h, pair.price_usd, None, baseline),
            'volume_24h': pair.volume_24h or 0,
            'market_cap': market_cap,
            'liquidity': liquidity.value,
            'liquidity_dex': liquidity.dex,
            'liquidity_estimated': liquidity.estimated,
            'liquidity_source': liquidity.source,
            'holders': (coin.holders if coin else None) or 0,
            'data_source': SOURCE_DEXSCREENER,
        }

    @staticmethod
    def empty_stats() -> Dict[str, Any]:
        """Checked, no data. Distinct from a token that was never checked."""
        return {
            'price': 0,
            'price_change_24h': 0,
            'volume_24h': 0,
            'market_cap': 0,
            'liquidity': 0,
            'liquidity_dex': 0,
            'liquidity_estimated': 0,
            'liquidity_source': None,
            'holders': 0,
            'data_source': None,
        }

    async def _persist(self, address: str, stats: Dict[str, Any],
                       coin: Optional[ZoraCoin] = None, pair: Optional[DexPair] = None) -> Optional[str]:
        await self.store.upsert_stats(address, stats)

        if stats['price'] > 0 or stats['volume_24h'] > 0 or stats['market_cap'] > 0:
            await self.store.append_history(address, {
                'price': stats['price'],
                'volume': stats['volume_24h'],
                'market_cap': stats['market_cap'],
                'liquidity': stats['liquidity'],
                'holders': stats['holders'],
            })

        fields: Dict[str, Any] = {}
        if coin:
            fields.update(coin.token_fields())
        if pair and pair.image_url and not fields.get('logo_url'):
            fields['logo_url'] = pair.image_url
        if fields:
            await self.store.enrich_token(address, fields)
            if fields.get('name') or fields.get('symbol'):
                await self.registry.advance_stage(address, DISCOVERED, stats['data_source'] or 'stats',
                                                  'metadata resolved')

        if coin and coin.creator_profile:
            await self.upsert_creator(coin.creator_profile)

        return await self.registry.apply_stats(address, stats, source=stats['data_source'] or 'stats')

    async def upsert_creator(self, profile: CreatorProfile) -> None:
        try:
            await self.store.upsert_creator_profile(profile.model_dump())
        except Exception as e:
            logger.error(f"Failed to store creator profile {profile.address}: {e}")

    async def refresh(self, addresses: List[str]) -> Dict[str, int]:
        """Refresh stats for a batch of tokens.

        Args:
            addresses: Token addresses; anything past batch_size is dropped

        Returns:
            Counts of tokens served by each path: primary, secondary, empty, failed
        """
        unique = []
        for address in addresses:
            address = (address or '').lower()
            if is_address(address) and address not in unique:
                unique.append(address)
        if len(unique) > self.batch_size:
            logger.warning(f"Stats batch of {len(unique)} capped at {self.batch_size}")
            unique = unique[:self.batch_size]

        summary = {'primary': 0, 'secondary': 0, 'empty': 0, 'failed': 0}
        if not unique:
            return summary

        coins = await self._fetch_primary(unique)
        unsatisfied = [a for a in unique if a not in coins or not coins[a].has_market_data()]
        pairs = await self._fetch_secondary(unsatisfied)

        for address in unique:
            coin = coins.get(address)
            pair = pairs.get(address)
            try:
                if coin and coin.has_market_data():
                    stats = await self.stats_from_coin(address, coin)
                    path = 'primary'
                elif pair:
                    stats = await self.stats_from_pair(address, pair, coin)
                    path = 'secondary'
                elif coin:
                    # Known to Zora but unpriced; keep holders
                    stats = await self.stats_from_coin(address, coin)
                    path = 'empty'
                else:
                    stats = self.empty_stats()
                    path = 'empty'
                new_stage = await self._persist(address, stats, coin, pair)
                summary[path] += 1
                if new_stage:
                    logger.info(f"Stats moved {address} to {new_stage}")
            except Exception as e:
                summary['failed'] += 1
                logger.error(f"Failed to store stats for {address}: {e}")

        logger.info(
            f"Stats refresh: {summary['primary']} primary, {summary['secondary']} secondary, "
            f"{summary['empty']} empty, {summary['failed']} failed"
        )
        return summary

    async def refresh_stale(self, limit: Optional[int] = None) -> Dict[str, int]:
        """Refresh the tokens whose stats are missing or oldest."""
        older_than = datetime.now(timezone.utc) - timedelta(minutes=settings_conf['stats_stale_minutes'])
        addresses = await self.store.stale_token_addresses(older_than, limit or self.batch_size)
        return await self.refresh(addresses)

__all__ = [
    'StatsEngine', 'ZoraCoinsProvider', 'DexScreenerProvider', 'ZoraCoin', 'DexPair',
    'CreatorProfile', 'ProviderError', 'ProviderRateLimited', 'ProviderUnavailable',
]
