""" Read queries over the token registry """
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from . import TokenRegistry, TokenNotFoundError, is_address
from .stages import ACTIVE_STAGES, PENDING_STAGES, CREATED

logger = logging.getLogger(__name__)

FILTERS = ['new', 'trending', 'gainers', 'losers', 'pending']
DATA_QUALITY = {
    'active': ACTIVE_STAGES,
    'pending': PENDING_STAGES,
    'all': None,
}
# Candidates ranked by price change before the stage gate
MOVER_CANDIDATES = 50

def _iso(value) -> Optional[str]:
    return value.isoformat() if isinstance(value, datetime) else value

def format_token(row: Dict[str, Any]) -> Dict[str, Any]:
    """Shape a token row for the UI. Missing stats read as zero."""
    return {
        'address': row['address'],
        'chain': row.get('chain'),
        'name': row.get('name'),
        'symbol': row.get('symbol'),
        'platform': row.get('platform'),
        'stage': row.get('token_stage') or CREATED,
        'price': row.get('price') or 0,
        'price_change_24h': row.get('price_change_24h') or 0,
        'volume_24h': row.get('volume_24h') or 0,
        'market_cap': row.get('market_cap') or 0,
        'liquidity': row.get('liquidity') or 0,
        'liquidity_source': row.get('liquidity_source'),
        'holders': row.get('holders') or 0,
        'creator_address': row.get('creator_address'),
        'launch_timestamp': _iso(row.get('launch_timestamp')),
        'logo_url': row.get('logo_url'),
        'source': row.get('source'),
        'stats_updated_at': _iso(row.get('stats_updated_at')),
    }

class TokenQuery:
    """Filtered, sorted reads for the dashboard."""

    def __init__(self, registry: Optional[TokenRegistry] = None):
        self.registry = registry or TokenRegistry()
        self.store = self.registry.store

    async def list_tokens(self, filter: str = 'new', search: Optional[str] = None,
                          data_quality: str = 'all', limit: int = 50) -> List[Dict[str, Any]]:
        """List tokens for one of the read modes.

        Args:
            filter: new, trending, gainers, losers or pending
            search: Free text over name, symbol and address. A full address
                is an exact lookup that falls back to an upstream resolve.
            data_quality: active, pending or all; applies to new and trending
            limit: Maximum rows

        Returns:
            Formatted token dicts

        Raises:
            ValueError: If filter or data_quality is unknown
        """
        if filter not in FILTERS:
            raise ValueError(f"Unknown filter: {filter}")
        if data_quality not in DATA_QUALITY:
            raise ValueError(f"Unknown data quality: {data_quality}")
        search = (search or '').strip() or None

        if search and is_address(search):
            return await self._exact_lookup(search)

        if filter in ('gainers', 'losers'):
            return await self._movers(filter == 'gainers', search, limit)

        if filter == 'pending':
            rows = await self.store.list_tokens(stages=PENDING_STAGES, search=search, limit=limit)
            return [format_token(r) for r in rows]

        rows = await self.store.list_tokens(
            stages=DATA_QUALITY[data_quality], search=search, limit=limit
        )
        tokens = [format_token(r) for r in rows]
        if filter == 'trending':
            tokens.sort(key=lambda t: t['volume_24h'], reverse=True)
        return tokens

    async def _exact_lookup(self, address: str) -> List[Dict[str, Any]]:
        try:
            row = await self.registry.resolve_token(address)
        except TokenNotFoundError:
            logger.info(f"Search for {address} found nothing upstream")
            return []
        return [format_token(row)]

    async def _movers(self, gainers: bool, search: Optional[str], limit: int) -> List[Dict[str, Any]]:
        """Rank by signed price change, then keep only priced tokens."""
        candidates = await self.store.top_price_change(gainers, MOVER_CANDIDATES)
        if not candidates:
            return []
        rows = await self.store.tokens_by_addresses(
            [c['token_address'] for c in candidates], stages=ACTIVE_STAGES
        )
        tokens = [format_token(r) for r in rows]
        if search:
            needle = search.lower()
            tokens = [
                t for t in tokens
                if needle in (t['name'] or '').lower()
                or needle in (t['symbol'] or '').lower()
                or needle in t['address']
            ]
        # Strict sign filter again in case stats changed between the two reads
        if gainers:
            tokens = [t for t in tokens if t['price_change_24h'] > 0]
            tokens.sort(key=lambda t: (-t['price_change_24h'], -t['volume_24h']))
        else:
            tokens = [t for t in tokens if t['price_change_24h'] < 0]
            tokens.sort(key=lambda t: (t['price_change_24h'], -t['volume_24h']))
        return tokens[:limit]

    async def get_token(self, address: str) -> Dict[str, Any]:
        """Token detail with provenance; resolves unknown addresses upstream.

        Raises:
            InvalidAddressError: If address is malformed
            TokenNotFoundError: If the token cannot be found
        """
        row = await self.registry.resolve_token(address)
        token = format_token(row)
        token['decimals'] = row.get('decimals')
        token['metadata_uri'] = row.get('metadata_uri')
        token['creation_tx_hash'] = row.get('creation_tx_hash')
        token['creation_block'] = row.get('creation_block')
        token['first_seen_at'] = _iso(row.get('first_seen_at'))
        token['sources'] = [
            {
                'source': p['source'],
                'tx_hash': p['tx_hash'] or None,
                'is_primary': p['is_primary'],
                'discovered_at': _iso(p['discovered_at']),
            }
            for p in await self.store.get_provenance(row['address'])
        ]
        if row.get('creator_address'):
            token['creator'] = await self.store.get_creator_profile(row['creator_address'])
        return token

    async def get_history(self, address: str, hours: int = 24) -> List[Dict[str, Any]]:
        since = datetime.now(timezone.utc) - timedelta(hours=hours)
        rows = await self.store.get_history(address.lower(), since)
        return [dict(r, timestamp=_iso(r['timestamp'])) for r in rows]

    async def global_stats(self) -> Dict[str, Any]:
        """Total tokens, new in the last 24h, total 24h volume and top gainer."""
        since = datetime.now(timezone.utc) - timedelta(hours=24)
        return await self.store.global_stats(since)
