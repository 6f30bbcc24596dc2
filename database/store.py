"""SQL access for the token pipeline.

All reads and writes of the token tables go through TokenStore so that the
registry, stats engine and query layer share one set of conflict rules:

- tokens are inserted with ON CONFLICT DO NOTHING, and only the inserting
  transaction writes the primary provenance row
- stage changes are conditional updates on the stage rank
- stats are upserted, last writer wins
"""
import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import asyncpg

from .exceptions import PersistenceError

logger = logging.getLogger(__name__)

TOKEN_INSERT_COLUMNS = [
    'name', 'symbol', 'decimals', 'total_supply', 'creator_address',
    'factory_address', 'platform', 'logo_url', 'metadata_uri',
    'launch_timestamp', 'creation_tx_hash', 'creation_block',
    'creation_log_index', 'source'
]

# Columns an enrichment may fill when they are still NULL
ENRICHABLE_COLUMNS = [
    'name', 'symbol', 'total_supply', 'creator_address', 'platform',
    'logo_url', 'metadata_uri', 'launch_timestamp'
]

STATS_COLUMNS = [
    'price', 'price_change_24h', 'volume_24h', 'market_cap', 'liquidity',
    'liquidity_dex', 'liquidity_estimated', 'liquidity_source', 'holders',
    'data_source'
]

TOKEN_WITH_STATS = '''
    SELECT t.*,
           s.price, s.price_change_24h, s.volume_24h, s.market_cap,
           s.liquidity, s.liquidity_source, s.holders,
           s.updated_at AS stats_updated_at
    FROM tokens t
    LEFT JOIN token_stats s
      ON s.chain = t.chain AND s.token_address = t.address
'''


def like_pattern(text: str) -> str:
    """Substring ILIKE pattern with the wildcard characters in text escaped."""
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _row(record) -> Dict[str, Any]:
    """Convert an asyncpg record to a dict with float numerics."""
    row = dict(record)
    for key, value in row.items():
        if isinstance(value, Decimal):
            row[key] = float(value)
    return row


class TokenStore:
    """Postgres-backed store for tokens, detections, provenance and stats."""

    def __init__(self, pool=None, chain: Optional[str] = None) -> None:
        """Initialize the store.

        Args:
            pool: Optional asyncpg pool. Fetched lazily from the database
                module when not provided.
            chain: Chain key stored with every row, defaults to settings
        """
        self.pool = pool
        if chain is None:
            from config import settings_conf
            chain = settings_conf['chain']
        self.chain = chain

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if self.pool is None:
            from . import get_pool
            self.pool = await get_pool()
        return self.pool

    # Tokens

    async def create_token(self, address: str, token: Dict[str, Any], stage: str,
                           provenance_source: str, tx_hash: Optional[str] = None,
                           block_number: Optional[int] = None) -> bool:
        """Insert a token and its provenance in one transaction.

        The insert that wins the (chain, address) key writes the primary
        provenance row. A losing insert writes a non-primary provenance row
        and leaves the token untouched.

        Args:
            address: Lower-cased token address
            token: Token fields, keys from TOKEN_INSERT_COLUMNS
            stage: Initial stage for a new row
            provenance_source: Source recorded on the provenance row
            tx_hash: Transaction that revealed the token, if known
            block_number: Block of that transaction, if known

        Returns:
            True if this call created the token row

        Raises:
            PersistenceError: If the store rejects the write
        """
        pool = await self.ensure_pool()
        columns = ['chain', 'address', 'token_stage'] + TOKEN_INSERT_COLUMNS
        values = [self.chain, address, stage] + [token.get(c) for c in TOKEN_INSERT_COLUMNS]
        if values[columns.index('decimals')] is None:
            values[columns.index('decimals')] = 18
        placeholders = ', '.join(f'${i}' for i in range(1, len(columns) + 1))
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    inserted = await conn.fetchval(
                        f'''
                        INSERT INTO tokens ({', '.join(columns)})
                        VALUES ({placeholders})
                        ON CONFLICT (chain, address) DO NOTHING
                        RETURNING address
                        ''',
                        *values
                    )
                    created = inserted is not None
                    await conn.execute(
                        '''
                        INSERT INTO token_provenance (
                            chain, token_address, source, tx_hash,
                            block_number, is_primary
                        ) VALUES ($1, $2, $3, $4, $5, $6)
                        ON CONFLICT DO NOTHING
                        ''',
                        self.chain, address, provenance_source, tx_hash or '',
                        block_number, created
                    )
                    if created:
                        await conn.execute(
                            '''
                            INSERT INTO token_stage_history (
                                chain, token_address, from_stage, to_stage,
                                trigger_source, reason
                            ) VALUES ($1, $2, NULL, $3, $4, 'token created')
                            ''',
                            self.chain, address, stage, provenance_source
                        )
                    return created
        except asyncpg.PostgresError as e:
            raise PersistenceError(str(e), 'create_token')

    async def enrich_token(self, address: str, fields: Dict[str, Any],
                           only_stages: Optional[List[str]] = None) -> bool:
        """Fill NULL token columns without overwriting known values.

        Args:
            address: Token address
            fields: Candidate values, keys from ENRICHABLE_COLUMNS
            only_stages: Restrict the update to tokens in these stages

        Returns:
            True if a row was updated
        """
        updates = {k: v for k, v in fields.items() if k in ENRICHABLE_COLUMNS and v is not None}
        if not updates:
            return False
        pool = await self.ensure_pool()
        params: List[Any] = [self.chain, address]
        sets = []
        for column, value in updates.items():
            params.append(value)
            sets.append(f"{column} = COALESCE({column}, ${len(params)})")
        query = f'''
            UPDATE tokens SET {', '.join(sets)}
            WHERE chain = $1 AND address = $2
        '''
        if only_stages:
            params.append(only_stages)
            query += f" AND token_stage = ANY(${len(params)}::text[])"
        try:
            async with pool.acquire() as conn:
                result = await conn.execute(query, *params)
        except asyncpg.PostgresError as e:
            raise PersistenceError(str(e), 'enrich_token')
        return result.endswith(' 1')

    async def get_token(self, address: str) -> Optional[Dict[str, Any]]:
        """Get a token joined with its current stats."""
        pool = await self.ensure_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                TOKEN_WITH_STATS + ' WHERE t.chain = $1 AND t.address = $2',
                self.chain, address
            )
        return _row(row) if row else None

    async def get_provenance(self, address: str) -> List[Dict[str, Any]]:
        pool = await self.ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT source, tx_hash, block_number, is_primary, discovered_at
                FROM token_provenance
                WHERE chain = $1 AND token_address = $2
                ORDER BY discovered_at
                ''',
                self.chain, address
            )
        return [_row(r) for r in rows]

    # Stages

    async def advance_stage(self, address: str, target: str, stage_ranks: Dict[str, int],
                            trigger_source: str, reason: Optional[str] = None,
                            snapshot: Optional[Dict[str, Any]] = None) -> Optional[str]:
        """Move a token to target only if its current rank is lower.

        The rank comparison runs inside the UPDATE, so concurrent writers
        racing different targets can only move the stage forward.

        Args:
            address: Token address
            target: Stage to move to
            stage_ranks: Stage name to rank mapping
            trigger_source: What caused the transition
            reason: Free-text reason for the audit row
            snapshot: Stats that drove the transition

        Returns:
            The previous stage if the update applied, otherwise None
        """
        pool = await self.ensure_pool()
        rank_case = ' '.join(
            f"WHEN '{stage}' THEN {rank}" for stage, rank in stage_ranks.items()
        )
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    previous = await conn.fetchval(
                        f'''
                        WITH prev AS (
                            SELECT token_stage FROM tokens
                            WHERE chain = $1 AND address = $2
                            FOR UPDATE
                        )
                        UPDATE tokens SET token_stage = $3
                        WHERE chain = $1 AND address = $2
                          AND (CASE token_stage {rank_case} ELSE 0 END) < $4
                        RETURNING (SELECT token_stage FROM prev)
                        ''',
                        self.chain, address, target, stage_ranks[target]
                    )
                    if previous is None:
                        return None
                    await self._insert_stage_history(
                        conn, address, previous, target, trigger_source, reason, snapshot
                    )
                    return previous
        except asyncpg.PostgresError as e:
            raise PersistenceError(str(e), 'advance_stage')

    async def force_stage(self, address: str, stage: str, trigger_source: str,
                          reason: Optional[str] = None) -> Optional[str]:
        """Set a stage unconditionally. Returns the previous stage, or None if no token."""
        pool = await self.ensure_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    previous = await conn.fetchval(
                        '''
                        SELECT token_stage FROM tokens
                        WHERE chain = $1 AND address = $2
                        FOR UPDATE
                        ''',
                        self.chain, address
                    )
                    if previous is None:
                        return None
                    await conn.execute(
                        'UPDATE tokens SET token_stage = $3 WHERE chain = $1 AND address = $2',
                        self.chain, address, stage
                    )
                    await self._insert_stage_history(
                        conn, address, previous, stage, trigger_source, reason, None
                    )
                    return previous
        except asyncpg.PostgresError as e:
            raise PersistenceError(str(e), 'force_stage')

    async def _insert_stage_history(self, conn, address, from_stage, to_stage,
                                    trigger_source, reason, snapshot) -> None:
        await conn.execute(
            '''
            INSERT INTO token_stage_history (
                chain, token_address, from_stage, to_stage,
                trigger_source, reason, stats_snapshot
            ) VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb)
            ''',
            self.chain, address, from_stage, to_stage, trigger_source, reason,
            json.dumps(snapshot) if snapshot is not None else None
        )

    async def get_stage_history(self, address: str) -> List[Dict[str, Any]]:
        pool = await self.ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT from_stage, to_stage, trigger_source, reason, created_at
                FROM token_stage_history
                WHERE chain = $1 AND token_address = $2
                ORDER BY created_at
                ''',
                self.chain, address
            )
        return [_row(r) for r in rows]

    # Detections

    async def record_detection(self, detection: Dict[str, Any]) -> str:
        """Append a detection row and return its id."""
        pool = await self.ensure_pool()
        try:
            async with pool.acquire() as conn:
                detection_id = await conn.fetchval(
                    '''
                    INSERT INTO token_detections (
                        chain, address, source, tx_hash, block_number, log_index,
                        factory_address, code_hash, matched_fingerprint, raw_data
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10::jsonb)
                    RETURNING id
                    ''',
                    self.chain,
                    detection.get('address'),
                    detection['source'],
                    detection.get('tx_hash'),
                    detection.get('block_number'),
                    detection.get('log_index'),
                    detection.get('factory_address'),
                    detection.get('code_hash'),
                    detection.get('matched_fingerprint'),
                    json.dumps(detection.get('raw_data'), default=str)
                )
        except asyncpg.PostgresError as e:
            raise PersistenceError(str(e), 'record_detection')
        return str(detection_id)

    async def mark_detections_processed(self, address: str, tx_hash: Optional[str] = None) -> int:
        """Flip processed on matching detections. Returns the number of rows changed."""
        pool = await self.ensure_pool()
        query = '''
            UPDATE token_detections SET processed = true
            WHERE chain = $1 AND address = $2 AND NOT processed
        '''
        params: List[Any] = [self.chain, address]
        if tx_hash:
            query += ' AND tx_hash = $3'
            params.append(tx_hash)
        try:
            async with pool.acquire() as conn:
                result = await conn.execute(query, *params)
        except asyncpg.PostgresError as e:
            raise PersistenceError(str(e), 'mark_detections_processed')
        return int(result.split()[-1])

    async def mark_detection_processed(self, detection_id: str) -> bool:
        pool = await self.ensure_pool()
        try:
            async with pool.acquire() as conn:
                result = await conn.execute(
                    'UPDATE token_detections SET processed = true WHERE id = $1::uuid AND NOT processed',
                    detection_id
                )
        except asyncpg.PostgresError as e:
            raise PersistenceError(str(e), 'mark_detection_processed')
        return result.endswith(' 1')

    async def unprocessed_detections(self, limit: int = 100) -> List[Dict[str, Any]]:
        pool = await self.ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT id, address, source, tx_hash, block_number, log_index,
                       factory_address, code_hash, matched_fingerprint, raw_data
                FROM token_detections
                WHERE chain = $1 AND NOT processed
                ORDER BY detected_at
                LIMIT $2
                ''',
                self.chain, limit
            )
        detections = []
        for r in rows:
            row = _row(r)
            row['id'] = str(row['id'])
            if isinstance(row.get('raw_data'), str):
                row['raw_data'] = json.loads(row['raw_data'])
            detections.append(row)
        return detections

    # Stats and history

    async def upsert_stats(self, address: str, stats: Dict[str, Any]) -> None:
        """Replace the current stats row for a token."""
        pool = await self.ensure_pool()
        values = [stats.get(c) for c in STATS_COLUMNS]
        for i, column in enumerate(STATS_COLUMNS):
            if values[i] is None and column not in ('liquidity_source', 'data_source'):
                values[i] = 0
        placeholders = ', '.join(f'${i}' for i in range(3, len(STATS_COLUMNS) + 3))
        updates = ', '.join(f"{c} = EXCLUDED.{c}" for c in STATS_COLUMNS)
        try:
            async with pool.acquire() as conn:
                await conn.execute(
                    f'''
                    INSERT INTO token_stats (chain, token_address, {', '.join(STATS_COLUMNS)}, updated_at)
                    VALUES ($1, $2, {placeholders}, now())
                    ON CONFLICT (chain, token_address) DO UPDATE
                    SET {updates}, updated_at = now()
                    ''',
                    self.chain, address, *values
                )
        except asyncpg.PostgresError as e:
            raise PersistenceError(str(e), 'upsert_stats')

    async def append_history(self, address: str, sample: Dict[str, Any],
                             timestamp: Optional[datetime] = None) -> None:
        pool = await self.ensure_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute(
                    '''
                    INSERT INTO token_history (
                        chain, token_address, timestamp, price, volume,
                        market_cap, liquidity, holders
                    ) VALUES ($1, $2, COALESCE($3, now()), $4, $5, $6, $7, $8)
                    ''',
                    self.chain, address, timestamp,
                    sample.get('price') or 0,
                    sample.get('volume') or 0,
                    sample.get('market_cap') or 0,
                    sample.get('liquidity') or 0,
                    sample.get('holders') or 0
                )
        except asyncpg.PostgresError as e:
            raise PersistenceError(str(e), 'append_history')

    async def history_baseline(self, address: str, since: datetime) -> Optional[float]:
        """Price of the oldest positive-price sample at or after since."""
        pool = await self.ensure_pool()
        async with pool.acquire() as conn:
            price = await conn.fetchval(
                '''
                SELECT price FROM token_history
                WHERE chain = $1 AND token_address = $2
                  AND timestamp >= $3 AND price > 0
                ORDER BY timestamp ASC
                LIMIT 1
                ''',
                self.chain, address, since
            )
        return float(price) if price is not None else None

    async def get_history(self, address: str, since: datetime) -> List[Dict[str, Any]]:
        pool = await self.ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT timestamp, price, volume, market_cap, liquidity, holders
                FROM token_history
                WHERE chain = $1 AND token_address = $2 AND timestamp >= $3
                ORDER BY timestamp ASC
                ''',
                self.chain, address, since
            )
        return [_row(r) for r in rows]

    # Reference data

    async def active_fingerprints(self) -> List[Dict[str, Any]]:
        pool = await self.ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT id, selectors, confidence FROM bytecode_fingerprints
                WHERE is_active
                ORDER BY confidence DESC
                '''
            )
        return [dict(r) for r in rows]

    async def upsert_creator_profile(self, profile: Dict[str, Any]) -> None:
        pool = await self.ensure_pool()
        try:
            async with pool.acquire() as conn:
                await conn.execute(
                    '''
                    INSERT INTO creator_profiles (
                        address, display_name, avatar_url, farcaster_handle, farcaster_fid
                    ) VALUES ($1, $2, $3, $4, $5)
                    ON CONFLICT (address) DO UPDATE
                    SET display_name = COALESCE(EXCLUDED.display_name, creator_profiles.display_name),
                        avatar_url = COALESCE(EXCLUDED.avatar_url, creator_profiles.avatar_url),
                        farcaster_handle = COALESCE(EXCLUDED.farcaster_handle, creator_profiles.farcaster_handle),
                        farcaster_fid = COALESCE(EXCLUDED.farcaster_fid, creator_profiles.farcaster_fid)
                    ''',
                    profile['address'],
                    profile.get('display_name'),
                    profile.get('avatar_url'),
                    profile.get('farcaster_handle'),
                    profile.get('farcaster_fid')
                )
        except asyncpg.PostgresError as e:
            raise PersistenceError(str(e), 'upsert_creator_profile')

    async def get_creator_profile(self, address: str) -> Optional[Dict[str, Any]]:
        pool = await self.ensure_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow('SELECT * FROM creator_profiles WHERE address = $1', address)
        return _row(row) if row else None

    # Reads

    async def list_tokens(self, stages: Optional[List[str]] = None,
                          search: Optional[str] = None,
                          limit: int = 50) -> List[Dict[str, Any]]:
        """List tokens with their stats.

        Args:
            stages: Only include these stages
            search: Case-insensitive match on name, symbol or address
            limit: Maximum rows

        Returns:
            Token rows joined with stats
        """
        pool = await self.ensure_pool()
        query = TOKEN_WITH_STATS + ' WHERE t.chain = $1'
        params: List[Any] = [self.chain]
        param_idx = 2

        if stages:
            query += f" AND t.token_stage = ANY(${param_idx}::text[])"
            params.append(stages)
            param_idx += 1

        if search:
            query += (
                f" AND (t.name ILIKE ${param_idx} ESCAPE '\\'"
                f" OR t.symbol ILIKE ${param_idx} ESCAPE '\\'"
                f" OR t.address ILIKE ${param_idx} ESCAPE '\\')"
            )
            params.append(like_pattern(search))
            param_idx += 1

        query += f" ORDER BY COALESCE(t.launch_timestamp, t.first_seen_at) DESC LIMIT ${param_idx}"
        params.append(limit)

        logger.debug("Executing token list query: %s with params: %r", query, params)
        async with pool.acquire() as conn:
            rows = await conn.fetch(query, *params)
        return [_row(r) for r in rows]

    async def top_price_change(self, positive: bool, limit: int = 50) -> List[Dict[str, Any]]:
        """Stats rows ranked by signed price change with a strict sign filter."""
        pool = await self.ensure_pool()
        condition = 'price_change_24h > 0' if positive else 'price_change_24h < 0'
        direction = 'DESC' if positive else 'ASC'
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                f'''
                SELECT token_address, price_change_24h, volume_24h
                FROM token_stats
                WHERE chain = $1 AND {condition}
                ORDER BY price_change_24h {direction}
                LIMIT $2
                ''',
                self.chain, limit
            )
        return [_row(r) for r in rows]

    async def tokens_by_addresses(self, addresses: List[str],
                                  stages: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        if not addresses:
            return []
        pool = await self.ensure_pool()
        query = TOKEN_WITH_STATS + ' WHERE t.chain = $1 AND t.address = ANY($2::text[])'
        params: List[Any] = [self.chain, addresses]
        if stages:
            query += ' AND t.token_stage = ANY($3::text[])'
            params.append(stages)
        async with pool.acquire() as conn:
            rows = await conn.fetch(query, *params)
        return [_row(r) for r in rows]

    async def stale_token_addresses(self, older_than: datetime, limit: int = 50) -> List[str]:
        """Tokens without stats or with stats older than older_than, oldest first."""
        pool = await self.ensure_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT t.address
                FROM tokens t
                LEFT JOIN token_stats s
                  ON s.chain = t.chain AND s.token_address = t.address
                WHERE t.chain = $1 AND t.token_stage <> 'dead'
                  AND (s.updated_at IS NULL OR s.updated_at < $2)
                ORDER BY s.updated_at ASC NULLS FIRST, t.first_seen_at DESC
                LIMIT $3
                ''',
                self.chain, older_than, limit
            )
        return [r['address'] for r in rows]

    async def global_stats(self, since: datetime) -> Dict[str, Any]:
        """Totals for the dashboard header."""
        pool = await self.ensure_pool()
        async with pool.acquire() as conn:
            totals = await conn.fetchrow(
                '''
                SELECT COUNT(*) AS total_tokens,
                       COUNT(*) FILTER (WHERE t.first_seen_at >= $2) AS new_tokens_24h,
                       COALESCE(SUM(s.volume_24h), 0) AS total_volume_24h
                FROM tokens t
                LEFT JOIN token_stats s
                  ON s.chain = t.chain AND s.token_address = t.address
                WHERE t.chain = $1
                ''',
                self.chain, since
            )
            top = await conn.fetchrow(
                '''
                SELECT t.address, t.symbol, s.price_change_24h
                FROM token_stats s
                JOIN tokens t ON t.chain = s.chain AND t.address = s.token_address
                WHERE s.chain = $1 AND s.price_change_24h > 0
                  AND t.token_stage IN ('priced', 'liquid', 'traded')
                ORDER BY s.price_change_24h DESC
                LIMIT 1
                ''',
                self.chain
            )
        result = _row(totals)
        result['top_gainer'] = _row(top) if top else None
        return result
