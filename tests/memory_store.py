"""In-memory TokenStore with the same async interface and conflict rules."""
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from database.store import ENRICHABLE_COLUMNS, STATS_COLUMNS, TOKEN_INSERT_COLUMNS

def _now() -> datetime:
    return datetime.now(timezone.utc)

class MemoryTokenStore:
    """Dict-backed stand-in for database.TokenStore."""

    def __init__(self, chain: str = 'base', fingerprints: Optional[List[Dict[str, Any]]] = None):
        self.chain = chain
        self.tokens: Dict[str, Dict[str, Any]] = {}
        self.provenance: List[Dict[str, Any]] = []
        self.stage_history: List[Dict[str, Any]] = []
        self.detections: Dict[str, Dict[str, Any]] = {}
        self.stats: Dict[str, Dict[str, Any]] = {}
        self.history: List[Dict[str, Any]] = []
        self.fingerprints = fingerprints or []
        self.creators: Dict[str, Dict[str, Any]] = {}

    # Tokens

    async def create_token(self, address, token, stage, provenance_source,
                           tx_hash=None, block_number=None) -> bool:
        created = address not in self.tokens
        if created:
            row = {c: token.get(c) for c in TOKEN_INSERT_COLUMNS}
            row.update({
                'chain': self.chain,
                'address': address,
                'token_stage': stage,
                'first_seen_at': _now(),
            })
            if row['decimals'] is None:
                row['decimals'] = 18
            self.tokens[address] = row
            self.stage_history.append({
                'token_address': address, 'from_stage': None, 'to_stage': stage,
                'trigger_source': provenance_source, 'reason': 'token created',
                'stats_snapshot': None,
            })
        self._add_provenance(address, provenance_source, tx_hash, block_number, created)
        return created

    def _add_provenance(self, address, source, tx_hash, block_number, is_primary) -> bool:
        key = (address, source, tx_hash or '')
        if any((p['token_address'], p['source'], p['tx_hash']) == key for p in self.provenance):
            return False
        self.provenance.append({
            'token_address': address,
            'source': source,
            'tx_hash': tx_hash or '',
            'block_number': block_number,
            'is_primary': is_primary,
            'discovered_at': _now(),
        })
        return True

    async def enrich_token(self, address, fields, only_stages=None) -> bool:
        updates = {k: v for k, v in fields.items() if k in ENRICHABLE_COLUMNS and v is not None}
        row = self.tokens.get(address)
        if not updates or row is None:
            return False
        if only_stages and row['token_stage'] not in only_stages:
            return False
        for column, value in updates.items():
            if row.get(column) is None:
                row[column] = value
        return True

    async def get_token(self, address) -> Optional[Dict[str, Any]]:
        row = self.tokens.get(address)
        if row is None:
            return None
        joined = dict(row)
        stats = self.stats.get(address)
        for column in ('price', 'price_change_24h', 'volume_24h', 'market_cap',
                       'liquidity', 'liquidity_source', 'holders'):
            joined[column] = stats.get(column) if stats else None
        joined['stats_updated_at'] = stats['updated_at'] if stats else None
        return joined

    async def get_provenance(self, address) -> List[Dict[str, Any]]:
        return [dict(p) for p in self.provenance if p['token_address'] == address]

    # Stages

    async def advance_stage(self, address, target, stage_ranks, trigger_source,
                            reason=None, snapshot=None) -> Optional[str]:
        row = self.tokens.get(address)
        if row is None:
            return None
        previous = row['token_stage']
        if stage_ranks.get(previous, 0) >= stage_ranks[target]:
            return None
        row['token_stage'] = target
        self.stage_history.append({
            'token_address': address, 'from_stage': previous, 'to_stage': target,
            'trigger_source': trigger_source, 'reason': reason, 'stats_snapshot': snapshot,
        })
        return previous

    async def force_stage(self, address, stage, trigger_source, reason=None) -> Optional[str]:
        row = self.tokens.get(address)
        if row is None:
            return None
        previous = row['token_stage']
        row['token_stage'] = stage
        self.stage_history.append({
            'token_address': address, 'from_stage': previous, 'to_stage': stage,
            'trigger_source': trigger_source, 'reason': reason, 'stats_snapshot': None,
        })
        return previous

    async def get_stage_history(self, address) -> List[Dict[str, Any]]:
        return [dict(h) for h in self.stage_history if h['token_address'] == address]

    # Detections

    async def record_detection(self, detection) -> str:
        detection_id = str(uuid.uuid4())
        row = dict(detection)
        # Same JSON round trip as the JSONB column
        row['raw_data'] = json.loads(json.dumps(detection.get('raw_data'), default=str))
        row.update({'id': detection_id, 'processed': False, 'detected_at': _now()})
        self.detections[detection_id] = row
        return detection_id

    async def mark_detections_processed(self, address, tx_hash=None) -> int:
        count = 0
        for row in self.detections.values():
            if row.get('address') != address or row['processed']:
                continue
            if tx_hash and row.get('tx_hash') != tx_hash:
                continue
            row['processed'] = True
            count += 1
        return count

    async def mark_detection_processed(self, detection_id) -> bool:
        row = self.detections.get(detection_id)
        if row is None or row['processed']:
            return False
        row['processed'] = True
        return True

    async def unprocessed_detections(self, limit=100) -> List[Dict[str, Any]]:
        rows = [dict(r) for r in self.detections.values() if not r['processed']]
        rows.sort(key=lambda r: r['detected_at'])
        return rows[:limit]

    # Stats and history

    async def upsert_stats(self, address, stats) -> None:
        row = {c: stats.get(c) for c in STATS_COLUMNS}
        for column in STATS_COLUMNS:
            if row[column] is None and column not in ('liquidity_source', 'data_source'):
                row[column] = 0
        row['updated_at'] = _now()
        self.stats[address] = row

    async def append_history(self, address, sample, timestamp=None) -> None:
        self.history.append({
            'token_address': address,
            'timestamp': timestamp or _now(),
            'price': sample.get('price') or 0,
            'volume': sample.get('volume') or 0,
            'market_cap': sample.get('market_cap') or 0,
            'liquidity': sample.get('liquidity') or 0,
            'holders': sample.get('holders') or 0,
        })

    async def history_baseline(self, address, since) -> Optional[float]:
        samples = sorted(
            (h for h in self.history
             if h['token_address'] == address and h['timestamp'] >= since and h['price'] > 0),
            key=lambda h: h['timestamp']
        )
        return samples[0]['price'] if samples else None

    async def get_history(self, address, since) -> List[Dict[str, Any]]:
        rows = [
            {k: v for k, v in h.items() if k != 'token_address'}
            for h in self.history
            if h['token_address'] == address and h['timestamp'] >= since
        ]
        return sorted(rows, key=lambda h: h['timestamp'])

    # Reference data

    async def active_fingerprints(self) -> List[Dict[str, Any]]:
        return sorted(self.fingerprints, key=lambda f: f['confidence'], reverse=True)

    async def upsert_creator_profile(self, profile) -> None:
        current = self.creators.setdefault(profile['address'], {'address': profile['address']})
        for key, value in profile.items():
            if value is not None:
                current[key] = value

    async def get_creator_profile(self, address) -> Optional[Dict[str, Any]]:
        profile = self.creators.get(address)
        return dict(profile) if profile else None

    # Reads

    async def _joined(self) -> List[Dict[str, Any]]:
        return [await self.get_token(address) for address in self.tokens]

    async def list_tokens(self, stages=None, search=None, limit=50) -> List[Dict[str, Any]]:
        rows = await self._joined()
        if stages:
            rows = [r for r in rows if r['token_stage'] in stages]
        if search:
            needle = search.lower()
            rows = [
                r for r in rows
                if needle in (r.get('name') or '').lower()
                or needle in (r.get('symbol') or '').lower()
                or needle in r['address']
            ]
        rows.sort(key=lambda r: r.get('launch_timestamp') or r['first_seen_at'], reverse=True)
        return rows[:limit]

    async def top_price_change(self, positive, limit=50) -> List[Dict[str, Any]]:
        rows = [
            {'token_address': a, 'price_change_24h': s['price_change_24h'], 'volume_24h': s['volume_24h']}
            for a, s in self.stats.items()
            if (s['price_change_24h'] > 0 if positive else s['price_change_24h'] < 0)
        ]
        rows.sort(key=lambda r: r['price_change_24h'], reverse=positive)
        return rows[:limit]

    async def tokens_by_addresses(self, addresses, stages=None) -> List[Dict[str, Any]]:
        rows = [await self.get_token(a) for a in addresses if a in self.tokens]
        if stages:
            rows = [r for r in rows if r['token_stage'] in stages]
        return rows

    async def stale_token_addresses(self, older_than, limit=50) -> List[str]:
        stale = [
            a for a, row in self.tokens.items()
            if row['token_stage'] != 'dead'
            and (a not in self.stats or self.stats[a]['updated_at'] < older_than)
        ]
        return stale[:limit]

    async def global_stats(self, since) -> Dict[str, Any]:
        rows = await self._joined()
        gainers = [
            r for r in rows
            if (r.get('price_change_24h') or 0) > 0 and r['token_stage'] in ('priced', 'liquid', 'traded')
        ]
        top = max(gainers, key=lambda r: r['price_change_24h'], default=None)
        return {
            'total_tokens': len(rows),
            'new_tokens_24h': sum(1 for r in rows if r['first_seen_at'] >= since),
            'total_volume_24h': sum(r.get('volume_24h') or 0 for r in rows),
            'top_gainer': {
                'address': top['address'],
                'symbol': top['symbol'],
                'price_change_24h': top['price_change_24h'],
            } if top else None,
        }
