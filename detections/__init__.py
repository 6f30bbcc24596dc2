"""Detection intake.

Every discovery signal is appended to token_detections before reconciliation,
whatever its source. Rows are never deleted; the only update is flipping
processed once the signal has been folded into the canonical token.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .decoder import CoinCreatedEvent, DecodeFailure, MalformedLog, decode_coin_created
from .fingerprints import FingerprintMatch, FingerprintMatcher, compute_code_hash, match_fingerprints

logger = logging.getLogger(__name__)

# Discovery sources
SOURCE_REALTIME = 'zora_ws'
SOURCE_BACKFILL = 'zora_backfill'
SOURCE_SCAN = 'bytecode_scan'
SOURCE_MANUAL = 'manual'

SOURCES = [SOURCE_REALTIME, SOURCE_BACKFILL, SOURCE_SCAN, SOURCE_MANUAL]


@dataclass
class Detection:
    """One observed discovery signal."""
    source: str
    address: Optional[str] = None
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    log_index: Optional[int] = None
    factory_address: Optional[str] = None
    code_hash: Optional[str] = None
    matched_fingerprint: Optional[str] = None
    raw_data: Any = None
    id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.address:
            self.address = self.address.lower()

    @classmethod
    def from_event(cls, event: CoinCreatedEvent, source: str, raw_data: Any = None) -> 'Detection':
        return cls(
            source=source,
            address=event.token_address,
            tx_hash=event.tx_hash,
            block_number=event.block_number,
            log_index=event.log_index,
            factory_address=event.factory_address,
            raw_data=raw_data,
            metadata={
                'name': event.name,
                'symbol': event.symbol,
                'metadata_uri': event.metadata_uri,
                'creator_address': event.creator_address,
            }
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Detection':
        raw = row.get('raw_data')
        metadata = {}
        if isinstance(raw, dict) and 'metadata' in raw:
            metadata = dict(raw.get('metadata') or {})
            raw = raw.get('payload')
            if isinstance(metadata.get('launch_timestamp'), str):
                try:
                    metadata['launch_timestamp'] = datetime.fromisoformat(metadata['launch_timestamp'])
                except ValueError:
                    metadata.pop('launch_timestamp')
        return cls(
            source=row['source'],
            address=row.get('address'),
            tx_hash=row.get('tx_hash'),
            block_number=row.get('block_number'),
            log_index=row.get('log_index'),
            factory_address=row.get('factory_address'),
            code_hash=row.get('code_hash'),
            matched_fingerprint=row.get('matched_fingerprint'),
            raw_data=raw,
            id=row.get('id'),
            metadata=metadata
        )

    def to_record(self) -> Dict[str, Any]:
        """Row shape for the store. Metadata travels inside raw_data for replay."""
        raw = self.raw_data
        if self.metadata:
            raw = {'payload': raw, 'metadata': self.metadata}
        return {
            'source': self.source,
            'address': self.address,
            'tx_hash': self.tx_hash,
            'block_number': self.block_number,
            'log_index': self.log_index,
            'factory_address': self.factory_address,
            'code_hash': self.code_hash,
            'matched_fingerprint': self.matched_fingerprint,
            'raw_data': raw,
        }


class DetectionIntake:
    """Append-only log of discovery signals."""

    def __init__(self, store):
        self.store = store

    async def record(self, detection: Detection) -> str:
        """Append a detection. Duplicates are fine; reconciliation dedups by address."""
        detection.id = await self.store.record_detection(detection.to_record())
        logger.debug(f"Recorded {detection.source} detection {detection.id} for {detection.address}")
        return detection.id

    async def mark_processed(self, address: str, tx_hash: Optional[str] = None) -> int:
        """Flip processed for the address. No matching row is not an error."""
        count = await self.store.mark_detections_processed(address.lower(), tx_hash)
        if not count:
            logger.debug(f"No unprocessed detections for {address}")
        return count

    async def unprocessed(self, limit: int = 100) -> List[Detection]:
        rows = await self.store.unprocessed_detections(limit)
        return [Detection.from_row(row) for row in rows]


__all__ = [
    'Detection', 'DetectionIntake',
    'CoinCreatedEvent', 'DecodeFailure', 'MalformedLog', 'decode_coin_created',
    'FingerprintMatch', 'FingerprintMatcher', 'compute_code_hash', 'match_fingerprints',
    'SOURCES', 'SOURCE_REALTIME', 'SOURCE_BACKFILL', 'SOURCE_SCAN', 'SOURCE_MANUAL',
]
