"""Token registry module.

This module reconciles detections from every discovery source into one
canonical token per (chain, address):
- First insert wins the primary provenance; later sources append provenance
- Tokens still at created/discovered may be enriched with missing metadata
- Stages only move forward, except the operator's dead override
- Manual lookups resolve unknown addresses against the coin provider
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from database import TokenStore, PersistenceError
from detections import (
    Detection, DetectionIntake, DecodeFailure, decode_coin_created,
    SOURCE_REALTIME, SOURCE_BACKFILL, SOURCE_SCAN, SOURCE_MANUAL
)
from .stages import (
    STAGE_ORDER, CREATED, DISCOVERED, DEAD, PENDING_STAGES,
    stage_rank, target_stage
)

logger = logging.getLogger(__name__)

ADDRESS_RE = re.compile(r'^0x[a-fA-F0-9]{40}$')

PLATFORMS = ['Zora', 'Clanker', 'Flaunch', 'Mint Club', 'Custom']

MetadataLookup = Callable[[str], Awaitable[Optional[Dict[str, Any]]]]

class TokenError(Exception):
    """Base exception for token registry operations."""
    pass

class TokenNotFoundError(TokenError):
    """Raised when a token is unknown locally and upstream."""
    pass

class InvalidAddressError(TokenError):
    """Raised when an address is not 0x followed by 40 hex characters."""
    pass

@dataclass
class IngestResult:
    """Outcome of folding one detection into the registry."""
    address: Optional[str]
    created: bool
    stage: Optional[str]
    processed: bool

def is_address(value: Optional[str]) -> bool:
    return bool(value) and bool(ADDRESS_RE.match(value))

def classify_platform(detection: Detection, metadata: Dict[str, Any]) -> Optional[str]:
    """Platform label for a new token."""
    if metadata.get('platform') in PLATFORMS:
        return metadata['platform']
    if detection.source in (SOURCE_REALTIME, SOURCE_BACKFILL, SOURCE_MANUAL):
        return 'Zora'
    if detection.source == SOURCE_SCAN:
        return 'Zora' if detection.factory_address else 'Custom'
    return None

class TokenRegistry:
    """Reconciles detections into canonical tokens and drives stages."""

    def __init__(self, store: Optional[TokenStore] = None,
                 metadata_lookup: Optional[MetadataLookup] = None):
        """Initialize the registry.

        Args:
            store: Token store, defaults to a Postgres-backed store
            metadata_lookup: Async callable returning token fields for an
                address, or None if the provider does not know it. Defaults
                to the Zora coin provider.
        """
        self.store = store or TokenStore()
        self.intake = DetectionIntake(self.store)
        self._metadata_lookup = metadata_lookup

    def _lookup(self) -> MetadataLookup:
        if self._metadata_lookup is None:
            from stats.providers import ZoraCoinsProvider
            provider = ZoraCoinsProvider()

            async def lookup(address: str) -> Optional[Dict[str, Any]]:
                coin = await asyncio.to_thread(provider.get_coin, address)
                return coin.token_fields() if coin else None

            self._metadata_lookup = lookup
        return self._metadata_lookup

    async def ingest(self, detection: Detection,
                     metadata: Optional[Dict[str, Any]] = None,
                     resolve_metadata: bool = False) -> IngestResult:
        """Fold a detection into the registry.

        Args:
            detection: A recorded (or provenance-only) detection
            metadata: Extra token fields known to the caller
            resolve_metadata: Look up name/symbol upstream when the detection
                carries none

        Returns:
            IngestResult describing what happened

        Raises:
            PersistenceError: If the store rejects a write
        """
        address = detection.address
        if not is_address(address):
            logger.warning(f"Detection {detection.id} from {detection.source} has no usable address")
            return IngestResult(address, False, None, False)

        fields = {k: v for k, v in (detection.metadata or {}).items() if v is not None}
        fields.update({k: v for k, v in (metadata or {}).items() if v is not None})

        metadata_failed = False
        if resolve_metadata and not (fields.get('name') or fields.get('symbol')):
            try:
                looked_up = await self._lookup()(address)
                if looked_up:
                    fields.update({k: v for k, v in looked_up.items() if v is not None and k not in fields})
            except Exception as e:
                logger.error(f"Metadata lookup failed for {address}: {e}")
                metadata_failed = True

        token = dict(fields)
        token.update({
            'factory_address': detection.factory_address,
            'platform': classify_platform(detection, fields),
            'creation_tx_hash': detection.tx_hash,
            'creation_block': detection.block_number,
            'creation_log_index': detection.log_index,
            'source': detection.source,
        })

        created = await self.store.create_token(
            address, token, CREATED, detection.source,
            detection.tx_hash, detection.block_number
        )

        if created:
            stage = CREATED
            logger.info(f"New token {address} ({fields.get('symbol')}) from {detection.source}")
        else:
            existing = await self.store.get_token(address) or {}
            stage = existing.get('token_stage', CREATED)
            if stage in PENDING_STAGES:
                if await self.store.enrich_token(address, fields, only_stages=PENDING_STAGES):
                    logger.debug(f"Enriched {address} from {detection.source}")
            fields.setdefault('name', existing.get('name'))
            fields.setdefault('symbol', existing.get('symbol'))

        if fields.get('name') or fields.get('symbol') or fields.get('logo_url'):
            if await self.advance_stage(address, DISCOVERED, detection.source, 'metadata resolved'):
                stage = DISCOVERED

        processed = not metadata_failed
        if processed:
            await self.intake.mark_processed(address, detection.tx_hash)
            if detection.id:
                await self.store.mark_detection_processed(detection.id)

        return IngestResult(address, created, stage, processed)

    async def process_pending(self, limit: int = 100) -> int:
        """Replay unprocessed detections.

        Detections with no address are re-decoded from their raw log. A
        failure on one detection is logged and leaves it for the next pass.

        Returns:
            Number of detections processed
        """
        count = 0
        for detection in await self.intake.unprocessed(limit):
            try:
                if not detection.address and isinstance(detection.raw_data, dict):
                    event = decode_coin_created(detection.raw_data)
                    replay = Detection.from_event(event, detection.source, detection.raw_data)
                    replay.id = detection.id
                    detection = replay
                result = await self.ingest(detection, resolve_metadata=True)
                if result.processed:
                    count += 1
            except DecodeFailure as e:
                logger.warning(f"Detection {detection.id} still undecodable: {e}")
            except Exception as e:
                logger.error(f"Error replaying detection {detection.id}: {e}")
        if count:
            logger.info(f"Processed {count} pending detections")
        return count

    async def resolve_token(self, address: str) -> Dict[str, Any]:
        """Get a token, looking it up upstream once if it is unknown.

        Args:
            address: Token address

        Returns:
            The token row

        Raises:
            InvalidAddressError: If address is malformed
            TokenNotFoundError: If neither the store nor the provider knows it
        """
        if not is_address(address):
            raise InvalidAddressError(f"Invalid token address: {address}")
        address = address.lower()

        existing = await self.store.get_token(address)
        if existing:
            return existing

        try:
            metadata = await self._lookup()(address)
        except Exception as e:
            logger.warning(f"Manual lookup for {address} failed: {e}")
            raise TokenNotFoundError(f"Token {address} not found") from e
        if not metadata:
            raise TokenNotFoundError(f"Token {address} not found")

        detection = Detection(
            source=SOURCE_MANUAL,
            address=address,
            raw_data={k: str(v) if v is not None else None for k, v in metadata.items()},
            metadata=metadata
        )
        await self.intake.record(detection)
        await self.ingest(detection)
        return await self.store.get_token(address)

    async def advance_stage(self, address: str, target: str, source: str,
                            reason: Optional[str] = None,
                            stats: Optional[Dict[str, Any]] = None) -> bool:
        """Move a token forward to target if it is not already there or beyond.

        Returns:
            True if the stage changed; a losing race or a lower target is a no-op
        """
        if target == DEAD:
            raise ValueError("Use mark_dead for the dead override")
        if target not in STAGE_ORDER:
            raise ValueError(f"Unknown stage: {target}")
        previous = await self.store.advance_stage(
            address, target, STAGE_ORDER, source, reason, stats
        )
        if previous is None:
            return False
        logger.info(f"Token {address}: {previous} -> {target} ({reason or source})")
        return True

    async def apply_stats(self, address: str, stats: Dict[str, Any],
                          source: str = 'stats') -> Optional[str]:
        """Advance the stage that fresh stats justify.

        Returns:
            The new stage if it changed
        """
        target = target_stage(
            price=stats.get('price') or 0,
            liquidity=stats.get('liquidity') or 0,
            volume=stats.get('volume_24h') or 0,
            holders=stats.get('holders') or 0
        )
        if target is None:
            return None
        snapshot = {
            k: stats.get(k) for k in ('price', 'liquidity', 'volume_24h', 'holders', 'market_cap')
        }
        reason = f"stats: {target} threshold reached"
        if await self.advance_stage(address, target, source, reason, snapshot):
            return target
        return None

    async def mark_dead(self, address: str, reason: str, source: str = 'operator') -> str:
        """Operator override to the terminal dead stage.

        Returns:
            The stage the token was in

        Raises:
            TokenNotFoundError: If the token does not exist
        """
        previous = await self.store.force_stage(address.lower(), DEAD, source, reason)
        if previous is None:
            raise TokenNotFoundError(f"Token {address} not found")
        logger.info(f"Token {address}: {previous} -> {DEAD} ({reason})")
        return previous

__all__ = [
    'TokenRegistry', 'IngestResult', 'TokenError', 'TokenNotFoundError',
    'InvalidAddressError', 'is_address', 'classify_platform', 'stage_rank',
    'PersistenceError',
]
