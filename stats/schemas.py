"""Normalized provider responses.

Provider payloads are loosely typed: numbers arrive as strings, fields move
between names across API versions, and some values are garbage. Each payload
is mapped onto a strict model here; a malformed value is logged and
dropped instead of propagating, and a payload that still fails validation is
skipped on its own.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

logger = logging.getLogger(__name__)

def _first(data: Dict[str, Any], *paths: str) -> Any:
    """First non-empty value among dotted paths."""
    for path in paths:
        value: Any = data
        for part in path.split('.'):
            if not isinstance(value, dict):
                value = None
                break
            value = value.get(part)
        if value not in (None, ''):
            return value
    return None

def _to_float(value: Any, field: str) -> Optional[float]:
    if value is None or value == '':
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.warning(f"Dropping malformed {field}: {value!r}")
        return None
    if number != number or number in (float('inf'), float('-inf')):
        logger.warning(f"Dropping non-finite {field}: {value!r}")
        return None
    return number

def _to_int(value: Any, field: str) -> Optional[int]:
    number = _to_float(value, field)
    return int(number) if number is not None else None

def _to_datetime(value: Any) -> Optional[datetime]:
    if value in (None, ''):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        if isinstance(value, (int, float)) or str(value).isdigit():
            seconds = float(value)
            if seconds > 1e12:
                seconds /= 1000
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    except (ValueError, OverflowError, OSError):
        logger.warning(f"Dropping malformed timestamp: {value!r}")
        return None

def _to_text(value: Any, field: str) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    logger.warning(f"Dropping malformed {field}: {value!r}")
    return None

def _lower(value: Any) -> Optional[str]:
    return value.lower() if isinstance(value, str) and value else None

class CreatorProfile(BaseModel):
    """Creator metadata attached to a coin."""
    address: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    farcaster_handle: Optional[str] = None
    farcaster_fid: Optional[int] = None

    @field_validator('farcaster_fid', mode='before')
    @classmethod
    def coerce_fid(cls, value):
        return _to_int(value, 'farcaster_fid')

    @field_validator('display_name', 'avatar_url', 'farcaster_handle', mode='before')
    @classmethod
    def coerce_text(cls, value, info):
        return _to_text(value, info.field_name)

    @classmethod
    def from_api(cls, address: str, profile: Dict[str, Any]) -> 'CreatorProfile':
        avatar = _first(profile, 'avatar.previewImage.medium', 'avatar.previewImage.small',
                        'avatarUrl', 'pfp', 'avatar')
        return cls(
            address=address,
            display_name=_first(profile, 'displayName', 'name', 'username', 'handle'),
            avatar_url=avatar if isinstance(avatar, str) else None,
            farcaster_handle=_first(profile, 'farcasterHandle', 'farcaster.username',
                                    'socialAccounts.farcaster.username'),
            farcaster_fid=_first(profile, 'farcasterFid', 'farcaster.fid',
                                 'socialAccounts.farcaster.id')
        )

class ZoraCoin(BaseModel):
    """A coin from the Zora coins API."""
    model_config = ConfigDict(extra='ignore')

    address: str
    name: Optional[str] = None
    symbol: Optional[str] = None
    decimals: Optional[int] = None
    total_supply: Optional[float] = None
    price_usd: Optional[float] = None
    price_change_24h: Optional[float] = None
    price_24h_ago: Optional[float] = None
    market_cap: Optional[float] = None
    # Absolute USD change in market cap. Not a percentage.
    market_cap_delta_24h: Optional[float] = None
    volume_24h: Optional[float] = None
    liquidity: Optional[float] = None
    holders: Optional[int] = None
    image_url: Optional[str] = None
    metadata_uri: Optional[str] = None
    creator_address: Optional[str] = None
    creator_profile: Optional[CreatorProfile] = None
    created_at: Optional[datetime] = None
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    log_index: Optional[int] = None

    @field_validator(
        'total_supply', 'price_usd', 'price_change_24h', 'price_24h_ago', 'market_cap',
        'market_cap_delta_24h', 'volume_24h', 'liquidity', mode='before'
    )
    @classmethod
    def coerce_float(cls, value, info):
        return _to_float(value, info.field_name)

    @field_validator('decimals', 'holders', 'block_number', 'log_index', mode='before')
    @classmethod
    def coerce_int(cls, value, info):
        return _to_int(value, info.field_name)

    @field_validator('created_at', mode='before')
    @classmethod
    def coerce_datetime(cls, value):
        return _to_datetime(value)

    @field_validator('name', 'symbol', 'image_url', 'metadata_uri', 'tx_hash', mode='before')
    @classmethod
    def coerce_text(cls, value, info):
        return _to_text(value, info.field_name)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> Optional['ZoraCoin']:
        """Map a zora20Token payload onto the model.

        Returns:
            The coin, or None if the payload carries no address or fails validation
        """
        try:
            return cls._from_api(data)
        except ValidationError as e:
            logger.warning(f"Skipping invalid Zora payload for {data.get('address')!r}: {e}")
            return None

    @classmethod
    def _from_api(cls, data: Dict[str, Any]) -> Optional['ZoraCoin']:
        address = _lower(_first(data, 'address', 'contractAddress'))
        if not address:
            logger.warning("Zora payload without an address, skipping")
            return None

        creator = _lower(_first(data, 'creatorAddress', 'creator', 'deployer'))
        profile = data.get('creatorProfile')
        creator_profile = None
        if creator and isinstance(profile, dict):
            creator_profile = CreatorProfile.from_api(creator, profile)

        return cls(
            address=address,
            name=_first(data, 'name'),
            symbol=_first(data, 'symbol'),
            decimals=_first(data, 'decimals'),
            total_supply=_first(data, 'totalSupply'),
            price_usd=_first(data, 'tokenPrice.priceInUsdc', 'priceInUsdc', 'priceUsd'),
            price_change_24h=_first(data, 'priceChangePercent24h', 'tokenPrice.priceChangePercent24h'),
            price_24h_ago=_first(
                data, 'tokenPrice.price24hAgoInUsdc', 'tokenPrice.priceOneDayAgoInUsdc',
                'tokenPrice.price24HrAgoInUsdc'
            ),
            market_cap=_first(data, 'marketCap'),
            market_cap_delta_24h=_first(data, 'marketCapDelta24h'),
            volume_24h=_first(data, 'volume24h', 'volume'),
            liquidity=_first(data, 'totalValueLocked', 'tvl', 'poolBalance', 'liquidity', 'poolLiquidity'),
            holders=_first(data, 'uniqueHolders', 'holders'),
            image_url=_first(
                data, 'mediaContent.previewImage.medium', 'mediaContent.previewImage.small',
                'mediaContent.originalUri', 'image', 'imageUrl'
            ),
            metadata_uri=_first(data, 'tokenUri', 'uri'),
            creator_address=creator,
            creator_profile=creator_profile,
            created_at=_first(data, 'createdAt', 'timestamp', 'blockTimestamp'),
            tx_hash=_first(data, 'creationTxHash', 'txHash', 'transactionHash'),
            block_number=_first(data, 'creationBlock', 'blockNumber'),
            log_index=_first(data, 'logIndex')
        )

    def has_market_data(self) -> bool:
        return any((v or 0) > 0 for v in (self.price_usd, self.market_cap, self.volume_24h))

    def token_fields(self) -> Dict[str, Any]:
        """Fields for a token row."""
        return {
            'name': self.name,
            'symbol': self.symbol,
            'decimals': self.decimals,
            'total_supply': self.total_supply,
            'creator_address': self.creator_address,
            'logo_url': self.image_url,
            'metadata_uri': self.metadata_uri,
            'launch_timestamp': self.created_at,
        }

class DexPair(BaseModel):
    """Best-liquidity DexScreener pair for a token."""
    model_config = ConfigDict(extra='ignore')

    base_token_address: str
    pair_address: Optional[str] = None
    dex_id: Optional[str] = None
    price_usd: Optional[float] = None
    price_change_24h: Optional[float] = None
    volume_24h: Optional[float] = None
    liquidity_usd: Optional[float] = None
    fdv: Optional[float] = None
    market_cap: Optional[float] = None
    image_url: Optional[str] = None

    @field_validator(
        'price_usd', 'price_change_24h', 'volume_24h', 'liquidity_usd', 'fdv', 'market_cap',
        mode='before'
    )
    @classmethod
    def coerce_float(cls, value, info):
        return _to_float(value, info.field_name)

    @field_validator('pair_address', 'dex_id', 'image_url', mode='before')
    @classmethod
    def coerce_text(cls, value, info):
        return _to_text(value, info.field_name)

    @classmethod
    def from_api(cls, pair: Dict[str, Any]) -> Optional['DexPair']:
        address = _lower(_first(pair, 'baseToken.address'))
        if not address:
            return None
        try:
            return cls._build(address, pair)
        except ValidationError as e:
            logger.warning(f"Skipping invalid DexScreener pair for {address}: {e}")
            return None

    @classmethod
    def _build(cls, address: str, pair: Dict[str, Any]) -> 'DexPair':
        return cls(
            base_token_address=address,
            pair_address=_first(pair, 'pairAddress'),
            dex_id=_first(pair, 'dexId'),
            price_usd=_first(pair, 'priceUsd'),
            price_change_24h=_first(pair, 'priceChange.h24'),
            volume_24h=_first(pair, 'volume.h24'),
            liquidity_usd=_first(pair, 'liquidity.usd'),
            fdv=_first(pair, 'fdv'),
            market_cap=_first(pair, 'marketCap'),
            image_url=_first(pair, 'info.imageUrl')
        )
