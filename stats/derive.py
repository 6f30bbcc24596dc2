"""Derived stats: liquidity with a source tag and signed 24h price change."""
from dataclasses import dataclass
from typing import Optional

# Bonding-curve coins have no open pool; a tenth of market cap stands in
ESTIMATED_LIQUIDITY_RATIO = 0.1

LIQUIDITY_DEX = 'dex'
LIQUIDITY_ESTIMATED = 'estimated'

@dataclass
class Liquidity:
    value: float
    dex: float
    estimated: float
    source: Optional[str]

def derive_liquidity(reported: Optional[float], market_cap: Optional[float]) -> Liquidity:
    """Prefer reported pool liquidity, else estimate from market cap.

    Args:
        reported: Liquidity/TVL reported by the provider
        market_cap: Market cap in USD

    Returns:
        Liquidity tagged 'dex', 'estimated', or None when neither is known
    """
    reported = reported or 0
    estimated = (market_cap or 0) * ESTIMATED_LIQUIDITY_RATIO if (market_cap or 0) > 0 else 0
    if reported > 0:
        return Liquidity(reported, reported, estimated, LIQUIDITY_DEX)
    if estimated > 0:
        return Liquidity(estimated, 0, estimated, LIQUIDITY_ESTIMATED)
    return Liquidity(0, 0, 0, None)

def percent_change(current: Optional[float], previous: Optional[float]) -> Optional[float]:
    if not current or not previous or previous <= 0:
        return None
    return (current - previous) / previous * 100

def derive_price_change(explicit_pct: Optional[float], current_price: Optional[float],
                        price_24h_ago: Optional[float] = None,
                        baseline_price: Optional[float] = None) -> float:
    """Signed 24h price change in percent.

    Order of preference: the provider's percentage field, the provider's
    price 24h ago, the oldest stored sample within 24h, then 0. An absolute
    market-cap delta is never an input here.
    """
    if explicit_pct is not None:
        return explicit_pct
    change = percent_change(current_price, price_24h_ago)
    if change is not None:
        return change
    change = percent_change(current_price, baseline_price)
    if change is not None:
        return change
    return 0.0
