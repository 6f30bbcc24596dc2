"""Bytecode fingerprint matching for contracts found outside the factory."""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

MATCH_THRESHOLD = 0.75

# name(), symbol(), balanceOf(address), transfer(address,uint256)
FALLBACK_SELECTORS = ['06fdde03', '95d89b41', '70a08231', 'a9059cbb']
FALLBACK_MIN_SELECTORS = 3
FALLBACK_ID = 'erc20_fallback'


@dataclass
class FingerprintMatch:
    """A fingerprint the bytecode satisfied."""
    fingerprint_id: str
    confidence: int
    matched: int
    total: int


def compute_code_hash(code: str) -> str:
    """Cheap identity for bytecode: first 4 bytes, last 4 bytes and length."""
    return f"{code[2:10]}_{code[-8:]}_{len(code)}"


def _is_empty(bytecode: Optional[str]) -> bool:
    return not bytecode or bytecode.lower() in ('0x', '0x0')


def match_fingerprints(bytecode: str, fingerprints: List[Dict[str, Any]]) -> Optional[FingerprintMatch]:
    """Match bytecode against fingerprints ordered by descending confidence.

    With no fingerprint rows at all, a minimal ERC-20 rule applies: at least
    3 of name/symbol/balanceOf/transfer present, confidence 25 per selector.

    Args:
        bytecode: Hex bytecode, possibly empty or '0x'
        fingerprints: Rows with id, selectors and confidence

    Returns:
        The first matching fingerprint, or None
    """
    if _is_empty(bytecode):
        return None
    code = bytecode.lower()

    if not fingerprints:
        present = sum(1 for selector in FALLBACK_SELECTORS if selector in code)
        if present >= FALLBACK_MIN_SELECTORS:
            return FingerprintMatch(FALLBACK_ID, present * 25, present, len(FALLBACK_SELECTORS))
        return None

    for fingerprint in sorted(fingerprints, key=lambda f: f['confidence'], reverse=True):
        selectors = [s.lower().removeprefix('0x') for s in fingerprint['selectors']]
        if not selectors:
            continue
        present = sum(1 for selector in selectors if selector in code)
        if present / len(selectors) >= MATCH_THRESHOLD:
            return FingerprintMatch(fingerprint['id'], fingerprint['confidence'], present, len(selectors))
    return None


class FingerprintMatcher:
    """Loads active fingerprints from the store and matches bytecode."""

    def __init__(self, store):
        self.store = store

    async def match(self, bytecode: str) -> Optional[FingerprintMatch]:
        fingerprints = await self.store.active_fingerprints()
        if not fingerprints:
            logger.warning("No fingerprint rows loaded, using the minimal ERC-20 rule")
        return match_fingerprints(bytecode, fingerprints)
