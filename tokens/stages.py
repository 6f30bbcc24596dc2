"""Token lifecycle stages.

Stages advance with data availability, never with wall-clock time:

    created -> discovered -> priced -> liquid -> traded

dead is terminal and only set by an operator override.
"""
from typing import Optional

CREATED = 'created'
DISCOVERED = 'discovered'
PRICED = 'priced'
LIQUID = 'liquid'
TRADED = 'traded'
DEAD = 'dead'

STAGE_ORDER = {
    CREATED: 0,
    DISCOVERED: 1,
    PRICED: 2,
    LIQUID: 3,
    TRADED: 4,
    DEAD: 5,
}

PENDING_STAGES = [CREATED, DISCOVERED]
ACTIVE_STAGES = [PRICED, LIQUID, TRADED]

def stage_rank(stage: Optional[str]) -> int:
    """Rank of a stage; unknown or missing stages rank as created."""
    return STAGE_ORDER.get(stage or CREATED, 0)

def is_later(target: str, current: Optional[str]) -> bool:
    return stage_rank(target) > stage_rank(current)

def target_stage(price: float = 0, liquidity: float = 0, volume: float = 0,
                 holders: int = 0) -> Optional[str]:
    """Furthest stage the given stats justify.

    Returns:
        traded, liquid, priced or discovered, or None when the stats carry no signal
    """
    if (volume or 0) > 0:
        return TRADED
    if (liquidity or 0) > 0:
        return LIQUID
    if (price or 0) > 0:
        return PRICED
    if (holders or 0) > 0:
        return DISCOVERED
    return None
