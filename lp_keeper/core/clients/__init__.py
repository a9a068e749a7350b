from lp_keeper.core.clients.pool_client import (
    FULL_WITHDRAW_BPS,
    Amounts,
    ClaimFeesResult,
    ClaimRewardsResult,
    GuardedPoolClient,
    PoolClient,
    PositionState,
    PriceRange,
    WithdrawResult,
)

__all__ = [
    "Amounts",
    "ClaimFeesResult",
    "ClaimRewardsResult",
    "FULL_WITHDRAW_BPS",
    "GuardedPoolClient",
    "PoolClient",
    "PositionState",
    "PriceRange",
    "WithdrawResult",
]
