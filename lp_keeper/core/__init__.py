from lp_keeper.core.clients.pool_client import GuardedPoolClient, PoolClient, PriceRange
from lp_keeper.core.errors import (
    ConfigurationError,
    LpKeeperError,
    PoolClientError,
    PositionNotFoundError,
    TransientNetworkError,
)

__all__ = [
    "ConfigurationError",
    "GuardedPoolClient",
    "LpKeeperError",
    "PoolClient",
    "PoolClientError",
    "PositionNotFoundError",
    "PriceRange",
    "TransientNetworkError",
]
