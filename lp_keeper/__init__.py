__version__ = "0.1.0"

from lp_keeper.core import (
    ConfigurationError,
    LpKeeperError,
    PoolClient,
    PoolClientError,
    PriceRange,
    TransientNetworkError,
)
from lp_keeper.keeper import ControlLoop, KeeperSettings, TickReport

__all__ = [
    "__version__",
    "ConfigurationError",
    "ControlLoop",
    "KeeperSettings",
    "LpKeeperError",
    "PoolClient",
    "PoolClientError",
    "PriceRange",
    "TickReport",
    "TransientNetworkError",
]
