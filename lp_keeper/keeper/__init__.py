from lp_keeper.keeper.allocator import PortfolioAllocator, SnapshotHistory
from lp_keeper.keeper.executor import RebalanceExecutor
from lp_keeper.keeper.harvester import RewardHarvester
from lp_keeper.keeper.loop import ControlLoop
from lp_keeper.keeper.settings import (
    KeeperSettings,
    PoolConfig,
    PoolClientSpec,
    load_settings,
    parse_settings,
)
from lp_keeper.keeper.store import PositionStore
from lp_keeper.keeper.tracker import PositionTracker
from lp_keeper.keeper.types import (
    HarvestOutcome,
    HarvestStatus,
    ManagedPosition,
    PoolKind,
    PortfolioSnapshot,
    RebalanceOutcome,
    RebalanceStatus,
    TickReport,
)

__all__ = [
    "ControlLoop",
    "HarvestOutcome",
    "HarvestStatus",
    "KeeperSettings",
    "ManagedPosition",
    "PoolClientSpec",
    "PoolConfig",
    "PoolKind",
    "PortfolioAllocator",
    "PortfolioSnapshot",
    "PositionStore",
    "PositionTracker",
    "RebalanceExecutor",
    "RebalanceOutcome",
    "RebalanceStatus",
    "RewardHarvester",
    "SnapshotHistory",
    "TickReport",
    "load_settings",
    "parse_settings",
]
