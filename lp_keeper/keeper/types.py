from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from lp_keeper.core.clients.pool_client import Amounts, PriceRange

# ─────────────────────────────────────────────────────────────────────────────
# ENUMS
# ─────────────────────────────────────────────────────────────────────────────


class PoolKind(StrEnum):
    CONCENTRATED = "concentrated"  # bins / ticks
    CONSTANT_PRODUCT = "constant_product"


class RebalanceStatus(StrEnum):
    CREATED = "CREATED"
    REBALANCED = "REBALANCED"
    SKIPPED = "SKIPPED"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


class HarvestStatus(StrEnum):
    SKIPPED = "SKIPPED"
    NOTHING_TO_CLAIM = "NOTHING_TO_CLAIM"
    HARVESTED = "HARVESTED"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"


# ─────────────────────────────────────────────────────────────────────────────
# POSITION STATE
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PendingRedeposit:
    """Liquidity withdrawn from a position whose re-deposit did not land."""

    range: PriceRange
    center_index: int
    withdrawn_amounts: Amounts
    deposit_amounts: Amounts
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "range": self.range.to_list(),
            "center_index": self.center_index,
            "withdrawn_amounts": list(self.withdrawn_amounts),
            "deposit_amounts": list(self.deposit_amounts),
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PendingRedeposit:
        lower, upper = data["range"]
        wx, wy = data.get("withdrawn_amounts") or (0, 0)
        dx, dy = data.get("deposit_amounts") or (0, 0)
        return cls(
            range=PriceRange(int(lower), int(upper)),
            center_index=int(data["center_index"]),
            withdrawn_amounts=(int(wx), int(wy)),
            deposit_amounts=(int(dx), int(dy)),
            error=str(data.get("error") or ""),
        )


@dataclass
class ManagedPosition:
    pool_id: str
    position_id: str | None = None
    lower_bound: int | None = None
    upper_bound: int | None = None
    reference_index: int | None = None  # last index the keeper acted on
    deposited: Amounts = (0, 0)
    accrued_fees: Amounts = (0, 0)
    accrued_rewards: int = 0
    last_harvest_at: float | None = None
    pending_redeposit: PendingRedeposit | None = None
    created_at: float | None = None
    updated_at: float | None = None
    lock: asyncio.Lock = field(
        default_factory=asyncio.Lock, repr=False, compare=False
    )

    @property
    def is_funded(self) -> bool:
        return self.position_id is not None

    @property
    def range(self) -> PriceRange | None:
        if self.lower_bound is None or self.upper_bound is None:
            return None
        return PriceRange(self.lower_bound, self.upper_bound)

    @property
    def has_accrued(self) -> bool:
        return any(a > 0 for a in self.accrued_fees) or self.accrued_rewards > 0

    def set_range(self, price_range: PriceRange) -> None:
        self.lower_bound = price_range.lower
        self.upper_bound = price_range.upper

    def forget(self) -> None:
        """Drop the position handle and its on-chain state; the next tick re-creates it."""
        self.position_id = None
        self.lower_bound = None
        self.upper_bound = None
        self.reference_index = None
        self.deposited = (0, 0)
        self.accrued_fees = (0, 0)
        self.accrued_rewards = 0
        self.last_harvest_at = None
        self.pending_redeposit = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pool_id": self.pool_id,
            "position_id": self.position_id,
            "lower_bound": self.lower_bound,
            "upper_bound": self.upper_bound,
            "reference_index": self.reference_index,
            "deposited": list(self.deposited),
            "accrued_fees": list(self.accrued_fees),
            "accrued_rewards": self.accrued_rewards,
            "last_harvest_at": self.last_harvest_at,
            "pending_redeposit": (
                self.pending_redeposit.to_dict() if self.pending_redeposit else None
            ),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ManagedPosition:
        pending = data.get("pending_redeposit")
        dx, dy = data.get("deposited") or (0, 0)
        fx, fy = data.get("accrued_fees") or (0, 0)
        return cls(
            pool_id=str(data["pool_id"]),
            position_id=data.get("position_id"),
            lower_bound=data.get("lower_bound"),
            upper_bound=data.get("upper_bound"),
            reference_index=data.get("reference_index"),
            deposited=(int(dx), int(dy)),
            accrued_fees=(int(fx), int(fy)),
            accrued_rewards=int(data.get("accrued_rewards") or 0),
            last_harvest_at=data.get("last_harvest_at"),
            pending_redeposit=PendingRedeposit.from_dict(pending) if pending else None,
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


# ─────────────────────────────────────────────────────────────────────────────
# COMPONENT OUTCOMES
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DriftResult:
    bins_moved: int
    needs_rebalance: bool


@dataclass(frozen=True)
class RebalanceOutcome:
    status: RebalanceStatus
    center_index: int | None
    range: PriceRange | None = None
    withdrawn_amounts: Amounts = (0, 0)
    deposited_amounts: Amounts = (0, 0)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in (
            RebalanceStatus.CREATED,
            RebalanceStatus.REBALANCED,
            RebalanceStatus.SKIPPED,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": str(self.status),
            "center_index": self.center_index,
            "range": self.range.to_list() if self.range else None,
            "withdrawn_amounts": list(self.withdrawn_amounts),
            "deposited_amounts": list(self.deposited_amounts),
            "error": self.error,
        }


@dataclass(frozen=True)
class HarvestOutcome:
    status: HarvestStatus
    claimed_fees: Amounts = (0, 0)
    claimed_rewards: int = 0
    errors: tuple[str, ...] = ()

    @property
    def claimed(self) -> bool:
        return self.status in (HarvestStatus.HARVESTED, HarvestStatus.PARTIAL)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": str(self.status),
            "claimed_fees": list(self.claimed_fees),
            "claimed_rewards": self.claimed_rewards,
            "errors": list(self.errors),
        }


# ─────────────────────────────────────────────────────────────────────────────
# PORTFOLIO
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PoolAllocation:
    pool_id: str
    value: float
    observed_allocation: float
    target_allocation: float
    drift: float  # observed - target, in percentage points
    stale: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "pool_id": self.pool_id,
            "value": self.value,
            "observed_allocation": self.observed_allocation,
            "target_allocation": self.target_allocation,
            "drift": self.drift,
            "stale": self.stale,
        }


@dataclass(frozen=True)
class PortfolioSnapshot:
    total_value: float
    pools: tuple[PoolAllocation, ...]
    total_fees: float
    total_rewards: float
    needs_attention: bool
    timestamp: float

    def pool(self, pool_id: str) -> PoolAllocation | None:
        return next((p for p in self.pools if p.pool_id == pool_id), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_value": self.total_value,
            "pools": [p.to_dict() for p in self.pools],
            "total_fees": self.total_fees,
            "total_rewards": self.total_rewards,
            "needs_attention": self.needs_attention,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PortfolioSnapshot:
        return cls(
            total_value=float(data["total_value"]),
            pools=tuple(
                PoolAllocation(
                    pool_id=str(p["pool_id"]),
                    value=float(p["value"]),
                    observed_allocation=float(p["observed_allocation"]),
                    target_allocation=float(p["target_allocation"]),
                    drift=float(p["drift"]),
                    stale=bool(p.get("stale", False)),
                )
                for p in data.get("pools", [])
            ),
            total_fees=float(data.get("total_fees", 0.0)),
            total_rewards=float(data.get("total_rewards", 0.0)),
            needs_attention=bool(data.get("needs_attention", False)),
            timestamp=float(data["timestamp"]),
        )


# ─────────────────────────────────────────────────────────────────────────────
# TICK REPORT
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class PoolTickResult:
    pool_id: str
    reference_index: int | None = None
    drift: DriftResult | None = None
    rebalance: RebalanceOutcome | None = None
    harvest: HarvestOutcome | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        if self.error is not None:
            return False
        if self.rebalance is not None and not self.rebalance.ok:
            return False
        return not (
            self.harvest is not None
            and self.harvest.status in (HarvestStatus.PARTIAL, HarvestStatus.FAILED)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "pool_id": self.pool_id,
            "reference_index": self.reference_index,
            "drift": (
                {
                    "bins_moved": self.drift.bins_moved,
                    "needs_rebalance": self.drift.needs_rebalance,
                }
                if self.drift
                else None
            ),
            "rebalance": self.rebalance.to_dict() if self.rebalance else None,
            "harvest": self.harvest.to_dict() if self.harvest else None,
            "error": self.error,
            "ok": self.ok,
        }


@dataclass
class TickReport:
    tick: int
    started_at: float
    finished_at: float | None = None
    pools: dict[str, PoolTickResult] = field(default_factory=dict)
    snapshot: PortfolioSnapshot | None = None
    snapshot_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.snapshot_error is None and all(r.ok for r in self.pools.values())

    @property
    def failed_pools(self) -> list[str]:
        return [pid for pid, r in self.pools.items() if not r.ok]

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick": self.tick,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "ok": self.ok,
            "pools": {pid: r.to_dict() for pid, r in self.pools.items()},
            "snapshot": self.snapshot.to_dict() if self.snapshot else None,
            "snapshot_error": self.snapshot_error,
        }
