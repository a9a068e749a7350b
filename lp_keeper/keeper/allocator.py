from __future__ import annotations

from collections.abc import Iterable, Mapping

from loguru import logger

from lp_keeper.core.clients.pool_client import PoolClient

from .settings import PoolConfig
from .tracker import PositionTracker
from .types import ManagedPosition, PoolAllocation, PortfolioSnapshot


def _weighted(amounts: tuple[int, int], weights: tuple[float, float]) -> float:
    return amounts[0] * weights[0] + amounts[1] * weights[1]


def observed_allocation(value: float, total_value: float) -> float:
    if total_value <= 0:
        return 0.0
    return value / total_value * 100.0


class PortfolioAllocator:
    """Aggregates position values across pools and measures drift from targets.

    Reports imbalance only; moving value between pools is left to the operator.
    """

    def __init__(
        self,
        client: PoolClient,
        tracker: PositionTracker,
        *,
        tolerance_pct: float,
    ) -> None:
        self.client = client
        self.tracker = tracker
        self.tolerance_pct = float(tolerance_pct)
        self.logger = logger.bind(component="allocator")

    async def snapshot(
        self,
        positions: Iterable[ManagedPosition] | Mapping[str, ManagedPosition],
        configs: Iterable[PoolConfig],
        *,
        now: float,
    ) -> PortfolioSnapshot:
        if isinstance(positions, Mapping):
            by_pool = dict(positions)
        else:
            by_pool = {p.pool_id: p for p in positions}

        rows: list[tuple[PoolConfig, float, bool]] = []
        total_fees = 0.0
        total_rewards = 0.0

        for cfg in configs:
            position = by_pool.get(cfg.pool_id)
            stale = False
            if position is not None and position.position_id is not None:
                try:
                    state = await self.client.get_position_state(position.position_id)
                    self.tracker.sync(position, state)
                except Exception as exc:  # noqa: BLE001
                    stale = True
                    self.logger.warning(
                        f"[{cfg.pool_id}] state read failed, using last known amounts: {exc}"
                    )

            if position is None:
                value = 0.0
            else:
                value = _weighted(position.deposited, cfg.asset_weights)
                total_fees += _weighted(position.accrued_fees, cfg.asset_weights)
                total_rewards += float(position.accrued_rewards)
            rows.append((cfg, value, stale))

        total_value = sum(value for _, value, _ in rows)

        pools: list[PoolAllocation] = []
        for cfg, value, stale in rows:
            observed = observed_allocation(value, total_value)
            pools.append(
                PoolAllocation(
                    pool_id=cfg.pool_id,
                    value=value,
                    observed_allocation=observed,
                    target_allocation=cfg.target_allocation,
                    drift=observed - cfg.target_allocation,
                    stale=stale,
                )
            )

        needs_attention = any(abs(p.drift) > self.tolerance_pct for p in pools)
        if needs_attention:
            self.logger.warning(
                "Portfolio allocation drift above "
                f"{self.tolerance_pct:g}%: "
                + ", ".join(f"{p.pool_id}={p.drift:+.1f}%" for p in pools)
            )

        return PortfolioSnapshot(
            total_value=total_value,
            pools=tuple(pools),
            total_fees=total_fees,
            total_rewards=total_rewards,
            needs_attention=needs_attention,
            timestamp=now,
        )

    def recommendations(self, snapshot: PortfolioSnapshot) -> list[str]:
        """Operator-facing notes for pools outside tolerance. Nothing is executed."""
        notes: list[str] = []
        for p in snapshot.pools:
            if abs(p.drift) <= self.tolerance_pct:
                continue
            direction = "overweight" if p.drift > 0 else "underweight"
            notes.append(
                f"{p.pool_id} is {direction}: {p.observed_allocation:.1f}% "
                f"vs target {p.target_allocation:g}% ({p.drift:+.1f}%)"
            )
        return notes


class SnapshotHistory:
    """Append-only sequence of portfolio snapshots."""

    def __init__(self, snapshots: Iterable[PortfolioSnapshot] = ()) -> None:
        self._snapshots: list[PortfolioSnapshot] = list(snapshots)

    def append(self, snapshot: PortfolioSnapshot) -> None:
        self._snapshots.append(snapshot)

    def __len__(self) -> int:
        return len(self._snapshots)

    def __iter__(self):
        return iter(self._snapshots)

    @property
    def first(self) -> PortfolioSnapshot | None:
        return self._snapshots[0] if self._snapshots else None

    @property
    def latest(self) -> PortfolioSnapshot | None:
        return self._snapshots[-1] if self._snapshots else None

    def growth_pct(self) -> float:
        first, latest = self.first, self.latest
        if first is None or latest is None or first.total_value <= 0:
            return 0.0
        return (latest.total_value - first.total_value) / first.total_value * 100.0
