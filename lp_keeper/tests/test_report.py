from __future__ import annotations

from lp_keeper.core.clients.pool_client import PriceRange
from lp_keeper.keeper.allocator import SnapshotHistory
from lp_keeper.keeper.report import format_snapshot, format_tick
from lp_keeper.keeper.types import (
    DriftResult,
    PoolAllocation,
    PoolTickResult,
    PortfolioSnapshot,
    RebalanceOutcome,
    RebalanceStatus,
    TickReport,
)


def _snapshot(total: float, ts: float, drifts=(10.0, -10.0)) -> PortfolioSnapshot:
    return PortfolioSnapshot(
        total_value=total,
        pools=tuple(
            PoolAllocation(
                pool_id=f"pool-{i}",
                value=total * (50 + d) / 100,
                observed_allocation=50 + d,
                target_allocation=50.0,
                drift=d,
                stale=(i == 1),
            )
            for i, d in enumerate(drifts)
        ),
        total_fees=0.0,
        total_rewards=0.0,
        needs_attention=True,
        timestamp=ts,
    )


def test_format_snapshot_flags_drift_and_growth():
    history = SnapshotHistory([_snapshot(100.0, 0.0), _snapshot(120.0, 60.0)])

    text = format_snapshot(history.latest, tolerance_pct=5.0, history=history)

    assert "! pool-0:  60.0%" in text
    assert "(stale)" in text
    assert "growth since start: +20.00%" in text


def test_format_tick_lists_pool_outcomes():
    report = TickReport(tick=4, started_at=0.0)
    report.pools["pool-a"] = PoolTickResult(
        pool_id="pool-a",
        reference_index=106,
        drift=DriftResult(bins_moved=6, needs_rebalance=True),
        rebalance=RebalanceOutcome(
            status=RebalanceStatus.REBALANCED,
            center_index=106,
            range=PriceRange(96, 116),
        ),
    )
    report.pools["pool-b"] = PoolTickResult(pool_id="pool-b", error="PoolClientError: boom")

    text = format_tick(report)

    assert "Tick #4" in text
    assert "failed pools: pool-b" in text
    assert "rebalance=REBALANCED range=[96, 116]" in text
    assert "error=PoolClientError: boom" in text
