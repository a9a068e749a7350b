from __future__ import annotations

from datetime import UTC, datetime

from .allocator import SnapshotHistory
from .types import PortfolioSnapshot, TickReport


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=UTC).isoformat()


def format_snapshot(
    snapshot: PortfolioSnapshot,
    *,
    tolerance_pct: float,
    history: SnapshotHistory | None = None,
) -> str:
    lines = [
        f"Portfolio @ {_iso(snapshot.timestamp)}",
        f"  total value:     {snapshot.total_value:,.4f}",
        f"  pending fees:    {snapshot.total_fees:,.4f}",
        f"  pending rewards: {snapshot.total_rewards:,.4f}",
        "  allocations:",
    ]
    for p in snapshot.pools:
        flag = "!" if abs(p.drift) > tolerance_pct else " "
        stale = " (stale)" if p.stale else ""
        lines.append(
            f"   {flag} {p.pool_id}: {p.observed_allocation:5.1f}% "
            f"(target {p.target_allocation:g}%, drift {p.drift:+.1f}%){stale}"
        )
    if history is not None and len(history) > 1:
        lines.append(f"  growth since start: {history.growth_pct():+.2f}%")
    return "\n".join(lines)


def format_tick(report: TickReport) -> str:
    status = "ok" if report.ok else f"failed pools: {', '.join(report.failed_pools) or '-'}"
    lines = [f"Tick #{report.tick} @ {_iso(report.started_at)} [{status}]"]
    for pool_id, result in report.pools.items():
        parts = [f"index={result.reference_index}"]
        if result.drift is not None:
            parts.append(f"moved={result.drift.bins_moved}")
        if result.rebalance is not None:
            parts.append(f"rebalance={result.rebalance.status}")
            if result.rebalance.range is not None:
                parts.append(f"range={result.rebalance.range.to_list()}")
        if result.harvest is not None:
            parts.append(f"harvest={result.harvest.status}")
        if result.error:
            parts.append(f"error={result.error}")
        lines.append(f"  {pool_id}: " + " ".join(parts))
    if report.snapshot_error:
        lines.append(f"  snapshot error: {report.snapshot_error}")
    return "\n".join(lines)
