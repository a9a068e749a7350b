"""Drift detection for managed positions.

The reference index only moves when the keeper acts on a position (creation or
rebalance). Polls never reset it, so several sub-threshold moves in the same
direction still add up to a rebalance.
"""

from __future__ import annotations

from loguru import logger

from lp_keeper.core.clients.pool_client import PositionState, coerce_amounts

from .types import DriftResult, ManagedPosition


class PositionTracker:
    def __init__(self, threshold: int) -> None:
        if threshold <= 0:
            raise ValueError(f"threshold must be positive, got {threshold}")
        self.threshold = int(threshold)
        self.logger = logger.bind(component="tracker")

    def check_drift(
        self,
        position: ManagedPosition,
        current_index: int,
        *,
        threshold: int | None = None,
    ) -> DriftResult:
        if position.reference_index is None:
            return DriftResult(bins_moved=0, needs_rebalance=False)

        limit = self.threshold if threshold is None else int(threshold)
        bins_moved = abs(int(current_index) - position.reference_index)
        needs_rebalance = bins_moved > limit
        if needs_rebalance:
            self.logger.info(
                f"[{position.pool_id}] price moved {bins_moved} steps "
                f"(ref={position.reference_index}, now={current_index}, threshold={limit})"
            )
        return DriftResult(bins_moved=bins_moved, needs_rebalance=needs_rebalance)

    def mark_acted(self, position: ManagedPosition, index: int) -> None:
        position.reference_index = int(index)

    def sync(self, position: ManagedPosition, state: PositionState) -> None:
        """Copy an on-chain read onto the in-memory record."""
        lower, upper = state.get("lower_bound"), state.get("upper_bound")
        position.lower_bound = None if lower is None else int(lower)
        position.upper_bound = None if upper is None else int(upper)
        position.deposited = coerce_amounts(state.get("deposited_amounts"))
        position.accrued_fees = coerce_amounts(state.get("accrued_fees"))
        position.accrued_rewards = int(state.get("accrued_rewards") or 0)
