"""Range rebalancing for managed positions.

Withdraw and deposit are two separate ledger operations. When the deposit does
not land, the withdrawn liquidity is recorded on the position as a pending
re-deposit and every later attempt goes through ``resume_deposit``, which never
withdraws again and re-deposits exactly what was withdrawn.
"""

from __future__ import annotations

from collections.abc import Iterable

from loguru import logger

from lp_keeper.core.clients.pool_client import (
    FULL_WITHDRAW_BPS,
    Amounts,
    PoolClient,
    PriceRange,
    coerce_amounts,
)
from lp_keeper.core.errors import PositionNotFoundError
from lp_keeper.core.utils.clock import Clock, SystemClock

from .settings import PoolConfig
from .tracker import PositionTracker
from .types import ManagedPosition, PendingRedeposit, RebalanceOutcome, RebalanceStatus


class RebalanceExecutor:
    def __init__(
        self,
        client: PoolClient,
        pools: Iterable[PoolConfig],
        tracker: PositionTracker,
        *,
        clock: Clock | None = None,
    ) -> None:
        self.client = client
        self.pools = {p.pool_id: p for p in pools}
        self.tracker = tracker
        self.clock = clock or SystemClock()
        self.logger = logger.bind(component="executor")

    async def rebalance(
        self, position: ManagedPosition, new_center: int | None = None
    ) -> RebalanceOutcome:
        pool = self.pools[position.pool_id]

        if not pool.is_concentrated:
            # Constant-product liquidity spans the whole curve: open once, never re-center.
            if position.is_funded:
                return RebalanceOutcome(status=RebalanceStatus.SKIPPED, center_index=None)
            return await self._create(position, pool, None, None, pool.deposit_amounts)

        if new_center is None:
            raise ValueError(f"Pool {pool.pool_id} needs a center index to rebalance")
        assert pool.half_width is not None
        center = int(new_center)
        new_range = PriceRange.centered_on(center, pool.half_width)

        if not position.is_funded:
            return await self._create(position, pool, new_range, center, pool.deposit_amounts)

        if position.pending_redeposit is not None:
            self.logger.warning(
                f"[{position.pool_id}] re-deposit pending from an earlier rebalance; "
                "resuming deposit instead of withdrawing again"
            )
            return await self.resume_deposit(position)

        if position.range == new_range:
            self.tracker.mark_acted(position, center)
            self.logger.info(
                f"[{position.pool_id}] range {new_range.to_list()} already centered on "
                f"{center}; skipping withdraw/deposit"
            )
            return RebalanceOutcome(
                status=RebalanceStatus.SKIPPED, center_index=center, range=new_range
            )

        async with position.lock:
            return await self._shift(position, pool, new_range, center)

    async def resume_deposit(
        self,
        position: ManagedPosition,
        pending: PendingRedeposit | None = None,
    ) -> RebalanceOutcome:
        pending = pending or position.pending_redeposit
        if pending is None:
            raise ValueError(f"No pending re-deposit for pool {position.pool_id}")
        if position.position_id is None:
            raise ValueError(f"Pool {position.pool_id} has no position to deposit into")

        async with position.lock:
            return await self._deposit(position, pending)

    async def _create(
        self,
        position: ManagedPosition,
        pool: PoolConfig,
        new_range: PriceRange | None,
        center: int | None,
        amounts: Amounts,
    ) -> RebalanceOutcome:
        async with position.lock:
            return await self._create_locked(position, pool, new_range, center, amounts)

    async def _create_locked(
        self,
        position: ManagedPosition,
        pool: PoolConfig,
        new_range: PriceRange | None,
        center: int | None,
        amounts: Amounts,
    ) -> RebalanceOutcome:
        try:
            position_id = await self.client.create_position_and_deposit(
                pool.pool_id, new_range, amounts, pool.strategy
            )
        except Exception as exc:  # noqa: BLE001
            self.logger.error(f"[{pool.pool_id}] create position failed: {exc}")
            return RebalanceOutcome(
                status=RebalanceStatus.FAILED,
                center_index=center,
                range=new_range,
                error=str(exc),
            )

        now = self.clock.now()
        position.position_id = str(position_id)
        if new_range is not None:
            position.set_range(new_range)
        else:
            position.lower_bound = position.upper_bound = None
        position.deposited = amounts
        position.accrued_fees = (0, 0)
        position.accrued_rewards = 0
        position.pending_redeposit = None
        position.created_at = now
        position.updated_at = now
        position.last_harvest_at = now
        if center is not None:
            self.tracker.mark_acted(position, center)

        where = new_range.to_list() if new_range is not None else "full range"
        self.logger.info(
            f"[{pool.pool_id}] created position {position_id} at {where} "
            f"(center={center}, strategy={pool.strategy})"
        )
        return RebalanceOutcome(
            status=RebalanceStatus.CREATED,
            center_index=center,
            range=new_range,
            deposited_amounts=amounts,
        )

    async def _recreate(
        self,
        position: ManagedPosition,
        pool: PoolConfig,
        new_range: PriceRange,
        center: int,
        amounts: Amounts,
        exc: PositionNotFoundError,
    ) -> RebalanceOutcome:
        self.logger.warning(
            f"[{pool.pool_id}] position {position.position_id} not found ({exc}); "
            "creating a new one"
        )
        position.forget()
        return await self._create_locked(position, pool, new_range, center, amounts)

    async def _shift(
        self,
        position: ManagedPosition,
        pool: PoolConfig,
        new_range: PriceRange,
        center: int,
    ) -> RebalanceOutcome:
        assert position.position_id is not None
        old_range = position.range

        try:
            result = await self.client.withdraw(
                position.position_id, FULL_WITHDRAW_BPS, False
            )
        except PositionNotFoundError as exc:
            return await self._recreate(
                position, pool, new_range, center, pool.deposit_amounts, exc
            )
        except Exception as exc:  # noqa: BLE001
            self.logger.error(f"[{pool.pool_id}] withdraw failed: {exc}")
            return RebalanceOutcome(
                status=RebalanceStatus.FAILED,
                center_index=center,
                range=old_range,
                error=f"withdraw failed: {exc}",
            )

        withdrawn = coerce_amounts(result.get("withdrawn_amounts"))
        position.deposited = (0, 0)
        # An empty position has nothing to carry over; seed it from config.
        redeposit = withdrawn if any(withdrawn) else pool.deposit_amounts
        pending = PendingRedeposit(
            range=new_range,
            center_index=center,
            withdrawn_amounts=withdrawn,
            deposit_amounts=redeposit,
        )
        self.logger.info(
            f"[{pool.pool_id}] withdrew {withdrawn} from "
            f"{old_range.to_list() if old_range else None}"
        )
        return await self._deposit(position, pending)

    async def _deposit(
        self, position: ManagedPosition, pending: PendingRedeposit
    ) -> RebalanceOutcome:
        assert position.position_id is not None
        pool = self.pools[position.pool_id]
        try:
            await self.client.deposit(
                position.position_id, pending.range, pending.deposit_amounts, pool.strategy
            )
        except PositionNotFoundError as exc:
            return await self._recreate(
                position, pool, pending.range, pending.center_index, pending.deposit_amounts, exc
            )
        except Exception as exc:  # noqa: BLE001
            position.pending_redeposit = PendingRedeposit(
                range=pending.range,
                center_index=pending.center_index,
                withdrawn_amounts=pending.withdrawn_amounts,
                deposit_amounts=pending.deposit_amounts,
                error=str(exc),
            )
            position.updated_at = self.clock.now()
            self.logger.error(
                f"[{position.pool_id}] deposit at {pending.range.to_list()} failed after "
                f"withdraw; {pending.withdrawn_amounts} awaiting re-deposit: {exc}"
            )
            return RebalanceOutcome(
                status=RebalanceStatus.PARTIAL,
                center_index=pending.center_index,
                range=pending.range,
                withdrawn_amounts=pending.withdrawn_amounts,
                error=f"deposit failed: {exc}",
            )

        position.set_range(pending.range)
        position.deposited = pending.deposit_amounts
        position.pending_redeposit = None
        position.updated_at = self.clock.now()
        self.tracker.mark_acted(position, pending.center_index)
        self.logger.info(
            f"[{position.pool_id}] deposited {pending.deposit_amounts} at "
            f"{pending.range.to_list()} (center={pending.center_index})"
        )
        return RebalanceOutcome(
            status=RebalanceStatus.REBALANCED,
            center_index=pending.center_index,
            range=pending.range,
            withdrawn_amounts=pending.withdrawn_amounts,
            deposited_amounts=pending.deposit_amounts,
        )
