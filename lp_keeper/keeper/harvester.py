from __future__ import annotations

from loguru import logger

from lp_keeper.core.clients.pool_client import PoolClient, coerce_amounts
from lp_keeper.core.errors import PositionNotFoundError

from .tracker import PositionTracker
from .types import HarvestOutcome, HarvestStatus, ManagedPosition


class RewardHarvester:
    """Time-gated fee and reward claims.

    Runs on its own interval, independent of the polling period. Fee and reward
    claims are separate calls; one failing does not block the other.
    """

    def __init__(
        self,
        client: PoolClient,
        tracker: PositionTracker,
        *,
        interval_s: float,
    ) -> None:
        if interval_s < 0:
            raise ValueError(f"interval_s must be >= 0, got {interval_s}")
        self.client = client
        self.tracker = tracker
        self.interval_s = float(interval_s)
        self.logger = logger.bind(component="harvester")

    def is_due(self, position: ManagedPosition, now: float) -> bool:
        if not position.is_funded:
            return False
        if position.last_harvest_at is None:
            return True
        return now - position.last_harvest_at >= self.interval_s

    async def maybe_harvest(
        self, position: ManagedPosition, now: float
    ) -> HarvestOutcome:
        if not self.is_due(position, now):
            return HarvestOutcome(status=HarvestStatus.SKIPPED)

        async with position.lock:
            # Re-check under the lock; a concurrent caller may have just harvested.
            if not self.is_due(position, now):
                return HarvestOutcome(status=HarvestStatus.SKIPPED)
            return await self._harvest(position, now)

    async def _harvest(self, position: ManagedPosition, now: float) -> HarvestOutcome:
        assert position.position_id is not None
        position_id = position.position_id

        try:
            state = await self.client.get_position_state(position_id)
        except PositionNotFoundError as exc:
            self.logger.warning(
                f"[{position.pool_id}] position {position_id} not found ({exc}); "
                "it will be re-created on the next tick"
            )
            position.forget()
            return HarvestOutcome(
                status=HarvestStatus.FAILED, errors=(f"get_position_state: {exc}",)
            )
        except Exception as exc:  # noqa: BLE001
            self.logger.error(f"[{position.pool_id}] reading accrued amounts failed: {exc}")
            return HarvestOutcome(
                status=HarvestStatus.FAILED, errors=(f"get_position_state: {exc}",)
            )
        self.tracker.sync(position, state)

        if not position.has_accrued:
            position.last_harvest_at = now
            self.logger.debug(f"[{position.pool_id}] nothing accrued to claim")
            return HarvestOutcome(status=HarvestStatus.NOTHING_TO_CLAIM)

        claimed_fees = (0, 0)
        claimed_rewards = 0
        attempted = 0
        succeeded = 0
        errors: list[str] = []

        if any(a > 0 for a in position.accrued_fees):
            attempted += 1
            try:
                result = await self.client.claim_fees(position_id)
                claimed_fees = coerce_amounts(result.get("claimed_amounts"))
                position.accrued_fees = (0, 0)
                succeeded += 1
                self.logger.info(f"[{position.pool_id}] claimed fees {claimed_fees}")
            except Exception as exc:  # noqa: BLE001
                errors.append(f"claim_fees: {exc}")
                self.logger.error(f"[{position.pool_id}] claim fees failed: {exc}")

        if position.accrued_rewards > 0:
            attempted += 1
            try:
                result = await self.client.claim_rewards(position_id)
                claimed_rewards = int(result.get("claimed_amount") or 0)
                position.accrued_rewards = 0
                succeeded += 1
                self.logger.info(
                    f"[{position.pool_id}] claimed rewards {claimed_rewards}"
                )
            except Exception as exc:  # noqa: BLE001
                errors.append(f"claim_rewards: {exc}")
                self.logger.error(f"[{position.pool_id}] claim rewards failed: {exc}")

        if succeeded:
            position.last_harvest_at = now
            position.updated_at = now

        if succeeded == attempted:
            status = HarvestStatus.HARVESTED
        elif succeeded:
            status = HarvestStatus.PARTIAL
        else:
            status = HarvestStatus.FAILED

        return HarvestOutcome(
            status=status,
            claimed_fees=claimed_fees,
            claimed_rewards=claimed_rewards,
            errors=tuple(errors),
        )
