from __future__ import annotations

import asyncio

from loguru import logger

from lp_keeper.core.clients.pool_client import GuardedPoolClient, PoolClient
from lp_keeper.core.errors import ConfigurationError
from lp_keeper.core.utils.clock import Clock, SystemClock

from .allocator import PortfolioAllocator, SnapshotHistory
from .executor import RebalanceExecutor
from .harvester import RewardHarvester
from .settings import KeeperSettings, PoolConfig
from .store import PositionStore
from .tracker import PositionTracker
from .types import (
    ManagedPosition,
    PoolTickResult,
    RebalanceOutcome,
    RebalanceStatus,
    TickReport,
)


class ControlLoop:
    """Periodic keeper tick over every configured pool.

    Each pool is handled independently: a failure in one pool is recorded on
    that pool's result and the remaining pools still run. ``stop()`` is checked
    between ticks, so an in-flight tick always completes.
    """

    def __init__(
        self,
        settings: KeeperSettings,
        client: PoolClient,
        *,
        clock: Clock | None = None,
        store: PositionStore | None = None,
    ) -> None:
        self.settings = settings
        self.clock = clock or SystemClock()
        self.store = store
        self.logger = logger.bind(component="control_loop")

        if isinstance(client, GuardedPoolClient):
            self.client = client
        else:
            self.client = GuardedPoolClient(
                client,
                timeout_s=settings.call_timeout_seconds,
                read_retries=settings.read_retries,
                base_delay_s=settings.retry_base_delay_s,
            )

        self.tracker = PositionTracker(settings.rebalance_threshold)
        self.executor = RebalanceExecutor(
            self.client, settings.pools, self.tracker, clock=self.clock
        )
        self.harvester = RewardHarvester(
            self.client, self.tracker, interval_s=settings.harvest_interval_seconds
        )
        self.allocator = PortfolioAllocator(
            self.client,
            self.tracker,
            tolerance_pct=settings.rebalance_threshold_percent,
        )

        restored = store.load_positions() if store is not None else {}
        self.positions: dict[str, ManagedPosition] = {
            p.pool_id: restored.get(p.pool_id) or ManagedPosition(pool_id=p.pool_id)
            for p in settings.pools
        }
        first = store.first_snapshot() if store is not None else None
        self.history = SnapshotHistory([first] if first is not None else [])

        self.ticks = 0
        self.last_report: TickReport | None = None
        self._started = False
        self._stop_event = asyncio.Event()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def start(self) -> None:
        if not self.settings.pools:
            raise ConfigurationError("No pools configured; nothing to keep")
        if not self._started:
            self.logger.info(
                f"Keeping {len(self.settings.pools)} pool(s): "
                + ", ".join(p.pool_id for p in self.settings.pools)
            )
            for pool_id, position in self.positions.items():
                if position.is_funded:
                    self.logger.info(
                        f"[{pool_id}] resuming position {position.position_id} "
                        f"range={position.range.to_list() if position.range else None}"
                    )
        self._started = True

    def stop(self) -> None:
        if not self._stop_event.is_set():
            self.logger.info("Stop requested; finishing current tick")
        self._stop_event.set()

    async def run_once(self) -> TickReport:
        if not self._started:
            self.start()

        self.ticks += 1
        report = TickReport(tick=self.ticks, started_at=self.clock.now())

        if self.settings.concurrent_pools:
            results = await asyncio.gather(
                *(self._tick_pool(cfg) for cfg in self.settings.pools)
            )
        else:
            results = [await self._tick_pool(cfg) for cfg in self.settings.pools]
        report.pools = {r.pool_id: r for r in results}

        try:
            snapshot = await self.allocator.snapshot(
                self.positions, self.settings.pools, now=self.clock.now()
            )
        except Exception as exc:  # noqa: BLE001
            self.logger.exception(f"Portfolio snapshot failed: {exc}")
            report.snapshot_error = f"{type(exc).__name__}: {exc}"
        else:
            report.snapshot = snapshot
            self.history.append(snapshot)
            if snapshot.needs_attention:
                for note in self.allocator.recommendations(snapshot):
                    self.logger.warning(f"Manual rebalancing recommended: {note}")

        self._persist(report)
        report.finished_at = self.clock.now()
        self.last_report = report

        if report.ok:
            self.logger.info(f"Tick #{report.tick} complete")
        else:
            self.logger.warning(
                f"Tick #{report.tick} complete with failures: {report.failed_pools}"
            )
        return report

    async def run(
        self, interval: float | None = None, *, max_ticks: int | None = None
    ) -> TickReport | None:
        self.start()
        interval_s = float(
            interval if interval is not None else self.settings.poll_interval_seconds
        )
        ran = 0
        while not self._stop_event.is_set():
            tick_started = self.clock.now()
            await self.run_once()
            ran += 1
            if max_ticks is not None and ran >= max_ticks:
                break
            if self._stop_event.is_set():
                break
            elapsed = self.clock.now() - tick_started
            await self._sleep_or_stop(max(0.0, interval_s - elapsed))

        self.logger.info(f"Control loop stopped after {ran} tick(s)")
        return self.last_report

    async def close(self) -> None:
        await self.client.close()
        if self.store is not None:
            self.store.close()

    async def _sleep_or_stop(self, seconds: float) -> None:
        sleeper = asyncio.ensure_future(self.clock.sleep(seconds))
        stopper = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait(
                {sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (sleeper, stopper):
                if not task.done():
                    task.cancel()
            await asyncio.gather(sleeper, stopper, return_exceptions=True)

    async def _tick_pool(self, cfg: PoolConfig) -> PoolTickResult:
        position = self.positions[cfg.pool_id]
        result = PoolTickResult(pool_id=cfg.pool_id)
        try:
            if not cfg.is_concentrated:
                # Full-range liquidity: no range to track, only open once and harvest.
                if not position.is_funded:
                    result.rebalance = await self.executor.rebalance(position)
                result.harvest = await self.harvester.maybe_harvest(
                    position, self.clock.now()
                )
                return result

            index = await self.client.get_reference_price_step_index(cfg.pool_id)
            result.reference_index = index

            pending = position.pending_redeposit
            if pending is not None:
                if self.settings.resume_partial_rebalance:
                    result.rebalance = await self.executor.resume_deposit(position)
                else:
                    self.logger.warning(
                        f"[{cfg.pool_id}] {pending.withdrawn_amounts} withdrawn and not "
                        "re-deposited; automatic resume is disabled"
                    )
                    result.rebalance = RebalanceOutcome(
                        status=RebalanceStatus.PARTIAL,
                        center_index=pending.center_index,
                        range=pending.range,
                        withdrawn_amounts=pending.withdrawn_amounts,
                        error=pending.error or "re-deposit pending",
                    )
            elif not position.is_funded:
                result.rebalance = await self.executor.rebalance(position, index)
            else:
                drift = self.tracker.check_drift(
                    position, index, threshold=self.settings.threshold_for(cfg)
                )
                result.drift = drift
                if drift.needs_rebalance:
                    result.rebalance = await self.executor.rebalance(position, index)

            result.harvest = await self.harvester.maybe_harvest(
                position, self.clock.now()
            )
        except Exception as exc:  # noqa: BLE001
            self.logger.exception(f"[{cfg.pool_id}] tick failed: {exc}")
            result.error = f"{type(exc).__name__}: {exc}"
        return result

    def _persist(self, report: TickReport) -> None:
        if self.store is None:
            return
        try:
            self.store.save_positions(list(self.positions.values()))
            if report.snapshot is not None:
                self.store.append_snapshot(report.snapshot)
        except Exception as exc:  # noqa: BLE001
            self.logger.error(f"Persisting keeper state failed: {exc}")
