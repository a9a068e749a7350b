import pytest

from lp_keeper.keeper.allocator import (
    PortfolioAllocator,
    SnapshotHistory,
    observed_allocation,
)
from lp_keeper.keeper.settings import PoolConfig
from lp_keeper.keeper.tracker import PositionTracker
from lp_keeper.keeper.types import ManagedPosition, PortfolioSnapshot
from lp_keeper.testing.sim_pool import SimPosition, SimulatedPoolClient


def _configs(*targets: float) -> list[PoolConfig]:
    return [
        PoolConfig(pool_id=f"pool-{i}", target_allocation=t, half_width=10)
        for i, t in enumerate(targets)
    ]


def _funded(client: SimulatedPoolClient, pool_id: str, amounts) -> ManagedPosition:
    position_id = f"{pool_id}-pos"
    client.positions[position_id] = SimPosition(
        pool_id=pool_id, lower=90, upper=110, amounts=amounts
    )
    return ManagedPosition(pool_id=pool_id, position_id=position_id)


@pytest.fixture
def client():
    return SimulatedPoolClient()


@pytest.fixture
def allocator(client):
    return PortfolioAllocator(client, PositionTracker(5), tolerance_pct=5.0)


def test_observed_allocation_zero_total():
    assert observed_allocation(0.0, 0.0) == 0.0
    assert observed_allocation(25.0, 100.0) == 25.0


@pytest.mark.asyncio
async def test_drift_against_targets(allocator, client):
    positions = [
        _funded(client, "pool-0", (60, 0)),
        _funded(client, "pool-1", (0, 40)),
    ]

    snapshot = await allocator.snapshot(positions, _configs(50, 50), now=1.0)

    assert snapshot.total_value == 100
    assert [p.observed_allocation for p in snapshot.pools] == [60.0, 40.0]
    assert [p.drift for p in snapshot.pools] == [10.0, -10.0]
    assert snapshot.needs_attention
    notes = allocator.recommendations(snapshot)
    assert len(notes) == 2
    assert "overweight" in notes[0]
    assert "underweight" in notes[1]


@pytest.mark.asyncio
async def test_within_tolerance_needs_no_attention(allocator, client):
    positions = [
        _funded(client, "pool-0", (52, 0)),
        _funded(client, "pool-1", (48, 0)),
    ]

    snapshot = await allocator.snapshot(positions, _configs(50, 50), now=1.0)

    assert not snapshot.needs_attention
    assert allocator.recommendations(snapshot) == []


@pytest.mark.asyncio
async def test_zero_total_value(allocator):
    positions = [ManagedPosition(pool_id="pool-0"), ManagedPosition(pool_id="pool-1")]

    snapshot = await allocator.snapshot(positions, _configs(50, 50), now=1.0)

    assert snapshot.total_value == 0
    assert all(p.observed_allocation == 0.0 for p in snapshot.pools)
    assert all(p.drift == -50.0 for p in snapshot.pools)


@pytest.mark.asyncio
async def test_asset_weights_scale_value(allocator, client):
    cfg = PoolConfig(
        pool_id="pool-0", target_allocation=100, half_width=10, asset_weights=(2.0, 0.5)
    )
    position = _funded(client, "pool-0", (10, 40))
    client.accrue(position.position_id, fees=(1, 2), rewards=7)

    snapshot = await allocator.snapshot([position], [cfg], now=1.0)

    assert snapshot.total_value == 40.0
    assert snapshot.total_fees == 3.0
    assert snapshot.total_rewards == 7.0


@pytest.mark.asyncio
async def test_failed_read_uses_last_known_amounts(allocator, client):
    position = _funded(client, "pool-0", (60, 0))
    position.deposited = (30, 0)
    other = _funded(client, "pool-1", (0, 30))
    client.fail_next("get_position_state")

    snapshot = await allocator.snapshot([position, other], _configs(50, 50), now=1.0)

    stale = snapshot.pool("pool-0")
    assert stale.stale
    assert stale.value == 30
    assert not snapshot.pool("pool-1").stale
    assert snapshot.total_value == 60


def _snap(total: float, ts: float) -> PortfolioSnapshot:
    return PortfolioSnapshot(
        total_value=total,
        pools=(),
        total_fees=0.0,
        total_rewards=0.0,
        needs_attention=False,
        timestamp=ts,
    )


def test_history_growth_since_first():
    history = SnapshotHistory()
    assert history.growth_pct() == 0.0

    history.append(_snap(100.0, 1.0))
    history.append(_snap(90.0, 2.0))
    history.append(_snap(110.0, 3.0))

    assert len(history) == 3
    assert history.first.timestamp == 1.0
    assert history.latest.timestamp == 3.0
    assert history.growth_pct() == pytest.approx(10.0)


def test_history_growth_zero_start():
    history = SnapshotHistory([_snap(0.0, 1.0), _snap(50.0, 2.0)])
    assert history.growth_pct() == 0.0
