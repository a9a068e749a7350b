import pytest

from lp_keeper.core.clients.pool_client import (
    GuardedPoolClient,
    PoolClient,
    PriceRange,
    coerce_amounts,
)
from lp_keeper.core.errors import (
    PoolClientError,
    PositionNotFoundError,
    TransientNetworkError,
)
from lp_keeper.testing.sim_pool import SimulatedPoolClient


async def _no_sleep(_seconds: float) -> None:
    return None


class TestGuardedPoolClient:
    @pytest.fixture
    def inner(self):
        return SimulatedPoolClient(indices={"pool-a": 42})

    @pytest.fixture
    def client(self, inner):
        return GuardedPoolClient(
            inner, timeout_s=0.05, read_retries=3, base_delay_s=0, sleep=_no_sleep
        )

    def test_simulated_client_satisfies_protocol(self, inner, client):
        assert isinstance(inner, PoolClient)
        assert isinstance(client, PoolClient)

    @pytest.mark.asyncio
    async def test_read_passes_through(self, client):
        assert await client.get_reference_price_step_index("pool-a") == 42

    @pytest.mark.asyncio
    async def test_read_retries_transient_errors(self, client, inner):
        inner.fail_next(
            "get_reference_price_step_index",
            TransientNetworkError("rate limited"),
            times=2,
        )

        assert await client.get_reference_price_step_index("pool-a") == 42
        assert inner.call_count("get_reference_price_step_index") == 3

    @pytest.mark.asyncio
    async def test_read_gives_up_after_retries(self, client, inner):
        inner.fail_next(
            "get_reference_price_step_index",
            TransientNetworkError("rate limited"),
            times=3,
        )

        with pytest.raises(TransientNetworkError):
            await client.get_reference_price_step_index("pool-a")
        assert inner.call_count("get_reference_price_step_index") == 3

    @pytest.mark.asyncio
    async def test_rejections_are_not_retried(self, client, inner):
        inner.fail_next("get_reference_price_step_index")

        with pytest.raises(PoolClientError):
            await client.get_reference_price_step_index("pool-a")
        assert inner.call_count("get_reference_price_step_index") == 1

    @pytest.mark.asyncio
    async def test_timeout_becomes_transient_error(self, client, inner):
        inner.hang("get_reference_price_step_index")

        with pytest.raises(TransientNetworkError) as exc_info:
            await client.get_reference_price_step_index("pool-a")
        assert exc_info.value.operation == "get_reference_price_step_index"
        assert inner.call_count("get_reference_price_step_index") == 3

    @pytest.mark.asyncio
    async def test_writes_are_never_retried(self, client, inner):
        inner.fail_next("create_position_and_deposit", TransientNetworkError("timeout"))

        with pytest.raises(TransientNetworkError):
            await client.create_position_and_deposit(
                "pool-a", PriceRange(32, 52), (1, 1), "spot_balanced"
            )
        assert inner.call_count("create_position_and_deposit") == 1

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_wrapped(self, client, inner):
        position_id = await client.create_position_and_deposit(
            "pool-a", PriceRange(32, 52), (1, 1), "spot_balanced"
        )
        inner.fail_next("claim_fees", RuntimeError("reverted"))

        with pytest.raises(PoolClientError) as exc_info:
            await client.claim_fees(position_id)
        assert "reverted" in str(exc_info.value)
        assert exc_info.value.operation == "claim_fees"

    @pytest.mark.asyncio
    async def test_missing_position_is_not_retried(self, client, inner):
        with pytest.raises(PositionNotFoundError):
            await client.get_position_state("gone")
        assert inner.call_count("get_position_state") == 1

    @pytest.mark.asyncio
    async def test_withdraw_rejects_out_of_range_bps(self, client, inner):
        with pytest.raises(ValueError):
            await client.withdraw("pos", 10_001, False)
        assert inner.call_count("withdraw") == 0

    @pytest.mark.asyncio
    async def test_close_delegates(self, client, inner):
        await client.close()
        assert inner.closed


def test_price_range_centered():
    r = PriceRange.centered_on(106, 10)
    assert r.to_list() == [96, 116]
    assert r == PriceRange(96, 116)


def test_coerce_amounts():
    assert coerce_amounts(None) == (0, 0)
    assert coerce_amounts(["3", 4]) == (3, 4)
