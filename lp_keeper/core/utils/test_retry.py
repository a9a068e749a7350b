import pytest

from lp_keeper.core.errors import PoolClientError, TransientNetworkError
from lp_keeper.core.utils.retry import exponential_backoff_s, retry_async


def test_exponential_backoff_caps():
    assert exponential_backoff_s(0, base_delay_s=0.5) == 0.5
    assert exponential_backoff_s(3, base_delay_s=0.5) == 4.0
    assert exponential_backoff_s(10, base_delay_s=0.5, max_delay_s=5.0) == 5.0


@pytest.mark.asyncio
async def test_retry_async_backs_off_on_transient_errors():
    sleeps: list[float] = []
    attempts = {"n": 0}

    async def flaky():
        attempts["n"] += 1
        if attempts["n"] < 3:
            raise TransientNetworkError("busy")
        return "ok"

    async def record(delay_s: float) -> None:
        sleeps.append(delay_s)

    result = await retry_async(flaky, max_retries=3, base_delay_s=1.0, sleep=record)

    assert result == "ok"
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_retry_async_raises_non_transient_immediately():
    attempts = {"n": 0}

    async def rejected():
        attempts["n"] += 1
        raise PoolClientError("insufficient balance")

    with pytest.raises(PoolClientError):
        await retry_async(rejected, max_retries=5, base_delay_s=0)
    assert attempts["n"] == 1


@pytest.mark.asyncio
async def test_retry_async_requires_an_attempt():
    async def never():
        return None

    with pytest.raises(ValueError):
        await retry_async(never, max_retries=0)
