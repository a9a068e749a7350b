from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, TypedDict, TypeVar, runtime_checkable

from loguru import logger

from lp_keeper.core.errors import PoolClientError, TransientNetworkError
from lp_keeper.core.utils.retry import retry_async

T = TypeVar("T")

Amounts = tuple[int, int]

FULL_WITHDRAW_BPS = 10_000


@dataclass(frozen=True)
class PriceRange:
    lower: int
    upper: int

    @classmethod
    def centered_on(cls, center: int, half_width: int) -> PriceRange:
        return cls(lower=center - half_width, upper=center + half_width)

    def to_list(self) -> list[int]:
        return [self.lower, self.upper]


class PositionState(TypedDict):
    lower_bound: int | None
    upper_bound: int | None
    deposited_amounts: Amounts
    accrued_fees: Amounts
    accrued_rewards: int


class WithdrawResult(TypedDict):
    withdrawn_amounts: Amounts


class ClaimFeesResult(TypedDict):
    claimed_amounts: Amounts


class ClaimRewardsResult(TypedDict):
    claimed_amount: int


@runtime_checkable
class PoolClient(Protocol):
    """Pool and position operations the keeper depends on.

    `price_range` is None for constant-product pools, which have no range.
    `strategy` is the liquidity-shape tag from the pool config (e.g. "spot_balanced").
    """

    async def get_reference_price_step_index(self, pool_id: str) -> int: ...

    async def get_position_state(self, position_id: str) -> PositionState: ...

    async def create_position_and_deposit(
        self,
        pool_id: str,
        price_range: PriceRange | None,
        amounts: Amounts,
        strategy: str,
    ) -> str: ...

    async def withdraw(
        self, position_id: str, bps: int, close_if_empty: bool
    ) -> WithdrawResult: ...

    async def deposit(
        self,
        position_id: str,
        price_range: PriceRange | None,
        amounts: Amounts,
        strategy: str,
    ) -> None: ...

    async def claim_fees(self, position_id: str) -> ClaimFeesResult: ...

    async def claim_rewards(self, position_id: str) -> ClaimRewardsResult: ...


class GuardedPoolClient:
    """Bounded timeout on every call; transient read failures retried with backoff.

    Writes are never retried here: a timed-out withdraw or deposit may still have
    landed, so the caller decides what to do with the failure.
    """

    def __init__(
        self,
        inner: PoolClient,
        *,
        timeout_s: float = 30.0,
        read_retries: int = 3,
        base_delay_s: float = 0.25,
        max_delay_s: float | None = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if timeout_s <= 0:
            raise ValueError("timeout_s must be positive")
        self.inner = inner
        self.timeout_s = float(timeout_s)
        self.read_retries = max(1, int(read_retries))
        self.base_delay_s = float(base_delay_s)
        self.max_delay_s = max_delay_s
        self._sleep = sleep
        self.logger = logger.bind(component="pool_client")

    async def _call(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await asyncio.wait_for(fn(), timeout=self.timeout_s)
        except TimeoutError as exc:
            raise TransientNetworkError(
                f"{operation} timed out after {self.timeout_s:g}s",
                operation=operation,
            ) from exc
        except PoolClientError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise PoolClientError(f"{operation} failed: {exc}", operation=operation) from exc

    async def _read(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        def _on_retry(attempt: int, exc: Exception, delay_s: float) -> None:
            self.logger.warning(
                f"{operation} attempt {attempt + 1} failed ({exc}); retrying in {delay_s:.2f}s"
            )

        return await retry_async(
            lambda: self._call(operation, fn),
            max_retries=self.read_retries,
            base_delay_s=self.base_delay_s,
            max_delay_s=self.max_delay_s,
            on_retry=_on_retry,
            sleep=self._sleep,
        )

    async def get_reference_price_step_index(self, pool_id: str) -> int:
        return int(
            await self._read(
                "get_reference_price_step_index",
                lambda: self.inner.get_reference_price_step_index(pool_id),
            )
        )

    async def get_position_state(self, position_id: str) -> PositionState:
        return await self._read(
            "get_position_state", lambda: self.inner.get_position_state(position_id)
        )

    async def create_position_and_deposit(
        self,
        pool_id: str,
        price_range: PriceRange | None,
        amounts: Amounts,
        strategy: str,
    ) -> str:
        return await self._call(
            "create_position_and_deposit",
            lambda: self.inner.create_position_and_deposit(
                pool_id, price_range, amounts, strategy
            ),
        )

    async def withdraw(
        self, position_id: str, bps: int, close_if_empty: bool
    ) -> WithdrawResult:
        if not 0 <= bps <= FULL_WITHDRAW_BPS:
            raise ValueError(f"bps must be within 0..{FULL_WITHDRAW_BPS}, got {bps}")
        return await self._call(
            "withdraw", lambda: self.inner.withdraw(position_id, bps, close_if_empty)
        )

    async def deposit(
        self,
        position_id: str,
        price_range: PriceRange | None,
        amounts: Amounts,
        strategy: str,
    ) -> None:
        await self._call(
            "deposit",
            lambda: self.inner.deposit(position_id, price_range, amounts, strategy),
        )

    async def claim_fees(self, position_id: str) -> ClaimFeesResult:
        return await self._call("claim_fees", lambda: self.inner.claim_fees(position_id))

    async def claim_rewards(self, position_id: str) -> ClaimRewardsResult:
        return await self._call(
            "claim_rewards", lambda: self.inner.claim_rewards(position_id)
        )

    async def close(self) -> None:
        close = getattr(self.inner, "close", None)
        if close is not None:
            result = close()
            if asyncio.iscoroutine(result):
                await result


def coerce_amounts(value: Any) -> Amounts:
    if value is None:
        return (0, 0)
    x, y = value
    return (int(x), int(y))
