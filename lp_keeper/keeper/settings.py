from __future__ import annotations

import importlib
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from lp_keeper.core.config import get_keeper_section, load_config_file
from lp_keeper.core.errors import ConfigurationError

from .constants import (
    ALLOCATION_SUM_EPSILON,
    DEFAULT_ALLOCATION_TOLERANCE_PCT,
    DEFAULT_CALL_TIMEOUT_S,
    DEFAULT_HARVEST_INTERVAL_S,
    DEFAULT_POLL_INTERVAL_S,
    DEFAULT_READ_RETRIES,
    DEFAULT_REBALANCE_THRESHOLD,
    DEFAULT_RETRY_BASE_DELAY_S,
    MAX_TARGET_ALLOCATION_PCT,
    MIN_POLL_INTERVAL_S,
)
from .types import PoolKind


class PoolConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    pool_id: str = Field(..., min_length=1)
    kind: PoolKind = PoolKind.CONCENTRATED
    target_allocation: float = Field(..., ge=0, le=MAX_TARGET_ALLOCATION_PCT)
    strategy: str = Field(
        default="spot_balanced",
        description="Liquidity shape tag passed through to the pool client.",
    )
    half_width: int | None = Field(
        default=None,
        description="Range half-width in the pool's native price steps. Concentrated pools only.",
    )
    deposit_amounts: tuple[int, int] = (0, 0)
    rebalance_threshold: int | None = Field(
        default=None,
        description="Price steps moved before re-centering; falls back to the keeper default.",
    )
    asset_weights: tuple[float, float] = (1.0, 1.0)

    @field_validator("half_width")
    @classmethod
    def _half_width_positive(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            raise ValueError("half_width must be > 0")
        return v

    @field_validator("rebalance_threshold")
    @classmethod
    def _threshold_positive(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            raise ValueError("rebalance_threshold must be a positive number of price steps")
        return v

    @field_validator("deposit_amounts")
    @classmethod
    def _amounts_non_negative(cls, v: tuple[int, int]) -> tuple[int, int]:
        if v[0] < 0 or v[1] < 0:
            raise ValueError("deposit_amounts must be non-negative")
        return v

    @field_validator("asset_weights")
    @classmethod
    def _weights_non_negative(cls, v: tuple[float, float]) -> tuple[float, float]:
        if v[0] < 0 or v[1] < 0:
            raise ValueError("asset_weights must be non-negative")
        return v

    @model_validator(mode="after")
    def _half_width_for_kind(self) -> PoolConfig:
        if self.is_concentrated and self.half_width is None:
            raise ValueError(f"half_width is required for {self.kind} pools")
        return self

    @property
    def is_concentrated(self) -> bool:
        return self.kind == PoolKind.CONCENTRATED


class PoolClientSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    entrypoint: str = Field(
        ..., description="Import path of the pool client class, e.g. my_pkg.clients:DlmmClient"
    )
    options: dict[str, Any] = Field(default_factory=dict)

    @field_validator("entrypoint")
    @classmethod
    def _validate_entrypoint(cls, v: str) -> str:
        if ":" not in v and "." not in v:
            raise ValueError("entrypoint must be a full import path to a pool client class")
        return v


class KeeperSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    pools: list[PoolConfig] = Field(default_factory=list)
    rebalance_threshold: int = Field(default=DEFAULT_REBALANCE_THRESHOLD, gt=0)
    rebalance_threshold_percent: float = Field(
        default=DEFAULT_ALLOCATION_TOLERANCE_PCT, ge=0
    )
    harvest_interval_seconds: float = Field(default=DEFAULT_HARVEST_INTERVAL_S, ge=0)
    poll_interval_seconds: float = Field(
        default=DEFAULT_POLL_INTERVAL_S, ge=MIN_POLL_INTERVAL_S
    )
    call_timeout_seconds: float = Field(default=DEFAULT_CALL_TIMEOUT_S, gt=0)
    read_retries: int = Field(default=DEFAULT_READ_RETRIES, ge=1)
    retry_base_delay_s: float = Field(default=DEFAULT_RETRY_BASE_DELAY_S, ge=0)
    concurrent_pools: bool = False
    resume_partial_rebalance: bool = True
    state_path: str | None = None
    pool_client: PoolClientSpec | None = None

    @model_validator(mode="after")
    def _validate_pools(self) -> KeeperSettings:
        seen: set[str] = set()
        for pool in self.pools:
            if pool.pool_id in seen:
                raise ValueError(f"duplicate pool_id: {pool.pool_id}")
            seen.add(pool.pool_id)

        total = sum(p.target_allocation for p in self.pools)
        if total > MAX_TARGET_ALLOCATION_PCT + ALLOCATION_SUM_EPSILON:
            raise ValueError(
                f"target allocations sum to {total:g}%, which exceeds {MAX_TARGET_ALLOCATION_PCT:g}%"
            )
        return self

    def threshold_for(self, pool: PoolConfig) -> int:
        return pool.rebalance_threshold or self.rebalance_threshold


def parse_settings(data: dict[str, Any]) -> KeeperSettings:
    try:
        return KeeperSettings.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid keeper configuration: {exc}") from exc


def load_settings(path: str | None = None) -> KeeperSettings:
    try:
        raw = load_config_file(path, require_exists=True)
    except (FileNotFoundError, ValueError) as exc:
        raise ConfigurationError(str(exc)) from exc
    return parse_settings(get_keeper_section(raw))


def load_pool_client(spec: PoolClientSpec) -> Any:
    module_name, sep, attr = spec.entrypoint.partition(":")
    if not sep:
        module_name, _, attr = spec.entrypoint.rpartition(".")
    try:
        module = importlib.import_module(module_name)
        cls = getattr(module, attr)
    except (ImportError, AttributeError) as exc:
        raise ConfigurationError(
            f"Cannot load pool client {spec.entrypoint!r}: {exc}"
        ) from exc
    return cls(**spec.options)
