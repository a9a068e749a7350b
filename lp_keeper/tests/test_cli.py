from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest
from click.testing import CliRunner
from loguru import logger

from lp_keeper.cli import lp_keeper_cli
from lp_keeper.keeper.store import PositionStore


@pytest.fixture(autouse=True)
def _restore_logger():
    yield
    logger.remove()
    logger.add(sys.stderr)


def _write_config(tmp_path: Path, **overrides) -> Path:
    keeper = {
        "pool_client": {
            "entrypoint": "lp_keeper.testing.sim_pool:SimulatedPoolClient",
            "options": {"indices": {"pool-a": 100, "pool-b": 50}},
        },
        "pools": [
            {
                "pool_id": "pool-a",
                "target_allocation": 50,
                "half_width": 10,
                "deposit_amounts": [500, 0],
            },
            {
                "pool_id": "pool-b",
                "target_allocation": 50,
                "half_width": 5,
                "deposit_amounts": [0, 500],
            },
        ],
        "state_path": str(tmp_path / "state.db"),
    }
    keeper.update(overrides)
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"keeper": keeper}))
    return path


def test_validate_ok(tmp_path: Path):
    config_path = _write_config(tmp_path)

    result = CliRunner().invoke(lp_keeper_cli, ["validate", "--config", str(config_path)])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["ok"] is True
    assert payload["result"]["target_total"] == 100
    assert [p["pool_id"] for p in payload["result"]["pools"]] == ["pool-a", "pool-b"]


def test_validate_rejects_over_allocated_targets(tmp_path: Path):
    config_path = _write_config(
        tmp_path,
        pools=[
            {"pool_id": "a", "target_allocation": 70, "half_width": 10},
            {"pool_id": "b", "target_allocation": 40, "half_width": 10},
        ],
    )

    result = CliRunner().invoke(lp_keeper_cli, ["validate", "--config", str(config_path)])

    assert result.exit_code == 1
    payload = json.loads(result.output)
    assert payload["ok"] is False
    assert payload["error"] == "invalid_config"


def test_validate_rejects_unknown_entrypoint(tmp_path: Path):
    config_path = _write_config(
        tmp_path, pool_client={"entrypoint": "lp_keeper.nowhere:Client"}
    )

    result = CliRunner().invoke(lp_keeper_cli, ["validate", "--config", str(config_path)])

    assert result.exit_code == 1
    assert json.loads(result.output)["error"] == "invalid_config"


def test_run_once_then_status(tmp_path: Path):
    config_path = _write_config(tmp_path)
    runner = CliRunner()

    result = runner.invoke(
        lp_keeper_cli,
        ["run", "--config", str(config_path), "--once", "--log-level", "ERROR"],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["ok"] is True
    pools = payload["result"]["pools"]
    assert pools["pool-a"]["rebalance"]["status"] == "CREATED"
    assert pools["pool-a"]["rebalance"]["range"] == [90, 110]
    assert pools["pool-b"]["rebalance"]["range"] == [45, 55]
    assert payload["result"]["snapshot"]["total_value"] == 1000

    status = runner.invoke(lp_keeper_cli, ["status", "--config", str(config_path)])

    assert status.exit_code == 0, status.output
    state = json.loads(status.output)["result"]
    assert state["positions"]["pool-a"]["lower_bound"] == 90
    assert state["snapshot"]["total_value"] == 1000
    assert state["growth_pct"] == 0.0


def test_status_requires_state_path(tmp_path: Path):
    config_path = _write_config(tmp_path, state_path=None)

    result = CliRunner().invoke(lp_keeper_cli, ["status", "--config", str(config_path)])

    assert result.exit_code == 1
    assert json.loads(result.output)["error"] == "no_state"


def test_run_requires_pool_client(tmp_path: Path):
    config_path = _write_config(tmp_path, pool_client=None)

    result = CliRunner().invoke(
        lp_keeper_cli,
        ["run", "--config", str(config_path), "--once", "--log-level", "ERROR"],
    )

    assert result.exit_code == 1
    assert json.loads(result.output)["error"] == "invalid_config"


def test_run_without_pools_closes_state_store(tmp_path: Path, monkeypatch):
    closed = []
    original_close = PositionStore.close

    def _close(self):
        closed.append(self)
        original_close(self)

    monkeypatch.setattr(PositionStore, "close", _close)
    config_path = _write_config(tmp_path, pools=[])

    result = CliRunner().invoke(
        lp_keeper_cli,
        ["run", "--config", str(config_path), "--once", "--log-level", "ERROR"],
    )

    assert result.exit_code == 1
    payload = json.loads(result.output)
    assert payload["error"] == "invalid_config"
    assert "No pools" in payload["details"]
    assert len(closed) == 1
