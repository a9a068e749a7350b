from __future__ import annotations

import asyncio
import json
import signal
import sys
from typing import Any

import click
from loguru import logger

from lp_keeper import __version__
from lp_keeper.core.errors import ConfigurationError
from lp_keeper.keeper.allocator import SnapshotHistory
from lp_keeper.keeper.loop import ControlLoop
from lp_keeper.keeper.report import format_snapshot, format_tick
from lp_keeper.keeper.settings import KeeperSettings, load_pool_client, load_settings
from lp_keeper.keeper.store import PositionStore
from lp_keeper.keeper.types import TickReport

_LOG_LEVELS = click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False)


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _configure_logging(log_level: str, log_file: str | None) -> None:
    logger.remove()
    logger.add(sys.stderr, level=str(log_level).upper())
    if log_file:
        try:
            logger.add(
                log_file,
                level=str(log_level).upper(),
                rotation="10 MB",
                retention="7 days",
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Failed to configure log file {log_file}: {exc}")


def _load_or_exit(config_path: str | None) -> KeeperSettings:
    try:
        return load_settings(config_path)
    except ConfigurationError as exc:
        _echo_json({"ok": False, "error": "invalid_config", "details": str(exc)})
        sys.exit(1)


async def _run_keeper(
    settings: KeeperSettings,
    *,
    once: bool,
    interval: float | None,
    max_ticks: int | None,
) -> TickReport | None:
    if settings.pool_client is None:
        raise ConfigurationError("keeper.pool_client.entrypoint is required to run")
    client = load_pool_client(settings.pool_client)
    store = PositionStore(settings.state_path) if settings.state_path else None
    keeper = ControlLoop(settings, client, store=store)

    def _handle(sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}; shutting down")
        keeper.stop()

    aio_loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            aio_loop.add_signal_handler(sig, _handle, sig)
        except (NotImplementedError, RuntimeError):
            continue

    try:
        keeper.start()
        if once:
            return await keeper.run_once()
        return await keeper.run(interval, max_ticks=max_ticks)
    finally:
        await keeper.close()


@click.group(name="lp-keeper", help="Rebalance and harvest concentrated-liquidity positions.")
@click.version_option(__version__, prog_name="lp-keeper")
def lp_keeper_cli() -> None:
    pass


@lp_keeper_cli.command(name="run", help="Run the keeper loop (or a single tick with --once).")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None)
@click.option("--once", is_flag=True, default=False, help="Run one tick and exit.")
@click.option("--interval", type=float, default=None, help="Override poll_interval_seconds.")
@click.option("--max-ticks", type=int, default=None)
@click.option("--log-level", type=_LOG_LEVELS, default="INFO", show_default=True)
@click.option("--log-file", type=click.Path(dir_okay=False), default=None)
@click.option("--text", "as_text", is_flag=True, default=False, help="Human-readable output.")
def run_cmd(
    config_path: str | None,
    once: bool,
    interval: float | None,
    max_ticks: int | None,
    log_level: str,
    log_file: str | None,
    as_text: bool,
) -> None:
    _configure_logging(log_level, log_file)
    settings = _load_or_exit(config_path)

    try:
        report = asyncio.run(
            _run_keeper(settings, once=once, interval=interval, max_ticks=max_ticks)
        )
    except ConfigurationError as exc:
        _echo_json({"ok": False, "error": "invalid_config", "details": str(exc)})
        sys.exit(1)

    if report is None:
        _echo_json({"ok": True, "result": None})
        return
    if as_text:
        click.echo(format_tick(report))
        if report.snapshot is not None:
            click.echo(
                format_snapshot(
                    report.snapshot, tolerance_pct=settings.rebalance_threshold_percent
                )
            )
    else:
        _echo_json({"ok": report.ok, "result": report.to_dict()})
    if not report.ok:
        sys.exit(2)


@lp_keeper_cli.command(name="validate", help="Validate the keeper configuration.")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None)
def validate_cmd(config_path: str | None) -> None:
    settings = _load_or_exit(config_path)
    if settings.pool_client is not None:
        try:
            load_pool_client(settings.pool_client)
        except ConfigurationError as exc:
            _echo_json({"ok": False, "error": "invalid_config", "details": str(exc)})
            sys.exit(1)
    _echo_json(
        {
            "ok": True,
            "result": {
                "pools": [p.model_dump(mode="json") for p in settings.pools],
                "target_total": sum(p.target_allocation for p in settings.pools),
                "pool_client": (
                    settings.pool_client.entrypoint if settings.pool_client else None
                ),
            },
        }
    )


@lp_keeper_cli.command(name="status", help="Show persisted positions and the latest snapshot.")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None)
@click.option("--text", "as_text", is_flag=True, default=False)
def status_cmd(config_path: str | None, as_text: bool) -> None:
    settings = _load_or_exit(config_path)
    if not settings.state_path:
        _echo_json(
            {"ok": False, "error": "no_state", "details": "keeper.state_path is not set"}
        )
        sys.exit(1)

    store = PositionStore(settings.state_path)
    try:
        positions = store.load_positions()
        latest = store.load_snapshots(limit=1)
        first = store.first_snapshot()
    finally:
        store.close()

    history = SnapshotHistory([s for s in (first, *latest) if s is not None])
    snapshot = history.latest
    if as_text:
        if snapshot is None:
            click.echo("No snapshots recorded yet.")
        else:
            click.echo(
                format_snapshot(
                    snapshot,
                    tolerance_pct=settings.rebalance_threshold_percent,
                    history=history,
                )
            )
        return

    _echo_json(
        {
            "ok": True,
            "result": {
                "positions": {pid: p.to_dict() for pid, p in positions.items()},
                "snapshot": snapshot.to_dict() if snapshot else None,
                "growth_pct": history.growth_pct(),
            },
        }
    )


def main() -> None:
    lp_keeper_cli()


if __name__ == "__main__":
    main()
