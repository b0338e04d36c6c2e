"""CLI entry point for opsim."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .codec.binary import encode_selector
from .config import NETWORK_HRP, SimulatorConfig
from .errors import ConfigurationError, SimulatorError
from .ledger.chain import Ledger
from .replay.block import ReplayResult, ReplayStatus
from .replay.environment import ReplayEnvironment
from .replay.feed import SnapshotCache, load_feed
from .replay.transaction import Transaction
from .report.generator import ReportGenerator
from .runtime.engine import load_engine

console = Console()

_TRACE_CHOICES = ("gas", "pointers", "calls", "deployments")


def _configure_logging(level: str) -> None:
    logger = logging.getLogger("opsim")
    logger.handlers.clear()
    logger.addHandler(RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True))
    logger.setLevel(level.upper())


def _results_table(results: list[ReplayResult]) -> Table:
    table = Table(title="Block Replay")
    table.add_column("Block", style="bold")
    table.add_column("Status")
    table.add_column("Executed", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Gas", justify="right")
    status_colors = {ReplayStatus.COMPLETED: "green", ReplayStatus.FAILED: "red"}
    for result in results:
        color = status_colors.get(result.status, "yellow")
        table.add_row(
            str(result.height),
            f"[{color}]{result.status.value.upper()}[/]",
            str(len(result.executed)),
            str(len(result.skipped)),
            str(result.gas_used),
        )
    return table


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="warning",
    show_default=True,
)
def main(log_level: str) -> None:
    """Deterministic OP_NET contract simulator and block replayer."""
    _configure_logging(log_level)


@main.command()
@click.argument("config_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--height", type=int, required=True, help="First block to replay; storage is seeded at height - 1.")
@click.option("--blocks", type=click.IntRange(min=1), default=1, show_default=True, help="Consecutive blocks to replay")
@click.option("--engine", type=str, default=None, help="Execution engine as 'module:attribute'")
@click.option("--network", type=click.Choice(sorted(NETWORK_HRP)), default=None)
@click.option("--block-dir", type=click.Path(file_okay=False), default=None, help="Directory of <height>.json files")
@click.option("--cache-dir", type=click.Path(file_okay=False), default=None, help="Materialized state cache")
@click.option("--ignore-unknown-contracts", is_flag=True, help="Skip transactions against unloaded contracts.")
@click.option("--allow-recorded-reverts", is_flag=True, help="Continue past failures that also reverted on chain.")
@click.option("--keep-new-states", is_flag=True, help="Seed storage only before the first block.")
@click.option("--trace", "traces", multiple=True, type=click.Choice(_TRACE_CHOICES), help="Enable a trace channel.")
@click.option("--output", "-o", type=click.Path(), help="Output file path")
@click.option("--format", "fmt", type=click.Choice(["json", "markdown"]), default="markdown")
def replay(
    config_file: str,
    height: int,
    blocks: int,
    engine: str | None,
    network: str | None,
    block_dir: str | None,
    cache_dir: str | None,
    ignore_unknown_contracts: bool,
    allow_recorded_reverts: bool,
    keep_new_states: bool,
    traces: tuple[str, ...],
    output: str | None,
    fmt: str,
) -> None:
    """Replay recorded blocks against contracts listed in CONFIG_FILE."""
    console.print(f"[bold blue]opsim v{__version__}[/]")
    overrides = {f"trace_{name}": True for name in traces}
    try:
        config = SimulatorConfig.from_env(
            engine=engine,
            network=network,
            block_dir=Path(block_dir) if block_dir else None,
            cache_dir=Path(cache_dir) if cache_dir else None,
            **overrides,
        )
        if config.engine is None:
            raise ConfigurationError("No execution engine configured; pass --engine or set OPSIM_ENGINE")
        ledger = Ledger(config, load_engine(config.engine))
        environment = ReplayEnvironment.from_file(ledger, config_file)
    except ConfigurationError as exc:
        console.print(f"[red]Configuration error: {exc}[/]")
        sys.exit(1)

    async def _run() -> list[ReplayResult]:
        await environment.initialize()
        try:
            return await environment.replay(
                height,
                blocks,
                keep_new_states=keep_new_states,
                ignore_unknown_contracts=ignore_unknown_contracts,
                allow_recorded_reverts=allow_recorded_reverts,
            )
        finally:
            environment.cleanup()

    try:
        with console.status("[bold green]Replaying blocks..."):
            results = asyncio.run(_run())
    except SimulatorError as exc:
        console.print(f"[red]Replay aborted: {exc}[/]")
        sys.exit(1)

    console.print(_results_table(results))
    gen = ReportGenerator(Path(config_file).stem)
    report = gen.to_json(results) if fmt == "json" else gen.to_markdown(results)
    if output:
        Path(output).write_text(report)
        console.print(f"[green]Report saved to {output}[/]")
    else:
        console.print(report)

    failed = [result for result in results if not result.ok]
    for result in failed:
        if result.failure is not None:
            console.print(f"[red]Block {result.height} failed: {result.failure.message}[/]")
    if failed:
        sys.exit(3)


@main.command()
@click.argument("feed_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--height", type=int, required=True, help="Materialize storage as of this block")
@click.option("--cache-dir", type=click.Path(file_okay=False), default=None)
@click.option("--no-cache", is_flag=True, help="Read the feed directly, without the on-disk cache.")
@click.option("--output", "-o", type=click.Path(), help="Write [pointerHex, valueHex] pairs here")
def snapshot(feed_file: str, height: int, cache_dir: str | None, no_cache: bool, output: str | None) -> None:
    """Materialize a historical storage feed at a block height."""
    try:
        if no_cache:
            states = load_feed(feed_file, height)
        else:
            config = SimulatorConfig.from_env(cache_dir=Path(cache_dir) if cache_dir else None)
            cache = SnapshotCache(config.cache_dir)
            states = cache.get(feed_file, height)
            console.print(f"Cache: {cache.path_for(feed_file, height)}")
    except ConfigurationError as exc:
        console.print(f"[red]{exc}[/]")
        sys.exit(1)

    console.print(f"{len(states)} pointers at block {height}")
    if output:
        Path(output).write_text(SnapshotCache.serialize(states))
        console.print(f"[green]States saved to {output}[/]")


@main.command()
@click.argument("block_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--details", is_flag=True, help="Print the full dump of every transaction.")
def block(block_file: str, details: bool) -> None:
    """Show the transactions recorded in a block file."""
    try:
        documents = json.loads(Path(block_file).read_text())
        if not isinstance(documents, list):
            raise ConfigurationError(f"{block_file} must hold a JSON array")
        transactions = [Transaction.from_document(document) for document in documents]
    except (json.JSONDecodeError, ConfigurationError) as exc:
        console.print(f"[red]Failed to parse block: {exc}[/]")
        sys.exit(1)

    table = Table(title=f"Block {Path(block_file).stem}")
    table.add_column("#", justify="right")
    table.add_column("Tx id")
    table.add_column("Contract")
    table.add_column("Selector")
    table.add_column("Gas", justify="right")
    table.add_column("Reverted")
    for tx in transactions:
        selector = f"0x{tx.calldata[:4].hex()}" if len(tx.calldata) >= 4 else "-"
        table.add_row(
            str(tx.index),
            tx.tx_id_hex[:16],
            tx.contract_address or str(tx.target),
            selector,
            str(tx.gas_used),
            "[red]yes[/]" if tx.revert is not None else "no",
        )
    console.print(table)
    console.print(f"\n[bold]Total: {len(transactions)} transactions[/]")
    if details:
        for tx in transactions:
            console.print(tx.describe(), markup=False, highlight=False)


@main.command()
@click.argument("names", nargs=-1, required=True)
def selector(names: tuple[str, ...]) -> None:
    """Print the 4-byte selector of each method name."""
    for name in names:
        click.echo(f"0x{encode_selector(name):08x}  {name}")


if __name__ == "__main__":
    main()
