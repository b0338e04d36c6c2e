"""CLI behavior tests."""
from __future__ import annotations

import base64
import json
import logging

import pytest
from click.testing import CliRunner

from conftest import REPLAY_CONTRACT, make_transaction
from opsim import __version__
from opsim.cli import main
from opsim.codec import encode_selector

ENGINE = "conftest:counter_engine"


@pytest.fixture(autouse=True)
def _reset_logging(monkeypatch):
    monkeypatch.delenv("OPSIM_ENGINE", raising=False)
    yield
    logger = logging.getLogger("opsim")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)


def _replay_args(workspace, *extra: str) -> list[str]:
    return [
        "replay",
        str(workspace / "replay.json"),
        "--height",
        "100",
        "--engine",
        ENGINE,
        "--block-dir",
        str(workspace / "block"),
        "--cache-dir",
        str(workspace / "cache"),
        *extra,
    ]


def test_cli_reports_package_version():
    runner = CliRunner()
    result = runner.invoke(main, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_cli_prints_selectors():
    runner = CliRunner()
    result = runner.invoke(main, ["selector", "get()", "transfer(address,uint256)"])

    assert result.exit_code == 0
    assert f"0x{encode_selector('get()'):08x}  get()" in result.output
    assert "transfer(address,uint256)" in result.output


def test_cli_replays_blocks_and_writes_report(workspace):
    report_path = workspace / "report.json"
    runner = CliRunner()
    result = runner.invoke(main, _replay_args(workspace, "--blocks", "2", "--format", "json", "-o", str(report_path)))

    assert result.exit_code == 0, result.output
    report = json.loads(report_path.read_text())
    assert report["passed"] is True
    assert report["summary"]["blocks"] == 2
    assert report["summary"]["executed"] == 2


def test_cli_exits_with_3_when_a_block_fails(workspace):
    failing = [make_transaction(REPLAY_CONTRACT, "fail()")]
    (workspace / "block" / "100.json").write_text(json.dumps([tx.to_document() for tx in failing]))

    runner = CliRunner()
    result = runner.invoke(main, _replay_args(workspace, "--format", "markdown"))

    assert result.exit_code == 3
    assert "Block 100 failed" in result.output


def test_cli_requires_an_engine(workspace):
    runner = CliRunner()
    args = [arg for arg in _replay_args(workspace) if arg != ENGINE and arg != "--engine"]
    result = runner.invoke(main, args)

    assert result.exit_code == 1
    assert "No execution engine configured" in result.output


def test_cli_rejects_unimportable_engine(workspace):
    runner = CliRunner()
    args = _replay_args(workspace)
    args[args.index(ENGINE)] = "not_a_module_anywhere:engine"
    result = runner.invoke(main, args)

    assert result.exit_code == 1
    assert "Configuration error" in result.output


def test_cli_materializes_snapshot(tmp_path):
    feed = tmp_path / "feed.json"
    pointer = base64.b64encode((7).to_bytes(32, "big")).decode()
    value = base64.b64encode((9).to_bytes(32, "big")).decode()
    feed.write_text(json.dumps([{"pointer": pointer, "value": value, "lastSeenAt": 3}]))
    out = tmp_path / "states.json"

    runner = CliRunner()
    result = runner.invoke(main, ["snapshot", str(feed), "--height", "5", "--no-cache", "-o", str(out)])

    assert result.exit_code == 0, result.output
    assert "1 pointers at block 5" in result.output
    assert json.loads(out.read_text()) == [[f"{7:064x}", f"{9:064x}"]]


def test_cli_shows_block(workspace):
    runner = CliRunner()
    result = runner.invoke(main, ["block", str(workspace / "block" / "100.json"), "--details"])

    assert result.exit_code == 0, result.output
    assert "Total: 1 transactions" in result.output
    assert "---- Replayed Transaction Dump ----" in result.output


def test_cli_rejects_malformed_block(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"not": "a list"}))
    runner = CliRunner()
    result = runner.invoke(main, ["block", str(path)])

    assert result.exit_code == 1
    assert "Failed to parse block" in result.output
