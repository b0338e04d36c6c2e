"""Configuration loading tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from opsim.config import DEFAULT_GAS_LIMIT, SimulatorConfig
from opsim.errors import ConfigurationError
from opsim.runtime import load_engine


def test_defaults():
    config = SimulatorConfig()
    assert config.network == "regtest"
    assert config.hrp == "bcrt"
    assert config.gas_limit == DEFAULT_GAS_LIMIT
    assert config.nested_calls is True
    assert config.reentrancy_guard is False
    assert config.engine is None


def test_from_env_parses_values():
    config = SimulatorConfig.from_env(
        {
            "OPSIM_NETWORK": "MAINNET",
            "OPSIM_GAS_LIMIT": "0x1000",
            "OPSIM_TRACE_GAS": "yes",
            "OPSIM_NESTED_CALLS": "off",
            "OPSIM_CACHE_DIR": "/tmp/opsim-cache",
            "OPSIM_ENGINE": " ",
        }
    )
    assert config.network == "mainnet"
    assert config.hrp == "bc"
    assert config.gas_limit == 4096
    assert config.trace_gas is True
    assert config.nested_calls is False
    assert config.cache_dir == Path("/tmp/opsim-cache")
    assert config.engine is None


def test_overrides_win_over_environment():
    config = SimulatorConfig.from_env({"OPSIM_NETWORK": "testnet"}, network="mainnet", engine=None)
    assert config.network == "mainnet"
    assert config.with_overrides(gas_limit=5, network=None).gas_limit == 5


@pytest.mark.parametrize(
    "environ, message",
    [
        ({"OPSIM_TRACE_CALLS": "maybe"}, "boolean"),
        ({"OPSIM_GAS_LIMIT": "lots"}, "integer"),
        ({"OPSIM_MAX_CALL_STACK_DEPTH": "-1"}, ">= 0"),
        ({"OPSIM_NETWORK": "signet"}, "Unknown network"),
        ({"OPSIM_GAS_LIMIT": "0"}, "positive"),
    ],
)
def test_invalid_environment(environ, message):
    with pytest.raises(ConfigurationError, match=message):
        SimulatorConfig.from_env(environ)


@pytest.mark.parametrize(
    "path, message",
    [
        ("no-colon", "module:attribute"),
        ("not_a_module_anywhere:engine", "Cannot import"),
        ("json:missing_attribute", "not found"),
        ("json:__name__", "does not provide"),
    ],
)
def test_load_engine_errors(path, message):
    with pytest.raises(ConfigurationError, match=message):
        load_engine(path)


def test_load_engine_factory():
    from conftest import ScriptedEngine

    assert isinstance(load_engine("conftest:counter_engine"), ScriptedEngine)
