"""Simulator configuration.

Values come from keyword arguments, or from ``OPSIM_*`` environment variables
through :meth:`SimulatorConfig.from_env`. The CLI layers its options on top.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from .errors import ConfigurationError

__all__ = ["DEFAULT_GAS_LIMIT", "NETWORK_HRP", "SimulatorConfig"]

logger = logging.getLogger(__name__)

DEFAULT_GAS_LIMIT = 100_000_000_000
DEFAULT_MAX_CALL_STACK_DEPTH = 20

NETWORK_HRP: dict[str, str] = {
    "mainnet": "bc",
    "testnet": "tb",
    "regtest": "bcrt",
}

_ENV_PREFIX = "OPSIM_"
_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


def _parse_int(name: str, raw: str) -> int:
    try:
        value = int(raw.strip(), 0)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc
    if value < 0:
        raise ConfigurationError(f"{name} must be >= 0, got {value}")
    return value


@dataclass(frozen=True, slots=True)
class SimulatorConfig:
    network: str = "regtest"
    gas_limit: int = DEFAULT_GAS_LIMIT
    trace_gas: bool = False
    trace_pointers: bool = False
    trace_calls: bool = False
    trace_deployments: bool = False
    reentrancy_guard: bool = False
    nested_calls: bool = True
    max_call_stack_depth: int = DEFAULT_MAX_CALL_STACK_DEPTH
    cache_dir: Path = Path("cache")
    block_dir: Path = Path("block")
    engine: str | None = None

    def __post_init__(self) -> None:
        if self.network not in NETWORK_HRP:
            allowed = ", ".join(sorted(NETWORK_HRP))
            raise ConfigurationError(f"Unknown network '{self.network}'. Allowed: {allowed}.")
        if self.gas_limit <= 0:
            raise ConfigurationError("gas_limit must be positive")
        if self.max_call_stack_depth < 1:
            raise ConfigurationError("max_call_stack_depth must be >= 1")

    @property
    def hrp(self) -> str:
        return NETWORK_HRP[self.network]

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: Any) -> SimulatorConfig:
        """Build a config from ``OPSIM_*`` variables, then apply ``overrides``."""
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for f in fields(cls):
            key = f"{_ENV_PREFIX}{f.name.upper()}"
            raw = env.get(key)
            if raw is None:
                continue
            if f.name in {"gas_limit", "max_call_stack_depth"}:
                values[f.name] = _parse_int(key, raw)
            elif f.name in {"cache_dir", "block_dir"}:
                values[f.name] = Path(raw)
            elif f.name == "network":
                values[f.name] = raw.strip().lower()
            elif f.name == "engine":
                values[f.name] = raw.strip() or None
            else:
                values[f.name] = _parse_bool(key, raw)
            logger.debug("config %s taken from %s", f.name, key)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def with_overrides(self, **overrides: Any) -> SimulatorConfig:
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
