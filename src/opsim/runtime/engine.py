"""Boundary with the external WASM execution engine.

opsim does not execute bytecode itself. An engine implementation receives
:class:`ContractParameters` (bytecode, gas limit and the host functions of one
contract instance) and hands back an :class:`EngineHandle`. Every value that
crosses the boundary is a byte string in the :mod:`opsim.codec` wire format.
"""
from __future__ import annotations

import importlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from ..codec.address import Address
from ..errors import ConfigurationError

__all__ = ["ContractParameters", "EngineHandle", "ExecutionEngine", "HostFunctions", "load_engine"]


@runtime_checkable
class HostFunctions(Protocol):
    """Callbacks the engine invokes while a contract runs."""

    async def load(self, data: bytes) -> bytes: ...

    async def store(self, data: bytes) -> bytes: ...

    async def call(self, data: bytes) -> bytes: ...

    async def deploy_contract_at_address(self, data: bytes) -> bytes: ...

    async def next_pointer_value_greater_than(self, data: bytes) -> bytes: ...

    async def inputs(self) -> bytes: ...

    async def outputs(self) -> bytes: ...

    def log(self, data: bytes) -> None: ...

    def emit(self, data: bytes) -> None: ...

    def gas_callback(self, gas: int, method: str) -> None: ...


@dataclass(frozen=True, slots=True)
class ContractParameters:
    address: Address
    bytecode: bytes
    gas_limit: int
    network: str
    host: HostFunctions


class EngineHandle(ABC):
    """One instantiated contract inside the engine."""

    @abstractmethod
    async def set_environment(self, data: bytes) -> None: ...

    @abstractmethod
    async def on_deploy(self, calldata: bytes) -> bytes: ...

    @abstractmethod
    async def execute(self, calldata: bytes) -> bytes: ...

    @abstractmethod
    def get_used_gas(self) -> int: ...

    @abstractmethod
    def dispose(self) -> None:
        """Release engine resources. Must tolerate repeated calls."""


class ExecutionEngine(ABC):
    @abstractmethod
    def instantiate(self, params: ContractParameters) -> EngineHandle: ...


def load_engine(path: str) -> ExecutionEngine:
    """Resolve ``"package.module:attribute"`` to an engine.

    The attribute may be an :class:`ExecutionEngine` instance, or a class or
    zero-argument factory returning one.
    """
    module_name, sep, attribute = path.partition(":")
    if not sep or not module_name or not attribute:
        raise ConfigurationError(f"Engine path must look like 'module:attribute', got '{path}'")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"Cannot import engine module '{module_name}': {exc}") from exc

    target: Any = module
    for part in attribute.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as exc:
            raise ConfigurationError(f"Engine attribute '{attribute}' not found in '{module_name}'") from exc

    if isinstance(target, ExecutionEngine):
        return target
    if callable(target):
        engine = target()
        if isinstance(engine, ExecutionEngine):
            return engine
    raise ConfigurationError(f"'{path}' does not provide an ExecutionEngine")
