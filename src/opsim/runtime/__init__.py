"""Contract runtime host and the execution-engine boundary."""

from __future__ import annotations

from .bytecode import BytecodeRegistry
from .contract import ContractRuntime, build_calldata
from .engine import ContractParameters, EngineHandle, ExecutionEngine, HostFunctions, load_engine
from .host import RuntimeHost
from .state import CallResponse, NetEvent, StorageSnapshot

__all__ = [
    "BytecodeRegistry",
    "CallResponse",
    "ContractParameters",
    "ContractRuntime",
    "EngineHandle",
    "ExecutionEngine",
    "HostFunctions",
    "NetEvent",
    "RuntimeHost",
    "StorageSnapshot",
    "build_calldata",
    "load_engine",
]
