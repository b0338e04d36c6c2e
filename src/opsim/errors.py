"""Error taxonomy shared by the runtime, ledger and replay packages."""
from __future__ import annotations

from enum import StrEnum

__all__ = [
    "BytecodeNotFoundError",
    "CodecError",
    "ConfigurationError",
    "ContractNotFoundError",
    "DuplicateContractError",
    "ExecutionFault",
    "FaultKind",
    "ReplayError",
    "SimulatorError",
    "SnapshotFormatError",
]


class SimulatorError(Exception):
    """Root of every error raised by opsim."""


class CodecError(SimulatorError, ValueError):
    """Malformed or truncated binary data."""


class ConfigurationError(SimulatorError):
    """Setup is invalid; raised before any contract executes."""


class BytecodeNotFoundError(ConfigurationError):
    pass


class DuplicateContractError(ConfigurationError):
    pass


class ContractNotFoundError(ConfigurationError):
    pass


class SnapshotFormatError(ConfigurationError):
    """A state feed, cache file or block record is malformed."""


class FaultKind(StrEnum):
    ENGINE = "engine"
    UNSUPPORTED_REENTRY = "unsupported_reentry"
    REENTRANCY = "reentrancy"
    CALL_DEPTH_EXCEEDED = "call_depth_exceeded"
    ALREADY_DEPLOYED = "already_deployed"
    SELF_DEPLOYMENT = "self_deployment"
    CALL_FAILED = "call_failed"
    NOT_INITIALIZED = "not_initialized"


class ExecutionFault(SimulatorError):
    """A contract call failed.

    ``kind`` tags the failure, ``address`` is the contract it happened in (if
    known), ``message`` is the error text from the engine or host and
    ``original`` the exception it was raised from, with its traceback.
    """

    def __init__(
        self,
        kind: FaultKind,
        message: str,
        address: str | None = None,
        original: BaseException | None = None,
    ) -> None:
        self.kind = kind
        self.message = message
        self.address = address
        self.original = original
        prefix = f"(in: {address}) " if address else ""
        super().__init__(f"{prefix}OPNET: {kind.value}: {message}")

    @classmethod
    def wrap(cls, exc: BaseException, address: str | None = None) -> ExecutionFault:
        """Tag an arbitrary engine exception, keeping existing faults unchanged."""
        if isinstance(exc, ExecutionFault):
            return exc
        fault = cls(FaultKind.ENGINE, str(exc) or type(exc).__name__, address, original=exc)
        fault.__cause__ = exc
        return fault


class ReplayError(SimulatorError):
    """A replayed block failed at ``index`` (``-1`` when no transaction ran)."""

    def __init__(self, height: int, index: int, detail: str, tx_id: str | None = None) -> None:
        self.height = height
        self.index = index
        self.detail = detail
        self.tx_id = tx_id
        where = f"transaction #{index}" if index >= 0 else "setup"
        if tx_id:
            where = f"{where} ({tx_id})"
        super().__init__(f"Block {height} replay failed at {where}: {detail}")
