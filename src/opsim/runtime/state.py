"""Value types produced by contract execution."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from ..codec.address import Address
from ..errors import ExecutionFault

__all__ = ["CallResponse", "NetEvent", "StorageSnapshot"]


@dataclass(frozen=True, slots=True)
class NetEvent:
    type: str
    data: bytes


@dataclass(slots=True)
class CallResponse:
    """Tagged call result: exactly one of ``response`` / ``error`` is set."""

    response: bytes | None = None
    error: ExecutionFault | None = None
    events: list[NetEvent] = field(default_factory=list)
    call_stack: list[Address] = field(default_factory=list)
    used_gas: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> bytes:
        if self.error is not None:
            raise self.error
        return self.response or b""


@dataclass(frozen=True, slots=True)
class StorageSnapshot:
    """Immutable copy of one instance's storage and deployment records."""

    address: Address
    states: Mapping[int, int]
    deployment_states: Mapping[int, int]
    deployed_contracts: Mapping[Address, bytes]
    deployed: bool
    block_number: int | None = None

    @classmethod
    def capture(
        cls,
        address: Address,
        states: Mapping[int, int],
        deployment_states: Mapping[int, int],
        deployed_contracts: Mapping[Address, bytes],
        deployed: bool,
        block_number: int | None = None,
    ) -> StorageSnapshot:
        return cls(
            address=address,
            states=MappingProxyType(dict(states)),
            deployment_states=MappingProxyType(dict(deployment_states)),
            deployed_contracts=MappingProxyType(dict(deployed_contracts)),
            deployed=deployed,
            block_number=block_number,
        )
