"""Byte-level host functions handed to the execution engine."""
from __future__ import annotations

from typing import TYPE_CHECKING

from ..codec.binary import BinaryReader, BinaryWriter

if TYPE_CHECKING:
    from .contract import ContractRuntime

__all__ = ["RuntimeHost"]


class RuntimeHost:
    """Decodes engine requests, forwards them to a runtime and encodes the reply."""

    def __init__(self, runtime: ContractRuntime) -> None:
        self.runtime = runtime

    async def load(self, data: bytes) -> bytes:
        reader = BinaryReader(data)
        value = self.runtime.load_pointer(reader.read_u256())
        return BinaryWriter().write_u256(value).get_buffer()

    async def store(self, data: bytes) -> bytes:
        reader = BinaryReader(data)
        pointer = reader.read_u256()
        value = reader.read_u256()
        self.runtime.store_pointer(pointer, value)
        return BinaryWriter().write_boolean(True).get_buffer()

    async def call(self, data: bytes) -> bytes:
        reader = BinaryReader(data)
        target = reader.read_address()
        calldata = reader.read_bytes_with_length()
        response = await self.runtime.call_contract(target, calldata)
        writer = BinaryWriter()
        writer.write_u64(response.used_gas)
        writer.write_bytes(response.response or b"")
        return writer.get_buffer()

    async def deploy_contract_at_address(self, data: bytes) -> bytes:
        reader = BinaryReader(data)
        target = reader.read_address()
        salt = reader.read_bytes(32)
        seed, derived = self.runtime.deploy_at_address(target, salt)
        return BinaryWriter().write_bytes(seed).write_address(derived).get_buffer()

    async def next_pointer_value_greater_than(self, data: bytes) -> bytes:
        reader = BinaryReader(data)
        pointer = reader.read_u256()
        value_at_least = reader.read_u256()
        lte = reader.read_boolean()
        found = self.runtime.next_pointer_value_greater_than(pointer, value_at_least, lte)
        return BinaryWriter().write_u256(found).get_buffer()

    async def inputs(self) -> bytes:
        return self.runtime.ledger.encoded_inputs

    async def outputs(self) -> bytes:
        return self.runtime.ledger.encoded_outputs

    def log(self, data: bytes) -> None:
        self.runtime.on_log(BinaryReader(data).read_string_with_length())

    def emit(self, data: bytes) -> None:
        reader = BinaryReader(data)
        event_type = reader.read_string_with_length()
        payload = reader.read_bytes_with_length()
        self.runtime.on_event(event_type, payload)

    def gas_callback(self, gas: int, method: str) -> None:
        self.runtime.on_gas(gas, method)
