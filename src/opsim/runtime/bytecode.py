"""Address -> bytecode registry."""
from __future__ import annotations

import logging
from pathlib import Path

from ..codec.address import Address
from ..errors import BytecodeNotFoundError

__all__ = ["BytecodeRegistry"]

logger = logging.getLogger(__name__)


class BytecodeRegistry:
    """Bytecode blobs keyed by contract address.

    The first association for an address wins; later :meth:`set` calls for the
    same address are ignored, so "make sure this is loaded" can be repeated.
    """

    def __init__(self) -> None:
        self._bytecodes: dict[Address, bytes] = {}

    def __len__(self) -> int:
        return len(self._bytecodes)

    def __contains__(self, address: object) -> bool:
        return address in self._bytecodes

    def load(self, path: str | Path, address: Address) -> bytes:
        file_path = Path(path)
        try:
            bytecode = file_path.read_bytes()
        except OSError as exc:
            raise BytecodeNotFoundError(f"Cannot read bytecode for {address} from {file_path}: {exc}") from exc
        self.set(address, bytecode)
        logger.debug("loaded %d bytes of bytecode for %s from %s", len(bytecode), address, file_path)
        return self._bytecodes[address]

    def set(self, address: Address, bytecode: bytes) -> None:
        if address in self._bytecodes:
            return
        self._bytecodes[address] = bytes(bytecode)

    def get(self, address: Address) -> bytes:
        bytecode = self._bytecodes.get(address)
        if bytecode is None:
            raise BytecodeNotFoundError(f"Bytecode for address {address} not found")
        return bytecode

    def has(self, address: Address) -> bool:
        return address in self._bytecodes

    def clear(self) -> None:
        self._bytecodes.clear()
