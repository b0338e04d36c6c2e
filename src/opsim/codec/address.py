"""Canonical 32-byte contract/account addresses."""
from __future__ import annotations

import secrets
from dataclasses import dataclass

import bech32

from ..errors import CodecError

__all__ = ["ADDRESS_LENGTH", "LEGACY_PROGRAM_LENGTH", "Address", "sort_addresses"]

ADDRESS_LENGTH = 32
LEGACY_PROGRAM_LENGTH = 20


@dataclass(frozen=True, slots=True, order=True)
class Address:
    """A 32-byte identifier; equality, hashing and ordering use the raw bytes.

    Text forms accepted by :meth:`from_string`: ``0x``-prefixed or bare hex of
    32 bytes (any case), and bech32/bech32m segwit strings. A 20-byte legacy
    witness program is left-padded with zeros, so the short segwit form and
    the hex form of the same key compare equal.
    """

    data: bytes

    def __post_init__(self) -> None:
        raw = bytes(self.data)
        if len(raw) != ADDRESS_LENGTH:
            raise CodecError(f"Address must be {ADDRESS_LENGTH} bytes, got {len(raw)}")
        object.__setattr__(self, "data", raw)

    def __bytes__(self) -> bytes:
        return self.data

    def __str__(self) -> str:
        return self.to_hex()

    def __repr__(self) -> str:
        return f"Address({self.to_hex()})"

    @classmethod
    def dead(cls) -> Address:
        return cls(bytes(ADDRESS_LENGTH))

    @classmethod
    def random(cls) -> Address:
        return cls(secrets.token_bytes(ADDRESS_LENGTH))

    @classmethod
    def from_program(cls, program: bytes) -> Address:
        if len(program) == ADDRESS_LENGTH:
            return cls(program)
        if len(program) == LEGACY_PROGRAM_LENGTH:
            return cls(bytes(ADDRESS_LENGTH - LEGACY_PROGRAM_LENGTH) + program)
        raise CodecError(f"Unsupported witness program length {len(program)}")

    @classmethod
    def from_string(cls, text: str) -> Address:
        value = text.strip()
        if not value:
            raise CodecError("Empty address")

        hex_part = value[2:] if value[:2].lower() == "0x" else value
        if len(hex_part) == ADDRESS_LENGTH * 2:
            try:
                return cls(bytes.fromhex(hex_part))
            except ValueError:
                pass

        separator = value.rfind("1")
        if separator <= 0:
            raise CodecError(f"Invalid address '{text}'")
        hrp = value[:separator].lower()
        version, program = bech32.decode(hrp, value.lower())
        if version is None or program is None:
            raise CodecError(f"Invalid address '{text}'")
        return cls.from_program(bytes(program))

    @property
    def is_legacy(self) -> bool:
        return self.data[: ADDRESS_LENGTH - LEGACY_PROGRAM_LENGTH] == bytes(ADDRESS_LENGTH - LEGACY_PROGRAM_LENGTH)

    def to_hex(self) -> str:
        return "0x" + self.data.hex()

    def p2tr(self, hrp: str) -> str:
        """Taproot (bech32m, witness v1) text form."""
        encoded = bech32.encode(hrp, 1, list(self.data))
        if encoded is None:
            raise CodecError(f"Cannot encode address for hrp '{hrp}'")
        return encoded

    def is_bigger_than(self, other: Address) -> bool:
        return self.data > other.data


def sort_addresses(a: Address, b: Address) -> tuple[Address, Address]:
    return (b, a) if a.is_bigger_than(b) else (a, b)
