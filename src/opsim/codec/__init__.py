"""Wire format shared with the execution engine."""

from __future__ import annotations

from ..errors import CodecError
from .address import ADDRESS_LENGTH, Address, sort_addresses
from .binary import U256_MAX, BinaryReader, BinaryWriter, encode_selector

__all__ = [
    "ADDRESS_LENGTH",
    "U256_MAX",
    "Address",
    "BinaryReader",
    "BinaryWriter",
    "CodecError",
    "encode_selector",
    "sort_addresses",
]
