"""Big-endian binary writer/reader used on both sides of the host boundary."""
from __future__ import annotations

import hashlib
from collections.abc import Iterable

from ..errors import CodecError
from .address import ADDRESS_LENGTH, Address

__all__ = [
    "U16_MAX",
    "U32_MAX",
    "U64_MAX",
    "U128_MAX",
    "U256_MAX",
    "BinaryReader",
    "BinaryWriter",
    "CodecError",
    "encode_selector",
]

U8_MAX = (1 << 8) - 1
U16_MAX = (1 << 16) - 1
U32_MAX = (1 << 32) - 1
U64_MAX = (1 << 64) - 1
U128_MAX = (1 << 128) - 1
U256_MAX = (1 << 256) - 1
I64_MIN = -(1 << 63)
I64_MAX = (1 << 63) - 1


def encode_selector(name: str) -> int:
    """Selector of a method name: first 4 bytes of SHA-256, big-endian."""
    digest = hashlib.sha256(name.encode("utf-8")).digest()
    return int.from_bytes(digest[:4], "big", signed=False)


class BinaryWriter:
    def __init__(self) -> None:
        self._buffer = bytearray()

    def __len__(self) -> int:
        return len(self._buffer)

    def get_buffer(self) -> bytes:
        return bytes(self._buffer)

    def _write_uint(self, value: int, width: int, name: str) -> BinaryWriter:
        if value < 0 or value >= 1 << (width * 8):
            raise CodecError(f"{name} out of range: {value}")
        self._buffer += value.to_bytes(width, "big", signed=False)
        return self

    def write_u8(self, value: int) -> BinaryWriter:
        return self._write_uint(value, 1, "u8")

    def write_u16(self, value: int) -> BinaryWriter:
        return self._write_uint(value, 2, "u16")

    def write_u32(self, value: int) -> BinaryWriter:
        return self._write_uint(value, 4, "u32")

    def write_u64(self, value: int) -> BinaryWriter:
        return self._write_uint(value, 8, "u64")

    def write_u128(self, value: int) -> BinaryWriter:
        return self._write_uint(value, 16, "u128")

    def write_u256(self, value: int) -> BinaryWriter:
        return self._write_uint(value, 32, "u256")

    def write_i64(self, value: int) -> BinaryWriter:
        if value < I64_MIN or value > I64_MAX:
            raise CodecError(f"i64 out of range: {value}")
        self._buffer += value.to_bytes(8, "big", signed=True)
        return self

    def write_boolean(self, value: bool) -> BinaryWriter:
        return self.write_u8(1 if value else 0)

    def write_selector(self, selector: int) -> BinaryWriter:
        return self.write_u32(selector)

    def write_address(self, address: Address) -> BinaryWriter:
        self._buffer += bytes(address)
        return self

    def write_bytes(self, data: bytes | bytearray | memoryview) -> BinaryWriter:
        self._buffer += bytes(data)
        return self

    def write_bytes_with_length(self, data: bytes | bytearray | memoryview) -> BinaryWriter:
        payload = bytes(data)
        self.write_u32(len(payload))
        self._buffer += payload
        return self

    def write_string_with_length(self, value: str) -> BinaryWriter:
        return self.write_bytes_with_length(value.encode("utf-8"))

    def _write_count(self, count: int) -> None:
        if count > U16_MAX:
            raise CodecError(f"array too long: {count} > {U16_MAX}")
        self.write_u16(count)

    def write_address_array(self, addresses: Iterable[Address]) -> BinaryWriter:
        items = list(addresses)
        self._write_count(len(items))
        for address in items:
            self.write_address(address)
        return self

    def write_u256_array(self, values: Iterable[int]) -> BinaryWriter:
        items = list(values)
        self._write_count(len(items))
        for value in items:
            self.write_u256(value)
        return self

    def write_u64_array(self, values: Iterable[int]) -> BinaryWriter:
        items = list(values)
        self._write_count(len(items))
        for value in items:
            self.write_u64(value)
        return self

    def write_bytes_array(self, values: Iterable[bytes]) -> BinaryWriter:
        items = list(values)
        self._write_count(len(items))
        for value in items:
            self.write_bytes_with_length(value)
        return self

    def write_tuple(self, values: Iterable[int]) -> BinaryWriter:
        items = list(values)
        self.write_u32(len(items))
        for value in items:
            self.write_u256(value)
        return self


class BinaryReader:
    def __init__(self, data: bytes | bytearray | memoryview) -> None:
        self._data = bytes(data)
        self._offset = 0

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def remaining(self) -> int:
        return len(self._data) - self._offset

    def read_bytes(self, length: int) -> bytes:
        if length < 0:
            raise CodecError("negative length")
        end = self._offset + length
        if end > len(self._data):
            raise CodecError(
                f"Unexpected end of buffer: need {length} bytes at offset {self._offset}, have {self.remaining}"
            )
        value = self._data[self._offset : end]
        self._offset = end
        return value

    def _read_uint(self, width: int) -> int:
        return int.from_bytes(self.read_bytes(width), "big", signed=False)

    def read_u8(self) -> int:
        return self._read_uint(1)

    def read_u16(self) -> int:
        return self._read_uint(2)

    def read_u32(self) -> int:
        return self._read_uint(4)

    def read_u64(self) -> int:
        return self._read_uint(8)

    def read_u128(self) -> int:
        return self._read_uint(16)

    def read_u256(self) -> int:
        return self._read_uint(32)

    def read_i64(self) -> int:
        return int.from_bytes(self.read_bytes(8), "big", signed=True)

    def read_boolean(self) -> bool:
        value = self.read_u8()
        if value > 1:
            raise CodecError(f"Invalid boolean byte 0x{value:02X}")
        return value == 1

    def read_selector(self) -> int:
        return self.read_u32()

    def read_address(self) -> Address:
        return Address(self.read_bytes(ADDRESS_LENGTH))

    def read_bytes_with_length(self) -> bytes:
        return self.read_bytes(self.read_u32())

    def read_string_with_length(self) -> str:
        data = self.read_bytes_with_length()
        try:
            return data.decode("utf-8", errors="strict")
        except UnicodeDecodeError as exc:
            raise CodecError(f"Invalid UTF-8 string: {exc}") from exc

    def read_address_array(self) -> list[Address]:
        return [self.read_address() for _ in range(self.read_u16())]

    def read_u256_array(self) -> list[int]:
        return [self.read_u256() for _ in range(self.read_u16())]

    def read_u64_array(self) -> list[int]:
        return [self.read_u64() for _ in range(self.read_u16())]

    def read_bytes_array(self) -> list[bytes]:
        return [self.read_bytes_with_length() for _ in range(self.read_u16())]

    def read_tuple(self) -> list[int]:
        return [self.read_u256() for _ in range(self.read_u32())]
