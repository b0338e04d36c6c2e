"""Integer helpers for token amounts and AMM prices.

All division truncates toward zero; amounts are never negative.
"""
from __future__ import annotations

from ..codec.address import Address

__all__ = ["Q112", "decode_from_decimals", "encode_price", "expand_to_decimals", "get_reserves"]

Q112 = 1 << 112


def expand_to_decimals(n: int, decimals: int = 18) -> int:
    return n * 10**decimals


def decode_from_decimals(n: int, decimals: int = 18) -> int:
    return n // 10**decimals


def encode_price(reserve0: int, reserve1: int) -> tuple[int, int]:
    """UQ112x112 prices ``(reserve1 / reserve0, reserve0 / reserve1)``."""
    if reserve0 == 0 or reserve1 == 0:
        raise ZeroDivisionError("reserves must be non-zero")
    return reserve1 * Q112 // reserve0, reserve0 * Q112 // reserve1


def get_reserves(token_a: Address, token_b: Address, reserve0: int, reserve1: int) -> tuple[int, int]:
    """Map pair reserves (stored in address order) onto ``(token_a, token_b)``."""
    if token_a.is_bigger_than(token_b):
        return reserve1, reserve0
    return reserve0, reserve1
