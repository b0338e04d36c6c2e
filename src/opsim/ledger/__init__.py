"""Simulated chain state and storage overrides."""

from __future__ import annotations

from .chain import EMPTY_LIST, Ledger, hash256
from .snapshot import StateHandler
from .units import decode_from_decimals, encode_price, expand_to_decimals, get_reserves

__all__ = [
    "EMPTY_LIST",
    "Ledger",
    "StateHandler",
    "decode_from_decimals",
    "encode_price",
    "expand_to_decimals",
    "get_reserves",
    "hash256",
]
