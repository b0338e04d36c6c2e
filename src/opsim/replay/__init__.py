"""Historical block replay."""

from __future__ import annotations

from .block import BlockReplay, ReplayFailure, ReplayResult, ReplayStatus, load_block
from .environment import ContractConfig, ReplayEnvironment
from .feed import SnapshotCache, StateRecord, iter_records, load_feed, materialize
from .transaction import ParsedEvent, Transaction, TransactionInput, TransactionOutput, decode_revert_data

__all__ = [
    "BlockReplay",
    "ContractConfig",
    "ParsedEvent",
    "ReplayEnvironment",
    "ReplayFailure",
    "ReplayResult",
    "ReplayStatus",
    "SnapshotCache",
    "StateRecord",
    "Transaction",
    "TransactionInput",
    "TransactionOutput",
    "decode_revert_data",
    "iter_records",
    "load_block",
    "load_feed",
    "materialize",
]
