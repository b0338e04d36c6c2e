"""Re-execute one recorded block against the ledger."""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

from ..codec.address import Address
from ..errors import ReplayError, SnapshotFormatError
from ..ledger.chain import Ledger
from .transaction import Transaction, decode_revert_data

__all__ = ["BlockReplay", "ReplayFailure", "ReplayResult", "ReplayStatus", "load_block"]

logger = logging.getLogger(__name__)


class ReplayStatus(StrEnum):
    LOADED = "loaded"
    VERIFIED = "verified"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class ReplayFailure:
    index: int
    message: str
    tx_id: str | None = None
    original_revert: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "tx_id": self.tx_id,
            "message": self.message,
            "original_revert": self.original_revert,
        }


@dataclass(slots=True)
class ReplayResult:
    height: int
    status: ReplayStatus
    executed: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    gas_used: int = 0
    failure: ReplayFailure | None = None
    tolerated: list[ReplayFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status is ReplayStatus.COMPLETED

    def raise_for_failure(self) -> None:
        if self.failure is not None:
            raise ReplayError(self.height, self.failure.index, self.failure.message, self.failure.tx_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "height": self.height,
            "status": self.status.value,
            "executed": list(self.executed),
            "skipped": list(self.skipped),
            "gas_used": self.gas_used,
            "failure": self.failure.to_dict() if self.failure else None,
            "tolerated": [item.to_dict() for item in self.tolerated],
        }


def load_block(block_dir: str | Path, height: int) -> list[Transaction]:
    path = Path(block_dir) / f"{height}.json"
    try:
        documents = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise SnapshotFormatError(f"Couldn't load block {height} transactions from file {path} -> {exc}") from exc
    if not isinstance(documents, list):
        raise SnapshotFormatError(f"Block file {path} must hold a JSON array")
    return [Transaction.from_document(document) for document in documents]


class BlockReplay:
    """Replays the transactions of block ``height`` in recorded order.

    Every target contract is checked before anything runs. With
    ``ignore_unknown_contracts`` transactions against unregistered contracts
    are skipped, otherwise one unknown contract fails the whole block. The
    first failing transaction stops the block; writes made by the
    transactions before it are kept.
    """

    def __init__(
        self,
        ledger: Ledger,
        height: int,
        transactions: list[Transaction] | None = None,
        *,
        block_dir: str | Path | None = None,
        ignore_unknown_contracts: bool = False,
        allow_recorded_reverts: bool = False,
    ) -> None:
        self.ledger = ledger
        self.height = height
        self.block_dir = Path(block_dir) if block_dir is not None else ledger.config.block_dir
        self.ignore_unknown_contracts = ignore_unknown_contracts
        self.allow_recorded_reverts = allow_recorded_reverts
        self.status = ReplayStatus.LOADED
        self.failure: ReplayFailure | None = None

        if transactions is not None:
            self.transactions = list(transactions)
        else:
            self.transactions = self._load_transactions()

    def __repr__(self) -> str:
        return f"BlockReplay(height={self.height}, transactions={len(self.transactions)}, status={self.status})"

    def _load_transactions(self) -> list[Transaction]:
        try:
            return load_block(self.block_dir, self.height)
        except SnapshotFormatError as exc:
            logger.error("%s", exc)
            self._fail(ReplayFailure(index=-1, message=str(exc)))
            return []

    def _fail(self, failure: ReplayFailure) -> None:
        self.status = ReplayStatus.FAILED
        self.failure = failure

    def verify(self) -> list[int]:
        """Check every target contract; returns the indexes to skip."""
        if self.status is ReplayStatus.FAILED:
            return []

        known: dict[Address, bool] = {}
        skipped: list[int] = []
        for index, tx in enumerate(self.transactions):
            present = known.get(tx.target)
            if present is None:
                present = known[tx.target] = self.ledger.has_contract(tx.target)
            if present:
                continue
            if self.ignore_unknown_contracts:
                logger.debug("skipping transaction #%d, contract %s is not loaded", index, tx.target)
                skipped.append(index)
                continue
            message = f"Contract {tx.target} not found in block {self.height}"
            logger.error("%s", message)
            self._fail(ReplayFailure(index=index, message=message, tx_id=tx.tx_id_hex))
            return []

        self.status = ReplayStatus.VERIFIED
        return skipped

    async def replay(self) -> ReplayResult:
        skipped = self.verify()
        result = ReplayResult(height=self.height, status=self.status, skipped=skipped)
        if self.status is ReplayStatus.FAILED:
            result.failure = self.failure
            logger.error("Block %d replay failed before execution.", self.height)
            return result

        self.status = ReplayStatus.EXECUTING
        self.ledger.block_number = self.height
        skip = set(skipped)
        for index, tx in enumerate(self.transactions):
            if index in skip:
                continue
            failure = await self._execute(index, tx, result)
            if failure is None:
                continue
            if self.allow_recorded_reverts and tx.revert is not None:
                logger.warning("transaction %s reverted on chain as well, continuing", tx.tx_id_hex)
                result.tolerated.append(failure)
                continue
            if tx.revert is None:
                logger.info("%s", tx.describe())
            self._fail(failure)
            break
        else:
            self.status = ReplayStatus.COMPLETED

        result.status = self.status
        result.failure = self.failure
        if self.status is ReplayStatus.COMPLETED:
            logger.info(
                "Block %d replayed: %d executed, %d skipped, %d gas",
                self.height,
                len(result.executed),
                len(result.skipped),
                result.gas_used,
            )
        else:
            logger.error("Block %d replay failed at transaction #%d.", self.height, self.failure.index)
        return result

    async def _execute(self, index: int, tx: Transaction, result: ReplayResult) -> ReplayFailure | None:
        tx_id = tx.tx_id_hex
        if len(tx.tx_id) != 32:
            return ReplayFailure(index, f"Transaction id must be 32 bytes, got {len(tx.tx_id)}", tx_id)

        contract = self.ledger.get_contract(tx.target)
        self.ledger.set_transaction(tx.tx_id, tx.encode_inputs(), tx.encode_outputs())
        started = time.perf_counter()
        try:
            with self.ledger.identity(tx.sender):
                response = await contract.execute(tx.calldata, tx.sender, tx.sender)
        finally:
            self.ledger.clear_transaction()
        elapsed_ms = (time.perf_counter() - started) * 1000

        result.executed.append(index)
        result.gas_used += response.used_gas
        if response.error is None:
            logger.debug(
                "Executed transaction %s for contract %s. (Took %.0fms to execute, %d gas used)",
                tx_id,
                tx.contract_address or tx.target,
                elapsed_ms,
                response.used_gas,
            )
            await self.ledger.register_touched_deployments(response.call_stack)
            return None

        logger.error(
            "Executed transaction %s for contract %s. (Took %.0fms to execute, %d gas used) %s",
            tx_id,
            tx.contract_address or tx.target,
            elapsed_ms,
            response.used_gas,
            response.error,
        )
        original = decode_revert_data(tx.revert) if tx.revert is not None else None
        if original is None:
            message = (
                f"{response.error}. This transaction has no revert in the block you are replaying; "
                "it should have passed but it reverted."
            )
        else:
            logger.error("Original error for %s: %s", tx_id, original)
            message = str(response.error)
        return ReplayFailure(index=index, message=message, tx_id=tx_id, original_revert=original)
