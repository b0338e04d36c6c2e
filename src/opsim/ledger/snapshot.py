"""Storage overrides for registered contracts."""
from __future__ import annotations

import logging
from collections.abc import Mapping

from ..codec.address import Address
from ..runtime.state import StorageSnapshot
from .chain import Ledger

__all__ = ["StateHandler"]

logger = logging.getLogger(__name__)


class StateHandler:
    """Replaces live contract storage wholesale and can undo every replacement.

    The storage a contract had before its first override is remembered, so
    overriding the same contract several times and then calling
    :meth:`purge_all` returns it to where it started.
    """

    def __init__(self, ledger: Ledger) -> None:
        self.ledger = ledger
        self._originals: dict[Address, StorageSnapshot] = {}

    @property
    def overridden(self) -> list[Address]:
        return list(self._originals)

    def is_overridden(self, address: Address) -> bool:
        return address in self._originals

    def get_states(self, address: Address) -> dict[int, int]:
        return self.ledger.get_contract(address).get_states()

    def get_modified_states(self, candidate: Mapping[int, int], address: Address) -> dict[int, int]:
        """Live values for pointers in ``candidate`` whose live value differs.

        Pointers the live storage never wrote are ignored.
        """
        live = self.get_states(address)
        return {pointer: live[pointer] for pointer, value in candidate.items() if pointer in live and live[pointer] != value}

    def override_states(self, address: Address, storage: Mapping[int, int]) -> None:
        contract = self.ledger.get_contract(address)
        self._originals.setdefault(address, contract.snapshot())
        contract.set_states(dict(storage))
        logger.debug("overrode storage of %s with %d pointers", address, len(storage))

    def override_deployment(self, address: Address) -> None:
        contract = self.ledger.get_contract(address)
        self._originals.setdefault(address, contract.snapshot())
        contract.deployed = True

    def purge_all(self) -> None:
        for address, original in self._originals.items():
            if self.ledger.has_contract(address):
                self.ledger.get_contract(address).apply_snapshot(original)
        if self._originals:
            logger.debug("purged overrides for %d contracts", len(self._originals))
        self._originals.clear()

    @staticmethod
    def merge_states(original: Mapping[int, int], to_merge: Mapping[int, int]) -> dict[int, int]:
        merged = dict(original)
        merged.update(to_merge)
        return merged
