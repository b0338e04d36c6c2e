"""Simulated chain context: block height, caller identity and live contracts."""
from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from ..codec.address import Address
from ..codec.binary import BinaryWriter
from ..config import SimulatorConfig
from ..errors import ConfigurationError, ContractNotFoundError, DuplicateContractError
from ..runtime.bytecode import BytecodeRegistry
from ..runtime.contract import ContractRuntime
from ..runtime.engine import ExecutionEngine

__all__ = ["EMPTY_LIST", "Ledger", "hash256"]

logger = logging.getLogger(__name__)

# u16 element count of zero: what contracts read when no transaction is loaded.
EMPTY_LIST = BinaryWriter().write_u16(0).get_buffer()


def hash256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


class Ledger:
    """Chain state shared by every contract runtime in one simulation.

    Not thread-safe. Reset between independent scenarios with
    :meth:`dispose`, :meth:`clear_contracts` and :meth:`init`, or use a fresh
    instance.
    """

    def __init__(self, config: SimulatorConfig | None = None, engine: ExecutionEngine | None = None) -> None:
        self.config = config or SimulatorConfig()
        self._engine = engine
        self.bytecodes = BytecodeRegistry()
        self._contracts: dict[Address, ContractRuntime] = {}

        self.block_number = 1
        self.median_timestamp = 0
        self.transaction_id = bytes(32)
        self.encoded_inputs = EMPTY_LIST
        self.encoded_outputs = EMPTY_LIST
        self.msg_sender = Address.dead()
        self.tx_origin = Address.dead()

        self.trace_gas = self.config.trace_gas
        self.trace_pointers = self.config.trace_pointers
        self.trace_calls = self.config.trace_calls
        self.trace_deployments = self.config.trace_deployments
        self.reentrancy_guard = self.config.reentrancy_guard
        self.nested_calls = self.config.nested_calls
        self.max_call_stack_depth = self.config.max_call_stack_depth

    def __repr__(self) -> str:
        return f"Ledger(block={self.block_number}, contracts={len(self._contracts)})"

    @property
    def network(self) -> str:
        return self.config.network

    @property
    def engine(self) -> ExecutionEngine:
        if self._engine is None:
            raise ConfigurationError("No execution engine configured")
        return self._engine

    @engine.setter
    def engine(self, engine: ExecutionEngine) -> None:
        self._engine = engine

    # -- chain position ------------------------------------------------------

    def mine_block(self) -> int:
        self.block_number += 1
        return self.block_number

    def set_transaction(self, tx_id: bytes, inputs: bytes = EMPTY_LIST, outputs: bytes = EMPTY_LIST) -> None:
        if len(tx_id) != 32:
            raise ValueError(f"Transaction id must be 32 bytes, got {len(tx_id)}")
        self.transaction_id = bytes(tx_id)
        self.encoded_inputs = inputs
        self.encoded_outputs = outputs

    def clear_transaction(self) -> None:
        self.set_transaction(bytes(32))

    @contextmanager
    def identity(self, sender: Address, origin: Address | None = None) -> Iterator[Ledger]:
        """Act as ``sender`` (and ``origin``, defaulting to the sender) inside the block."""
        previous = self.msg_sender, self.tx_origin
        self.msg_sender = sender
        self.tx_origin = origin or sender
        try:
            yield self
        finally:
            self.msg_sender, self.tx_origin = previous

    # -- addresses -----------------------------------------------------------

    def generate_address(self, deployer: Address, salt: bytes, from_address: Address) -> tuple[bytes, Address]:
        """Deterministic address for ``from_address``'s bytecode deployed by ``deployer``."""
        bytecode = self.bytecodes.get(from_address)
        seed = hashlib.sha256(hash256(bytes(deployer)) + bytes(salt) + hash256(bytecode)).digest()
        return seed, Address(seed)

    def generate_random_address(self) -> Address:
        return Address.random()

    # -- registry ------------------------------------------------------------

    @property
    def contracts(self) -> list[ContractRuntime]:
        return list(self._contracts.values())

    def register(self, contract: ContractRuntime) -> None:
        if contract.address in self._contracts:
            raise DuplicateContractError(f"Contract already registered at address {contract.address}")
        self._contracts[contract.address] = contract
        logger.debug("registered contract %s", contract.address)

    def get_contract(self, address: Address) -> ContractRuntime:
        contract = self._contracts.get(address)
        if contract is None:
            raise ContractNotFoundError(f"Contract not found at address {address}")
        return contract

    def has_contract(self, address: Address) -> bool:
        return address in self._contracts

    def clear_contracts(self) -> None:
        self._contracts.clear()

    def dispose(self) -> None:
        for contract in self._contracts.values():
            contract.dispose()

    async def init(self) -> None:
        self.dispose()
        for contract in self._contracts.values():
            await contract.init()

    def cleanup(self) -> None:
        for contract in self._contracts.values():
            contract.delete()
        self._contracts.clear()

    async def register_deployments(self, runtime: ContractRuntime) -> list[ContractRuntime]:
        """Register a runtime for every contract ``runtime`` deployed and the ledger lacks."""
        created: list[ContractRuntime] = []
        for address, bytecode in runtime.deployed_contracts.items():
            if address in self._contracts:
                continue
            contract = ContractRuntime(self, address, runtime.address, bytecode=bytecode, gas_limit=runtime.gas_limit)
            await contract.init()
            self.register(contract)
            created.append(contract)
        return created

    async def register_touched_deployments(self, addresses: Iterable[Address]) -> list[ContractRuntime]:
        """Run :meth:`register_deployments` for every registered contract in ``addresses``."""
        created: list[ContractRuntime] = []
        for address in list(addresses):
            contract = self._contracts.get(address)
            if contract is not None:
                created.extend(await self.register_deployments(contract))
        return created

    def backup(self) -> None:
        for contract in self._contracts.values():
            contract.backup_states()

    def restore(self) -> None:
        for contract in self._contracts.values():
            contract.restore_states()

    # -- tracing -------------------------------------------------------------

    def enable_gas_tracking(self) -> None:
        self.trace_gas = True

    def disable_gas_tracking(self) -> None:
        self.trace_gas = False

    def enable_pointer_tracking(self) -> None:
        self.trace_pointers = True

    def disable_pointer_tracking(self) -> None:
        self.trace_pointers = False

    def enable_call_tracking(self) -> None:
        self.trace_calls = True

    def disable_call_tracking(self) -> None:
        self.trace_calls = False

    def enable_deployment_tracking(self) -> None:
        self.trace_deployments = True

    def disable_deployment_tracking(self) -> None:
        self.trace_deployments = False
