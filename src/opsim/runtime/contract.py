"""Per-contract runtime: storage, lifecycle and the typed host operations."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..codec.address import Address
from ..codec.binary import BinaryWriter, encode_selector
from ..errors import BytecodeNotFoundError, ContractNotFoundError, ExecutionFault, FaultKind
from .engine import ContractParameters, EngineHandle
from .host import RuntimeHost
from .state import CallResponse, NetEvent, StorageSnapshot

if TYPE_CHECKING:
    from ..ledger.chain import Ledger

__all__ = ["ContractRuntime", "build_calldata"]

logger = logging.getLogger(__name__)

# Pointer layout used by next_pointer_value_greater_than: bits 80..239 hold a
# token id, bits 0..79 a word position.
_TOKEN_MASK = ((1 << 160) - 1) << 80
_WORD_POS_MASK = (1 << 80) - 1


def build_calldata(method: str, payload: bytes = b"") -> bytes:
    return BinaryWriter().write_selector(encode_selector(method)).write_bytes(payload).get_buffer()


class ContractRuntime:
    """One deployed contract: identity, bytecode reference and storage.

    Storage is a plain ``dict`` of 256-bit pointer -> 256-bit value with an
    implicit zero default. Engine resources are created per call and released
    by :meth:`dispose`, which is safe to call any number of times.
    """

    def __init__(
        self,
        ledger: Ledger,
        address: Address,
        deployer: Address,
        *,
        bytecode: bytes | None = None,
        gas_limit: int | None = None,
        deployment_calldata: bytes | None = None,
    ) -> None:
        self.ledger = ledger
        self.address = address
        self.deployer = deployer
        self.gas_limit = gas_limit if gas_limit is not None else ledger.config.gas_limit
        self.gas_used = 0

        self.states: dict[int, int] = {}
        self.deployment_states: dict[int, int] = {}
        self.deployed_contracts: dict[Address, bytes] = {}
        self.deployed = False

        self.events: list[NetEvent] = []
        self.call_stack: list[Address] = []

        self._states_backup: dict[int, int] = {}
        # (contract, address) pairs recorded by nested calls of the running call
        self._nested_deployments: list[tuple[ContractRuntime, Address]] = []
        self._potential_bytecode = bytecode
        self._deployment_calldata = deployment_calldata or b""
        self._bytecode: bytes | None = None
        self._handle: EngineHandle | None = None

    def __repr__(self) -> str:
        return f"ContractRuntime({self.address}, pointers={len(self.states)})"

    @property
    def bytecode(self) -> bytes:
        if self._bytecode is None:
            raise BytecodeNotFoundError(f"Bytecode not found for {self.address}")
        return self._bytecode

    @property
    def handle(self) -> EngineHandle:
        if self._handle is None:
            raise ExecutionFault(FaultKind.NOT_INITIALIZED, "Contract not initialized", str(self.address))
        return self._handle

    @property
    def loaded(self) -> bool:
        return self._handle is not None

    @property
    def safe_rnd64(self) -> int:
        return self.ledger.block_number >> 1

    # -- lifecycle -----------------------------------------------------------

    async def init(self) -> None:
        self._define_required_bytecodes()

    def _define_required_bytecodes(self) -> None:
        if self._potential_bytecode is not None:
            self.ledger.bytecodes.set(self.address, self._potential_bytecode)
        self._bytecode = self.ledger.bytecodes.get(self.address)

    def dispose(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            self.gas_used = handle.get_used_gas()
        finally:
            handle.dispose()

    def delete(self) -> None:
        self.dispose()
        self._bytecode = None
        self.states = dict(self.deployment_states)
        self._states_backup.clear()
        self.events = []
        self.call_stack = []
        self.deployed_contracts.clear()
        self._nested_deployments = []

    def _load_contract(self) -> EngineHandle:
        self.dispose()
        self.events = []
        self.call_stack = [self.address]
        params = ContractParameters(
            address=self.address,
            bytecode=self.bytecode,
            gas_limit=self.gas_limit,
            network=self.ledger.network,
            host=RuntimeHost(self),
        )
        self._handle = self.ledger.engine.instantiate(params)
        return self._handle

    async def set_environment(
        self,
        msg_sender: Address | None = None,
        tx_origin: Address | None = None,
        current_block: int | None = None,
        owner: Address | None = None,
        address: Address | None = None,
    ) -> None:
        writer = BinaryWriter()
        writer.write_address(msg_sender or self.ledger.msg_sender)
        writer.write_address(tx_origin or self.ledger.tx_origin)
        writer.write_bytes(self.ledger.transaction_id)
        writer.write_u256(self.ledger.block_number if current_block is None else current_block)
        writer.write_address(owner or self.deployer)
        writer.write_address(address or self.address)
        writer.write_u64(self.ledger.median_timestamp)
        writer.write_u64(self.safe_rnd64)
        await self.handle.set_environment(writer.get_buffer())

    async def deploy_contract(self) -> None:
        if self.deployed:
            return
        if self.states or self.deployment_states:
            self.deployed = True
            return

        try:
            handle = self._load_contract()
            await self.set_environment(self.deployer, self.deployer)
            await handle.on_deploy(self._deployment_calldata)
        except Exception as exc:
            self.states = {}
            self.dispose()
            raise ExecutionFault.wrap(exc, str(self.address)) from exc

        self.deployment_states = dict(self.states)
        self.deployed = True
        if self.ledger.trace_deployments:
            logger.info("deployed %s (%d pointers written)", self.address, len(self.states))
        self.dispose()

    async def execute(
        self,
        calldata: bytes,
        sender: Address | None = None,
        tx_origin: Address | None = None,
    ) -> CallResponse:
        """Run ``calldata`` against this contract and return a tagged result.

        Storage and deployment records written by a failing call are rolled
        back to their pre-call value, deployment records its nested calls left
        on other contracts are dropped, and the engine handle is disposed
        before the failure is returned.
        """
        try:
            await self.deploy_contract()
        except ExecutionFault as fault:
            return CallResponse(error=fault, call_stack=[self.address])

        states_backup = dict(self.states)
        deployed_backup = dict(self.deployed_contracts)
        self._nested_deployments = []
        handle: EngineHandle | None = None
        gas_before = 0
        error: ExecutionFault | None = None
        response: bytes | None = None
        try:
            handle = self._load_contract()
            await self.set_environment(sender, tx_origin)
            gas_before = handle.get_used_gas()
            response = await handle.execute(calldata)
        except Exception as exc:
            error = ExecutionFault.wrap(exc, str(self.address))
            self.states = states_backup
            self.deployed_contracts = deployed_backup
            self._discard_nested_deployments()

        used_gas = handle.get_used_gas() - gas_before if handle is not None else 0
        result = CallResponse(
            response=None if error else (response or b""),
            error=error,
            events=list(self.events),
            call_stack=list(self.call_stack),
            used_gas=used_gas,
        )
        if error is not None:
            logger.debug("call into %s failed: %s", self.address, error.message)
            self.dispose()
        return result

    def _discard_nested_deployments(self) -> None:
        for contract, address in reversed(self._nested_deployments):
            contract.deployed_contracts.pop(address, None)
        self._nested_deployments = []

    async def call(
        self,
        method: str,
        payload: bytes = b"",
        sender: Address | None = None,
        tx_origin: Address | None = None,
    ) -> CallResponse:
        return await self.execute(build_calldata(method, payload), sender, tx_origin)

    async def on_call(self, calldata: bytes, sender: Address, tx_origin: Address) -> CallResponse:
        if self.ledger.trace_calls:
            selector = int.from_bytes(calldata[:4], "big") if len(calldata) >= 4 else 0
            logger.info("%s called externally, selector %08x", self.address, selector)
        response = await self.execute(calldata, sender, tx_origin)
        if self.ledger.trace_calls:
            logger.info("call response from %s: %s", self.address, response.response)
        self.dispose()
        return response

    # -- storage ---------------------------------------------------------------

    def load_pointer(self, pointer: int) -> int:
        value = self.states.get(pointer, 0)
        if self.ledger.trace_pointers:
            logger.debug("%s load pointer %d -> %d", self.address, pointer, value)
        return value

    def store_pointer(self, pointer: int, value: int) -> None:
        if self.ledger.trace_pointers:
            logger.debug("%s store pointer %d <- %d", self.address, pointer, value)
        self.states[pointer] = value

    def next_pointer_value_greater_than(self, pointer: int, value_at_least: int, lte: bool) -> int:
        """Nearest pointer with the same token bits whose value exceeds ``value_at_least``.

        With ``lte`` the search walks down from the pointer's word position
        (inclusive), otherwise up (exclusive). Returns 0 when nothing matches.
        """
        token = (pointer & _TOKEN_MASK) >> 80
        word_pos = pointer & _WORD_POS_MASK
        candidates = [key for key in self.states if (key & _TOKEN_MASK) >> 80 == token]
        candidates.sort(key=lambda key: key & _WORD_POS_MASK, reverse=lte)
        for key in candidates:
            key_pos = key & _WORD_POS_MASK
            if lte and key_pos > word_pos:
                continue
            if not lte and key_pos <= word_pos:
                continue
            if self.states[key] > value_at_least:
                return key
        return 0

    def get_states(self) -> dict[int, int]:
        return self.states

    def set_states(self, states: dict[int, int]) -> None:
        self.states = dict(states)

    def reset_states(self) -> None:
        self.states = dict(self.deployment_states)

    def backup_states(self) -> None:
        self._states_backup = dict(self.states)

    def restore_states(self) -> None:
        self.states = dict(self._states_backup)

    def snapshot(self) -> StorageSnapshot:
        return StorageSnapshot.capture(
            self.address,
            self.states,
            self.deployment_states,
            self.deployed_contracts,
            self.deployed,
            self.ledger.block_number,
        )

    def apply_snapshot(self, snapshot: StorageSnapshot) -> None:
        self.states = dict(snapshot.states)
        self.deployment_states = dict(snapshot.deployment_states)
        self.deployed_contracts = dict(snapshot.deployed_contracts)
        self.deployed = snapshot.deployed

    # -- host operations -------------------------------------------------------

    def deploy_at_address(self, target: Address, salt: bytes) -> tuple[bytes, Address]:
        """Derive the address a copy of ``target``'s bytecode deploys to.

        Records the derived address in :attr:`deployed_contracts`; registering
        it with the ledger is left to the caller once the outer call succeeds.
        """
        if self.ledger.trace_deployments:
            logger.info("%s deploys a copy of %s, salt %s", self.address, target, salt.hex())

        seed, derived = self.ledger.generate_address(self.address, salt, target)
        if derived in self.deployed_contracts:
            raise ExecutionFault(FaultKind.ALREADY_DEPLOYED, "Contract already deployed", str(self.address))
        if target == self.address:
            raise ExecutionFault(FaultKind.SELF_DEPLOYMENT, "Cannot deploy the same contract", str(self.address))

        bytecode = self.ledger.bytecodes.get(target)
        self.ledger.bytecodes.set(derived, bytecode)
        self.deployed_contracts[derived] = bytecode
        if self.ledger.trace_deployments:
            logger.info("%s recorded deployment at %s (seed 0x%s)", self.address, derived, seed.hex())
        return seed, derived

    async def call_contract(self, target: Address, calldata: bytes) -> CallResponse:
        if not self.ledger.nested_calls:
            raise ExecutionFault(FaultKind.UNSUPPORTED_REENTRY, "Not implemented", str(self.address))
        if self.ledger.trace_calls:
            logger.info("%s calls %s", self.address, target)

        try:
            contract = self.ledger.get_contract(target)
        except ContractNotFoundError as exc:
            raise ExecutionFault(FaultKind.CALL_FAILED, str(exc), str(self.address)) from exc
        await contract.deploy_contract()

        callee = ContractRuntime(
            self.ledger,
            target,
            contract.deployer,
            bytecode=contract.bytecode,
            gas_limit=contract.gas_limit,
        )
        callee.set_states(contract.get_states())
        callee.deployment_states = dict(contract.deployment_states)
        callee.deployed_contracts = dict(contract.deployed_contracts)
        callee.deployed = True
        await callee.init()

        response = await callee.on_call(calldata, self.address, self.ledger.tx_origin)
        contract.set_states(callee.get_states())
        for address, bytecode in callee.deployed_contracts.items():
            if address not in contract.deployed_contracts:
                contract.deployed_contracts[address] = bytecode
                self._nested_deployments.append((contract, address))
        self._nested_deployments.extend(callee._nested_deployments)
        callee.delete()

        self.events.extend(response.events)
        for address in response.call_stack:
            if address not in self.call_stack:
                self.call_stack.append(address)

        if len(self.call_stack) > self.ledger.max_call_stack_depth:
            raise ExecutionFault(FaultKind.CALL_DEPTH_EXCEEDED, "CALL_STACK DEPTH EXCEEDED", str(self.address))
        if self.ledger.reentrancy_guard and self.address in response.call_stack:
            raise ExecutionFault(FaultKind.REENTRANCY, "REENTRANCY DETECTED", str(self.address))
        if response.error is not None:
            raise ExecutionFault(
                FaultKind.CALL_FAILED, response.error.message, str(self.address), original=response.error
            ) from response.error
        return response

    def on_gas(self, gas: int, method: str) -> None:
        if self.ledger.trace_gas:
            logger.debug("%s gas: %d (%s)", self.address, gas, method)

    def on_log(self, message: str) -> None:
        logger.warning("Contract log [%s]: %s", self.address, message)

    def on_event(self, event_type: str, data: bytes) -> None:
        self.events.append(NetEvent(type=event_type, data=data))
