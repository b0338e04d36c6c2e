"""Shared fixtures: a scripted in-memory engine standing in for the WASM VM."""
from __future__ import annotations

import base64
import json
from collections.abc import Awaitable, Callable
from pathlib import Path

import pytest
import pytest_asyncio

from opsim.codec import Address, BinaryReader, BinaryWriter, encode_selector
from opsim.config import SimulatorConfig
from opsim.ledger import Ledger
from opsim.replay import Transaction
from opsim.runtime import ContractParameters, ContractRuntime, EngineHandle, ExecutionEngine, build_calldata

COUNTER_BYTECODE = b"\x00asm-counter"
GAS_PER_CALL = 1_000

Method = Callable[["ScriptedHandle", BinaryReader], Awaitable[bytes]]


class Program:
    """Python stand-in for a compiled contract: selector -> coroutine."""

    def __init__(self) -> None:
        self.methods: dict[int, tuple[str, Method]] = {}
        self.deploy: Method | None = None

    def method(self, name: str) -> Callable[[Method], Method]:
        def register(fn: Method) -> Method:
            self.methods[encode_selector(name)] = (name, fn)
            return fn

        return register


class ScriptedHandle(EngineHandle):
    def __init__(self, engine: ScriptedEngine, params: ContractParameters) -> None:
        self.engine = engine
        self.params = params
        self.host = params.host
        self.program = engine.programs[params.bytecode]
        self.environment = b""
        self.gas = 0
        self.dispose_count = 0

    # environment accessors
    @property
    def sender(self) -> Address:
        return Address(self.environment[0:32])

    @property
    def origin(self) -> Address:
        return Address(self.environment[32:64])

    @property
    def block_number(self) -> int:
        return int.from_bytes(self.environment[96:128], "big")

    async def set_environment(self, data: bytes) -> None:
        self.environment = data

    async def on_deploy(self, calldata: bytes) -> bytes:
        if self.program.deploy is None:
            return b""
        return await self.program.deploy(self, BinaryReader(calldata))

    async def execute(self, calldata: bytes) -> bytes:
        reader = BinaryReader(calldata)
        selector = reader.read_selector()
        if selector not in self.program.methods:
            raise RuntimeError(f"Unknown selector {selector:08x}")
        name, fn = self.program.methods[selector]
        self.gas += GAS_PER_CALL
        self.host.gas_callback(self.gas, name)
        return await fn(self, reader)

    def get_used_gas(self) -> int:
        return self.gas

    def dispose(self) -> None:
        self.dispose_count += 1

    # host helpers used by programs
    async def load(self, pointer: int) -> int:
        return BinaryReader(await self.host.load(BinaryWriter().write_u256(pointer).get_buffer())).read_u256()

    async def store(self, pointer: int, value: int) -> None:
        await self.host.store(BinaryWriter().write_u256(pointer).write_u256(value).get_buffer())

    async def call(self, target: Address, calldata: bytes) -> bytes:
        request = BinaryWriter().write_address(target).write_bytes_with_length(calldata).get_buffer()
        reader = BinaryReader(await self.host.call(request))
        reader.read_u64()
        return reader.read_bytes(reader.remaining)

    async def deploy_copy(self, target: Address, salt: bytes) -> Address:
        request = BinaryWriter().write_address(target).write_bytes(salt).get_buffer()
        reader = BinaryReader(await self.host.deploy_contract_at_address(request))
        reader.read_bytes(32)
        return reader.read_address()

    def emit(self, event_type: str, data: bytes) -> None:
        self.host.emit(BinaryWriter().write_string_with_length(event_type).write_bytes_with_length(data).get_buffer())


class ScriptedEngine(ExecutionEngine):
    def __init__(self, programs: dict[bytes, Program]) -> None:
        self.programs = programs
        self.handles: list[ScriptedHandle] = []

    def instantiate(self, params: ContractParameters) -> ScriptedHandle:
        handle = ScriptedHandle(self, params)
        self.handles.append(handle)
        return handle


def _u256(value: int) -> bytes:
    return BinaryWriter().write_u256(value).get_buffer()


COUNTER = Program()
DEPLOY_MARKER = 0xDE


async def _counter_deploy(vm: ScriptedHandle, reader: BinaryReader) -> bytes:
    await vm.store(DEPLOY_MARKER, 1)
    return b""


COUNTER.deploy = _counter_deploy


@COUNTER.method("increment()")
async def _increment(vm: ScriptedHandle, reader: BinaryReader) -> bytes:
    value = await vm.load(1) + 1
    await vm.store(1, value)
    vm.emit("Incremented", _u256(value))
    return _u256(value)


@COUNTER.method("get()")
async def _get(vm: ScriptedHandle, reader: BinaryReader) -> bytes:
    return _u256(await vm.load(1))


@COUNTER.method("fail()")
async def _fail(vm: ScriptedHandle, reader: BinaryReader) -> bytes:
    await vm.store(1, 999)
    raise RuntimeError("boom")


@COUNTER.method("sender()")
async def _sender(vm: ScriptedHandle, reader: BinaryReader) -> bytes:
    return bytes(vm.sender) + bytes(vm.origin)


@COUNTER.method("block()")
async def _block(vm: ScriptedHandle, reader: BinaryReader) -> bytes:
    return _u256(vm.block_number)


@COUNTER.method("incrementOther(address)")
async def _increment_other(vm: ScriptedHandle, reader: BinaryReader) -> bytes:
    target = reader.read_address()
    return await vm.call(target, BinaryWriter().write_selector(encode_selector("increment()")).get_buffer())


@COUNTER.method("callBack(address)")
async def _call_back(vm: ScriptedHandle, reader: BinaryReader) -> bytes:
    target = reader.read_address()
    calldata = BinaryWriter().write_selector(encode_selector("incrementOther(address)")).write_address(vm.params.address)
    return await vm.call(target, calldata.get_buffer())


@COUNTER.method("deployCopy(address,bytes32)")
async def _deploy_copy(vm: ScriptedHandle, reader: BinaryReader) -> bytes:
    target = reader.read_address()
    salt = reader.read_bytes(32)
    return bytes(await vm.deploy_copy(target, salt))


@COUNTER.method("deployThenFail(address,bytes32)")
async def _deploy_then_fail(vm: ScriptedHandle, reader: BinaryReader) -> bytes:
    await vm.deploy_copy(reader.read_address(), reader.read_bytes(32))
    raise RuntimeError("reverted after deploying")


@COUNTER.method("callDeploy(address,address,bytes32,bool)")
async def _call_deploy(vm: ScriptedHandle, reader: BinaryReader) -> bytes:
    factory = reader.read_address()
    calldata = BinaryWriter().write_selector(encode_selector("deployCopy(address,bytes32)"))
    calldata.write_address(reader.read_address()).write_bytes(reader.read_bytes(32))
    derived = await vm.call(factory, calldata.get_buffer())
    if reader.read_boolean():
        raise RuntimeError("reverted after nested deploy")
    return derived


@COUNTER.method("inputs()")
async def _inputs(vm: ScriptedHandle, reader: BinaryReader) -> bytes:
    return await vm.host.inputs()


def counter_engine() -> ScriptedEngine:
    return ScriptedEngine({COUNTER_BYTECODE: COUNTER})


def make_transaction(
    target: Address,
    method: str,
    *,
    index: int = 0,
    sender: Address = Address(b"\xa1" * 32),
    revert: bytes | None = None,
    block_height: int = 100,
) -> Transaction:
    return Transaction(
        id=f"{block_height:012x}{index:012x}",
        block_height=block_height,
        tx_id=bytes([index + 1]) * 32,
        index=index,
        sender=sender,
        contract_address=target.p2tr("bcrt"),
        contract_tweaked_public_key=target,
        calldata=build_calldata(method),
        revert=revert,
    )


@pytest.fixture
def engine() -> ScriptedEngine:
    return counter_engine()


@pytest.fixture
def ledger(engine: ScriptedEngine) -> Ledger:
    return Ledger(SimulatorConfig(), engine)


@pytest.fixture
def deployer() -> Address:
    return Address(b"\x01" * 32)


@pytest.fixture
def alice() -> Address:
    return Address(b"\xa1" * 32)


async def make_counter(ledger: Ledger, address: Address, deployer: Address) -> ContractRuntime:
    contract = ContractRuntime(ledger, address, deployer, bytecode=COUNTER_BYTECODE)
    await contract.init()
    ledger.register(contract)
    return contract


@pytest_asyncio.fixture
async def counter(ledger: Ledger, deployer: Address) -> ContractRuntime:
    return await make_counter(ledger, Address(b"\xc0" * 32), deployer)


@pytest_asyncio.fixture
async def other_counter(ledger: Ledger, deployer: Address) -> ContractRuntime:
    return await make_counter(ledger, Address(b"\xc1" * 32), deployer)


REPLAY_CONTRACT = Address(b"\xc0" * 32)
REPLAY_ADMIN = Address(b"\xad" * 32)


def _b64(value: int) -> str:
    return base64.b64encode(value.to_bytes(32, "big")).decode()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    (tmp_path / "counter.wasm").write_bytes(COUNTER_BYTECODE)
    feed = [
        {"pointer": _b64(1), "value": _b64(41), "lastSeenAt": 99},
        {"pointer": _b64(1), "value": _b64(50), "lastSeenAt": 101},
    ]
    (tmp_path / "counter-states.json").write_text("\n".join(json.dumps(r) for r in feed))
    config = {
        "admin": str(REPLAY_ADMIN),
        "contracts": [{"address": str(REPLAY_CONTRACT), "name": "counter", "bytecode": "counter.wasm", "states": "counter-states.json"}],
    }
    (tmp_path / "replay.json").write_text(json.dumps(config))

    blocks = tmp_path / "block"
    blocks.mkdir()
    for height in (100, 101, 102):
        txs = [make_transaction(REPLAY_CONTRACT, "increment()", block_height=height)]
        (blocks / f"{height}.json").write_text(json.dumps([tx.to_document() for tx in txs]))
    return tmp_path
