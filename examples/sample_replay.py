"""Sample script demonstrating programmatic usage with a toy in-memory engine."""
from opsim.codec import Address, BinaryReader, BinaryWriter
from opsim.ledger import Ledger
from opsim.replay import BlockReplay, Transaction
from opsim.report.generator import ReportGenerator
from opsim.runtime import ContractParameters, ContractRuntime, EngineHandle, ExecutionEngine, build_calldata


class CounterHandle(EngineHandle):
    """Every call bumps storage slot 1 and returns the new value."""

    def __init__(self, params: ContractParameters):
        self.host = params.host
        self.gas = 0

    async def set_environment(self, data: bytes) -> None:
        pass

    async def on_deploy(self, calldata: bytes) -> bytes:
        return b""

    async def execute(self, calldata: bytes) -> bytes:
        self.gas += 500
        slot = BinaryWriter().write_u256(1).get_buffer()
        value = BinaryReader(await self.host.load(slot)).read_u256() + 1
        await self.host.store(BinaryWriter().write_u256(1).write_u256(value).get_buffer())
        return BinaryWriter().write_u256(value).get_buffer()

    def get_used_gas(self) -> int:
        return self.gas


class CounterEngine(ExecutionEngine):
    def instantiate(self, params: ContractParameters) -> CounterHandle:
        return CounterHandle(params)


async def demo_replay():
    ledger = Ledger(engine=CounterEngine())
    address = Address(b"\xc0" * 32)
    contract = ContractRuntime(ledger, address, Address(b"\x01" * 32), bytecode=b"\x00asm")
    await contract.init()
    ledger.register(contract)

    sender = Address(b"\xa1" * 32)
    transactions = [
        Transaction(
            id=f"{index:024x}",
            block_height=100,
            tx_id=bytes([index + 1]) * 32,
            index=index,
            sender=sender,
            contract_address=address.p2tr("bcrt"),
            contract_tweaked_public_key=address,
            calldata=build_calldata("increment()"),
        )
        for index in range(3)
    ]
    result = await BlockReplay(ledger, 100, transactions).replay()
    print(f"Slot 1 after block 100: {contract.load_pointer(1)}")
    print(ReportGenerator("demo").to_markdown([result]))


if __name__ == "__main__":
    import asyncio

    asyncio.run(demo_replay())
