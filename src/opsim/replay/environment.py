"""A set of mainnet contracts seeded from history and replayed block by block."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..codec.address import Address
from ..errors import CodecError, ConfigurationError
from ..ledger.chain import Ledger
from ..ledger.snapshot import StateHandler
from ..runtime.contract import ContractRuntime
from .block import BlockReplay, ReplayResult
from .feed import SnapshotCache

__all__ = ["ContractConfig", "ReplayEnvironment"]

logger = logging.getLogger(__name__)


def _address(value: Any, field_name: str) -> Address:
    if not isinstance(value, str):
        raise ConfigurationError(f"'{field_name}' must be an address string")
    try:
        return Address.from_string(value)
    except CodecError as exc:
        raise ConfigurationError(f"'{field_name}' is not a valid address: {value}") from exc


@dataclass(frozen=True, slots=True)
class ContractConfig:
    address: Address
    name: str | None = None
    deployer: Address | None = None
    bytecode: Path | None = None
    states: Path | None = None
    gas_limit: int | None = None

    @property
    def label(self) -> str:
        return self.name or str(self.address)

    @classmethod
    def from_dict(cls, data: dict[str, Any], base_dir: Path) -> ContractConfig:
        if not isinstance(data, dict) or "address" not in data:
            raise ConfigurationError("Each contract entry needs an 'address'")
        deployer = data.get("deployer")
        bytecode = data.get("bytecode")
        states = data.get("states")
        gas_limit = data.get("gas_limit")
        if gas_limit is not None and (not isinstance(gas_limit, int) or gas_limit <= 0):
            raise ConfigurationError(f"'gas_limit' must be a positive integer, got {gas_limit!r}")
        return cls(
            address=_address(data["address"], "address"),
            name=data.get("name"),
            deployer=_address(deployer, "deployer") if deployer is not None else None,
            bytecode=base_dir / bytecode if bytecode else None,
            states=base_dir / states if states else None,
            gas_limit=gas_limit,
        )


class ReplayEnvironment:
    """Registers configured contracts, seeds their storage and replays blocks.

    Bytecode defaults to ``bytecode/<taproot address>.wasm`` next to the
    config file. Contracts without a ``states`` feed start from empty storage.
    """

    def __init__(
        self,
        ledger: Ledger,
        admin: Address,
        contracts: list[ContractConfig],
        *,
        base_dir: str | Path = ".",
        cache: SnapshotCache | None = None,
    ) -> None:
        self.ledger = ledger
        self.admin = admin
        self.configs = list(contracts)
        self.base_dir = Path(base_dir)
        self.cache = cache or SnapshotCache(ledger.config.cache_dir)
        self.state_handler = StateHandler(ledger)
        self.contracts: dict[Address, ContractRuntime] = {}

    @classmethod
    def from_file(cls, ledger: Ledger, path: str | Path, cache: SnapshotCache | None = None) -> ReplayEnvironment:
        config_path = Path(path)
        try:
            data = json.loads(config_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Cannot read replay config {config_path}: {exc}") from exc
        if not isinstance(data, dict) or "admin" not in data:
            raise ConfigurationError(f"Replay config {config_path} needs an 'admin' address")

        base_dir = config_path.parent
        contracts = [ContractConfig.from_dict(entry, base_dir) for entry in data.get("contracts", [])]
        if not contracts:
            raise ConfigurationError(f"Replay config {config_path} lists no contracts")
        return cls(ledger, _address(data["admin"], "admin"), contracts, base_dir=base_dir, cache=cache)

    def bytecode_path(self, config: ContractConfig) -> Path:
        if config.bytecode is not None:
            return config.bytecode
        return self.base_dir / "bytecode" / f"{config.address.p2tr(self.ledger.config.hrp)}.wasm"

    def get_contract(self, address: Address) -> ContractRuntime:
        contract = self.contracts.get(address)
        if contract is None:
            raise ConfigurationError(f"Contract not found: {address}")
        return contract

    async def initialize(self) -> None:
        self.ledger.msg_sender = self.admin
        self.ledger.tx_origin = self.admin
        for config in self.configs:
            self.ledger.bytecodes.load(self.bytecode_path(config), config.address)
        self._register_contracts()
        await self.ledger.init()
        logger.info("initialized %d contracts", len(self.contracts))

    def _register_contracts(self) -> None:
        self.contracts.clear()
        for config in self.configs:
            contract = ContractRuntime(
                self.ledger,
                config.address,
                config.deployer or self.admin,
                gas_limit=config.gas_limit,
            )
            self.ledger.register(contract)
            self.contracts[config.address] = contract

    async def load_states(self, height: int) -> None:
        """Reset every contract and seed its storage as of ``height``."""
        self.state_handler.purge_all()
        self.ledger.dispose()
        self.ledger.cleanup()
        self._register_contracts()
        await self.ledger.init()

        for config in self.configs:
            if config.states is None:
                continue
            logger.info("loading states for %s at block %d", config.label, height)
            states = self.cache.get(config.states, height)
            self.state_handler.override_states(config.address, states)
            self.state_handler.override_deployment(config.address)

    async def replay(
        self,
        start: int,
        count: int = 1,
        *,
        keep_new_states: bool = False,
        ignore_unknown_contracts: bool = False,
        allow_recorded_reverts: bool = False,
    ) -> list[ReplayResult]:
        """Replay blocks ``start`` to ``start + count - 1``, stopping at the first failure.

        Storage is reseeded from the feeds at ``height - 1`` before each block,
        or only before the first one with ``keep_new_states``.
        """
        results: list[ReplayResult] = []
        for offset in range(count):
            height = start + offset
            if offset == 0 or not keep_new_states:
                await self.load_states(height - 1)
            logger.info("replaying block %d", height)
            block = BlockReplay(
                self.ledger,
                height,
                ignore_unknown_contracts=ignore_unknown_contracts,
                allow_recorded_reverts=allow_recorded_reverts,
            )
            result = await block.replay()
            results.append(result)
            if not result.ok:
                break
        return results

    def cleanup(self) -> None:
        self.contracts.clear()
        self.cache.clear()
        self.state_handler.purge_all()
        self.ledger.dispose()
        self.ledger.cleanup()
