"""Recorded OP_NET interaction transactions.

Block files hold transactions as MongoDB extended-JSON documents. Binary
fields are ``{"$binary": {"base64": ..., "subType": "00"}}``, 128-bit decimals
``{"$numberDecimal": "..."}``, 64-bit integers ``{"$numberLong": "..."}`` and
the record id ``{"$oid": "..."}``.
"""
from __future__ import annotations

import base64
import binascii
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ..codec.address import Address
from ..codec.binary import BinaryReader, BinaryWriter, encode_selector
from ..errors import CodecError, SnapshotFormatError

__all__ = [
    "ParsedEvent",
    "ScriptPubKey",
    "Transaction",
    "TransactionInput",
    "TransactionOutput",
    "decode_revert_data",
]

ERROR_SELECTOR = encode_selector("Error(string)")


def _binary(document: Mapping[str, Any], key: str) -> bytes:
    raw = document.get(key)
    if not isinstance(raw, Mapping) or not isinstance(raw.get("$binary"), Mapping):
        raise SnapshotFormatError(f"'{key}' must be a $binary document")
    try:
        return base64.b64decode(raw["$binary"]["base64"], validate=True)
    except (KeyError, TypeError, binascii.Error, ValueError) as exc:
        raise SnapshotFormatError(f"'{key}' holds invalid base64: {exc}") from exc


def _optional_binary(document: Mapping[str, Any], key: str) -> bytes | None:
    if document.get(key) is None:
        return None
    return _binary(document, key)


def _number(document: Mapping[str, Any], key: str, tag: str, default: int | None = None) -> int:
    raw = document.get(key)
    if raw is None and default is not None:
        return default
    if not isinstance(raw, Mapping) or tag not in raw:
        raise SnapshotFormatError(f"'{key}' must be a {tag} document")
    try:
        return int(raw[tag])
    except (TypeError, ValueError) as exc:
        raise SnapshotFormatError(f"'{key}' is not an integer: {raw[tag]!r}") from exc


def _to_binary(data: bytes) -> dict[str, Any]:
    return {"$binary": {"base64": base64.b64encode(data).decode("ascii"), "subType": "00"}}


def _optional_document(data: bytes | None) -> dict[str, Any] | None:
    return None if data is None else _to_binary(data)


def _write_optional_bytes(writer: BinaryWriter, data: bytes | None) -> None:
    writer.write_boolean(data is not None)
    if data is not None:
        writer.write_bytes_with_length(data)


def _read_optional_bytes(reader: BinaryReader) -> bytes | None:
    return reader.read_bytes_with_length() if reader.read_boolean() else None


def decode_revert_data(revert: bytes) -> str:
    """Readable revert reason: an ``Error(string)`` payload, plain text or hex."""
    if len(revert) >= 4 and int.from_bytes(revert[:4], "big") == ERROR_SELECTOR:
        reader = BinaryReader(revert[4:])
        try:
            return reader.read_string_with_length()
        except CodecError:
            pass
    try:
        text = revert.decode("utf-8")
    except UnicodeDecodeError:
        text = ""
    if text and text.isprintable():
        return text
    return "0x" + revert.hex()


@dataclass(frozen=True, slots=True)
class ParsedEvent:
    contract_address: Address
    type: bytes
    data: bytes


@dataclass(frozen=True, slots=True)
class TransactionInput:
    original_transaction_id: bytes
    output_transaction_index: int
    script_signature: bytes | None
    sequence_id: int


@dataclass(frozen=True, slots=True)
class ScriptPubKey:
    hex: str
    addresses: list[str] | None
    address: str | None


@dataclass(frozen=True, slots=True)
class TransactionOutput:
    value: int
    index: int
    script_pub_key: ScriptPubKey


def _parse_inputs(document: Mapping[str, Any]) -> list[TransactionInput]:
    return [
        TransactionInput(
            original_transaction_id=_binary(item, "originalTransactionId"),
            output_transaction_index=int(item["outputTransactionIndex"]),
            script_signature=_optional_binary(item, "scriptSignature"),
            sequence_id=int(item["sequenceId"]),
        )
        for item in document.get("inputs", [])
    ]


def _parse_outputs(document: Mapping[str, Any]) -> list[TransactionOutput]:
    outputs = []
    for item in document.get("outputs", []):
        spk = item.get("scriptPubKey") or {}
        addresses = spk.get("addresses")
        outputs.append(
            TransactionOutput(
                value=_number(item, "value", "$numberDecimal"),
                index=int(item["index"]),
                script_pub_key=ScriptPubKey(
                    hex=spk.get("hex", ""),
                    addresses=list(addresses) if addresses is not None else None,
                    address=spk.get("address"),
                ),
            )
        )
    return outputs


@dataclass(frozen=True, slots=True)
class Transaction:
    """One recorded interaction, immutable once decoded."""

    id: str
    block_height: int
    tx_id: bytes
    index: int
    sender: Address
    contract_address: str
    contract_tweaked_public_key: Address
    calldata: bytes
    op_net_type: str = "Interaction"
    hash: bytes | None = None
    burned_bitcoin: int = 0
    contract_secret: bytes | None = None
    gas_used: int = 0
    interaction_pub_key: bytes | None = None
    preimage: bytes | None = None
    priority_fee: int = 0
    raw: bytes | None = None
    receipt: bytes | None = None
    receipt_proofs: list[str] = field(default_factory=list)
    revert: bytes | None = None
    reward: int = 0
    sender_pub_key_hash: bytes | None = None
    special_gas_used: int = 0
    was_compressed: bool = False
    events: list[ParsedEvent] = field(default_factory=list)
    inputs: list[TransactionInput] = field(default_factory=list)
    outputs: list[TransactionOutput] = field(default_factory=list)

    @property
    def tx_id_hex(self) -> str:
        return self.tx_id.hex()

    @property
    def target(self) -> Address:
        return self.contract_tweaked_public_key

    # -- extended JSON -------------------------------------------------------

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> Transaction:
        if not isinstance(document, Mapping):
            raise SnapshotFormatError(f"Transaction record must be an object, got {type(document).__name__}")
        try:
            record_id = document["_id"]["$oid"]
            index = int(document["index"])
        except (KeyError, TypeError, ValueError) as exc:
            raise SnapshotFormatError(f"Transaction record is missing _id or index: {exc}") from exc

        try:
            sender = Address(_binary(document, "from"))
            contract = Address(_binary(document, "contractTweakedPublicKey"))
            events = [
                ParsedEvent(
                    contract_address=Address(_binary(event, "contractAddress")),
                    type=_binary(event, "type"),
                    data=_binary(event, "data"),
                )
                for event in document.get("events", [])
            ]
        except CodecError as exc:
            raise SnapshotFormatError(f"Transaction {record_id} holds a malformed address: {exc}") from exc

        try:
            inputs, outputs = _parse_inputs(document), _parse_outputs(document)
        except (KeyError, TypeError, ValueError) as exc:
            raise SnapshotFormatError(f"Transaction {record_id} holds a malformed input or output: {exc}") from exc

        return cls(
            id=record_id,
            block_height=_number(document, "blockHeight", "$numberDecimal"),
            tx_id=_binary(document, "id"),
            index=index,
            sender=sender,
            contract_address=str(document.get("contractAddress", "")),
            contract_tweaked_public_key=contract,
            calldata=_binary(document, "calldata"),
            op_net_type=document.get("OPNetType", "Interaction"),
            hash=_optional_binary(document, "hash"),
            burned_bitcoin=_number(document, "burnedBitcoin", "$numberDecimal", 0),
            contract_secret=_optional_binary(document, "contractSecret"),
            gas_used=_number(document, "gasUsed", "$numberDecimal", 0),
            interaction_pub_key=_optional_binary(document, "interactionPubKey"),
            preimage=_optional_binary(document, "preimage"),
            priority_fee=_number(document, "priorityFee", "$numberDecimal", 0),
            raw=_optional_binary(document, "raw"),
            receipt=_optional_binary(document, "receipt"),
            receipt_proofs=list(document.get("receiptProofs", [])),
            revert=_optional_binary(document, "revert"),
            reward=_number(document, "reward", "$numberLong", 0),
            sender_pub_key_hash=_optional_binary(document, "senderPubKeyHash"),
            special_gas_used=_number(document, "specialGasUsed", "$numberDecimal", 0),
            was_compressed=bool(document.get("wasCompressed", False)),
            events=events,
            inputs=inputs,
            outputs=outputs,
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "_id": {"$oid": self.id},
            "blockHeight": {"$numberDecimal": str(self.block_height)},
            "hash": _optional_document(self.hash),
            "OPNetType": self.op_net_type,
            "burnedBitcoin": {"$numberDecimal": str(self.burned_bitcoin)},
            "calldata": _to_binary(self.calldata),
            "contractAddress": self.contract_address,
            "contractSecret": _optional_document(self.contract_secret),
            "contractTweakedPublicKey": _to_binary(bytes(self.contract_tweaked_public_key)),
            "events": [
                {
                    "contractAddress": _to_binary(bytes(event.contract_address)),
                    "data": _to_binary(event.data),
                    "type": _to_binary(event.type),
                }
                for event in self.events
            ],
            "from": _to_binary(bytes(self.sender)),
            "gasUsed": {"$numberDecimal": str(self.gas_used)},
            "id": _to_binary(self.tx_id),
            "index": self.index,
            "inputs": [
                {
                    "originalTransactionId": _to_binary(item.original_transaction_id),
                    "outputTransactionIndex": item.output_transaction_index,
                    "scriptSignature": _optional_document(item.script_signature),
                    "sequenceId": item.sequence_id,
                }
                for item in self.inputs
            ],
            "interactionPubKey": _optional_document(self.interaction_pub_key),
            "outputs": [
                {
                    "value": {"$numberDecimal": str(item.value)},
                    "index": item.index,
                    "scriptPubKey": {
                        "hex": item.script_pub_key.hex,
                        "addresses": None if item.script_pub_key.addresses is None else list(item.script_pub_key.addresses),
                        "address": item.script_pub_key.address,
                    },
                }
                for item in self.outputs
            ],
            "preimage": _optional_document(self.preimage),
            "priorityFee": {"$numberDecimal": str(self.priority_fee)},
            "raw": _optional_document(self.raw),
            "receipt": _optional_document(self.receipt),
            "receiptProofs": list(self.receipt_proofs),
            "revert": _optional_document(self.revert),
            "reward": {"$numberLong": str(self.reward)},
            "senderPubKeyHash": _optional_document(self.sender_pub_key_hash),
            "specialGasUsed": {"$numberDecimal": str(self.special_gas_used)},
            "wasCompressed": self.was_compressed,
        }

    # -- binary codec --------------------------------------------------------

    def to_bytes(self) -> bytes:
        writer = BinaryWriter()
        writer.write_string_with_length(self.id)
        writer.write_u256(self.block_height)
        writer.write_bytes_with_length(self.tx_id)
        writer.write_u32(self.index)
        writer.write_address(self.sender)
        writer.write_string_with_length(self.contract_address)
        writer.write_address(self.contract_tweaked_public_key)
        writer.write_bytes_with_length(self.calldata)
        writer.write_string_with_length(self.op_net_type)
        _write_optional_bytes(writer, self.hash)
        writer.write_u256(self.burned_bitcoin)
        _write_optional_bytes(writer, self.contract_secret)
        writer.write_u256(self.gas_used)
        _write_optional_bytes(writer, self.interaction_pub_key)
        _write_optional_bytes(writer, self.preimage)
        writer.write_u256(self.priority_fee)
        _write_optional_bytes(writer, self.raw)
        _write_optional_bytes(writer, self.receipt)
        writer.write_u16(len(self.receipt_proofs))
        for proof in self.receipt_proofs:
            writer.write_string_with_length(proof)
        _write_optional_bytes(writer, self.revert)
        writer.write_i64(self.reward)
        _write_optional_bytes(writer, self.sender_pub_key_hash)
        writer.write_u256(self.special_gas_used)
        writer.write_boolean(self.was_compressed)

        writer.write_u16(len(self.events))
        for event in self.events:
            writer.write_address(event.contract_address)
            writer.write_bytes_with_length(event.type)
            writer.write_bytes_with_length(event.data)

        writer.write_u16(len(self.inputs))
        for item in self.inputs:
            writer.write_bytes_with_length(item.original_transaction_id)
            writer.write_u32(item.output_transaction_index)
            _write_optional_bytes(writer, item.script_signature)
            writer.write_u32(item.sequence_id)

        writer.write_u16(len(self.outputs))
        for item in self.outputs:
            spk = item.script_pub_key
            writer.write_u256(item.value)
            writer.write_u32(item.index)
            writer.write_string_with_length(spk.hex)
            writer.write_boolean(spk.addresses is not None)
            if spk.addresses is not None:
                writer.write_u16(len(spk.addresses))
                for address in spk.addresses:
                    writer.write_string_with_length(address)
            writer.write_boolean(spk.address is not None)
            if spk.address is not None:
                writer.write_string_with_length(spk.address)
        return writer.get_buffer()

    @classmethod
    def from_bytes(cls, data: bytes) -> Transaction:
        reader = BinaryReader(data)
        values: dict[str, Any] = {
            "id": reader.read_string_with_length(),
            "block_height": reader.read_u256(),
            "tx_id": reader.read_bytes_with_length(),
            "index": reader.read_u32(),
            "sender": reader.read_address(),
            "contract_address": reader.read_string_with_length(),
            "contract_tweaked_public_key": reader.read_address(),
            "calldata": reader.read_bytes_with_length(),
            "op_net_type": reader.read_string_with_length(),
            "hash": _read_optional_bytes(reader),
            "burned_bitcoin": reader.read_u256(),
            "contract_secret": _read_optional_bytes(reader),
            "gas_used": reader.read_u256(),
            "interaction_pub_key": _read_optional_bytes(reader),
            "preimage": _read_optional_bytes(reader),
            "priority_fee": reader.read_u256(),
            "raw": _read_optional_bytes(reader),
            "receipt": _read_optional_bytes(reader),
        }
        values["receipt_proofs"] = [reader.read_string_with_length() for _ in range(reader.read_u16())]
        values["revert"] = _read_optional_bytes(reader)
        values["reward"] = reader.read_i64()
        values["sender_pub_key_hash"] = _read_optional_bytes(reader)
        values["special_gas_used"] = reader.read_u256()
        values["was_compressed"] = reader.read_boolean()

        values["events"] = [
            ParsedEvent(
                contract_address=reader.read_address(),
                type=reader.read_bytes_with_length(),
                data=reader.read_bytes_with_length(),
            )
            for _ in range(reader.read_u16())
        ]
        values["inputs"] = [
            TransactionInput(
                original_transaction_id=reader.read_bytes_with_length(),
                output_transaction_index=reader.read_u32(),
                script_signature=_read_optional_bytes(reader),
                sequence_id=reader.read_u32(),
            )
            for _ in range(reader.read_u16())
        ]
        outputs = []
        for _ in range(reader.read_u16()):
            value = reader.read_u256()
            index = reader.read_u32()
            script_hex = reader.read_string_with_length()
            addresses = None
            if reader.read_boolean():
                addresses = [reader.read_string_with_length() for _ in range(reader.read_u16())]
            address = reader.read_string_with_length() if reader.read_boolean() else None
            outputs.append(TransactionOutput(value, index, ScriptPubKey(script_hex, addresses, address)))
        values["outputs"] = outputs

        if reader.remaining:
            raise CodecError(f"{reader.remaining} trailing bytes after transaction")
        return cls(**values)

    # -- engine view ---------------------------------------------------------

    def encode_inputs(self) -> bytes:
        """Inputs as served to contracts: u16 count, then per input the
        length-prefixed txid, u32 output index and length-prefixed script."""
        writer = BinaryWriter().write_u16(len(self.inputs))
        for item in self.inputs:
            writer.write_bytes_with_length(item.original_transaction_id)
            writer.write_u32(item.output_transaction_index)
            writer.write_bytes_with_length(item.script_signature or b"")
        return writer.get_buffer()

    def encode_outputs(self) -> bytes:
        """Outputs as served to contracts: u16 count, then per output the u16
        index, u64 value, length-prefixed address and length-prefixed script."""
        writer = BinaryWriter().write_u16(len(self.outputs))
        for item in self.outputs:
            writer.write_u16(item.index)
            writer.write_u64(item.value)
            writer.write_string_with_length(item.script_pub_key.address or "")
            writer.write_bytes_with_length(bytes.fromhex(item.script_pub_key.hex or ""))
        return writer.get_buffer()

    def describe(self) -> str:
        def to_hex(value: bytes | None) -> str:
            return "null" if value is None else "0x" + value.hex()

        lines = [
            "---- Replayed Transaction Dump ----",
            f"id                       : {self.id}",
            f"blockHeight              : {self.block_height}",
            f"hash                     : {to_hex(self.hash)}",
            f"opNetType                : {self.op_net_type}",
            f"burnedBitcoin            : {self.burned_bitcoin}",
            f"calldata                 : {to_hex(self.calldata)}",
            f"contractAddress          : {self.contract_address}",
            f"contractSecret           : {to_hex(self.contract_secret)}",
            f"contractTweakedPublicKey : {self.contract_tweaked_public_key}",
            f"from                     : {self.sender}",
            f"gasUsed                  : {self.gas_used}",
            f"txId                     : {to_hex(self.tx_id)}",
            f"index                    : {self.index}",
            f"interactionPubKey        : {to_hex(self.interaction_pub_key)}",
            f"preimage                 : {to_hex(self.preimage)}",
            f"priorityFee              : {self.priority_fee}",
            f"raw                      : {to_hex(self.raw)}",
            f"receipt                  : {to_hex(self.receipt)}",
            f"revert                   : {to_hex(self.revert) if self.revert is not None else 'no-revert'}",
            f"reward                   : {self.reward}",
            f"senderPubKeyHash         : {to_hex(self.sender_pub_key_hash)}",
            f"specialGasUsed           : {self.special_gas_used}",
            f"wasCompressed            : {str(self.was_compressed).lower()}",
            "",
            f"inputs ({len(self.inputs)})",
        ]
        for i, item in enumerate(self.inputs):
            lines.append(
                f"  [{i}] tx={to_hex(item.original_transaction_id)} / vout={item.output_transaction_index}"
                f" / sequence={item.sequence_id}"
            )
        if not self.inputs:
            lines.append("  <none>")
        lines += ["", f"outputs ({len(self.outputs)})"]
        for i, item in enumerate(self.outputs):
            spk = item.script_pub_key
            address = spk.addresses[0] if spk.addresses and len(spk.addresses) == 1 else spk.addresses
            lines.append(f"  [{i}] value={item.value} / index={item.index} / script={spk.hex} / address={address}")
        if not self.outputs:
            lines.append("  <none>")
        lines += ["", f"events ({len(self.events)})"]
        for i, event in enumerate(self.events):
            lines.append(
                f"  [{i}] contract={event.contract_address} / type={event.type.decode('utf-8', 'replace')}"
                f" / data={to_hex(event.data)}"
            )
        if not self.events:
            lines.append("  <none>")
        lines += ["", f"receiptProofs ({len(self.receipt_proofs)})"]
        lines += [f"  [{i}] {proof}" for i, proof in enumerate(self.receipt_proofs)]
        if not self.receipt_proofs:
            lines.append("  <none>")
        lines.append("---- End Dump ----")
        return "\n".join(lines)
