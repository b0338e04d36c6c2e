"""Historical storage feeds and their on-disk cache.

A feed is a dump of every storage write a contract ever made: one record per
write, each with a 32-byte ``pointer``, a 32-byte ``value`` and the block
height it was ``lastSeenAt``. Binary fields may be plain base64 strings or
``{"$binary": {"base64": ...}}`` documents; heights may be numbers, strings
or ``{"$numberLong": ...}`` documents. A feed file is either a JSON array of
records or one record per line.
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TextIO

from ..errors import SnapshotFormatError

__all__ = ["SnapshotCache", "StateRecord", "iter_records", "load_feed", "materialize", "parse_record"]

logger = logging.getLogger(__name__)

WORD_LENGTH = 32
CHUNK_SIZE = 1 << 16

_JSON_WHITESPACE = " \t\n\r"


@dataclass(frozen=True, slots=True)
class StateRecord:
    pointer: int
    value: int
    last_seen_at: int


def _decode_word(field: str, raw: Any) -> int:
    if isinstance(raw, Mapping):
        binary = raw.get("$binary")
        raw = binary.get("base64") if isinstance(binary, Mapping) else None
    if not isinstance(raw, str):
        raise SnapshotFormatError(f"{field} must be base64 text")
    try:
        data = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise SnapshotFormatError(f"{field} is not valid base64: {exc}") from exc
    if len(data) != WORD_LENGTH:
        raise SnapshotFormatError(f"{field.capitalize()} must be 32 bytes, got {len(data)}.")
    return int.from_bytes(data, "big")


def _decode_height(raw: Any) -> int:
    if isinstance(raw, Mapping):
        raw = raw.get("$numberLong")
    if isinstance(raw, bool):
        raise SnapshotFormatError("lastSeenAt must be an integer")
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise SnapshotFormatError(f"lastSeenAt must be an integer, got {raw!r}") from exc


def parse_record(document: Any) -> StateRecord:
    if not isinstance(document, Mapping):
        raise SnapshotFormatError(f"Feed record must be an object, got {type(document).__name__}")
    if "pointer" not in document or "lastSeenAt" not in document:
        raise SnapshotFormatError("Feed record needs 'pointer' and 'lastSeenAt'")
    pointer = _decode_word("pointer", document["pointer"])
    raw_value = document.get("value")
    value = 0 if raw_value is None else _decode_word("value", raw_value)
    return StateRecord(pointer=pointer, value=value, last_seen_at=_decode_height(document["lastSeenAt"]))


def _iter_array(handle: TextIO, feed_path: Path, chunk_size: int) -> Iterator[Any]:
    """Decode the elements of a top-level JSON array one at a time.

    Only the unread tail of the current element is buffered, so memory stays
    bounded by the largest record rather than the file.
    """
    decoder = json.JSONDecoder()
    buffer = ""
    pos = 0
    eof = False
    opened = False
    seen_value = False
    after_value = False

    def invalid(reason: str) -> SnapshotFormatError:
        return SnapshotFormatError(f"Feed {feed_path} is not valid JSON: {reason}")

    while True:
        while pos < len(buffer) and buffer[pos] in _JSON_WHITESPACE:
            pos += 1
        if pos == len(buffer):
            if eof:
                raise invalid("unexpected end of array")
            chunk = handle.read(chunk_size)
            eof = not chunk
            buffer, pos = buffer[pos:] + chunk, 0
            continue

        char = buffer[pos]
        if not opened:
            if char != "[":
                raise invalid(f"expected '[', got {char!r}")
            opened = True
            pos += 1
            continue
        if char == "]" and (after_value or not seen_value):
            rest = buffer[pos + 1 :]
            while True:
                if rest.strip(_JSON_WHITESPACE):
                    raise invalid("extra data after the array")
                rest = handle.read(chunk_size)
                if not rest:
                    return
        if after_value:
            if char != ",":
                raise invalid(f"expected ',' or ']', got {char!r}")
            after_value = False
            pos += 1
            continue

        try:
            document, end = decoder.raw_decode(buffer, pos)
        except json.JSONDecodeError as exc:
            if eof:
                raise invalid(str(exc)) from exc
            end = None
        # a value running to the end of the buffer may continue in the next chunk
        if end is None or (end == len(buffer) and not eof):
            chunk = handle.read(chunk_size)
            eof = not chunk
            buffer, pos = buffer[pos:] + chunk, 0
            continue
        yield document
        pos = end
        seen_value = after_value = True


def iter_records(path: str | Path, chunk_size: int = CHUNK_SIZE) -> Iterator[StateRecord]:
    """Yield records from a feed file.

    JSON-lines feeds are read one line at a time; array feeds are decoded one
    element at a time from ``chunk_size`` character reads.
    """
    feed_path = Path(path)
    try:
        handle = feed_path.open("r", encoding="utf-8")
    except OSError as exc:
        raise SnapshotFormatError(f"Cannot read feed {feed_path}: {exc}") from exc

    with handle:
        first = ""
        while not first:
            char = handle.read(1)
            if not char:
                return
            first = char.strip()
        handle.seek(0)

        if first == "[":
            for document in _iter_array(handle, feed_path, chunk_size):
                yield parse_record(document)
            return

        for line_no, line in enumerate(handle, start=1):
            if not line.strip():
                continue
            try:
                document = json.loads(line)
            except json.JSONDecodeError as exc:
                raise SnapshotFormatError(f"{feed_path}:{line_no}: invalid JSON record: {exc}") from exc
            yield parse_record(document)


def materialize(records: Iterable[StateRecord], height: int) -> dict[int, int]:
    """Storage as of ``height``: per pointer, the latest record not after it.

    Records with equal heights keep the first one seen.
    """
    latest: dict[int, StateRecord] = {}
    for record in records:
        if record.last_seen_at > height:
            continue
        previous = latest.get(record.pointer)
        if previous is None or record.last_seen_at > previous.last_seen_at:
            latest[record.pointer] = record
    return {pointer: record.value for pointer, record in latest.items()}


def load_feed(path: str | Path, height: int) -> dict[int, int]:
    return materialize(iter_records(path), height)


class SnapshotCache:
    """Materialized feeds keyed by (feed, height), in memory and on disk.

    Disk entries live at ``<cache_dir>/cache-<feed basename>-<height>.json``
    as sorted ``[pointerHex, valueHex]`` pairs of 64 hex digits each.
    """

    def __init__(self, cache_dir: str | Path = "cache") -> None:
        self.cache_dir = Path(cache_dir)
        self._memory: dict[tuple[str, int], dict[int, int]] = {}

    def path_for(self, feed: str | Path, height: int) -> Path:
        base_name = Path(feed).name
        return self.cache_dir / f"cache-{base_name}-{height}.json"

    def clear(self) -> None:
        self._memory.clear()

    def get(self, feed: str | Path, height: int) -> dict[int, int]:
        key = (str(feed), height)
        cached = self._memory.get(key)
        if cached is not None:
            return dict(cached)

        cache_path = self.path_for(feed, height)
        if cache_path.exists():
            logger.info("cache hit %s", cache_path)
            states = self.read(cache_path)
        else:
            logger.info("cache miss, materializing %s at block %d", feed, height)
            states = load_feed(feed, height)
            self.write(cache_path, states)
            logger.info("cached %d pointers -> %s", len(states), cache_path)

        self._memory[key] = states
        return dict(states)

    @staticmethod
    def read(path: Path) -> dict[int, int]:
        try:
            pairs = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise SnapshotFormatError(f"Cannot read cache {path}: {exc}") from exc
        states: dict[int, int] = {}
        for pair in pairs:
            try:
                pointer_hex, value_hex = pair
                states[int(pointer_hex, 16)] = int(value_hex, 16)
            except (TypeError, ValueError) as exc:
                raise SnapshotFormatError(f"Bad cache entry in {path}: {pair!r}") from exc
        return states

    @staticmethod
    def serialize(states: Mapping[int, int]) -> str:
        pairs = [[f"{pointer:064x}", f"{value:064x}"] for pointer, value in sorted(states.items())]
        return json.dumps(pairs)

    def write(self, path: Path, states: Mapping[int, int]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.serialize(states), encoding="utf-8")
