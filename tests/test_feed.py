"""State feed and snapshot cache tests."""
from __future__ import annotations

import base64
import json

import pytest

from opsim.errors import SnapshotFormatError
from opsim.replay import SnapshotCache, StateRecord, iter_records, load_feed, materialize
from opsim.replay.feed import parse_record


def _b64(value: int) -> str:
    return base64.b64encode(value.to_bytes(32, "big")).decode()


def _record(pointer: int, value: int | None, height, *, extended: bool = False) -> dict:
    def word(v: int) -> object:
        return {"$binary": {"base64": _b64(v), "subType": "00"}} if extended else _b64(v)

    return {
        "pointer": word(pointer),
        "value": None if value is None else word(value),
        "lastSeenAt": height,
    }


@pytest.fixture
def records() -> list[dict]:
    return [
        _record(1, 10, 90),
        _record(1, 11, 95, extended=True),
        _record(1, 12, {"$numberLong": "120"}),
        _record(2, 20, "50"),
        _record(3, None, 60),
    ]


def test_parse_record_formats():
    assert parse_record(_record(1, 2, 3)) == StateRecord(1, 2, 3)
    assert parse_record(_record(1, 2, {"$numberLong": "7"}, extended=True)) == StateRecord(1, 2, 7)
    assert parse_record(_record(5, None, 1)).value == 0


def test_parse_record_rejects_short_words():
    document = {"pointer": base64.b64encode(b"\x01" * 31).decode(), "value": _b64(1), "lastSeenAt": 1}
    with pytest.raises(SnapshotFormatError, match="Pointer must be 32 bytes, got 31."):
        parse_record(document)


def test_parse_record_rejects_bad_height():
    with pytest.raises(SnapshotFormatError, match="lastSeenAt"):
        parse_record(_record(1, 1, "soon"))


def test_materialize_picks_latest_not_after_height(records):
    parsed = [parse_record(r) for r in records]
    assert materialize(parsed, 100) == {1: 11, 2: 20, 3: 0}
    assert materialize(parsed, 120) == {1: 12, 2: 20, 3: 0}
    assert materialize(parsed, 49) == {}


def test_equal_heights_keep_first_record():
    parsed = [StateRecord(1, 5, 10), StateRecord(1, 6, 10)]
    assert materialize(parsed, 10) == {1: 5}


def test_array_and_json_lines_feeds_agree(tmp_path, records):
    array_feed = tmp_path / "array.json"
    array_feed.write_text(json.dumps(records))
    lines_feed = tmp_path / "lines.json"
    lines_feed.write_text("\n".join(json.dumps(r) for r in records) + "\n\n")

    assert load_feed(array_feed, 100) == load_feed(lines_feed, 100) == {1: 11, 2: 20, 3: 0}


@pytest.mark.parametrize("chunk_size", [1, 7, 64])
def test_array_feed_streams_across_chunks(tmp_path, records, chunk_size):
    feed = tmp_path / "array.json"
    feed.write_text("\n [ " + ",\n  ".join(json.dumps(r) for r in records) + " ]\n")

    streamed = list(iter_records(feed, chunk_size=chunk_size))
    assert streamed == [parse_record(r) for r in records]
    assert materialize(streamed, 100) == {1: 11, 2: 20, 3: 0}


def test_array_feed_yields_records_before_reading_the_end(tmp_path, records):
    feed = tmp_path / "array.json"
    feed.write_text(json.dumps(records) + "garbage")
    stream = iter_records(feed, chunk_size=16)

    assert next(stream) == parse_record(records[0])
    with pytest.raises(SnapshotFormatError, match="extra data"):
        list(stream)


def test_empty_array_feed(tmp_path):
    feed = tmp_path / "empty.json"
    feed.write_text("[ ]")
    assert list(iter_records(feed, chunk_size=1)) == []


@pytest.mark.parametrize(
    "template, message",
    [
        ('[{"pointer": "AA=="', "not valid JSON"),
        ("[", "unexpected end"),
        ("[R", "unexpected end"),
        ("[R R]", "expected ','"),
        ("[R,]", "Expecting value"),
    ],
)
def test_malformed_array_feed(tmp_path, records, template, message):
    feed = tmp_path / "broken.json"
    feed.write_text(template.replace("R", json.dumps(records[0])))
    with pytest.raises(SnapshotFormatError, match=message):
        list(iter_records(feed, chunk_size=4))


def test_empty_feed(tmp_path):
    feed = tmp_path / "empty.json"
    feed.write_text("  \n")
    assert list(iter_records(feed)) == []


def test_invalid_json_line_reports_position(tmp_path):
    feed = tmp_path / "broken.json"
    feed.write_text(json.dumps(_record(1, 1, 1)) + "\n{not json\n")
    with pytest.raises(SnapshotFormatError, match="broken.json:2"):
        load_feed(feed, 10)


def test_missing_feed_is_format_error(tmp_path):
    with pytest.raises(SnapshotFormatError, match="Cannot read feed"):
        load_feed(tmp_path / "absent.json", 1)


def test_cache_writes_sorted_hex_pairs(tmp_path, records):
    feed = tmp_path / "feed.json"
    feed.write_text(json.dumps(records))
    cache = SnapshotCache(tmp_path / "cache")

    states = cache.get(feed, 100)
    path = tmp_path / "cache" / "cache-feed.json-100.json"
    assert cache.path_for(feed, 100) == path
    pairs = json.loads(path.read_text())
    assert pairs == [
        [f"{1:064x}", f"{11:064x}"],
        [f"{2:064x}", f"{20:064x}"],
        [f"{3:064x}", f"{0:064x}"],
    ]
    assert states == {1: 11, 2: 20, 3: 0}


def test_cache_reads_back_identical_bytes(tmp_path, records):
    feed = tmp_path / "feed.json"
    feed.write_text(json.dumps(records))
    first = SnapshotCache(tmp_path / "cache")
    first.get(feed, 100)
    written = first.path_for(feed, 100).read_bytes()

    feed.unlink()
    second = SnapshotCache(tmp_path / "cache")
    assert second.get(feed, 100) == {1: 11, 2: 20, 3: 0}
    assert SnapshotCache.serialize(second.get(feed, 100)).encode() == written


def test_cache_returns_copies(tmp_path, records):
    feed = tmp_path / "feed.json"
    feed.write_text(json.dumps(records))
    cache = SnapshotCache(tmp_path / "cache")
    cache.get(feed, 100)[1] = 999
    assert cache.get(feed, 100)[1] == 11


def test_corrupt_cache_file(tmp_path):
    path = tmp_path / "cache-x-1.json"
    path.write_text('[["zz", "01"]]')
    with pytest.raises(SnapshotFormatError, match="Bad cache entry"):
        SnapshotCache.read(path)
